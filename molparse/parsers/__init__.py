"""molparse.parsers — readers for mmCIF and legacy PDB structure files.

Architecture:
    - tokenizer.py: quote-aware field tokenizer over a seekable byte stream
    - registry.py: one-pass index of mmCIF field ids + restartable record reader
    - base.py: records (AtomLine, ChainGroup, ...), Structure, StructureReader
    - partition.py: chain partitioner, chain code generator, alt-loc resolution
    - mmcif.py: CIFReader (mmCIF format)
    - pdb_format.py: PDBFormatReader (PDB format)
    - dataset.py: reader registry and StructureDataset

Usage::

    from molparse.parsers import CIFReader, parse_structure

    # Single file, one author chain
    s = CIFReader().parse("1abc.cif", pdb_chain_code="A")
    for group in s.chain_groups:
        print(group.chain_code, group.pdb_chain_code, group.is_polymer)

    # Auto-detect format
    s = parse_structure("1abc.pdb", model=1)
    xyz = s.coordinates()
    df = s.to_dataframe()
"""

from molparse.parsers.base import (
    AtomLine,
    ChainGroup,
    PolySeqLine,
    SecStructureLine,
    Structure,
    StructureMetadata,
    StructureReader,
)
from molparse.parsers.partition import (
    PartitionStrategy,
    next_chain_code,
    partition_atom_lines,
    resolve_alt_loc,
)
from molparse.parsers.mmcif import CIFReader
from molparse.parsers.pdb_format import PDBFormatReader
from molparse.parsers.dataset import (
    StructureDataset,
    auto_reader,
    parse_structure,
    register_reader,
)

__all__ = [
    # Records and document
    "AtomLine",
    "ChainGroup",
    "PolySeqLine",
    "SecStructureLine",
    "Structure",
    "StructureMetadata",
    "StructureReader",
    # Partitioning
    "PartitionStrategy",
    "next_chain_code",
    "partition_atom_lines",
    "resolve_alt_loc",
    # Concrete readers
    "CIFReader",
    "PDBFormatReader",
    # Dataset
    "StructureDataset",
    "auto_reader",
    "parse_structure",
    "register_reader",
]
