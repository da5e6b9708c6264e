"""Record types, the parsed Structure document and the reader interface.

Interface Segregation: readers only turn a file into flat records
(``StructureReader.read``); chain assignment, alt-loc filtering and chain
selection happen once, here, for every format.

Hierarchy:
    Structure
    ├── metadata: StructureMetadata
    ├── atom_lines: list[AtomLine]            (file order)
    ├── chain_groups: list[ChainGroup]
    │   └── atom_lines: tuple[AtomLine, ...]
    ├── pdb_chain_code_to_chain_code: dict[str, str]
    ├── poly_seq_lines: list[PolySeqLine]
    └── sec_structure_lines: list[SecStructureLine]
"""

from __future__ import annotations

import gzip
import io
import zlib
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

import numpy as np
import pandas as pd

from molparse.config import load_settings
from molparse.core.errors import (
    ChainNotFoundError,
    FormatError,
    StructureError,
    StructureIOError,
)
from molparse.core.logging_utils import get_logger
from molparse.core.residues import is_peptide_linked, one_letter_code

logger = get_logger(__name__)

DEFAULT_ALT_CODE = "."
NO_INS_CODE = "."
NULL_CHAIN_CODE = "NULL"


# ======================================================================
# Records
# ======================================================================

@dataclass(frozen=True)
class AtomLine:
    """One ATOM/HETATM record, as read from the file."""

    serial: int
    atom_name: str
    res_type: str
    pdb_chain_code: str
    pdb_res_serial: int
    x: float
    y: float
    z: float
    element: str = ""
    chain_code: str = ""
    res_serial: int = -1
    ins_code: str = NO_INS_CODE
    occupancy: float = 1.0
    b_factor: float = 0.0
    alt_code: str = DEFAULT_ALT_CODE
    is_het_atm: bool = False
    out_of_poly_chain: bool = False
    is_non_poly: bool = False

    @property
    def coords(self) -> tuple[float, float, float]:
        return (self.x, self.y, self.z)

    @property
    def pdb_res_serial_with_ins_code(self) -> str:
        if self.ins_code == NO_INS_CODE:
            return str(self.pdb_res_serial)
        return f"{self.pdb_res_serial}{self.ins_code}"

    @property
    def is_peptide_linked(self) -> bool:
        return is_peptide_linked(self.res_type)


@dataclass(frozen=True)
class PolySeqLine:
    """One row of the full (SEQRES-like) polymer sequence of an mmCIF file."""

    chain_code: str
    res_serial: int
    res_type: str
    pdb_res_serial: str
    pdb_chain_code: str
    ins_code: str = NO_INS_CODE

    @property
    def pdb_res_serial_with_ins_code(self) -> str:
        if self.ins_code == NO_INS_CODE:
            return self.pdb_res_serial
        return f"{self.pdb_res_serial}{self.ins_code}"


@dataclass(frozen=True)
class SecStructureLine:
    """A helix, strand or turn, delimited by its first and last residue."""

    kind: str  # "HELIX", "SHEET" or "TURN"
    beg_chain_code: str
    end_chain_code: str
    beg: str
    end: str
    serial: int = 0
    sheet_id: str = ""
    ss_id: str = ""


@dataclass(frozen=True)
class ChainGroup:
    """Consecutive atom lines assigned to one chain code."""

    chain_code: str
    pdb_chain_code: str
    atom_lines: tuple[AtomLine, ...] = ()
    is_non_poly: bool = False

    @property
    def is_polymer(self) -> bool:
        return not self.is_non_poly

    @property
    def num_atoms(self) -> int:
        return len(self.atom_lines)

    @property
    def residues(self) -> list[tuple[str, str]]:
        """(pdb residue serial with insertion code, residue type), in order."""
        out: list[tuple[str, str]] = []
        last = None
        for a in self.atom_lines:
            key = a.pdb_res_serial_with_ins_code
            if key != last:
                out.append((key, a.res_type))
                last = key
        return out

    @property
    def sequence(self) -> str:
        """One letter sequence of the observed residues."""
        return "".join(one_letter_code(res_type) for _, res_type in self.residues)

    def __len__(self) -> int:
        return len(self.atom_lines)

    def __iter__(self) -> Iterator[AtomLine]:
        return iter(self.atom_lines)


@dataclass
class StructureMetadata:
    """Identity of a parsed file."""

    entry_id: str
    format: str  # "mmcif" or "pdb"
    model: int = 1
    source_path: Optional[str] = None
    pdb_chain_code: Optional[str] = None
    alt_loc: str = DEFAULT_ALT_CODE
    terminator_seen: bool = False
    # target number of a CASP TS prediction file
    casp_target: Optional[int] = None


@dataclass
class ReadResult:
    """Flat output of a reader, before chains are assigned."""

    metadata: StructureMetadata
    atom_lines: list[AtomLine] = field(default_factory=list)
    # alt-loc codes declared by the file itself, if any
    alt_codes: Optional[set[str]] = None
    labelled: bool = False
    terminator_seen: bool = False
    poly_seq_lines: list[PolySeqLine] = field(default_factory=list)
    sec_structure_lines: list[SecStructureLine] = field(default_factory=list)
    # author chain code -> residue types of the full sequence
    seqres: dict[str, list[str]] = field(default_factory=dict)


# ======================================================================
# Structure document
# ======================================================================

class Structure:
    """A parsed structure file: atom lines partitioned into chains.

    Everything is read-only once built; the accessors return copies of the
    internal containers.
    """

    def __init__(
        self,
        metadata: StructureMetadata,
        chain_groups: list[ChainGroup],
        pdb_chain_code_to_chain_code: dict[str, str],
        poly_seq_lines: Optional[list[PolySeqLine]] = None,
        sec_structure_lines: Optional[list[SecStructureLine]] = None,
        seqres: Optional[dict[str, list[str]]] = None,
    ):
        self._metadata = metadata
        self._chain_groups = list(chain_groups)
        self._pdb_chain_code_to_chain_code = dict(pdb_chain_code_to_chain_code)
        self._poly_seq_lines = list(poly_seq_lines or [])
        self._sec_structure_lines = list(sec_structure_lines or [])
        self._seqres = {k: list(v) for k, v in (seqres or {}).items()}
        self._atom_lines = [a for g in self._chain_groups for a in g.atom_lines]

    @property
    def metadata(self) -> StructureMetadata:
        return self._metadata

    @property
    def atom_lines(self) -> list[AtomLine]:
        return list(self._atom_lines)

    @property
    def chain_groups(self) -> list[ChainGroup]:
        return list(self._chain_groups)

    @property
    def pdb_chain_code_to_chain_code(self) -> dict[str, str]:
        return dict(self._pdb_chain_code_to_chain_code)

    @property
    def poly_seq_lines(self) -> list[PolySeqLine]:
        return list(self._poly_seq_lines)

    @property
    def sec_structure_lines(self) -> list[SecStructureLine]:
        return list(self._sec_structure_lines)

    @property
    def entry_id(self) -> str:
        return self._metadata.entry_id

    @property
    def model(self) -> int:
        return self._metadata.model

    @property
    def alt_loc(self) -> str:
        return self._metadata.alt_loc

    @property
    def num_atoms(self) -> int:
        return len(self._atom_lines)

    @property
    def num_chains(self) -> int:
        return len(self._chain_groups)

    @property
    def chain_codes(self) -> list[str]:
        return [g.chain_code for g in self._chain_groups]

    @property
    def pdb_chain_codes(self) -> list[str]:
        """Author chain codes of the polymer chains, sorted."""
        return sorted(self._pdb_chain_code_to_chain_code)

    @property
    def polymer_groups(self) -> list[ChainGroup]:
        return [g for g in self._chain_groups if g.is_polymer]

    @property
    def non_polymer_groups(self) -> list[ChainGroup]:
        return [g for g in self._chain_groups if g.is_non_poly]

    @property
    def sequences(self) -> dict[str, str]:
        """Author chain code -> full one letter sequence (SEQRES or poly seq scheme)."""
        return {
            code: "".join(one_letter_code(r) for r in residues)
            for code, residues in self._seqres.items()
        }

    @property
    def observed_sequences(self) -> dict[str, str]:
        """Author chain code -> one letter sequence of residues with coordinates."""
        return {g.pdb_chain_code: g.sequence for g in self.polymer_groups}

    def get_chain_group(self, chain_code: str) -> Optional[ChainGroup]:
        for g in self._chain_groups:
            if g.chain_code == chain_code:
                return g
        return None

    def get_polymer_group(self, pdb_chain_code: str) -> Optional[ChainGroup]:
        chain_code = self._pdb_chain_code_to_chain_code.get(pdb_chain_code)
        return self.get_chain_group(chain_code) if chain_code is not None else None

    def num_ins_codes(self, pdb_chain_code: str) -> int:
        """Number of residues carrying an insertion code in an author chain."""
        residues = {
            (a.pdb_res_serial, a.ins_code)
            for a in self._atom_lines
            if a.pdb_chain_code == pdb_chain_code and a.ins_code != NO_INS_CODE
        }
        return len(residues)

    def coordinates(self) -> np.ndarray:
        """(N, 3) float array of atom coordinates in file order."""
        if not self._atom_lines:
            return np.zeros((0, 3), dtype=float)
        return np.array([a.coords for a in self._atom_lines], dtype=float)

    def to_dataframe(self) -> pd.DataFrame:
        """One row per atom line, columns named after AtomLine fields."""
        columns = [
            "serial", "atom_name", "element", "res_type", "pdb_chain_code",
            "chain_code", "res_serial", "pdb_res_serial", "ins_code",
            "x", "y", "z", "occupancy", "b_factor", "alt_code",
            "is_het_atm", "is_non_poly",
        ]
        rows = [[getattr(a, c) for c in columns] for a in self._atom_lines]
        return pd.DataFrame(rows, columns=columns)

    def to_dict(self) -> dict:
        """Flat summary dict for DataFrame usage."""
        m = self._metadata
        return {
            "entry_id": m.entry_id,
            "format": m.format,
            "model": m.model,
            "alt_loc": m.alt_loc,
            "casp_target": m.casp_target,
            "chain_count": self.num_chains,
            "polymer_chain_count": len(self.polymer_groups),
            "non_polymer_chain_count": len(self.non_polymer_groups),
            "atom_count": self.num_atoms,
            "sec_structure_count": len(self._sec_structure_lines),
        }

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} {self.entry_id} model={self.model} "
            f"chains={self.num_chains} atoms={self.num_atoms}>"
        )


# ======================================================================
# File access
# ======================================================================

# A truncated or corrupt .gz surfaces as EOFError or zlib.error, possibly
# only once reading is under way.
_READ_ERRORS = (OSError, EOFError, zlib.error)


def _io_error(path: Path, e: Exception) -> StructureIOError:
    return StructureIOError(f"Could not read structure file {path}: {e}")


@contextmanager
def open_binary(path: Path) -> Iterator[BinaryIO]:
    """Open a structure file for random access; .gz files are decompressed in memory."""
    try:
        if path.suffix == ".gz":
            with gzip.open(path, "rb") as f:
                handle: BinaryIO = io.BytesIO(f.read())
        else:
            handle = open(path, "rb")
    except _READ_ERRORS as e:
        raise _io_error(path, e) from e
    with handle:
        yield handle


@contextmanager
def open_text(path: Path) -> Iterator[io.TextIOBase]:
    """Open a structure file as text, transparently handling .gz.

    Read errors raised while the caller iterates the handle are reported as
    StructureIOError too.
    """
    opener = gzip.open if path.suffix == ".gz" else open
    mode = "rt" if path.suffix == ".gz" else "r"
    try:
        handle = opener(path, mode, encoding="utf-8", errors="replace")
    except _READ_ERRORS as e:
        raise _io_error(path, e) from e
    with handle:
        try:
            yield handle
        except StructureError:
            raise
        except _READ_ERRORS as e:
            raise _io_error(path, e) from e


# ======================================================================
# Reader protocol
# ======================================================================

class StructureReader(ABC):
    """Read a file into a Structure.

    Subclasses implement ``read`` (flat records for one model) and
    ``models``; ``parse`` runs the shared pipeline on top: alt-loc
    resolution, chain partitioning, format checks and chain selection.
    """

    format_name = ""

    @abstractmethod
    def read(self, path: Path, model: int) -> ReadResult:
        """Read the atom, sequence and secondary structure records of ``model``."""
        ...

    @abstractmethod
    def models(self, path: str | Path) -> list[int]:
        """Model serials present in the file, sorted."""
        ...

    @staticmethod
    @abstractmethod
    def extensions() -> list[str]:
        """File extensions this reader handles (e.g. ['.cif', '.cif.gz'])."""
        ...

    def validate(self, result: ReadResult, groups: list[ChainGroup]) -> None:
        """Format specific consistency checks, run after partitioning."""

    def chains(self, path: str | Path, model: Optional[int] = None) -> list[str]:
        """Author chain codes of the polymer chains in ``model``, sorted."""
        return self.parse(path, model=model).pdb_chain_codes

    def parse(
        self,
        path: str | Path,
        model: Optional[int] = None,
        pdb_chain_code: Optional[str] = None,
        allow_ins_codes: bool = True,
    ) -> Structure:
        """Parse ``path`` into a Structure.

        ``model`` defaults to the configured default model. When
        ``pdb_chain_code`` is given only the chain groups of that author
        chain are kept. With ``allow_ins_codes=False`` residues carrying an
        insertion code are a FormatError.
        """
        from molparse.parsers.partition import (
            PartitionStrategy,
            filter_alt_loc,
            partition_atom_lines,
            resolve_alt_loc,
        )

        path = Path(path)
        if model is None:
            model = load_settings().default_model

        try:
            result = self.read(path, model)
        except StructureError:
            raise
        except _READ_ERRORS as e:
            raise _io_error(path, e) from e

        if not result.atom_lines:
            raise ChainNotFoundError(pdb_chain_code, model, str(path))

        codes = result.alt_codes
        if codes is None:
            codes = {a.alt_code for a in result.atom_lines}
        alt_loc = resolve_alt_loc(codes)
        atom_lines = filter_alt_loc(result.atom_lines, alt_loc)

        strategy = PartitionStrategy.choose(result.labelled, result.terminator_seen)
        if strategy is PartitionStrategy.UNTERMINATED:
            logger.warning("No TER records in %s, chain assignment may be unreliable", path)
        logger.debug("Partitioning %s with strategy %s", path, strategy.value)
        partition = partition_atom_lines(atom_lines, strategy)

        self.validate(result, partition.groups)

        groups = partition.groups
        mapping = partition.pdb_chain_code_to_chain_code
        poly_seq_lines = result.poly_seq_lines
        sec_structure_lines = result.sec_structure_lines
        seqres = result.seqres
        if pdb_chain_code is not None:
            groups = [g for g in groups if g.pdb_chain_code == pdb_chain_code]
            if not groups:
                raise ChainNotFoundError(pdb_chain_code, model, str(path))
            mapping = {k: v for k, v in mapping.items() if k == pdb_chain_code}
            chain_codes = {g.chain_code for g in groups} | {pdb_chain_code}
            poly_seq_lines = [p for p in poly_seq_lines if p.pdb_chain_code == pdb_chain_code]
            sec_structure_lines = [
                s for s in sec_structure_lines if s.beg_chain_code in chain_codes
            ]
            seqres = {k: v for k, v in seqres.items() if k == pdb_chain_code}

        if not allow_ins_codes:
            for g in groups:
                if any(a.ins_code != NO_INS_CODE for a in g.atom_lines):
                    raise FormatError(
                        f"Insertion codes found in chain {g.pdb_chain_code} of {path}"
                    )

        metadata = result.metadata
        metadata.model = model
        metadata.source_path = str(path)
        metadata.pdb_chain_code = pdb_chain_code
        metadata.alt_loc = alt_loc
        metadata.terminator_seen = result.terminator_seen

        structure = Structure(
            metadata=metadata,
            chain_groups=groups,
            pdb_chain_code_to_chain_code=mapping,
            poly_seq_lines=poly_seq_lines,
            sec_structure_lines=sec_structure_lines,
            seqres=seqres,
        )
        logger.info(
            "Parsed %s: %d atoms in %d chains (model %d)",
            path.name, structure.num_atoms, structure.num_chains, model,
        )
        return structure
