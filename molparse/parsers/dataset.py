"""StructureDataset: load a list of structure files into Structure objects.

Depends only on the StructureReader abstraction, not on specific readers.
New formats are added by registering a reader for their extensions
(Open/Closed).
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterator, Optional, overload

from molparse.core.errors import StructureError
from molparse.core.logging_utils import get_logger
from molparse.parsers.base import Structure, StructureReader
from molparse.parsers.mmcif import CIFReader
from molparse.parsers.pdb_format import PDBFormatReader

logger = get_logger(__name__)

# ======================================================================
# Reader registry (Open/Closed: register new formats without changes)
# ======================================================================

_REGISTRY: dict[str, type[StructureReader]] = {}


def register_reader(reader_cls: type[StructureReader]) -> None:
    """Register a reader class for its declared extensions."""
    for ext in reader_cls.extensions():
        _REGISTRY[ext.lower()] = reader_cls


# built-in readers are registered when the module is imported
for _reader_cls in (CIFReader, PDBFormatReader):
    register_reader(_reader_cls)


def auto_reader(path: str | Path) -> StructureReader:
    """Return the appropriate reader for a file path based on extension."""
    name = str(path).lower()
    for ext in sorted(_REGISTRY, key=len, reverse=True):
        if name.endswith(ext):
            return _REGISTRY[ext]()
    available = sorted(set(_REGISTRY.keys()))
    raise ValueError(f"No reader for '{path}'. Supported: {available}")


def parse_structure(
    path: str | Path,
    model: Optional[int] = None,
    pdb_chain_code: Optional[str] = None,
    allow_ins_codes: bool = True,
) -> Structure:
    """Parse a file with the reader matching its extension."""
    return auto_reader(path).parse(
        path, model=model, pdb_chain_code=pdb_chain_code, allow_ins_codes=allow_ins_codes
    )


# ======================================================================
# StructureDataset
# ======================================================================

class StructureDataset:
    """A dataset of parsed molecular structures.

    Loads structure files lazily (on access) and caches the result.

    Usage::

        from molparse.parsers import StructureDataset

        ds = StructureDataset.from_directory("/data/pdb", pattern="*.cif.gz", skip_errors=True)
        for structure in ds:
            print(structure.entry_id, structure.num_chains)
            for group in structure.polymer_groups:
                print(f"  Chain {group.pdb_chain_code} -> {group.chain_code}: {group.sequence[:50]}")

        # Index access
        s = ds[0]
        print(s.pdb_chain_code_to_chain_code)

        # Filter
        multi = ds.filter(lambda s: len(s.polymer_groups) > 1)

    With ``skip_errors=True`` files that fail to parse are logged and left
    out of iteration, so one malformed file does not stop a batch.
    """

    def __init__(
        self,
        paths: list[Path],
        reader: Optional[StructureReader] = None,
        model: Optional[int] = None,
        skip_errors: bool = False,
    ):
        self._paths = paths
        self._reader = reader
        self._model = model
        self._skip_errors = skip_errors
        self._cache: dict[int, Structure] = {}
        self._errors: dict[Path, str] = {}

    @classmethod
    def from_paths(
        cls,
        paths: list[str | Path],
        reader: Optional[StructureReader] = None,
        **kwargs,
    ) -> "StructureDataset":
        """Create from a list of file paths (strings or Path objects)."""
        return cls([Path(p) for p in paths], reader=reader, **kwargs)

    @classmethod
    def from_directory(
        cls,
        directory: str | Path,
        pattern: str = "*.cif",
        reader: Optional[StructureReader] = None,
        **kwargs,
    ) -> "StructureDataset":
        """Create from all matching files in a directory."""
        d = Path(directory)
        paths = sorted(d.rglob(pattern))
        logger.info("StructureDataset: found %d files matching '%s' in %s", len(paths), pattern, d)
        return cls(paths, reader=reader, **kwargs)

    def __len__(self) -> int:
        return len(self._paths)

    @overload
    def __getitem__(self, idx: int) -> Structure: ...
    @overload
    def __getitem__(self, idx: slice) -> list[Structure]: ...

    def __getitem__(self, idx):
        if isinstance(idx, slice):
            return [self._load(i) for i in range(*idx.indices(len(self)))]
        if idx < 0:
            idx = len(self) + idx
        return self._load(idx)

    def __iter__(self) -> Iterator[Structure]:
        for i in range(len(self)):
            structure = self._try_load(i)
            if structure is not None:
                yield structure

    def _load(self, idx: int) -> Structure:
        if idx in self._cache:
            return self._cache[idx]
        path = self._paths[idx]
        reader = self._reader or auto_reader(path)
        try:
            structure = reader.parse(path, model=self._model)
        except StructureError as e:
            logger.error("Failed to parse %s: %s", path, e)
            self._errors[path] = str(e)
            raise
        self._cache[idx] = structure
        return structure

    def _try_load(self, idx: int) -> Optional[Structure]:
        if not self._skip_errors:
            return self._load(idx)
        try:
            return self._load(idx)
        except StructureError:
            logger.warning("Skipping %s", self._paths[idx])
            return None

    @property
    def paths(self) -> list[Path]:
        return list(self._paths)

    @property
    def errors(self) -> dict[Path, str]:
        """Files that failed to parse so far, with the error message."""
        return dict(self._errors)

    @property
    def entry_ids(self) -> list[str]:
        """Entry ids of all structures (parses lazily)."""
        return [s.entry_id for s in self]

    def filter(self, predicate: Callable[[Structure], bool]) -> "StructureDataset":
        """Return a new dataset with only structures matching the predicate.

        Note: this triggers parsing of all structures.
        """
        indices = []
        for i in range(len(self)):
            structure = self._try_load(i)
            if structure is not None and predicate(structure):
                indices.append(i)
        paths = [self._paths[i] for i in indices]
        ds = StructureDataset(paths, reader=self._reader, model=self._model, skip_errors=self._skip_errors)
        for new_idx, old_idx in enumerate(indices):
            ds._cache[new_idx] = self._cache[old_idx]
        return ds

    def to_list(self, progress: bool = False) -> list[Structure]:
        """Parse all structures and return as a list.

        With ``progress=True`` a tqdm progress bar is shown, one tick per file.
        """
        indices = range(len(self))
        if progress:
            from tqdm import tqdm
            indices = tqdm(indices, desc="Parsing structures", unit="file")
        structures = []
        for i in indices:
            structure = self._try_load(i)
            if structure is not None:
                structures.append(structure)
        return structures

    def summary(self, progress: bool = False) -> dict:
        """Parse all and return summary statistics."""
        structures = self.to_list(progress=progress)
        formats: dict[str, int] = {}
        for s in structures:
            formats[s.metadata.format] = formats.get(s.metadata.format, 0) + 1
        return {
            "total": len(self),
            "parsed": len(structures),
            "failed": len(self._errors),
            "formats": formats,
            "total_atoms": sum(s.num_atoms for s in structures),
            "total_chains": sum(s.num_chains for s in structures),
            "polymer_chains": sum(len(s.polymer_groups) for s in structures),
        }

    def __repr__(self) -> str:
        return f"<StructureDataset n={len(self)} paths={self._paths[:3]}...>"
