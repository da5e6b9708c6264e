"""Error types raised while reading structure files.

Three kinds, so callers can tell them apart:
    FormatError          the file content is malformed
    ChainNotFoundError   the requested chain/model has no records
    StructureIOError     the file could not be read at all
"""

from __future__ import annotations

from typing import Optional


class StructureError(Exception):
    """Base class for all molparse errors."""


class FormatError(StructureError, ValueError):
    """Malformed input: bad header, wrong token count, inconsistent chains..."""


class ChainNotFoundError(StructureError, LookupError):
    """No records match the requested author chain code and model."""

    def __init__(self, pdb_chain_code: Optional[str], model: int, source: str = ""):
        self.pdb_chain_code = pdb_chain_code
        self.model = model
        where = f" in {source}" if source else ""
        super().__init__(
            f"Couldn't find atom data for pdb chain code {pdb_chain_code!r}, model {model}{where}"
        )


class StructureIOError(StructureError, OSError):
    """The structure file could not be opened or read."""
