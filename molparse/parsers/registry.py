"""Field schema registry and record reader for mmCIF files.

A single forward pass (``index_fields``) records, for each tracked field
id, its ordered sub-field names, whether it is a loop, and the byte span
holding its data rows. Rows are only tokenized later, on demand, by
seeking into that span (``iter_records``), so memory stays constant per
field whatever the size of the file.

Single Responsibility: knows where records are, not what they mean.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, Optional

from molparse.core.errors import FormatError
from molparse.core.logging_utils import get_logger
from molparse.parsers.tokenizer import iter_rows, tokenize_value

logger = get_logger(__name__)

ENTRY = "_entry"
ATOM_SITES_ALT = "_atom_sites_alt"
ATOM_SITE = "_atom_site"
PDBX_POLY_SEQ_SCHEME = "_pdbx_poly_seq_scheme"
STRUCT_CONF = "_struct_conf"
STRUCT_SHEET_RANGE = "_struct_sheet_range"

TRACKED_FIELDS = (
    ENTRY,
    ATOM_SITES_ALT,
    ATOM_SITE,
    PDBX_POLY_SEQ_SCHEME,
    STRUCT_CONF,
    STRUCT_SHEET_RANGE,
)

_DATA_BLOCK_RE = re.compile(r"^data_\w+")
_FIELD_RE = re.compile(r"^(_\w+)\.([\w\-\[\]]+)(?:\s+(.*))?$")


# ======================================================================
# Schema
# ======================================================================

@dataclass
class FieldSchemaEntry:
    """Layout of one tracked field id (e.g. ``_atom_site``) in a file."""

    field_id: str
    element: int
    subfields: list[str] = field(default_factory=list)
    is_loop: bool = False
    # byte span [start, end) of the data rows, loop elements only
    start: Optional[int] = None
    end: Optional[int] = None
    # raw values of a non-loop element, keyed by sub-field
    values: dict[str, str] = field(default_factory=dict)

    @property
    def num_subfields(self) -> int:
        return len(self.subfields)

    @property
    def has_records(self) -> bool:
        if self.is_loop:
            return self.start is not None and self.end is not None
        return bool(self.values)

    def has_subfield(self, name: str) -> bool:
        return name in self.subfields

    def index(self, name: str) -> int:
        """Column of ``name`` within each record."""
        try:
            return self.subfields.index(name)
        except ValueError:
            raise FormatError(f"Missing field {self.field_id}.{name}") from None

    def value(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Unquoted value of a non-loop sub-field."""
        raw = self.values.get(name)
        if raw is None:
            return default
        return tokenize_value(raw)


@dataclass
class ParseContext:
    """Everything a record read needs: the open file and its registry."""

    path: Path
    handle: BinaryIO
    fields: dict[str, FieldSchemaEntry]

    def entry(self, field_id: str) -> Optional[FieldSchemaEntry]:
        return self.fields.get(field_id)


# ======================================================================
# Indexing pass
# ======================================================================

def index_fields(
    stream: BinaryIO,
    field_ids: Iterable[str] = TRACKED_FIELDS,
    source: str = "",
) -> dict[str, FieldSchemaEntry]:
    """Scan the whole stream once and build the registry of ``field_ids``."""
    tracked = set(field_ids)
    registry: dict[str, FieldSchemaEntry] = {}
    by_element: dict[int, FieldSchemaEntry] = {}
    loop_elements: set[int] = set()

    stream.seek(0)
    first = stream.readline()
    if not _DATA_BLOCK_RE.match(first.decode("utf-8", errors="replace")):
        raise FormatError(f"The file {source or '<stream>'} doesn't seem to be a mmCIF file")

    element = 0
    offset = len(first)
    last_subfield: Optional[str] = None

    for raw in stream:
        line_start = offset
        offset += len(raw)
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")

        if line.startswith("#"):
            element += 1
            last_subfield = None
            continue
        if line.startswith("loop_"):
            loop_elements.add(element)
            continue

        m = _FIELD_RE.match(line)
        if m:
            field_id, subfield, value = m.group(1), m.group(2), m.group(3)
            if field_id not in tracked:
                continue
            entry = registry.get(field_id)
            if entry is None:
                entry = FieldSchemaEntry(field_id=field_id, element=element)
                registry[field_id] = entry
                by_element[element] = entry
            entry.is_loop = element in loop_elements
            entry.subfields.append(subfield)
            if not entry.is_loop:
                entry.values[subfield] = value if value is not None else ""
                last_subfield = subfield
            continue

        if line.startswith("_"):
            continue

        entry = by_element.get(element)
        if entry is None:
            continue
        if entry.is_loop:
            if entry.start is None:
                entry.start = line_start
            entry.end = offset
        elif last_subfield is not None:
            # value written on the line(s) after its sub-field name
            previous = entry.values[last_subfield]
            entry.values[last_subfield] = f"{previous}\n{line}" if previous else line

    for entry in registry.values():
        logger.debug(
            "Indexed %s: %d sub-fields, loop=%s, span=%s-%s",
            entry.field_id, entry.num_subfields, entry.is_loop, entry.start, entry.end,
        )
    return registry


# ======================================================================
# Record reader
# ======================================================================

def iter_records(context: ParseContext, field_id: str) -> Iterator[list[str]]:
    """Yield the records of ``field_id`` in file order.

    Each call seeks back to the start of the span, so the reader can be run
    as many times as needed. Loop records must carry exactly one token per
    sub-field.
    """
    entry = context.entry(field_id)
    if entry is None or not entry.has_records:
        return

    if not entry.is_loop:
        yield [entry.value(name, "") for name in entry.subfields]
        return

    if entry.num_subfields == 0:
        return

    rows = iter_rows(context.handle, entry.num_subfields, entry.start, entry.end)
    for count, tokens in enumerate(rows, start=1):
        if len(tokens) != entry.num_subfields:
            raise FormatError(
                f"Incorrect number of fields for record {count} in loop element "
                f"{field_id} of CIF file {context.path}"
            )
        yield tokens
