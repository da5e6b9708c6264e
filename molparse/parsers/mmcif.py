"""mmCIF reader built on the field registry and the record reader.

One indexing pass locates the six tracked field ids, then each of them is
read by seeking to its rows. The file handle stays open for the whole read
and is closed on every exit path.

Single Responsibility: turns mmCIF records into typed records; chains are
assigned by the shared pipeline in base.py.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from molparse.config import load_settings
from molparse.core.errors import FormatError
from molparse.core.logging_utils import get_logger
from molparse.core.residues import WATER_RESIDUES
from molparse.parsers.base import (
    DEFAULT_ALT_CODE,
    NO_INS_CODE,
    AtomLine,
    PolySeqLine,
    ReadResult,
    SecStructureLine,
    StructureMetadata,
    StructureReader,
    open_binary,
)
from molparse.parsers.registry import (
    ATOM_SITE,
    ATOM_SITES_ALT,
    ENTRY,
    PDBX_POLY_SEQ_SCHEME,
    STRUCT_CONF,
    STRUCT_SHEET_RANGE,
    ParseContext,
    index_fields,
    iter_records,
)

logger = get_logger(__name__)

_SS_ID_RE = re.compile(r"^(\w).+_P(\d+)$")

# values meaning "not given"
_MISSING = ("?", ".")


def _opt(value: str, default: str) -> str:
    return default if value in _MISSING else value


def _to_int(value: str, what: str, context: ParseContext, default: Optional[int] = None) -> int:
    if default is not None and value in _MISSING:
        return default
    try:
        return int(value)
    except ValueError:
        raise FormatError(f"Wrong number format for {what} ({value!r}) in CIF file {context.path}") from None


def _to_float(value: str, what: str, context: ParseContext, default: Optional[float] = None) -> float:
    if default is not None and value in _MISSING:
        return default
    try:
        return float(value)
    except ValueError:
        raise FormatError(f"Wrong number format for {what} ({value!r}) in CIF file {context.path}") from None


class _Columns:
    """Column lookup for the records of one field id."""

    def __init__(self, context: ParseContext, field_id: str):
        self._entry = context.entry(field_id)

    def __contains__(self, name: str) -> bool:
        return self._entry is not None and self._entry.has_subfield(name)

    def index(self, name: str) -> int:
        return self._entry.index(name)

    def optional(self, name: str) -> Optional[int]:
        return self.index(name) if name in self else None


def _get(tokens: list[str], idx: Optional[int], default: str) -> str:
    return tokens[idx] if idx is not None else default


# ======================================================================
# Field readers
# ======================================================================

def read_entry_id(context: ParseContext) -> str:
    entry = context.entry(ENTRY)
    if entry is None:
        return ""
    for tokens in iter_records(context, ENTRY):
        return tokens[entry.index("id")].strip().lower()
    return ""


def read_model_serials(context: ParseContext) -> list[int]:
    if ATOM_SITE not in context.fields:
        return []
    cols = _Columns(context, ATOM_SITE)
    model_idx = cols.optional("pdbx_PDB_model_num")
    if model_idx is None:
        return [1]
    serials = {
        _to_int(tokens[model_idx], "pdbx_PDB_model_num", context)
        for tokens in iter_records(context, ATOM_SITE)
    }
    return sorted(serials)


def read_alt_codes(context: ParseContext, model: int) -> set[str]:
    """Alt-loc codes declared in _atom_sites_alt, or seen in _atom_site otherwise."""
    if ATOM_SITES_ALT in context.fields:
        idx = _Columns(context, ATOM_SITES_ALT).index("id")
        return {tokens[idx] for tokens in iter_records(context, ATOM_SITES_ALT)}

    cols = _Columns(context, ATOM_SITE)
    alt_idx = cols.optional("label_alt_id")
    if alt_idx is None:
        return set()
    model_idx = cols.optional("pdbx_PDB_model_num")
    codes = set()
    for tokens in iter_records(context, ATOM_SITE):
        if model_idx is not None and _to_int(tokens[model_idx], "pdbx_PDB_model_num", context) != model:
            continue
        codes.add(tokens[alt_idx])
    return codes


def read_atom_site(context: ParseContext, model: int, skip_water: bool = True) -> list[AtomLine]:
    """ATOM/HETATM records of ``model`` in file order."""
    if ATOM_SITE not in context.fields:
        raise FormatError(f"No _atom_site element in CIF file {context.path}")
    cols = _Columns(context, ATOM_SITE)
    group_idx = cols.index("group_PDB")
    id_idx = cols.index("id")
    atom_idx = cols.index("label_atom_id")
    comp_idx = cols.index("label_comp_id")
    asym_idx = cols.index("label_asym_id")
    x_idx = cols.index("Cartn_x")
    y_idx = cols.index("Cartn_y")
    z_idx = cols.index("Cartn_z")
    element_idx = cols.optional("type_symbol")
    alt_idx = cols.optional("label_alt_id")
    seq_idx = cols.optional("label_seq_id")
    ins_idx = cols.optional("pdbx_PDB_ins_code")
    occupancy_idx = cols.optional("occupancy")
    bfactor_idx = cols.optional("B_iso_or_equiv")
    auth_seq_idx = cols.optional("auth_seq_id")
    auth_asym_idx = cols.optional("auth_asym_id")
    model_idx = cols.optional("pdbx_PDB_model_num")

    atom_lines: list[AtomLine] = []
    for tokens in iter_records(context, ATOM_SITE):
        if model_idx is not None and _to_int(tokens[model_idx], "pdbx_PDB_model_num", context) != model:
            continue
        res_type = tokens[comp_idx]
        if skip_water and res_type in WATER_RESIDUES:
            continue
        res_serial = _to_int(_get(tokens, seq_idx, "."), "label_seq_id", context, default=-1)
        auth_seq = _get(tokens, auth_seq_idx, "?")
        pdb_res_serial = (
            res_serial if auth_seq in _MISSING
            else _to_int(auth_seq, "auth_seq_id", context)
        )
        atom_lines.append(AtomLine(
            serial=_to_int(tokens[id_idx], "id", context),
            atom_name=tokens[atom_idx],
            res_type=res_type,
            pdb_chain_code=_opt(_get(tokens, auth_asym_idx, "?"), tokens[asym_idx]),
            pdb_res_serial=pdb_res_serial,
            x=_to_float(tokens[x_idx], "Cartn_x", context),
            y=_to_float(tokens[y_idx], "Cartn_y", context),
            z=_to_float(tokens[z_idx], "Cartn_z", context),
            element=_opt(_get(tokens, element_idx, "?"), ""),
            chain_code=tokens[asym_idx],
            res_serial=res_serial,
            ins_code=_opt(_get(tokens, ins_idx, "?"), NO_INS_CODE),
            occupancy=_to_float(_get(tokens, occupancy_idx, "?"), "occupancy", context, default=1.0),
            b_factor=_to_float(_get(tokens, bfactor_idx, "?"), "B_iso_or_equiv", context, default=0.0),
            alt_code=_opt(_get(tokens, alt_idx, "."), DEFAULT_ALT_CODE),
            is_het_atm=tokens[group_idx] == "HETATM",
        ))
    return atom_lines


def read_poly_seq(context: ParseContext) -> list[PolySeqLine]:
    if PDBX_POLY_SEQ_SCHEME not in context.fields:
        return []
    cols = _Columns(context, PDBX_POLY_SEQ_SCHEME)
    asym_idx = cols.index("asym_id")
    seq_idx = cols.index("seq_id")
    mon_idx = cols.index("mon_id")
    pdb_seq_idx = cols.index("pdb_seq_num")
    strand_idx = cols.index("pdb_strand_id")
    ins_idx = cols.optional("pdb_ins_code")

    lines = []
    for tokens in iter_records(context, PDBX_POLY_SEQ_SCHEME):
        lines.append(PolySeqLine(
            chain_code=tokens[asym_idx],
            res_serial=_to_int(tokens[seq_idx], "seq_id", context),
            res_type=tokens[mon_idx],
            pdb_res_serial=tokens[pdb_seq_idx],
            pdb_chain_code=tokens[strand_idx],
            ins_code=_opt(_get(tokens, ins_idx, "."), NO_INS_CODE),
        ))
    return lines


def _helix_or_turn(conf_id: str) -> Optional[str]:
    if conf_id.startswith("H"):
        return "HELIX"
    if conf_id.startswith("T"):
        return "TURN"
    return None


def read_sec_structure(context: ParseContext) -> list[SecStructureLine]:
    """Helices and turns from _struct_conf, strands from _struct_sheet_range."""
    lines: list[SecStructureLine] = []

    if STRUCT_CONF in context.fields:
        cols = _Columns(context, STRUCT_CONF)
        id_idx = cols.index("id")
        beg_asym_idx = cols.index("beg_label_asym_id")
        beg_seq_idx = cols.index("beg_label_seq_id")
        end_seq_idx = cols.index("end_label_seq_id")
        end_asym_idx = cols.optional("end_label_asym_id")
        for tokens in iter_records(context, STRUCT_CONF):
            conf_id = tokens[id_idx]
            kind = _helix_or_turn(conf_id)
            if kind is None:
                logger.debug("Skipping secondary structure element %s in %s", conf_id, context.path)
                continue
            m = _SS_ID_RE.match(conf_id)
            serial = int(m.group(2)) if m else 0
            lines.append(SecStructureLine(
                kind=kind,
                beg_chain_code=tokens[beg_asym_idx],
                end_chain_code=_get(tokens, end_asym_idx, tokens[beg_asym_idx]),
                beg=tokens[beg_seq_idx],
                end=tokens[end_seq_idx],
                serial=serial,
                ss_id=f"{m.group(1)}{m.group(2)}" if m else "Unknown",
            ))

    if STRUCT_SHEET_RANGE in context.fields:
        cols = _Columns(context, STRUCT_SHEET_RANGE)
        sheet_idx = cols.index("sheet_id")
        id_idx = cols.index("id")
        beg_asym_idx = cols.index("beg_label_asym_id")
        beg_seq_idx = cols.index("beg_label_seq_id")
        end_seq_idx = cols.index("end_label_seq_id")
        end_asym_idx = cols.optional("end_label_asym_id")
        for tokens in iter_records(context, STRUCT_SHEET_RANGE):
            strand = _to_int(tokens[id_idx], "struct_sheet_range.id", context)
            sheet_id = tokens[sheet_idx]
            lines.append(SecStructureLine(
                kind="SHEET",
                beg_chain_code=tokens[beg_asym_idx],
                end_chain_code=_get(tokens, end_asym_idx, tokens[beg_asym_idx]),
                beg=tokens[beg_seq_idx],
                end=tokens[end_seq_idx],
                serial=strand,
                sheet_id=sheet_id,
                ss_id=f"S{sheet_id}{strand}",
            ))

    return lines


def _seqres_from_poly_seq(poly_seq_lines: list[PolySeqLine]) -> dict[str, list[str]]:
    seqres: dict[str, list[str]] = {}
    for p in poly_seq_lines:
        seqres.setdefault(p.pdb_chain_code, []).append(p.res_type)
    return seqres


# ======================================================================
# Reader
# ======================================================================

class CIFReader(StructureReader):
    """Read mmCIF files (.cif, .cif.gz)."""

    format_name = "mmcif"

    def read(self, path: Path, model: int) -> ReadResult:
        settings = load_settings()
        with open_binary(path) as handle:
            context = ParseContext(path=path, handle=handle, fields=index_fields(handle, source=str(path)))
            entry_id = read_entry_id(context)
            alt_codes = read_alt_codes(context, model)
            atom_lines = read_atom_site(context, model, skip_water=settings.skip_water)
            poly_seq_lines = read_poly_seq(context)
            sec_structure_lines = read_sec_structure(context)

        return ReadResult(
            metadata=StructureMetadata(entry_id=entry_id, format=self.format_name),
            atom_lines=atom_lines,
            alt_codes=alt_codes,
            labelled=True,
            poly_seq_lines=poly_seq_lines,
            sec_structure_lines=sec_structure_lines,
            seqres=_seqres_from_poly_seq(poly_seq_lines),
        )

    def models(self, path: str | Path) -> list[int]:
        path = Path(path)
        with open_binary(path) as handle:
            context = ParseContext(path=path, handle=handle, fields=index_fields(handle, source=str(path)))
            return read_model_serials(context)

    @staticmethod
    def extensions() -> list[str]:
        return [".cif", ".cif.gz", ".mmcif"]
