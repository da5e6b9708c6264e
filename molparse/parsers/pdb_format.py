"""Legacy PDB format reader: fixed-column records, one line at a time.

Reads .pdb, .ent and .ent.gz files. Columns are 0-based slices of the line
as laid out by the PDB format guide (e.g. x is ``line[30:38]``).

Single Responsibility: only handles PDB format; chains are assigned by the
shared pipeline in base.py, using the TER records seen here.
"""

from __future__ import annotations

import re
from pathlib import Path

from molparse.config import load_settings
from molparse.core.errors import FormatError
from molparse.core.logging_utils import get_logger
from molparse.core.residues import WATER_RESIDUES, one_letter_code
from molparse.parsers.base import (
    DEFAULT_ALT_CODE,
    NO_INS_CODE,
    NULL_CHAIN_CODE,
    AtomLine,
    ChainGroup,
    ReadResult,
    SecStructureLine,
    StructureMetadata,
    StructureReader,
    open_text,
)

logger = get_logger(__name__)

DEFAULT_MODEL = 1

_HEADER_RE = re.compile(r"^HEADER.{56}(\d\w{3})")
# CASP TS predictions start with PFRMAT and name their target on line 2
_PFRMAT_RE = re.compile(r"^PFRMAT\s+TS")
_TARGET_RE = re.compile(r"^TARGET\s+[Tt](\d+)")
# lenient: CASP files don't keep MODEL serials in columns 11-14
_MODEL_RE = re.compile(r"^MODEL\s+(\d+)")
_ATOM_RE = re.compile(r"^(ATOM|HETATM)")

# the shortest ATOM/HETATM line accepted ends with the z coordinate
_MIN_ATOM_LINE_LENGTH = 54


def _chain(column: str) -> str:
    return NULL_CHAIN_CODE if column.strip() == "" else column


def _is_terminator(line: str) -> bool:
    return line == "TER" or line.startswith("TER ")


def _split_res_serial(field: str) -> tuple[int, str]:
    """'  12A' -> (12, 'A'); '  12 ' -> (12, '.')"""
    field = field.strip()
    if field and not field[-1].isdigit():
        return int(field[:-1]), field[-1]
    return int(field), NO_INS_CODE


def _element(line: str) -> str:
    if len(line) < 78:
        return ""
    element = line[76:78].strip()
    if not element or any(c.isdigit() for c in element):
        return ""
    return element


def _optional_float(line: str, start: int, end: int, default: float) -> float:
    if len(line) < end:
        return default
    value = line[start:end].strip()
    return float(value) if value else default


def parse_atom_line(line: str, out_of_poly_chain: bool = False) -> AtomLine:
    """Build an AtomLine from one ATOM/HETATM line (no length check)."""
    pdb_res_serial, ins_code = _split_res_serial(line[22:27])
    alt_code = line[16]
    return AtomLine(
        serial=int(line[6:11]),
        atom_name=line[12:16].strip(),
        res_type=line[17:20].strip(),
        pdb_chain_code=_chain(line[21]),
        pdb_res_serial=pdb_res_serial,
        ins_code=ins_code,
        x=float(line[30:38]),
        y=float(line[38:46]),
        z=float(line[46:54]),
        occupancy=_optional_float(line, 54, 60, 1.0),
        b_factor=_optional_float(line, 60, 66, 0.0),
        element=_element(line),
        alt_code=DEFAULT_ALT_CODE if alt_code == " " else alt_code,
        is_het_atm=line.startswith("HETATM"),
        out_of_poly_chain=out_of_poly_chain,
    )


def parse_seqres_line(line: str) -> tuple[str, list[str]]:
    """SEQRES line -> (chain code, residue types); up to 13 residues per line."""
    residues = []
    for i in range(19, 68, 4):
        res_type = line[i:i + 3].strip()
        if res_type:
            residues.append(res_type)
    return _chain(line[11:12]), residues


def parse_helix_line(line: str) -> SecStructureLine:
    serial = int(line[7:10])
    return SecStructureLine(
        kind="HELIX",
        beg_chain_code=_chain(line[19:20]),
        end_chain_code=_chain(line[31:32]),
        beg=line[21:26].strip(),
        end=line[33:38].strip(),
        serial=serial,
        ss_id=f"H{serial}",
    )


def parse_sheet_line(line: str) -> SecStructureLine:
    strand = int(line[7:10])
    sheet_id = line[11:14].strip()
    return SecStructureLine(
        kind="SHEET",
        beg_chain_code=_chain(line[21:22]),
        end_chain_code=_chain(line[32:33]),
        beg=line[22:27].strip(),
        end=line[33:38].strip(),
        serial=strand,
        sheet_id=sheet_id,
        ss_id=f"S{sheet_id}{strand}",
    )


def parse_turn_line(line: str) -> SecStructureLine:
    serial = int(line[7:10])
    return SecStructureLine(
        kind="TURN",
        beg_chain_code=_chain(line[19:20]),
        end_chain_code=_chain(line[30:31]),
        beg=line[20:25].strip(),
        end=line[31:36].strip(),
        serial=serial,
        ss_id=f"T{line[11:14].strip() or serial}",
    )


_SEC_STRUCTURE_PARSERS = {
    "HELIX": parse_helix_line,
    "SHEET": parse_sheet_line,
    "TURN": parse_turn_line,
}


def _is_subsequence(observed: str, full: str) -> bool:
    remaining = iter(full)
    return all(c in remaining for c in observed)


def _check_unique_residues(group: ChainGroup) -> None:
    # atoms of one residue are consecutive; a residue number seen again later is a clash
    seen: set[str] = set()
    previous = None
    for a in group.atom_lines:
        key = a.pdb_res_serial_with_ins_code
        if key == previous:
            continue
        if key in seen:
            raise FormatError(
                f"Duplicate residue number for residue {a.res_type} {key} "
                f"in chain {group.pdb_chain_code}"
            )
        seen.add(key)
        previous = key


class PDBFormatReader(StructureReader):
    """Read PDB-format files (.pdb, .ent, .ent.gz)."""

    format_name = "pdb"

    def read(self, path: Path, model: int) -> ReadResult:
        settings = load_settings()
        entry_id = ""
        atom_lines: list[AtomLine] = []
        sec_structure_lines: list[SecStructureLine] = []
        seqres: dict[str, list[str]] = {}
        current_model = DEFAULT_MODEL
        # True after a TER record, False again at the next ATOM record
        out_of_poly_chain = False
        terminator_seen = False
        is_casp_ts = False
        casp_target = None
        atom_at_origin_seen = False

        with open_text(path) as f:
            for line_number, raw in enumerate(f, start=1):
                line = raw.rstrip("\r\n")
                try:
                    if line_number == 1:
                        m = _HEADER_RE.match(line)
                        if m:
                            entry_id = m.group(1).lower()
                        elif _PFRMAT_RE.match(line):
                            is_casp_ts = True
                            continue
                    elif line_number == 2 and is_casp_ts:
                        m = _TARGET_RE.match(line)
                        if not m:
                            raise FormatError(
                                f"The CASP TS file {path} does not have a TARGET line"
                            )
                        casp_target = int(m.group(1))
                        continue

                    if line.startswith("SEQRES"):
                        chain, residues = parse_seqres_line(line)
                        seqres.setdefault(chain, []).extend(residues)
                        continue
                    record = line[:6].strip()
                    if record in _SEC_STRUCTURE_PARSERS:
                        sec_structure_lines.append(_SEC_STRUCTURE_PARSERS[record](line))
                        continue

                    m = _MODEL_RE.match(line)
                    if m:
                        current_model = int(m.group(1))
                    if current_model != model:
                        continue

                    if _is_terminator(line):
                        out_of_poly_chain = True
                        terminator_seen = True
                        continue

                    m = _ATOM_RE.match(line)
                    if not m:
                        continue
                    if len(line) < _MIN_ATOM_LINE_LENGTH:
                        raise FormatError(
                            f"ATOM/HETATM line is too short to contain the minimum fields "
                            f"required. PDB file {path} at line {line_number}"
                        )
                    if settings.skip_water and line[17:20].strip() in WATER_RESIDUES:
                        continue
                    if m.group(1) == "ATOM":
                        out_of_poly_chain = False
                    atom = parse_atom_line(line, out_of_poly_chain)
                    if is_casp_ts and atom.coords == (0.0, 0.0, 0.0):
                        # CASP TS marks unobserved atoms with (0,0,0); only the first is real
                        if atom_at_origin_seen:
                            continue
                        atom_at_origin_seen = True
                    atom_lines.append(atom)
                except FormatError:
                    raise
                except ValueError as e:
                    raise FormatError(
                        f"Wrong number format in PDB file {path} at line {line_number}. Error: {e}"
                    ) from e

        if is_casp_ts and casp_target is None:
            raise FormatError(f"The CASP TS file {path} is empty after the PFRMAT line")

        logger.debug(
            "Read %d atom lines from %s (model %d, TER records: %s)",
            len(atom_lines), path, model, terminator_seen,
        )
        return ReadResult(
            metadata=StructureMetadata(
                entry_id=entry_id, format=self.format_name, casp_target=casp_target
            ),
            atom_lines=atom_lines,
            terminator_seen=terminator_seen,
            sec_structure_lines=sec_structure_lines,
            seqres=seqres,
        )

    def validate(self, result: ReadResult, groups: list[ChainGroup]) -> None:
        """Format checks run after partitioning.

        Secondary structure elements begin and end in the same chain. Residue
        numbers do not repeat within a polymer chain. When SEQRES checking is
        on, the observed residues of each polymer chain fit in its SEQRES.
        """
        for s in result.sec_structure_lines:
            if s.beg_chain_code != s.end_chain_code:
                raise FormatError(
                    f"{s.kind} element beg and end chain id differ for ss element "
                    f"with serial {s.serial}"
                )
        for g in groups:
            if g.is_polymer:
                _check_unique_residues(g)

        if not result.seqres or not load_settings().check_seqres:
            return
        for g in groups:
            if g.is_non_poly or g.pdb_chain_code not in result.seqres:
                continue
            full = "".join(one_letter_code(r) for r in result.seqres[g.pdb_chain_code])
            observed = g.sequence
            if len(observed) > len(full):
                raise FormatError(
                    f"The sequence from ATOM lines is longer than the SEQRES sequence "
                    f"for chain {g.pdb_chain_code} ({len(observed)} > {len(full)})"
                )
            if not _is_subsequence(observed, full):
                logger.warning(
                    "Observed residues of chain %s don't follow SEQRES order", g.pdb_chain_code
                )

    def models(self, path: str | Path) -> list[int]:
        serials: set[int] = set()
        with open_text(Path(path)) as f:
            for line in f:
                m = _MODEL_RE.match(line)
                if m:
                    serials.add(int(m.group(1)))
        return sorted(serials) or [DEFAULT_MODEL]

    @staticmethod
    def extensions() -> list[str]:
        return [".pdb", ".ent", ".ent.gz", ".pdb.gz"]
