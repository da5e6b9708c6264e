"""Tests for PDBFormatReader and the fixed-column line parsers."""

import gzip
import logging
from pathlib import Path

import pytest

from molparse.core.errors import ChainNotFoundError, FormatError, StructureIOError
from molparse.parsers.base import Structure
from molparse.parsers.pdb_format import (
    PDBFormatReader,
    parse_atom_line,
    parse_helix_line,
    parse_seqres_line,
    parse_sheet_line,
    parse_turn_line,
)

FIXTURES = Path(__file__).resolve().parent / "fixtures"


def _atom_line(record: str, serial: int, name: str, res: str, chain: str, resseq: int,
               x: float = 1.0, y: float = 2.0, z: float = 3.0,
               alt: str = " ", icode: str = " ", element: str = "C") -> str:
    return (
        f"{record:<6}{serial:>5} {name:<4}{alt}{res:>3} {chain}{resseq:>4}{icode}   "
        f"{x:>8.3f}{y:>8.3f}{z:>8.3f}{1.0:>6.2f}{20.0:>6.2f}          {element:>2}"
    )


def _write_pdb(tmp_path: Path, lines: list[str], name: str = "test.pdb") -> Path:
    p = tmp_path / name
    p.write_text("\n".join(lines) + "\n")
    return p


@pytest.fixture
def sample() -> Structure:
    return PDBFormatReader().parse(FIXTURES / "sample.pdb")


# -- Sample file --------------------------------------------------------------


class TestSamplePDB:
    def test_entry_id(self, sample: Structure):
        assert sample.entry_id == "1xyz"
        assert sample.metadata.format == "pdb"
        assert sample.metadata.terminator_seen

    def test_atoms_in_file_order(self, sample: Structure):
        assert [a.serial for a in sample.atom_lines] == [1, 2, 3, 4, 7, 8, 10]
        assert sample.alt_loc == "A"

    def test_chain_groups(self, sample: Structure):
        assert sample.chain_codes == ["A", "B", "C"]
        assert [g.pdb_chain_code for g in sample.chain_groups] == ["A", "B", "A"]
        assert [g.is_polymer for g in sample.chain_groups] == [True, True, False]
        assert sample.pdb_chain_code_to_chain_code == {"A": "A", "B": "B"}

    def test_het_after_ter_is_out_of_polymer(self, sample: Structure):
        zinc = sample.get_chain_group("C").atom_lines[0]
        assert zinc.is_het_atm
        assert zinc.out_of_poly_chain
        assert zinc.element == "ZN"
        assert zinc.pdb_res_serial == 101

    def test_sequences(self, sample: Structure):
        assert sample.sequences == {"A": "MGS", "B": "AG"}
        assert sample.observed_sequences == {"A": "MGS", "B": "AG"}

    def test_sec_structure(self, sample: Structure):
        lines = sample.sec_structure_lines
        assert [s.ss_id for s in lines] == ["H1", "SA1"]
        assert (lines[1].beg_chain_code, lines[1].beg, lines[1].end) == ("B", "1", "2")

    def test_models(self):
        assert PDBFormatReader().models(FIXTURES / "sample.pdb") == [1, 2]

    def test_second_model(self):
        s = PDBFormatReader().parse(FIXTURES / "sample.pdb", model=2)
        assert s.num_atoms == 2
        assert s.chain_codes == ["A"]
        assert s.atom_lines[0].x == pytest.approx(10.1)

    def test_missing_model(self):
        with pytest.raises(ChainNotFoundError):
            PDBFormatReader().parse(FIXTURES / "sample.pdb", model=5)

    def test_select_chain(self):
        s = PDBFormatReader().parse(FIXTURES / "sample.pdb", pdb_chain_code="B")
        assert s.chain_codes == ["B"]
        assert s.sequences == {"B": "AG"}
        assert [l.ss_id for l in s.sec_structure_lines] == ["SA1"]

    def test_select_chain_keeps_ligands(self):
        s = PDBFormatReader().parse(FIXTURES / "sample.pdb", pdb_chain_code="A")
        assert s.chain_codes == ["A", "C"]
        assert s.pdb_chain_code_to_chain_code == {"A": "A"}

    def test_keep_water(self, monkeypatch):
        monkeypatch.setenv("MOLPARSE_SKIP_WATER", "false")
        s = PDBFormatReader().parse(FIXTURES / "sample.pdb")
        assert s.num_atoms == 8
        assert s.get_chain_group("C").num_atoms == 2


# -- Line parsers ------------------------------------------------------------


class TestLineParsers:
    def test_atom_line_columns(self):
        line = "ATOM      4 CA  ASER A   3      13.000  13.000  14.000  0.60 22.00           C"
        a = parse_atom_line(line)
        assert a.serial == 4
        assert a.atom_name == "CA"
        assert a.alt_code == "A"
        assert a.res_type == "SER"
        assert a.pdb_chain_code == "A"
        assert a.pdb_res_serial == 3
        assert a.ins_code == "."
        assert a.coords == (13.0, 13.0, 14.0)
        assert a.occupancy == pytest.approx(0.6)
        assert a.b_factor == pytest.approx(22.0)
        assert a.element == "C"
        assert not a.is_het_atm

    def test_insertion_code(self):
        a = parse_atom_line(_atom_line("ATOM", 5, "CA", "GLY", "A", 52, icode="B"))
        assert a.pdb_res_serial == 52
        assert a.ins_code == "B"
        assert a.pdb_res_serial_with_ins_code == "52B"

    def test_blank_chain(self):
        a = parse_atom_line(_atom_line("HETATM", 1, "O", "HOH", " ", 1, element="O"))
        assert a.pdb_chain_code == "NULL"
        assert a.is_het_atm

    def test_short_line_defaults(self):
        # ends right after z: no occupancy, B-factor or element
        a = parse_atom_line(_atom_line("ATOM", 1, "CA", "ALA", "A", 1)[:54])
        assert a.occupancy == 1.0
        assert a.b_factor == 0.0
        assert a.element == ""

    def test_seqres(self):
        chain, residues = parse_seqres_line("SEQRES   1 A    3  MET GLY SER")
        assert chain == "A"
        assert residues == ["MET", "GLY", "SER"]

    def test_seqres_blank_chain(self):
        chain, residues = parse_seqres_line("SEQRES   1      2  ALA GLY")
        assert chain == "NULL"
        assert residues == ["ALA", "GLY"]

    def test_helix(self):
        h = parse_helix_line("HELIX    1   1 MET A    1  SER A    3 ")
        assert (h.kind, h.serial, h.ss_id) == ("HELIX", 1, "H1")
        assert (h.beg_chain_code, h.beg, h.end_chain_code, h.end) == ("A", "1", "A", "3")

    def test_sheet(self):
        s = parse_sheet_line("SHEET    2   B 2 ALA C  10  GLY C  15 ")
        assert (s.kind, s.serial, s.sheet_id, s.ss_id) == ("SHEET", 2, "B", "SB2")
        assert (s.beg_chain_code, s.beg, s.end_chain_code, s.end) == ("C", "10", "C", "15")

    def test_turn(self):
        t = parse_turn_line("TURN     1 1   GLY A   2  SER A   3 ")
        assert (t.kind, t.serial, t.ss_id) == ("TURN", 1, "T1")
        assert (t.beg_chain_code, t.beg, t.end_chain_code, t.end) == ("A", "2", "A", "3")


# -- Chain assignment and checks ---------------------------------------------


class TestChainAssignment:
    def test_no_ter_splits_ligand(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1),
            _atom_line("ATOM", 2, "CA", "GLY", "A", 2),
            _atom_line("HETATM", 3, "FE", "HEM", "A", 3, element="FE"),
        ])
        s = PDBFormatReader().parse(p)
        assert not s.metadata.terminator_seen
        assert s.chain_codes == ["A", "B"]
        assert s.get_chain_group("B").is_non_poly
        assert s.pdb_chain_code_to_chain_code == {"A": "A"}

    def test_no_ter_keeps_modified_residue(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1),
            _atom_line("HETATM", 2, "CA", "MSE", "A", 2),
            _atom_line("ATOM", 3, "CA", "GLY", "A", 3),
        ])
        s = PDBFormatReader().parse(p)
        assert s.num_chains == 1
        assert s.polymer_groups[0].sequence == "AXG"

    def test_no_ter_logs_warning(self, tmp_path: Path, caplog):
        p = _write_pdb(tmp_path, [_atom_line("ATOM", 1, "CA", "ALA", "A", 1)])
        with caplog.at_level(logging.WARNING):
            PDBFormatReader().parse(p)
        assert "No TER records" in caplog.text

    def test_bare_ter(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1),
            "TER",
            _atom_line("HETATM", 2, "C1", "LIG", "A", 2),
        ])
        s = PDBFormatReader().parse(p)
        assert s.metadata.terminator_seen
        assert s.chain_codes == ["A", "B"]

    def test_duplicate_serials(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1),
            _atom_line("ATOM", 1, "CA", "GLY", "A", 2),
            "TER       2      GLY A   2",
        ])
        with pytest.raises(FormatError, match="ascending order in chain A"):
            PDBFormatReader().parse(p)

    def test_polymer_chain_assigned_twice(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1),
            _atom_line("ATOM", 2, "CA", "ALA", "B", 1),
            _atom_line("ATOM", 3, "CA", "GLY", "A", 2),
            "TER       4      GLY A   2",
        ])
        with pytest.raises(FormatError, match="assigned twice"):
            PDBFormatReader().parse(p)

    def test_insertion_codes(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1),
            _atom_line("ATOM", 2, "CA", "GLY", "A", 1, icode="A"),
            _atom_line("ATOM", 3, "CA", "SER", "A", 2),
            "TER       4      SER A   2",
        ])
        s = PDBFormatReader().parse(p)
        assert s.num_ins_codes("A") == 1
        assert s.polymer_groups[0].sequence == "AGS"
        with pytest.raises(FormatError, match="Insertion codes found"):
            PDBFormatReader().parse(p, allow_ins_codes=False)


class TestFormatChecks:
    def test_short_atom_line(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1),
            "ATOM      2 CA   GLY A   2      10.000",
        ])
        with pytest.raises(FormatError, match="at line 2"):
            PDBFormatReader().parse(p)

    def test_bad_number(self, tmp_path: Path):
        line = _atom_line("ATOM", 1, "CA", "ALA", "A", 1)
        bad = line[:30] + "   xx.yy" + line[38:]
        p = _write_pdb(tmp_path, [bad])
        with pytest.raises(FormatError, match="Wrong number format in PDB file .* at line 1"):
            PDBFormatReader().parse(p)

    def test_seqres_too_short(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            "SEQRES   1 A    1  ALA",
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1),
            _atom_line("ATOM", 2, "CA", "GLY", "A", 2),
            "TER       3      GLY A   2",
        ])
        with pytest.raises(FormatError, match="longer than the SEQRES"):
            PDBFormatReader().parse(p)

    def test_seqres_check_disabled(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("MOLPARSE_CHECK_SEQRES", "false")
        p = _write_pdb(tmp_path, [
            "SEQRES   1 A    1  ALA",
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1),
            _atom_line("ATOM", 2, "CA", "GLY", "A", 2),
            "TER       3      GLY A   2",
        ])
        assert PDBFormatReader().parse(p).num_atoms == 2

    def test_seqres_out_of_order_warns(self, tmp_path: Path, caplog):
        p = _write_pdb(tmp_path, [
            "SEQRES   1 A    2  GLY ALA",
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1),
            _atom_line("ATOM", 2, "CA", "GLY", "A", 2),
            "TER       3      GLY A   2",
        ])
        with caplog.at_level(logging.WARNING):
            s = PDBFormatReader().parse(p)
        assert s.num_atoms == 2
        assert "don't follow SEQRES order" in caplog.text

    def test_no_header(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [_atom_line("ATOM", 1, "CA", "ALA", "A", 1), "TER"])
        assert PDBFormatReader().parse(p).entry_id == ""

    def test_extensions(self):
        exts = PDBFormatReader.extensions()
        assert ".pdb" in exts
        assert ".ent.gz" in exts

    def test_sec_structure_across_chains(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            "HELIX    1   1 MET A    1  SER B    3 ",
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1),
            "TER",
        ])
        with pytest.raises(
            FormatError, match="HELIX element beg and end chain id differ for ss element with serial 1"
        ):
            PDBFormatReader().parse(p)

    def test_duplicate_residue_number(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1),
            _atom_line("ATOM", 2, "CA", "GLY", "A", 2),
            _atom_line("ATOM", 3, "CB", "ALA", "A", 1),
            "TER       4      ALA A   1",
        ])
        with pytest.raises(FormatError, match="Duplicate residue number for residue ALA 1 in chain A"):
            PDBFormatReader().parse(p)

    def test_duplicate_residue_checked_without_seqres_check(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("MOLPARSE_CHECK_SEQRES", "false")
        p = _write_pdb(tmp_path, [
            "SEQRES   1 A    2  ALA GLY",
            _atom_line("ATOM", 1, "CA", "ALA", "A", 5, icode="A"),
            _atom_line("ATOM", 2, "CA", "GLY", "A", 6),
            _atom_line("ATOM", 3, "CA", "ALA", "A", 5, icode="A"),
            "TER",
        ])
        with pytest.raises(FormatError, match="Duplicate residue number for residue ALA 5A"):
            PDBFormatReader().parse(p)

    def test_atoms_of_one_residue_together(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            _atom_line("ATOM", 1, "N", "ALA", "A", 1),
            _atom_line("ATOM", 2, "CA", "ALA", "A", 1),
            _atom_line("ATOM", 3, "CA", "GLY", "A", 2),
            "TER",
            _atom_line("HETATM", 4, "C1", "LIG", "A", 1),
            _atom_line("HETATM", 5, "C2", "LIG", "A", 1),
        ])
        s = PDBFormatReader().parse(p)
        assert s.num_atoms == 5
        assert s.polymer_groups[0].residues == [("1", "ALA"), ("2", "GLY")]


# -- CASP TS predictions -----------------------------------------------------


class TestCaspPrediction:
    def test_target_and_origin_atoms(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            "PFRMAT TS",
            "TARGET T0123",
            "AUTHOR 1234-5678-9000",
            "MODEL  1",
            "PARENT N/A",
            _atom_line("ATOM", 1, "N", "MET", "A", 1),
            _atom_line("ATOM", 2, "CA", "MET", "A", 1, x=0.0, y=0.0, z=0.0),
            _atom_line("ATOM", 3, "C", "MET", "A", 1, x=0.0, y=0.0, z=0.0),
            _atom_line("ATOM", 4, "CA", "GLY", "A", 2, x=4.0, y=5.0, z=6.0),
            "TER",
            "END",
        ])
        s = PDBFormatReader().parse(p)
        assert s.metadata.casp_target == 123
        assert s.to_dict()["casp_target"] == 123
        assert s.entry_id == ""
        assert [a.serial for a in s.atom_lines] == [1, 2, 4]

    def test_lower_case_target(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            "PFRMAT TS",
            "TARGET t0042",
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1),
            "TER",
        ])
        assert PDBFormatReader().parse(p).metadata.casp_target == 42

    def test_origin_atoms_kept_outside_casp(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1, x=0.0, y=0.0, z=0.0),
            _atom_line("ATOM", 2, "CA", "GLY", "A", 2, x=0.0, y=0.0, z=0.0),
            "TER",
        ])
        s = PDBFormatReader().parse(p)
        assert s.num_atoms == 2
        assert s.metadata.casp_target is None

    def test_missing_target_line(self, tmp_path: Path):
        p = _write_pdb(tmp_path, [
            "PFRMAT TS",
            "AUTHOR 1234-5678-9000",
            _atom_line("ATOM", 1, "CA", "ALA", "A", 1),
            "TER",
        ])
        with pytest.raises(FormatError, match="does not have a TARGET line"):
            PDBFormatReader().parse(p)

    def test_empty_after_pfrmat(self, tmp_path: Path):
        p = _write_pdb(tmp_path, ["PFRMAT TS"])
        with pytest.raises(FormatError, match="is empty after the PFRMAT line"):
            PDBFormatReader().parse(p)


# -- Compressed files --------------------------------------------------------


class TestCompressedPDB:
    def test_pdb_gz(self, tmp_path: Path):
        p = tmp_path / "1xyz.pdb.gz"
        p.write_bytes(gzip.compress((FIXTURES / "sample.pdb").read_bytes()))
        assert PDBFormatReader().parse(p).entry_id == "1xyz"

    def test_truncated_archive(self, tmp_path: Path):
        data = gzip.compress((FIXTURES / "sample.pdb").read_bytes())
        p = tmp_path / "1xyz.pdb.gz"
        p.write_bytes(data[:15])
        with pytest.raises(StructureIOError, match="Could not read structure file"):
            PDBFormatReader().parse(p)

    def test_corrupt_archive(self, tmp_path: Path):
        data = gzip.compress((FIXTURES / "sample.pdb").read_bytes())
        p = tmp_path / "1xyz.pdb.gz"
        p.write_bytes(data[:10] + b"\xff" * 40)
        with pytest.raises(StructureIOError):
            PDBFormatReader().parse(p)

    def test_truncated_archive_models(self, tmp_path: Path):
        data = gzip.compress((FIXTURES / "sample.pdb").read_bytes())
        p = tmp_path / "1xyz.pdb.gz"
        p.write_bytes(data[:15])
        with pytest.raises(StructureIOError):
            PDBFormatReader().models(p)
