"""Residue vocabularies shared by the readers and the chain partitioner."""

from __future__ import annotations

THREE_TO_ONE = {
    "ALA": "A", "ARG": "R", "ASN": "N", "ASP": "D", "CYS": "C",
    "GLN": "Q", "GLU": "E", "GLY": "G", "HIS": "H", "ILE": "I",
    "LEU": "L", "LYS": "K", "MET": "M", "PHE": "F", "PRO": "P",
    "SER": "S", "THR": "T", "TRP": "W", "TYR": "Y", "VAL": "V",
}

STANDARD_AMINO_ACIDS = frozenset(THREE_TO_ONE)

# Ribonucleotides and deoxyribonucleotides, as written in residue name columns
NUCLEOTIDE_TO_ONE = {
    "A": "A", "C": "C", "G": "G", "U": "U", "T": "T",
    "DA": "A", "DC": "C", "DG": "G", "DU": "U", "DT": "T",
}

STANDARD_NUCLEOTIDES = frozenset(NUCLEOTIDE_TO_ONE)

UNKNOWN_RESIDUE = "UNK"

WATER_RESIDUES = frozenset({"HOH", "DOD"})

# HETATM residues known to sit inside a peptide backbone
BACKBONE_HET_RESIDUES = frozenset({
    "ACE", "NH2", "SUI", "PYR", "GL3", "MSE", "SNN", "CRO",
    "AKZ", "GLK", "LLP", "NLE", "SMC", "AIB", "ABA", "L2O",
})


def is_standard_amino_acid(res_type: str) -> bool:
    return res_type in STANDARD_AMINO_ACIDS


def is_standard_nucleotide(res_type: str) -> bool:
    return res_type.strip() in STANDARD_NUCLEOTIDES


def is_polymer_residue(res_type: str) -> bool:
    """Residue types that make a group of ATOM records a polymer chain."""
    return (
        is_standard_amino_acid(res_type)
        or is_standard_nucleotide(res_type)
        or res_type == UNKNOWN_RESIDUE
    )


def is_peptide_linked(res_type: str) -> bool:
    """Guess whether a residue is covalently part of a peptide chain.

    Only the residue type is looked at: standard amino acids and a short
    list of modified residues commonly found inside a backbone count as
    linked. Anything else (ligands, ions, unknown het groups) does not.
    The list is incomplete, so a polymer starting with an unlisted
    modified residue written as HETATM will be split in two when a file
    has no TER records.
    """
    return is_standard_amino_acid(res_type) or res_type in BACKBONE_HET_RESIDUES


def one_letter_code(res_type: str) -> str:
    """One letter code for amino acids and nucleotides, 'X' for anything else."""
    if res_type in THREE_TO_ONE:
        return THREE_TO_ONE[res_type]
    return NUCLEOTIDE_TO_ONE.get(res_type.strip(), "X")
