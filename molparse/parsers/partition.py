"""Chain partitioner: split an ordered run of atom lines into chain groups.

Input order is never changed. Each atom line leaves this module annotated
exactly once (chain code and polymer flag) as a new frozen record.

Three strategies, chosen once per file:

    LABELLED       mmCIF: chain codes are in the file, a new group starts
                   whenever the label chain code changes.
    TERMINATED     PDB with TER records: a new group starts when the author
                   chain code changes or a TER record leaves the polymer.
    UNTERMINATED   PDB without any TER record: as TERMINATED, plus a new
                   group where ATOM records are followed by a HETATM
                   residue that does not look peptide-linked.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from molparse.core.errors import FormatError
from molparse.core.residues import is_polymer_residue
from molparse.parsers.base import DEFAULT_ALT_CODE, AtomLine, ChainGroup

FIRST_CHAIN_CODE = "A"


class PartitionStrategy(str, Enum):
    LABELLED = "labelled"
    TERMINATED = "terminated"
    UNTERMINATED = "unterminated"

    @classmethod
    def choose(cls, labelled: bool, terminator_seen: bool) -> "PartitionStrategy":
        if labelled:
            return cls.LABELLED
        return cls.TERMINATED if terminator_seen else cls.UNTERMINATED


@dataclass(frozen=True)
class ChainPartition:
    groups: list[ChainGroup] = field(default_factory=list)
    pdb_chain_code_to_chain_code: dict[str, str] = field(default_factory=dict)

    @property
    def atom_lines(self) -> list[AtomLine]:
        return [a for g in self.groups for a in g.atom_lines]


# ======================================================================
# Chain codes
# ======================================================================

def _next_char(c: str) -> str:
    return "A" if c == "Z" else chr(ord(c) + 1)


def next_chain_code(chain_code: str) -> str:
    """Next code in A..Z, AA, BA, ..., ZA, AB, ..., ZZ, AAA, BAA, ...

    The first character turns fastest, carrying into the next one when it
    wraps back to 'A'. After the last code of a length comes the first code
    of the next length.
    """
    if not chain_code:
        return FIRST_CHAIN_CODE
    if set(chain_code) == {"Z"}:
        return "A" * (len(chain_code) + 1)
    chars = list(chain_code)
    for i, c in enumerate(chars):
        chars[i] = _next_char(c)
        if chars[i] != "A":
            break
    return "".join(chars)


# ======================================================================
# Alternate locations
# ======================================================================

def resolve_alt_loc(codes: Iterable[str]) -> str:
    """Smallest non-default alt-loc code, or the default code if there is none."""
    observed = sorted(c for c in codes if c and c != DEFAULT_ALT_CODE)
    return observed[0] if observed else DEFAULT_ALT_CODE


def filter_alt_loc(atom_lines: Iterable[AtomLine], alt_loc: str) -> list[AtomLine]:
    """Keep atoms at the default location and at ``alt_loc``."""
    if alt_loc == DEFAULT_ALT_CODE:
        return list(atom_lines)
    return [a for a in atom_lines if a.alt_code in (DEFAULT_ALT_CODE, alt_loc)]


# ======================================================================
# Partitioning
# ======================================================================

def _starts_new_group(
    atom: AtomLine,
    previous: Optional[AtomLine],
    strategy: PartitionStrategy,
) -> bool:
    if previous is None:
        return True
    if strategy is PartitionStrategy.LABELLED:
        return atom.chain_code != previous.chain_code
    if atom.pdb_chain_code != previous.pdb_chain_code:
        return True
    if not previous.out_of_poly_chain and atom.out_of_poly_chain:
        return True
    if strategy is PartitionStrategy.UNTERMINATED:
        return not previous.is_het_atm and atom.is_het_atm and not atom.is_peptide_linked
    return False


def _check_ascending_serials(chain_code: str, group: list[AtomLine]) -> None:
    last_serial = None
    for a in group:
        if last_serial is not None and a.serial <= last_serial:
            raise FormatError(
                f"Atom serials do not occur in ascending order in chain "
                f"{chain_code} for atom {a.serial}"
            )
        last_serial = a.serial


def _is_polymer(group: list[AtomLine]) -> bool:
    # old writers tag ligands as ATOM, so the residue type is checked too
    return any(not a.is_het_atm and is_polymer_residue(a.res_type) for a in group)


def partition_atom_lines(
    atom_lines: Iterable[AtomLine],
    strategy: PartitionStrategy,
) -> ChainPartition:
    """Group ``atom_lines`` into chains and classify each as polymer or not.

    Raises FormatError when serials are not strictly ascending within a
    group, when an author chain code ends up owning two polymer groups, or
    when a file-assigned chain code comes back after another chain.
    """
    runs: list[tuple[str, list[AtomLine]]] = []
    chain_code = FIRST_CHAIN_CODE
    labels_seen: set[str] = set()
    previous: Optional[AtomLine] = None

    for atom in atom_lines:
        if _starts_new_group(atom, previous, strategy):
            if strategy is PartitionStrategy.LABELLED:
                code = atom.chain_code
                if code in labels_seen:
                    raise FormatError(
                        f"Chain code {code} appears again after other chains, "
                        f"at atom {atom.serial}"
                    )
                labels_seen.add(code)
            else:
                code = chain_code
                chain_code = next_chain_code(chain_code)
            runs.append((code, []))
        runs[-1][1].append(atom)
        previous = atom

    groups: list[ChainGroup] = []
    mapping: dict[str, str] = {}
    for code, run in runs:
        _check_ascending_serials(code, run)
        is_non_poly = not _is_polymer(run)
        pdb_chain_code = run[0].pdb_chain_code
        if not is_non_poly:
            if pdb_chain_code in mapping:
                raise FormatError(
                    f"Polymer PDB chain code {pdb_chain_code} assigned twice, to chain codes: "
                    f"{code} and {mapping[pdb_chain_code]}. Most likely there is something "
                    f"wrong with this file: check that TER records are correctly placed "
                    f"and that all chains have a unique chain code"
                )
            mapping[pdb_chain_code] = code
        annotated = tuple(
            dataclasses.replace(a, chain_code=code, is_non_poly=is_non_poly) for a in run
        )
        groups.append(ChainGroup(
            chain_code=code,
            pdb_chain_code=pdb_chain_code,
            atom_lines=annotated,
            is_non_poly=is_non_poly,
        ))

    return ChainPartition(groups=groups, pdb_chain_code_to_chain_code=mapping)
