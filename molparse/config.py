from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_env_path = Path(__file__).resolve().parents[1] / ".env"
if _env_path.is_file():
    load_dotenv(_env_path, override=False)

_TRUE_VALUES = ("true", "1", "yes")


@dataclass
class MolparseSettings:
    """Configuration loaded from MOLPARSE_* environment variables.

    Parsing behaviour:
      MOLPARSE_DEFAULT_MODEL=1
      MOLPARSE_SKIP_WATER=true
      MOLPARSE_CHECK_SEQRES=true

    Logging:
      MOLPARSE_LOG_LEVEL=INFO
    """

    # Model read when the caller does not ask for one
    default_model: int = 1

    # Drop HOH/DOD records while reading
    skip_water: bool = True

    # Compare observed PDB residues against SEQRES
    check_seqres: bool = True

    log_level: str = "INFO"


def load_settings() -> MolparseSettings:
    """Load settings from environment variables."""
    return MolparseSettings(
        default_model=int(os.environ.get("MOLPARSE_DEFAULT_MODEL", "1")),
        skip_water=os.environ.get("MOLPARSE_SKIP_WATER", "true").lower() in _TRUE_VALUES,
        check_seqres=os.environ.get("MOLPARSE_CHECK_SEQRES", "true").lower() in _TRUE_VALUES,
        log_level=os.environ.get("MOLPARSE_LOG_LEVEL", "INFO").upper(),
    )
