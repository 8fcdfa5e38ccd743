"""Runtime configuration and logging setup.

Settings come from environment variables with project-relative
defaults. Library modules only emit through ``loguru.logger``; the CLI
and the MCP server install the sink via ``configure_logging``.
OPENING_DRILL_VALIDATE is read per call by the MCP response validator.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DATA_DIR = _PROJECT_ROOT / "data"


@dataclass(frozen=True)
class Settings:
    """Runtime settings with environment overrides."""

    db_path: Path = _DATA_DIR / "repertoire.db"
    log_level: str = "WARNING"

    @classmethod
    def load(cls) -> Settings:
        """Construct settings from environment variables when available."""
        return cls(
            db_path=Path(os.environ.get("OPENING_DRILL_DB", str(cls.db_path))),
            log_level=os.environ.get("OPENING_DRILL_LOG_LEVEL", cls.log_level).upper(),
        )


def configure_logging(level: str = "WARNING") -> None:
    """Route loguru output to stderr; stdout carries JSON and MCP stdio."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )
