from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class LedgerSettings:
    max_attempts: int = 5
    retry_backoff_seconds: float = 0.05
    busy_timeout_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must be >= 0")
        if self.busy_timeout_seconds <= 0:
            raise ValueError("busy_timeout_seconds must be > 0")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "LedgerSettings":
        env = os.environ if env is None else env
        defaults = cls()
        try:
            return cls(
                max_attempts=int(env.get("STOCKLEDGER_MAX_ATTEMPTS", defaults.max_attempts)),
                retry_backoff_seconds=float(env.get("STOCKLEDGER_RETRY_BACKOFF", defaults.retry_backoff_seconds)),
                busy_timeout_seconds=float(env.get("STOCKLEDGER_BUSY_TIMEOUT", defaults.busy_timeout_seconds)),
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid ledger settings: {e}") from e


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "StockLedger") -> AppPaths:
    override = os.environ.get("STOCKLEDGER_HOME", "").strip()
    if override:
        base = Path(override)
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "stockledger.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)
