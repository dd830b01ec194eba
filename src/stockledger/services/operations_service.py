from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthReport:
    sqlite_integrity: str
    db_size_bytes: int
    drifted_products: int
    generated_at: str

    @property
    def healthy(self) -> bool:
        return self.sqlite_integrity == "ok" and self.drifted_products == 0


class OperationsService:
    def __init__(self, repo, db_path: Path | str):
        self.repo = repo
        self.db_path = Path(db_path)

    def run_health_check(self) -> HealthReport:
        integrity = self.repo.integrity_check()
        drift = self.repo.stock_drift()
        size = self.db_path.stat().st_size if self.db_path.exists() else 0
        report = HealthReport(
            sqlite_integrity=integrity,
            db_size_bytes=size,
            drifted_products=len(drift),
            generated_at=datetime.now().isoformat(timespec="seconds"),
        )
        if not report.healthy:
            log.warning("health_check_failed integrity=%s drifted=%s", integrity, len(drift))
        return report
