#!/usr/bin/env python
from __future__ import annotations

import json
import re
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from attendance_engine.services.schema_guard import verify_runtime_schema
from attendance_engine.settings import get_settings, is_cron_secret_configured

VERSIONS_DIR = ROOT_DIR / "attendance_engine" / "migrations" / "versions"
SAMPLE_LIMIT = 20


@dataclass(slots=True)
class CheckResult:
    name: str
    status: str
    details: dict[str, Any]

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def _extract_revision_ids() -> list[str]:
    revisions: list[str] = []
    pattern = re.compile(r'^\s*revision\s*:\s*str\s*=\s*"([^"]+)"\s*$', re.MULTILINE)
    for path in sorted(VERSIONS_DIR.glob("*.py")):
        if path.name.startswith("__"):
            continue
        match = pattern.search(path.read_text(encoding="utf-8"))
        if match:
            revisions.append(match.group(1).strip())
    return revisions


def check_revision_id_lengths() -> CheckResult:
    revisions = _extract_revision_ids()
    too_long = [revision for revision in revisions if len(revision) > 32]
    return CheckResult(
        name="migration_revision_length",
        status="ok" if not too_long else "fail",
        details={"max_len": 32, "too_long": too_long, "total": len(revisions)},
    )


def check_cron_config() -> CheckResult:
    configured = is_cron_secret_configured()
    return CheckResult(
        name="cron_secret_configured",
        status="ok" if configured else "warn",
        details={"configured": configured},
    )


def check_schema(engine: Engine) -> CheckResult:
    result = verify_runtime_schema(engine)
    return CheckResult(
        name="database_schema_guard",
        status="ok" if result.ok else "fail",
        details=result.to_dict(),
    )


def check_data_integrity(engine: Engine) -> list[CheckResult]:
    results: list[CheckResult] = []
    with engine.connect() as conn:
        duplicate_open_shifts = conn.execute(
            text(
                """
                select employee_id, count(*)
                from attendance_logs
                where clock_out is null
                group by employee_id
                having count(*) > 1
                """
            )
        ).fetchall()
        results.append(
            CheckResult(
                name="duplicate_open_shifts",
                status="fail" if duplicate_open_shifts else "ok",
                details={"rows": [list(row) for row in duplicate_open_shifts]},
            )
        )

        closed_before_open = conn.execute(
            text(
                """
                select id
                from attendance_logs
                where clock_out is not null and clock_out < clock_in
                limit :limit
                """
            ),
            {"limit": SAMPLE_LIMIT},
        ).fetchall()
        results.append(
            CheckResult(
                name="attendance_clock_out_before_clock_in",
                status="fail" if closed_before_open else "ok",
                details={"sample_ids": [row[0] for row in closed_before_open]},
            )
        )

        over_allocated = conn.execute(
            text(
                """
                select id, employee_id, leave_type_id, year, allocated, used
                from leave_balances
                where used > allocated
                limit :limit
                """
            ),
            {"limit": SAMPLE_LIMIT},
        ).fetchall()
        # Approvals are allowed to overdraw unless the cap is enforced.
        results.append(
            CheckResult(
                name="leave_balances_over_allocated",
                status="warn" if over_allocated else "ok",
                details={"rows": [list(row) for row in over_allocated]},
            )
        )
    return results


def run(engine: Engine) -> dict[str, Any]:
    checks = [check_revision_id_lengths(), check_cron_config(), check_schema(engine)]
    checks.extend(check_data_integrity(engine))
    failed_checks = [check for check in checks if check.status == "fail"]
    return {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "ok": len(failed_checks) == 0,
        "checks": [
            {"name": check.name, "status": check.status, "details": check.details}
            for check in checks
        ],
    }


def main() -> int:
    engine = create_engine(get_settings().database_url, pool_pre_ping=True)
    try:
        report = run(engine)
    finally:
        engine.dispose()
    print(json.dumps(report, ensure_ascii=False, indent=2))
    return 0 if report["ok"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
