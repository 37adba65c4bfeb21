import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from attendance_engine.db import get_db
from attendance_engine.schemas import StaleSweepResponse
from attendance_engine.security import require_cron_secret
from attendance_engine.services.reconciler import reconcile_all_stale

router = APIRouter(tags=["cron"])
logger = logging.getLogger("attendance_engine.cron")


@router.post(
    "/api/cron/auto-clockout",
    response_model=StaleSweepResponse,
    dependencies=[Depends(require_cron_secret)],
)
def auto_clockout(db: Session = Depends(get_db)) -> StaleSweepResponse:
    closed_by_employee = reconcile_all_stale(db, datetime.now(timezone.utc))
    closed = sum(closed_by_employee.values())
    logger.info("cron_auto_clockout_finished", extra={"closed": closed, "employees": len(closed_by_employee)})
    return StaleSweepResponse(closed=closed, employees=len(closed_by_employee))
