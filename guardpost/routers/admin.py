from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from guardpost.clock import Clock, get_clock
from guardpost.db import get_db
from guardpost.schemas import SweepResultRead
from guardpost.security import require_actor
from guardpost.services.reconciliation import (
    SWEEP_ABSENCE,
    SWEEP_MISSED_CHECKOUT,
    run_absence_sweep,
    run_missed_checkout_sweep,
)

router = APIRouter(tags=["admin"], dependencies=[Depends(require_actor)])


@router.post("/api/admin/sweeps/absence", response_model=SweepResultRead)
def run_absence_sweep_endpoint(
    day: date | None = Query(default=None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> SweepResultRead:
    target_day = day or clock.today()
    affected = run_absence_sweep(target_day, db=db)
    return SweepResultRead(
        sweep=SWEEP_ABSENCE,
        affected=affected,
        attendance_date=target_day,
        ran_at_utc=clock.now_utc(),
    )


@router.post("/api/admin/sweeps/missed-checkout", response_model=SweepResultRead)
def run_missed_checkout_sweep_endpoint(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> SweepResultRead:
    now_utc = clock.now_utc()
    affected = run_missed_checkout_sweep(now_utc, db=db, tz=clock.tz)
    return SweepResultRead(
        sweep=SWEEP_MISSED_CHECKOUT,
        affected=affected,
        ran_at_utc=now_utc,
    )
