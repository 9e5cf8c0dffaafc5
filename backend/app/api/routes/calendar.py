import datetime as dt
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db, require_roles
from app.core.exceptions import MissingReferenceError, ResourceNotFoundError, ValidationError
from app.models.academic import Batch, Department
from app.models.calendar import ExamPeriod, Holiday, HolidayType
from app.models.undo_operation import UndoEntityType, UndoOperationType
from app.models.user import User, UserRole
from app.schemas.calendar import CalendarFactsOut, ExamPeriodCreate, ExamPeriodOut, HolidayCreate, HolidayOut
from app.schemas.conflict import ExamPeriodRef, HolidayRef
from app.schemas.undo import UndoRecorded
from app.services.audit import log_activity
from app.services.calendar_facts import CalendarFacts
from app.services.entry_store import commit_or_rollback, flush_or_rollback
from app.services.undo_ledger import UndoLedger

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_department(db: Session, department_id: str | None) -> None:
    if department_id is not None and db.get(Department, department_id) is None:
        raise MissingReferenceError({"departments": [department_id]})


@router.get("/holidays", response_model=list[HolidayOut])
def list_holidays(
    date_from: dt.date | None = Query(default=None),
    date_to: dt.date | None = Query(default=None),
    department_id: str | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[HolidayOut]:
    stmt = select(Holiday)
    if date_from is not None:
        stmt = stmt.where(Holiday.date >= date_from)
    if date_to is not None:
        stmt = stmt.where(Holiday.date <= date_to)
    if department_id is not None:
        stmt = stmt.where(Holiday.department_id == department_id)
    return list(db.execute(stmt.order_by(Holiday.date, Holiday.name)).scalars().all())


@router.post("/holidays", response_model=HolidayOut, status_code=status.HTTP_201_CREATED)
def create_holiday(
    payload: HolidayCreate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> HolidayOut:
    if payload.type == HolidayType.DEPARTMENT and payload.department_id is None:
        raise ValidationError("Department holidays need a department_id")
    _require_department(db, payload.department_id)
    holiday = Holiday(**payload.model_dump())
    db.add(holiday)
    flush_or_rollback(db, action="holiday")
    log_activity(
        db,
        user=current_user,
        action="calendar.holiday.create",
        entity_type="holiday",
        entity_id=holiday.id,
        details={"date": holiday.date.isoformat(), "department_id": holiday.department_id},
    )
    commit_or_rollback(db, action="holiday")
    logger.info("HOLIDAY CREATED | holiday_id=%s | date=%s | user_id=%s", holiday.id, holiday.date, current_user.id)
    return holiday


@router.delete("/holidays/{holiday_id}", response_model=UndoRecorded)
def delete_holiday(
    holiday_id: str,
    ttl_seconds: int | None = Query(default=None, ge=1),
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> UndoRecorded:
    holiday = db.get(Holiday, holiday_id)
    if holiday is None:
        raise ResourceNotFoundError("Holiday", holiday_id)

    record = UndoLedger(db).record(
        user=current_user,
        entity_type=UndoEntityType.HOLIDAY,
        entity_id=holiday.id,
        data=holiday.snapshot(),
        metadata={"display_name": holiday.name},
        operation=UndoOperationType.DELETE,
        ttl_seconds=ttl_seconds,
    )
    db.delete(holiday)
    flush_or_rollback(db, action="holiday deletion")
    log_activity(
        db,
        user=current_user,
        action="calendar.holiday.delete",
        entity_type="holiday",
        entity_id=holiday_id,
        details={"undo_id": record.id},
    )
    commit_or_rollback(db, action="holiday deletion")
    return UndoRecorded(undo_id=record.id, expires_at=record.expires_at)


@router.get("/exam-periods", response_model=list[ExamPeriodOut])
def list_exam_periods(
    department_id: str | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ExamPeriodOut]:
    stmt = select(ExamPeriod)
    if department_id is not None:
        stmt = stmt.where(ExamPeriod.department_id == department_id)
    return list(db.execute(stmt.order_by(ExamPeriod.start_date)).scalars().all())


@router.post("/exam-periods", response_model=ExamPeriodOut, status_code=status.HTTP_201_CREATED)
def create_exam_period(
    payload: ExamPeriodCreate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> ExamPeriodOut:
    _require_department(db, payload.department_id)
    exam_period = ExamPeriod(**payload.model_dump())
    db.add(exam_period)
    flush_or_rollback(db, action="exam period")
    log_activity(
        db,
        user=current_user,
        action="calendar.exam_period.create",
        entity_type="exam_period",
        entity_id=exam_period.id,
        details={
            "start_date": exam_period.start_date.isoformat(),
            "end_date": exam_period.end_date.isoformat(),
            "blocks_regular_classes": exam_period.blocks_regular_classes,
        },
    )
    commit_or_rollback(db, action="exam period")
    return exam_period


@router.get("/batches/{batch_id}/facts", response_model=CalendarFactsOut)
def get_calendar_facts(
    batch_id: str,
    date: dt.date = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CalendarFactsOut:
    if db.get(Batch, batch_id) is None:
        raise ResourceNotFoundError("Batch", batch_id)
    calendar = CalendarFacts(db)
    holidays = calendar.holidays_on(date, batch_id)
    exam_period = calendar.blocking_exam_period(date, batch_id)
    return CalendarFactsOut(
        batch_id=batch_id,
        date=date,
        holidays=[HolidayRef.model_validate(holiday) for holiday in holidays],
        blocking_exam_period=ExamPeriodRef.model_validate(exam_period) if exam_period is not None else None,
        is_blackout=bool(holidays) or exam_period is not None,
    )
