from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
import logging

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.exceptions import (
    ConflictError,
    OperationStateError,
    ResourceNotFoundError,
    UndoExpiredError,
    UnsupportedEntityError,
    ValidationError,
)
from app.models.calendar import Holiday, HolidayType
from app.models.undo_operation import UndoEntityType, UndoOperation, UndoOperationType
from app.models.user import User
from app.schemas.timetable import EntryDraft
from app.schemas.undo import UndoResult
from app.services.audit import log_activity
from app.services.conflict_detector import ConflictDetector
from app.services.entry_store import EntryStore, commit_or_rollback

logger = logging.getLogger(__name__)

LIST_LIMIT = 50


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UndoLedger:
    """Short-lived snapshots of deleted entities, each reversible exactly once."""

    def __init__(self, db: Session, settings: Settings | None = None) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self._handlers: dict[UndoEntityType, Callable[[UndoOperation], str]] = {
            UndoEntityType.TIMETABLE_ENTRY: self._restore_entry,
            UndoEntityType.HOLIDAY: self._restore_holiday,
        }

    def clamp_ttl(self, ttl_seconds: int | None) -> int:
        ttl = ttl_seconds if ttl_seconds is not None else self.settings.undo_default_ttl_seconds
        return max(1, min(ttl, self.settings.undo_max_ttl_seconds))

    def record(
        self,
        *,
        user: User,
        entity_type: UndoEntityType,
        entity_id: str,
        data: dict,
        metadata: dict | None = None,
        operation: UndoOperationType = UndoOperationType.DELETE,
        ttl_seconds: int | None = None,
    ) -> UndoOperation:
        """Stage a snapshot in the caller's transaction; the caller commits."""
        record = UndoOperation(
            user_id=user.id,
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation,
            data=data,
            metadata_=metadata or {},
            expires_at=_utc_now() + timedelta(seconds=self.clamp_ttl(ttl_seconds)),
        )
        self.db.add(record)
        return record

    def list_for_user(self, user: User, *, entity_type: UndoEntityType | None = None) -> list[UndoOperation]:
        stmt = select(UndoOperation).where(
            UndoOperation.user_id == user.id,
            UndoOperation.expires_at > _utc_now(),
        )
        if entity_type is not None:
            stmt = stmt.where(UndoOperation.entity_type == entity_type)
        stmt = stmt.order_by(UndoOperation.created_at.desc(), UndoOperation.expires_at.desc()).limit(LIST_LIMIT)
        return list(self.db.execute(stmt).scalars().all())

    def undo(self, undo_id: str, user: User) -> UndoResult:
        record = self.db.get(UndoOperation, undo_id)
        if record is None or record.user_id != user.id:
            raise ResourceNotFoundError("UndoOperation", undo_id)

        entity_type = record.entity_type
        entity_id = record.entity_id
        if _utc_now() > _as_utc(record.expires_at):
            self.db.delete(record)
            commit_or_rollback(self.db, action="expired undo purge")
            logger.info(
                "UNDO EXPIRED | undo_id=%s | entity_type=%s | entity_id=%s",
                undo_id,
                entity_type.value,
                entity_id,
            )
            raise UndoExpiredError(undo_id)

        handler = self._handlers.get(entity_type)
        if handler is None:
            raise UnsupportedEntityError(entity_type.value)

        message = handler(record)
        operation = record.operation
        self.db.delete(record)
        log_activity(
            self.db,
            user=user,
            action="undo.execute",
            entity_type=entity_type.value,
            entity_id=entity_id,
            details={"undo_id": undo_id, "operation": operation.value},
        )
        commit_or_rollback(self.db, action="undo")
        logger.info(
            "UNDO EXECUTED | undo_id=%s | entity_type=%s | entity_id=%s | user_id=%s",
            undo_id,
            entity_type.value,
            entity_id,
            user.id,
        )
        return UndoResult(undo_id=undo_id, entity_type=entity_type, entity_id=entity_id, message=message)

    def sweep_expired(self) -> int:
        result = self.db.execute(delete(UndoOperation).where(UndoOperation.expires_at < _utc_now()))
        commit_or_rollback(self.db, action="undo sweep")
        deleted = result.rowcount or 0
        logger.info("UNDO SWEEP | deleted=%s", deleted)
        return deleted

    def _restore_entry(self, record: UndoOperation) -> str:
        try:
            draft = EntryDraft.model_validate(record.data)
        except SchemaValidationError as exc:
            raise ValidationError(
                "Undo snapshot is invalid",
                details={"undo_id": record.id, "errors": exc.errors(include_url=False, include_context=False)},
            ) from exc
        outcome = ConflictDetector(self.db).check_one(draft, exclude_entry_ids=[record.entity_id])
        if outcome.has_errors:
            raise ConflictError(
                "Entry cannot be restored because its position is no longer free",
                report=outcome.model_dump(mode="json"),
                details={"undo_id": record.id},
            )
        EntryStore(self.db).restore(record.entity_id, record.data)
        return "Timetable entry restored"

    def _restore_holiday(self, record: UndoOperation) -> str:
        if self.db.get(Holiday, record.entity_id) is not None:
            raise OperationStateError("Holiday already exists", details={"holiday_id": record.entity_id})
        data = record.data
        try:
            holiday = Holiday(
                id=record.entity_id,
                name=data["name"],
                date=date.fromisoformat(data["date"]),
                type=HolidayType(data["type"]),
                department_id=data.get("department_id"),
                is_recurring=bool(data.get("is_recurring", False)),
                description=data.get("description"),
            )
        except KeyError as exc:
            raise ValidationError(
                "Undo snapshot is invalid",
                details={"undo_id": record.id, "missing": exc.args[0]},
            ) from exc
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                "Undo snapshot is invalid",
                details={"undo_id": record.id, "error": str(exc)},
            ) from exc
        self.db.add(holiday)
        return "Holiday restored"
