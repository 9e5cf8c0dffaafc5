from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_db, require_roles
from app.models.undo_operation import UndoEntityType
from app.models.user import User, UserRole
from app.schemas.undo import UndoCreate, UndoOut, UndoRecorded, UndoResult, UndoSweepResult
from app.services.entry_store import commit_or_rollback
from app.services.undo_ledger import UndoLedger

router = APIRouter()


@router.post("/", response_model=UndoRecorded, status_code=status.HTTP_201_CREATED)
def record_undo(
    payload: UndoCreate,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> UndoRecorded:
    record = UndoLedger(db).record(
        user=current_user,
        entity_type=payload.entity_type,
        entity_id=payload.entity_id,
        data=payload.data,
        metadata=payload.metadata,
        operation=payload.operation,
        ttl_seconds=payload.timeout_seconds,
    )
    commit_or_rollback(db, action="undo record")
    return UndoRecorded(undo_id=record.id, expires_at=record.expires_at)


@router.get("/", response_model=list[UndoOut])
def list_undo_operations(
    entity_type: UndoEntityType | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[UndoOut]:
    return UndoLedger(db).list_for_user(current_user, entity_type=entity_type)


@router.delete("/expired", response_model=UndoSweepResult)
def sweep_expired_undo_operations(
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> UndoSweepResult:
    return UndoSweepResult(deleted=UndoLedger(db).sweep_expired())


@router.post("/{undo_id}", response_model=UndoResult)
def execute_undo(
    undo_id: str,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> UndoResult:
    return UndoLedger(db).undo(undo_id, current_user)
