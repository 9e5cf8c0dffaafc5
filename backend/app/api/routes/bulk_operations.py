from fastapi import APIRouter, BackgroundTasks, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from app.api.deps import get_current_user, get_db, get_session_factory, require_roles
from app.core.config import get_settings
from app.models.user import User, UserRole
from app.schemas.bulk import BulkOperationOut, BulkOperationResult, BulkOperationSubmit, OperationLogOut
from app.services.bulk_operations import (
    BulkOperationEngine,
    cancel_operation,
    get_operation,
    operation_history,
    operation_logs,
    operation_out,
    run_bulk_operation_job,
)

router = APIRouter()


@router.post(
    "/",
    response_model=BulkOperationResult,
    responses={status.HTTP_202_ACCEPTED: {"model": BulkOperationOut}},
)
def submit_bulk_operation(
    payload: BulkOperationSubmit,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    engine = BulkOperationEngine(db, current_user)
    options = payload.options
    if options.dry_run or options.validate_only:
        return engine.preview(payload)

    if options.run_async:
        # References are resolved before the operation is tracked.
        engine.plan(payload)
        operation = engine.create_operation(payload)
        background_tasks.add_task(run_bulk_operation_job, session_factory, operation.id)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=operation_out(operation).model_dump(mode="json"),
        )

    plan = engine.plan(payload)
    operation = engine.create_operation(payload)
    return engine.execute(operation, payload, plan)


@router.get("/", response_model=list[BulkOperationOut])
def list_bulk_operations(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[BulkOperationOut]:
    limit = get_settings().operation_history_limit
    return [operation_out(operation) for operation in operation_history(db, current_user, limit)]


@router.get("/{operation_id}", response_model=BulkOperationOut)
def get_bulk_operation(
    operation_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> BulkOperationOut:
    return operation_out(get_operation(db, operation_id, current_user))


@router.get("/{operation_id}/logs", response_model=list[OperationLogOut])
def get_bulk_operation_logs(
    operation_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[OperationLogOut]:
    return operation_logs(db, get_operation(db, operation_id, current_user))


@router.delete("/{operation_id}", response_model=BulkOperationOut)
def cancel_bulk_operation(
    operation_id: str,
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> BulkOperationOut:
    operation = get_operation(db, operation_id, current_user)
    return operation_out(cancel_operation(db, operation, current_user))
