from app.models.academic import Batch, Department, Program, Subject  # noqa: F401
from app.models.activity_log import ActivityLog  # noqa: F401
from app.models.bulk_operation import (  # noqa: F401
    BulkOperation,
    BulkOperationKind,
    LogLevel,
    OperationLog,
    OperationStatus,
)
from app.models.calendar import AcademicCalendar, ExamPeriod, Holiday, HolidayType  # noqa: F401
from app.models.faculty import Faculty  # noqa: F401
from app.models.time_slot import TimeSlot  # noqa: F401
from app.models.timetable_entry import DayOfWeek, EntryType, TimetableEntry  # noqa: F401
from app.models.timetable_template import EndCondition, RecurrencePattern, TimetableTemplate  # noqa: F401
from app.models.undo_operation import UndoEntityType, UndoOperation, UndoOperationType  # noqa: F401
from app.models.user import User, UserRole  # noqa: F401
