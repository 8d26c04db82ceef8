from enum import Enum
from typing import Optional

from pydantic import BaseModel


class TaskStatus(str, Enum):
    INCOMPLETE = "Incomplete"
    COMPLETE = "Complete"


class ReviewStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REWORK = "Rework"


class InputType(str, Enum):
    CHECKBOX = "checkbox"
    NUMBER = "number"
    TEXT = "text"


class SignoffMethod(str, Enum):
    PIN = "PIN"


class Role(str, Enum):
    ADMIN = "administrator"
    MANAGER = "manager"
    EMPLOYEE = "employee"


class Priority(int, Enum):
    CRITICAL = 1
    HIGH = 2
    NORMAL = 3
    LOW = 4


# Sunday=0 ... Saturday=6
WEEKDAY_NAMES: list[str] = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

# Fixed marker stored as the value of a completed checkbox task
CHECKBOX_DONE_VALUE = "true"


class ErrorDetail(BaseModel):
    code: str
    message: str
    task_ids: Optional[list[str]] = None
