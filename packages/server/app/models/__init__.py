# SQLModel definitions, imported here to ensure metadata is populated for Alembic.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .organization import Organization  # noqa: F401
from .user import User  # noqa: F401
from .membership import Membership  # noqa: F401
from .location import Location, TimeBlock  # noqa: F401
from .template import ChecklistTemplate, TemplateTask  # noqa: F401
from .submission import ReviewEntry, Submission, SubmissionTask  # noqa: F401
