# SQLModel definitions - imported here to ensure metadata is populated for Alembic.
from .base import CustomFieldsMixin, IdMixin, TimestampMixin  # noqa: F401
from .membership import MembershipRecord  # noqa: F401
from .organization import OrganizationRecord  # noqa: F401
from .user import UserRecord  # noqa: F401
