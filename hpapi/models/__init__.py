"""HPAPI MODELS MODULE"""

from operator import attrgetter
import uuid

from sqlalchemy.dialects.mssql import UNIQUEIDENTIFIER
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.types import CHAR, TypeDecorator


# Below is from https://docs.sqlalchemy.org/en/20/core/custom_types.html
# #backend-agnostic-guid-type
class GUID(TypeDecorator):
    """Platform-independent GUID type.

    Uses PostgreSQL's UUID type or MSSQL's UNIQUEIDENTIFIER,
    otherwise uses CHAR(32), storing as stringified hex values.

    """

    impl = CHAR
    cache_ok = True

    _default_type = CHAR(32)
    _uuid_as_str = attrgetter("hex")

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(UUID())
        if dialect.name == "mssql":
            return dialect.type_descriptor(UNIQUEIDENTIFIER())
        return dialect.type_descriptor(self._default_type)

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name in ("postgresql", "mssql"):
            return value
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(value)
        return self._uuid_as_str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(value)
        return value


from hpapi.models.password_history import PasswordHistory  # noqa: E402
from hpapi.models.password_reset_token import PasswordResetToken  # noqa: E402
from hpapi.models.refresh_token import RefreshToken  # noqa: E402
from hpapi.models.security_audit_event import SecurityAuditEvent  # noqa: E402
from hpapi.models.user import User  # noqa: E402

__all__ = [
    "PasswordHistory",
    "PasswordResetToken",
    "RefreshToken",
    "SecurityAuditEvent",
    "User",
]
