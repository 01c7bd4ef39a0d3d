from __future__ import annotations

import math
from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class RoleCode(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class AuditAction(str, Enum):
    CREATE_USER = "CREATE_USER"
    UPDATE_USER_PROFILE = "UPDATE_USER_PROFILE"
    DELETE_USER = "DELETE_USER"
    CREATE_ORGANIZATION = "CREATE_ORGANIZATION"
    UPDATE_ORGANIZATION = "UPDATE_ORGANIZATION"
    ARCHIVE_ORGANIZATION = "ARCHIVE_ORGANIZATION"
    RESTORE_ORGANIZATION = "RESTORE_ORGANIZATION"
    DELETE_ORGANIZATION = "DELETE_ORGANIZATION"
    TRANSFER_ORGANIZATION_OWNERSHIP = "TRANSFER_ORGANIZATION_OWNERSHIP"
    ADD_ORGANIZATION_MEMBER = "ADD_ORGANIZATION_MEMBER"
    ACCEPT_ORGANIZATION_INVITATION = "ACCEPT_ORGANIZATION_INVITATION"
    LEAVE_ORGANIZATION = "LEAVE_ORGANIZATION"
    REMOVE_ORGANIZATION_MEMBER = "REMOVE_ORGANIZATION_MEMBER"
    UPDATE_ORGANIZATION_MEMBER_ROLE = "UPDATE_ORGANIZATION_MEMBER_ROLE"


class EntityModel(BaseModel):
    """Base for persisted records.

    Entities are open records: fields not declared on the model are kept as
    custom fields (``model_extra``) and validated by an optional host-supplied
    schema.
    """

    model_config = ConfigDict(extra="allow", from_attributes=True)

    @property
    def custom_fields(self) -> dict:
        return dict(self.model_extra or {})


class Pagination(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int


class PaginatedResult(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int = 1
    page_size: int = 20
    total_pages: int = 0

    @classmethod
    def build(cls, items: list, total: int, page: int, page_size: int) -> "PaginatedResult":
        return cls(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if page_size else 0,
        )

    @property
    def pagination(self) -> Pagination:
        return Pagination(
            total=self.total,
            page=self.page,
            page_size=self.page_size,
            total_pages=self.total_pages,
        )


class ResponseMeta(BaseModel):
    request_id: str
    timestamp: str
    version: str = "1.0"
    pagination: Optional[dict] = None


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict = Field(default_factory=dict)
    request_id: str
    timestamp: str
