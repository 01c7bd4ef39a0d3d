"""Per-call context: who is acting, on what, and for which audit action."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Optional

from orgkit_shared.schemas.common import AuditAction


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, identified by the auth provider's subject."""

    external_id: str


@dataclass(frozen=True)
class OperationContext:
    request_id: str
    external_id: Optional[str] = None
    organization_id: Optional[str] = None
    audit_action: Optional[AuditAction] = None
    metadata: dict = field(default_factory=dict)

    @classmethod
    def for_principal(
        cls,
        principal: Optional[Principal],
        request_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> "OperationContext":
        return cls(
            request_id=request_id or str(uuid.uuid4()),
            external_id=principal.external_id if principal else None,
            organization_id=organization_id,
        )

    def for_audit(
        self,
        action: AuditAction,
        organization_id: Optional[str] = None,
        **metadata,
    ) -> "OperationContext":
        """Copy tagged with the audit action every persisting call must carry."""
        return replace(
            self,
            audit_action=action,
            organization_id=organization_id or self.organization_id,
            metadata={**self.metadata, **metadata},
        )

    def log_fields(self) -> dict:
        return {
            "request_id": self.request_id,
            "actor": self.external_id,
            "organization_id": self.organization_id,
            "audit_action": self.audit_action.value if self.audit_action else None,
        }
