"""Audit trail for repository writes."""

from __future__ import annotations

from typing import Optional

import structlog

from orgkit.core.context import OperationContext

log = structlog.get_logger()


def record_write(
    operation: str,
    entity: str,
    entity_id: str,
    context: Optional[OperationContext],
) -> None:
    if context is None:
        log.info("audit.write", operation=operation, entity=entity, entity_id=entity_id)
        return
    event = f"audit.{context.audit_action.value.lower()}" if context.audit_action else "audit.write"
    log.info(
        event,
        operation=operation,
        entity=entity,
        entity_id=entity_id,
        **context.log_fields(),
        **context.metadata,
    )
