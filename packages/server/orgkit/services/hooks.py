"""
Host-supplied extension points: lifecycle hooks and custom-field schemas.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from pydantic import BaseModel

from orgkit.core.config import ToolkitOptionsConfig
from orgkit.core.context import OperationContext
from orgkit.core.system import utcnow
from orgkit.services.metrics import HookExecution, HookMetrics, ObservabilityPort

log = structlog.get_logger()

Hook = Callable[["HookContext"], Union[None, Awaitable[None]]]


@dataclass
class HookContext:
    """What a hook sees about the running use case.

    ``shared`` is scratch space that persists across the hooks of a single
    execution. Calling ``abort(reason)`` stops the pipeline at the next
    checkpoint with an ``AbortedError``.
    """

    execution_id: str
    use_case_name: str
    input: Any
    context: OperationContext
    step_results: dict = field(default_factory=dict)
    shared: dict = field(default_factory=dict)
    error: Any = None
    result: Any = None
    abort_reason: Optional[str] = None

    def abort(self, reason: str) -> None:
        self.abort_reason = reason

    @property
    def aborted(self) -> bool:
        return self.abort_reason is not None


@dataclass
class UseCaseHooks:
    on_start: Optional[Hook] = None
    after_validation: Optional[Hook] = None
    before_execution: Optional[Hook] = None
    after_execution: Optional[Hook] = None
    on_error: Optional[Hook] = None
    on_abort: Optional[Hook] = None
    on_finally: Optional[Hook] = None


async def report_hook(observability: Optional[ObservabilityPort], hook_name: str, ctx: HookContext) -> None:
    """Hand one hook execution to the metrics port. Its failures never reach the caller."""
    if observability is None:
        return
    try:
        await observability.log_hook_execution(
            HookExecution(
                request_id=ctx.context.request_id or "unknown",
                use_case_name=ctx.use_case_name,
                hook_name=hook_name,
                execution_id=ctx.execution_id,
                timestamp=utcnow(),
            )
        )
    except Exception:
        log.warning("usecase.metrics_failed", use_case=ctx.use_case_name, hook=hook_name, exc_info=True)


async def run_hook(
    hooks: UseCaseHooks,
    hook_name: str,
    ctx: HookContext,
    observability: Optional[ObservabilityPort] = None,
) -> None:
    await report_hook(observability, hook_name, ctx)
    hook = getattr(hooks, hook_name)
    if hook is None:
        return
    outcome = hook(ctx)
    if inspect.isawaitable(outcome):
        await outcome


@dataclass
class ToolkitOptions:
    """Per-deployment options handed to every use case."""

    user_schema: Optional[type[BaseModel]] = None
    organization_schema: Optional[type[BaseModel]] = None
    membership_schema: Optional[type[BaseModel]] = None
    hooks: dict[str, UseCaseHooks] = field(default_factory=dict)
    observability: Optional[ObservabilityPort] = field(default_factory=HookMetrics)

    @classmethod
    def from_config(cls, config: ToolkitOptionsConfig) -> "ToolkitOptions":
        return cls(
            user_schema=config.users.load_schema(),
            organization_schema=config.organizations.load_schema(),
            membership_schema=config.organization_memberships.load_schema(),
        )

    def custom_schema(self, entity: str) -> Optional[type[BaseModel]]:
        return {
            "users": self.user_schema,
            "organizations": self.organization_schema,
            "organization_memberships": self.membership_schema,
        }.get(entity)

    def hooks_for(self, use_case_name: str) -> UseCaseHooks:
        return self.hooks.get(use_case_name) or UseCaseHooks()
