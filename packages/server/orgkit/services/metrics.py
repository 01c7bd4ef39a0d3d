"""
Hook execution metrics.

Every use case reports each lifecycle hook it passes through, whether or not
the host registered a function for it. ``HookMetrics`` is the default
collector: it counts executions and logs them with structlog.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import structlog

log = structlog.get_logger()


@dataclass(frozen=True)
class HookExecution:
    request_id: str
    use_case_name: str
    hook_name: str
    execution_id: str
    timestamp: datetime


class ObservabilityPort(Protocol):
    async def log_hook_execution(self, execution: HookExecution) -> None: ...


class HookMetrics:
    """Counts hook executions per use case and hook name."""

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)

    async def log_hook_execution(self, execution: HookExecution) -> None:
        self._counters[f"{execution.use_case_name}.{execution.hook_name}"] += 1
        log.debug(
            "usecase.hook",
            use_case=execution.use_case_name,
            hook=execution.hook_name,
            execution_id=execution.execution_id,
            request_id=execution.request_id,
        )

    def get(self, use_case_name: str, hook_name: str) -> int:
        return self._counters.get(f"{use_case_name}.{hook_name}", 0)

    def to_dict(self) -> dict[str, Any]:
        return {"hooks": dict(self._counters)}
