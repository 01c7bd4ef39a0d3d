"""
Use-case pipeline.

Every use case runs the same steps:

    on_start -> principal check -> validate input -> after_validation -> authorize
    -> before_execution -> run -> after_execution -> validate output

and reports its outcome as a ``Result``. Expected failures are returned as
domain errors. Anything raised along the way (a broken repository, a bug)
is caught here and reported as a ``ValidationError`` carrying the original
error in ``details["original_error"]``. Storage failures raised as
``InfrastructureError`` are reported unchanged.
"""

from __future__ import annotations

import uuid
from typing import Any, ClassVar, Generic, Optional, TypeVar

import pydantic
import structlog

from orgkit.core.context import OperationContext
from orgkit.core.errors import AbortedError, DomainError, InfrastructureError, ValidationError
from orgkit.core.result import Result
from orgkit.repositories.ports import UnitOfWork
from orgkit.services.hooks import HookContext, ToolkitOptions, run_hook
from orgkit_shared.schemas.common import EntityModel

log = structlog.get_logger()

I = TypeVar("I", bound=pydantic.BaseModel)
O = TypeVar("O")


def validation_error_from_pydantic(exc: pydantic.ValidationError) -> ValidationError:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return ValidationError(first.get("msg", "Invalid input"), field or None)


class UseCase(Generic[I, O]):
    """Base class for all use cases.

    Subclasses set ``name``, ``input_model`` and ``error_message``, and
    implement ``run``. ``authorize`` may stash what it loaded in ``state``
    for ``run`` to reuse; a use case instance itself holds no per-call state.
    """

    name: ClassVar[str]
    input_model: ClassVar[type[pydantic.BaseModel]]
    error_message: ClassVar[str] = "Operation failed"
    # Which custom-field schema applies to the output entity, if any.
    custom_fields_entity: ClassVar[Optional[str]] = None
    requires_principal: ClassVar[bool] = True

    def __init__(self, uow: UnitOfWork, options: Optional[ToolkitOptions] = None):
        self.uow = uow
        self.options = options or ToolkitOptions()

    # -- steps overridden by subclasses -----------------------------------

    async def authorize(self, data: I, context: OperationContext, state: dict) -> Optional[DomainError]:
        return None

    async def run(self, data: I, context: OperationContext, state: dict) -> Result[O]:
        raise NotImplementedError

    # -- pipeline ---------------------------------------------------------

    async def _hook(self, hooks, hook_name: str, ctx: HookContext) -> None:
        await run_hook(hooks, hook_name, ctx, self.options.observability)

    async def execute(self, data: Any, context: OperationContext) -> Result[O]:
        hooks = self.options.hooks_for(self.name)
        ctx = HookContext(
            execution_id=str(uuid.uuid4()),
            use_case_name=self.name,
            input=data,
            context=context,
        )

        try:
            result = await self._pipeline(data, context, ctx, hooks)
        except InfrastructureError as exc:
            log.error("usecase.infrastructure_error", use_case=self.name, error=exc.message, request_id=context.request_id)
            result = Result.fail(exc)
        except Exception as exc:
            log.exception("usecase.unexpected_error", use_case=self.name, request_id=context.request_id)
            result = Result.fail(ValidationError(self.error_message, details={"original_error": exc}))

        if result.is_failure and isinstance(result.error, AbortedError):
            try:
                await self._hook(hooks, "on_abort", ctx)
            except Exception:
                log.exception("usecase.hook_failed", use_case=self.name, hook="on_abort")
        elif result.is_failure:
            ctx.error = result.error
            try:
                await self._hook(hooks, "on_error", ctx)
            except Exception as hook_exc:
                result = Result.fail(
                    ValidationError(
                        self.error_message,
                        details={"original_error": result.error, "error": hook_exc},
                    )
                )

        ctx.result = result
        try:
            await self._hook(hooks, "on_finally", ctx)
        except Exception:
            log.exception("usecase.hook_failed", use_case=self.name, hook="on_finally")

        if result.is_failure:
            log.info(
                "usecase.failed",
                use_case=self.name,
                code=result.error.code,
                message=result.error.message,
                request_id=context.request_id,
            )
        else:
            log.debug("usecase.succeeded", use_case=self.name, request_id=context.request_id)
        return result

    async def _pipeline(self, data, context, ctx: HookContext, hooks) -> Result[O]:
        await self._hook(hooks, "on_start", ctx)
        if ctx.aborted:
            return Result.fail(AbortedError(ctx.abort_reason))

        if self.requires_principal and not context.external_id:
            return Result.fail(
                ValidationError("Authentication is required for this operation", "principal")
            )

        try:
            validated = self.input_model.model_validate(data)
        except pydantic.ValidationError as exc:
            return Result.fail(validation_error_from_pydantic(exc))
        ctx.step_results["validated_input"] = validated

        await self._hook(hooks, "after_validation", ctx)
        if ctx.aborted:
            return Result.fail(AbortedError(ctx.abort_reason))

        state: dict = {}
        denied = await self.authorize(validated, context, state)
        if denied is not None:
            return Result.fail(denied)
        ctx.step_results["authorized"] = True

        await self._hook(hooks, "before_execution", ctx)
        if ctx.aborted:
            return Result.fail(AbortedError(ctx.abort_reason))

        outcome = await self.run(validated, context, state)
        if outcome.is_failure:
            return outcome
        ctx.step_results["output"] = outcome.value

        await self._hook(hooks, "after_execution", ctx)
        if ctx.aborted:
            return Result.fail(AbortedError(ctx.abort_reason))

        return self.parse_output(outcome.value)

    def parse_output(self, value: O) -> Result[O]:
        schema = self.options.custom_schema(self.custom_fields_entity) if self.custom_fields_entity else None
        if schema is None or not isinstance(value, EntityModel):
            return Result.ok(value)
        try:
            schema.model_validate(value.custom_fields)
        except pydantic.ValidationError as exc:
            return Result.fail(
                ValidationError("Failed to parse output", details={"original_error": exc})
            )
        return Result.ok(value)
