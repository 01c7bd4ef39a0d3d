"""
Tests for the error taxonomy, Result, configuration and use-case hooks.
"""

from __future__ import annotations

import pytest
from conftest import ctx, register
from pydantic import BaseModel

from orgkit.api.v1.responses import status_for
from orgkit.core.config import Settings, ToolkitOptionsConfig, load_toolkit_options
from orgkit.core.errors import (
    AbortedError,
    BusinessRuleError,
    ConflictError,
    DomainError,
    InfrastructureError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from orgkit.core.result import Result
from orgkit.services.hooks import ToolkitOptions, UseCaseHooks
from orgkit.services.metrics import HookMetrics
from orgkit.services.registry import build_use_cases


# ---------------------------------------------------------------------------
# Errors / Result
# ---------------------------------------------------------------------------

class TestErrors:
    """Stable codes, messages and HTTP statuses."""

    def test_codes(self):
        assert ValidationError("bad").code == "VALIDATION_ERROR"
        assert NotFoundError("User", "u-1").code == "NOT_FOUND"
        assert ConflictError("User", "alice").code == "CONFLICT"
        assert UnauthorizedError("delete").code == "UNAUTHORIZED"
        assert BusinessRuleError("nope").code == "BUSINESS_RULE_VIOLATION"
        assert InfrastructureError("down").code == "INFRASTRUCTURE_ERROR"
        assert AbortedError("hook said no").code == "ABORTED"

    def test_not_found_message(self):
        err = NotFoundError("Organization", "org-1")
        assert err.message == "Organization with identifier 'org-1' not found"
        assert err.details == {"resource": "Organization", "identifier": "org-1"}

    def test_validation_field(self):
        err = ValidationError("required", "principal")
        assert err.to_dict() == {
            "code": "VALIDATION_ERROR",
            "message": "required",
            "details": {"field": "principal"},
        }

    def test_exception_details_are_serializable(self):
        err = ValidationError("failed", details={"original_error": KeyError("x")})
        assert err.details["original_error"] == {"type": "KeyError", "message": "'x'"}

    @pytest.mark.parametrize(
        "error, status",
        [
            (ValidationError("x"), 400),
            (AbortedError("x"), 400),
            (UnauthorizedError("x"), 401),
            (NotFoundError("x", "y"), 404),
            (ConflictError("x", "y"), 409),
            (BusinessRuleError("x"), 422),
            (InfrastructureError("x"), 500),
            (DomainError("x"), 500),
        ],
    )
    def test_http_status(self, error, status):
        assert status_for(error) == status


class TestResult:
    """Exactly one of value or error."""

    def test_ok(self):
        result = Result.ok(42)
        assert result.is_success and not result.is_failure
        assert result.value == 42
        with pytest.raises(ValueError):
            result.error

    def test_fail(self):
        result = Result.fail(ValidationError("bad"))
        assert result.is_failure
        assert result.error.message == "bad"
        with pytest.raises(ValueError):
            result.value

    def test_ok_without_value(self):
        assert Result.ok().value is None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class OrgFields(BaseModel):
    name: str


class TestConfig:
    """Settings from the environment and YAML toolkit options."""

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("ORGKIT_PERSISTENCE", "sql")
        monkeypatch.setenv("ORGKIT_DEFAULT_PAGE_SIZE", "50")
        settings = Settings()
        assert settings.persistence == "sql"
        assert settings.default_page_size == 50

    def test_invalid_persistence(self, monkeypatch):
        monkeypatch.setenv("ORGKIT_PERSISTENCE", "mongo")
        with pytest.raises(Exception):
            Settings()

    def test_yaml_options(self, tmp_path):
        path = tmp_path / "orgkit.yaml"
        path.write_text("organizations:\n  schema_path: test_core:OrgFields\n")
        config = load_toolkit_options(path)
        assert config.organizations.load_schema() is OrgFields
        assert config.users.load_schema() is None

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "orgkit.yaml"
        path.write_text("")
        assert load_toolkit_options(path) == ToolkitOptionsConfig()

    def test_missing_yaml(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_toolkit_options(tmp_path / "missing.yaml")

    def test_schema_path_must_be_dotted(self):
        with pytest.raises(Exception):
            ToolkitOptionsConfig.model_validate({"users": {"schema_path": "nodots"}})


class TestCustomFieldSchema:
    """Host schemas validate custom fields."""

    async def test_schema_enforced(self, json_uow):
        use_cases = build_use_cases(json_uow, ToolkitOptions(organization_schema=OrgFields))
        await register(use_cases, "bob")

        missing = await use_cases.create_organization.execute({}, ctx("bob"))
        ok = await use_cases.create_organization.execute({"name": "Acme"}, ctx("bob"))

        assert isinstance(missing.error, ValidationError)
        assert missing.error.details["field"] == "name"
        assert ok.is_success


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------

class TestHooks:
    """Lifecycle hooks around every use case."""

    async def test_hooks_run_in_order(self, json_uow):
        calls = []

        def record(name):
            def hook(h):
                calls.append(name)
            return hook

        async def after(h):
            calls.append("after_execution")
            h.shared["seen"] = h.step_results["output"].username

        hooks = UseCaseHooks(
            on_start=record("on_start"),
            after_validation=record("after_validation"),
            before_execution=record("before_execution"),
            after_execution=after,
            on_finally=record("on_finally"),
        )
        use_cases = build_use_cases(json_uow, ToolkitOptions(hooks={"CreateUser": hooks}))
        await register(use_cases, "alice")

        assert calls == [
            "on_start",
            "after_validation",
            "before_execution",
            "after_execution",
            "on_finally",
        ]

    async def test_abort(self, json_uow):
        aborted = []
        hooks = UseCaseHooks(
            before_execution=lambda h: h.abort("registrations closed"),
            on_abort=lambda h: aborted.append(h.abort_reason),
        )
        use_cases = build_use_cases(json_uow, ToolkitOptions(hooks={"CreateUser": hooks}))

        result = await use_cases.create_user.execute({"username": "alice", "external_id": "e"}, ctx("alice"))

        assert isinstance(result.error, AbortedError)
        assert aborted == ["registrations closed"]
        assert await json_uow.repositories().users.find_by_username("alice") is None

    async def test_on_error_sees_failure(self, json_uow):
        errors = []
        hooks = UseCaseHooks(on_error=lambda h: errors.append(h.error.code))
        use_cases = build_use_cases(json_uow, ToolkitOptions(hooks={"GetUser": hooks}))

        await use_cases.get_user.execute({}, ctx("ghost"))

        assert errors == ["NOT_FOUND"]

    async def test_failing_on_error_hook_is_reported(self, json_uow):
        def explode(h):
            raise RuntimeError("hook broke")

        use_cases = build_use_cases(json_uow, ToolkitOptions(hooks={"GetUser": UseCaseHooks(on_error=explode)}))
        result = await use_cases.get_user.execute({}, ctx("ghost"))

        assert isinstance(result.error, ValidationError)
        assert result.error.details["error"] == {"type": "RuntimeError", "message": "hook broke"}
        assert result.error.details["original_error"]["code"] == "NOT_FOUND"


# ---------------------------------------------------------------------------
# Hook metrics
# ---------------------------------------------------------------------------

class TestHookMetrics:
    """Every hook a use case passes through is reported."""

    async def test_success_path(self, json_uow):
        metrics = HookMetrics()
        use_cases = build_use_cases(json_uow, ToolkitOptions(observability=metrics))
        await register(use_cases, "alice")

        for hook in ("on_start", "after_validation", "before_execution", "after_execution", "on_finally"):
            assert metrics.get("CreateUser", hook) == 1
        assert metrics.get("CreateUser", "on_error") == 0

    async def test_failure_path(self, json_uow):
        metrics = HookMetrics()
        use_cases = build_use_cases(json_uow, ToolkitOptions(observability=metrics))
        await use_cases.get_user.execute({}, ctx("ghost"))

        assert metrics.get("GetUser", "on_error") == 1
        assert metrics.get("GetUser", "after_execution") == 0
        assert metrics.to_dict()["hooks"]["GetUser.on_finally"] == 1

    async def test_broken_collector_is_ignored(self, json_uow):
        class Broken:
            async def log_hook_execution(self, execution):
                raise RuntimeError("collector down")

        use_cases = build_use_cases(json_uow, ToolkitOptions(observability=Broken()))
        user = await register(use_cases, "alice")
        assert user.username == "alice"

    def test_default_options_collect(self):
        assert isinstance(ToolkitOptions().observability, HookMetrics)
