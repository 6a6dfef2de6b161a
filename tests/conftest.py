# ABOUTME: Pytest fixtures and configuration for the deployment status service tests
# ABOUTME: Provides a deterministic fake controller plus shared settings, clocks, and contexts

import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import SecretStr

from argocd_status.cache import StatusCache
from argocd_status.classifier import ErrorClassifier
from argocd_status.config import ArgocdInstance, SecuritySettings, ServerSettings, SyncPolicyRule
from argocd_status.models import Entity
from argocd_status.normalizer import StatusNormalizer
from argocd_status.permissions import PolicyPermissionGate
from argocd_status.utils.client import ArgocdClient, ArgocdError
from argocd_status.utils.safety import SafetyGuard

ARGOCD_URL = "https://argocd.example.com"


def application_record(
    name: str,
    health: str = "Healthy",
    sync: str = "Synced",
    namespace: str | None = "payments",
    **status: Any,
) -> dict[str, Any]:
    """Build a raw ArgoCD application record."""
    record: dict[str, Any] = {
        "metadata": {"name": name, "namespace": "argocd"},
        "spec": {"destination": {"server": "https://kubernetes.default.svc"}},
        "status": {
            "health": {"status": health},
            "sync": {"status": sync},
            "reconciledAt": "2024-01-15T10:30:00Z",
            **status,
        },
    }
    if namespace:
        record["spec"]["destination"]["namespace"] = namespace
    return record


class FakeControllerClient:
    """
    In-memory ControllerClient.

    Records keyed by application name; names without a record answer 404.
    `failures` maps a name to an exception raised by get_application.
    """

    def __init__(self, records: dict[str, dict[str, Any]] | None = None) -> None:
        self.records = dict(records or {})
        self.failures: dict[str, Exception] = {}
        self.sync_failure: Exception | None = None
        self.version_failure: Exception | None = None
        self.get_calls: list[str] = []
        self.sync_calls: list[dict[str, Any]] = []

    def add(self, record: dict[str, Any]) -> None:
        self.records[record["metadata"]["name"]] = record

    async def get_application(self, name: str) -> dict[str, Any]:
        self.get_calls.append(name)
        if name in self.failures:
            raise self.failures[name]
        if name not in self.records:
            raise ArgocdError(404, f"applications.argoproj.io \"{name}\" not found")
        return self.records[name]

    async def sync_application(
        self,
        name: str,
        dry_run: bool = False,
        prune: bool = False,
        force: bool = False,
        revision: str | None = None,
    ) -> dict[str, Any]:
        self.sync_calls.append(
            {"name": name, "dry_run": dry_run, "prune": prune, "force": force}
        )
        if self.sync_failure is not None:
            raise self.sync_failure
        record = dict(self.records.get(name) or application_record(name))
        record["status"] = {**record.get("status", {}), "operationState": {"phase": "Running"}}
        return record

    async def get_version(self) -> dict[str, Any]:
        if self.version_failure is not None:
            raise self.version_failure
        return {"Version": "v2.10.0+abc123"}

    def set_phase(
        self,
        name: str,
        phase: str,
        message: str | None = None,
        started_at: str | None = None,
    ) -> None:
        record = self.records.setdefault(name, application_record(name))
        state: dict[str, Any] = {"phase": phase}
        if message:
            state["message"] = message
        if started_at:
            state["startedAt"] = started_at
        record["status"]["operationState"] = state


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWallClock:
    """Manually advanced UTC clock for sync operation timestamps."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def fake_client() -> FakeControllerClient:
    """Fake controller knowing payments-api in all three environments."""
    return FakeControllerClient(
        {
            name: application_record(name)
            for name in ("payments-api-development", "payments-api-staging", "payments-api-prod")
        }
    )


@pytest.fixture
def make_record():
    """Factory for raw ArgoCD application records."""
    return application_record


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def wall_clock() -> FakeWallClock:
    return FakeWallClock()


@pytest.fixture
def cache(fake_clock: FakeClock) -> StatusCache:
    return StatusCache(default_ttl=30.0, clock=fake_clock)


@pytest.fixture
def classifier() -> ErrorClassifier:
    return ErrorClassifier(ARGOCD_URL)


@pytest.fixture
def normalizer(classifier: ErrorClassifier) -> StatusNormalizer:
    return StatusNormalizer(classifier)


@pytest.fixture
def gate() -> PolicyPermissionGate:
    """alice may sync payments applications; anyone may sync development."""
    return PolicyPermissionGate(
        [
            SyncPolicyRule(application="payments-*", identities=["alice"]),
            SyncPolicyRule(application="*-development", identities=["*"]),
        ]
    )


@pytest.fixture
def payments_entity() -> Entity:
    return Entity(name="payments-api", annotations={"argocd/app-name": "payments-api"})


@pytest.fixture
def mock_argocd_instance() -> ArgocdInstance:
    """Create a mock ArgoCD instance configuration."""
    return ArgocdInstance(
        url=ARGOCD_URL,
        token=SecretStr("test-token"),
        name="test",
        insecure=True,
    )


@pytest.fixture
def mock_security_settings() -> SecuritySettings:
    """Create writable security settings for testing."""
    return SecuritySettings(
        read_only=False,
        audit_log=None,
        mask_secrets=True,
        rate_limit_calls=100,
        rate_limit_window=60,
        sync_policy=[SyncPolicyRule(application="payments-*", identities=["alice"])],
        identity="alice",
    )


@pytest.fixture
def read_only_security_settings() -> SecuritySettings:
    """Create read-only security settings for testing."""
    return SecuritySettings(
        read_only=True,
        audit_log=None,
        mask_secrets=True,
        rate_limit_calls=100,
        rate_limit_window=60,
    )


@pytest.fixture
def mock_server_settings(
    mock_argocd_instance: ArgocdInstance,
    mock_security_settings: SecuritySettings,
) -> ServerSettings:
    """Create mock server settings."""
    return ServerSettings(
        argocd_url=mock_argocd_instance.url,
        argocd_token=mock_argocd_instance.token,
        argocd_insecure=mock_argocd_instance.insecure,
        security=mock_security_settings,
    )


@pytest.fixture
def safety_guard(mock_security_settings: SecuritySettings) -> SafetyGuard:
    """Create a safety guard for testing."""
    return SafetyGuard(mock_security_settings)


@pytest.fixture
def read_only_safety_guard(read_only_security_settings: SecuritySettings) -> SafetyGuard:
    """Create a read-only safety guard for testing."""
    return SafetyGuard(read_only_security_settings)


@pytest.fixture
def mock_context() -> MagicMock:
    """Create a mock MCP context."""
    ctx = MagicMock()
    ctx.request_id = "test-request-123"
    ctx.report_progress = AsyncMock()
    return ctx


# Integration test fixtures


@pytest.fixture
def argocd_url() -> str | None:
    """Get ArgoCD URL from environment."""
    return os.environ.get("ARGOCD_URL")


@pytest.fixture
def argocd_token() -> str | None:
    """Get ArgoCD token from environment."""
    return os.environ.get("ARGOCD_TOKEN")


@pytest.fixture
def argocd_insecure() -> bool:
    """Get ArgoCD insecure setting from environment."""
    return os.environ.get("ARGOCD_INSECURE", "false").lower() == "true"


@pytest.fixture
async def live_argocd_client(
    argocd_url: str | None,
    argocd_token: str | None,
    argocd_insecure: bool,
) -> AsyncIterator[ArgocdClient | None]:
    """Create a live ArgoCD client for integration tests."""
    if not argocd_url or not argocd_token:
        yield None
        return

    instance = ArgocdInstance(
        url=argocd_url,
        token=SecretStr(argocd_token),
        name="integration-test",
        insecure=argocd_insecure,
    )
    async with ArgocdClient(instance) as client:
        yield client
