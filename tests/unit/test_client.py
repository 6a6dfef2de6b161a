# ABOUTME: Unit tests for ArgoCD API client
# ABOUTME: Tests request handling, error mapping, retries, and secret masking with respx

from unittest.mock import patch

import httpx
import pytest
import respx
from pydantic import SecretStr
from tenacity import wait_none

from argocd_status.config import ArgocdInstance
from argocd_status.utils.client import ArgocdClient, ArgocdError, ControllerClient, mask_secrets

BASE_URL = "https://argocd.example.com"


@pytest.fixture
def instance() -> ArgocdInstance:
    """Create an ArgoCD instance for respx-based tests."""
    return ArgocdInstance(
        url=BASE_URL,
        token=SecretStr("test-token"),
        name="test",
        insecure=True,
    )


@pytest.fixture
def no_retry_wait():
    """Retry immediately instead of backing off."""
    with patch.object(ArgocdClient._request.retry, "wait", wait_none()):
        yield


@pytest.mark.unit
class TestMaskSecrets:
    """Tests for secret masking."""

    def test_masks_sensitive_keys(self):
        """Test values under sensitive keys are replaced."""
        data = {"name": "app", "token": "abc", "nested": {"password": "hunter2"}}
        assert mask_secrets(data) == {
            "name": "app",
            "token": "***MASKED***",
            "nested": {"password": "***MASKED***"},
        }

    def test_masks_patterns_in_strings(self):
        """Test credential-looking substrings are scrubbed from free text."""
        masked = mask_secrets(["helm values: api_key=sk-123 replicas=2", "Bearer eyJabc"])
        assert masked[0] == "helm values: api_key=***MASKED*** replicas=2"
        assert masked[1] == "Bearer ***MASKED***"

    def test_leaves_other_values(self):
        """Test non-string scalars pass through."""
        assert mask_secrets({"replicas": 3, "enabled": True}) == {"replicas": 3, "enabled": True}


@pytest.mark.unit
class TestArgocdError:
    """Tests for ArgocdError."""

    def test_str_with_details(self):
        """Test message includes code and details."""
        error = ArgocdError(404, "application not found", "rpc error")
        assert str(error) == "ArgoCD API error (404): application not found - rpc error"

    def test_str_without_details(self):
        """Test message without details."""
        assert str(ArgocdError(500, "boom")) == "ArgoCD API error (500): boom"


@pytest.mark.unit
class TestArgocdClient:
    """Tests for ArgocdClient."""

    def test_implements_controller_protocol(self, instance: ArgocdInstance):
        """Test the client satisfies ControllerClient."""
        assert isinstance(ArgocdClient(instance), ControllerClient)

    async def test_requires_context_manager(self, instance: ArgocdInstance):
        """Test using the client outside async with raises."""
        client = ArgocdClient(instance)
        with pytest.raises(RuntimeError, match="Client not initialized"):
            await client.get_application("payments-api-prod")

    @respx.mock
    async def test_get_application(self, instance: ArgocdInstance):
        """Test fetching one application record."""
        route = respx.get(f"{BASE_URL}/api/v1/applications/payments-api-prod").mock(
            return_value=httpx.Response(
                200,
                json={
                    "metadata": {"name": "payments-api-prod"},
                    "status": {"health": {"status": "Healthy"}},
                },
            )
        )

        async with ArgocdClient(instance) as client:
            record = await client.get_application("payments-api-prod")

        assert record["metadata"]["name"] == "payments-api-prod"
        assert route.calls.last.request.headers["Authorization"] == "Bearer test-token"

    @respx.mock
    async def test_get_application_masks_secrets(self, instance: ArgocdInstance):
        """Test secrets in the record are masked by default."""
        respx.get(f"{BASE_URL}/api/v1/applications/app").mock(
            return_value=httpx.Response(
                200, json={"metadata": {"name": "app"}, "spec": {"token": "leak"}}
            )
        )

        async with ArgocdClient(instance) as client:
            record = await client.get_application("app")

        assert record["spec"]["token"] == "***MASKED***"

    @respx.mock
    async def test_get_application_masking_disabled(self, instance: ArgocdInstance):
        """Test masking can be switched off."""
        respx.get(f"{BASE_URL}/api/v1/applications/app").mock(
            return_value=httpx.Response(200, json={"spec": {"token": "visible"}})
        )

        async with ArgocdClient(instance, mask_secrets=False) as client:
            record = await client.get_application("app")

        assert record["spec"]["token"] == "visible"

    @respx.mock
    async def test_not_found_raises_argocd_error(self, instance: ArgocdInstance):
        """Test 404 responses carry ArgoCD's message."""
        respx.get(f"{BASE_URL}/api/v1/applications/missing").mock(
            return_value=httpx.Response(
                404,
                json={"message": "applications.argoproj.io \"missing\" not found", "code": 5},
            )
        )

        async with ArgocdClient(instance) as client:
            with pytest.raises(ArgocdError) as exc_info:
                await client.get_application("missing")

        assert exc_info.value.code == 404
        assert "not found" in exc_info.value.message

    @respx.mock
    async def test_non_json_error_body(self, instance: ArgocdInstance):
        """Test error bodies that are not JSON end up in details."""
        respx.get(f"{BASE_URL}/api/v1/applications/app").mock(
            return_value=httpx.Response(502, text="Bad Gateway")
        )

        async with ArgocdClient(instance) as client:
            with pytest.raises(ArgocdError) as exc_info:
                await client.get_application("app")

        assert exc_info.value.code == 502
        assert exc_info.value.message == "HTTP 502"
        assert exc_info.value.details == "Bad Gateway"

    @respx.mock
    async def test_retries_connect_errors(self, instance: ArgocdInstance, no_retry_wait):
        """Test refused connections are retried."""
        route = respx.get(f"{BASE_URL}/api/v1/applications/app").mock(
            side_effect=[
                httpx.ConnectError("connection refused"),
                httpx.Response(200, json={"metadata": {"name": "app"}}),
            ]
        )

        async with ArgocdClient(instance) as client:
            record = await client.get_application("app")

        assert record["metadata"]["name"] == "app"
        assert route.call_count == 2

    @respx.mock
    async def test_reraises_after_retries(self, instance: ArgocdInstance, no_retry_wait):
        """Test the original timeout surfaces once retries are spent."""
        route = respx.get(f"{BASE_URL}/api/v1/applications/app").mock(
            side_effect=httpx.ReadTimeout("timed out")
        )

        async with ArgocdClient(instance) as client:
            with pytest.raises(httpx.ReadTimeout):
                await client.get_application("app")

        assert route.call_count == 3

    @respx.mock
    async def test_sync_application_body(self, instance: ArgocdInstance):
        """Test sync options are forwarded to ArgoCD."""
        route = respx.post(f"{BASE_URL}/api/v1/applications/payments-api-prod/sync").mock(
            return_value=httpx.Response(
                200,
                json={
                    "metadata": {"name": "payments-api-prod"},
                    "status": {"operationState": {"phase": "Running"}},
                },
            )
        )

        async with ArgocdClient(instance) as client:
            ack = await client.sync_application(
                "payments-api-prod", dry_run=False, prune=True, force=True, revision="abc123"
            )

        assert ack["status"]["operationState"]["phase"] == "Running"
        body = route.calls.last.request.read()
        assert b'"prune":true' in body.replace(b" ", b"")
        assert b'"dryRun":false' in body.replace(b" ", b"")
        assert b'"revision":"abc123"' in body.replace(b" ", b"")
        assert b'"force":true' in body.replace(b" ", b"")

    @respx.mock
    async def test_sync_application_minimal_body(self, instance: ArgocdInstance):
        """Test no strategy or revision is sent by default."""
        route = respx.post(f"{BASE_URL}/api/v1/applications/app/sync").mock(
            return_value=httpx.Response(200, json={})
        )

        async with ArgocdClient(instance) as client:
            await client.sync_application("app")

        body = route.calls.last.request.read()
        assert b"strategy" not in body
        assert b"revision" not in body

    @respx.mock
    async def test_get_version(self, instance: ArgocdInstance):
        """Test the version endpoint."""
        respx.get(f"{BASE_URL}/api/version").mock(
            return_value=httpx.Response(200, json={"Version": "v2.10.0"})
        )

        async with ArgocdClient(instance) as client:
            version = await client.get_version()

        assert version == {"Version": "v2.10.0"}

    def test_base_url(self, instance: ArgocdInstance):
        """Test base_url exposes the server URL."""
        assert ArgocdClient(instance).base_url == BASE_URL
