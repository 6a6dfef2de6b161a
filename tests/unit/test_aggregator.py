# ABOUTME: Unit tests for multi-environment aggregation
# ABOUTME: Tests overall health precedence and the empty case

import pytest

from argocd_status.aggregator import aggregate, overall_health
from argocd_status.models import (
    DeploymentStatus,
    Environment,
    HealthStatus,
    OverallHealth,
    SyncState,
)


def status(environment: Environment, health: HealthStatus) -> DeploymentStatus:
    return DeploymentStatus(
        application_name=f"payments-api-{environment}",
        environment=environment,
        health=health,
        sync=SyncState.SYNCED,
        namespace=str(environment),
        log_url="https://argocd.example.com/applications/x/logs",
    )


@pytest.mark.unit
class TestOverallHealth:
    """Tests for overall health precedence."""

    @pytest.mark.parametrize(
        ("healths", "expected"),
        [
            ([HealthStatus.HEALTHY, HealthStatus.HEALTHY], OverallHealth.HEALTHY),
            ([HealthStatus.HEALTHY, HealthStatus.DEGRADED], OverallHealth.DEGRADED),
            ([HealthStatus.UNKNOWN, HealthStatus.DEGRADED], OverallHealth.DEGRADED),
            ([HealthStatus.HEALTHY, HealthStatus.UNKNOWN], OverallHealth.UNKNOWN),
            ([HealthStatus.PROGRESSING, HealthStatus.HEALTHY], OverallHealth.HEALTHY),
        ],
    )
    def test_precedence(self, healths, expected):
        """Test Degraded beats Unknown beats Healthy."""
        statuses = {
            env: status(env, health) for env, health in zip(Environment, healths, strict=False)
        }
        assert overall_health(statuses) == expected

    def test_empty_is_unknown(self):
        """Test zero environments is Unknown."""
        assert overall_health({}) == OverallHealth.UNKNOWN


@pytest.mark.unit
class TestAggregate:
    """Tests for aggregate."""

    def test_aggregate(self):
        """Test the mapping is copied and health folded."""
        statuses = {Environment.PRODUCTION: status(Environment.PRODUCTION, HealthStatus.HEALTHY)}

        result = aggregate("payments-api", statuses)

        assert result.service_name == "payments-api"
        assert result.environments == statuses
        assert result.environments is not statuses
        assert result.overall_health == OverallHealth.HEALTHY

    def test_aggregate_empty(self):
        """Test an empty mapping aggregates to Unknown."""
        result = aggregate("payments-api", {})
        assert result.environments == {}
        assert result.overall_health == OverallHealth.UNKNOWN
