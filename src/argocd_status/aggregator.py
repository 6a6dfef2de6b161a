# ABOUTME: Folds per-environment statuses of one service into a MultiEnvironmentStatus
# ABOUTME: Degraded wins over Unknown, Unknown wins over Healthy

"""Multi-environment aggregation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from argocd_status.models import HealthStatus, MultiEnvironmentStatus, OverallHealth

if TYPE_CHECKING:
    from collections.abc import Mapping

    from argocd_status.models import DeploymentStatus, Environment


def overall_health(statuses: Mapping[Environment, DeploymentStatus]) -> OverallHealth:
    """
    Degraded if any environment is Degraded, else Unknown if any is Unknown,
    else Healthy. No environments at all is Unknown.
    """
    if not statuses:
        return OverallHealth.UNKNOWN
    healths = {s.health for s in statuses.values()}
    if HealthStatus.DEGRADED in healths:
        return OverallHealth.DEGRADED
    if HealthStatus.UNKNOWN in healths:
        return OverallHealth.UNKNOWN
    return OverallHealth.HEALTHY


def aggregate(
    service_name: str,
    environment_statuses: Mapping[Environment, DeploymentStatus],
) -> MultiEnvironmentStatus:
    return MultiEnvironmentStatus(
        service_name=service_name,
        environments=dict(environment_statuses),
        overall_health=overall_health(environment_statuses),
    )
