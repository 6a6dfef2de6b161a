# ABOUTME: ArgoCD deployment status package initialization
# ABOUTME: Exposes version information and the package layout

"""
ArgoCD Deployment Status - live GitOps state for catalogued services.

=============================================================================
WHAT DOES THIS PACKAGE DO?
=============================================================================

Every service in the developer portal catalog can carry an annotation that
names its ArgoCD application:

    metadata:
      annotations:
        argocd/app-name: payments-api

From that single annotation this package answers three questions:

1. HOW IS IT DEPLOYED?     Health and sync state of the application, with
                           structured errors and a log link when unhealthy.
2. HOW IS IT EVERYWHERE?   One status per environment (development, staging,
                           production) folded into a single overall health.
3. CAN I REDEPLOY IT?      Permission-checked manual syncs whose progress can
                           be polled by sync ID.

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

argocd_status/
├── __init__.py          <- YOU ARE HERE
├── config.py            <- Settings from environment variables
├── models.py            <- Statuses, errors, sync operations, catalog entities
├── errors.py            <- Exception taxonomy (connection, authorization, ...)
├── classifier.py        <- Failure -> DeploymentError with suggested actions
├── normalizer.py        <- Raw ArgoCD record -> DeploymentStatus
├── cache.py             <- TTL cache of normalized statuses
├── resolver.py          <- Catalog entity -> per-environment application names
├── aggregator.py        <- Per-environment statuses -> overall health
├── permissions.py       <- "Can user U sync application A?"
├── orchestrator.py      <- Sync trigger and lifecycle tracking
├── service.py           <- Produced API used by the rest of the platform
├── server.py            <- MCP server exposing the produced API as tools
└── utils/
    ├── client.py        <- HTTP client for the ArgoCD REST API
    ├── catalog.py       <- HTTP client for the entity catalog
    ├── logging.py       <- Structured logging with audit trails
    └── safety.py        <- Rate limiting and read-only guard
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
