# ABOUTME: Environment resolver mapping a catalog entity to per-environment ArgoCD application names
# ABOUTME: Fans status lookups out to every environment concurrently, each under its own timeout

"""
Environment resolver.

=============================================================================
NAMING CONVENTION
=============================================================================

A catalogued service opts in with one annotation:

    metadata:
      annotations:
        argocd/app-name: payments-api

and the resolver derives one ArgoCD application per environment:

    development -> payments-api-development
    staging     -> payments-api-staging
    production  -> payments-api-prod

If the annotation already carries an environment suffix
("payments-api-prod"), that environment keeps the annotation verbatim and the
other names are built from the stripped base ("payments-api"). A service that
does not follow the convention can pin any environment explicitly:

    argocd/app-name-staging: payments-stg

=============================================================================
CONCURRENT LOOKUP
=============================================================================

`lookup` runs one fetch per environment with asyncio.gather, each bounded by
asyncio.wait_for. A slow environment turns into a ControllerConnectionError
for that environment only; the others are still returned.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

import structlog

from argocd_status.errors import ControllerConnectionError
from argocd_status.models import Entity, Environment

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_ANNOTATION = "argocd/app-name"

# Recognized application name suffixes, longest spelling first
ENVIRONMENT_SUFFIXES: tuple[tuple[str, Environment], ...] = (
    ("-production", Environment.PRODUCTION),
    ("-prod", Environment.PRODUCTION),
    ("-development", Environment.DEVELOPMENT),
    ("-dev", Environment.DEVELOPMENT),
    ("-staging", Environment.STAGING),
    ("-stage", Environment.STAGING),
)


def split_environment(application_name: str) -> tuple[str, Environment | None]:
    """Split "payments-api-prod" into ("payments-api", PRODUCTION); no suffix gives None."""
    for suffix, environment in ENVIRONMENT_SUFFIXES:
        if application_name.endswith(suffix) and len(application_name) > len(suffix):
            return application_name[: -len(suffix)], environment
    return application_name, None


def environment_from_name(application_name: str) -> Environment:
    """Environment encoded in an application name; unsuffixed names are production."""
    _, environment = split_environment(application_name)
    return environment or Environment.PRODUCTION


def conventional_name(base: str, environment: Environment) -> str:
    if environment == Environment.PRODUCTION:
        return f"{base}-prod"
    return f"{base}-{environment}"


class EnvironmentResolver:
    """Resolve catalog entities to ArgoCD application names per environment."""

    def __init__(
        self,
        annotation: str = DEFAULT_ANNOTATION,
        environments: Iterable[Environment] | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._annotation = annotation
        self._environments = tuple(environments) if environments is not None else tuple(Environment)
        self._timeout = timeout

    @property
    def environments(self) -> tuple[Environment, ...]:
        return self._environments

    def resolve(self, entity: Entity) -> dict[Environment, str] | None:
        """
        Application name per configured environment.

        Returns None when the entity has no ArgoCD annotation, meaning the
        feature is not enabled for that service.
        """
        annotated = entity.annotations.get(self._annotation, "").strip()
        if not annotated:
            return None

        base, annotated_env = split_environment(annotated)
        names: dict[Environment, str] = {}
        for environment in self._environments:
            override = entity.annotations.get(f"{self._annotation}-{environment}", "").strip()
            if override:
                names[environment] = override
            elif environment == annotated_env:
                names[environment] = annotated
            else:
                names[environment] = conventional_name(base, environment)
        return names

    async def lookup(
        self,
        entity: Entity,
        fetch: Callable[[Environment, str], Awaitable[T]],
    ) -> dict[Environment, T | Exception] | None:
        """
        Run `fetch(environment, application_name)` for every environment concurrently.

        Each value in the returned mapping is either the fetch result or the
        exception it raised; a timeout becomes ControllerConnectionError.
        Returns None when the entity has no ArgoCD annotation.
        """
        names = self.resolve(entity)
        if names is None:
            return None

        async def fetch_one(environment: Environment, application_name: str) -> T:
            try:
                return await asyncio.wait_for(
                    fetch(environment, application_name), timeout=self._timeout
                )
            except TimeoutError as e:
                raise ControllerConnectionError(
                    f"Timed out after {self._timeout}s fetching status of '{application_name}'",
                    application_name,
                ) from e

        environments = list(names)
        results = await asyncio.gather(
            *(fetch_one(env, names[env]) for env in environments),
            return_exceptions=True,
        )

        outcomes: dict[Environment, T | Exception] = {}
        for environment, result in zip(environments, results, strict=True):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            outcomes[environment] = result
        logger.debug(
            "Resolved environment lookups",
            entity=entity.name,
            environments=[str(e) for e in environments],
        )
        return outcomes
