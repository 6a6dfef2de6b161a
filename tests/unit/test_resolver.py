# ABOUTME: Unit tests for the environment resolver
# ABOUTME: Tests naming convention, suffix handling, overrides, and concurrent lookup

import asyncio

import pytest

from argocd_status.errors import ControllerConnectionError
from argocd_status.models import Entity, Environment
from argocd_status.resolver import (
    EnvironmentResolver,
    conventional_name,
    environment_from_name,
    split_environment,
)


def entity(**annotations: str) -> Entity:
    return Entity(name="payments-api", annotations=annotations)


@pytest.mark.unit
class TestNameHelpers:
    """Tests for suffix helpers."""

    @pytest.mark.parametrize(
        ("name", "base", "environment"),
        [
            ("payments-api-prod", "payments-api", Environment.PRODUCTION),
            ("payments-api-production", "payments-api", Environment.PRODUCTION),
            ("payments-api-staging", "payments-api", Environment.STAGING),
            ("payments-api-stage", "payments-api", Environment.STAGING),
            ("payments-api-dev", "payments-api", Environment.DEVELOPMENT),
            ("payments-api-development", "payments-api", Environment.DEVELOPMENT),
            ("payments-api", "payments-api", None),
            ("-prod", "-prod", None),
        ],
    )
    def test_split_environment(self, name, base, environment):
        """Test recognized suffixes are split off."""
        assert split_environment(name) == (base, environment)

    def test_environment_from_name_defaults_to_production(self):
        """Test names without a suffix are production."""
        assert environment_from_name("payments-api") == Environment.PRODUCTION
        assert environment_from_name("payments-api-dev") == Environment.DEVELOPMENT

    def test_conventional_name(self):
        """Test production is abbreviated, other environments are spelled out."""
        assert conventional_name("payments-api", Environment.PRODUCTION) == "payments-api-prod"
        assert conventional_name("payments-api", Environment.STAGING) == "payments-api-staging"
        assert (
            conventional_name("payments-api", Environment.DEVELOPMENT)
            == "payments-api-development"
        )


@pytest.mark.unit
class TestResolve:
    """Tests for EnvironmentResolver.resolve."""

    def test_no_annotation(self):
        """Test entities without the annotation are not enabled."""
        assert EnvironmentResolver().resolve(entity()) is None

    def test_blank_annotation(self):
        """Test a blank annotation counts as missing."""
        assert EnvironmentResolver().resolve(entity(**{"argocd/app-name": "  "})) is None

    def test_convention(self):
        """Test the payments-api naming convention."""
        names = EnvironmentResolver().resolve(entity(**{"argocd/app-name": "payments-api"}))

        assert names == {
            Environment.DEVELOPMENT: "payments-api-development",
            Environment.STAGING: "payments-api-staging",
            Environment.PRODUCTION: "payments-api-prod",
        }

    def test_suffixed_annotation(self):
        """Test an annotation with a suffix keeps it verbatim for its environment."""
        names = EnvironmentResolver().resolve(
            entity(**{"argocd/app-name": "payments-api-production"})
        )

        assert names == {
            Environment.DEVELOPMENT: "payments-api-development",
            Environment.STAGING: "payments-api-staging",
            Environment.PRODUCTION: "payments-api-production",
        }

    def test_explicit_override(self):
        """Test argocd/app-name-<environment> overrides the convention."""
        names = EnvironmentResolver().resolve(
            entity(
                **{
                    "argocd/app-name": "payments-api",
                    "argocd/app-name-staging": "payments-stg",
                }
            )
        )

        assert names is not None
        assert names[Environment.STAGING] == "payments-stg"
        assert names[Environment.PRODUCTION] == "payments-api-prod"

    def test_configured_environments_only(self):
        """Test only configured environments are resolved."""
        resolver = EnvironmentResolver(environments=[Environment.PRODUCTION])
        names = resolver.resolve(entity(**{"argocd/app-name": "payments-api"}))
        assert names == {Environment.PRODUCTION: "payments-api-prod"}

    def test_custom_annotation(self):
        """Test a custom annotation key."""
        resolver = EnvironmentResolver(annotation="example.com/argocd")
        names = resolver.resolve(entity(**{"example.com/argocd": "billing"}))
        assert names is not None
        assert names[Environment.PRODUCTION] == "billing-prod"


@pytest.mark.unit
class TestLookup:
    """Tests for EnvironmentResolver.lookup."""

    async def test_fetches_every_environment(self):
        """Test each environment's application is fetched once."""
        fetched: list[str] = []

        async def fetch(environment: Environment, name: str) -> str:
            fetched.append(name)
            return name.upper()

        outcomes = await EnvironmentResolver().lookup(
            entity(**{"argocd/app-name": "payments-api"}), fetch
        )

        assert sorted(fetched) == [
            "payments-api-development",
            "payments-api-prod",
            "payments-api-staging",
        ]
        assert outcomes is not None
        assert outcomes[Environment.PRODUCTION] == "PAYMENTS-API-PROD"

    async def test_shared_application_fetched_per_environment(self):
        """Test overrides pointing two environments at one application keep both."""
        seen: list[tuple[Environment, str]] = []

        async def fetch(environment: Environment, name: str) -> Environment:
            seen.append((environment, name))
            return environment

        outcomes = await EnvironmentResolver().lookup(
            entity(
                **{
                    "argocd/app-name": "payments-api",
                    "argocd/app-name-development": "payments-shared",
                    "argocd/app-name-staging": "payments-shared",
                }
            ),
            fetch,
        )

        assert outcomes is not None
        assert (Environment.DEVELOPMENT, "payments-shared") in seen
        assert (Environment.STAGING, "payments-shared") in seen
        assert outcomes[Environment.DEVELOPMENT] == Environment.DEVELOPMENT
        assert outcomes[Environment.STAGING] == Environment.STAGING

    async def test_no_annotation(self):
        """Test lookup returns None without calling fetch."""

        async def fetch(environment: Environment, name: str) -> str:
            raise AssertionError("fetch must not be called")

        assert await EnvironmentResolver().lookup(entity(), fetch) is None

    async def test_runs_concurrently(self):
        """Test lookups overlap instead of running one after another."""
        started = asyncio.Event()
        in_flight = 0
        peak = 0

        async def fetch(environment: Environment, name: str) -> str:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            if peak == 3:
                started.set()
            await asyncio.wait_for(started.wait(), timeout=1)
            in_flight -= 1
            return name

        await EnvironmentResolver().lookup(entity(**{"argocd/app-name": "payments-api"}), fetch)

        assert peak == 3

    async def test_failures_are_returned(self):
        """Test one failing environment does not sink the others."""

        async def fetch(environment: Environment, name: str) -> str:
            if name.endswith("-staging"):
                raise RuntimeError("boom")
            return name

        outcomes = await EnvironmentResolver().lookup(
            entity(**{"argocd/app-name": "payments-api"}), fetch
        )

        assert outcomes is not None
        assert isinstance(outcomes[Environment.STAGING], RuntimeError)
        assert outcomes[Environment.PRODUCTION] == "payments-api-prod"

    async def test_timeout_per_environment(self):
        """Test a slow environment times out as a connection error."""

        async def fetch(environment: Environment, name: str) -> str:
            if name.endswith("-prod"):
                await asyncio.sleep(10)
            return name

        resolver = EnvironmentResolver(timeout=0.05)
        outcomes = await resolver.lookup(entity(**{"argocd/app-name": "payments-api"}), fetch)

        assert outcomes is not None
        assert isinstance(outcomes[Environment.PRODUCTION], ControllerConnectionError)
        assert outcomes[Environment.STAGING] == "payments-api-staging"
