"""Shared fixtures for the WP Healer test suite."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from wp_healer.core.models import Target
from wp_healer.core.remote_executor import CommandRunner
from wp_healer.core.store import RecordStore
from tests.helpers.fakes import (
    SITE_DOMAIN,
    SITE_PATH,
    FakeBackupService,
    FakeExecutor,
    FakeHttpProbe,
    build_engine,
    script_healthy_server,
)

# ---------------------------------------------------------------------------
# Transport fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> RecordStore:
    return RecordStore()


@pytest.fixture
def executor() -> FakeExecutor:
    """Server whose probes all report a healthy WordPress install."""
    return script_healthy_server(FakeExecutor())


@pytest.fixture
def runner(executor: FakeExecutor) -> CommandRunner:
    return CommandRunner(executor, max_concurrent=5, command_delay_ms=0)


@pytest.fixture
def http_probe() -> FakeHttpProbe:
    return FakeHttpProbe()


@pytest.fixture
def backup_service(store: RecordStore) -> FakeBackupService:
    return FakeBackupService(store)


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def site(store: RecordStore) -> Target:
    """A registered site without diagnosis cooldown."""
    target = Target(
        'site-1',
        SITE_DOMAIN,
        SITE_PATH,
        'server-1',
        subdomains=[{'subdomain': 'shop.example.com', 'path': '/var/www/shop'}],
        healing_cooldown=0,
        retry_base_delay_ms=10,
    )
    store.upsert('sites', target)
    return target


@pytest.fixture
def engine(store: RecordStore, runner: CommandRunner, http_probe: FakeHttpProbe,
           backup_service: FakeBackupService) -> SimpleNamespace:
    return build_engine(store, runner, http_probe, backup_service)
