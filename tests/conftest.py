from __future__ import annotations

import pytest

import planrelay.persistence as persistence
from planrelay.config import PlanRelayConfig
from planrelay.persistence import InMemoryRepository
from planrelay.service import build_services
from planrelay.transports.inmemory import InMemoryTransport

from tests.fakes import CRON_SECRET


@pytest.fixture(autouse=True)
def _reset_repository_singleton():
    persistence._repository_instance = None
    yield
    persistence._repository_instance = None


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def services(repo, transport):
    return build_services(
        config=PlanRelayConfig(cron_secret=CRON_SECRET),
        repository=repo,
        transport=transport,
    )
