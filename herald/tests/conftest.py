from __future__ import annotations

import pytest

from herald.core.config import Settings, get_settings
from herald.services.notifications.factory import NotificationServices, build_in_memory_services
from herald.tests.utils.fakes import FakeClock, ScriptedTransport


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    # Settings are lru-cached; clear around each test so monkeypatched env never leaks.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, queue_store_backend="memory")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def services(settings: Settings, clock: FakeClock, transport: ScriptedTransport) -> NotificationServices:
    return build_in_memory_services(settings=settings, transport=transport, clock=clock)

