"""
WEBCORE - Test Configuration

Pytest fixtures and configuration for all tests.
"""
import asyncio
import os
from typing import Any, Callable, List, Optional, Tuple

import pytest

# Must be set before any module builds a Config
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("OTEL_TRACING_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from core.library import Connector, Library  # noqa: E402


Event = Tuple[str, Any]


class FakeLibrary(Library):
    """Library that records its lifecycle calls and fails on demand."""

    install_error: Optional[BaseException] = None
    uninstall_error: Optional[BaseException] = None

    def __init__(self, events: Optional[List[Event]] = None):
        self.events = events if events is not None else []
        self.params = None

    async def install(self, params):
        self.events.append(("install", self))
        if self.install_error is not None:
            raise self.install_error
        self.params = params

    async def uninstall(self):
        self.events.append(("uninstall", self))
        if self.uninstall_error is not None:
            raise self.uninstall_error

    def calls(self, action: str) -> int:
        return sum(1 for name, lib in self.events if name == action and lib is self)


class FakeConnector(FakeLibrary, Connector):
    """Connection-bearing fake with optional slow or failing connect."""

    connect_error: Optional[BaseException] = None
    disconnect_error: Optional[BaseException] = None
    connect_delay: float = 0.0
    disconnect_delay: float = 0.0

    async def connect(self):
        self.events.append(("connect", self))
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error

    async def disconnect(self):
        self.events.append(("disconnect", self))
        if self.disconnect_delay:
            await asyncio.sleep(self.disconnect_delay)
        if self.disconnect_error is not None:
            raise self.disconnect_error


class FakeFactory:
    """
    Loader factory producing fakes.

    Keyword attributes are set on every product, so a factory can build
    libraries that fail in a given lifecycle step.
    """

    def __init__(self, cls: type = FakeConnector, events: Optional[List[Event]] = None, **attrs: Any):
        self.cls = cls
        self.events = events if events is not None else []
        self.attrs = attrs
        self.created: List[FakeLibrary] = []

    def __call__(self) -> FakeLibrary:
        library = self.cls(self.events)
        for name, value in self.attrs.items():
            setattr(library, name, value)
        self.created.append(library)
        return library

    @property
    def builds(self) -> int:
        return len(self.created)


@pytest.fixture
def events() -> List[Event]:
    """Shared lifecycle event log."""
    return []


@pytest.fixture
def make_factory(events) -> Callable[..., FakeFactory]:
    """Build fake factories sharing the test's event log."""
    def _make(cls: type = FakeConnector, **attrs: Any) -> FakeFactory:
        return FakeFactory(cls, events, **attrs)
    return _make


@pytest.fixture
def fake_library_cls():
    return FakeLibrary


@pytest.fixture
def fake_connector_cls():
    return FakeConnector


@pytest.fixture
def test_config(monkeypatch):
    """Config with every external library disabled."""
    for name in (
        "DB_HOST",
        "REDIS_HOST",
        "PUBSUB_TOPIC",
        "PUBSUB_SUBSCRIPTION",
        "AUTH_ENABLED",
        "CORS_ORIGINS",
    ):
        monkeypatch.delenv(name, raising=False)

    from config import Config

    return Config()


@pytest.fixture
def auth_yaml(tmp_path) -> str:
    """Auth store file with an admin and a read-only user."""
    path = tmp_path / "auth.yaml"
    path.write_text(
        "roles:\n"
        "  admin: ['* /**']\n"
        "  reader: ['GET /api/status']\n"
        "users:\n"
        "  - id: alice\n"
        "    name: Alice\n"
        "    api_key: alice-key\n"
        "    roles: [admin]\n"
        "  - id: bob\n"
        "    name: Bob\n"
        "    api_key: bob-key\n"
        "    roles: [reader]\n",
        encoding="utf-8",
    )
    return str(path)


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "property: marks hypothesis property tests")
