"""Shared test fixtures for osintrix."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import Any

import pytest

from osintrix.config import BrowserConfig
from osintrix.types import CommandRequest

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures - importable by test files)
# ---------------------------------------------------------------------------

_CACHED_PROPERTY_NAMES = frozenset({"project_root", "data_dir", "db_path"})


def make_settings(**overrides):
    """Create a Settings object from pure defaults - no config.toml, no .env.

    Accepts model fields (quota, browser, ...) and cached property overrides
    (data_dir, db_path).

    Usage::

        s = make_settings(quota=QuotaConfig(default_limit=5))
        s = make_settings(db_path=tmp_path / "test.db")
    """
    from osintrix.config import (
        BotConfig,
        BrowserConfig,
        LoggingConfig,
        PluginsConfig,
        QuotaConfig,
        RetrievalConfig,
        SecretsConfig,
        Settings,
        StorageConfig,
    )

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "bot": BotConfig(),
        "logging": LoggingConfig(),
        "quota": QuotaConfig(),
        "plugins": PluginsConfig(entrypoints=False),
        "commands": {},
        "browser": BrowserConfig(),
        "retrieval": RetrievalConfig(),
        "secrets": SecretsConfig(),
        "storage": StorageConfig(),
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


def fast_browser_config(**overrides: Any) -> BrowserConfig:
    """Browser timings short enough for unit tests."""
    values: dict[str, Any] = {
        "settle_ms": 50,
        "selector_timeout_ms": 10,
        "navigation_timeout_ms": 100,
        "search_attempts": 2,
        "acquisition_timeout_s": 5.0,
    }
    values.update(overrides)
    return BrowserConfig(**values)


# ---------------------------------------------------------------------------
# Fake Playwright objects
# ---------------------------------------------------------------------------


class FakeRequest:
    def __init__(self, url: str, post_data: str | None = None, method: str = "POST") -> None:
        self.url = url
        self.method = method
        self.post_data = post_data


class FakeResponse:
    def __init__(self, url: str, data: Any, method: str = "POST", delay: float = 0) -> None:
        self.url = url
        self.request = FakeRequest(url, method=method)
        self._data = data
        self.delay = delay

    async def json(self) -> Any:
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self._data, Exception):
            raise self._data
        return self._data


class FakeButton:
    def __init__(self, page: FakePage, label: str) -> None:
        self.page = page
        self.label = label

    async def text_content(self) -> str:
        return self.label

    async def click(self) -> None:
        self.page.clicked = self.label
        self.page._fire_search()


class FakePage:
    """Just enough of ``playwright.async_api.Page`` for the acquisition pipeline.

    ``on_search`` is an async callable ``(page) -> None`` started when the
    search is submitted (button click or form submit); it scripts the network
    traffic the real site would produce via ``emit()``.
    """

    def __init__(
        self,
        *,
        page_tokens: list[str | None] | None = None,
        has_input: bool = True,
        buttons: tuple[str, ...] = ("Cari",),
        on_search: Callable[[FakePage], Any] | None = None,
        goto_error: Exception | None = None,
    ) -> None:
        self.page_tokens = list(page_tokens or [])
        self.has_input = has_input
        self.buttons = [FakeButton(self, label) for label in buttons]
        self.on_search = on_search
        self.goto_error = goto_error
        self.filled: str | None = None
        self.clicked: str | None = None
        self.form_submitted = False
        self.selector_waits = 0
        self.listeners: dict[str, list[Callable[[Any], None]]] = {}
        self._search_task: asyncio.Task | None = None

    async def goto(self, url: str, **kwargs: Any) -> None:
        self.url = url
        if self.goto_error is not None:
            raise self.goto_error

    async def evaluate(self, script: str) -> Any:
        from osintrix.retrieval.acquisition import _SUBMIT_FORM_JS

        if script == _SUBMIT_FORM_JS:
            self.form_submitted = True
            self._fire_search()
            return True
        return self.page_tokens.pop(0) if self.page_tokens else None

    async def wait_for_selector(self, selector: str, timeout: float | None = None) -> None:
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        self.selector_waits += 1
        if not self.has_input:
            raise PlaywrightTimeoutError(f"waiting for {selector} timed out")

    async def fill(self, selector: str, value: str) -> None:
        self.filled = value

    async def query_selector_all(self, selector: str) -> list[FakeButton]:
        return list(self.buttons)

    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable[[Any], None]) -> None:
        self.listeners[event].remove(handler)

    def emit(self, event: str, obj: Any) -> None:
        for handler in list(self.listeners.get(event, [])):
            handler(obj)

    def _fire_search(self) -> None:
        if self.on_search is not None:
            self._search_task = asyncio.create_task(self.on_search(self))


def fake_launcher(page: FakePage):
    """A ``PageLauncher`` that yields *page* and records teardown."""
    page.launched = False
    page.closed = False

    @asynccontextmanager
    async def _launch(config: BrowserConfig):
        page.launched = True
        try:
            yield page
        finally:
            page.closed = True

    return _launch


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Every test starts from pure-default settings, isolated from config.toml."""
    monkeypatch.setattr("osintrix.config._settings", make_settings())


@pytest.fixture(autouse=True, scope="session")
def _close_test_database():
    """Stop the aiosqlite worker thread after the whole session."""
    yield
    import osintrix.db._connection as db_conn

    if db_conn._db is not None:
        db_conn._db.stop()
        if db_conn._db._thread is not None and db_conn._db._thread.is_alive():
            db_conn._db._thread.join(timeout=2)
        db_conn._db = None


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_request():
    """Factory fixture for command requests."""

    def _make(command: str = "menu", text: str = "", *, identity: str = "1001") -> CommandRequest:
        return CommandRequest(identity=identity, command=command, text=text)

    return _make
