"""Playwright browser launch for token acquisition.

.. warning:: SYSTEM CHROME ONLY

   The browser is always launched with ``executable_path=chrome_path()``.
   Playwright's vendored Chromium has a distinct fingerprint that target
   sites detect and block, and it needs a separate ``playwright install``.
   Playwright is used only for its automation protocol.

Chrome is auto-detected in standard locations; ``CHROME_PATH`` overrides.
"""

from __future__ import annotations

import os
import shutil
import sys
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from osintrix.config import BrowserConfig
from osintrix.logger import logger

if TYPE_CHECKING:
    from playwright.async_api import Page

_CHROME_CANDIDATES_LINUX = [
    "/usr/bin/google-chrome-stable",
    "/usr/bin/google-chrome",
    "/usr/bin/chromium-browser",
    "/usr/bin/chromium",
    "/snap/bin/chromium",
]

_CHROME_CANDIDATES_MACOS = [
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
]


def _detect_chrome() -> str | None:
    candidates = _CHROME_CANDIDATES_MACOS if sys.platform == "darwin" else _CHROME_CANDIDATES_LINUX
    for candidate in candidates:
        if Path(candidate).is_file():
            return candidate
    for name in ("google-chrome-stable", "google-chrome", "chromium-browser", "chromium"):
        found = shutil.which(name)
        if found:
            return found
    return None


def chrome_path() -> str:
    """Return the system Chrome/Chromium binary path.

    Resolution order: ``CHROME_PATH`` env var, then well-known locations,
    then ``RuntimeError``.
    """
    path = os.environ.get("CHROME_PATH", "")
    if path:
        if not Path(path).is_file():
            raise RuntimeError(f"CHROME_PATH={path!r} does not exist")
        return path

    detected = _detect_chrome()
    if detected:
        return detected

    raise RuntimeError(
        "Chrome/Chromium is not installed (or not in a standard location). "
        "Install it or set CHROME_PATH in .env."
    )


class PageLauncher(Protocol):
    """Opens one isolated page and guarantees its browser is closed on exit."""

    def __call__(self, config: BrowserConfig) -> AbstractAsyncContextManager[Page]: ...


@asynccontextmanager
async def launch_page(config: BrowserConfig) -> AsyncIterator[Page]:
    """Launch a fresh browser, yield a page, close the browser on every exit path.

    Each call owns its own browser process; nothing is shared between
    concurrent acquisitions.  A failure while closing is logged and never
    replaces an exception raised by the body.
    """
    from playwright.async_api import async_playwright

    async with async_playwright() as pw:
        browser = await pw.chromium.launch(
            executable_path=chrome_path(),
            headless=config.headless,
            args=config.launch_args,
        )
        try:
            context = await browser.new_context(
                user_agent=config.user_agent,
                viewport={"width": config.viewport_width, "height": config.viewport_height},
            )
            yield await context.new_page()
        finally:
            try:
                await browser.close()
                logger.debug("Browser closed")
            except Exception as exc:
                logger.warning("Browser close failed", error=str(exc))
