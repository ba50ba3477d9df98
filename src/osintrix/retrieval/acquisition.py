"""Token acquisition: obtain a page-scoped API token by driving the lookup page.

Pipeline (one browser per run, closed on every exit path):

1. Load the lookup page.
2. Passive extraction: embedded ``__NEXT_DATA__`` payload, ``localStorage``,
   inline scripts.  Recorded, never short-circuits.
3. Arm persistent request/response listeners *before* touching the form:
   outbound API requests yield tokens, API responses yield whole results
   (discarding results whose subject id does not match the requested key).
4. Active search: type the key into the page and press its search button,
   or submit the form when no button is recognisable.
5. Settle: give the watchers a bounded window to fire.
6. Resolve once, after the window closes, by walking a fixed precedence
   list: intercepted result > intercepted request token > page token read
   after the search > page token read on load > configured static token.

Launch failures, navigation timeouts and a missing search input surface as
``AcquisitionFailed``; a page that cannot be reached at the network level
surfaces as ``UpstreamUnavailable``.  Nothing is retried here, the caller
owns retry policy.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import TYPE_CHECKING, Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from osintrix.config import BrowserConfig, RetrievalConfig
from osintrix.errors import AcquisitionFailed, UpstreamUnavailable
from osintrix.logger import logger
from osintrix.retrieval.browser import PageLauncher, launch_page
from osintrix.types import AcquisitionOutcome, AcquisitionToken, RetrievalResult, TokenSource

if TYPE_CHECKING:
    from playwright.async_api import Page, Request, Response

# Highest first.  An intercepted result outranks every token and is handled
# separately because it makes the backend call unnecessary.
TOKEN_PRECEDENCE: tuple[TokenSource, ...] = (
    TokenSource.INTERCEPTED_TRAFFIC,
    TokenSource.ACTIVE_SEARCH,
    TokenSource.PAGE_INSPECTION,
)

_SEARCH_INPUT = 'input[type="text"]'
_SEARCH_WORDS = ("cari", "search")
_TOKEN_IN_QUERY = re.compile(r'token\s*:\s*"([^"]+)"', re.IGNORECASE)
_NET_ERROR = "net::ERR_"  # Chromium network-stack failure codes

_PASSIVE_EXTRACT_JS = """() => {
    try {
        const el = document.getElementById('__NEXT_DATA__');
        if (el) {
            const data = JSON.parse(el.textContent);
            const token = data && data.props && data.props.pageProps && data.props.pageProps.token;
            if (token) return token;
        }
        const stored = localStorage.getItem('token');
        if (stored) return stored;
        for (const script of document.getElementsByTagName('script')) {
            const m = (script.innerText || '').match(/token\\s*:\\s*['"]([^'"]+)['"]/);
            if (m) return m[1];
        }
    } catch (e) {}
    return null;
}"""

_SUBMIT_FORM_JS = """() => {
    const form = document.querySelector('form');
    if (form) { form.requestSubmit ? form.requestSubmit() : form.submit(); return true; }
    return false;
}"""


# ---------------------------------------------------------------------------
# Resolution cell
# ---------------------------------------------------------------------------


class ResolutionCell:
    """The one slot every signal source writes into during a run.

    Writes are last-write-wins per source; precedence between sources is
    applied only by ``resolve()``, which refuses to run before ``close()``.
    Writes arriving after ``close()`` (from abandoned watchers) are dropped.
    """

    def __init__(self) -> None:
        self._tokens: dict[TokenSource, AcquisitionToken] = {}
        self._result: RetrievalResult | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def offer_token(self, source: TokenSource, value: str | None) -> bool:
        if self._closed or not value:
            return False
        self._tokens[source] = AcquisitionToken(value=value, source=source)
        logger.debug("Token candidate recorded", source=str(source))
        return True

    def offer_result(self, result: RetrievalResult) -> bool:
        if self._closed:
            return False
        self._result = result
        return True

    def close(self) -> None:
        self._closed = True

    def resolve(self, static_token: str | None) -> AcquisitionOutcome:
        if not self._closed:
            raise RuntimeError("ResolutionCell read before the settle window closed")

        if self._result is not None:
            return AcquisitionOutcome(result=self._result)

        for source in TOKEN_PRECEDENCE:
            token = self._tokens.get(source)
            if token is not None:
                return AcquisitionOutcome(token=token)

        if static_token:
            logger.warning("No live token captured, using static fallback token")
            return AcquisitionOutcome(
                token=AcquisitionToken(value=static_token, source=TokenSource.STATIC_FALLBACK)
            )
        raise AcquisitionFailed("No access token could be obtained from the lookup page.")


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def token_from_request_body(body: str | None, root_field: str) -> str | None:
    """Pull the inlined token out of an outbound GraphQL request body."""
    if not body:
        return None
    try:
        data = json.loads(body)
    except ValueError:
        return None
    query = data.get("query") if isinstance(data, dict) else None
    if not isinstance(query, str) or root_field not in query:
        return None
    match = _TOKEN_IN_QUERY.search(query)
    return match.group(1) if match else None


def subject_matches(received: Any, subject_key: str, prefix_len: int) -> bool:
    """True when the upstream subject id agrees with the requested key on its prefix.

    The site masks the tail of returned ids, so only the leading digits can
    be compared.
    """
    if not isinstance(received, str) or not received:
        return False
    prefix = subject_key[:prefix_len]
    return received.startswith(prefix)


def result_from_response_body(
    data: Any, root_field: str, subject_key: str, prefix_len: int
) -> RetrievalResult | None:
    """Validate an intercepted response; None when it is absent or for another subject."""
    if not isinstance(data, dict):
        return None
    body = data.get("data")
    payload = body.get(root_field) if isinstance(body, dict) else None
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    if not isinstance(payload, dict):
        return None
    if not subject_matches(payload.get("nik"), subject_key, prefix_len):
        logger.info("Discarding intercepted response for a different subject")
        return None
    return RetrievalResult.from_payload(payload)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class _Interception:
    """Persistent request/response listeners for one pipeline run.

    Outbound tokens are read inside the listener itself, so a burst of
    requests is recorded in arrival order.  Response bodies need an awaited
    read and are queued for the response watcher, which takes them one at a
    time; a discarded response never hides the one queued behind it.
    """

    def __init__(
        self,
        page: Page,
        cell: ResolutionCell,
        retrieval: RetrievalConfig,
        subject_key: str,
    ) -> None:
        self.page = page
        self.cell = cell
        self.retrieval = retrieval
        self.subject_key = subject_key
        self._responses: asyncio.Queue[Response] = asyncio.Queue()

    def _is_api_call(self, method: str, url: str) -> bool:
        return method.upper() == "POST" and url.startswith(self.retrieval.api_url)

    def _on_request(self, request: Request) -> None:
        if not self._is_api_call(request.method, request.url):
            return
        token = token_from_request_body(request.post_data, self.retrieval.root_field)
        if token and self.cell.offer_token(TokenSource.INTERCEPTED_TRAFFIC, token):
            logger.info("Token captured from outbound request")

    def _on_response(self, response: Response) -> None:
        if self._is_api_call(response.request.method, response.url):
            self._responses.put_nowait(response)

    def arm(self) -> asyncio.Task:
        self.page.on("request", self._on_request)
        self.page.on("response", self._on_response)
        return asyncio.create_task(self._watch_responses())

    def disarm(self) -> None:
        self.page.remove_listener("request", self._on_request)
        self.page.remove_listener("response", self._on_response)

    async def _watch_responses(self) -> None:
        """Return once a response for the requested subject has been captured."""
        while not self.cell.closed:
            response = await self._responses.get()
            try:
                data = await response.json()
            except (PlaywrightError, ValueError) as exc:
                logger.debug("Intercepted response was not JSON", error=str(exc))
                continue
            result = result_from_response_body(
                data, self.retrieval.root_field, self.subject_key, self.retrieval.match_prefix_len
            )
            if result is not None and self.cell.offer_result(result):
                logger.info("Result captured from intercepted response")
                return


class TokenAcquisitionPipeline:
    """One ``acquire()`` call = one isolated browser run."""

    def __init__(
        self,
        browser: BrowserConfig,
        retrieval: RetrievalConfig,
        static_token: str | None = None,
        launcher: PageLauncher = launch_page,
    ) -> None:
        self.browser = browser
        self.retrieval = retrieval
        self.static_token = static_token
        self._launcher = launcher

    async def acquire(self, subject_key: str) -> AcquisitionOutcome:
        cell = ResolutionCell()
        try:
            async with self._launcher(self.browser) as page:
                await self._load(page)
                await self._extract_from_page(page, cell, TokenSource.PAGE_INSPECTION)

                interception = _Interception(page, cell, self.retrieval, subject_key)
                watcher = interception.arm()
                try:
                    await self._active_search(page, subject_key)
                    await self._settle(watcher)
                    await self._extract_from_page(page, cell, TokenSource.ACTIVE_SEARCH)
                finally:
                    cell.close()
                    interception.disarm()
                    await _stop(watcher)
        except PlaywrightError as exc:
            logger.warning("Token acquisition failed", error=str(exc))
            raise AcquisitionFailed() from exc
        except RuntimeError as exc:
            # chrome_path() and Playwright driver start-up failures
            logger.warning("Browser launch failed", error=str(exc))
            raise AcquisitionFailed() from exc

        outcome = cell.resolve(self.static_token)
        if outcome.result is not None:
            logger.info("Using result intercepted from the page")
        elif outcome.token is not None:
            logger.info("Token resolved", source=str(outcome.token.source))
        return outcome

    async def _load(self, page: Page) -> None:
        url = self.retrieval.page_url
        try:
            await page.goto(
                url, wait_until="networkidle", timeout=self.browser.navigation_timeout_ms
            )
        except PlaywrightTimeoutError as exc:
            logger.warning("Lookup page load timed out", url=url)
            raise AcquisitionFailed("The lookup page took too long to load.") from exc
        except PlaywrightError as exc:
            if _NET_ERROR not in str(exc):
                raise
            logger.warning("Lookup page unreachable", url=url, error=str(exc))
            raise UpstreamUnavailable("The lookup page is unreachable right now.") from exc
        logger.info("Lookup page loaded", url=url)

    async def _extract_from_page(
        self, page: Page, cell: ResolutionCell, source: TokenSource
    ) -> None:
        try:
            token = await page.evaluate(_PASSIVE_EXTRACT_JS)
        except PlaywrightError as exc:
            logger.warning("Page token extraction failed", source=str(source), error=str(exc))
            return
        if isinstance(token, str) and cell.offer_token(source, token):
            logger.info("Token found in page", source=str(source))

    async def _active_search(self, page: Page, subject_key: str) -> None:
        for attempt in range(1, self.browser.search_attempts + 1):
            try:
                await page.wait_for_selector(
                    _SEARCH_INPUT, timeout=self.browser.selector_timeout_ms
                )
                break
            except PlaywrightTimeoutError:
                logger.warning("Search input not found", attempt=attempt)
        else:
            raise AcquisitionFailed("The lookup page did not show its search form.")

        await page.fill(_SEARCH_INPUT, "")
        await page.fill(_SEARCH_INPUT, subject_key)

        for button in await page.query_selector_all("button"):
            label = (await button.text_content() or "").lower()
            if any(word in label for word in _SEARCH_WORDS):
                await button.click()
                logger.info("Search submitted via button")
                return

        submitted = await page.evaluate(_SUBMIT_FORM_JS)
        logger.info("Search button not found, submitted form directly", submitted=submitted)

    async def _settle(self, watcher: asyncio.Task) -> None:
        """Wait for the response watcher or the settle window, whichever ends first.

        Outbound requests keep being recorded for the whole window, so the
        most recent outbound token is the one kept.
        """
        await asyncio.wait([watcher], timeout=self.browser.settle_ms / 1000)


async def _stop(task: asyncio.Task) -> None:
    task.cancel()
    (result,) = await asyncio.gather(task, return_exceptions=True)
    if isinstance(result, Exception):
        logger.debug("Response watcher ended with error", error=str(result))
