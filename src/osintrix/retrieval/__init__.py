"""Record retrieval: subject-key validation, token acquisition, backend query."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass

from osintrix.config import Settings, get_settings
from osintrix.errors import AcquisitionFailed, InvalidInput
from osintrix.logger import logger
from osintrix.retrieval.acquisition import TokenAcquisitionPipeline
from osintrix.retrieval.client import RetrievalClient
from osintrix.types import AcquisitionOutcome, RetrievalQuery, RetrievalResult, TokenSource

__all__ = [
    "Lookup",
    "RetrievalClient",
    "RetrievalService",
    "TokenAcquisitionPipeline",
    "validate_subject_key",
]

# [0-9], not \d: \d also matches non-ASCII digits.
_SUBJECT_KEY = re.compile(r"[0-9]{16}")


def validate_subject_key(key: str | None) -> str:
    """Return *key* if it is exactly 16 ASCII digits, else raise InvalidInput."""
    if not key or not _SUBJECT_KEY.fullmatch(key):
        raise InvalidInput(
            "Invalid key format. The key must be exactly 16 digits, "
            "e.g. /ceknik 1234567890123456"
        )
    return key


@dataclass(frozen=True)
class Lookup:
    result: RetrievalResult
    token_source: TokenSource | None  # None when the page itself produced the result
    fallback_token: bool = False


class RetrievalService:
    """Validate, acquire a token, query - the collaborator handed to lookup commands."""

    def __init__(
        self,
        pipeline: TokenAcquisitionPipeline,
        client: RetrievalClient,
        acquisition_timeout_s: float | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.client = client
        self.acquisition_timeout_s = acquisition_timeout_s
        self._abandoned: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> RetrievalService:
        s = settings or get_settings()
        static = s.secrets.static_token.get_secret_value() if s.secrets.static_token else None
        return cls(
            pipeline=TokenAcquisitionPipeline(s.browser, s.retrieval, static_token=static),
            client=RetrievalClient(s.retrieval, s.browser.user_agent),
            acquisition_timeout_s=s.browser.acquisition_timeout_s,
        )

    async def lookup(self, subject_key: str) -> Lookup:
        key = validate_subject_key(subject_key)
        outcome = await self._acquire(key)
        if outcome.result is not None:
            return Lookup(result=outcome.result, token_source=None)

        assert outcome.token is not None
        result = await self.client.fetch(RetrievalQuery(subject_key=key, token=outcome.token))
        return Lookup(
            result=result,
            token_source=outcome.token.source,
            fallback_token=outcome.token.is_fallback,
        )

    async def _acquire(self, key: str) -> AcquisitionOutcome:
        """Run the pipeline; on timeout, abandon the run (it still tears itself down)."""
        task = asyncio.create_task(self.pipeline.acquire(key))
        if self.acquisition_timeout_s is None:
            return await task
        try:
            return await asyncio.wait_for(asyncio.shield(task), self.acquisition_timeout_s)
        except TimeoutError:
            logger.warning("Token acquisition timed out, abandoning run")
            self._abandoned.add(task)
            task.add_done_callback(self._reap)
            raise AcquisitionFailed("The lookup page took too long to respond.") from None

    def _reap(self, task: asyncio.Task) -> None:
        self._abandoned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Abandoned acquisition ended with error", error=str(task.exception()))
