"""Backend client: query the lookup API with an acquired token.

Failure mapping:
  - 401/403, or a GraphQL error mentioning the token   -> AuthRejected
  - well-formed response without the root field        -> DataNotFound
  - transport errors, 5xx, non-JSON bodies             -> UpstreamUnavailable
"""

from __future__ import annotations

import json
from typing import Any

import aiohttp

from osintrix.config import RetrievalConfig
from osintrix.errors import AuthRejected, DataNotFound, UpstreamUnavailable
from osintrix.logger import logger
from osintrix.types import RetrievalQuery, RetrievalResult

_RECORD_FIELDS = (
    "nama",
    "nik",
    "nkk",
    "provinsi",
    "kabupaten",
    "kecamatan",
    "kelurahan",
    "tps",
    "alamat",
    "lat",
    "lon",
    "metode",
)
_RELATED_FIELDS = (
    "nama",
    "nik",
    "nkk",
    "kecamatan",
    "kelurahan",
    "tps",
    "id",
    "flag",
    "source",
    "alamat",
    "lat",
    "lon",
    "metode",
)
_AUTH_ERROR_HINTS = ("token", "captcha", "unauthori", "forbidden")


def build_query(root_field: str, subject_key: str, token: str) -> str:
    """GraphQL document with the key and token inlined, as the web page sends it."""
    record = ", ".join(_RECORD_FIELDS)
    related = ", ".join(_RELATED_FIELDS)
    return (
        f"{{ {root_field} (nik:{json.dumps(subject_key)}, wilayah_id:0, "
        f"token:{json.dumps(token)}) {{ {record}, lhp {{ {related} }} }} }}"
    )


def _error_messages(data: dict[str, Any]) -> list[str]:
    errors = data.get("errors") or []
    if isinstance(errors, dict):
        errors = [errors]
    messages = []
    for err in errors:
        if isinstance(err, dict):
            messages.append(str(err.get("message", "")))
        else:
            messages.append(str(err))
    return messages


def parse_response(status: int, body: str, root_field: str) -> RetrievalResult:
    """Map an HTTP status + body to a result or a typed failure."""
    if status in (401, 403):
        raise AuthRejected()
    if status >= 500:
        raise UpstreamUnavailable(f"The lookup service returned HTTP {status}.")

    try:
        data = json.loads(body)
    except ValueError as exc:
        raise UpstreamUnavailable("The lookup service sent an unreadable response.") from exc
    if not isinstance(data, dict):
        raise UpstreamUnavailable("The lookup service sent an unexpected response.")

    messages = _error_messages(data)
    if any(hint in m.lower() for m in messages for hint in _AUTH_ERROR_HINTS):
        logger.warning("Backend rejected token", errors=messages)
        raise AuthRejected()

    payload = data.get("data")
    record = payload.get(root_field) if isinstance(payload, dict) else None
    if isinstance(record, list):
        record = record[0] if record else None
    if isinstance(record, dict):
        return RetrievalResult.from_payload(record)

    if 200 <= status < 300 or messages:
        logger.info("No record in backend response", status=status, errors=messages)
        raise DataNotFound()
    raise UpstreamUnavailable(f"The lookup service returned HTTP {status}.")


class RetrievalClient:
    def __init__(self, config: RetrievalConfig, user_agent: str) -> None:
        self.config = config
        self.user_agent = user_agent

    def _headers(self) -> dict[str, str]:
        origin = self.config.page_url.rstrip("/")
        return {
            "Content-Type": "application/json;charset=UTF-8",
            "Origin": origin,
            "Referer": f"{origin}/",
            "User-Agent": self.user_agent,
        }

    async def fetch(self, query: RetrievalQuery) -> RetrievalResult:
        body = {"query": build_query(self.config.root_field, query.subject_key, query.token.value)}
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_s)
        try:
            async with (
                aiohttp.ClientSession(timeout=timeout) as session,
                session.post(self.config.api_url, json=body, headers=self._headers()) as resp,
            ):
                status = resp.status
                text = await resp.text()
        except (aiohttp.ClientError, TimeoutError, OSError) as exc:
            logger.warning("Backend request failed", error=str(exc))
            raise UpstreamUnavailable() from exc

        logger.info(
            "Backend responded",
            status=status,
            token_source=str(query.token.source),
        )
        return parse_response(status, text, self.config.root_field)
