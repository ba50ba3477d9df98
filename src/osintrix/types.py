"""Data models for osintrix."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, StrEnum
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias, runtime_checkable

if TYPE_CHECKING:
    from osintrix.errors import ErrorKind
    from osintrix.retrieval import RetrievalService

# ---------------------------------------------------------------------------
# Quota
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserQuotaRecord:
    identity: str
    remaining_quota: int  # never negative; enforced by the store's guarded UPDATE
    is_privileged: bool = False


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommandRequest:
    identity: str
    command: str
    text: str = ""  # raw argument line, everything after the command word
    display_name: str = ""
    chat_id: str = ""

    @property
    def args(self) -> list[str]:
        return self.text.split()


@dataclass(frozen=True)
class CommandOutcome:
    """What every invocation returns to the presentation layer."""

    ok: bool
    message: str
    payload: Any = None
    error_kind: ErrorKind | None = None
    quota: UserQuotaRecord | None = None

    @classmethod
    def success(cls, message: str, payload: Any = None) -> CommandOutcome:
        return cls(ok=True, message=message, payload=payload)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> CommandOutcome:
        return cls(ok=False, message=message, error_kind=kind)


GrantFn: TypeAlias = Callable[[str, int], Awaitable[UserQuotaRecord]]


@dataclass(frozen=True)
class CommandContext:
    """Everything a handler may touch. Built fresh by the dispatcher per call."""

    record: UserQuotaRecord
    cost: int
    commands: tuple[PluginDescriptor, ...] = ()
    retrieval: RetrievalService | None = None
    grant: GrantFn | None = None  # only set for privileged callers


@runtime_checkable
class CommandHandler(Protocol):
    async def __call__(
        self, request: CommandRequest, context: CommandContext
    ) -> CommandOutcome: ...


@dataclass(frozen=True)
class PluginDescriptor:
    command_name: str
    category: str
    cost: int
    handler: CommandHandler
    description: str = ""
    privileged_only: bool = False
    source: str = ""  # module the descriptor was discovered in, for diagnostics


# ---------------------------------------------------------------------------
# Token acquisition
# ---------------------------------------------------------------------------


class TokenSource(StrEnum):
    PAGE_INSPECTION = "page_inspection"  # embedded page data / localStorage on load
    INTERCEPTED_TRAFFIC = "intercepted_traffic"  # outbound API request payload
    ACTIVE_SEARCH = "active_search"  # page data re-read after driving the search form
    STATIC_FALLBACK = "static_fallback"  # configured last-known value, low confidence


@dataclass(frozen=True)
class AcquisitionToken:
    value: str = field(repr=False)
    source: TokenSource
    acquired_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_fallback(self) -> bool:
        return self.source is TokenSource.STATIC_FALLBACK


@dataclass(frozen=True)
class RetrievalQuery:
    subject_key: str
    token: AcquisitionToken


# ---------------------------------------------------------------------------
# Retrieval results
# ---------------------------------------------------------------------------


class Missing(Enum):
    """Explicit marker for a field the upstream did not provide."""

    NOT_AVAILABLE = "not available"

    def __bool__(self) -> bool:
        return False

    def __str__(self) -> str:
        return self.value


NOT_AVAILABLE = Missing.NOT_AVAILABLE

FieldValue: TypeAlias = str | Missing

# Upstream key -> RetrievalResult attribute
_FIELD_MAP: dict[str, str] = {
    "nama": "name",
    "nik": "subject_id",
    "nkk": "family_id",
    "provinsi": "province",
    "kabupaten": "regency",
    "kecamatan": "district",
    "kelurahan": "village",
    "tps": "polling_station",
    "alamat": "address",
    "metode": "method",
}


def _text(raw: dict[str, Any], key: str) -> FieldValue:
    value = raw.get(key)
    if value is None:
        return NOT_AVAILABLE
    value = str(value).strip()
    return value if value else NOT_AVAILABLE


def _coordinate(raw: dict[str, Any], key: str) -> float | Missing:
    value = raw.get(key)
    if value in (None, ""):
        return NOT_AVAILABLE
    try:
        return float(value)
    except (TypeError, ValueError):
        return NOT_AVAILABLE


@dataclass(frozen=True)
class RetrievalResult:
    name: FieldValue = NOT_AVAILABLE
    subject_id: FieldValue = NOT_AVAILABLE
    family_id: FieldValue = NOT_AVAILABLE
    province: FieldValue = NOT_AVAILABLE
    regency: FieldValue = NOT_AVAILABLE
    district: FieldValue = NOT_AVAILABLE
    village: FieldValue = NOT_AVAILABLE
    polling_station: FieldValue = NOT_AVAILABLE
    address: FieldValue = NOT_AVAILABLE
    method: FieldValue = NOT_AVAILABLE
    latitude: float | Missing = NOT_AVAILABLE
    longitude: float | Missing = NOT_AVAILABLE
    related: list[RetrievalResult] = field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> RetrievalResult:
        """Normalize one upstream record; nested ``lhp`` entries become ``related``."""
        values: dict[str, Any] = {attr: _text(raw, key) for key, attr in _FIELD_MAP.items()}
        lat = _coordinate(raw, "lat")
        lon = _coordinate(raw, "lon")
        # A lone latitude or longitude is useless as a map pin.
        if lat is NOT_AVAILABLE or lon is NOT_AVAILABLE:
            lat = lon = NOT_AVAILABLE
        related_raw = raw.get("lhp") or []
        if isinstance(related_raw, dict):
            related_raw = [related_raw]
        related = [cls.from_payload(r) for r in related_raw if isinstance(r, dict)]
        return cls(**values, latitude=lat, longitude=lon, related=related)

    @property
    def coordinates(self) -> tuple[float, float] | None:
        if isinstance(self.latitude, float) and isinstance(self.longitude, float):
            return self.latitude, self.longitude
        return None


@dataclass(frozen=True)
class AcquisitionOutcome:
    """Either a token to call the backend with, or a result intercepted in-page."""

    token: AcquisitionToken | None = None
    result: RetrievalResult | None = None
