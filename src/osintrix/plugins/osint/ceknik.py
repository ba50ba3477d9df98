"""``/ceknik <key>``: voter registration lookup by 16-digit national ID."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from osintrix.plugin import hookimpl
from osintrix.retrieval import Lookup, validate_subject_key
from osintrix.types import CommandContext, CommandOutcome, CommandRequest, RetrievalResult

COST = 10


def mask_key(key: str) -> str:
    return key[:6] + "x" * (len(key) - 6)


def _line(label: str, value: object) -> str:
    return f"  {label}: {value}"


def render(result: RetrievalResult, key: str, looked_up_at: datetime | None = None) -> str:
    lines = [
        "VOTER RECORD",
        "",
        "- Identity",
        _line("Name", result.name),
        _line("ID", result.subject_id),
        _line("Family card", result.family_id),
        "",
        "- Polling station",
        _line("Province", result.province),
        _line("Regency", result.regency),
        _line("District", result.district),
        _line("Village", result.village),
        _line("Station", result.polling_station),
        _line("Address", result.address),
    ]
    if result.coordinates:
        lat, lon = result.coordinates
        lines += ["", "- Coordinates", _line("Latitude", lat), _line("Longitude", lon)]
    if result.related:
        lines += ["", f"- Related records ({len(result.related)})"]
        lines += [f"  * {r.name} / {r.polling_station}" for r in result.related]
    when = (looked_up_at or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    lines += ["", f"Key checked: {mask_key(key)}", f"Looked up at: {when}"]
    return "\n".join(lines)


def _payload(lookup: Lookup) -> dict[str, Any]:
    return {
        "result": lookup.result,
        "coordinates": lookup.result.coordinates,
        "token_source": str(lookup.token_source) if lookup.token_source else "intercepted",
        "fallback_token": lookup.fallback_token,
    }


async def run(request: CommandRequest, context: CommandContext) -> CommandOutcome:
    key = validate_subject_key(request.args[0] if request.args else "")
    if context.retrieval is None:
        raise RuntimeError("ceknik needs a retrieval service")
    lookup = await context.retrieval.lookup(key)
    text = render(lookup.result, key)
    if lookup.fallback_token:
        text += "\nNote: looked up with the configured fallback token."
    return CommandOutcome.success(text, payload=_payload(lookup))


class CekNikPlugin:
    @hookimpl
    def osintrix_command(self) -> dict[str, Any]:
        return {
            "name": "ceknik",
            "category": "osint",
            "cost": COST,
            "description": f"Voter registration lookup by national ID ({COST} limit)",
            "handler": run,
        }
