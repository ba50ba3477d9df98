"""``/limit``: show the caller's remaining quota."""

from __future__ import annotations

from typing import Any

from osintrix.plugin import hookimpl
from osintrix.types import CommandContext, CommandOutcome, CommandRequest


async def run(request: CommandRequest, context: CommandContext) -> CommandOutcome:
    record = context.record
    if record.is_privileged:
        return CommandOutcome.success("Owner mode: commands do not use your limit.")
    return CommandOutcome.success(
        f"Remaining limit: {record.remaining_quota}",
        payload={"remaining": record.remaining_quota},
    )


class LimitPlugin:
    @hookimpl
    def osintrix_command(self) -> dict[str, Any]:
        return {
            "name": "limit",
            "category": "user",
            "description": "Show your remaining limit",
            "handler": run,
        }
