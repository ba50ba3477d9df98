"""``/addlimit <identity> <amount>``: top up another user's quota."""

from __future__ import annotations

from typing import Any

from osintrix.errors import InvalidInput
from osintrix.plugin import hookimpl
from osintrix.types import CommandContext, CommandOutcome, CommandRequest

_USAGE = "Usage: /addlimit <user id> <amount>"


async def run(request: CommandRequest, context: CommandContext) -> CommandOutcome:
    if len(request.args) != 2:
        raise InvalidInput(_USAGE)
    identity, raw_amount = request.args
    if not (raw_amount.isascii() and raw_amount.isdigit()) or int(raw_amount) <= 0:
        raise InvalidInput(f"Amount must be a positive whole number. {_USAGE}")
    if context.grant is None:
        raise RuntimeError("addlimit dispatched without a grant handle")

    record = await context.grant(identity, int(raw_amount))
    return CommandOutcome.success(
        f"Added {raw_amount} limit to {identity}. New limit: {record.remaining_quota}",
        payload={"identity": identity, "remaining": record.remaining_quota},
    )


class AddLimitPlugin:
    @hookimpl
    def osintrix_command(self) -> dict[str, Any]:
        return {
            "name": "addlimit",
            "category": "owner",
            "description": "Add limit to a user",
            "privileged_only": True,
            "handler": run,
        }
