"""``/menu [category]``: list registered commands grouped by category."""

from __future__ import annotations

from typing import Any

from osintrix.plugin import hookimpl
from osintrix.plugin.registry import group_by_category
from osintrix.types import CommandContext, CommandOutcome, CommandRequest, PluginDescriptor


def render_menu(commands: tuple[PluginDescriptor, ...], category: str | None = None) -> str:
    grouped = group_by_category(commands, category)
    if not grouped:
        return f"No commands in category {category!r}." if category else "No commands."

    title = f"MENU {category.upper()}" if category else "MENU"
    lines = [title, ""]
    for cat, items in grouped.items():
        lines.append(f"- {cat.upper()} -")
        for d in items:
            cost = f" ({d.cost} limit)" if d.cost else ""
            desc = f" - {d.description}" if d.description else ""
            lines.append(f"  /{d.command_name}{cost}{desc}")
        lines.append("")
    return "\n".join(lines).rstrip()


async def run(request: CommandRequest, context: CommandContext) -> CommandOutcome:
    category = request.args[0] if request.args else None
    return CommandOutcome.success(render_menu(context.commands, category))


class MenuPlugin:
    @hookimpl
    def osintrix_command(self) -> dict[str, Any]:
        return {
            "name": "menu",
            "category": "user",
            "description": "List commands, optionally for one category",
            "handler": run,
        }
