"""Command registry: the one ``command_name -> descriptor`` table."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from typing import TypeAlias

from osintrix.errors import DuplicateCommand
from osintrix.types import PluginDescriptor

RegistrationListener: TypeAlias = Callable[[PluginDescriptor], None]


class CommandRegistry:
    """Write-once-per-name store of command descriptors.

    Listeners added with ``subscribe()`` are told about every successful
    registration; the transport uses this to expose the command.
    """

    def __init__(self) -> None:
        self._commands: dict[str, PluginDescriptor] = {}
        self._listeners: list[RegistrationListener] = []

    def subscribe(self, listener: RegistrationListener) -> None:
        self._listeners.append(listener)
        for descriptor in self._commands.values():
            listener(descriptor)

    def register(self, descriptor: PluginDescriptor) -> None:
        existing = self._commands.get(descriptor.command_name)
        if existing is not None:
            raise DuplicateCommand(
                f"Command {descriptor.command_name!r} from {descriptor.source or '?'} "
                f"is already registered by {existing.source or '?'}"
            )
        self._commands[descriptor.command_name] = descriptor
        for listener in self._listeners:
            listener(descriptor)

    def get(self, command_name: str) -> PluginDescriptor | None:
        return self._commands.get(command_name)

    def __contains__(self, command_name: object) -> bool:
        return command_name in self._commands

    def __iter__(self) -> Iterator[PluginDescriptor]:
        return iter(self._commands.values())

    def __len__(self) -> int:
        return len(self._commands)

    def names(self) -> list[str]:
        return list(self._commands)

    def descriptors(self) -> tuple[PluginDescriptor, ...]:
        return tuple(self._commands.values())


def group_by_category(
    descriptors: Iterable[PluginDescriptor], category: str | None = None
) -> dict[str, list[PluginDescriptor]]:
    """Group descriptors by category in registration order.

    With *category*, only that group is kept (case-insensitive).
    """
    grouped: dict[str, list[PluginDescriptor]] = {}
    for d in descriptors:
        if category and d.category.lower() != category.lower():
            continue
        grouped.setdefault(d.category, []).append(d)
    return grouped
