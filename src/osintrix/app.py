"""Application wiring and the console transport loop."""

from __future__ import annotations

import asyncio
import sys
from typing import TextIO

from osintrix import db
from osintrix.config import Settings, get_settings
from osintrix.dispatcher import Dispatcher
from osintrix.logger import apply_level, logger
from osintrix.plugin import CommandRegistry, build_registry
from osintrix.quota import SqliteQuotaStore
from osintrix.retrieval import RetrievalService
from osintrix.types import CommandOutcome, CommandRequest, PluginDescriptor


def parse_command(line: str, prefix: str = "/") -> tuple[str, str] | None:
    """Split ``/name@bot rest of line`` into ``("name", "rest of line")``.

    Returns None for lines that are not commands.
    """
    line = line.strip()
    if not line.startswith(prefix) or len(line) == len(prefix):
        return None
    head, _, rest = line[len(prefix) :].partition(" ")
    name = head.split("@", 1)[0].lower()
    if not name:
        return None
    return name, rest.strip()


def format_outcome(outcome: CommandOutcome, cost: int = 0) -> str:
    """Plain-text rendering used by the console transport."""
    text = outcome.message if outcome.ok else f"Error: {outcome.message}"
    record = outcome.quota
    if outcome.ok and record is not None and cost:
        if record.is_privileged:
            text += "\nOwner mode: limit not used"
        else:
            text += f"\nYour limit: {record.remaining_quota} (-{cost})"
    return text


class OsintrixApp:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.registry = CommandRegistry()
        self.dispatcher: Dispatcher | None = None
        self._inflight: set[asyncio.Task] = set()
        # Command word -> cost, as exposed on the console.
        self.commands: dict[str, int] = {}
        self.registry.subscribe(self._bind_command)

    def _bind_command(self, descriptor: PluginDescriptor) -> None:
        self.commands[descriptor.command_name] = descriptor.cost
        logger.debug("Command bound", command=descriptor.command_name)

    async def start(self) -> None:
        s = self.settings
        apply_level(s.logging.level)
        await db.init_database(s.db_path)

        store = SqliteQuotaStore(s.quota.default_limit, frozenset(s.quota.owners))
        await store.sync_owners()

        build_registry(s, registry=self.registry)
        self.dispatcher = Dispatcher(
            self.registry, store, retrieval=RetrievalService.from_settings(s)
        )
        logger.info("Bot ready", name=s.bot.name, commands=len(self.registry))

    async def stop(self) -> None:
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        await db.close_database()

    async def handle_line(self, identity: str, line: str) -> CommandOutcome | None:
        if self.dispatcher is None:
            raise RuntimeError("OsintrixApp.start() has not run")
        parsed = parse_command(line, self.settings.bot.command_prefix)
        if parsed is None:
            return None
        name, text = parsed
        request = CommandRequest(identity=identity, command=name, text=text)
        return await self.dispatcher.dispatch(name, request)

    async def _handle_and_print(self, identity: str, line: str, out: TextIO) -> None:
        outcome = await self.handle_line(identity, line)
        if outcome is None:
            return
        parsed = parse_command(line, self.settings.bot.command_prefix)
        cost = self.commands.get(parsed[0], 0) if parsed else 0
        print(format_outcome(outcome, cost), file=out, flush=True)

    async def run_console(
        self, identity: str, stdin: TextIO = sys.stdin, out: TextIO = sys.stdout
    ) -> None:
        """Read command lines until EOF; each line is handled concurrently."""
        while True:
            line = await asyncio.to_thread(stdin.readline)
            if not line:
                break
            task = asyncio.create_task(self._handle_and_print(identity, line, out))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def run(self, identity: str) -> None:
        await self.start()
        try:
            await self.run_console(identity)
        finally:
            await self.stop()
