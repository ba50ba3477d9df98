"""Command dispatch: lookup, permission gate, handler call, quota commit.

A dispatch never raises.  Every path ends in a ``CommandOutcome`` so one
failing command cannot take down the loop feeding the dispatcher.
"""

from __future__ import annotations

import dataclasses
import inspect

import structlog

from osintrix.errors import (
    ErrorKind,
    InsufficientQuota,
    InternalError,
    NotPrivileged,
    OsintrixError,
    UnknownCommand,
)
from osintrix.logger import logger
from osintrix.plugin.registry import CommandRegistry
from osintrix.quota import QuotaStore, authorize
from osintrix.retrieval import RetrievalService
from osintrix.types import (
    CommandContext,
    CommandOutcome,
    CommandRequest,
    PluginDescriptor,
    UserQuotaRecord,
)

_DENIAL_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.NOT_PRIVILEGED: NotPrivileged.default_message,
    ErrorKind.INSUFFICIENT_QUOTA: InsufficientQuota.default_message,
    ErrorKind.UNKNOWN_IDENTITY: (
        "Your starting limit is not enough for this command. Ask the owner for more."
    ),
}


def _failure(exc: OsintrixError, record: UserQuotaRecord | None = None) -> CommandOutcome:
    return CommandOutcome(ok=False, message=exc.message, error_kind=exc.kind, quota=record)


class Dispatcher:
    def __init__(
        self,
        registry: CommandRegistry,
        store: QuotaStore,
        retrieval: RetrievalService | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.retrieval = retrieval

    async def dispatch(self, command_name: str, request: CommandRequest) -> CommandOutcome:
        command_name = command_name.lower()
        with structlog.contextvars.bound_contextvars(
            command=command_name, identity=request.identity
        ):
            logger.info("Command received", args=len(request.args))
            descriptor = self.registry.get(command_name)
            if descriptor is None:
                logger.info("Unknown command")
                return _failure(UnknownCommand())
            try:
                return await self._run(descriptor, request)
            except Exception:
                logger.exception("Command handler crashed")
                return _failure(InternalError())

    async def _run(self, descriptor: PluginDescriptor, request: CommandRequest) -> CommandOutcome:
        record, created = await self.store.ensure(request.identity)
        decision = authorize(
            record,
            descriptor.cost,
            is_new=created,
            privileged_only=descriptor.privileged_only,
        )
        if not decision.allowed:
            assert decision.reason is not None
            logger.info(
                "Command denied", reason=str(decision.reason), remaining=record.remaining_quota
            )
            return CommandOutcome(
                ok=False,
                message=_DENIAL_MESSAGES.get(decision.reason, "Not allowed."),
                error_kind=decision.reason,
                quota=record,
            )

        context = CommandContext(
            record=record,
            cost=descriptor.cost,
            commands=self.registry.descriptors(),
            retrieval=self.retrieval,
            grant=self.store.grant if record.is_privileged else None,
        )

        try:
            outcome = descriptor.handler(request, context)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except OsintrixError as exc:
            logger.info("Command failed", error_kind=str(exc.kind))
            return _failure(exc, record)

        if not isinstance(outcome, CommandOutcome):
            raise TypeError(
                f"handler for {descriptor.command_name!r} returned {type(outcome).__name__}"
            )
        if not outcome.ok:
            logger.info("Command failed", error_kind=str(outcome.error_kind))
            return _with_quota(outcome, record)

        return await self._commit(descriptor, request, outcome, record)

    async def _commit(
        self,
        descriptor: PluginDescriptor,
        request: CommandRequest,
        outcome: CommandOutcome,
        record: UserQuotaRecord,
    ) -> CommandOutcome:
        if descriptor.cost == 0 or record.is_privileged:
            logger.info("Command succeeded", charged=0)
            return _with_quota(outcome, record)
        try:
            updated = await self.store.deduct(
                request.identity, descriptor.cost, descriptor.command_name
            )
        except InsufficientQuota as exc:
            # A concurrent command spent the units between gate and commit.
            logger.info("Quota exhausted at commit")
            latest = await self.store.get(request.identity)
            return _failure(exc, latest or record)
        logger.info("Command succeeded", charged=descriptor.cost, remaining=updated.remaining_quota)
        return _with_quota(outcome, updated)


def _with_quota(outcome: CommandOutcome, record: UserQuotaRecord) -> CommandOutcome:
    return dataclasses.replace(outcome, quota=record)
