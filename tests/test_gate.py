"""Tests for the permission gate."""

from __future__ import annotations

from osintrix.errors import ErrorKind
from osintrix.quota import authorize
from osintrix.types import UserQuotaRecord


def _record(quota: int, privileged: bool = False) -> UserQuotaRecord:
    return UserQuotaRecord(identity="u", remaining_quota=quota, is_privileged=privileged)


class TestAuthorize:
    def test_enough_quota_allowed(self):
        decision = authorize(_record(10), 10)
        assert decision.allowed is True
        assert decision.reason is None

    def test_insufficient_quota_denied(self):
        decision = authorize(_record(9), 10)
        assert decision.allowed is False
        assert decision.reason is ErrorKind.INSUFFICIENT_QUOTA

    def test_new_identity_denial_says_unknown_identity(self):
        decision = authorize(_record(0), 10, is_new=True)
        assert decision.allowed is False
        assert decision.reason is ErrorKind.UNKNOWN_IDENTITY

    def test_new_identity_with_default_quota_allowed(self):
        assert authorize(_record(20), 10, is_new=True).allowed is True

    def test_privileged_always_allowed(self):
        decision = authorize(_record(0, privileged=True), 1000)
        assert decision.allowed is True

    def test_privileged_only_command_denies_regular_user(self):
        decision = authorize(_record(100), 0, privileged_only=True)
        assert decision.allowed is False
        assert decision.reason is ErrorKind.NOT_PRIVILEGED

    def test_privileged_only_command_allows_owner(self):
        assert authorize(_record(0, privileged=True), 0, privileged_only=True).allowed is True

    def test_gate_does_not_mutate_record(self):
        record = _record(10)
        decision = authorize(record, 5)
        assert decision.record is record
        assert record.remaining_quota == 10

    def test_zero_cost_allowed_with_zero_quota(self):
        assert authorize(_record(0), 0).allowed is True
