"""Tests for approval fingerprints and the pattern tracker."""

import pytest

from envoy.agent.approval_patterns import (
    ApprovalPatternTracker,
    compute_fingerprint,
    describe_payload,
)
from envoy.config_schema import DEFAULT_FINGERPRINT_FIELDS, ApprovalConfig
from envoy.db.store import DatabaseStore


class TestFingerprint:
    """Tests for compute_fingerprint."""

    def test_reply_to_same_domain(self) -> None:
        payload = {
            "to": ["ana@example.com"],
            "subject": "Re: lunch",
            "body": "Sounds good",
            "replyToMessageId": "msg-1",
        }
        fingerprint = compute_fingerprint("email.send", payload, DEFAULT_FINGERPRINT_FIELDS)
        assert fingerprint == "email.send|replyToMessageId=true;to=example.com"

    def test_new_email_marks_reply_absent(self) -> None:
        payload = {"to": ["ana@example.com"], "subject": "Hello", "body": "Hi"}
        fingerprint = compute_fingerprint("email.send", payload, DEFAULT_FINGERPRINT_FIELDS)
        assert fingerprint == "email.send|replyToMessageId=false;to=example.com"

    def test_body_and_subject_do_not_split_patterns(self) -> None:
        """Test that free text is not part of the fingerprint."""
        a = {"to": ["ana@example.com"], "subject": "One", "body": "First"}
        b = {"to": ["bo@example.com"], "subject": "Two", "body": "Second"}
        assert compute_fingerprint(
            "email.send", a, DEFAULT_FINGERPRINT_FIELDS
        ) == compute_fingerprint("email.send", b, DEFAULT_FINGERPRINT_FIELDS)

    def test_domains_sorted_and_deduplicated(self) -> None:
        payload = {"to": ["Zed <z@b.org>", "ana@a.com", "al@A.com"]}
        descriptor = describe_payload("email.send", payload, DEFAULT_FINGERPRINT_FIELDS)
        assert descriptor["to"] == "a.com,b.org"

    def test_lower_transform(self) -> None:
        fingerprint = compute_fingerprint(
            "messaging.send", {"recipientName": "  Mom "}, DEFAULT_FINGERPRINT_FIELDS
        )
        assert fingerprint == "messaging.send|recipientName=mom"

    def test_action_without_fields_uses_type(self) -> None:
        assert compute_fingerprint("web.search", {"query": "x"}, DEFAULT_FINGERPRINT_FIELDS) == (
            "web.search"
        )

    def test_missing_value_field_is_empty(self) -> None:
        assert compute_fingerprint("email.move", {}, DEFAULT_FINGERPRINT_FIELDS) == (
            "email.move|toFolder="
        )


class TestApprovalPatternTracker:
    """Tests for ApprovalPatternTracker against a real store."""

    @pytest.fixture
    def tracker(self, store: DatabaseStore) -> ApprovalPatternTracker:
        return ApprovalPatternTracker(
            store, ApprovalConfig(default_threshold=3, domain_thresholds={"calendar": 5})
        )

    @pytest.fixture
    def payload(self) -> dict:
        return {"to": ["ana@example.com"], "subject": "Hi", "body": "Hello"}

    async def test_streak_counts_approvals(
        self, tracker: ApprovalPatternTracker, payload: dict
    ) -> None:
        for _ in range(2):
            await tracker.record_approval("email.send", payload)

        assert await tracker.get_consecutive_approvals("email.send", payload) == 2
        assert not await tracker.is_routine("email.send", payload)

        await tracker.record_approval("email.send", payload)
        assert await tracker.is_routine("email.send", payload)

    async def test_rejection_resets_streak(
        self, tracker: ApprovalPatternTracker, payload: dict
    ) -> None:
        for _ in range(3):
            await tracker.record_approval("email.send", payload)
        await tracker.record_rejection("email.send", payload)

        pattern = await tracker.get_pattern("email.send", payload)
        assert pattern.consecutive_approvals == 0
        assert pattern.total_approvals == 3
        assert not await tracker.is_routine("email.send", payload)

    async def test_approval_after_rejection_starts_new_streak(
        self, tracker: ApprovalPatternTracker, payload: dict
    ) -> None:
        for _ in range(2):
            await tracker.record_approval("email.send", payload)
        await tracker.record_rejection("email.send", payload)
        await tracker.record_approval("email.send", payload)

        assert await tracker.get_consecutive_approvals("email.send", payload) == 1

    async def test_unknown_action_uses_prefix_domain_threshold(
        self, store: DatabaseStore
    ) -> None:
        tracker = ApprovalPatternTracker(
            store, ApprovalConfig(default_threshold=3, domain_thresholds={"files": 7})
        )
        assert tracker.default_threshold("files.delete") == 7
        assert tracker.default_threshold("email.send") == 3

    async def test_unknown_pattern_has_default_threshold(
        self, tracker: ApprovalPatternTracker, payload: dict
    ) -> None:
        assert await tracker.get_consecutive_approvals("email.send", payload) == 0
        assert await tracker.get_threshold("email.send", payload) == 3
        assert await tracker.get_threshold("calendar.create", {}) == 5

    async def test_domain_threshold_applied_on_first_sight(
        self, tracker: ApprovalPatternTracker
    ) -> None:
        await tracker.record_approval("calendar.create", {"attendees": ["x@corp.com"]})
        pattern = await tracker.get_pattern("calendar.create", {"attendees": ["y@corp.com"]})
        assert pattern.auto_execute_threshold == 5

    async def test_raise_threshold_never_lowers(
        self, tracker: ApprovalPatternTracker, payload: dict
    ) -> None:
        await tracker.record_approval("email.send", payload)

        assert await tracker.raise_threshold("email.send", payload, 6) is True
        assert await tracker.raise_threshold("email.send", payload, 4) is False
        assert await tracker.get_threshold("email.send", payload) == 6

    async def test_raise_threshold_rejects_zero(
        self, tracker: ApprovalPatternTracker, payload: dict
    ) -> None:
        with pytest.raises(ValueError):
            await tracker.raise_threshold("email.send", payload, 0)

    async def test_reset_pattern(self, tracker: ApprovalPatternTracker, payload: dict) -> None:
        for _ in range(3):
            await tracker.record_approval("email.send", payload)
        await tracker.raise_threshold("email.send", payload, 9)

        assert await tracker.reset_pattern("email.send", payload) is True
        assert await tracker.get_consecutive_approvals("email.send", payload) == 0
        assert await tracker.get_threshold("email.send", payload) == 3

    async def test_get_all_patterns(self, tracker: ApprovalPatternTracker, payload: dict) -> None:
        await tracker.record_approval("email.send", payload)
        await tracker.record_approval("web.search", {"query": "weather"})

        fingerprints = {p.fingerprint for p in await tracker.get_all_patterns()}
        assert fingerprints == {"email.send|replyToMessageId=false;to=example.com", "web.search"}
