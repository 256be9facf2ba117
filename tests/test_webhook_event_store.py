"""Tests for the webhook event audit log and idempotency claim."""

import threading
from contextlib import contextmanager
from unittest.mock import MagicMock

from chatrelay.domain.models import WebhookEvent
from chatrelay.domain.webhook_store import WebhookEventStore, build_idempotency_key
from helpers import TEST_WORKSPACE


def _event(clock, event_id="evolution:h1", key="ws:messages.upsert:ABC") -> WebhookEvent:
    return WebhookEvent(
        id=event_id,
        provider="evolution",
        workspace_id=TEST_WORKSPACE,
        event_type="messages.upsert",
        payload={"event": "messages.upsert"},
        payload_hash="h1",
        idempotency_key=key,
        received_at=clock(),
    )


class TestBuildIdempotencyKey:
    def test_uses_external_id(self):
        assert build_idempotency_key("ws", "messages.upsert", "ABC", "hash") == (
            "ws:messages.upsert:ABC"
        )

    def test_falls_back_to_payload_hash(self):
        assert build_idempotency_key("ws", "connection.update", None, "hash") == (
            "ws:connection.update:hash"
        )

    def test_missing_event_type(self):
        assert build_idempotency_key("ws", None, "ABC", "hash") == "ws::ABC"


class TestWebhookEventStore:
    def test_first_record_wins_claim(self, store, clock):
        events = WebhookEventStore(store.unit_of_work)

        result = events.record(_event(clock))

        assert result.is_duplicate is False
        assert result.event.status == "received"
        assert events.get("evolution:h1") is not None

    def test_replay_keeps_both_audit_rows(self, store, clock):
        events = WebhookEventStore(store.unit_of_work)
        events.record(_event(clock))

        replay = events.record(_event(clock))

        assert replay.is_duplicate is True
        assert replay.event.id.startswith("evolution:h1:")
        assert replay.event.id != "evolution:h1"
        stored = events.get(replay.event.id)
        assert stored is not None
        assert stored.status == "duplicate"
        assert events.get("evolution:h1").status == "received"

    def test_different_body_same_key_is_duplicate(self, store, clock):
        events = WebhookEventStore(store.unit_of_work)
        events.record(_event(clock, event_id="evolution:h1"))

        second = events.record(_event(clock, event_id="evolution:h2"))

        assert second.is_duplicate is True
        assert second.event.id == "evolution:h2"

    def test_update_status(self, store, clock):
        events = WebhookEventStore(store.unit_of_work)
        events.record(_event(clock))

        events.update_status("evolution:h1", "rejected", "missing_event_type")

        stored = events.get("evolution:h1")
        assert stored.status == "rejected"
        assert stored.error == "missing_event_type"

    def test_update_status_unknown_id_is_ignored(self, store):
        events = WebhookEventStore(store.unit_of_work)

        events.update_status("evolution:nope", "processed")

        assert events.get("evolution:nope") is None


class TestConcurrentClaim:
    def test_exactly_one_winner(self, store, clock):
        """8 threads with Barrier record the same key => exactly 1 claim."""
        events = WebhookEventStore(store.unit_of_work)
        num_threads = 8
        barrier = threading.Barrier(num_threads)
        results = []
        results_lock = threading.Lock()

        def record(i: int):
            barrier.wait()
            result = events.record(_event(clock, event_id=f"evolution:h{i}"))
            with results_lock:
                results.append(result)

        threads = [threading.Thread(target=record, args=(i,)) for i in range(num_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == num_threads
        assert sum(1 for r in results if not r.is_duplicate) == 1


class TestConcurrentRedelivery:
    """Same body delivered twice at once: the other row is committed after our insert began."""

    def test_id_conflict_is_suffixed_and_stored_as_duplicate(self, clock):
        repos = MagicMock()
        repos.webhook_events.insert.side_effect = [False, True]
        repos.webhook_events.claim_key.return_value = False

        @contextmanager
        def uow():
            yield repos

        result = WebhookEventStore(uow).record(_event(clock))

        assert result.is_duplicate is True
        first, second = [c.args[0] for c in repos.webhook_events.insert.call_args_list]
        assert first.id == "evolution:h1"
        assert second.id.startswith("evolution:h1:")
        assert result.event.id == second.id
        assert result.event.status == "duplicate"
        repos.webhook_events.claim_key.assert_called_once_with("ws:messages.upsert:ABC", second.id)
        repos.webhook_events.update_status.assert_called_once_with(second.id, "duplicate")

    def test_winner_binds_its_own_id(self, clock):
        repos = MagicMock()
        repos.webhook_events.insert.return_value = True
        repos.webhook_events.claim_key.return_value = True

        @contextmanager
        def uow():
            yield repos

        result = WebhookEventStore(uow).record(_event(clock))

        assert result.is_duplicate is False
        repos.webhook_events.insert.assert_called_once()
        repos.webhook_events.claim_key.assert_called_once_with("ws:messages.upsert:ABC", "evolution:h1")
        repos.webhook_events.update_status.assert_not_called()
