"""Tests for the outbox poller entrypoint."""

import threading
from unittest.mock import MagicMock

import chatrelay.worker as worker_module
from chatrelay.domain.outbox_worker import BatchResult
from chatrelay.domain.send_message import SendMessageInput
from chatrelay.worker import main, run_forever, run_once
from helpers import CONTACT_NUMBER, NUMBER_ID, TEST_WORKSPACE


def _enqueue_text(relay, text="oi"):
    return relay.send_message(
        SendMessageInput(
            workspace_id=TEST_WORKSPACE,
            conversation_id=CONTACT_NUMBER,
            type="text",
            content=text,
            whatsapp_number_id=NUMBER_ID,
        )
    )


class TestRunOnce:
    def test_delivers_pending_entries(self, relay, provider):
        _enqueue_text(relay)

        result = run_once(relay, 10)

        assert isinstance(result, BatchResult)
        assert result.processed == 1
        assert result.sent == 1
        assert len(provider.sent) == 1

    def test_empty_outbox(self, relay):
        assert run_once(relay) == BatchResult()


class TestRunForever:
    def test_stop_already_set(self, relay):
        relay.outbox_worker = MagicMock()
        stop = threading.Event()
        stop.set()

        run_forever(relay, stop)

        relay.outbox_worker.process_batch.assert_not_called()

    def test_loops_until_stopped(self, relay):
        stop = threading.Event()
        calls = []

        def fake_batch(limit):
            calls.append(limit)
            if len(calls) == 3:
                stop.set()
            # Full batch: next iteration runs without waiting
            return BatchResult(processed=limit, sent=limit)

        relay.outbox_worker = MagicMock()
        relay.outbox_worker.process_batch.side_effect = fake_batch

        run_forever(relay, stop)

        assert calls == [10, 10, 10]

    def test_crash_does_not_stop_poller(self, relay, monkeypatch):
        stop = threading.Event()
        attempts = []

        def flaky_batch(limit):
            attempts.append(limit)
            if len(attempts) == 1:
                raise RuntimeError("database unavailable")
            stop.set()
            return BatchResult()

        relay.outbox_worker = MagicMock()
        relay.outbox_worker.process_batch.side_effect = flaky_batch
        # No real sleeping between polls
        monkeypatch.setattr(stop, "wait", lambda timeout=None: False)

        run_forever(relay, stop)

        assert len(attempts) == 2


class TestMain:
    def test_once(self, relay, provider, monkeypatch):
        _enqueue_text(relay)
        monkeypatch.setattr(worker_module, "build_relay", lambda: relay)

        assert main(["--once"]) == 0
        assert len(provider.sent) == 1
