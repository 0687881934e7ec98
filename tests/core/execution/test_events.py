"""
Tests for transition observers
"""

import asyncio

import pytest

from txpipeline.core.execution.events import TransitionEvent, TransitionNotifier
from txpipeline.core.execution.models import TxStatus


def event(to_status: TxStatus = TxStatus.SIMULATED) -> TransitionEvent:
    return TransitionEvent(
        tx_id="tx-1",
        user_id="user-1",
        chain_id=1,
        from_status=TxStatus.PENDING,
        to_status=to_status,
    )


class TestTransitionNotifier:
    """Test observer registration and delivery."""

    def test_sync_observer_called_inline(self):
        seen = []
        notifier = TransitionNotifier([seen.append])

        notifier.notify(event())

        assert [e.to_status for e in seen] == [TxStatus.SIMULATED]

    def test_register_is_idempotent(self):
        seen = []
        notifier = TransitionNotifier()
        notifier.register(seen.append)
        notifier.register(seen.append)

        notifier.notify(event())

        assert len(seen) == 1

    def test_unregister(self):
        seen = []
        notifier = TransitionNotifier([seen.append])
        notifier.unregister(seen.append)

        notifier.notify(event())

        assert seen == []
        assert notifier.observers == []

    def test_failing_observer_does_not_stop_others(self):
        seen = []

        def broken(_event):
            raise RuntimeError("observer down")

        notifier = TransitionNotifier([broken, seen.append])
        notifier.notify(event())

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_async_observer_scheduled_and_drained(self):
        """Test async observers run as tasks and drain() waits for them."""
        seen = []

        async def slow(e):
            await asyncio.sleep(0.01)
            seen.append(e.to_status)

        notifier = TransitionNotifier([slow])
        notifier.notify(event(TxStatus.APPROVED))

        assert seen == []
        await notifier.drain()
        assert seen == [TxStatus.APPROVED]

    @pytest.mark.asyncio
    async def test_async_observer_failure_is_contained(self):
        async def broken(_e):
            raise RuntimeError("boom")

        notifier = TransitionNotifier([broken])
        notifier.notify(event())

        await notifier.drain()

    def test_event_to_dict(self):
        data = event(TxStatus.FAILED).to_dict()

        assert data["txId"] == "tx-1"
        assert data["from"] == "pending"
        assert data["to"] == "failed"
        assert data["at"]
