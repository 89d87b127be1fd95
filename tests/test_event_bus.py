"""
Tests for event delivery and for events held back by open savepoints.
"""

import pytest

from mlm_engine.events.event_bus import eventBus


class TestDelivery:

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_stop_others(self, capturedEvents):
        def broken(data):
            raise RuntimeError("smtp down")

        eventBus.subscribe("payout.large", broken)
        events = capturedEvents("payout.large")

        await eventBus.emit("payout.large", {"amount": 1})

        assert events == [{"amount": 1}]

    @pytest.mark.asyncio
    async def test_async_subscriber_awaited(self):
        received = []

        async def forward(data):
            received.append(data)

        eventBus.subscribe("rank.achieved", forward)
        await eventBus.emit("rank.achieved", {"rankName": "gold"})
        eventBus.unsubscribe("rank.achieved", forward)
        await eventBus.emit("rank.achieved", {"rankName": "platinum"})

        assert received == [{"rankName": "gold"}]


class TestHolding:

    @pytest.mark.asyncio
    async def test_held_until_released(self, capturedEvents):
        events = capturedEvents("roi.distributed")

        with eventBus.holding() as held:
            await eventBus.emit("roi.distributed", {"processed": 3})
            assert events == []

        await eventBus.release(held)

        assert events == [{"processed": 3}]
        assert held == []

    @pytest.mark.asyncio
    async def test_dropped_when_block_raises(self, capturedEvents):
        events = capturedEvents("matching_bonus.paid")

        with pytest.raises(RuntimeError):
            with eventBus.holding():
                await eventBus.emit("matching_bonus.paid", {"nodeId": 1})
                raise RuntimeError("savepoint rolled back")

        await eventBus.emit("matching_bonus.paid", {"nodeId": 2})

        assert events == [{"nodeId": 2}]

    @pytest.mark.asyncio
    async def test_inner_release_goes_to_outer_block(self, capturedEvents):
        events = capturedEvents("rank.achieved")

        with eventBus.holding() as outer:
            with eventBus.holding() as inner:
                await eventBus.emit("rank.achieved", {"accountId": 7})
            await eventBus.release(inner)
            assert events == []

        assert outer == [("rank.achieved", {"accountId": 7})]
        await eventBus.release(outer)
        assert events == [{"accountId": 7}]
