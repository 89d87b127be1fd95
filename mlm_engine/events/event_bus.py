# mlm_engine/events/event_bus.py
"""
Outbound notification hook for payouts, ranks and ledger checks.

Publishing is fire-and-forget: a failing subscriber is logged and never
reaches the financial operation that published. Events published while a
SAVEPOINT is open are held back until it is released (see holding()).
"""
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Dict, List, Callable, Any, Optional, Tuple
import logging
import inspect

logger = logging.getLogger(__name__)

# Events published inside an open holding() block
_heldEvents: ContextVar[Optional[List[Tuple[str, Dict]]]] = ContextVar("heldEvents", default=None)


def _subscriberName(subscriber: Callable) -> str:
    return getattr(subscriber, "__qualname__", repr(subscriber))


class EventBus:
    """Process-wide registry of event subscribers (email, SMS, queue forwarders)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._subscribers = {}
        return cls._instance

    def subscribe(self, eventName: str, subscriber: Callable):
        self._subscribers.setdefault(eventName, []).append(subscriber)
        logger.debug(f"{_subscriberName(subscriber)} listens to {eventName}")

    def unsubscribe(self, eventName: str, subscriber: Callable):
        subscribers = self._subscribers.get(eventName, [])
        if subscriber in subscribers:
            subscribers.remove(subscriber)
            logger.debug(f"{_subscriberName(subscriber)} stopped listening to {eventName}")

    async def emit(self, eventName: str, data: Dict[str, Any]):
        """Deliver data to every subscriber of eventName, in subscription order."""
        held = _heldEvents.get()
        if held is not None:
            held.append((eventName, data))
            return

        subscribers: List[Callable] = list(self._subscribers.get(eventName, []))
        if not subscribers:
            return

        logger.debug(f"Publishing {eventName} to {len(subscribers)} subscriber(s): {data}")
        for subscriber in subscribers:
            try:
                delivered = subscriber(data)
                if inspect.isawaitable(delivered):
                    await delivered
            except Exception as e:
                logger.error(f"Subscriber {_subscriberName(subscriber)} failed on {eventName}: {e}")

    @contextmanager
    def holding(self):
        """
        Queue events published inside the block instead of delivering them.

        Wrap a SAVEPOINT with it and pass the yielded list to release() once
        the SAVEPOINT is released. If the block raises, the queued events are
        dropped with the rolled-back work. Blocks nest: releasing an inner
        block hands its events to the enclosing one.
        """
        held = []
        token = _heldEvents.set(held)
        try:
            yield held
        finally:
            _heldEvents.reset(token)

    async def release(self, held: List[Tuple[str, Dict]]):
        for eventName, data in held:
            await self.emit(eventName, data)
        held.clear()

    def clear(self):
        self._subscribers.clear()


eventBus = EventBus()


class MLMEvents:
    """Engine events worth a notification."""

    PURCHASE_COMPLETED = "purchase.completed"
    ROI_DISTRIBUTED = "roi.distributed"
    LEVEL_INCOME_DISTRIBUTED = "level_income.distributed"
    MATCHING_BONUS_PAID = "matching_bonus.paid"
    RANK_ACHIEVED = "rank.achieved"
    BOOSTER_ACHIEVED = "booster.achieved"
    LARGE_PAYOUT = "payout.large"
    RECONCILIATION_FAILED = "ledger.reconciliation_failed"
