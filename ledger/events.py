from collections import deque
from typing import Callable, Deque, Dict, List, NamedTuple
from datetime import datetime

__all__ = [
    'Event', 'EventBus', 'event_bus',
    'BUDGET_ASSIGNED', 'TRANSACTION_RECORDED', 'CHAIN_PROPAGATED', 'CHAIN_REPAIRED', 'OVERSPENT_ALERT',
    'overspending_handler', 'repair_summary_handler', 'register_default_handlers', 'AlertLog',
]

class Event(NamedTuple):
    name: str
    ts: str
    payload: dict

class EventBus:
    def __init__(self):
        self._subscribers: Dict[str, List[Callable[[Event, dict], dict]]] = {}

    def subscribe(self, name: str, handler: Callable[[Event, dict], dict]) -> None:
        if name not in self._subscribers:
            self._subscribers[name] = []
        if handler not in self._subscribers[name]:
            self._subscribers[name].append(handler)

    def publish(self, name: str, payload: dict) -> List[dict]:
        if name not in self._subscribers:
            return []

        event = Event(
            name=name,
            ts=datetime.now().isoformat(),
            payload=payload
        )

        results = []
        for handler in list(self._subscribers[name]):
            result = handler(event, payload)
            results.append(result)
        return results

    def unsubscribe(self, name: str, handler: Callable[[Event, dict], dict]) -> None:
        if name in self._subscribers:
            if handler in self._subscribers[name]:
                self._subscribers[name].remove(handler)

    def clear(self) -> None:
        self._subscribers.clear()

BUDGET_ASSIGNED = "BUDGET_ASSIGNED"
TRANSACTION_RECORDED = "TRANSACTION_RECORDED"
CHAIN_PROPAGATED = "CHAIN_PROPAGATED"
CHAIN_REPAIRED = "CHAIN_REPAIRED"
OVERSPENT_ALERT = "OVERSPENT_ALERT"

event_bus = EventBus()

def overspending_handler(event: Event, payload: dict) -> dict:
    available = payload.get("available", 0)
    if available < 0:
        return {
            "alert": f"Category {payload.get('category_id')} is overspent by {-available:,.2f} in {payload.get('month')}",
            "category_id": payload.get("category_id"),
            "month": payload.get("month"),
            "overspent": -available,
        }
    return {}

def repair_summary_handler(event: Event, payload: dict) -> dict:
    changed = payload.get("changed_months", [])
    if changed:
        return {
            "alert": f"Repaired {len(changed)} month(s) for category {payload.get('category_id')}: {', '.join(changed)}",
            "category_id": payload.get("category_id"),
        }
    return {}

def register_default_handlers(bus: EventBus = event_bus) -> None:
    bus.subscribe(BUDGET_ASSIGNED, overspending_handler)
    bus.subscribe(TRANSACTION_RECORDED, overspending_handler)
    bus.subscribe(CHAIN_REPAIRED, repair_summary_handler)

class AlertLog:
    """Collects the alerts the default handlers raise, newest last.

    Subscribing the same log twice is a no-op, so one publish is one entry.
    """

    def __init__(self, maxlen: int = 50):
        self.entries: Deque[dict] = deque(maxlen=maxlen)

    def __call__(self, event: Event, payload: dict) -> dict:
        handler = repair_summary_handler if event.name == CHAIN_REPAIRED else overspending_handler
        alert = handler(event, payload)
        if alert:
            self.entries.append({"event": event.name, "ts": event.ts, **alert})
        return alert

    def attach(self, bus: EventBus) -> "AlertLog":
        for name in (BUDGET_ASSIGNED, TRANSACTION_RECORDED, CHAIN_REPAIRED):
            bus.subscribe(name, self)
        return self

    def recent(self, n: int = 10) -> List[dict]:
        return list(self.entries)[-n:]
