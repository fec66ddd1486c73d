"""
Explicit context passed into every core operation.
The core keeps no module-level state; handlers build one context per process.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from .config import config
from .events import EventFanout, SqsSink
from .store import Store
from .utils import utc_now


@dataclass
class CoreContext:
    store: Store
    fanout: EventFanout = field(default_factory=EventFanout)
    settings: Any = config
    clock: Callable[[], datetime] = utc_now


def build_context(store: Store = None, fanout: EventFanout = None) -> CoreContext:
    """Wire the production context: DynamoDB store and SQS event sink."""
    if store is None:
        from .dynamo import DynamoStore
        store = DynamoStore()
    if fanout is None:
        sinks = [SqsSink(config.EVENTS_QUEUE_URL)] if config.EVENTS_QUEUE_URL else []
        fanout = EventFanout(sinks=sinks)
    return CoreContext(store=store, fanout=fanout)
