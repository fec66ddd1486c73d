"""
Event fanout - tells subscribers that something changed after a commit.

Notifications are advisory hints to refetch; the persisted state is the
source of truth. Delivery is at-least-once, so every notification carries an
eventId consumers can use to drop duplicates.
"""
import json
import threading
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import config
from .logging import logger
from .utils import to_iso, utc_now

PROJECT_AVAILABLE = 'project.available'
PROJECT_ASSIGNED = 'project.assigned'
PROJECT_STATUS_CHANGED = 'project.status_changed'
WALLET_POSTED = 'wallet.posted'

POOL_CHANNEL = 'pool'


def doer_channel(doer_id: str) -> str:
    return f'doer:{doer_id}'


def supervisor_channel(supervisor_id: str) -> str:
    return f'supervisor:{supervisor_id}'


def user_channel(user_id: str) -> str:
    return f'user:{user_id}'


def wallet_channel(wallet_id: str) -> str:
    return f'wallet:{wallet_id}'


def project_channels(project: dict) -> List[str]:
    """Channels of every actor attached to a project."""
    channels = []
    if project.get('userId'):
        channels.append(user_channel(project['userId']))
    if project.get('doerId'):
        channels.append(doer_channel(project['doerId']))
    if project.get('supervisorId'):
        channels.append(supervisor_channel(project['supervisorId']))
    return channels


class SqsSink:
    """Forwards every notification to an SQS queue for out-of-process consumers."""

    def __init__(self, queue_url: str, client=None):
        self.queue_url = queue_url
        self.client = client or boto3.client('sqs', region_name=config.AWS_REGION)

    def __call__(self, notification: dict) -> None:
        self.client.send_message(
            QueueUrl=self.queue_url,
            MessageBody=json.dumps(notification, default=str),
            MessageAttributes={
                'eventType': {'DataType': 'String', 'StringValue': notification['type']},
                'channel': {'DataType': 'String', 'StringValue': notification['channel']},
            }
        )


class EventFanout:
    """Publishes lifecycle and wallet events to channel subscribers and sinks."""

    def __init__(
        self,
        sinks: Optional[Iterable[Callable[[dict], None]]] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self._clock = clock
        self._subscribers: Dict[str, List[Callable[[dict], None]]] = defaultdict(list)
        self._sinks = list(sinks or [])
        self._lock = threading.Lock()

    def subscribe(self, channel: str, callback: Callable[[dict], None]) -> Callable[[], None]:
        """Register a callback for a channel. Returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers[channel].append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers[channel]:
                    self._subscribers[channel].remove(callback)

        return unsubscribe

    def publish(self, event_type: str, payload: dict, channels: Iterable[str]) -> int:
        """
        Notify every subscriber of the given channels.

        Must only be called after the change it describes has been committed.

        Returns:
            Number of notifications handed to subscribers and sinks
        """
        delivered = 0
        event_id = str(uuid.uuid4())
        published_at = to_iso(self._clock())

        for channel in dict.fromkeys(channels):
            notification = {
                'eventId': event_id,
                'type': event_type,
                'channel': channel,
                'payload': payload,
                'publishedAt': published_at,
            }
            with self._lock:
                targets = list(self._subscribers.get(channel, ())) + self._sinks

            for target in targets:
                try:
                    target(notification)
                    delivered += 1
                except (ClientError, BotoCoreError) as e:
                    logger.error(f"Error forwarding {event_type} on {channel}: {e}")
                except Exception as e:
                    # Never reaches the caller; the change is already committed
                    logger.exception(f"Subscriber failed for {event_type} on {channel}: {e}")

        logger.info(f"Published {event_type} to {delivered} targets")
        return delivered
