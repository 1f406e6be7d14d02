"""Realtime partner notifications over MQTT.

Each user has a private room (topic). The client listens on its own room and,
when paired, on the partner's room. Notifications only trigger a reload; the
payload is never applied directly, the sync engine stays the single path that
changes the view.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import paho.mqtt.client as mqtt

from .config import RealtimeConfig

logger = logging.getLogger(__name__)


class NotificationKind(Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass
class Notification:
    """A change broadcast by one partner to the other."""

    kind: NotificationKind
    event: dict[str, Any]
    partner_id: int | None = None  # Target room
    sender_id: int | None = None
    topic: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_payload(self) -> str:
        return json.dumps({
            "kind": self.kind.value,
            "event": self.event,
            "partner_id": self.partner_id,
            "sender_id": self.sender_id,
        })

    @classmethod
    def from_payload(cls, topic: str, payload: str) -> "Notification":
        """Parse a received message.

        Raises:
            ValueError: If the payload is not a valid notification.
        """
        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError("Notification payload must be an object")
        return cls(
            kind=NotificationKind(data.get("kind")),
            event=data.get("event") or {},
            partner_id=data.get("partner_id"),
            sender_id=data.get("sender_id"),
            topic=topic,
        )


ChangeCallback = Callable[[Notification], Awaitable[None]]


class RealtimeClient:
    """Async MQTT client carrying partner change notifications.

    Delivery is at-most-once and unacknowledged; the sync engine's next load
    cycle remains the authoritative path.
    """

    def __init__(
        self,
        config: RealtimeConfig,
        on_change: ChangeCallback | None = None,
    ):
        self.config = config
        self._on_change = on_change

        # Paho MQTT client
        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._handle_connect
        self._client.on_message = self._handle_message
        self._client.on_disconnect = self._handle_disconnect
        self._client.reconnect_delay_set(
            min_delay=config.reconnect_min_delay,
            max_delay=config.reconnect_max_delay,
        )

        # Connection state
        self._connected = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._user_id: int | None = None
        self._partner_id: int | None = None

        # Queue for async notification handling
        self._queue: asyncio.Queue[Notification] | None = None

    def set_on_change(self, callback: ChangeCallback | None) -> None:
        self._on_change = callback

    def room_topic(self, user_id: int) -> str:
        """Topic of a user's private room."""
        return f"{self.config.topic_prefix}/users/{user_id}/events"

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle connection to broker, (re)joining rooms."""
        if reason_code == 0:
            self._connected = True
            logger.info(f"Connected to realtime broker at {self.config.broker}:{self.config.port}")

            if self._user_id is not None:
                client.subscribe(self.room_topic(self._user_id))
            if self._partner_id is not None:
                client.subscribe(self.room_topic(self._partner_id))
                logger.info(f"Joined partner room for user {self._partner_id}")
        else:
            logger.error(f"Realtime connection refused: {reason_code}")

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        msg: mqtt.MQTTMessage,
    ) -> None:
        """Handle incoming message from the paho network thread."""
        try:
            notification = Notification.from_payload(
                msg.topic, msg.payload.decode("utf-8")
            )
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Ignoring malformed notification on {msg.topic}: {e}")
            return

        # Our own broadcasts echo back through the partner room
        if notification.sender_id is not None and notification.sender_id == self._user_id:
            return

        logger.debug(f"Received {notification.kind.value} notification on {msg.topic}")

        if self._queue and self._loop:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, notification)

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle disconnection; paho reconnects with bounded backoff."""
        self._connected = False
        logger.warning(f"Disconnected from realtime broker: {reason_code}")

    async def connect(
        self,
        credential: str,
        user_id: int,
        partner_id: int | None = None,
    ) -> bool:
        """Connect to the broker and join the user's and partner's rooms.

        Args:
            credential: Session credential used as the broker password.
            user_id: The signed-in user.
            partner_id: The paired partner, if any.

        Returns:
            True if connection successful.
        """
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._user_id = user_id
        self._partner_id = partner_id

        self._client.username_pw_set(str(user_id), credential)

        attempts = max(1, self.config.connect_attempts)
        backoff = float(self.config.reconnect_min_delay)

        for attempt in range(attempts):
            try:
                self._client.connect(
                    self.config.broker, self.config.port, keepalive=self.config.keepalive
                )
                self._client.loop_start()

                # Wait for connection
                for _ in range(50):  # 5 second timeout
                    if self._connected:
                        return True
                    await asyncio.sleep(0.1)

                logger.error("Timeout waiting for realtime connection")
                self._client.loop_stop()

            except Exception as e:
                logger.error(
                    f"Realtime connection error, attempt {attempt + 1}/{attempts}: {e}"
                )

            if attempt < attempts - 1:
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self.config.reconnect_max_delay)

        return False

    async def disconnect(self) -> None:
        """Leave all rooms and disconnect from the broker."""
        self._client.loop_stop()
        self._client.disconnect()
        self._connected = False
        self._user_id = None
        self._partner_id = None

    async def emit(
        self,
        kind: NotificationKind | str,
        event_payload: dict[str, Any],
        partner_id: int | None,
    ) -> bool:
        """Broadcast a confirmed change to the partner's room.

        Args:
            kind: created, updated or deleted.
            event_payload: Event data for the partner.
            partner_id: Target partner; nothing is sent when absent.

        Returns:
            True if the message was handed to the broker.
        """
        if not self._connected or partner_id is None:
            logger.debug("Skipping notification: not connected or not paired")
            return False

        notification = Notification(
            kind=NotificationKind(kind),
            event=event_payload,
            partner_id=partner_id,
            sender_id=self._user_id,
        )
        result = self._client.publish(
            self.room_topic(partner_id), notification.to_payload(), qos=0
        )
        return result.rc == mqtt.MQTT_ERR_SUCCESS

    async def emit_created(self, event_payload: dict[str, Any], partner_id: int | None) -> bool:
        return await self.emit(NotificationKind.CREATED, event_payload, partner_id)

    async def emit_updated(self, event_payload: dict[str, Any], partner_id: int | None) -> bool:
        return await self.emit(NotificationKind.UPDATED, event_payload, partner_id)

    async def emit_deleted(self, event_payload: dict[str, Any], partner_id: int | None) -> bool:
        return await self.emit(NotificationKind.DELETED, event_payload, partner_id)

    async def get_notification(self, timeout: float | None = None) -> Notification | None:
        """Get the next partner notification from the queue.

        Args:
            timeout: Optional timeout in seconds.

        Returns:
            Notification or None if timeout.
        """
        if not self._queue:
            return None

        try:
            if timeout is None:
                return await self._queue.get()
            else:
                return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def listen(self, stop_event: asyncio.Event | None = None) -> None:
        """Dispatch partner notifications to the change callback until stopped."""
        while not (stop_event and stop_event.is_set()):
            if self._queue is None:
                await asyncio.sleep(1.0)
                continue
            notification = await self.get_notification(timeout=1.0)
            if notification is None or self._on_change is None:
                continue
            try:
                await self._on_change(notification)
            except Exception as e:
                logger.error(f"Change handler failed for {notification.kind.value}: {e}")

    @property
    def is_connected(self) -> bool:
        """Check if connected to broker."""
        return self._connected
