"""MQTT push channel delivering row change events."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import paho.mqtt.client as mqtt

from ..config import MQTTConfig
from ..errors import MalformedRowError, RemoteTransportError
from .base import ChangeEvent, ChangeHandler, ChannelSpec, PushChannel, Subscription

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class _Listener:
    spec: ChannelSpec
    handler: ChangeHandler


class MQTTSubscription(Subscription):
    """Subscription handle returned by MQTTChangeChannel.subscribe()."""

    def __init__(self, channel: "MQTTChangeChannel", topic: str, listener: _Listener):
        self._channel = channel
        self.topic = topic
        self._listener = listener
        self.active = True

    async def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._channel._remove_listener(self.topic, self._listener)


class MQTTChangeChannel(PushChannel):
    """Push channel reading ``{type, row, timestamp}`` JSON from MQTT topics.

    One topic per table: ``{topic_prefix}/{schema}/{table}``. Events are
    decoded on paho's network thread and handed to the asyncio loop that
    called subscribe().
    """

    def __init__(self, config: MQTTConfig):
        self.config = config
        self._listeners: dict[str, list[_Listener]] = {}

        # Paho MQTT client
        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._handle_connect
        self._client.on_message = self._handle_message
        self._client.on_disconnect = self._handle_disconnect

        # Connection state
        self._connected = False
        self._loop: asyncio.AbstractEventLoop | None = None

    def topic_for(self, spec: ChannelSpec) -> str:
        return f"{self.config.topic_prefix}/{spec.schema}/{spec.table}"

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle connection to broker."""
        if reason_code == 0:
            self._connected = True
            logger.info(f"Connected to MQTT broker at {self.config.broker}:{self.config.port}")

            # Resubscribe after reconnects
            for topic in self._listeners:
                client.subscribe(topic)
                logger.info(f"Subscribed to topic: {topic}")
        else:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle disconnection from broker."""
        self._connected = False
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        msg: mqtt.MQTTMessage,
    ) -> None:
        """Decode an incoming change message and dispatch it."""
        listeners = self._listeners.get(msg.topic)
        if not listeners:
            return

        try:
            event = ChangeEvent.from_payload(json.loads(msg.payload.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, MalformedRowError) as e:
            logger.warning(f"Dropping malformed change on {msg.topic}: {e}")
            return

        for listener in list(listeners):
            prefilter = listener.spec.prefilter
            if prefilter is not None and not prefilter.matches(event.row):
                continue
            self._dispatch(listener.handler, event)

    def _dispatch(self, handler: ChangeHandler, event: ChangeEvent) -> None:
        if self._loop is not None:
            self._loop.call_soon_threadsafe(handler, event)
        else:
            handler(event)

    async def connect(self) -> None:
        """Connect to the MQTT broker.

        Raises:
            RemoteTransportError: If the broker cannot be reached.
        """
        if self._connected:
            return

        self._loop = asyncio.get_running_loop()

        # Set credentials if configured
        if self.config.username and self.config.password:
            self._client.username_pw_set(self.config.username, self.config.password)

        try:
            self._client.connect(self.config.broker, self.config.port, keepalive=60)
            self._client.loop_start()
        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            raise RemoteTransportError(f"MQTT connect failed: {e}") from e

        # Wait for connection
        for _ in range(50):  # 5 second timeout
            if self._connected:
                return
            await asyncio.sleep(0.1)

        raise RemoteTransportError("Timeout waiting for MQTT connection")

    async def subscribe(self, spec: ChannelSpec, handler: ChangeHandler) -> Subscription:
        await self.connect()

        topic = self.topic_for(spec)
        listener = _Listener(spec=spec, handler=handler)
        if topic not in self._listeners:
            self._listeners[topic] = []
            self._client.subscribe(topic)
            logger.info(f"Subscribed to topic: {topic}")
        self._listeners[topic].append(listener)
        return MQTTSubscription(self, topic, listener)

    def _remove_listener(self, topic: str, listener: _Listener) -> None:
        listeners = self._listeners.get(topic, [])
        if listener in listeners:
            listeners.remove(listener)
        if not listeners and topic in self._listeners:
            del self._listeners[topic]
            self._client.unsubscribe(topic)
            logger.info(f"Unsubscribed from topic: {topic}")

    async def disconnect(self) -> None:
        """Disconnect from the MQTT broker and stop the network thread."""
        self._client.loop_stop()
        self._client.disconnect()
        self._connected = False

    async def close(self) -> None:
        await self.disconnect()

    @property
    def is_connected(self) -> bool:
        return self._connected
