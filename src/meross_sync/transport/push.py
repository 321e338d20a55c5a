"""MQTT listener feeding device push messages into the sync core."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable

import aiomqtt

from meross_sync.config import PushConfig
from meross_sync.const import MEROSS_MQTT_RECONNECT_DELAY
from meross_sync.correlation import correlation_context
from meross_sync.logging_abstraction import get_logger

__all__ = ["MQTTPushListener", "PushHandler"]

logger = get_logger(__name__)

PushHandler = Callable[[object], None]


class MQTTPushListener:
    """Subscribe to each device's publish topic and hand decoded JSON to its handler.

    Handlers are synchronous and must not raise (MerossSwitch.receive_update
    never does). Broker errors trigger a reconnect after `reconnect_delay`.
    """

    lp: str = "MQTTPushListener:"

    def __init__(self, config: PushConfig, reconnect_delay: int = MEROSS_MQTT_RECONNECT_DELAY) -> None:
        self.config: PushConfig = config
        self.reconnect_delay: int = reconnect_delay if reconnect_delay > 0 else 5
        self.handlers: dict[str, PushHandler] = {}
        self.client: aiomqtt.Client | None = None
        self._connected: bool = False
        self.start_task: asyncio.Task[None] | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    def register(self, uuid: str, handler: PushHandler) -> str:
        """Route messages from device `uuid` to `handler`; return the topic."""
        topic = self.config.topic_for(uuid)
        self.handlers[topic] = handler
        return topic

    def dispatch(self, topic: str, raw: bytes | bytearray | str) -> bool:
        """Decode one message and pass it to its device; return True if handled."""
        handler = self.handlers.get(topic)
        if handler is None:
            logger.debug("%s no handler for topic %s", self.lp, topic)
            return False
        try:
            message: object = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("%s undecodable message on %s: %s", self.lp, topic, e)
            return False
        with correlation_context():
            handler(message)
        return True

    async def _receive(self, client: aiomqtt.Client) -> None:
        for topic in self.handlers:
            await client.subscribe(topic, qos=0)
        logger.debug(
            "%s Subscribed to MQTT topics: %s. Waiting for MQTT messages...",
            self.lp,
            list(self.handlers),
        )
        async for message in client.messages:
            payload = message.payload
            if isinstance(payload, (bytes, bytearray, str)):
                _ = self.dispatch(str(message.topic), payload)

    async def start(self) -> None:
        """Connect and listen until cancelled, reconnecting on broker errors."""
        lp = f"{self.lp}start:"
        while True:
            self.client = aiomqtt.Client(
                hostname=self.config.host,
                port=self.config.port,
                username=self.config.username,
                password=self.config.password,
            )
            try:
                async with self.client as client:
                    self._connected = True
                    logger.info("%s Connected to MQTT broker %s:%s", lp, self.config.host, self.config.port)
                    await self._receive(client)
            except asyncio.CancelledError:
                logger.debug("%s MQTT receiver task cancelled, propagating...", lp)
                raise
            except aiomqtt.MqttError as e:
                logger.warning("%s MQTT error: %s", lp, e)
            finally:
                self._connected = False
            logger.info(
                "%s connection to MQTT broker lost, sleeping for %s seconds before re-trying...",
                lp,
                self.reconnect_delay,
            )
            await asyncio.sleep(self.reconnect_delay)

    async def stop(self) -> None:
        if self.start_task is not None and not self.start_task.done():
            _ = self.start_task.cancel()
            try:
                await self.start_task
            except asyncio.CancelledError:
                logger.debug("%s stopped", self.lp)
        self.start_task = None
