"""MQTT bridge: publishes machine status and relays inbound commands.

Status is published (retained by default) to ``{topic}/status`` whenever the
snapshot changes.  JSON commands sent to ``{topic}/set`` are validated and
applied, and messages on configured trigger topics switch the dose mode when
all of a trigger's conditions match.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Coroutine
from typing import Any

import aiomqtt

from lioncloud._constants import RECONNECT_INTERVAL, STATUS_QUEUE_SIZE
from lioncloud.client import Client
from lioncloud.commands import apply_command, parse_command
from lioncloud.config import Config, MqttConfig, Trigger
from lioncloud.errors import ArgumentInvalidError, LionCloudError
from lioncloud.models import DeviceSnapshot, DoseMode
from lioncloud.triggers import find_matching_trigger

_LOGGER = logging.getLogger(__name__)


class Bridge:
    """Connects a :class:`Client` to an MQTT broker."""

    def __init__(
        self,
        client: Client,
        mqtt: MqttConfig,
        triggers: list[Trigger] | None = None,
    ) -> None:
        self._client = client
        self._mqtt = mqtt
        self._triggers_by_topic: dict[str, list[Trigger]] = {}
        for trigger in triggers or []:
            self._triggers_by_topic.setdefault(trigger.topic, []).append(trigger)
        self._queue: asyncio.Queue[DeviceSnapshot] = asyncio.Queue(maxsize=STATUS_QUEUE_SIZE)
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def status_topic(self) -> str:
        return f"{self._mqtt.topic}/status"

    @property
    def set_topic(self) -> str:
        return f"{self._mqtt.topic}/set"

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def enqueue_status(self, snapshot: DeviceSnapshot) -> None:
        """Status callback: queue *snapshot*, dropping the oldest when full."""
        while True:
            try:
                self._queue.put_nowait(snapshot)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()

    async def publish_status(self, mqtt: aiomqtt.Client, snapshot: DeviceSnapshot) -> None:
        payload = json.dumps(snapshot.to_dict(), separators=(",", ":"))
        await mqtt.publish(
            self.status_topic, payload, qos=self._mqtt.qos, retain=self._mqtt.retain
        )
        _LOGGER.debug("Published status to %s: %s", self.status_topic, payload)

    async def _publish_loop(self, mqtt: aiomqtt.Client) -> None:
        while True:
            snapshot = await self._queue.get()
            try:
                await self.publish_status(mqtt, snapshot)
            except aiomqtt.MqttError as e:
                _LOGGER.warning("Failed to publish status: %s", e)

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    def handle_message(self, topic: str, payload: bytes | str) -> None:
        """Dispatch one inbound message without waiting for the cloud API."""
        if topic == self.set_topic:
            try:
                cmd = parse_command(payload)
            except ArgumentInvalidError as e:
                _LOGGER.error("Rejected command on %s: %s", topic, e)
                return
            _LOGGER.info("Received command: %s", cmd)
            self._spawn(apply_command(self._client, cmd), "apply command")
            return

        mqtt_topic = aiomqtt.Topic(topic)
        for pattern, triggers in self._triggers_by_topic.items():
            if not mqtt_topic.matches(pattern):
                continue
            trigger = find_matching_trigger(triggers, payload)
            if trigger is None:
                _LOGGER.debug("No trigger matched for message on %s", topic)
                continue
            mode = DoseMode.parse(trigger.mode)
            _LOGGER.info("Trigger matched on %s, setting dose mode %s", topic, mode.value)
            self._spawn(self._client.set_mode(mode), "set mode from trigger")
            return

    def _spawn(self, coro: Coroutine[Any, Any, None], description: str) -> None:
        task = asyncio.create_task(self._guard(coro, description))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _guard(coro: Coroutine[Any, Any, None], description: str) -> None:
        try:
            await coro
        except LionCloudError as e:
            _LOGGER.error("Failed to %s: %s", description, e)
        except Exception:
            _LOGGER.exception("Unexpected error while trying to %s", description)

    async def wait_idle(self) -> None:
        """Wait for all in-flight command tasks to finish."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Connection loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Serve until cancelled, reconnecting to the broker as needed."""
        self._client.register_status_change_callback(self.enqueue_status)
        while True:
            try:
                params = _mqtt_params(self._mqtt)
                async with aiomqtt.Client(**params) as mqtt:  # type: ignore[arg-type]
                    _LOGGER.info("Connected to MQTT broker %s", self._mqtt.host)
                    await self._serve(mqtt)
            except aiomqtt.MqttError as e:
                _LOGGER.warning("MQTT connection lost: %s", e)
            await asyncio.sleep(RECONNECT_INTERVAL)

    async def _serve(self, mqtt: aiomqtt.Client) -> None:
        await mqtt.subscribe(self.set_topic, qos=self._mqtt.qos)
        _LOGGER.info("Subscribed to commands on %s", self.set_topic)
        for topic in self._triggers_by_topic:
            await mqtt.subscribe(topic, qos=self._mqtt.qos)
            _LOGGER.info("Subscribed to trigger topic %s", topic)

        await self.publish_status(mqtt, self._client.get_status())
        publisher = asyncio.create_task(self._publish_loop(mqtt))
        try:
            async for message in mqtt.messages:
                payload = message.payload
                if not isinstance(payload, bytes | str):
                    continue
                self.handle_message(str(message.topic), payload)
        finally:
            publisher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await publisher


def _mqtt_params(mqtt: MqttConfig) -> dict[str, object]:
    """Derive aiomqtt.Client constructor kwargs from the configuration."""
    return {
        "hostname": mqtt.host,
        "port": mqtt.port,
        "identifier": mqtt.client_id,
        "username": mqtt.username,
        "password": mqtt.password,
    }


async def run_bridge(config: Config) -> None:
    """Connect to the cloud, start polling and serve the MQTT bridge."""
    client = Client(config.cloud.username, config.cloud.password)
    _LOGGER.info("Connecting to La Marzocco API...")
    await client.connect()
    bridge = Bridge(client, config.mqtt, config.triggers)
    poller = client.start_polling(config.cloud.polling_interval)
    try:
        await bridge.run()
    finally:
        await poller.stop()
