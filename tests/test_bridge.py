"""Tests for lioncloud.bridge."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import aiomqtt
import pytest

from lioncloud._constants import STATUS_QUEUE_SIZE
from lioncloud.bridge import Bridge, _mqtt_params, run_bridge
from lioncloud.client import Client
from lioncloud.config import CloudConfig, Config, MqttConfig, Trigger, TriggerCondition
from lioncloud.errors import CommandFailedError
from lioncloud.models import DeviceSnapshot, DoseMode


def _mock_client() -> MagicMock:
    client = MagicMock(spec=Client)
    client.get_status.return_value = DeviceSnapshot(serial="GS1", connected=True)
    for name in ("set_dose", "set_mode", "set_power", "start_cleaning_cycle"):
        setattr(client, name, AsyncMock())
    return client


@pytest.fixture
def client() -> MagicMock:
    return _mock_client()


@pytest.fixture
def bridge(client) -> Bridge:
    triggers = [
        Trigger("zigbee2mqtt/+/action", [TriggerCondition("action", "double")], "Dose2"),
        Trigger("zigbee2mqtt/+/action", [TriggerCondition("action", "single")], "dose1"),
    ]
    return Bridge(client, MqttConfig(host="broker.local"), triggers)


def _messages(*items: tuple[str, bytes]) -> AsyncIterator[SimpleNamespace]:
    async def gen() -> AsyncIterator[SimpleNamespace]:
        for topic, payload in items:
            yield SimpleNamespace(topic=topic, payload=payload)

    return gen()


class TestTopics:
    def test_default_topics(self, bridge):
        assert bridge.status_topic == "home/lamarzocco/status"
        assert bridge.set_topic == "home/lamarzocco/set"

    def test_mqtt_params(self):
        params = _mqtt_params(MqttConfig(host="h", port=1884, username="u", password="p"))
        assert params == {
            "hostname": "h",
            "port": 1884,
            "identifier": "lamarzocco_mqtt",
            "username": "u",
            "password": "p",
        }


class TestStatusPublishing:
    async def test_enqueue_drops_oldest(self, bridge):
        snapshots = [DeviceSnapshot(dose1=float(i + 5)) for i in range(STATUS_QUEUE_SIZE + 2)]
        for snapshot in snapshots:
            bridge.enqueue_status(snapshot)

        assert bridge._queue.qsize() == STATUS_QUEUE_SIZE
        assert bridge._queue.get_nowait() is snapshots[2]

    async def test_publish_status(self, bridge):
        mqtt = MagicMock()
        mqtt.publish = AsyncMock()
        snapshot = DeviceSnapshot(mode=DoseMode.DOSE1, serial="GS1", connected=True)
        await bridge.publish_status(mqtt, snapshot)

        mqtt.publish.assert_awaited_once()
        args, kwargs = mqtt.publish.call_args
        assert args[0] == "home/lamarzocco/status"
        assert json.loads(args[1]) == snapshot.to_dict()
        assert kwargs == {"qos": 1, "retain": True}


class TestHandleMessage:
    async def test_set_command(self, bridge, client):
        bridge.handle_message("home/lamarzocco/set", b'{"mode": "Dose2", "dose1": 18.55}')
        await bridge.wait_idle()

        client.set_dose.assert_awaited_once_with("Dose1", 18.55)
        client.set_mode.assert_awaited_once_with(DoseMode.DOSE2)

    async def test_invalid_command_is_rejected(self, bridge, client, caplog):
        with caplog.at_level(logging.ERROR, logger="lioncloud.bridge"):
            bridge.handle_message("home/lamarzocco/set", b'{"dose1": 123}')
            await bridge.wait_idle()

        client.set_dose.assert_not_awaited()
        assert "out of range" in caplog.text

    async def test_command_failure_is_logged(self, bridge, client, caplog):
        client.set_power.side_effect = CommandFailedError("Set power", 500)
        with caplog.at_level(logging.ERROR, logger="lioncloud.bridge"):
            bridge.handle_message("home/lamarzocco/set", b'{"power": false}')
            await bridge.wait_idle()

        assert "Set power failed: 500" in caplog.text

    async def test_unexpected_error_is_logged(self, bridge, client, caplog):
        client.set_mode.side_effect = RuntimeError("boom")
        with caplog.at_level(logging.ERROR, logger="lioncloud.bridge"):
            bridge.handle_message("zigbee2mqtt/kitchen/action", b'{"action": "single"}')
            await bridge.wait_idle()

        assert "Unexpected error while trying to set mode from trigger" in caplog.text
        assert "boom" in caplog.text
        assert not bridge._tasks

    async def test_trigger_sets_mode(self, bridge, client):
        bridge.handle_message("zigbee2mqtt/kitchen/action", b'{"action": "single"}')
        await bridge.wait_idle()

        client.set_mode.assert_awaited_once_with(DoseMode.DOSE1)

    async def test_first_matching_trigger_wins(self, bridge, client):
        bridge.handle_message("zigbee2mqtt/kitchen/action", b'{"action": "double"}')
        await bridge.wait_idle()

        client.set_mode.assert_awaited_once_with(DoseMode.DOSE2)

    async def test_unmatched_trigger(self, bridge, client):
        bridge.handle_message("zigbee2mqtt/kitchen/action", b'{"action": "hold"}')
        bridge.handle_message("other/topic", b'{"action": "single"}')
        await bridge.wait_idle()

        client.set_mode.assert_not_awaited()


class TestServe:
    async def test_subscribes_publishes_and_dispatches(self, bridge, client):
        mqtt = MagicMock()
        mqtt.subscribe = AsyncMock()
        mqtt.publish = AsyncMock()
        mqtt.messages = _messages(
            ("home/lamarzocco/set", b'{"backflush": true}'),
            ("zigbee2mqtt/kitchen/action", b'{"action": "double"}'),
        )

        await bridge._serve(mqtt)
        await bridge.wait_idle()

        subscribed = [c.args[0] for c in mqtt.subscribe.await_args_list]
        assert subscribed == ["home/lamarzocco/set", "zigbee2mqtt/+/action"]
        assert mqtt.publish.await_args_list[0].args[0] == "home/lamarzocco/status"
        client.start_cleaning_cycle.assert_awaited_once()
        client.set_mode.assert_awaited_once_with(DoseMode.DOSE2)


class TestRun:
    async def test_reconnects_after_mqtt_error(self, bridge, client):
        with (
            patch(
                "lioncloud.bridge.aiomqtt.Client",
                side_effect=[aiomqtt.MqttError("refused"), RuntimeError("stop")],
            ) as mqtt_client,
            patch("lioncloud.bridge.RECONNECT_INTERVAL", 0),
        ):
            with pytest.raises(RuntimeError, match="stop"):
                await bridge.run()

        assert mqtt_client.call_count == 2
        assert mqtt_client.call_args.kwargs["hostname"] == "broker.local"
        client.register_status_change_callback.assert_called_once_with(bridge.enqueue_status)


class TestRunBridge:
    async def test_connects_polls_and_stops(self):
        config = Config(
            mqtt=MqttConfig(host="broker.local"),
            cloud=CloudConfig("me@example.com", "secret", polling_interval=15),
        )
        client = _mock_client()
        client.connect = AsyncMock()
        poller = MagicMock()
        poller.stop = AsyncMock()
        client.start_polling.return_value = poller

        with (
            patch("lioncloud.bridge.Client", return_value=client) as client_cls,
            patch.object(Bridge, "run", AsyncMock(side_effect=RuntimeError("stop"))),
        ):
            with pytest.raises(RuntimeError):
                await run_bridge(config)

        client_cls.assert_called_once_with("me@example.com", "secret")
        client.connect.assert_awaited_once()
        client.start_polling.assert_called_once_with(15)
        poller.stop.assert_awaited_once()
