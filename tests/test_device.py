"""Tests for the GreeDevice session state machine."""

import asyncio
import gc
import logging

import pytest

from pygree.cipher import Algorithm
from pygree.device import EmptyListener, GreeDevice, SessionState, connect
from pygree.message import (
    ConnectCancelledError,
    DeviceControl,
    FeatureValidationError,
    NotConnectedError,
    TransportError,
)

from conftest import (
    DEVICE_HOST,
    DEVICE_KEY,
    DEVICE_MAC,
    FakeTransport,
    RecordingListener,
    bind,
    make_options,
    settle,
)

STATUS_VALUES = {"Pow": 1, "Mod": 1, "SetTem": 24, "TemSen": 65, "WdSpd": 0}


class TestScanAndBind:
    """Tests for scan -> bind -> bound"""

    @pytest.mark.asyncio
    async def test_connect_sends_bare_scan(self, device, transport):
        task = asyncio.ensure_future(device.connect())
        await settle()

        assert device.state is SessionState.SCANNING
        assert transport.sent[0] == (b'{"t":"scan"}', DEVICE_HOST, 7000)

        await device.disconnect()
        with pytest.raises(ConnectCancelledError):
            await task

    @pytest.mark.asyncio
    async def test_dev_triggers_ecb_bind(self, device, transport, hvac):
        task = asyncio.ensure_future(device.connect())
        await settle()
        hvac.send_dev()
        await settle()

        envelope = transport.envelopes()[1]
        assert envelope["t"] == "pack"
        assert envelope["cid"] == "app"
        assert envelope["i"] == 1
        assert "tag" not in envelope
        assert hvac.decode(1) == {"mac": DEVICE_MAC, "t": "bind", "uid": 0}
        assert device.state is SessionState.BINDING
        assert device.bind_attempt == 1
        assert device.device_id == DEVICE_MAC

        await device.disconnect()
        with pytest.raises(ConnectCancelledError):
            await task

    @pytest.mark.asyncio
    async def test_bindok_before_retry_sends_no_second_bind(self, device, transport, hvac, listener):
        await bind(device, hvac)
        await asyncio.sleep(device.options.bind_retry_delay + 0.1)

        assert len(transport.sent) == 3
        assert hvac.decode(1)["t"] == "bind"
        assert hvac.decode(2, key=DEVICE_KEY)["t"] == "status"
        assert device.state is SessionState.BOUND
        assert device.is_connected
        assert listener.named("connected") == [None]

        await device.disconnect()

    @pytest.mark.asyncio
    async def test_bound_sends_initial_status_with_session_key(self, bound_device, transport, hvac):
        status = hvac.decode(2, key=DEVICE_KEY)

        assert status["t"] == "status"
        assert status["mac"] == DEVICE_MAC
        assert "Pow" in status["cols"] and "TemSen" in status["cols"]
        assert transport.envelopes()[2]["i"] == 2

    @pytest.mark.asyncio
    async def test_retry_switches_to_gcm(self, transport, hvac):
        device = GreeDevice(make_options(bind_retry_delay=0.05), transport=transport)
        task = asyncio.ensure_future(device.connect())
        await settle()
        hvac.send_dev()
        await asyncio.sleep(0.1)

        assert device.bind_attempt == 2
        envelope = transport.envelopes()[2]
        assert "tag" in envelope
        assert hvac.decode(2, Algorithm.AEAD)["t"] == "bind"

        # No third attempt
        await asyncio.sleep(0.15)
        assert len(transport.sent) == 3

        hvac.send_bindok(Algorithm.AEAD)
        await asyncio.wait_for(task, timeout=1.0)

        assert device.state is SessionState.BOUND
        assert hvac.decode(3, Algorithm.AEAD, DEVICE_KEY)["t"] == "status"

        await device.disconnect()

    @pytest.mark.asyncio
    async def test_rejected_bindok_keeps_binding(self, device, hvac):
        task = asyncio.ensure_future(device.connect())
        await settle()
        hvac.send_dev()
        await settle()
        hvac.send_bindok(result=400)
        await settle()

        assert device.state is SessionState.BINDING
        assert not task.done()

        await device.disconnect()
        with pytest.raises(ConnectCancelledError):
            await task

    @pytest.mark.asyncio
    async def test_dev_ignored_when_not_scanning(self, bound_device, transport, hvac):
        sent = len(transport.sent)
        hvac.send_dev()
        await settle()

        assert len(transport.sent) == sent
        assert bound_device.state is SessionState.BOUND

    @pytest.mark.asyncio
    async def test_connect_timeout_rescans(self, transport, hvac):
        device = GreeDevice(make_options(connect_timeout=0.2), transport=transport)
        task = asyncio.ensure_future(device.connect())
        await settle()
        hvac.send_dev()
        await settle()
        await asyncio.sleep(0.25)

        assert device.reconnect_attempts >= 1
        assert device.state is SessionState.SCANNING
        assert transport.sent[-1][0] == b'{"t":"scan"}'

        # Sequence restarts with the new attempt
        hvac.send_dev()
        await settle()
        assert transport.envelopes()[-1]["i"] == 1

        await device.disconnect()
        with pytest.raises(ConnectCancelledError):
            await task

    @pytest.mark.asyncio
    async def test_second_connect_shares_pending_attempt(self, device, transport, hvac):
        first = asyncio.ensure_future(device.connect())
        await settle()
        second = asyncio.ensure_future(device.connect())
        await settle()

        assert transport.created == 1
        hvac.send_dev()
        await settle()
        hvac.send_bindok()
        await asyncio.wait_for(asyncio.gather(first, second), timeout=1.0)

        scans = [data for data, _, _ in transport.sent if data == b'{"t":"scan"}']
        assert len(scans) == 1

        await device.connect()
        assert transport.created == 1

        await device.disconnect()

    @pytest.mark.asyncio
    async def test_transport_error_on_scan_fails_connect(self, device, transport):
        transport.fail_send = True

        with pytest.raises(TransportError):
            await device.connect()

        assert device.state is SessionState.DISCONNECTED
        assert transport.closed


class TestStatus:
    """Tests for status polling and replies"""

    @pytest.mark.asyncio
    async def test_dat_updates_cache_and_notifies(self, bound_device, hvac, listener):
        hvac.send_dat(STATUS_VALUES)
        await settle()

        updates = listener.named("status_updated")
        assert len(updates) == 1
        assert updates[0]["currentTemperature"] == 25
        assert updates[0]["mode"] == "cool"

        status = bound_device.status
        assert status.device_id == DEVICE_MAC
        assert status.power is True
        assert status.temperature == 24
        assert status.fan_speed == "auto"

    @pytest.mark.asyncio
    async def test_unchanged_dat_does_not_notify(self, bound_device, hvac, listener):
        hvac.send_dat(STATUS_VALUES)
        await settle()
        hvac.send_dat(STATUS_VALUES)
        await settle()

        assert len(listener.named("status_updated")) == 1

    @pytest.mark.asyncio
    async def test_dat_replaces_cache(self, bound_device, hvac, listener):
        hvac.send_dat(STATUS_VALUES)
        await settle()
        hvac.send_dat({"Pow": 0})
        await settle()

        assert bound_device.properties == {"power": False}
        assert listener.named("status_updated")[-1] == {"power": False}

    @pytest.mark.asyncio
    async def test_dropped_column_notifies(self, bound_device, hvac, listener):
        hvac.send_dat({"Pow": 1, "Mod": 1})
        await settle()
        hvac.send_dat({"Pow": 1})
        await settle()

        updates = listener.named("status_updated")
        assert len(updates) == 2
        assert updates[1] == {"power": True}

    @pytest.mark.asyncio
    async def test_status_timeout_clears_cache(self, transport, hvac, listener):
        device = GreeDevice(make_options(polling_timeout=0.05), transport=transport)
        device.add_listener(listener)
        await bind(device, hvac)
        hvac.send_dat(STATUS_VALUES)
        await settle()
        assert device.properties

        device.request_status()
        await asyncio.sleep(0.1)

        assert device.properties == {}
        assert listener.named("no_response") == [None]
        assert device.state is SessionState.BOUND

        await device.disconnect()

    @pytest.mark.asyncio
    async def test_dat_cancels_status_timeout(self, transport, hvac, listener):
        device = GreeDevice(make_options(polling_timeout=0.1), transport=transport)
        device.add_listener(listener)
        await bind(device, hvac)
        hvac.send_dat(STATUS_VALUES)
        await asyncio.sleep(0.15)

        assert listener.named("no_response") == []
        assert device.properties["power"] is True

        await device.disconnect()

    @pytest.mark.asyncio
    async def test_mismatched_dat_is_dropped(self, bound_device, hvac, listener):
        hvac.reply({"t": "dat", "cols": ["Pow", "Mod"], "dat": [1]}, key=DEVICE_KEY)
        await settle()

        assert bound_device.properties == {}
        assert listener.named("status_updated") == []

    @pytest.mark.asyncio
    async def test_polling_requests_status(self, transport, hvac):
        device = GreeDevice(make_options(poll=True, polling_interval=0.05), transport=transport)
        await bind(device, hvac)
        await asyncio.sleep(0.18)

        statuses = [i for i in range(2, len(transport.sent)) if hvac.decode(i, key=DEVICE_KEY)["t"] == "status"]
        assert len(statuses) >= 3

        await device.disconnect()
        sent = len(transport.sent)
        await asyncio.sleep(0.1)
        assert len(transport.sent) == sent


class TestCommands:
    """Tests for set_properties, control and acknowledgements"""

    @pytest.mark.asyncio
    async def test_set_properties_sends_cmd(self, bound_device, transport, hvac):
        bound_device.set_properties({"power": True, "temperature": 22, "unknown": 1})

        assert hvac.decode(-1, key=DEVICE_KEY) == {"opt": ["Pow", "SetTem"], "p": [1, 22], "t": "cmd"}

    @pytest.mark.asyncio
    async def test_set_property(self, bound_device, hvac):
        bound_device.set_property("swingVert", "fixedTop")

        assert hvac.decode(-1, key=DEVICE_KEY) == {"opt": ["SwUpDn"], "p": [2], "t": "cmd"}

    @pytest.mark.asyncio
    async def test_requires_bound_session(self, device):
        with pytest.raises(NotConnectedError):
            device.set_properties({"power": True})
        with pytest.raises(NotConnectedError):
            device.request_status()
        with pytest.raises(NotConnectedError):
            device.control(DeviceControl(power=True))

    @pytest.mark.asyncio
    async def test_send_error_propagates(self, bound_device, transport):
        transport.fail_send = True

        with pytest.raises(TransportError):
            bound_device.set_properties({"power": False})

    @pytest.mark.asyncio
    async def test_res_merges_into_cache(self, bound_device, hvac, listener):
        hvac.send_dat(STATUS_VALUES)
        await settle()
        hvac.send_res({"Pow": 0, "SetTem": 20})
        await settle()

        assert listener.named("command_acknowledged") == [{"power": False, "temperature": 20}]
        properties = bound_device.properties
        assert properties["power"] is False
        assert properties["temperature"] == 20
        assert properties["mode"] == "cool"

    @pytest.mark.asyncio
    async def test_res_falls_back_to_p(self, bound_device, hvac, listener):
        hvac.send_res({"Lig": 1}, key="p")
        await settle()

        assert listener.named("command_acknowledged") == [{"lights": True}]

    @pytest.mark.asyncio
    async def test_control_sends_translated_properties(self, bound_device, hvac):
        bound_device.control(DeviceControl(power=True, mode="heat", fan_speed="high", quiet=False))

        assert hvac.decode(-1, key=DEVICE_KEY) == {
            "opt": ["Pow", "Quiet", "Mod", "WdSpd"],
            "p": [1, 0, 4, 5],
            "t": "cmd",
        }


class TestValidationGate:
    """Tests for the validation modes applied by control()"""

    @pytest.mark.asyncio
    async def test_strict_raises_and_sends_nothing(self, transport, hvac):
        device = GreeDevice(make_options(validation_mode="strict"), transport=transport)
        await bind(device, hvac)
        sent = len(transport.sent)

        with pytest.raises(FeatureValidationError) as excinfo:
            device.control(DeviceControl(mode="heat", blow=True, turbo=True))

        assert excinfo.value.mode == "heat"
        assert len(excinfo.value.errors) == 1
        assert len(transport.sent) == sent

        await device.disconnect()

    @pytest.mark.asyncio
    async def test_warn_logs_and_sends(self, bound_device, transport, caplog):
        sent = len(transport.sent)

        with caplog.at_level(logging.WARNING, logger="pygree.device"):
            bound_device.control(DeviceControl(mode="dry", turbo=True))

        assert "Turbo mode (turbo)" in caplog.text
        assert len(transport.sent) == sent + 1

    @pytest.mark.asyncio
    async def test_none_skips_validation(self, transport, hvac):
        device = GreeDevice(make_options(validation_mode="none"), transport=transport)
        await bind(device, hvac)

        device.control(DeviceControl(mode="dry", turbo=True, blow=True))
        assert hvac.decode(-1, key=DEVICE_KEY)["t"] == "cmd"

        await device.disconnect()

    @pytest.mark.asyncio
    async def test_uses_current_mode_when_control_has_none(self, bound_device, hvac):
        hvac.send_dat({"Mod": 4})
        await settle()

        errors = bound_device.validate_control(DeviceControl(blow=True))

        assert errors == ["Feature 'blow' is not available in mode 'heat'. Available in: ['cool', 'dry']"]

    @pytest.mark.asyncio
    async def test_validate_control_without_mode(self, bound_device):
        assert bound_device.validate_control(DeviceControl(blow=True)) == ["Mode is required for validation"]

    @pytest.mark.asyncio
    async def test_availability_follows_device_mode(self, bound_device, hvac):
        assert bound_device.is_feature_available("blow")

        hvac.send_dat({"Mod": 3})
        await settle()

        assert not bound_device.is_feature_available("blow")
        assert bound_device.is_wind_setting_available("quiet")
        assert not bound_device.is_wind_setting_available("turbo")
        assert bound_device.available_features() == {"health", "uvc", "safetyheating", "air"}

    @pytest.mark.asyncio
    async def test_set_feature_safely_strict(self, transport, hvac):
        device = GreeDevice(make_options(validation_mode="strict"), transport=transport)
        await bind(device, hvac)
        hvac.send_dat({"Mod": 4})
        await settle()

        with pytest.raises(FeatureValidationError):
            device.set_feature_safely("powersave", True)

        device.set_feature_safely("health", True)
        assert hvac.decode(-1, key=DEVICE_KEY) == {"opt": ["Health"], "p": [1], "t": "cmd"}

        with pytest.raises(ValueError):
            device.set_feature_safely("sleep", True)

        await device.disconnect()


class TestDisconnect:
    """Tests for disconnect and failure handling"""

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, bound_device, transport, listener):
        await bound_device.disconnect()
        await bound_device.disconnect()

        assert bound_device.state is SessionState.DISCONNECTED
        assert transport.closed
        assert listener.named("disconnected") == [None]

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_connect_once(self, device, hvac):
        first = asyncio.ensure_future(device.connect())
        second = asyncio.ensure_future(device.connect())
        await settle()
        hvac.send_dev()
        await settle()

        await device.disconnect()

        results = await asyncio.gather(first, second, return_exceptions=True)
        assert all(isinstance(result, ConnectCancelledError) for result in results)
        assert device.state is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_timers_do_not_fire_after_disconnect(self, transport, hvac, listener):
        device = GreeDevice(make_options(polling_timeout=0.05, bind_retry_delay=0.05), transport=transport)
        device.add_listener(listener)
        await bind(device, hvac)
        await device.disconnect()
        await asyncio.sleep(0.1)

        assert listener.named("no_response") == []

    @pytest.mark.asyncio
    async def test_reconnect_after_disconnect(self, bound_device, transport, hvac):
        await bound_device.disconnect()
        await bind(bound_device, hvac)

        assert bound_device.state is SessionState.BOUND
        assert transport.created == 2

    @pytest.mark.asyncio
    async def test_garbage_datagrams_are_dropped(self, bound_device, transport, hvac, listener):
        transport.feed(b"not json")
        transport.feed(b'{"t":"pack","pack":"!!!"}')
        hvac.reply({"t": "dat", "cols": ["Pow"], "dat": [1]})  # generic key, not the session key
        hvac.reply({"t": "unknown"}, key=DEVICE_KEY)
        await settle()

        assert bound_device.state is SessionState.BOUND
        assert listener.named("status_updated") == []
        assert listener.named("error") == []

        hvac.send_dat({"Pow": 1})
        await settle()
        assert bound_device.properties == {"power": True}

    @pytest.mark.asyncio
    async def test_non_string_columns_are_dropped(self, bound_device, hvac, listener):
        hvac.reply({"t": "dat", "cols": [["Pow"]], "dat": [1]}, key=DEVICE_KEY)
        await settle()

        assert not bound_device._receive_task.done()
        assert listener.named("status_updated") == []

        hvac.send_dat({"Pow": 1})
        await settle()
        assert bound_device.properties == {"power": True}

    @pytest.mark.asyncio
    async def test_non_string_device_id_is_dropped(self, device, hvac, caplog):
        caplog.set_level(logging.INFO)
        task = asyncio.ensure_future(device.connect())
        await settle()
        hvac.reply({"t": "dev", "cid": 123456789, "mac": 123456789})
        await settle()

        assert not device._receive_task.done()
        assert device.state is SessionState.SCANNING

        hvac.send_dev()
        await settle()
        hvac.send_bindok()
        await asyncio.wait_for(task, timeout=1.0)
        assert device.device_id == DEVICE_MAC

        await device.disconnect()
        assert device.state is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_unexpected_handler_error_keeps_receiving(self, bound_device, hvac, caplog):
        def broken(envelope, payload):
            raise RuntimeError("boom")

        bound_device._handlers["res"] = broken
        hvac.send_res({"Pow": 0})
        await settle()

        assert not bound_device._receive_task.done()
        assert "Unexpected error handling datagram" in caplog.text

        hvac.send_dat({"Pow": 1})
        await settle()
        assert bound_device.properties == {"power": True}


class TestListeners:
    """Tests for listener registration"""

    @pytest.mark.asyncio
    async def test_listener_is_weakly_held(self, device, hvac):
        listener = RecordingListener()
        device.add_listener(listener)
        del listener
        gc.collect()

        assert len(device._live_listeners()) == 1

        await bind(device, hvac)
        await device.disconnect()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, bound_device, hvac, listener):
        class Broken(EmptyListener):
            def status_updated(self, status):
                raise RuntimeError("boom")

        broken = Broken()
        bound_device.add_listener(broken)
        bound_device.remove_listener(listener)
        bound_device.add_listener(listener)

        hvac.send_dat({"Pow": 1})
        await settle()

        assert len(listener.named("status_updated")) == 1

    @pytest.mark.asyncio
    async def test_remove_listener(self, bound_device, hvac, listener):
        bound_device.remove_listener(listener)

        hvac.send_dat({"Pow": 1})
        await settle()

        assert listener.named("status_updated") == []


class TestConnectFunction:
    """Tests for the module-level connect()"""

    @pytest.mark.asyncio
    async def test_timeout_disconnects(self):
        transport = FakeTransport()

        with pytest.raises(asyncio.TimeoutError):
            await connect(DEVICE_HOST, timeout=0.05, transport=transport)

        assert transport.closed

    @pytest.mark.asyncio
    async def test_returns_bound_device(self, hvac, transport):
        listener = RecordingListener()
        task = asyncio.ensure_future(connect(DEVICE_HOST, listener=listener, transport=transport, poll=False))
        await settle()
        hvac.send_dev()
        await settle()
        hvac.send_bindok()

        device = await asyncio.wait_for(task, timeout=1.0)

        assert device.state is SessionState.BOUND
        assert listener.named("connected") == [None]
        await device.disconnect()
