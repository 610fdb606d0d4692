from __future__ import annotations

import pytest
from werkzeug.datastructures import MultiDict

from avcontrols.controls import Controls, sanitize_text, settings_fields
from avcontrols.relay import CommandRelay

OK = '{"data": "OK"}'


def make_controls(snapshot, client, payloads=None):
    return Controls(snapshot, CommandRelay(client, snapshot.volume_models, payloads))


def test_power_command_requires_show_power(snapshot, make_client) -> None:
    client = make_client({"command/cli": OK})
    controls = make_controls(snapshot, client)

    reply = controls.handle_command({"receiver_ip": "10.0.0.5", "power_command": "cec_tv_on.sh"})

    assert reply == {"success": False, "message": "Power control not enabled for this receiver."}
    assert client.calls == []


def test_power_command_for_unknown_receiver(snapshot, make_client) -> None:
    client = make_client({"command/cli": OK})

    reply = make_controls(snapshot, client).handle_command({"receiver_ip": "10.0.0.99", "power_command": "cec_tv_on.sh"})

    assert reply["success"] is False
    assert client.calls == []


def test_power_command_success(snapshot, make_client) -> None:
    client = make_client({"command/cli": OK})

    reply = make_controls(snapshot, client).handle_command({"receiver_ip": "10.0.0.4", "power_command": "cec_tv_on.sh"})

    assert reply == {"success": True, "message": "Power command sent successfully."}
    assert client.calls == [("POST", "10.0.0.4", "command/cli", "cec_tv_on.sh", "text/plain")]


def test_power_command_unexpected_response(snapshot, make_client) -> None:
    client = make_client({"command/cli": '{"data": "FAIL"}'})

    reply = make_controls(snapshot, client).power_command("10.0.0.4", "cec_tv_off.sh")

    assert reply == {"success": False, "message": "Error sending power command: Unexpected response."}


def test_channel_and_volume_update(snapshot, make_client) -> None:
    client = make_client({
        "command/channel": OK,
        "command/audio/stereo/volume": OK,
        "details/device/model": '{"data": "3G+AVP RX"}',
    })

    reply = make_controls(snapshot, client).handle_command({"receiver_ip": "10.0.0.5", "channel": "7", "volume": "0"})

    assert reply == {"success": True, "message": "Channel: Successfully updated\nVolume: Successfully updated\n"}
    assert ("POST", "10.0.0.5", "command/audio/stereo/volume", "0", "text/plain") in client.calls


def test_volume_skipped_for_unsupported_model(snapshot, make_client) -> None:
    client = make_client({"command/channel": OK, "details/device/model": '{"data": "2G RX"}'})

    reply = make_controls(snapshot, client).update_receiver("10.0.0.5", "2", "5")

    assert reply == {"success": True, "message": "Channel: Successfully updated\n"}


@pytest.mark.parametrize("volume", ["21", "-1", "loud"])
def test_volume_out_of_range_rejected_before_device_call(snapshot, make_client, volume) -> None:
    client = make_client({"command/channel": OK})

    reply = make_controls(snapshot, client).update_receiver("10.0.0.5", "2", volume)

    assert reply == {"success": False, "message": "Volume must be between 0 and 20."}
    assert client.calls == []


def test_channel_update_failure(snapshot, make_client) -> None:
    client = make_client({"command/channel": '{"data": "ERR"}'})

    reply = make_controls(snapshot, client).update_receiver("10.0.0.5", "2")

    assert reply == {"success": False, "message": "Channel: Update failed\n"}


def test_channel_update_rejects_unknown_receiver_and_bad_channel(snapshot, make_client) -> None:
    client = make_client({"command/channel": OK})
    controls = make_controls(snapshot, client)

    assert controls.update_receiver("10.0.0.99", "2") == {"success": False, "message": "Unknown receiver."}
    assert controls.update_receiver("10.0.0.5", "0") == {"success": False, "message": "Invalid channel."}
    assert client.calls == []


def test_remote_action_replies(snapshot, make_client) -> None:
    client = make_client({"command/cli": OK})
    controls = make_controls(snapshot, client, payloads={"power": "AABBCC"})

    assert controls.handle_command({"device_url": "http://10.0.0.21/", "action": "power"}) == {
        "success": True,
        "message": "Command sent successfully",
    }
    assert controls.handle_command({"device_url": "http://10.0.0.21/", "action": "<b>"}) == {
        "success": False,
        "message": "Invalid action: &lt;b&gt;",
    }


def test_ir_api_replies(snapshot, make_client) -> None:
    controls = make_controls(snapshot, make_client({"command/cli": OK}), payloads={"power": "AABBCC"})

    assert controls.ir_api({"device_url": "http://10.0.0.21"}) == ({"error": "Missing required parameters"}, 400)
    assert controls.ir_api({"device_url": "http://10.0.0.21", "action": "menu"}) == ({"error": "Invalid action"}, 400)
    assert controls.ir_api({"device_url": "http://10.0.0.21", "action": "power"}) == ({"success": True}, 200)


def test_ir_api_reports_transport_failure(snapshot, make_client) -> None:
    controls = make_controls(snapshot, make_client(), payloads={"power": "AABBCC"})

    body, status = controls.ir_api({"device_url": "http://10.0.0.21", "action": "power"})

    assert status == 500
    assert "timed out" in body["error"]


def test_power_all_only_targets_power_enabled_receivers(snapshot, make_client) -> None:
    client = make_client({"command/cli": OK})

    reply = make_controls(snapshot, client).power_all("cec_tv_off.sh")

    assert reply["success"] is True
    assert list(reply["results"]) == ["Bar TV 1"]
    assert [call[1] for call in client.calls] == ["10.0.0.4"]


def test_receiver_statuses_all_unreachable(snapshot, make_client) -> None:
    statuses, all_unreachable = make_controls(snapshot, make_client()).receiver_statuses()

    assert statuses == []
    assert all_unreachable is True


def test_receiver_statuses_mixed(snapshot, make_client) -> None:
    client = make_client({
        ("10.0.0.5", "details/channel"): '{"data": "7"}',
        ("10.0.0.5", "details/device/model"): '{"data": "3G+4+ TX"}',
        ("10.0.0.5", "details/audio/stereo/volume"): '{"data": "9"}',
    })

    statuses, all_unreachable = make_controls(snapshot, client).receiver_statuses()

    assert all_unreachable is False
    assert [s.reachable for s in statuses] == [False, True]
    assert statuses[1].current_volume == 9


@pytest.mark.parametrize(
    "value,expected",
    [("cec_tv_on.sh", "cec_tv_on.sh"), ("cec_tv_on.sh; rm -rf /", "cec_tv_on.sh rm -rf /"), ("$(reboot)", "reboot"), (None, "")],
)
def test_sanitize_text(value, expected) -> None:
    assert sanitize_text(value) == expected


def test_settings_fields_pairs_rows_and_power_checkboxes() -> None:
    form = MultiDict([
        ("receiver_name", "A"), ("receiver_ip", "10.0.0.1"),
        ("receiver_name", "B"), ("receiver_ip", "10.0.0.2"),
        ("receiver_power", "1"),
        ("transmitter_name", "Apple TV"), ("transmitter_channel", "7"),
        ("max_volume", "11"), ("log_level", "debug"),
    ])

    fields = settings_fields(form)

    assert fields["receivers"] == [
        {"name": "A", "ip": "10.0.0.1", "show_power": False},
        {"name": "B", "ip": "10.0.0.2", "show_power": True},
    ]
    assert fields["transmitters"] == [{"name": "Apple TV", "channel": "7"}]
    assert fields["max_volume"] == "11"
    assert fields["min_volume"] is None
    assert fields["log_level"] == "debug"
