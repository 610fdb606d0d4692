"""Request handling for the control page: validation and uniform replies."""

import logging
import re

from markupsafe import escape

from avcontrols.config_store import parse_int
from avcontrols.errors import UnknownActionError

logger = logging.getLogger(__name__)

_UNSAFE_TEXT = re.compile(r"[^A-Za-z0-9._ /+-]")


def sanitize_text(value):
    """Keep only characters allowed in command names; trim the result."""
    if value is None:
        return ""
    return _UNSAFE_TEXT.sub("", str(value)).strip()


def _reply(success, message):
    return {"success": success, "message": message}


class Controls:
    """Validates control requests against a config snapshot and runs them."""

    def __init__(self, snapshot, relay):
        self.snapshot = snapshot
        self.relay = relay

    # =========================================================================
    # Page rendering
    # =========================================================================

    def receiver_statuses(self):
        """Query every receiver and report whether all of them are unreachable."""
        receivers = list(self.snapshot.receivers.values())
        if not receivers:
            return [], False
        if not self.relay.probe_any(receivers):
            logger.error("No receivers reachable")
            return [], True

        statuses = []
        for receiver in receivers:
            status = self.relay.query_receiver(receiver)
            if not status.reachable:
                logger.error("Receiver %s (%s) unreachable", receiver.name, receiver.ip)
            statuses.append(status)
        return statuses, False

    # =========================================================================
    # Command dispatch
    # =========================================================================

    def handle_command(self, form):
        """Dispatch a POST from the control page to the matching handler."""
        if form.get("receiver_ip") is not None:
            if form.get("power_command") is not None:
                return self.power_command(form.get("receiver_ip"), form.get("power_command"))
            return self.update_receiver(form.get("receiver_ip"), form.get("channel"), form.get("volume"))
        if form.get("device_url") is not None:
            return self.remote_action(form.get("device_url"), form.get("action"))
        return _reply(False, "Missing required parameters")

    def power_command(self, receiver_ip, command):
        receiver = self.snapshot.receiver_by_ip(str(receiver_ip).strip())
        if receiver is None or not receiver.show_power:
            return _reply(False, "Power control not enabled for this receiver.")

        command = sanitize_text(command)
        if not command:
            return _reply(False, "Invalid power command.")

        result = self.relay.send_power(receiver.ip, command)
        if result:
            logger.info("Power command %s sent to %s", command, receiver.name)
            return _reply(True, "Power command sent successfully.")
        logger.error("Error sending power command to %s: %s", receiver.name, result.error)
        return _reply(False, f"Error sending power command: {result.error}")

    def update_receiver(self, receiver_ip, channel, volume=None):
        """Set the channel and, where supported, the volume of a receiver."""
        receiver = self.snapshot.receiver_by_ip(str(receiver_ip).strip())
        if receiver is None:
            return _reply(False, "Unknown receiver.")

        channel = parse_int(channel)
        if channel is None or channel < 1:
            return _reply(False, "Invalid channel.")

        settings = self.snapshot.settings
        if volume is not None and str(volume).strip() != "":
            volume = parse_int(volume)
            if volume is None or not settings.min_volume <= volume <= settings.max_volume:
                return _reply(
                    False,
                    f"Volume must be between {settings.min_volume} and {settings.max_volume}.",
                )
        else:
            volume = None

        lines = []
        channel_result = self.relay.set_channel(receiver.ip, channel)
        success = channel_result.ok
        lines.append("Channel: " + ("Successfully updated" if channel_result else "Update failed"))

        if volume is not None and self.relay.supports_volume_control(receiver.ip):
            volume_result = self.relay.set_volume(receiver.ip, volume)
            success = success and volume_result.ok
            lines.append("Volume: " + ("Successfully updated" if volume_result else "Update failed"))

        if success:
            logger.info("Updated %s: channel=%s volume=%s", receiver.name, channel, volume)
        else:
            logger.error("Error updating settings on %s: %s", receiver.name, "; ".join(lines))
        return _reply(success, "\n".join(lines) + "\n")

    def remote_action(self, device_url, action):
        """Send a named IR action to a transmitter's receiver."""
        try:
            result = self.relay.send_ir_action(str(device_url), action)
        except UnknownActionError:
            return _reply(False, f"Invalid action: {escape(str(action or ''))}")

        if result:
            logger.info("Remote command %s sent to %s", action, device_url)
            return _reply(True, "Command sent successfully")
        logger.error("Error sending remote command %s to %s: %s", action, device_url, result.error)
        return _reply(False, f"Error sending command: {result.error}")

    def ir_api(self, form):
        """Handle the standalone IR endpoint; returns (body, status)."""
        device_url = form.get("device_url")
        action = form.get("action")
        if not isinstance(device_url, str) or action is None:
            return {"error": "Missing required parameters"}, 400

        try:
            result = self.relay.send_ir_action(device_url, action)
        except UnknownActionError:
            return {"error": "Invalid action"}, 400

        if not result:
            logger.error("Error sending remote command %s to %s: %s", action, device_url, result.error)
            return {"error": result.error}, 500
        return {"success": True}, 200

    def power_all(self, command):
        """Send a power command to every receiver with power control, in order."""
        command = sanitize_text(command)
        if not command:
            return {"success": False, "message": "Invalid power command.", "results": {}}

        results = {}
        for receiver in self.snapshot.receivers.values():
            if not receiver.show_power:
                continue
            result = self.relay.send_power(receiver.ip, command)
            results[receiver.name] = {"success": result.ok, "error": result.error}
            if not result:
                logger.error("Error sending power command to %s: %s", receiver.name, result.error)

        failed = [name for name, r in results.items() if not r["success"]]
        if failed:
            message = "Power command failed for: " + ", ".join(failed)
        else:
            message = "Power command sent successfully."
        return {"success": not failed, "message": message, "results": results}


def settings_fields(form):
    """Collect settings form rows into the shape the config store validates.

    Receiver rows come from parallel `receiver_name`/`receiver_ip` lists; a
    row's power checkbox submits its row index under `receiver_power`.
    """
    names = form.getlist("receiver_name")
    ips = form.getlist("receiver_ip")
    powered = set(form.getlist("receiver_power"))
    receivers = [
        {
            "name": name,
            "ip": ips[index] if index < len(ips) else "",
            "show_power": str(index) in powered,
        }
        for index, name in enumerate(names)
    ]

    transmitter_names = form.getlist("transmitter_name")
    channels = form.getlist("transmitter_channel")
    transmitters = [
        {"name": name, "channel": channels[index] if index < len(channels) else ""}
        for index, name in enumerate(transmitter_names)
    ]

    fields = {"receivers": receivers, "transmitters": transmitters}
    for key in ("max_volume", "min_volume", "volume_step", "api_timeout", "home_url", "log_level"):
        fields[key] = form.get(key)
    return fields
