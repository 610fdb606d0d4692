"""Translate control intents into device API calls."""

import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

from avcontrols.config_store import VOLUME_CONTROL_MODELS, parse_int
from avcontrols.device_api import DeviceApiClient
from avcontrols.errors import DeviceError, UnknownActionError

logger = logging.getLogger(__name__)

IR_HANDLER_SCRIPT = "./fluxhandlerV2.sh"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a device command. Truthy only when the device answered OK."""

    ok: bool
    error: str = None

    def __bool__(self):
        return self.ok


@dataclass(frozen=True)
class ReceiverStatus:
    name: str
    ip: str
    show_power: bool
    reachable: bool
    current_channel: int = None
    current_volume: int = None
    supports_volume: bool = False


def ir_command_body(ir_code):
    """Shell pipeline the receiver runs to emit an IR code."""
    return f'echo "{ir_code}" | {IR_HANDLER_SCRIPT}'


def device_host(device_url):
    """Reduce a device URL such as http://10.0.0.9/ to its host part."""
    url = device_url.strip().rstrip("/")
    if "://" in url:
        return urlsplit(url).netloc
    return url


class CommandRelay:
    """Channel, volume, power and IR commands for receivers."""

    OK = "OK"
    PLAIN_TEXT = "text/plain"

    def __init__(self, client=None, volume_models=VOLUME_CONTROL_MODELS, payloads=None):
        self.client = client or DeviceApiClient()
        self.volume_models = tuple(volume_models)
        self.payloads = payloads or {}

    # =========================================================================
    # Display queries (degrade to None/False)
    # =========================================================================

    def _query_int(self, ip, endpoint, what):
        try:
            value = self.client.request_data("GET", ip, endpoint)
        except DeviceError as e:
            logger.error("Error getting current %s from %s: %s", what, ip, e)
            return None
        number = parse_int(value)
        if number is None:
            logger.error("Error getting current %s from %s: not a number: %r", what, ip, value)
        return number

    def get_current_channel(self, ip):
        return self._query_int(ip, "details/channel", "channel")

    def get_current_volume(self, ip):
        return self._query_int(ip, "details/audio/stereo/volume", "volume")

    def supports_volume_control(self, ip):
        """True if the device reports a model on the volume allow-list."""
        try:
            model = self.client.request_data("GET", ip, "details/device/model")
        except DeviceError as e:
            logger.error("Error checking volume control support on %s: %s", ip, e)
            return False
        return model in self.volume_models

    def query_receiver(self, receiver):
        """Fetch the live state of a receiver for rendering its card."""
        channel = self.get_current_channel(receiver.ip)
        if channel is None:
            return ReceiverStatus(receiver.name, receiver.ip, receiver.show_power, reachable=False)

        supports_volume = self.supports_volume_control(receiver.ip)
        volume = self.get_current_volume(receiver.ip) if supports_volume else None
        return ReceiverStatus(
            receiver.name,
            receiver.ip,
            receiver.show_power,
            reachable=True,
            current_channel=channel,
            current_volume=volume,
            supports_volume=supports_volume,
        )

    def probe_any(self, receivers):
        """Return True as soon as one receiver answers a channel query."""
        for receiver in receivers:
            if self.get_current_channel(receiver.ip) is not None:
                return True
        return False

    # =========================================================================
    # Commands
    # =========================================================================

    def _command(self, ip, endpoint, body):
        try:
            data = self.client.request_data("POST", ip, endpoint, body, self.PLAIN_TEXT)
        except DeviceError as e:
            logger.error("Command %s on %s failed: %s", endpoint, ip, e)
            return CommandResult(False, str(e))
        if data != self.OK:
            logger.error("Command %s on %s got unexpected response: %r", endpoint, ip, data)
            return CommandResult(False, "Unexpected response.")
        return CommandResult(True)

    def set_channel(self, ip, channel):
        return self._command(ip, "command/channel", str(channel))

    def set_volume(self, ip, volume):
        return self._command(ip, "command/audio/stereo/volume", str(volume))

    def send_power(self, ip, command_name):
        """Run a power script (e.g. cec_tv_on.sh) through the device CLI.

        Callers must check the receiver's show_power flag first.
        """
        return self._command(ip, "command/cli", command_name)

    def send_ir_action(self, device_url, action):
        """Emit the IR code configured for `action` through the device CLI."""
        if not isinstance(action, str) or action not in self.payloads:
            raise UnknownActionError(action)
        return self._command(device_host(device_url), "command/cli", ir_command_body(self.payloads[action]))
