"""IR payload table and remote device list loaders."""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteDevice:
    name: str
    url: str


def load_payloads(path):
    """Load an action -> IR code table from `action=code` lines.

    Blank lines and lines without '=' are skipped. Only the first '=' splits
    the record; later duplicates overwrite earlier ones. A missing file
    yields an empty table.
    """
    payloads = {}
    if not os.path.exists(path):
        return payloads

    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            if "=" not in line:
                logger.debug("Skipping payload line without '=': %r", line)
                continue
            action, ir_code = line.split("=", 1)
            payloads[action.strip()] = ir_code.strip()
    return payloads


def load_remote_devices(path):
    """Load the remote-control device picker from `name, url` lines."""
    devices = []
    if not os.path.exists(path):
        return devices

    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            name, _, url = line.partition(",")
            devices.append(RemoteDevice(name=name.strip(), url=url.strip()))
    return devices
