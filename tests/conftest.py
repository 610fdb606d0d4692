from __future__ import annotations

import logging
from datetime import datetime, timedelta

import pytest

from avcontrols.config_store import ConfigSnapshot, GlobalSettings, Receiver, Transmitter
from avcontrols.device_api import DeviceApiClient
from avcontrols.errors import TransportError


class FakeClient(DeviceApiClient):
    """Device client whose HTTP layer is a lookup table.

    `responses` maps an endpoint, or an (ip, endpoint) pair, to the raw
    response text, an exception to raise, or a callable(ip, body).
    """

    def __init__(self, responses=None):
        super().__init__(timeout=1)
        self.responses = dict(responses or {})
        self.calls = []

    def call(self, method, device_ip, endpoint, body=None, content_type=DeviceApiClient.DEFAULT_CONTENT_TYPE):
        self.calls.append((method, device_ip, endpoint, body, content_type))
        response = self.responses.get((device_ip, endpoint), self.responses.get(endpoint))
        if response is None:
            raise TransportError(f"Connection to {device_ip} timed out")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(device_ip, body)
        return response


class StepClock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self, start=datetime(2024, 11, 3, 12, 0, 0)):
        self.now = start

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


@pytest.fixture
def make_client():
    return FakeClient


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def snapshot():
    return ConfigSnapshot(
        receivers={
            "Bar TV 1": Receiver("Bar TV 1", "10.0.0.4", show_power=True),
            "Bar TV 2": Receiver("Bar TV 2", "10.0.0.5", show_power=False),
        },
        transmitters={
            "Apple TV": Transmitter("Apple TV", 7),
            "Cable Box 1": Transmitter("Cable Box 1", 2),
        },
        settings=GlobalSettings(max_volume=20, min_volume=0, volume_step=1, api_timeout=3),
    )


@pytest.fixture(autouse=True)
def _reset_package_logger():
    yield
    logger = logging.getLogger("avcontrols")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
