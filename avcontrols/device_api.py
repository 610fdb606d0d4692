"""HTTP client for the receivers' /cgi-bin/api control interface."""

import http.client
import json
import socket
import urllib.error
import urllib.request

from avcontrols.errors import DecodeError, HttpError, TransportError


class DeviceApiClient:
    """Issue single requests against a device API and decode its envelope."""

    DEFAULT_TIMEOUT = 5  # seconds
    API_ROOT = "cgi-bin/api"
    DEFAULT_CONTENT_TYPE = "application/x-www-form-urlencoded"

    def __init__(self, timeout=None, urlopen=None):
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._urlopen = urlopen or urllib.request.urlopen

    @classmethod
    def build_url(cls, device_ip, endpoint):
        """Build the full API URL for an endpoint on a device."""
        return f"http://{device_ip}/{cls.API_ROOT}/{endpoint}"

    def call(self, method, device_ip, endpoint, body=None, content_type=DEFAULT_CONTENT_TYPE):
        """Perform one request and return the raw response text.

        Raises TransportError on timeouts and connection failures, HttpError
        when the device answers with a status of 400 or above.
        """
        url = self.build_url(device_ip, endpoint)
        data = None
        headers = {}
        if body is not None:
            if content_type == "application/json" and not isinstance(body, str):
                body = json.dumps(body)
            data = str(body).encode("utf-8")
            headers["Content-Type"] = content_type

        req = urllib.request.Request(url, data=data, headers=headers, method=method)
        try:
            with self._urlopen(req, timeout=self.timeout) as response:
                status = getattr(response, "status", 200)
                raw = response.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            raw = e.read().decode("utf-8", errors="replace") if e.fp else ""
            raise HttpError(e.code, raw)
        except urllib.error.URLError as e:
            raise TransportError(f"Connection to {url} failed: {e.reason}")
        except socket.timeout:
            raise TransportError(f"Connection to {url} timed out")
        except OSError as e:
            raise TransportError(f"Communication error with {url}: {e}")
        except http.client.HTTPException as e:
            raise TransportError(f"Malformed HTTP response from {url}: {e!r}")

        if status >= 400:
            raise HttpError(status, raw)
        return raw

    @staticmethod
    def decode(raw):
        """Return the string carried in a {"data": <string>} envelope."""
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            raise DecodeError(f"Malformed response: {raw!r}")

        if not isinstance(payload, dict) or "data" not in payload:
            raise DecodeError(f"Response has no data field: {raw!r}")
        value = payload["data"]
        if not isinstance(value, str):
            raise DecodeError(f"Response data is not a string: {value!r}")
        return value

    def request_data(self, method, device_ip, endpoint, body=None, content_type=DEFAULT_CONTENT_TYPE):
        """Call an endpoint and return the decoded envelope value."""
        return self.decode(self.call(method, device_ip, endpoint, body, content_type))
