"""Homenet HTTP publishing adapter.

Pushes a label to a home-automation server that exposes named data objects
over a small JSON API.
"""

from __future__ import annotations

import base64
import json
import urllib.error
import urllib.request

from core.errors import PublishError


class HomenetPublisher:
    """Publisher adapter that updates a data object via an HTTP POST."""

    def __init__(self, url: str, username: str = "", password: str = "", timeout: float = 10.0) -> None:
        self._url = url
        self._username = username
        self._password = password
        self._timeout = timeout

    def _authorization(self) -> str:
        token = f"{self._username}:{self._password}".encode("utf-8")
        return "Basic " + base64.b64encode(token).decode("ascii")

    def publish(self, topic: str, label: str) -> None:
        """Update the data object named `topic` with `label` as its value."""

        payload = {"name": topic, "value": label}
        data = json.dumps(payload).encode("utf-8")
        try:
            request = urllib.request.Request(self._url, data=data, method="POST")
            request.add_header("Content-Type", "application/json")
            if self._username:
                request.add_header("Authorization", self._authorization())
            with urllib.request.urlopen(request, timeout=self._timeout):
                pass
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise PublishError(f"Homenet error {e.code}: {body}") from e
        except (urllib.error.URLError, OSError) as e:
            raise PublishError(f"Homenet unreachable: {e}") from e
        except ValueError as e:
            raise PublishError(f"Homenet URL {self._url!r} rejected: {e}") from e
