"""MQTT publishing adapter.

Connects to the broker for each publish, sends a (by default retained)
message and disconnects again.
"""

from __future__ import annotations

import logging
from typing import Optional

import paho.mqtt.client as mqtt

from core.errors import PublishError

LOGGER = logging.getLogger(__name__)


class MqttPublisher:
    """Publisher adapter backed by paho-mqtt."""

    def __init__(
        self,
        host: str,
        port: int = 1883,
        username: str = "",
        password: str = "",
        tls: bool = False,
        qos: int = 1,
        retain: bool = True,
        timeout: float = 10.0,
        client_id: Optional[str] = None,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._tls = tls
        self._qos = qos
        self._retain = retain
        self._timeout = timeout
        self._client_id = client_id

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self._client_id or "",
        )
        if self._username:
            client.username_pw_set(self._username, self._password or None)
        if self._tls:
            client.tls_set()
        return client

    def publish(self, topic: str, label: str) -> None:
        """Publish `label` to `topic` and wait until the broker has it."""

        client = self._build_client()
        LOGGER.debug("Connecting to MQTT broker %s:%s", self._host, self._port)
        try:
            client.connect(self._host, self._port)
        except (OSError, ValueError) as e:
            raise PublishError(f"MQTT broker {self._host}:{self._port} unreachable: {e}") from e

        client.loop_start()
        try:
            try:
                info = client.publish(topic, label, qos=self._qos, retain=self._retain)
            except ValueError as e:
                raise PublishError(f"MQTT publish to {topic!r} rejected: {e}") from e
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                raise PublishError(f"MQTT publish to {topic} failed: {mqtt.error_string(info.rc)}")
            try:
                info.wait_for_publish(timeout=self._timeout)
            except (RuntimeError, ValueError) as e:
                raise PublishError(f"MQTT publish to {topic} failed: {e}") from e
            if not info.is_published():
                raise PublishError(f"MQTT publish to {topic} timed out after {self._timeout}s")
            LOGGER.info("MQTT topic %s updated with value %s", topic, label)
        finally:
            client.disconnect()
            client.loop_stop()
