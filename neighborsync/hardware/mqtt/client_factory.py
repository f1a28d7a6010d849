"""
Helpers for constructing MQTT clients that work across paho-mqtt 1.x and 2.x.

The 2.x releases require a callback API version flag; the wrapper's
handlers use the v1 signatures (``on_connect(client, userdata, flags, rc)``),
so that version is requested whenever the enum exists.
"""
from __future__ import annotations

from typing import Any, Dict

import paho.mqtt.client as mqtt


def create_mqtt_client(client_id: str = "", *, clean_session: bool = True, **kwargs: Any) -> mqtt.Client:
    """
    Build an MQTT v3.1.1 client.

    Args:
        client_id: Optional client identifier.
        clean_session: Broker-side session handling.
        kwargs: Extra keyword arguments forwarded to the client constructor.
    """
    client_kwargs: Dict[str, Any] = {
        "client_id": client_id or "",
        "clean_session": clean_session,
        "protocol": kwargs.pop("protocol", mqtt.MQTTv311),
    }
    client_kwargs.update(kwargs)

    callback_api_version = getattr(mqtt, "CallbackAPIVersion", None)
    if callback_api_version is not None:
        client_kwargs["callback_api_version"] = callback_api_version.VERSION1

    client = mqtt.Client(**client_kwargs)
    client.reconnect_delay_set(min_delay=1, max_delay=30)
    return client
