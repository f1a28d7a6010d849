"""
Wrapper around the paho MQTT client used as the shared-store transport.

Several components subscribe through one connection, so incoming messages
are fanned out to every callback whose subscription matches the topic
(MQTT wildcard semantics). Subscriptions are remembered and re-issued after
every (re)connect; the broker then redelivers retained messages, which is
how subscribers catch up after a network drop.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import paho.mqtt.client as mqtt

from neighborsync.enums.events import SyncEvent
from neighborsync.hardware.mqtt.client_factory import create_mqtt_client
from neighborsync.schemas.events import BrokerConnectivityPayload
from neighborsync.utils.event_bus import EventBus
from neighborsync.utils.time import iso_now, utc_now

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Any, Any, Any], None]


@dataclass
class HealthStatus:
    """Tracks the health of the broker connection."""

    is_connected: bool = False
    last_error: str | None = None
    last_error_time: datetime | None = None
    connection_attempts: int = 0
    successful_publishes: int = 0
    failed_publishes: int = 0
    active_subscriptions: int = 0

    @property
    def success_rate(self) -> float:
        total_publishes = self.successful_publishes + self.failed_publishes
        if total_publishes == 0:
            return 0.0
        return (self.successful_publishes / total_publishes) * 100

    def mark_connected(self):
        self.is_connected = True
        self.last_error = None
        self.last_error_time = None

    def mark_disconnected(self):
        self.is_connected = False

    def record_error(self, error: Exception | str):
        self.last_error = str(error)
        self.last_error_time = utc_now()

    def to_dict(self):
        return {
            "is_connected": self.is_connected,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "connection_attempts": self.connection_attempts,
            "successful_publishes": self.successful_publishes,
            "failed_publishes": self.failed_publishes,
            "active_subscriptions": self.active_subscriptions,
            "publish_success_rate": round(self.success_rate, 2),
        }


class MQTTClientWrapper:
    """
    Wrapper class for handling MQTT client functionality.
    """

    def __init__(self, broker, port, client_id="", *, event_bus=None, keepalive: int = 60):
        """
        Initializes the wrapper and connects to the broker.

        Args:
            broker (str): The MQTT broker address.
            port (int): The MQTT broker port.
            client_id (str, optional): The MQTT client ID. Defaults to "".
            event_bus: Local event bus for connectivity events (defaults to the singleton).
            keepalive (int): Keepalive interval in seconds.
        """
        self.broker = broker
        self.port = port
        self.client_id = client_id
        self.keepalive = keepalive
        self.client = create_mqtt_client(client_id=client_id)
        self.connected = False
        self._callback_lock = threading.Lock()
        self._callbacks: list[tuple[str, MessageCallback, int]] = []
        # Always dispatch through the fan-out handler so multiple subscribers coexist
        self.client.on_message = self._dispatch_message
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self.health_status = HealthStatus()
        self._connect()

    @property
    def endpoint(self) -> str:
        return f"{self.broker}:{self.port}"

    def _connect(self):
        self.health_status.connection_attempts += 1
        try:
            self.client.connect(self.broker, self.port, self.keepalive)
            self.client.loop_start()  # network loop in paho's own thread
            self._mark_connected()
            logger.info("Connected to MQTT broker %s", self.endpoint)
        except (OSError, ValueError) as e:
            logger.error("Error connecting to MQTT broker %s: %s", self.endpoint, e)
            self.connected = False
            self.health_status.record_error(e)
            self._publish_connectivity("error", reason=str(e))

    def _mark_connected(self):
        if self.connected:
            return
        self.connected = True
        self.health_status.mark_connected()
        self._publish_connectivity("connected")

    def _on_connect(self, client, userdata, flags, rc):
        if rc != 0:
            logger.error("MQTT broker %s refused connection (rc=%s)", self.endpoint, rc)
            self.health_status.record_error(f"connect rc={rc}")
            return
        self._mark_connected()
        self._resubscribe()

    def _on_disconnect(self, client, userdata, rc):
        was_connected = self.connected
        self.connected = False
        self.health_status.mark_disconnected()
        if rc != 0:
            logger.warning("Unexpected disconnect from MQTT broker %s (rc=%s); paho will reconnect", self.endpoint, rc)
        if was_connected:
            self._publish_connectivity("disconnected", reason=None if rc == 0 else f"rc={rc}")

    def _publish_connectivity(self, status: str, reason: str | None = None) -> None:
        try:
            payload = BrokerConnectivityPayload(
                status=status,
                endpoint=self.endpoint,
                reason=reason,
                timestamp=iso_now(),
            )
            self.event_bus.publish(SyncEvent.BROKER_CONNECTIVITY_CHANGED, payload)
        except Exception as e:
            logger.error("Failed to publish connectivity event: %s", e)

    def _resubscribe(self) -> None:
        with self._callback_lock:
            topics = {}
            for topic, _callback, qos in self._callbacks:
                topics[topic] = max(qos, topics.get(topic, 0))
        for topic, qos in topics.items():
            self.client.subscribe(topic, qos)
        if topics:
            logger.info("Re-subscribed %d topic(s) on %s", len(topics), self.endpoint)

    def disconnect(self):
        """Disconnects from the MQTT broker and drops every callback."""
        if not self.connected:
            return
        try:
            self.client.disconnect()
            self.client.loop_stop()
        except OSError as e:
            logger.error("Error disconnecting from MQTT broker: %s", e)
            self.health_status.record_error(e)
        self.connected = False
        self.health_status.mark_disconnected()
        with self._callback_lock:
            self._callbacks.clear()
        self.health_status.active_subscriptions = 0
        logger.info("Disconnected from MQTT broker %s", self.endpoint)
        self._publish_connectivity("disconnected")

    def publish(self, topic: str, payload, qos: int = 0, retain: bool = False) -> bool:
        """
        Publishes a message to the MQTT broker.

        Args:
            topic (str): The MQTT topic to publish to.
            payload (str | bytes): The message payload.
            qos (int): Delivery QoS.
            retain (bool): Keep as the topic's retained message.

        Returns:
            True when paho accepted the message for delivery.
        """
        if not self.connected:
            logger.warning("MQTT client not connected. Cannot publish to %s.", topic)
            self.health_status.failed_publishes += 1
            return False
        msg_info = self.client.publish(topic, payload, qos=qos, retain=retain)
        if msg_info.rc == mqtt.MQTT_ERR_SUCCESS:
            self.health_status.successful_publishes += 1
            logger.debug("Published to %s (qos=%s retain=%s)", topic, qos, retain)
            return True
        self.health_status.failed_publishes += 1
        logger.error("Failed to publish to %s. MQTT result code: %s", topic, msg_info.rc)
        return False

    def subscribe(self, topic: str, callback: MessageCallback, qos: int = 0) -> bool:
        """
        Registers ``callback`` for ``topic`` and subscribes on the broker.

        The callback is kept even while disconnected and the subscription is
        issued on the next connect.
        """
        with self._callback_lock:
            self._callbacks.append((topic, callback, qos))
            self.health_status.active_subscriptions = len({t for t, _, _ in self._callbacks})
        if not self.connected:
            logger.warning("MQTT client not connected; %s will be subscribed on connect.", topic)
            return False
        result, _mid = self.client.subscribe(topic, qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            logger.error("Failed to subscribe to topic %s: result code %s", topic, result)
            return False
        logger.info("Subscribed to topic %s with callback %s", topic, getattr(callback, "__name__", callback))
        return True

    def unsubscribe(self, topic: str, callback: MessageCallback) -> None:
        """Removes one callback; the broker subscription goes when none is left."""
        with self._callback_lock:
            self._callbacks = [
                entry for entry in self._callbacks if not (entry[0] == topic and entry[1] == callback)
            ]
            still_used = any(t == topic for t, _, _ in self._callbacks)
            self.health_status.active_subscriptions = len({t for t, _, _ in self._callbacks})
        if not still_used and self.connected:
            self.client.unsubscribe(topic)

    def _dispatch_message(self, client, userdata, msg) -> None:
        """
        Fan out MQTT messages to all registered callbacks that match the topic
        using MQTT wildcard semantics.
        """
        with self._callback_lock:
            callbacks = list(self._callbacks)

        handled = False
        for sub, callback, _qos in callbacks:
            if not mqtt.topic_matches_sub(sub, msg.topic):
                continue
            handled = True
            try:
                callback(client, userdata, msg)
            except Exception as e:
                logger.error("Error in MQTT callback for topic %s: %s", sub, e, exc_info=True)

        if not handled:
            logger.debug("MQTT message on %s had no registered handlers", msg.topic)
