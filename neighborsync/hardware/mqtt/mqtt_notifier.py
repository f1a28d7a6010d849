# mqtt_notifier.py
import json
import logging

from neighborsync.utils.time import iso_now

logger = logging.getLogger(__name__)


class MQTTNotifier:
    """Publishes group notifications (e.g. "Sync starting!") over MQTT.

    Delivery to phones is someone else's job; this only drops a message on
    ``{prefix}/groups/{group_id}/notifications``.
    """

    def __init__(self, mqtt_client, topic_prefix: str = "neighborsync"):
        self.mqtt_client = mqtt_client
        self.topic_prefix = topic_prefix.rstrip("/")

    def topic_for(self, group_id: str) -> str:
        return f"{self.topic_prefix}/groups/{group_id}/notifications"

    def notify(self, group_id: str, message: str) -> bool:
        """Fire-and-forget; failures are logged and reported as False."""
        payload = json.dumps({"group_id": group_id, "message": message, "timestamp": iso_now()})
        try:
            published = self.mqtt_client.publish(self.topic_for(group_id), payload, qos=1)
        except Exception as exc:
            logger.warning("MQTT notification for group %s failed: %s", group_id, exc)
            return False
        if not published:
            logger.warning("MQTT notification for group %s was not published", group_id)
        return bool(published)
