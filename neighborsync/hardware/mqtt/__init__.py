from neighborsync.hardware.mqtt.client_factory import create_mqtt_client
from neighborsync.hardware.mqtt.mqtt_broker_wrapper import MQTTClientWrapper
from neighborsync.hardware.mqtt.mqtt_notifier import MQTTNotifier

__all__ = ["MQTTClientWrapper", "MQTTNotifier", "create_mqtt_client"]
