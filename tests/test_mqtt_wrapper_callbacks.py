from types import SimpleNamespace
from unittest.mock import patch

from conftest import FakeEventBus

from neighborsync.hardware.mqtt.mqtt_broker_wrapper import MQTTClientWrapper
from neighborsync.hardware.mqtt.mqtt_notifier import MQTTNotifier


class DummyMessage:
    def __init__(self, topic: str, payload: bytes):
        self.topic = topic
        self.payload = payload


class DummyClient:
    def __init__(self, fail_connect: bool = False):
        self.on_message = None
        self.on_connect = None
        self.on_disconnect = None
        self.fail_connect = fail_connect
        self.subscriptions = []
        self.unsubscribed = []
        self.published = []

    def connect(self, *_args, **_kwargs):
        if self.fail_connect:
            raise OSError("connection refused")
        return 0

    def loop_start(self):
        return None

    def disconnect(self):
        return None

    def loop_stop(self):
        return None

    def subscribe(self, topic, qos=0):
        self.subscriptions.append((topic, qos))
        return (0, len(self.subscriptions))

    def unsubscribe(self, topic):
        self.unsubscribed.append(topic)
        return (0, 1)

    def publish(self, topic, payload, qos=0, retain=False):
        self.published.append((topic, payload, qos, retain))
        return SimpleNamespace(rc=0, topic=topic, payload=payload)


def build_wrapper(dummy_client: DummyClient, event_bus=None) -> MQTTClientWrapper:
    with patch(
        "neighborsync.hardware.mqtt.mqtt_broker_wrapper.create_mqtt_client",
        return_value=dummy_client,
    ):
        wrapper = MQTTClientWrapper(broker="test", port=1883, event_bus=event_bus or FakeEventBus())
    return wrapper


def test_wrapper_fans_out_callbacks_without_overwrite():
    dummy_client = DummyClient()
    wrapper = build_wrapper(dummy_client)
    events = []

    def record_cb(_client, _userdata, msg):
        events.append(("record", msg.topic, msg.payload))

    def members_cb(_client, _userdata, msg):
        events.append(("members", msg.topic))

    wrapper.subscribe("neighborsync/groups/+/record", record_cb)
    wrapper.subscribe("neighborsync/groups/g1/members/+", members_cb)

    wrapper._dispatch_message(wrapper.client, None, DummyMessage("neighborsync/groups/g1/record", b'{"v":1}'))
    wrapper._dispatch_message(wrapper.client, None, DummyMessage("neighborsync/groups/g1/members/m2", b"{}"))

    assert ("record", "neighborsync/groups/g1/record", b'{"v":1}') in events
    assert ("members", "neighborsync/groups/g1/members/m2") in events
    assert wrapper.client.on_message == wrapper._dispatch_message


def test_failing_callback_does_not_block_other_subscribers():
    wrapper = build_wrapper(DummyClient())
    hits = []

    def broken(_client, _userdata, _msg):
        raise ValueError("bad payload")

    wrapper.subscribe("neighborsync/#", broken)
    wrapper.subscribe("neighborsync/#", lambda _c, _u, msg: hits.append(msg.topic))

    wrapper._dispatch_message(wrapper.client, None, DummyMessage("neighborsync/groups/g1/record", b""))

    assert hits == ["neighborsync/groups/g1/record"]


def test_reconnect_resubscribes_remembered_topics():
    dummy_client = DummyClient()
    wrapper = build_wrapper(dummy_client)
    wrapper.subscribe("neighborsync/groups/g1/record", lambda *_: None, qos=1)

    wrapper._on_disconnect(dummy_client, None, 1)
    assert wrapper.connected is False
    dummy_client.subscriptions.clear()

    wrapper._on_connect(dummy_client, None, {}, 0)

    assert wrapper.connected is True
    assert dummy_client.subscriptions == [("neighborsync/groups/g1/record", 1)]


def test_connectivity_changes_are_published():
    bus = FakeEventBus()
    dummy_client = DummyClient()
    wrapper = build_wrapper(dummy_client, event_bus=bus)

    wrapper._on_disconnect(dummy_client, None, 7)
    wrapper._on_connect(dummy_client, None, {}, 0)

    statuses = [payload["status"] for name, payload in bus.events if name == "broker_connectivity_changed"]
    assert statuses == ["connected", "disconnected", "connected"]


def test_connect_failure_is_reported_not_raised():
    bus = FakeEventBus()
    wrapper = build_wrapper(DummyClient(fail_connect=True), event_bus=bus)

    assert wrapper.connected is False
    assert wrapper.health_status.last_error == "connection refused"
    assert bus.events[-1][1]["status"] == "error"
    assert wrapper.publish("neighborsync/x", "{}") is False


def test_unsubscribe_drops_broker_subscription_when_unused():
    dummy_client = DummyClient()
    wrapper = build_wrapper(dummy_client)

    def callback(*_):
        return None

    wrapper.subscribe("neighborsync/groups/g1/schedules", callback)
    wrapper.unsubscribe("neighborsync/groups/g1/schedules", callback)

    assert dummy_client.unsubscribed == ["neighborsync/groups/g1/schedules"]
    assert wrapper.health_status.active_subscriptions == 0


def test_notifier_publishes_group_notification():
    dummy_client = DummyClient()
    wrapper = build_wrapper(dummy_client)
    notifier = MQTTNotifier(wrapper, topic_prefix="neighborsync")

    assert notifier.notify("g1", "Lights on in 5!") is True

    topic, payload, qos, _retain = dummy_client.published[-1]
    assert topic == "neighborsync/groups/g1/notifications"
    assert "Lights on in 5!" in payload
    assert qos == 1
