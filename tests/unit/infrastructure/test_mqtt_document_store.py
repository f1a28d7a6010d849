import json
from types import SimpleNamespace

import paho.mqtt.client as mqtt
import pytest

from neighborsync.domain.commands import GroupRecord, SyncCommand
from neighborsync.domain.exceptions import ValidationError
from neighborsync.domain.schedules import SyncSchedule
from neighborsync.enums import SyncType
from neighborsync.infrastructure import MQTTDocumentStore

GROUP = "maple-street"


class LoopbackBroker:
    """Retains the last payload per topic and echoes publishes to subscribers."""

    def __init__(self):
        self.retained = {}
        self.subscriptions = []
        self.published = []
        self.accept = True

    def subscribe(self, topic, callback, qos=0):
        self.subscriptions.append((topic, callback, qos))
        for retained_topic, payload in list(self.retained.items()):
            if mqtt.topic_matches_sub(topic, retained_topic):
                callback(None, None, SimpleNamespace(topic=retained_topic, payload=payload))
        return True

    def publish(self, topic, payload, qos=0, retain=False):
        if not self.accept:
            return False
        self.published.append((topic, payload, qos, retain))
        data = payload.encode("utf-8") if isinstance(payload, str) else payload
        if retain:
            self.retained[topic] = data
        for sub, callback, _qos in list(self.subscriptions):
            if mqtt.topic_matches_sub(sub, topic):
                callback(None, None, SimpleNamespace(topic=topic, payload=data))
        return True


def _record(version: int, active: bool = True) -> GroupRecord:
    if not active:
        return GroupRecord.stopped(GROUP, version)
    return GroupRecord.started(
        SyncCommand(
            group_id=GROUP,
            origin_timestamp=version,
            sync_type=SyncType.SEQUENTIAL_FLOW,
            effect_id=9,
            colors=((0, 255, 255),),
        )
    )


@pytest.fixture()
def broker():
    return LoopbackBroker()


@pytest.fixture()
def mqtt_store(broker):
    return MQTTDocumentStore(broker, topic_prefix="neighborsync")


def test_group_record_is_retained_qos1(mqtt_store, broker):
    mqtt_store.write_group_record(_record(100))

    topic, payload, qos, retain = broker.published[-1]
    assert topic == "neighborsync/groups/maple-street/record"
    assert (qos, retain) == (1, True)
    assert json.loads(payload)["version"] == 100
    assert mqtt_store.read_group_record(GROUP).version == 100


def test_new_client_catches_up_from_retained_messages(mqtt_store, broker, make_member):
    mqtt_store.write_group_record(_record(100))
    mqtt_store.write_member_record(make_member("m1", 1))
    mqtt_store.write_schedule_list(GROUP, [SyncSchedule(schedule_id="xmas", group_id=GROUP)])

    late_joiner = MQTTDocumentStore(broker, topic_prefix="neighborsync")
    received = []
    late_joiner.subscribe_group_record(GROUP, received.append)

    assert [r.version for r in received] == [100]
    assert [m.member_id for m in late_joiner.read_member_records(GROUP)] == ["m1"]
    assert [s.schedule_id for s in late_joiner.read_schedule_list(GROUP)] == ["xmas"]


def test_cache_keeps_newest_record_but_listeners_see_replays(mqtt_store, broker):
    received = []
    mqtt_store.subscribe_group_record(GROUP, received.append)
    mqtt_store.write_group_record(_record(200))

    # an old retained copy replayed by the broker
    stale = json.dumps(_record(150).to_dict()).encode()
    mqtt_store._on_record_message(None, None, SimpleNamespace(topic=mqtt_store.record_topic(GROUP), payload=stale))

    assert mqtt_store.read_group_record(GROUP).version == 200
    assert [r.version for r in received] == [200, 150]


def test_member_delete_clears_retained_document(mqtt_store, broker, make_member):
    mqtt_store.write_member_record(make_member("m1", 1))
    mqtt_store.write_member_record(make_member("m2", 2))
    snapshots = []
    mqtt_store.subscribe_member_records(GROUP, snapshots.append)

    mqtt_store.delete_member_record(GROUP, "m1")

    assert broker.retained["neighborsync/groups/maple-street/members/m1"] == b""
    assert [m.member_id for m in snapshots[-1]] == ["m2"]


def test_malformed_payload_is_ignored(mqtt_store):
    received = []
    mqtt_store.subscribe_group_record(GROUP, received.append)

    mqtt_store._on_record_message(
        None, None, SimpleNamespace(topic=mqtt_store.record_topic(GROUP), payload=b"{not json")
    )

    assert received == []
    assert mqtt_store.read_group_record(GROUP) is None


def test_listener_errors_do_not_break_delivery(mqtt_store):
    received = []

    def broken(_record):
        raise RuntimeError("listener bug")

    mqtt_store.subscribe_group_record(GROUP, broken)
    mqtt_store.subscribe_group_record(GROUP, received.append)
    mqtt_store.write_group_record(_record(100, active=False))

    assert [r.is_active for r in received] == [False]


def test_group_tracked_once(mqtt_store, broker):
    mqtt_store.read_group_record(GROUP)
    mqtt_store.read_member_records(GROUP)

    topics = [topic for topic, _cb, _qos in broker.subscriptions]
    assert topics == [
        "neighborsync/groups/maple-street/record",
        "neighborsync/groups/maple-street/members/+",
        "neighborsync/groups/maple-street/schedules",
    ]


@pytest.mark.parametrize("bad_id", ["", "a/b", "all+", "#"])
def test_ids_unsafe_for_topics_rejected(mqtt_store, bad_id):
    with pytest.raises(ValidationError):
        mqtt_store.read_group_record(bad_id)


def test_rejected_publish_is_logged_not_raised(mqtt_store, broker):
    broker.accept = False

    mqtt_store.write_group_record(_record(100))

    # local cache still advances; other members will not see it
    assert mqtt_store.read_group_record(GROUP).version == 100
