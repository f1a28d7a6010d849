from neighborsync.domain.commands import GroupRecord
from neighborsync.infrastructure import DocumentScheduleRepository
from neighborsync.domain.schedules import SyncSchedule

GROUP = "maple-street"


def test_older_group_record_write_is_dropped(store):
    store.write_group_record(GroupRecord.stopped(GROUP, 200))
    store.write_group_record(GroupRecord.stopped(GROUP, 100))

    assert store.read_group_record(GROUP).version == 200


def test_subscribe_delivers_current_then_updates(store):
    store.write_group_record(GroupRecord.stopped(GROUP, 100))
    received = []

    unsubscribe = store.subscribe_group_record(GROUP, received.append)
    store.write_group_record(GroupRecord.stopped(GROUP, 200))
    unsubscribe()
    store.write_group_record(GroupRecord.stopped(GROUP, 300))

    assert [r.version for r in received] == [100, 200]


def test_member_snapshots(store, make_member):
    snapshots = []
    store.subscribe_member_records(GROUP, snapshots.append)

    store.write_member_record(make_member("m1", 1))
    store.write_member_record(make_member("m2", 2))
    store.delete_member_record(GROUP, "m1")
    store.delete_member_record(GROUP, "m1")

    assert [[m.member_id for m in snap] for snap in snapshots] == [[], ["m1"], ["m1", "m2"], ["m2"]]


def test_failing_listener_isolated(store):
    received = []

    def broken(_value):
        raise RuntimeError("listener bug")

    store.subscribe_schedule_list(GROUP, broken)
    store.subscribe_schedule_list(GROUP, received.append)
    store.write_schedule_list(GROUP, [SyncSchedule(schedule_id="xmas", group_id=GROUP)])

    assert [[s.schedule_id for s in snap] for snap in received] == [[], ["xmas"]]


def test_offline_store_accepts_writes_without_pushing(store):
    received = []
    store.subscribe_group_record(GROUP, received.append)

    store.set_online(False)
    store.write_group_record(GroupRecord.stopped(GROUP, 100))

    assert received == []
    assert store.read_group_record(GROUP).version == 100


def test_schedule_repository_over_store(store):
    repo = DocumentScheduleRepository(store)
    repo.replace_for_group(GROUP, [SyncSchedule(schedule_id="a", group_id=GROUP)])

    assert repo.get(GROUP, "a").schedule_id == "a"
    assert repo.get(GROUP, "b") is None
    assert [s.schedule_id for s in repo.list_for_group(GROUP)] == ["a"]
