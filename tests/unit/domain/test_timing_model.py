import pytest

from neighborsync.domain.exceptions import InvalidCommandError
from neighborsync.domain.neighborhood import SyncTimingConfig
from neighborsync.domain.participation import eligible_members
from neighborsync.domain.timing import compute_timing, traversal_order
from neighborsync.enums import SyncType

CYAN = (0, 255, 255)
WHITE = (255, 255, 255)


def test_sequential_flow_wave_along_street(street):
    plan = compute_timing(street, SyncTimingConfig(pixels_per_second=10), SyncType.SEQUENTIAL_FLOW)

    assert plan.order == ("m1", "m2", "m3")
    assert plan.delays_ms == {"m1": 0.0, "m2": 1000.0, "m3": 2000.0}


def test_sequential_flow_reversed(street):
    config = SyncTimingConfig(pixels_per_second=10, reverse_direction=True)
    plan = compute_timing(street, config, SyncType.SEQUENTIAL_FLOW)

    assert plan.order == ("m3", "m2", "m1")
    assert plan.delays_ms == {"m3": 0.0, "m2": 1000.0, "m1": 2000.0}


def test_paused_member_is_skipped_and_wave_closes_up(make_member):
    members = [make_member("m1", 1), make_member("m2", 2, paused=True), make_member("m3", 3)]
    plan = compute_timing(eligible_members(members), SyncTimingConfig(pixels_per_second=10), SyncType.SEQUENTIAL_FLOW)

    assert "m2" not in plan
    assert plan.delays_ms == {"m1": 0.0, "m3": 1000.0}


def test_gap_delay_adds_per_position(make_member):
    members = [make_member(mid, pos, 0, led_count=0) for mid, pos in (("m1", 1), ("m2", 2), ("m3", 3))]
    config = SyncTimingConfig(pixels_per_second=10, gap_delay_ms=250)

    plan = compute_timing(members, config, SyncType.SEQUENTIAL_FLOW)

    assert plan.delays_ms == {"m1": 0.0, "m2": 250.0, "m3": 500.0}


def test_unknown_roofline_falls_back_to_led_count(make_member):
    # 300 LEDs at 30 LEDs/m -> 10 m
    members = [make_member("m1", 1, None, led_count=300), make_member("m2", 2)]
    plan = compute_timing(
        members,
        SyncTimingConfig(pixels_per_second=10),
        SyncType.SEQUENTIAL_FLOW,
        leds_per_meter=30,
    )

    assert plan.delay_for("m2") == pytest.approx(1000.0)


def test_position_ties_keep_insertion_order(make_member):
    members = [make_member("b", 1), make_member("a", 1), make_member("c", 0)]

    ordered = traversal_order(members, SyncTimingConfig())

    assert [m.member_id for m in ordered] == ["c", "b", "a"]


@pytest.mark.parametrize("sync_type", [SyncType.SIMULTANEOUS, SyncType.PATTERN_MATCH, SyncType.COLOR_HARMONY])
def test_non_sequential_variants_fire_together(street, sync_type):
    plan = compute_timing(street, SyncTimingConfig(pixels_per_second=10, gap_delay_ms=100), sync_type, (WHITE,))

    assert set(plan.delays_ms.values()) == {0.0}
    assert len(plan) == 3


def test_color_harmony_cycles_colours_by_position(street):
    plan = compute_timing(street, SyncTimingConfig(), SyncType.COLOR_HARMONY, (CYAN, WHITE))

    assert plan.colors_for("m1") == (CYAN,)
    assert plan.colors_for("m2") == (WHITE,)
    assert plan.colors_for("m3") == (CYAN,)


def test_other_variants_show_full_colour_list(street):
    plan = compute_timing(street, SyncTimingConfig(), SyncType.SIMULTANEOUS, (CYAN, WHITE))

    assert all(plan.colors_for(m.member_id) == (CYAN, WHITE) for m in street)


def test_member_colour_override_wins(street):
    red = (255, 0, 0)
    plan = compute_timing(
        street,
        SyncTimingConfig(),
        SyncType.COLOR_HARMONY,
        (CYAN, WHITE),
        member_color_overrides={"m2": (red,)},
    )

    assert plan.colors_for("m2") == (red,)
    assert plan.colors_for("m3") == (CYAN,)


def test_empty_member_list_gives_empty_plan():
    plan = compute_timing([], SyncTimingConfig(), SyncType.SEQUENTIAL_FLOW)

    assert len(plan) == 0
    assert plan.delay_for("nobody") is None


@pytest.mark.parametrize("kwargs", [{"pixels_per_second": 0}, {"pixels_per_second": -5}, {"gap_delay_ms": -1}])
def test_invalid_timing_config_rejected(kwargs):
    with pytest.raises(InvalidCommandError):
        SyncTimingConfig(**kwargs)
