from enum import Enum


class SyncType(str, Enum):
    """How a group command is timed across homes.

    - SEQUENTIAL_FLOW: trigger time grows with street position (a wave)
    - SIMULTANEOUS: every home fires at the shared origin
    - PATTERN_MATCH: every home runs the same pattern, no lead/lag
    - COLOR_HARMONY: every home fires together with its own colour slot
    """

    SEQUENTIAL_FLOW = "sequential_flow"
    SIMULTANEOUS = "simultaneous"
    PATTERN_MATCH = "pattern_match"
    COLOR_HARMONY = "color_harmony"


class RooflineDirection(str, Enum):
    """Physical wiring direction of a member's own LED run."""

    LEFT_TO_RIGHT = "left_to_right"
    RIGHT_TO_LEFT = "right_to_left"
    CENTER_OUT = "center_out"


class ParticipationStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
