"""Colour normalisation for controller payloads.

Commands and schedules carry colours as RGB or RGBW tuples. Callers may pass
packed integers (``0xRRGGBB``), hex strings (``"#00FFFF"``, ``"00ffffff"``)
or 3/4 element sequences; everything is normalised to ``tuple[int, ...]``.
"""

from __future__ import annotations

from typing import Any, Iterable

from neighborsync.domain.exceptions import InvalidCommandError

Color = tuple[int, ...]

BLACK: Color = (0, 0, 0)


def parse_color(value: Any) -> Color:
    """Normalise a single colour to an RGB or RGBW tuple."""
    if isinstance(value, bool):
        raise InvalidCommandError(f"Invalid colour: {value!r}")

    if isinstance(value, int):
        if not 0 <= value <= 0xFFFFFF:
            raise InvalidCommandError(f"Packed colour out of range: {value:#x}")
        return ((value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF)

    if isinstance(value, str):
        raw = value.strip().lstrip("#")
        if len(raw) not in (6, 8):
            raise InvalidCommandError(f"Hex colour must be RRGGBB or RRGGBBWW: {value!r}")
        try:
            return tuple(int(raw[i : i + 2], 16) for i in range(0, len(raw), 2))
        except ValueError:
            raise InvalidCommandError(f"Invalid hex colour: {value!r}") from None

    if isinstance(value, (list, tuple)):
        if len(value) not in (3, 4):
            raise InvalidCommandError(f"Colour must have 3 (RGB) or 4 (RGBW) channels: {value!r}")
        channels = []
        for channel in value:
            if isinstance(channel, bool) or not isinstance(channel, int) or not 0 <= channel <= 255:
                raise InvalidCommandError(f"Colour channel out of range 0-255: {value!r}")
            channels.append(channel)
        return tuple(channels)

    raise InvalidCommandError(f"Unsupported colour value: {value!r}")


def parse_colors(values: Iterable[Any] | None) -> tuple[Color, ...]:
    return tuple(parse_color(v) for v in (values or ()))


def to_hex(color: Color) -> str:
    return "#" + "".join(f"{c:02X}" for c in color)
