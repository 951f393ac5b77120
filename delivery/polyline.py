"""
Encoded polyline codec (the variable-length delta format used by the
directions provider).

Each coordinate is stored as a delta from the previous point, scaled by 1e5,
zig-zag signed and split into 5-bit groups offset by 63. A group >= 0x20 has
more groups following it.
"""
from __future__ import annotations

from typing import Iterable, List, Tuple

from .errors import DecodeError
from .models import GeoPoint


PRECISION = 1e5


def _read_value(encoded: str, index: int) -> Tuple[int, int]:
    shift = 0
    result = 0
    while True:
        if index >= len(encoded):
            raise DecodeError(f"polyline ended mid-value at offset {index}")
        b = ord(encoded[index]) - 63
        index += 1
        result |= (b & 0x1F) << shift
        shift += 5
        if b < 0x20:
            break
    delta = ~(result >> 1) if result & 1 else result >> 1
    return delta, index


def decode(encoded: str) -> List[GeoPoint]:
    points: List[GeoPoint] = []
    index = 0
    lat = 0
    lng = 0
    while index < len(encoded):
        dlat, index = _read_value(encoded, index)
        lat += dlat
        dlng, index = _read_value(encoded, index)
        lng += dlng
        points.append(GeoPoint(lat / PRECISION, lng / PRECISION))
    return points


def _write_value(value: int, out: List[str]) -> None:
    value = ~(value << 1) if value < 0 else value << 1
    while value >= 0x20:
        out.append(chr((0x20 | (value & 0x1F)) + 63))
        value >>= 5
    out.append(chr(value + 63))


def encode(points: Iterable[GeoPoint]) -> str:
    out: List[str] = []
    prev_lat = 0
    prev_lng = 0
    for p in points:
        lat = int(round(p.lat * PRECISION))
        lng = int(round(p.lng * PRECISION))
        _write_value(lat - prev_lat, out)
        _write_value(lng - prev_lng, out)
        prev_lat, prev_lng = lat, lng
    return "".join(out)
