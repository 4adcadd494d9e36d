"""
GeoPackage binary geometry codec.

Blob layout (GeoPackage 1.2, clause 2.1.3):
- 2 bytes magic "GP", 1 byte version, 1 byte flags
- 4 byte srs_id (byte order from flags bit 0)
- envelope: 0/4/6/6/8 doubles for indicator 0..4 (minx, maxx, miny, maxy, [z], [m])
- standard WKB payload

WKB itself is parsed and written by shapely.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass

import shapely.wkb
from shapely.errors import ShapelyError
from shapely.geometry.base import BaseGeometry

from gpkg.errors import InvalidGeometryError


_MAGIC = b"GP"
_ENVELOPE_DOUBLES = {0: 0, 1: 4, 2: 6, 3: 6, 4: 8}
_EMPTY_FLAG = 0x10


@dataclass(frozen=True)
class GeometryData:
    srs_id: int
    envelope: tuple[float, ...] | None
    geometry: BaseGeometry | None

    @property
    def is_empty(self) -> bool:
        return self.geometry is None or self.geometry.is_empty


def decode_geometry(blob: bytes | memoryview | None) -> GeometryData | None:
    if blob is None:
        return None
    data = bytes(blob)
    if len(data) < 8 or data[:2] != _MAGIC:
        # Some writers store bare WKB; accept it with an unknown SRS.
        return GeometryData(srs_id=0, envelope=None, geometry=_load_wkb(data))

    flags = data[3]
    order = "<" if flags & 0x01 else ">"
    indicator = (flags >> 1) & 0x07
    if indicator not in _ENVELOPE_DOUBLES:
        raise InvalidGeometryError(f"Invalid GeoPackage envelope indicator: {indicator}")

    (srs_id,) = struct.unpack(f"{order}i", data[4:8])
    n = _ENVELOPE_DOUBLES[indicator]
    offset = 8 + n * 8
    if len(data) < offset:
        raise InvalidGeometryError("Truncated GeoPackage geometry header")
    envelope = struct.unpack(f"{order}{n}d", data[8:offset]) if n else None

    payload = data[offset:]
    if flags & _EMPTY_FLAG and not payload:
        return GeometryData(srs_id=srs_id, envelope=envelope, geometry=None)
    return GeometryData(srs_id=srs_id, envelope=envelope, geometry=_load_wkb(payload))


def encode_geometry(geom: BaseGeometry | None, srs_id: int) -> bytes:
    """
    Little-endian GeoPackage blob with an XY envelope (none for empty geometries).
    """
    if geom is None or geom.is_empty:
        header = struct.pack("<2sBBi", _MAGIC, 0, _EMPTY_FLAG | 0x01, int(srs_id))
        if geom is None:
            return header
        return header + shapely.wkb.dumps(geom, byte_order=1)

    minx, miny, maxx, maxy = geom.bounds
    header = struct.pack("<2sBBi", _MAGIC, 0, (1 << 1) | 0x01, int(srs_id))
    envelope = struct.pack("<4d", minx, maxx, miny, maxy)
    return header + envelope + shapely.wkb.dumps(geom, byte_order=1)


def _load_wkb(payload: bytes) -> BaseGeometry:
    try:
        return shapely.wkb.loads(payload)
    except (ShapelyError, ValueError, TypeError) as e:
        raise InvalidGeometryError(f"Unable to parse WKB geometry: {e}") from e
