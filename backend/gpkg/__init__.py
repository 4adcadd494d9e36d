from .connection import GeoPackage, create_geopackage, open_geopackage
from .errors import (
    GeoPackageError,
    InvalidGeometryError,
    SpatialIndexMissingError,
    TableNotFoundError,
    ZoomOutOfRangeError,
)

__all__ = [
    "GeoPackage",
    "GeoPackageError",
    "InvalidGeometryError",
    "SpatialIndexMissingError",
    "TableNotFoundError",
    "ZoomOutOfRangeError",
    "create_geopackage",
    "open_geopackage",
]
