from __future__ import annotations


class GeoPackageError(Exception):
    pass


class TableNotFoundError(GeoPackageError, LookupError):
    def __init__(self, table: str, kind: str = "table"):
        super().__init__(f"No {kind} exists with the name {table!r}")
        self.table = table


class SpatialIndexMissingError(GeoPackageError):
    """
    Raised when a bounding-box query runs against a table that was never indexed.

    Callers must run `gpkg.index.index_feature_table` first; there is no
    full-table-scan fallback.
    """

    def __init__(self, table: str):
        super().__init__(f"Feature table {table!r} has no spatial index")
        self.table = table


class ZoomOutOfRangeError(GeoPackageError, ValueError):
    def __init__(self, table: str, zoom: int, min_zoom: int | None, max_zoom: int | None):
        super().__init__(
            f"Zoom {zoom} is outside [{min_zoom}, {max_zoom}] for tile table {table!r}"
        )
        self.table = table
        self.zoom = zoom


class InvalidGeometryError(GeoPackageError, ValueError):
    pass
