from __future__ import annotations

import math
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol

import structlog
from shapely.geometry import box as shapely_box
from shapely.strtree import STRtree

from geo.bbox import BoundingBox
from gpkg.connection import GeoPackage, quote_identifier
from gpkg.errors import SpatialIndexMissingError
from gpkg.sql import COUNT_RTREE_SQL_TEMPLATE, SELECT_RTREE_SQL_TEMPLATE


log = structlog.get_logger(__name__)


class FeatureIndex(Protocol):
    """
    Envelope index over one feature table.

    `bbox` arguments are in the feature table's own CRS.
    """

    table_name: str

    def query(self, bbox: BoundingBox) -> Iterator[int]: ...

    def count(self, bbox: BoundingBox) -> int: ...


@dataclass
class STRtreeIndex:
    """
    In-memory envelope index (shapely STRtree) keyed by feature row id.
    """

    table_name: str
    _tree: STRtree = field(repr=False)
    _ids: list[int] = field(default_factory=list, repr=False)

    def query(self, bbox: BoundingBox) -> Iterator[int]:
        b = bbox.normalized()
        idxs = _to_int_list(self._tree.query(shapely_box(*b.as_bounds())))
        for i in sorted(idxs):
            yield self._ids[i]

    def count(self, bbox: BoundingBox) -> int:
        b = bbox.normalized()
        return len(_to_int_list(self._tree.query(shapely_box(*b.as_bounds()))))

    def __len__(self) -> int:
        return len(self._ids)


@dataclass
class RTreeIndex:
    """
    Index backed by an existing GeoPackage RTree extension table
    (`rtree_<table>_<geometry column>`).
    """

    table_name: str
    gpkg: GeoPackage = field(repr=False)
    rtree_table: str = ""

    def query(self, bbox: BoundingBox) -> Iterator[int]:
        b = bbox.normalized()
        cur = self.gpkg.execute(
            SELECT_RTREE_SQL_TEMPLATE.format(rtree=self.rtree_table.replace('"', '""'))
            + " ORDER BY id",
            (b.max_lon, b.min_lon, b.max_lat, b.min_lat),
        )
        for r in cur:
            yield int(r[0])

    def count(self, bbox: BoundingBox) -> int:
        b = bbox.normalized()
        row = self.gpkg.execute(
            COUNT_RTREE_SQL_TEMPLATE.format(rtree=self.rtree_table.replace('"', '""')),
            (b.max_lon, b.min_lon, b.max_lat, b.min_lat),
        ).fetchone()
        return int(row[0])

    def insert(self, row_id: int, envelope: tuple[float, float, float, float]) -> None:
        minx, miny, maxx, maxy = envelope
        self.gpkg.execute(
            f"INSERT OR REPLACE INTO {quote_identifier(self.rtree_table)} "
            "(id, minx, maxx, miny, maxy) VALUES (?, ?, ?, ?, ?)",
            (row_id, minx, maxx, miny, maxy),
        )
        self.gpkg.conn.commit()


def rtree_table_name(table: str, geometry_column: str) -> str:
    return f"rtree_{table}_{geometry_column}"


def index_feature_table(
    gpkg: GeoPackage, table: str, *, force: bool = False, persist: bool = False
) -> FeatureIndex:
    """
    Make sure `table` has a spatial index and return it.

    An RTree extension table already in the file is adopted as-is. Otherwise,
    with `persist`, one is written into the file so later connections can adopt
    it; failing that (no rtree module, read-only file) an STRtree is built from
    every row's envelope. `force` rebuilds.
    """
    existing = gpkg.indexes.get(table)
    if existing is not None and not force:
        return existing

    dao = gpkg.get_feature_dao(table)
    rtree = rtree_table_name(table, dao.geometry_column)
    if persist and not gpkg.has_table(rtree):
        try:
            create_rtree_index(gpkg, table)
        except sqlite3.OperationalError as e:
            gpkg.conn.rollback()
            log.warning("spatial_index_not_persisted", table=table, error=str(e))

    index: FeatureIndex
    if gpkg.has_table(rtree):
        index = RTreeIndex(table_name=table, gpkg=gpkg, rtree_table=rtree)
        log.info("spatial_index_adopted", table=table, rtree=rtree)
    else:
        ids: list[int] = []
        envelopes = []
        for row_id, env in _indexable_envelopes(dao):
            ids.append(row_id)
            envelopes.append(shapely_box(*env))
        index = STRtreeIndex(table_name=table, _tree=STRtree(envelopes), _ids=ids)
        log.info("spatial_index_built", table=table, rows=len(ids))

    gpkg.indexes[table] = index
    return index


def index_row(gpkg: GeoPackage, table: str, row_id: int) -> None:
    """
    Bring the table's index up to date after inserting `row_id`.
    """
    dao = gpkg.get_feature_dao(table)
    rtree = rtree_table_name(table, dao.geometry_column)
    index = gpkg.indexes.get(table)
    if gpkg.has_table(rtree):
        # The file index is kept current even when this connection has not adopted it.
        row = dao.get_row(row_id)
        env = row.envelope() if row is not None else None
        if env is not None and _is_finite(env):
            RTreeIndex(table_name=table, gpkg=gpkg, rtree_table=rtree).insert(row_id, env)
    elif index is not None:
        # STRtrees are immutable.
        index_feature_table(gpkg, table, force=True)


def is_indexed(gpkg: GeoPackage, table: str) -> bool:
    return table in gpkg.indexes


def get_feature_index(gpkg: GeoPackage, table: str) -> FeatureIndex:
    index = gpkg.indexes.get(table)
    if index is None:
        raise SpatialIndexMissingError(table)
    return index


def create_rtree_index(gpkg: GeoPackage, table: str) -> str:
    """
    Write the GeoPackage RTree extension table for `table` from current rows.

    Requires an SQLite build with the rtree module.
    """
    dao = gpkg.get_feature_dao(table)
    rtree = rtree_table_name(table, dao.geometry_column)
    gpkg.execute(
        f"CREATE VIRTUAL TABLE {quote_identifier(rtree)} USING rtree(id, minx, maxx, miny, maxy)"
    )
    rows = []
    for row_id, (minx, miny, maxx, maxy) in _indexable_envelopes(dao):
        rows.append((row_id, minx, maxx, miny, maxy))
    gpkg.conn.executemany(
        f"INSERT INTO {quote_identifier(rtree)} (id, minx, maxx, miny, maxy) VALUES (?, ?, ?, ?, ?)",
        rows,
    )
    gpkg.conn.commit()
    gpkg.indexes.pop(table, None)
    return rtree


def _is_finite(env: tuple[float, float, float, float]) -> bool:
    return all(math.isfinite(v) for v in env)


def _indexable_envelopes(dao: Any) -> Iterator[tuple[int, tuple[float, float, float, float]]]:
    skipped = 0
    for row in dao.iterate_rows():
        env = row.envelope()
        if env is None:
            continue
        if not _is_finite(env):
            skipped += 1
            continue
        yield row.id, env
    if skipped:
        log.warning("spatial_index_skipped_rows", table=dao.table_name, rows=skipped)


def _to_int_list(arr: Any) -> list[int]:
    # Shapely STRtree returns numpy.ndarray of indices.
    try:
        return [int(x) for x in arr.tolist()]
    except AttributeError:
        return [int(x) for x in arr]
