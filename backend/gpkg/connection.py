from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

import structlog

from geo.projection import WGS84, crs_code
from gpkg.errors import GeoPackageError, TableNotFoundError
from gpkg.sql import (
    APPLICATION_ID,
    CORE_TABLES_SQL,
    DEFAULT_SRS_ROWS,
    INSERT_SRS_SQL,
    USER_VERSION,
)

if TYPE_CHECKING:
    from gpkg.features import FeatureDao
    from gpkg.index import FeatureIndex
    from gpkg.tiles import TileDao


log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SpatialReferenceSystem:
    srs_id: int
    srs_name: str
    organization: str
    organization_coordsys_id: int
    definition: str

    @property
    def is_defined(self) -> bool:
        return self.organization.strip().upper() != "NONE" and self.definition != "undefined"

    @property
    def crs(self) -> str:
        """
        pyproj-ready code. Undefined SRSs are treated as WGS84 lon/lat.
        """
        if not self.is_defined:
            return WGS84
        return crs_code(self.organization, self.organization_coordsys_id)


@dataclass
class GeoPackage:
    """
    An open GeoPackage file.

    The connection is owned by whoever opened it; DAOs and indexes borrow it.
    """

    path: Path
    conn: sqlite3.Connection
    # Spatial indexes built (or adopted) for feature tables, keyed by table name.
    indexes: dict[str, "FeatureIndex"] = field(default_factory=dict, repr=False)
    _srs_cache: dict[int, SpatialReferenceSystem] = field(default_factory=dict, repr=False)

    @property
    def name(self) -> str:
        return self.path.stem

    def __enter__(self) -> "GeoPackage":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        self.indexes.clear()
        self.conn.close()

    def execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        return self.conn.execute(sql, tuple(params))

    def has_table(self, name: str) -> bool:
        row = self.execute(
            "SELECT 1 FROM sqlite_master WHERE type IN ('table', 'view') AND name = ?",
            (name,),
        ).fetchone()
        return row is not None

    def tables_of_type(self, data_type: str) -> list[str]:
        rows = self.execute(
            "SELECT table_name FROM gpkg_contents WHERE lower(data_type) = ? ORDER BY table_name",
            (data_type.lower(),),
        ).fetchall()
        return [str(r[0]) for r in rows]

    def feature_tables(self) -> list[str]:
        return self.tables_of_type("features")

    def tile_tables(self) -> list[str]:
        return self.tables_of_type("tiles")

    def get_srs(self, srs_id: int) -> SpatialReferenceSystem:
        sid = int(srs_id)
        cached = self._srs_cache.get(sid)
        if cached is not None:
            return cached
        row = self.execute(
            "SELECT srs_id, srs_name, organization, organization_coordsys_id, definition "
            "FROM gpkg_spatial_ref_sys WHERE srs_id = ?",
            (sid,),
        ).fetchone()
        if row is None:
            raise GeoPackageError(f"Spatial reference system {sid} is not defined")
        srs = SpatialReferenceSystem(
            srs_id=int(row["srs_id"]),
            srs_name=str(row["srs_name"]),
            organization=str(row["organization"]),
            organization_coordsys_id=int(row["organization_coordsys_id"]),
            definition=str(row["definition"]),
        )
        self._srs_cache[sid] = srs
        return srs

    def get_feature_dao(self, table: str) -> "FeatureDao":
        from gpkg.features import FeatureDao

        if table not in self.feature_tables():
            raise TableNotFoundError(table, "feature table")
        return FeatureDao.load(self, table)

    def get_tile_dao(self, table: str) -> "TileDao":
        from gpkg.tiles import TileDao

        if table not in self.tile_tables():
            raise TableNotFoundError(table, "tile table")
        return TileDao.load(self, table)


def open_geopackage(path: str | Path) -> GeoPackage:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"GeoPackage not found: {p}")
    conn = _connect(p)
    if not _has_core_tables(conn):
        conn.close()
        raise GeoPackageError(f"Not a GeoPackage (missing gpkg_contents): {p}")
    return GeoPackage(path=p, conn=conn)


def create_geopackage(path: str | Path) -> GeoPackage:
    """
    Create (or upgrade in place) a GeoPackage with the core tables and default SRSs.
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    conn = _connect(p)
    conn.execute(f"PRAGMA application_id = {APPLICATION_ID}")
    conn.execute(f"PRAGMA user_version = {USER_VERSION}")
    for stmt in CORE_TABLES_SQL:
        conn.execute(stmt)
    conn.executemany(INSERT_SRS_SQL, DEFAULT_SRS_ROWS)
    conn.commit()
    log.info("geopackage_created", path=str(p))
    return GeoPackage(path=p, conn=conn)


def _connect(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    return conn


def _has_core_tables(conn: sqlite3.Connection) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'gpkg_contents'"
    ).fetchone()
    return row is not None


def quote_identifier(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'
