from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from shapely.geometry.base import BaseGeometry

from geo.bbox import BoundingBox
from gpkg.connection import GeoPackage, SpatialReferenceSystem, quote_identifier
from gpkg.errors import GeoPackageError, TableNotFoundError
from gpkg.geometry import GeometryData, decode_geometry, encode_geometry
from gpkg.sql import INSERT_CONTENTS_SQL, INSERT_GEOMETRY_COLUMNS_SQL


@dataclass(frozen=True)
class FeatureColumn:
    index: int
    name: str
    data_type: str
    not_null: bool
    primary_key: bool


@dataclass(frozen=True)
class FeatureRow:
    id: int
    values: dict[str, Any]
    geometry_column: str
    geometry_data: GeometryData | None

    @property
    def geometry(self) -> BaseGeometry | None:
        if self.geometry_data is None:
            return None
        return self.geometry_data.geometry

    def envelope(self) -> tuple[float, float, float, float] | None:
        """
        (minx, miny, maxx, maxy) from the blob header, else from the geometry.
        """
        gd = self.geometry_data
        if gd is None or gd.is_empty:
            return None
        if gd.envelope is not None and len(gd.envelope) >= 4:
            minx, maxx, miny, maxy = gd.envelope[:4]
            return (minx, miny, maxx, maxy)
        return tuple(gd.geometry.bounds)  # type: ignore[union-attr,return-value]


@dataclass
class FeatureDao:
    """
    Row access for one feature table (the table/row store the query engine consumes).
    """

    gpkg: GeoPackage
    table_name: str
    geometry_column: str
    geometry_type: str
    srs: SpatialReferenceSystem
    columns: list[FeatureColumn]

    @classmethod
    def load(cls, gpkg: GeoPackage, table: str) -> "FeatureDao":
        gc = gpkg.execute(
            "SELECT column_name, geometry_type_name, srs_id FROM gpkg_geometry_columns "
            "WHERE table_name = ?",
            (table,),
        ).fetchone()
        if gc is None:
            raise TableNotFoundError(table, "geometry column for feature table")
        columns = [
            FeatureColumn(
                index=int(r["cid"]),
                name=str(r["name"]),
                data_type=str(r["type"] or ""),
                not_null=bool(r["notnull"]),
                primary_key=bool(r["pk"]),
            )
            for r in gpkg.execute(f"PRAGMA table_info({quote_identifier(table)})")
        ]
        return cls(
            gpkg=gpkg,
            table_name=table,
            geometry_column=str(gc["column_name"]),
            geometry_type=str(gc["geometry_type_name"]),
            srs=gpkg.get_srs(int(gc["srs_id"])),
            columns=columns,
        )

    @property
    def crs(self) -> str:
        return self.srs.crs

    @property
    def pk_column(self) -> str:
        for c in self.columns:
            if c.primary_key:
                return c.name
        raise GeoPackageError(f"Feature table {self.table_name!r} has no primary key")

    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def count(self) -> int:
        row = self.gpkg.execute(
            f"SELECT COUNT(*) FROM {quote_identifier(self.table_name)}"
        ).fetchone()
        return int(row[0])

    def get_row(self, row_id: int) -> FeatureRow | None:
        row = self.gpkg.execute(
            f"SELECT * FROM {quote_identifier(self.table_name)} "
            f"WHERE {quote_identifier(self.pk_column)} = ?",
            (row_id,),
        ).fetchone()
        return self._to_row(row) if row is not None else None

    def query_for_eq(self, column: str, value: Any) -> list[FeatureRow]:
        """
        All rows where `column = value`; an unknown column matches nothing.
        """
        if column not in self.column_names():
            return []
        cur = self.gpkg.execute(
            f"SELECT * FROM {quote_identifier(self.table_name)} "
            f"WHERE {quote_identifier(column)} = ?",
            (value,),
        )
        return [self._to_row(r) for r in cur]

    def iterate_rows(self) -> Iterator[FeatureRow]:
        """
        Lazy, single-pass iteration; one row is decoded per `next()`.
        """
        cur = self.gpkg.execute(
            f"SELECT * FROM {quote_identifier(self.table_name)} "
            f"ORDER BY {quote_identifier(self.pk_column)}"
        )
        for r in cur:
            yield self._to_row(r)

    def add_row(self, geometry: BaseGeometry | None, values: dict[str, Any] | None = None) -> int:
        vals = {k: v for k, v in (values or {}).items() if k in self.column_names()}
        vals[self.geometry_column] = (
            encode_geometry(geometry, self.srs.srs_id) if geometry is not None else None
        )
        names = list(vals.keys())
        cols_sql = ", ".join(quote_identifier(n) for n in names)
        params_sql = ", ".join("?" for _ in names)
        cur = self.gpkg.execute(
            f"INSERT INTO {quote_identifier(self.table_name)} ({cols_sql}) VALUES ({params_sql})",
            [vals[n] for n in names],
        )
        self.gpkg.conn.commit()
        return int(cur.lastrowid)

    def add_rows(
        self, rows: Iterable[tuple[BaseGeometry | None, dict[str, Any] | None]]
    ) -> int:
        """
        Bulk insert in a single transaction. Returns the number of rows written.
        """
        written = 0
        for geometry, values in rows:
            vals = {k: v for k, v in (values or {}).items() if k in self.column_names()}
            vals[self.geometry_column] = (
                encode_geometry(geometry, self.srs.srs_id) if geometry is not None else None
            )
            names = list(vals.keys())
            self.gpkg.execute(
                f"INSERT INTO {quote_identifier(self.table_name)} "
                f"({', '.join(quote_identifier(n) for n in names)}) "
                f"VALUES ({', '.join('?' for _ in names)})",
                [vals[n] for n in names],
            )
            written += 1
        self.gpkg.conn.commit()
        return written

    def _to_row(self, row) -> FeatureRow:
        values = dict(row)
        return FeatureRow(
            id=int(values[self.pk_column]),
            values=values,
            geometry_column=self.geometry_column,
            geometry_data=decode_geometry(values.get(self.geometry_column)),
        )


def create_feature_table(
    gpkg: GeoPackage,
    table: str,
    *,
    geometry_column: str = "geometry",
    geometry_type: str = "GEOMETRY",
    srs_id: int = 4326,
    columns: list[tuple[str, str]] | None = None,
    bbox: BoundingBox | None = None,
    data_columns: dict[str, str] | None = None,
) -> FeatureDao:
    """
    Create a feature table with an integer primary key `id` plus `columns`
    (name, sqlite type) and register it in the GeoPackage contents.

    `data_columns` maps a column name to its display name (gpkg_data_columns).
    """
    if gpkg.has_table(table):
        raise GeoPackageError(f"Table already exists: {table!r}")
    gpkg.get_srs(srs_id)

    col_defs = [
        "id INTEGER PRIMARY KEY AUTOINCREMENT",
        f"{quote_identifier(geometry_column)} {geometry_type.upper()}",
    ]
    for name, sql_type in columns or []:
        col_defs.append(f"{quote_identifier(name)} {sql_type}")
    gpkg.execute(f"CREATE TABLE {quote_identifier(table)} ({', '.join(col_defs)})")

    b = bbox or BoundingBox(min_lon=-180.0, max_lon=180.0, min_lat=-90.0, max_lat=90.0)
    gpkg.execute(
        INSERT_CONTENTS_SQL,
        (table, "features", table, "", b.min_lon, b.min_lat, b.max_lon, b.max_lat, srs_id),
    )
    gpkg.execute(INSERT_GEOMETRY_COLUMNS_SQL, (table, geometry_column, geometry_type.upper(), srs_id))
    for column, display_name in (data_columns or {}).items():
        gpkg.execute(
            "INSERT INTO gpkg_data_columns (table_name, column_name, name) VALUES (?, ?, ?)",
            (table, column, display_name),
        )
    gpkg.conn.commit()
    return gpkg.get_feature_dao(table)
