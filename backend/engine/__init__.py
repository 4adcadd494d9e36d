"""
Query engine over GeoPackage tables.

Feature bbox queries, closest-feature lookup, vector tile encoding and raster
tile selection. Every function takes an open `gpkg.connection.GeoPackage`.
"""
