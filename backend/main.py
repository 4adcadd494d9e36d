import logging

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import router
from engine.config import cors_origins, log_level
from gpkg.errors import (
    GeoPackageError,
    InvalidGeometryError,
    SpatialIndexMissingError,
    TableNotFoundError,
    ZoomOutOfRangeError,
)


def configure_logging(level: str | None = None) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level or log_level())
        ),
        cache_logger_on_first_use=True,
    )


configure_logging()

app = FastAPI(title="GeoPackage tile & feature service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


_STATUS_BY_ERROR: list[tuple[type[GeoPackageError], int]] = [
    (TableNotFoundError, 404),
    (SpatialIndexMissingError, 409),
    (ZoomOutOfRangeError, 400),
    (InvalidGeometryError, 422),
]


@app.exception_handler(GeoPackageError)
async def geopackage_error_handler(request: Request, exc: GeoPackageError):
    status = next((code for kind, code in _STATUS_BY_ERROR if isinstance(exc, kind)), 500)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@app.exception_handler(FileNotFoundError)
async def missing_geopackage_handler(request: Request, exc: FileNotFoundError):
    return JSONResponse(status_code=503, content={"detail": str(exc)})
