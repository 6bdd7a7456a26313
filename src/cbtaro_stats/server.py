"""HTTP track service for cbtaro-stats.

Routes:
- POST /api/track                  record a visit or reading for a fid
- GET  /api/stats?fid=             one record
- GET  /api/admin/stats?wallet=    all records (admin wallet only)
- GET  /api/admin/export.csv?wallet=
"""
from __future__ import annotations

import logging
import math
from typing import Annotated, Callable, Literal, Mapping, Optional, Sequence

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from starlette.concurrency import run_in_threadpool

from cbtaro_stats.config import Settings, load_settings
from cbtaro_stats.csv_export import export_filename, export_records
from cbtaro_stats.daykey import now_ms
from cbtaro_stats.db import StatsDatabase
from cbtaro_stats.remote import record_from_remote

logger = logging.getLogger(__name__)

# SQLite INTEGER range
INT64_MAX = 2**63 - 1


class ApiError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class TrackValidationError(ApiError):
    status_code = 400


class TrackRequest(BaseModel):
    """Body of POST /api/track.

    Fields are declared in the order they are checked, so the first error
    reported is the one the client sees.
    """

    model_config = ConfigDict(populate_by_name=True)

    fid: int = Field(strict=True, gt=0, le=INT64_MAX)
    event: Literal["visit", "reading"]
    reading_type: Optional[Literal["one", "three", "custom"]] = Field(
        default=None, alias="readingType", validate_default=True
    )
    wallet: Optional[str] = None
    client_ts: Optional[Annotated[int, Field(ge=0, le=INT64_MAX)]] = Field(default=None, alias="clientTs")

    @field_validator("reading_type", mode="before")
    @classmethod
    def _reading_type_for_event(cls, value: object, info: ValidationInfo) -> object:
        event = info.data.get("event")
        if event == "visit":
            return None
        if event == "reading" and value is None:
            raise ValueError("readingType is required for a reading")
        return value

    @field_validator("wallet")
    @classmethod
    def _normalize_wallet(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip().lower() or None

    @field_validator("client_ts", mode="before")
    @classmethod
    def _client_ts_number(cls, value: object) -> object:
        # clientTs is informational; anything that is not a finite number is dropped
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        if isinstance(value, float):
            return int(value) if math.isfinite(value) else None
        return value


FIELD_ERRORS = {
    "fid": "Invalid fid",
    "event": "Invalid event",
    "readingType": "Invalid readingType",
    "wallet": "Invalid wallet",
    "clientTs": "Invalid clientTs",
}


def validation_message(errors: Sequence[Mapping]) -> str:
    """The client-facing message for the first validation error."""
    for error in errors:
        if error.get("type") == "json_invalid":
            return "Invalid JSON"
        loc = [part for part in error.get("loc", ()) if part != "body"]
        if loc and loc[0] in FIELD_ERRORS:
            return FIELD_ERRORS[loc[0]]
    return "Invalid body"


def create_app(
    settings: Settings | None = None,
    database: StatsDatabase | None = None,
    clock: Callable[[], int] = now_ms,
) -> FastAPI:
    """Build the track service application."""
    settings = settings or load_settings()
    db = database or StatsDatabase(settings.db_path, cutoff_hour_utc=settings.cutoff_hour_utc)

    app = FastAPI(title="cbtaro-stats")
    app.state.db = db
    app.state.settings = settings

    # Only the app's own origin gets Access-Control-Allow-Origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.allowed_origin],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(Exception)
    async def _internal_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    def _require_admin(wallet: str | None) -> None:
        admin = settings.admin_wallet.strip().lower()
        if not admin or not wallet or wallet.strip().lower() != admin:
            raise ApiError("Forbidden", status_code=403)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": validation_message(exc.errors())})

    @app.post("/api/track")
    async def track(payload: TrackRequest):
        record = await run_in_threadpool(
            db.apply_event,
            payload.fid,
            payload.event,
            clock(),
            wallet=payload.wallet,
            reading_type=payload.reading_type,
            client_ts=payload.client_ts,
        )
        logger.info("Tracked %s for fid %s", payload.event, payload.fid)
        return record

    @app.get("/api/stats")
    def get_stats(fid: Optional[str] = Query(default=None)):
        if not fid:
            raise TrackValidationError("Missing fid parameter")
        try:
            fid_value = int(fid)
        except ValueError:
            raise TrackValidationError("Invalid fid")
        if not 0 < fid_value <= INT64_MAX:
            raise TrackValidationError("Invalid fid")
        record = db.get_stats(fid_value)
        if record is None:
            raise ApiError("Not found", status_code=404)
        return record

    @app.get("/api/admin/stats")
    def admin_stats(wallet: Optional[str] = Query(default=None)):
        _require_admin(wallet)
        return db.get_all_stats()

    @app.get("/api/admin/export.csv")
    def admin_export(wallet: Optional[str] = Query(default=None)):
        _require_admin(wallet)
        records = [record_from_remote(row) for row in db.get_all_stats()]
        return Response(
            content=export_records(records),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
        )

    return app
