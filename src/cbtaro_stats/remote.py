"""HTTP client for the remote track service.

The remote service is best-effort: ``track`` and ``get_stats`` return ``None``
on any failure. Only the admin calls raise, because a 403 there is something
the user can act on.
"""
from __future__ import annotations

import logging

import httpx

from cbtaro_stats.daykey import now_ms
from cbtaro_stats.identity import Identity, identity_key
from cbtaro_stats.ledger import CounterRecord

DEFAULT_TIMEOUT_SECONDS = 5.0

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """The remote service could not be reached or answered with an error."""


class AdminAuthorizationError(RemoteError):
    """The wallet is not the admin wallet."""


def record_from_remote(payload: dict) -> CounterRecord:
    """Convert a server record (wire field names) into a CounterRecord.

    Raises ValueError when a field has the wrong type or shape.
    """
    fid = payload.get("fid")
    wallet = payload.get("wallet")
    return CounterRecord.from_dict(
        {
            "identity": identity_key(fid, wallet),
            "fid": fid,
            "wallet": wallet,
            "total_readings": int(payload.get("total_readings", 0)),
            "one_card_count": int(payload.get("one_card_count", 0)),
            "three_card_count": int(payload.get("three_card_count", 0)),
            "custom_count": int(payload.get("custom_count", 0)),
            "streak": int(payload.get("streak", 0)),
            "last_visit_day_key": payload.get("last_visit_day_key"),
            "first_seen_at": payload.get("first_seen_ts"),
            "last_seen_at": payload.get("last_seen_ts"),
        }
    )


class RemoteTrackClient:
    """Async client for /api/track, /api/stats and the admin endpoints."""

    def __init__(
        self,
        base_url: str | None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        )

    async def track(
        self,
        identity: Identity,
        event: str,
        reading_type: str | None = None,
        client_ts: int | None = None,
    ) -> dict | None:
        """POST an event. Returns the server record, or None on any failure."""
        if not self.configured:
            logger.debug("Analytics API not configured, skipping track")
            return None
        if not identity.fid:
            logger.debug("No FID available, skipping remote %s", event)
            return None

        body: dict = {
            "fid": identity.fid,
            "event": event,
            "clientTs": client_ts if client_ts is not None else now_ms(),
        }
        if identity.normalized_wallet:
            body["wallet"] = identity.normalized_wallet
        if reading_type is not None:
            body["readingType"] = reading_type

        try:
            async with self._client() as client:
                response = await client.post("/api/track", json=body)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Failed to track %s: %s", event, exc)
            return None
        logger.debug("Tracked %s (%s): %s", event, reading_type, data)
        return data

    async def get_stats(self, fid: int | None) -> dict | None:
        """GET the server record for fid. None if unknown, unconfigured or unreachable."""
        if not self.configured or not fid:
            return None
        try:
            async with self._client() as client:
                response = await client.get("/api/stats", params={"fid": fid})
                if response.status_code == 404:
                    return None
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Failed to get stats for fid %s: %s", fid, exc)
            return None

    async def admin_stats(self, wallet: str) -> list[dict]:
        """All server records. Raises AdminAuthorizationError on 403."""
        response = await self._admin_get("/api/admin/stats", wallet)
        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteError("Admin stats response is not JSON") from exc
        return data if isinstance(data, list) else data.get("stats", [])

    async def admin_export_csv(self, wallet: str) -> str:
        """CSV of all server records. Raises AdminAuthorizationError on 403."""
        response = await self._admin_get("/api/admin/export.csv", wallet)
        return response.text

    async def _admin_get(self, path: str, wallet: str) -> httpx.Response:
        if not self.configured:
            raise RemoteError("Analytics API is not configured")
        try:
            async with self._client() as client:
                response = await client.get(path, params={"wallet": wallet})
        except httpx.HTTPError as exc:
            raise RemoteError(f"Analytics API unreachable: {exc}") from exc
        if response.status_code == 403:
            raise AdminAuthorizationError("Make sure you are connected with the admin wallet.")
        if response.is_error:
            raise RemoteError(f"Analytics API error: {response.status_code}")
        return response
