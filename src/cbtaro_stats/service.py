"""Visit and reading tracking for cbtaro-stats.

Each event updates the local ledger synchronously, publishes the local record
to subscribers, and then hands the event to the remote service in the
background. A successful remote response replaces the local record outright
(server wins); a failed one leaves the local numbers as they are.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable

from cbtaro_stats.daykey import CUTOFF_HOUR_UTC, now_ms
from cbtaro_stats.identity import ANONYMOUS, Identity, IdentityProvider
from cbtaro_stats.ledger import READING_TYPES, CounterRecord, LedgerDocument, LocalLedgerStore
from cbtaro_stats.remote import RemoteTrackClient, record_from_remote
from cbtaro_stats.streaks import advance_streak

logger = logging.getLogger(__name__)

Listener = Callable[[CounterRecord], None]


class AnalyticsService:
    """Long-lived tracker holding the ledger store and the remote client."""

    def __init__(
        self,
        store: LocalLedgerStore,
        remote: RemoteTrackClient,
        identity_provider: IdentityProvider | None = None,
        cutoff_hour_utc: int = CUTOFF_HOUR_UTC,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.remote = remote
        self.identity_provider = identity_provider
        self.cutoff_hour_utc = cutoff_hour_utc
        self.clock = clock
        self._listeners: list[Listener] = []
        self._pending: set[asyncio.Task] = set()

    def init(self) -> LedgerDocument:
        """Load the ledger once so a missing or corrupt file is dealt with up front."""
        document = self.store.load()
        logger.debug("Ledger loaded with %d rows", len(document.rows))
        return document

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for every published record. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def resolve_identity(self, identity: Identity | None = None) -> Identity:
        if identity is not None:
            return identity
        if self.identity_provider is None:
            return ANONYMOUS
        return self.identity_provider.resolve()

    def stats(self, identity: Identity | None = None) -> CounterRecord:
        """Current local record for an identity (zero-valued if never tracked)."""
        return self.store.get_or_create(self.resolve_identity(identity).key)

    def track_visit(self, identity: Identity | None = None) -> CounterRecord:
        """Record a visit locally, then notify the remote service in the background."""
        ident = self.resolve_identity(identity)
        now = self.clock()

        def _visit(record: CounterRecord) -> None:
            state = advance_streak(
                record.streak, record.last_visit_day_key, now, self.cutoff_hour_utc
            )
            if not state.changed:
                logger.debug("Streak %s for %s, unchanged at %d", state.transition.value, ident.key, state.streak)
            record.streak = state.streak
            record.last_visit_day_key = state.last_visit_day_key
            _attach_identity(record, ident)
            record.touch(now)

        record = self.store.update(ident.key, _visit)
        self._publish(record)
        self._dispatch(ident, "visit", None, now)
        return record

    def track_reading(self, reading_type: str, identity: Identity | None = None) -> CounterRecord:
        """Count one reading locally, then notify the remote service in the background."""
        if reading_type not in READING_TYPES:
            raise ValueError(f"reading_type must be one of {READING_TYPES}, got {reading_type!r}")
        ident = self.resolve_identity(identity)
        now = self.clock()

        def _reading(record: CounterRecord) -> None:
            record.add_reading(reading_type)
            _attach_identity(record, ident)
            record.touch(now)

        record = self.store.update(ident.key, _reading)
        self._publish(record)
        self._dispatch(ident, "reading", reading_type, now)
        return record

    async def refresh(self, identity: Identity | None = None) -> CounterRecord:
        """Pull the server record without tracking anything; falls back to the local one."""
        ident = self.resolve_identity(identity)
        data = await self.remote.get_stats(ident.fid)
        if data:
            applied = self._apply_remote(ident, data)
            if applied is not None:
                return applied
        return self.store.get_or_create(ident.key)

    async def flush(self) -> None:
        """Wait for all in-flight remote calls."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _dispatch(self, ident: Identity, event: str, reading_type: str | None, client_ts: int) -> None:
        if not self.remote.configured or not ident.fid:
            logger.debug("Remote %s skipped for %s", event, ident.key)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, remote %s skipped", event)
            return
        task = loop.create_task(self._sync(ident, event, reading_type, client_ts))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _sync(self, ident: Identity, event: str, reading_type: str | None, client_ts: int) -> None:
        try:
            data = await self.remote.track(ident, event, reading_type, client_ts=client_ts)
        except Exception:
            logger.debug("Remote %s failed for %s", event, ident.key, exc_info=True)
            return
        if data:
            self._apply_remote(ident, data)

    def _apply_remote(self, ident: Identity, data: dict) -> CounterRecord | None:
        """Overwrite the tracked identity's row with a server record for the same fid."""
        if not isinstance(data, dict) or data.get("fid") != ident.fid:
            logger.debug("Ignoring server record not for %s", ident.key)
            return None
        try:
            record = record_from_remote(data)
        except (TypeError, ValueError) as exc:
            logger.debug("Ignoring malformed server record: %s", exc)
            return None
        # stored under the tracked key, the body only supplies the counters
        record.identity = ident.key
        stored = self.store.replace(record)
        self._publish(stored)
        return stored

    def _publish(self, record: CounterRecord) -> None:
        for listener in list(self._listeners):
            listener(record)


def _attach_identity(record: CounterRecord, ident: Identity) -> None:
    if record.fid is None and ident.fid:
        record.fid = int(ident.fid)
    if ident.normalized_wallet:
        record.wallet = ident.normalized_wallet
