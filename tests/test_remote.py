"""Tests for the remote track client."""

import json

import httpx
import pytest

from cbtaro_stats.identity import Identity
from cbtaro_stats.remote import (
    AdminAuthorizationError,
    RemoteError,
    RemoteTrackClient,
    record_from_remote,
)

SERVER_RECORD = {
    "fid": 42,
    "wallet": "0xabc",
    "total_readings": 3,
    "one_card_count": 1,
    "three_card_count": 2,
    "custom_count": 0,
    "streak": 5,
    "last_visit_day_key": "2024-01-10",
    "first_seen_ts": 1000,
    "last_seen_ts": 2000,
}


def _client(handler, base_url="https://stats.example") -> RemoteTrackClient:
    return RemoteTrackClient(base_url, transport=httpx.MockTransport(handler))


class TestRecordFromRemote:
    def test_maps_wire_fields(self):
        record = record_from_remote(SERVER_RECORD)
        assert record.identity == "fid:42"
        assert record.streak == 5
        assert record.three_card_count == 2
        assert record.first_seen_at == 1000
        assert record.last_seen_at == 2000

    def test_missing_counters_default_to_zero(self):
        record = record_from_remote({"fid": 1})
        assert record.total_readings == 0
        assert record.last_seen_at is None

    def test_bad_day_key_rejected(self):
        with pytest.raises(ValueError):
            record_from_remote({**SERVER_RECORD, "last_visit_day_key": "soon"})

    def test_string_timestamp_rejected(self):
        with pytest.raises(ValueError):
            record_from_remote({**SERVER_RECORD, "last_seen_ts": "yesterday"})


class TestTrack:
    @pytest.mark.asyncio
    async def test_posts_event_and_returns_record(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=SERVER_RECORD)

        client = _client(handler)
        result = await client.track(Identity(fid=42, wallet="0xABC"), "reading", "three", client_ts=99)
        assert result == SERVER_RECORD
        assert seen["path"] == "/api/track"
        assert seen["body"] == {
            "fid": 42,
            "wallet": "0xabc",
            "event": "reading",
            "readingType": "three",
            "clientTs": 99,
        }

    @pytest.mark.asyncio
    async def test_visit_omits_reading_type(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=SERVER_RECORD)

        await _client(handler).track(Identity(fid=42), "visit")
        assert "readingType" not in bodies[0]
        assert "wallet" not in bodies[0]
        assert isinstance(bodies[0]["clientTs"], int)

    @pytest.mark.asyncio
    async def test_not_configured_returns_none(self):
        client = RemoteTrackClient("")
        assert client.configured is False
        assert await client.track(Identity(fid=42), "visit") is None

    @pytest.mark.asyncio
    async def test_no_fid_skips_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=SERVER_RECORD)

        assert await _client(handler).track(Identity(wallet="0xabc"), "visit") is None
        assert calls == []

    @pytest.mark.asyncio
    async def test_server_error_returns_none(self):
        client = _client(lambda request: httpx.Response(500, json={"error": "boom"}))
        assert await client.track(Identity(fid=42), "visit") is None

    @pytest.mark.asyncio
    async def test_network_error_returns_none(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        assert await _client(handler).track(Identity(fid=42), "visit") is None

    @pytest.mark.asyncio
    async def test_invalid_json_returns_none(self):
        client = _client(lambda request: httpx.Response(200, text="not json"))
        assert await client.track(Identity(fid=42), "visit") is None


class TestGetStats:
    @pytest.mark.asyncio
    async def test_returns_record(self):
        def handler(request):
            assert request.url.params["fid"] == "42"
            return httpx.Response(200, json=SERVER_RECORD)

        assert await _client(handler).get_stats(42) == SERVER_RECORD

    @pytest.mark.asyncio
    async def test_not_found_returns_none(self):
        client = _client(lambda request: httpx.Response(404, json={"error": "Not found"}))
        assert await client.get_stats(42) is None

    @pytest.mark.asyncio
    async def test_without_fid_returns_none(self):
        assert await _client(lambda r: httpx.Response(200, json={})).get_stats(None) is None


class TestAdmin:
    @pytest.mark.asyncio
    async def test_admin_stats(self):
        def handler(request):
            assert request.url.path == "/api/admin/stats"
            assert request.url.params["wallet"] == "0xadmin"
            return httpx.Response(200, json=[SERVER_RECORD])

        assert await _client(handler).admin_stats("0xadmin") == [SERVER_RECORD]

    @pytest.mark.asyncio
    async def test_admin_forbidden(self):
        client = _client(lambda request: httpx.Response(403, json={"error": "Forbidden"}))
        with pytest.raises(AdminAuthorizationError):
            await client.admin_stats("0xnotadmin")

    @pytest.mark.asyncio
    async def test_admin_export_csv(self):
        client = _client(lambda request: httpx.Response(200, text="key,fid\n"))
        assert await client.admin_export_csv("0xadmin") == "key,fid\n"

    @pytest.mark.asyncio
    async def test_admin_server_error(self):
        client = _client(lambda request: httpx.Response(500))
        with pytest.raises(RemoteError):
            await client.admin_export_csv("0xadmin")

    @pytest.mark.asyncio
    async def test_admin_not_configured(self):
        with pytest.raises(RemoteError):
            await RemoteTrackClient(None).admin_stats("0xadmin")
