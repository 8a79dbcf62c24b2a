"""Tests for the HTTP liveness endpoints."""

import pytest
from aiohttp import test_utils

from health import create_app


def status():
    return {"bot": "PolicyPulse#0001", "ready": True, "agents_today": 2}


class TestHealthEndpoints:
    """GET /, /health and /ping."""

    @pytest.mark.asyncio
    async def test_health_json(self):
        """/health reports ok with a timestamp and the bot status."""
        async with test_utils.TestClient(test_utils.TestServer(create_app(status))) as client:
            resp = await client.get("/health")
            assert resp.status == 200
            data = await resp.json()

        assert data["ok"] is True
        assert isinstance(data["ts"], int)
        assert data["agents_today"] == 2

    @pytest.mark.asyncio
    async def test_ping(self):
        """/ping answers in plain text."""
        async with test_utils.TestClient(test_utils.TestServer(create_app(status))) as client:
            resp = await client.get("/ping")
            assert resp.status == 200
            assert await resp.text() == "pong"

    @pytest.mark.asyncio
    async def test_status_page_escapes_values(self):
        """The status page is HTML with every value escaped."""
        def hostile():
            return {"bot": "<script>alert(1)</script>"}

        async with test_utils.TestClient(test_utils.TestServer(create_app(hostile))) as client:
            resp = await client.get("/")
            assert resp.status == 200
            assert resp.content_type == "text/html"
            body = await resp.text()

        assert "Policy Pulse is running" in body
        assert "<script>" not in body
        assert "uptime_seconds" in body
