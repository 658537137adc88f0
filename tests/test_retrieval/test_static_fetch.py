"""Tests for the httpx static fetcher."""

import httpx
import pytest

from pricehunt.errors import TransportError
from pricehunt.retrieval.static import HttpxStaticFetcher, browser_headers


class TestBrowserHeaders:
    def test_locale_cookie(self):
        headers = browser_headers("560001")
        assert headers["Cookie"] == "pincode=560001; location=560001"
        assert "User-Agent" not in headers

    def test_user_agent(self):
        assert browser_headers("560001", "TestAgent/1.0")["User-Agent"] == "TestAgent/1.0"


class TestHttpxStaticFetcher:
    @pytest.mark.asyncio
    async def test_returns_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["cookie"] = request.headers.get("cookie")
            seen["ua"] = request.headers.get("user-agent")
            return httpx.Response(200, text="<html><body>ok</body></html>")

        fetcher = HttpxStaticFetcher(transport=httpx.MockTransport(handler))
        status, body = await fetcher.get("https://shop.example.com/s?q=milk", browser_headers("110001"))

        assert status == 200
        assert "ok" in body
        assert seen["cookie"] == "pincode=110001; location=110001"
        assert "Mozilla" in seen["ua"]

    @pytest.mark.asyncio
    async def test_non_success_raises(self):
        fetcher = HttpxStaticFetcher(
            transport=httpx.MockTransport(lambda request: httpx.Response(503, text="busy"))
        )
        with pytest.raises(TransportError) as excinfo:
            await fetcher.get("https://shop.example.com/s?q=milk", {})
        assert excinfo.value.status_code == 503

    @pytest.mark.asyncio
    async def test_connection_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = HttpxStaticFetcher(transport=httpx.MockTransport(handler))
        with pytest.raises(TransportError) as excinfo:
            await fetcher.get("https://shop.example.com/s?q=milk", {})
        assert excinfo.value.status_code is None

    @pytest.mark.asyncio
    async def test_follows_redirects(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old":
                return httpx.Response(301, headers={"Location": "https://shop.example.com/new"})
            return httpx.Response(200, text="moved here")

        fetcher = HttpxStaticFetcher(transport=httpx.MockTransport(handler))
        _, body = await fetcher.get("https://shop.example.com/old", {})
        assert body == "moved here"
