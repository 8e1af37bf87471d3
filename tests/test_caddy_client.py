"""Tests for the Caddy admin API client."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from provisioner.adapters.caddy_client import CaddyClient, ROUTES_PATH, build_route, find_route_index
from provisioner.infra.error_handler import APIError, NetworkError, NotFoundError


def make_response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    return response


def mock_async_client(mock_client_class, request):
    mock_client = AsyncMock()
    mock_client.request = request
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_class.return_value = mock_client
    return mock_client


class TestRoutes:
    """Test route construction and lookup."""

    def test_build_route(self):
        route = build_route("alice.agents.example.com", "localhost:30000")
        assert route["match"] == [{"host": ["alice.agents.example.com"]}]
        assert route["handle"][0]["upstreams"] == [{"dial": "localhost:30000"}]

    def test_find_route_index(self):
        routes = [
            build_route("bob.agents.example.com", "localhost:30001"),
            build_route("alice.agents.example.com", "localhost:30000"),
        ]
        assert find_route_index(routes, "alice.agents.example.com") == 1
        assert find_route_index(routes, "carol.agents.example.com") is None
        assert find_route_index(None, "alice.agents.example.com") is None


class TestCaddyClient:
    """Test admin API calls."""

    @pytest.fixture
    def client(self):
        return CaddyClient("http://caddy:2019/")

    @pytest.mark.asyncio
    async def test_add_host(self, client):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_async_client(mock_client_class, AsyncMock(return_value=make_response(200)))

            await client.add_host("alice.agents.example.com", "localhost:30000")

        method, url = mock_client.request.call_args[0]
        assert method == "POST"
        assert url == f"http://caddy:2019{ROUTES_PATH}"
        assert mock_client.request.call_args[1]["json"] == build_route("alice.agents.example.com", "localhost:30000")

    @pytest.mark.asyncio
    async def test_add_host_server_error(self, client):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_async_client(mock_client_class, AsyncMock(return_value=make_response(500)))

            with pytest.raises(APIError) as exc_info:
                await client.add_host("alice.agents.example.com", "localhost:30000")

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_add_host_unreachable(self, client):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_async_client(mock_client_class, AsyncMock(side_effect=httpx.ConnectError("refused")))

            with pytest.raises(NetworkError):
                await client.add_host("alice.agents.example.com", "localhost:30000")

    @pytest.mark.asyncio
    async def test_remove_host(self, client):
        routes = [
            build_route("bob.agents.example.com", "localhost:30001"),
            build_route("alice.agents.example.com", "localhost:30000"),
        ]
        request = AsyncMock(side_effect=[make_response(200, routes), make_response(200)])
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_async_client(mock_client_class, request)

            await client.remove_host("alice.agents.example.com")

        assert request.call_args_list[1][0] == ("DELETE", f"http://caddy:2019{ROUTES_PATH}/1")

    @pytest.mark.asyncio
    async def test_remove_unknown_host(self, client):
        request = AsyncMock(return_value=make_response(200, []))
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_async_client(mock_client_class, request)

            with pytest.raises(NotFoundError):
                await client.remove_host("alice.agents.example.com")

        assert request.await_count == 1
