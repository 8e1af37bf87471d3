"""Caddy admin API client for per-tenant hostnames."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from provisioner.infra.error_handler import APIError, NetworkError, NotFoundError
from provisioner.infra.timeout import PROXY_CALL_TIMEOUT

logger = logging.getLogger(__name__)

ROUTES_PATH = "/config/apps/http/servers/srv0/routes"


def build_route(hostname: str, target: str) -> Dict[str, Any]:
    """Reverse-proxy route matching ``hostname`` and dialing ``target``."""
    return {
        "match": [{"host": [hostname]}],
        "handle": [
            {
                "handler": "reverse_proxy",
                "upstreams": [{"dial": target}],
            }
        ],
    }


def find_route_index(routes: List[Dict[str, Any]], hostname: str) -> Optional[int]:
    for index, route in enumerate(routes or []):
        for match in route.get("match") or []:
            if hostname in (match.get("host") or []):
                return index
    return None


class CaddyClient:
    """Registers and removes tenant hostnames on a Caddy server."""

    def __init__(self, admin_url: str, timeout: float = PROXY_CALL_TIMEOUT):
        self.admin_url = admin_url.rstrip("/")
        self.timeout = timeout

    async def _request(self, method: str, path: str, json: Any = None) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, f"{self.admin_url}{path}", json=json)
        except httpx.TimeoutException as e:
            raise NetworkError(f"caddy {method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"caddy {method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise APIError(
                f"caddy {method} {path} returned {response.status_code}",
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )
        return response

    async def add_host(self, hostname: str, target: str) -> None:
        """Route ``hostname`` to ``target`` (``host:port``)."""
        await self._request("POST", ROUTES_PATH, json=build_route(hostname, target))
        logger.info("Proxy host added", extra={"hostname": hostname, "target": target})

    async def remove_host(self, hostname: str) -> None:
        """
        Delete the route for ``hostname``.

        Raises:
            NotFoundError: If no route matches the hostname
        """
        response = await self._request("GET", ROUTES_PATH)
        index = find_route_index(response.json(), hostname)
        if index is None:
            raise NotFoundError(f"route not found for host: {hostname}")

        await self._request("DELETE", f"{ROUTES_PATH}/{index}")
        logger.info("Proxy host removed", extra={"hostname": hostname})
