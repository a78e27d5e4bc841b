"""
Minimal Supabase REST access over aiohttp.

Only what the relay needs: the auth user endpoint and a few PostgREST calls
on the quota and usage tables, authenticated with the service role key.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import aiohttp


class SupabaseRest:
    """Holds the base URL, service key and a lazily created aiohttp session."""

    def __init__(
        self,
        url: str,
        service_key: str,
        *,
        http: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = 5.0,
    ):
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._http = http
        self._owns_http = http is None

    def http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_http = True
        return self._http

    def headers(self, bearer: Optional[str] = None, **extra: str) -> Dict[str, str]:
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {bearer or self.service_key}",
        }
        headers.update(extra)
        return headers

    def rest_url(self, path: str) -> str:
        return f"{self.url}/rest/v1/{path.lstrip('/')}"

    def auth_url(self, path: str) -> str:
        return f"{self.url}/auth/v1/{path.lstrip('/')}"

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http and not self._http.closed:
            await self._http.close()


async def read_json(resp: Any) -> Any:
    """Decode a JSON body regardless of the declared content type."""
    return await resp.json(content_type=None)
