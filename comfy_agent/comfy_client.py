"""
Async HTTP client for the ComfyUI control API.

GET requests use bounded retry (fixed count, fixed delay) for network
failures and 5xx responses. POST requests are never retried.
"""

import asyncio
import logging
import os
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from comfy_agent.errors import ApiError

logger = logging.getLogger("comfy_agent.client")


class ComfyClient:
    """Thin wrapper around httpx.AsyncClient bound to one ComfyUI server."""

    def __init__(self, base_url: str, timeout: float = 30,
                 get_retries: int = 2, retry_delay_ms: int = 300,
                 history_retries: int = 2, history_retry_delay_ms: int = 500,
                 listing_retries: int = 1,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.get_retries = get_retries
        self.retry_delay_ms = retry_delay_ms
        self.history_retries = history_retries
        self.history_retry_delay_ms = history_retry_delay_ms
        self.listing_retries = listing_retries
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, base_url: str, settings,
                      transport: Optional[httpx.AsyncBaseTransport] = None) -> "ComfyClient":
        """Build a client using the ``comfy.*`` section of a SettingsManager."""
        return cls(
            base_url,
            timeout=settings.get("comfy.request_timeout", 30),
            get_retries=settings.get("comfy.get_retries", 2),
            retry_delay_ms=settings.get("comfy.retry_delay_ms", 300),
            history_retries=settings.get("comfy.history_retries", 2),
            history_retry_delay_ms=settings.get("comfy.history_retry_delay_ms", 500),
            listing_retries=settings.get("comfy.listing_retries", 1),
            transport=transport,
        )

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ------------------------------------------------------------------ #
    # Transport helpers
    # ------------------------------------------------------------------ #

    async def _get(self, path: str, retries: int, retry_delay_ms: int) -> httpx.Response:
        attempt = 0
        while True:
            try:
                r = await self._http().get(path)
            except httpx.HTTPError as e:
                if attempt < retries:
                    attempt += 1
                    logger.debug(f"GET {path} failed ({e!r}), retry {attempt}/{retries}")
                    await asyncio.sleep(retry_delay_ms / 1000)
                    continue
                raise ApiError(f"Network error while requesting {path}",
                               {"path": path, "cause": str(e) or repr(e)})

            if r.status_code >= 500 and attempt < retries:
                attempt += 1
                logger.debug(f"GET {path} returned {r.status_code}, retry {attempt}/{retries}")
                await asyncio.sleep(retry_delay_ms / 1000)
                continue
            if r.status_code >= 400:
                raise ApiError(f"GET {path} failed with HTTP {r.status_code}",
                               {"path": path, "status": r.status_code})
            return r

    async def get_json(self, path: str, retries: Optional[int] = None,
                       retry_delay_ms: Optional[int] = None) -> Any:
        """GET a JSON document with bounded retry."""
        retries = self.get_retries if retries is None else retries
        retry_delay_ms = self.retry_delay_ms if retry_delay_ms is None else retry_delay_ms
        r = await self._get(path, retries, retry_delay_ms)
        try:
            return r.json()
        except ValueError:
            raise ApiError(f"GET {path} returned invalid JSON",
                           {"path": path, "status": r.status_code})

    async def post_json(self, path: str, body: Any) -> Any:
        try:
            r = await self._http().post(path, json=body)
        except httpx.HTTPError as e:
            raise ApiError(f"Network error while posting to {path}",
                           {"path": path, "cause": str(e) or repr(e)})
        if r.status_code >= 400:
            raise ApiError(f"POST {path} failed with HTTP {r.status_code}",
                           {"path": path, "status": r.status_code, "body": r.text[:500]})
        try:
            return r.json()
        except ValueError:
            raise ApiError(f"POST {path} returned invalid JSON",
                           {"path": path, "status": r.status_code})

    # ------------------------------------------------------------------ #
    # ComfyUI endpoints
    # ------------------------------------------------------------------ #

    async def prompt(self, graph: Dict[str, Any], client_id: Optional[str] = None,
                     prompt_id: Optional[str] = None) -> Dict[str, Any]:
        """Submit a canonical graph. Returns the server response ({prompt_id, ...})."""
        body: Dict[str, Any] = {"prompt": graph}
        if client_id:
            body["client_id"] = client_id
        if prompt_id:
            body["prompt_id"] = prompt_id
        data = await self.post_json("/prompt", body)
        return data if isinstance(data, dict) else {}

    async def upload_file(self, endpoint: str, file_path: str) -> Dict[str, Any]:
        """Upload a local file as multipart field ``image``."""
        with open(file_path, "rb") as f:
            content = f.read()
        files = {"image": (os.path.basename(file_path), content)}
        try:
            r = await self._http().post(endpoint, files=files)
        except httpx.HTTPError as e:
            raise ApiError(f"Network error while uploading to {endpoint}",
                           {"path": endpoint, "cause": str(e) or repr(e)})
        if r.status_code >= 400:
            raise ApiError(f"Upload to {endpoint} failed with HTTP {r.status_code}",
                           {"path": endpoint, "status": r.status_code})
        try:
            data = r.json()
        except ValueError:
            raise ApiError(f"Upload to {endpoint} returned invalid JSON",
                           {"path": endpoint, "status": r.status_code})
        return data if isinstance(data, dict) else {}

    async def view_file(self, filename: str, subfolder: Optional[str] = None,
                        type: Optional[str] = None) -> bytes:
        """Download one output file via /view."""
        params = {"filename": filename}
        if subfolder:
            params["subfolder"] = subfolder
        if type:
            params["type"] = type
        path = f"/view?{urlencode(params)}"
        r = await self._get(path, self.get_retries, self.retry_delay_ms)
        return r.content

    async def history(self, prompt_id: str) -> Any:
        return await self.get_json(f"/history/{prompt_id}",
                                   retries=self.history_retries,
                                   retry_delay_ms=self.history_retry_delay_ms)

    async def queue(self) -> Any:
        return await self.get_json("/queue", retries=1, retry_delay_ms=self.retry_delay_ms)

    async def object_info(self) -> Any:
        return await self.get_json("/object_info", retries=1, retry_delay_ms=self.retry_delay_ms)
