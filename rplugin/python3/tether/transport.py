"""
HTTP client for the Jupyter server kernel REST API.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from .core.errors import NotFoundError, TransportError
from .models import KernelModel, SpecCollection


@dataclass
class ServerSettings:
    """
    Where and how to reach the kernel server.

    Attributes:
        base_url: Server root, e.g. 'http://127.0.0.1:8888'
        token: API token sent as 'Authorization: token <token>'; empty for none
        request_timeout: Total seconds allowed for one request
    """

    base_url: str = "http://127.0.0.1:8888"
    token: str = ""
    request_timeout: float = 20.0

    def url(self, *parts: str) -> str:
        path = "/".join(quote(part, safe="") for part in parts)
        return f"{self.base_url.rstrip('/')}/{path}"


class RestTransport:
    """
    Performs kernel spec and kernel lifecycle requests with aiohttp.

    Every failure surfaces as TransportError; a 404 on a kernel resource
    surfaces as NotFoundError so callers can treat it as 'already gone'.
    """

    def __init__(self, settings: Optional[ServerSettings] = None, session: Optional[aiohttp.ClientSession] = None):
        """
        Initialize the transport.

        Args:
            settings: Server location and credentials; defaults to a local server
            session: Optional client session to reuse. If None, one is created
                on first use and closed by close().
        """
        self.settings = settings or ServerSettings()
        self._session = session
        self._owns_session = session is None
        self._logger = logging.getLogger("tether.transport")

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Accept": "application/json"}
            if self.settings.token:
                headers["Authorization"] = f"token {self.settings.token}"
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.settings.request_timeout),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the client session if this transport created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """
        Send one request and decode the JSON body.

        Returns:
            The decoded body, or None for an empty response (e.g. 204)

        Raises:
            NotFoundError: On HTTP 404
            TransportError: On any other non-2xx status or network failure
        """
        self._logger.debug(f"Request {method} {url}")
        session = self._get_session()
        try:
            async with session.request(method, url, json=payload) as response:
                if response.status == 404:
                    raise NotFoundError(f"{method} {url}: not found")
                if response.status >= 400:
                    reason = await response.text()
                    raise TransportError(
                        f"{method} {url} failed with {response.status}: {reason.strip() or response.reason}",
                        status=response.status,
                    )
                if response.status == 204:
                    return None
                body = await response.read()
                if not body:
                    return None
                return await response.json(content_type=None)
        except TransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransportError(f"{method} {url} failed: {e or type(e).__name__}") from e

    async def list_specs(self) -> SpecCollection:
        """Fetch every kernel spec and the default spec name."""
        body = await self._request("GET", self.settings.url("api", "kernelspecs"))
        try:
            return SpecCollection.from_json(body)
        except ValueError as e:
            raise TransportError(f"Invalid kernel spec response: {e}") from e

    async def list_running(self) -> List[KernelModel]:
        """Fetch the records of all running kernels."""
        body = await self._request("GET", self.settings.url("api", "kernels"))
        if not isinstance(body, list):
            raise TransportError(f"Invalid kernel list response: expected a list, got {type(body).__name__}")
        models = []
        for entry in body:
            try:
                models.append(KernelModel.from_json(entry))
            except ValueError as e:
                raise TransportError(f"Invalid kernel list response: {e}") from e
        return models

    async def get_model(self, kernel_id: str) -> KernelModel:
        """
        Fetch one kernel's record.

        Raises:
            NotFoundError: If the server does not know the kernel
        """
        body = await self._request("GET", self.settings.url("api", "kernels", kernel_id))
        try:
            return KernelModel.from_json(body)
        except ValueError as e:
            raise TransportError(f"Invalid kernel response: {e}") from e

    async def start(self, name: Optional[str], options: Optional[Dict[str, Any]] = None) -> KernelModel:
        """
        Ask the server to start a kernel.

        Args:
            name: Kernel spec name; None lets the server use its default
            options: Extra request fields, e.g. {'path': 'notebooks/a.py'}

        Returns:
            KernelModel: The new kernel's record
        """
        payload = dict(options or {})
        if name is not None:
            payload["name"] = name
        body = await self._request("POST", self.settings.url("api", "kernels"), payload)
        try:
            model = KernelModel.from_json(body)
        except ValueError as e:
            raise TransportError(f"Invalid kernel start response: {e}") from e
        self._logger.info(f"Server started kernel {model.id[:8]} ({model.name})")
        return model

    async def shutdown(self, kernel_id: str) -> None:
        """
        Ask the server to terminate a kernel.

        Raises:
            NotFoundError: If the kernel is already gone
        """
        await self._request("DELETE", self.settings.url("api", "kernels", kernel_id))
        self._logger.info(f"Server shut down kernel {kernel_id[:8]}")
