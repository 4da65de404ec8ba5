"""REST transport built on ``httpx``.

Managers only see :class:`RestTransport`; anything with async ``get``,
``post``, ``put`` and ``delete`` returning decoded JSON will do.
"""

from typing import Any, Protocol

import httpx
from opentelemetry.sdk._logs import LoggerProvider

from .auth import SessionCredentials
from .config import API_BASE_URL, DEFAULT_USER_AGENT
from .errors import (
    APIError,
    AuthenticationError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
)
from .telemetry import OTelLogger, get_default_providers
from .utils import get_short_error_info

Params = dict[str, Any]


class RestTransport(Protocol):
    async def get(self, path: str, params: Params | None = None) -> Any: ...

    async def post(self, path: str, data: Any = None, params: Params | None = None) -> Any: ...

    async def put(self, path: str, data: Any = None, params: Params | None = None) -> Any: ...

    async def delete(self, path: str, params: Params | None = None) -> Any: ...


def _clean_params(params: Params | None) -> Params | None:
    if not params:
        return None
    cleaned: Params = {}
    for key, value in params.items():
        if value is None:
            continue
        cleaned[key] = str(value).lower() if isinstance(value, bool) else value
    return cleaned


def _retry_after(response: httpx.Response) -> float | None:
    header = response.headers.get("retry-after")
    if header is None:
        return None
    try:
        return float(header)
    except ValueError:
        return None


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class HTTPTransport:
    """Authenticated JSON client for the REST API.

    Usage:
        transport = HTTPTransport(SessionCredentials(auth_token="..."))
        profile = await transport.get("/v1/profile/123")
        await transport.aclose()

    Parameters
    ----------
    credentials : SessionCredentials
        Read on every request, so rotating credentials only needs a new
        transport, not a new client.
    client : httpx.AsyncClient | None
        Inject a preconfigured client (for example one built on
        ``httpx.MockTransport``). Injected clients are not closed by
        :meth:`aclose`.
    """

    def __init__(
        self,
        credentials: SessionCredentials,
        base_url: str = API_BASE_URL,
        *,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        client: httpx.AsyncClient | None = None,
        logger_provider: LoggerProvider | None = None,
    ):
        self.credentials = credentials
        self.user_agent = user_agent
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
        )

        if logger_provider is None:
            logger_provider = get_default_providers()
        self._logger = OTelLogger(
            logger_provider.get_logger("rxinterpals.http"),
            source="HTTPTransport",
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            **self.credentials.headers(),
        }

    async def request(
        self,
        method: str,
        path: str,
        *,
        data: Any = None,
        params: Params | None = None,
    ) -> Any:
        """Send one request and return the decoded body.

        Raises:
            AuthenticationError: 401
            RateLimitError: 429, with ``retry_after`` from the header
            PermissionDeniedError: 403
            NotFoundError: 404
            APIError: any other non-2xx status, or a network failure
        """
        self._logger.debug(f"{method} {path}")
        try:
            response = await self._client.request(
                method,
                path,
                json=data,
                params=_clean_params(params),
                headers=self._headers(),
            )
        except httpx.TransportError as e:
            self._logger.warning(f"{method} {path} failed: {get_short_error_info(e)}")
            raise APIError(f"Request failed: {get_short_error_info(e)}") from e

        status = response.status_code
        if status < 400:
            return _decode(response)

        body = _decode(response)
        self._logger.warning(f"{method} {path} returned {status}")
        if status == 401:
            raise AuthenticationError(
                "Unauthorized - invalid or expired session", status_code=401
            )
        if status == 429:
            raise RateLimitError(retry_after=_retry_after(response))
        if status == 403:
            raise PermissionDeniedError(
                "Forbidden - insufficient permissions", status_code=403, response=body
            )
        if status == 404:
            raise NotFoundError("Resource not found", status_code=404, response=body)
        raise APIError(
            f"API request failed with status {status}", status_code=status, response=body
        )

    async def get(self, path: str, params: Params | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, data: Any = None, params: Params | None = None) -> Any:
        return await self.request("POST", path, data=data, params=params)

    async def put(self, path: str, data: Any = None, params: Params | None = None) -> Any:
        return await self.request("PUT", path, data=data, params=params)

    async def delete(self, path: str, params: Params | None = None) -> Any:
        return await self.request("DELETE", path, params=params)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
