"""
MyGeotab JSON-RPC API Client Service.

Provides async access to the two call shapes the sync pipeline needs:
- Single calls (Get by search)
- ExecuteMultiCall batches, positionally aligned with their inputs

Features:
- Async HTTP client with connection pooling
- Host-supplied session credentials (no Authenticate round trip)
- Rate-limit errors surfaced as RateLimitedException with retry hints
- Transport failures and timeouts surfaced at once; retries belong to the caller
"""

import time
from collections.abc import Mapping, Sequence
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

import httpx
from dvirsync.core.config import Settings, settings as default_settings
from dvirsync.core.exceptions import (
    ConfigurationException,
    GeotabApiException,
    GeotabTimeoutException,
    RateLimitedException,
)
from dvirsync.core.logging import get_logger, log_external_api_call

logger = get_logger(__name__)

ApiCall = Tuple[str, Dict[str, Any]]

RATE_LIMIT_ERROR_NAMES = frozenset({"OverLimitException"})


@runtime_checkable
class InspectionApi(Protocol):
    """The RPC surface the pipeline consumes. Implemented by GeotabClient."""

    async def call(self, method: str, params: Dict[str, Any]) -> Any: ...

    async def multi_call(self, calls: Sequence[ApiCall]) -> List[Any]: ...


# =============================================================================
# Call Builders
# =============================================================================


def get_call(type_name: str, search: Optional[Dict[str, Any]] = None, results_limit: Optional[int] = None) -> ApiCall:
    """Build a ["Get", {...}] call."""
    params: Dict[str, Any] = {"typeName": type_name}
    if search is not None:
        params["search"] = search
    if results_limit is not None:
        params["resultsLimit"] = results_limit
    return ("Get", params)


def get_by_id_call(type_name: str, entity_id: str) -> ApiCall:
    """Point query: a Get whose result is a singleton list."""
    return get_call(type_name, {"id": entity_id})


# =============================================================================
# Error Mapping
# =============================================================================


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _raise_for_rpc_error(payload: Mapping[str, Any], response: httpx.Response) -> None:
    """Translate a JSON-RPC error object into the exception taxonomy."""
    error = payload.get("error")
    if not error:
        return
    if not isinstance(error, Mapping):
        raise GeotabApiException(f"MyGeotab error: {error}", status_code=response.status_code)

    inner = error.get("errors") or []
    names = [e.get("name") for e in inner if isinstance(e, Mapping)]
    name = next((n for n in names if n), None) or error.get("name")
    message = error.get("message") or "MyGeotab returned an error."

    if name in RATE_LIMIT_ERROR_NAMES or any(n in RATE_LIMIT_ERROR_NAMES for n in names):
        raise RateLimitedException(retry_after=_parse_retry_after(response), message=message)

    raise GeotabApiException(message, status_code=response.status_code, error_name=name)


# =============================================================================
# Geotab Client
# =============================================================================


class GeotabClient:
    """
    Async client for the MyGeotab JSON-RPC API.

    The session (database, user name, session id) is owned by the host; this
    client only attaches it to every request.
    """

    def __init__(
        self,
        server: str,
        database: str,
        username: str,
        session_id: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            server: MyGeotab server host (e.g. "my.geotab.com")
            database: Database name
            username: User the session belongs to
            session_id: Session id issued to the host
            timeout: HTTP request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self._url = f"https://{server}/apiv1"
        self._credentials = {
            "database": database,
            "userName": username,
            "sessionId": session_id,
        }
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._request_id = 0

    @classmethod
    def from_settings(cls, config: Settings | None = None, **kwargs: Any) -> "GeotabClient":
        """Build a client from configuration, failing fast on a missing session."""
        config = config or default_settings
        for name in ("GEOTAB_DATABASE", "GEOTAB_USERNAME", "GEOTAB_SESSION_ID"):
            if not getattr(config, name):
                raise ConfigurationException(f"{name} is not set", setting=name)
        return cls(
            server=config.GEOTAB_SERVER,
            database=config.GEOTAB_DATABASE,
            username=config.GEOTAB_USERNAME,
            session_id=config.GEOTAB_SESSION_ID,
            timeout=config.API_TIMEOUT_SECONDS,
            **kwargs,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def _post(self, method: str, params: Dict[str, Any], calls: int = 1) -> Any:
        """
        Send one JSON-RPC request and return its result.

        Raises:
            RateLimitedException: HTTP 429 or an OverLimitException error
            GeotabTimeoutException: No answer within the timeout
            GeotabApiException: Any other HTTP or RPC error
        """
        client = await self._get_client()
        self._request_id += 1
        body = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": {**params, "credentials": self._credentials},
        }

        start = time.monotonic()
        status_code: int | None = None
        try:
            response = await client.post(self._url, json=body)
            status_code = response.status_code

            if response.status_code == 429:
                retry_after = _parse_retry_after(response)
                raise RateLimitedException(retry_after=retry_after)

            response.raise_for_status()
            payload = response.json()
            if not isinstance(payload, Mapping):
                raise GeotabApiException("Unexpected MyGeotab response shape", status_code=status_code)

            _raise_for_rpc_error(payload, response)
            log_external_api_call(
                "geotab", method, (time.monotonic() - start) * 1000, status_code=status_code, calls=calls
            )
            return payload.get("result")

        except GeotabApiException as e:
            log_external_api_call(
                "geotab",
                method,
                (time.monotonic() - start) * 1000,
                status_code=status_code,
                calls=calls,
                success=False,
                error=e.message,
            )
            raise
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error from MyGeotab: {e.response.status_code}")
            raise GeotabApiException(
                f"HTTP error: {e.response.status_code}",
                status_code=e.response.status_code,
                original_error=e,
            ) from e
        except httpx.TimeoutException as e:
            log_external_api_call(
                "geotab", method, (time.monotonic() - start) * 1000, calls=calls, success=False, error="timeout"
            )
            raise GeotabTimeoutException(self._timeout, original_error=e) from e
        except httpx.TransportError as e:
            log_external_api_call(
                "geotab", method, (time.monotonic() - start) * 1000, calls=calls, success=False, error=str(e)
            )
            raise GeotabApiException(f"Could not reach MyGeotab: {e}", original_error=e) from e
        except ValueError as e:
            raise GeotabApiException(
                "MyGeotab returned invalid JSON", status_code=status_code, original_error=e
            ) from e

    async def call(self, method: str, params: Dict[str, Any]) -> Any:
        """Execute a single RPC method."""
        return await self._post(method, params)

    async def multi_call(self, calls: Sequence[ApiCall]) -> List[Any]:
        """
        Execute several calls as one ExecuteMultiCall request.

        Returns:
            One result per call, positionally aligned with ``calls``
        """
        if not calls:
            return []
        payload = [{"method": method, "params": params} for method, params in calls]
        result = await self._post("ExecuteMultiCall", {"calls": payload}, calls=len(calls))
        if not isinstance(result, list):
            raise GeotabApiException("ExecuteMultiCall did not return a list")
        return result

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
        logger.debug("MyGeotab client closed")

    async def __aenter__(self) -> "GeotabClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
