"""Async client for the Linode v4 REST API.

Only the endpoints the provider's tools use are wrapped. Failures are mapped
onto the error taxonomy so retry and the circuit breaker can act on them:

- timeouts, network errors, 429 and 5xx: ``RETRYABLE_TRANSPORT``
- 400, 401, 403, 404 and other 4xx: ``NON_RETRYABLE``
"""

from __future__ import annotations

from typing import Any

import httpx
import orjson

from cloudmcp import __version__
from cloudmcp.foundation.errors import CloudMCPError, ErrorCode, JsonDict

from .accounts import Account

USER_AGENT = f"CloudMCP/{__version__}"
DEFAULT_TIMEOUT = 30.0
PAGE_SIZE = 100

_STATUS_REASONS = {
    400: "bad request",
    401: "unauthorized: invalid or expired token",
    403: "forbidden: token lacks the required scope",
    404: "not found",
    429: "upstream rate limit exceeded",
}


class LinodeAPIError(CloudMCPError):
    """A failed Linode API call, with its taxonomy code and HTTP status (0 for transport failures)."""

    def __init__(self, message: str, code: ErrorCode, status: int = 0) -> None:
        self.code = code  # type: ignore[misc]
        self.status = status
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.code is ErrorCode.RETRYABLE_TRANSPORT


def code_for_status(status: int) -> ErrorCode:
    if status == 429 or status >= 500:
        return ErrorCode.RETRYABLE_TRANSPORT
    return ErrorCode.NON_RETRYABLE


def _error_reasons(response: httpx.Response) -> str:
    """Join the ``errors[].reason`` entries of a Linode error body."""
    try:
        body = orjson.loads(response.content)
    except orjson.JSONDecodeError:
        return ""
    if not isinstance(body, dict):
        return ""
    reasons = [str(e.get("reason", "")) for e in body.get("errors", []) if isinstance(e, dict)]
    return "; ".join(r for r in reasons if r)


class LinodeClient:
    """Account-bound API client.

    Args:
        account: Account whose token and API url are used
        transport: Optional httpx transport (``httpx.MockTransport`` in tests)
        timeout: Per-request timeout in seconds

    Example:
        >>> async with LinodeClient(account) as client:
        ...     profile = await client.get_profile()
    """

    __slots__ = ("account", "_client")

    def __init__(self, account: Account, *, transport: httpx.AsyncBaseTransport | None = None,
                 timeout: float = DEFAULT_TIMEOUT) -> None:
        self.account = account
        self._client = httpx.AsyncClient(
            base_url=account.api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {account.token.get_secret_value()}",
                "User-Agent": USER_AGENT,
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> LinodeClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ─────────────────────────────────────────────────────────────────
    # Transport
    # ─────────────────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, *, params: JsonDict | None = None,
                       json: JsonDict | None = None) -> Any:
        content = orjson.dumps(json) if json is not None else None
        headers = {"Content-Type": "application/json"} if content is not None else None
        try:
            response = await self._client.request(method, path, params=params, content=content, headers=headers)
        except httpx.TimeoutException as e:
            raise LinodeAPIError(f"linode api timeout: {method} {path}", ErrorCode.RETRYABLE_TRANSPORT) from e
        except httpx.TransportError as e:
            raise LinodeAPIError(f"linode api connection error: {e}", ErrorCode.RETRYABLE_TRANSPORT) from e

        if response.is_success:
            return orjson.loads(response.content) if response.content else {}

        status = response.status_code
        reason = _error_reasons(response) or _STATUS_REASONS.get(status) or (
            "service unavailable" if status >= 500 else "request failed")
        raise LinodeAPIError(f"linode api error {status} on {method} {path}: {reason}",
                             code_for_status(status), status)

    async def _paginate(self, path: str) -> list[JsonDict]:
        items: list[JsonDict] = []
        page, pages = 1, 1
        while page <= pages:
            body = await self._request("GET", path, params={"page": page, "page_size": PAGE_SIZE})
            items.extend(body.get("data", []))
            pages = int(body.get("pages", 1) or 1)
            page += 1
        return items

    # ─────────────────────────────────────────────────────────────────
    # Endpoints
    # ─────────────────────────────────────────────────────────────────

    async def get_profile(self) -> JsonDict:
        return await self._request("GET", "/profile")

    async def get_account(self) -> JsonDict:
        return await self._request("GET", "/account")

    async def list_instances(self) -> list[JsonDict]:
        return await self._paginate("/linode/instances")

    async def get_instance(self, instance_id: int) -> JsonDict:
        return await self._request("GET", f"/linode/instances/{instance_id}")

    async def boot_instance(self, instance_id: int, config_id: int | None = None) -> None:
        await self._request("POST", f"/linode/instances/{instance_id}/boot",
                            json={"config_id": config_id} if config_id else {})

    async def reboot_instance(self, instance_id: int, config_id: int | None = None) -> None:
        await self._request("POST", f"/linode/instances/{instance_id}/reboot",
                            json={"config_id": config_id} if config_id else {})

    async def shutdown_instance(self, instance_id: int) -> None:
        await self._request("POST", f"/linode/instances/{instance_id}/shutdown")

    async def delete_instance(self, instance_id: int) -> None:
        await self._request("DELETE", f"/linode/instances/{instance_id}")

    async def list_regions(self) -> list[JsonDict]:
        return await self._paginate("/regions")

    def __repr__(self) -> str:
        return f"LinodeClient(account={self.account.name!r}, api_url={self.account.api_url!r})"
