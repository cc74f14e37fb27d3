"""DPoP-bound HTTP transport and XRPC client.

:class:`DpopHttp` signs every request with the session's DPoP key, remembers
the latest ``DPoP-Nonce`` per origin, and replays a request once when the
server rejects it with ``use_dpop_nonce``.

:class:`XrpcClient` turns non-2xx responses and transport failures into
:class:`~skybridge.core.exceptions.UpstreamError` with a typed
:class:`~skybridge.core.exceptions.UpstreamErrorKind`, so callers never have
to inspect messages or status codes.
"""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import urlsplit

import httpx
from cryptography.hazmat.primitives.asymmetric import ec

from skybridge.atproto.dpop import create_dpop_proof
from skybridge.core.exceptions import UpstreamError, UpstreamErrorKind

logger = logging.getLogger(__name__)

_UNAVAILABLE_STATUSES = frozenset({502, 503, 504})


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def response_json(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _needs_fresh_nonce(response: httpx.Response) -> bool:
    if response.status_code == 401:
        if "use_dpop_nonce" in response.headers.get("WWW-Authenticate", ""):
            return True
    if response.status_code in (400, 401):
        return response_json(response).get("error") == "use_dpop_nonce"
    return False


def _retry_after_seconds(response: httpx.Response) -> float | None:
    """Read ``Retry-After`` (seconds) or ``ratelimit-reset`` (epoch seconds)."""
    retry_after = response.headers.get("Retry-After")
    if retry_after:
        try:
            return max(float(retry_after), 0.0)
        except ValueError:
            pass
    reset = response.headers.get("ratelimit-reset")
    if reset:
        try:
            return max(float(reset) - time.time(), 0.0)
        except ValueError:
            pass
    return None


def classify_response(response: httpx.Response, nsid: str) -> UpstreamError:
    """Map a failed XRPC response to a typed :class:`UpstreamError`."""
    body = response_json(response)
    error_name = body.get("error")
    message = body.get("message") or error_name or f"HTTP {response.status_code}"
    status = response.status_code

    if status == 429:
        kind = UpstreamErrorKind.RATE_LIMITED
    elif status in _UNAVAILABLE_STATUSES:
        kind = UpstreamErrorKind.SERVICE_UNAVAILABLE
    elif status == 404 or (isinstance(error_name, str) and error_name.endswith("NotFound")):
        kind = UpstreamErrorKind.NOT_FOUND
    else:
        kind = UpstreamErrorKind.UNKNOWN

    return UpstreamError(
        f"{nsid}: {message}",
        kind=kind,
        status_code=status,
        retry_after=_retry_after_seconds(response) if status == 429 else None,
        error_name=error_name if isinstance(error_name, str) else None,
    )


class DpopHttp:
    """Sends DPoP-signed requests on behalf of one session key.

    Args:
        http: Shared HTTP client.  Not closed by this class.
        key: The session's DPoP private key.
        nonces: Origin → latest ``DPoP-Nonce``.  Pass a shared dict to keep
            nonces across instances for the same session.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        key: ec.EllipticCurvePrivateKey,
        nonces: dict[str, str] | None = None,
    ) -> None:
        self._http = http
        self._key = key
        self._nonces = nonces if nonces is not None else {}

    async def request(
        self,
        method: str,
        url: str,
        *,
        access_token: str | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send the request, retrying once if the server demands a new nonce."""
        origin = _origin(url)
        send_args = {
            "access_token": access_token,
            "params": params,
            "json": json,
            "data": data,
            "headers": headers,
        }
        nonce = self._nonces.get(origin)
        response = await self._send(method, url, origin, nonce, **send_args)

        fresh_nonce = self._nonces.get(origin)
        if _needs_fresh_nonce(response) and fresh_nonce and fresh_nonce != nonce:
            logger.debug("dpop: retrying with fresh nonce", extra={"origin": origin})
            response = await self._send(method, url, origin, fresh_nonce, **send_args)
        return response

    async def _send(
        self,
        method: str,
        url: str,
        origin: str,
        nonce: str | None,
        *,
        access_token: str | None,
        params: dict[str, Any] | None,
        json: Any,
        data: dict[str, Any] | None,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        proof = create_dpop_proof(self._key, method, url, nonce=nonce, access_token=access_token)
        request_headers = {"DPoP": proof, **(headers or {})}
        if access_token:
            request_headers["Authorization"] = f"DPoP {access_token}"

        response = await self._http.request(
            method,
            url,
            params=params,
            json=json,
            data=data,
            headers=request_headers,
        )
        if response.headers.get("DPoP-Nonce"):
            self._nonces[origin] = response.headers["DPoP-Nonce"]
        return response


class XrpcClient:
    """Authenticated XRPC calls against one service (the account's PDS).

    Args:
        transport: DPoP transport bound to the session key.
        service: Base URL of the PDS, e.g. ``https://morel.us-east.host.bsky.network``.
        access_token: DPoP-bound access token.
    """

    def __init__(self, transport: DpopHttp, service: str, access_token: str) -> None:
        self._transport = transport
        self._service = service.rstrip("/")
        self._access_token = access_token

    @property
    def service(self) -> str:
        return self._service

    async def query(
        self,
        nsid: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        return await self._call("GET", nsid, params=params, headers=headers)

    async def procedure(
        self,
        nsid: str,
        body: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        return await self._call("POST", nsid, json=body, headers=headers)

    async def _call(
        self,
        method: str,
        nsid: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Perform one XRPC call.

        Raises:
            UpstreamError: On any non-2xx response (kind derived from the
                status and XRPC error name) or on a transport failure
                (``SERVICE_UNAVAILABLE``).
        """
        url = f"{self._service}/xrpc/{nsid}"
        try:
            response = await self._transport.request(
                method,
                url,
                access_token=self._access_token,
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.RequestError as exc:
            raise UpstreamError(
                f"{nsid}: connection error: {exc}",
                kind=UpstreamErrorKind.SERVICE_UNAVAILABLE,
            ) from exc

        if response.is_success:
            return response_json(response)

        error = classify_response(response, nsid)
        logger.info(
            "xrpc: call failed",
            extra={
                "nsid": nsid,
                "status_code": response.status_code,
                "kind": error.kind.value,
            },
        )
        raise error
