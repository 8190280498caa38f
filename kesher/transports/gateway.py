"""
Remote Gateway Transport Adapter for Kesher.

Drives an account hosted by a Z-API-style REST gateway. Each account is
addressed by a gateway instance id and token:

    {base_url}/instances/{gateway_instance_id}/token/{token}/{endpoint}

The gateway has no push channel. Inbound messages arrive as HTTP
callbacks that the application routes to the instance registry's
ingestion entry point; connection state is learned by polling status().

Endpoints used:
    GET  /status               -> {"connected": bool, ...}
    GET  /qr-code/image        -> PNG (or {"value": data-url})
    GET  /qr-code              -> {"value": raw pairing code}
    POST /disconnect, /restart
    POST /send-text            {"phone", "message"}
    POST /send-image           {"phone", "image", "caption"}
    POST /send-audio           {"phone", "audio"}
    POST /send-document/url    {"phone", "document", "fileName"}
"""
from __future__ import annotations

import base64
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx

from ..errors import ErrorCode, TransportError
from ..utils.phone import normalize_target
from .protocol import PairingArtifact, SendResult, TransportListener, TransportStatus

if TYPE_CHECKING:
    from ..config.schemas import InstanceRecord
    from ..credentials import NamespacedCredentials

logger = logging.getLogger(__name__)

FAMILY = "gateway"

DEFAULT_BASE_URL = "https://api.z-api.io"

# Provider error text that means the account session is down
_NOT_CONNECTED_MARKERS = ("not connected", "disconnected", "not logged", "offline")


class GatewayTransport:
    """
    REST gateway transport.

    Example:
        transport = GatewayTransport(
            instance_id="sales",
            gateway_instance_id="3C4F...",
            token="F1A2...",
            client_token="Fe3b...",
        )
        status = await transport.status()
        result = await transport.send_text("5511999999999", "Hello!")
    """

    def __init__(
        self,
        instance_id: str,
        gateway_instance_id: str,
        token: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        client_token: str | None = None,
        country_code: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize gateway transport.

        Args:
            instance_id: Kesher instance id (used for logging only)
            gateway_instance_id: Gateway-side instance id
            token: Gateway instance token (never logged)
            base_url: Gateway root URL
            client_token: Account-level security token sent as Client-Token
            country_code: Prefix added to targets that lack it
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests)
        """
        self._instance_id = instance_id
        self._base_url = f"{base_url.rstrip('/')}/instances/{gateway_instance_id}/token/{token}"
        self._client_token = client_token
        self._country_code = country_code
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def family(self) -> str:
        return FAMILY

    @property
    def supports_push(self) -> bool:
        return False

    def subscribe(self, listener: TransportListener) -> None:
        """No push channel; callbacks arrive through registry ingestion."""

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._client_token:
            headers["Client-Token"] = self._client_token
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers=self._get_headers(),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # ==================== HTTP ====================

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Execute a single gateway request.

        Raises:
            TransportError: On any httpx transport failure or a non-2xx response
        """
        client = await self._get_client()
        try:
            response = await client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            raise TransportError(f"Gateway timeout on {path}: {e}") from e
        except httpx.TransportError as e:
            raise TransportError(
                f"Gateway transport error on {path}: {type(e).__name__}: {e}"
            ) from e

        self._check_response(response, path)
        return response

    def _check_response(self, response: httpx.Response, path: str) -> None:
        if response.is_success:
            return

        status = response.status_code
        body = response.text[:500]

        if _mentions_disconnect(body):
            raise TransportError(
                f"Gateway session not connected: {body}",
                ErrorCode.NOT_CONNECTED,
                status_code=status,
            )

        if status in (400, 404, 422):
            raise TransportError(
                f"Gateway rejected request on {path}: {body}",
                ErrorCode.INVALID_TARGET,
                status_code=status,
            )

        raise TransportError(
            f"Gateway request failed on {path} ({status}): {body}",
            status_code=status,
        )

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    # ==================== Lifecycle ====================

    async def status(self) -> TransportStatus:
        response = await self._request("GET", "/status")
        data = self._json(response)
        return TransportStatus(
            connected=bool(data.get("connected")),
            raw={
                "smartphoneConnected": bool(data.get("smartphoneConnected")),
                "session": data.get("session"),
                "error": data.get("error"),
            },
        )

    async def request_pairing_artifact(self) -> PairingArtifact | None:
        try:
            image = await self._fetch_pairing_image()
        except TransportError as e:
            logger.debug(f"[gateway:{self._instance_id}] Pairing image unavailable: {e}")
            image = None
        if image:
            return PairingArtifact(image=image)

        response = await self._request("GET", "/qr-code")
        code = self._json(response).get("value")
        if not code:
            return None
        return PairingArtifact(code=str(code))

    async def _fetch_pairing_image(self) -> str | None:
        response = await self._request("GET", "/qr-code/image")
        if "application/json" in response.headers.get("content-type", ""):
            value = self._json(response).get("value")
            if not value:
                return None
            value = str(value)
            return value if value.startswith("data:") else f"data:image/png;base64,{value}"
        if not response.content:
            return None
        return f"data:image/png;base64,{base64.b64encode(response.content).decode('ascii')}"

    async def disconnect(self) -> None:
        await self._request("POST", "/disconnect")
        logger.info(f"[gateway:{self._instance_id}] Disconnected")

    async def restart(self) -> None:
        await self._request("POST", "/restart")
        logger.info(f"[gateway:{self._instance_id}] Restart requested")

    # ==================== Sends ====================

    async def send_text(self, target: str, text: str) -> SendResult:
        return await self._send("/send-text", target, {"message": text})

    async def send_image(self, target: str, url: str, caption: str | None = None) -> SendResult:
        return await self._send("/send-image", target, {"image": url, "caption": caption or ""})

    async def send_audio(self, target: str, url: str) -> SendResult:
        return await self._send("/send-audio", target, {"audio": url})

    async def send_document(
        self, target: str, url: str, filename: str | None = None
    ) -> SendResult:
        return await self._send(
            "/send-document/url",
            target,
            {"document": url, "fileName": filename or "document"},
        )

    async def _send(self, path: str, target: str, body: dict[str, Any]) -> SendResult:
        try:
            phone = normalize_target(target, self._country_code)
        except ValueError as e:
            return SendResult.failed(str(e), ErrorCode.INVALID_TARGET)

        try:
            response = await self._request("POST", path, json={"phone": phone, **body})
        except TransportError as e:
            logger.error(f"[gateway:{self._instance_id}] Send failed on {path}: {e}")
            return SendResult.failed(str(e.args[0]), e.code)

        data = self._json(response)
        error = data.get("error")
        if error:
            code = (
                ErrorCode.NOT_CONNECTED
                if _mentions_disconnect(str(error))
                else ErrorCode.TRANSPORT_UNREACHABLE
            )
            return SendResult.failed(str(error), code)

        message_id = data.get("messageId") or data.get("zapiMessageId")
        logger.info(f"[gateway:{self._instance_id}] Sent via {path}")
        return SendResult(success=True, message_id=message_id)


def _mentions_disconnect(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in _NOT_CONNECTED_MARKERS)


def create_gateway_factory(
    base_url: str = DEFAULT_BASE_URL,
    client_token: str | None = None,
    country_code: str | None = None,
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Callable[[str, InstanceRecord, NamespacedCredentials], GatewayTransport]:
    """
    Build a family factory for the transport registry.

    Per-instance addressing comes from the instance record; the client
    token can be overridden per instance.
    """

    def factory(
        instance_id: str,
        record: InstanceRecord,
        credentials: NamespacedCredentials,
    ) -> GatewayTransport:
        if record.gateway is None:
            raise ValueError(f"Instance {instance_id} has no gateway settings")
        override = record.gateway.client_token
        return GatewayTransport(
            instance_id=instance_id,
            gateway_instance_id=record.gateway.instance_id,
            token=record.gateway.token.get_secret_value(),
            base_url=base_url,
            client_token=override.get_secret_value() if override else client_token,
            country_code=country_code,
            timeout=timeout,
            transport=transport,
        )

    return factory
