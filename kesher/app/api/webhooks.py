"""
Webhook subscription, test delivery, gateway callback and delivery log routes.

Gateway callbacks are acknowledged only after every subscriber delivery
for the event has completed.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from kesher.app.api.responses import respond
from kesher.app.dependencies import get_registry
from kesher.errors import ErrorCode, OperationResult
from kesher.registry import InstanceRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

# Shape of the "data" object subscribers receive for message events
FORWARDED_FORMAT: dict[str, str] = {
    "instanceId": "string - receiving instance",
    "messageId": "string - provider id, or msg-<epochMillis> when generatedId is true",
    "phone": "string - digits-only sender or group phone",
    "senderName": "string - display name, 'Unknown' when absent",
    "kind": "string - text/image/audio/video/document/sticker",
    "body": "string|null - text or caption",
    "mediaUrl": "string|null - media location",
    "mimeType": "string|null - media MIME type",
    "timestamp": "string - ISO-8601 UTC",
    "direction": "string - inbound",
    "isGroup": "boolean",
    "generatedId": "boolean",
}


class RegisterWebhookBody(BaseModel):
    url: str = Field(..., min_length=1)
    events: list[str] | None = None


@router.post("/instances/{instance_id}/webhooks")
async def register_webhook(
    instance_id: str,
    body: RegisterWebhookBody,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    result = await registry.register_webhook(instance_id, body.url, body.events)
    return respond(result, success_status=201)


@router.post("/instances/{instance_id}/webhooks/test")
async def send_test_event(
    instance_id: str,
    request: Request,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    """Normalize a sample callback (the body, or a built-in one) and deliver it."""
    payload = None
    if await request.body():
        try:
            payload = await request.json()
        except ValueError:
            return respond(OperationResult.fail(ErrorCode.INVALID_REQUEST, "Body must be JSON"))
        if not isinstance(payload, dict):
            return respond(
                OperationResult.fail(ErrorCode.INVALID_REQUEST, "Body must be an object")
            )
    return respond(await registry.send_test_event(instance_id, payload))


@router.get("/instances/{instance_id}/webhooks")
async def list_webhooks(
    instance_id: str,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    return respond(registry.list_webhooks(instance_id))


@router.delete("/instances/{instance_id}/webhooks/{webhook_id}")
async def remove_webhook(
    instance_id: str,
    webhook_id: str,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    return respond(await registry.remove_webhook(instance_id, webhook_id))


@router.post("/callbacks/{instance_id}")
async def gateway_callback(
    instance_id: str,
    request: Request,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    """Receive a gateway callback and relay it to the instance's subscribers."""
    try:
        payload = await request.json()
    except ValueError:
        return respond(OperationResult.fail(ErrorCode.INVALID_REQUEST, "Body must be JSON"))
    if not isinstance(payload, dict):
        return respond(OperationResult.fail(ErrorCode.INVALID_REQUEST, "Body must be an object"))

    logger.debug(f"[callbacks:{instance_id}] Received {payload.get('type') or payload.get('event')}")
    return respond(await registry.ingest_raw_event(instance_id, payload))


@router.get("/callbacks/{instance_id}")
async def describe_callback(
    instance_id: str,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    """Describe the callback endpoint and its message destinations."""
    result = registry.list_webhooks(instance_id)
    if not result.success:
        return respond(result)
    destinations = [w["url"] for w in result.data["webhooks"] if "message" in w["events"]]
    return respond(
        OperationResult.ok(
            instance_id=instance_id,
            active=True,
            destinations=destinations,
            forwarded_format=FORWARDED_FORMAT,
        )
    )


@router.get("/deliveries")
async def delivery_log(
    limit: int = 50,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    return respond(registry.delivery_log(limit))


@router.delete("/deliveries")
async def clear_delivery_log(registry: InstanceRegistry = Depends(get_registry)) -> JSONResponse:
    return respond(registry.clear_delivery_log())
