"""
Outbound message routes.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from kesher.app.api.responses import respond
from kesher.app.dependencies import get_registry
from kesher.registry import InstanceRegistry

router = APIRouter(prefix="/instances/{instance_id}/messages", tags=["messages"])


class TextBody(BaseModel):
    phone: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)


class ImageBody(BaseModel):
    phone: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    caption: str | None = None


class AudioBody(BaseModel):
    phone: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)


class DocumentBody(BaseModel):
    phone: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    filename: str | None = None


@router.post("/text")
async def send_text(
    instance_id: str,
    body: TextBody,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    return respond(await registry.send_text(instance_id, body.phone, body.text))


@router.post("/image")
async def send_image(
    instance_id: str,
    body: ImageBody,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    return respond(await registry.send_image(instance_id, body.phone, body.url, body.caption))


@router.post("/audio")
async def send_audio(
    instance_id: str,
    body: AudioBody,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    return respond(await registry.send_audio(instance_id, body.phone, body.url))


@router.post("/document")
async def send_document(
    instance_id: str,
    body: DocumentBody,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    return respond(
        await registry.send_document(instance_id, body.phone, body.url, body.filename)
    )


class BulkBody(BaseModel):
    phones: list[str] = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    delay: float | None = Field(None, ge=0, description="Seconds between sends")


@router.post("/bulk")
async def send_bulk(
    instance_id: str,
    body: BulkBody,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    """Broadcast one text to several phones; per-phone outcomes are in details."""
    return respond(await registry.send_bulk(instance_id, body.phones, body.text, body.delay))
