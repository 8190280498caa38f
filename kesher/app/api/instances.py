"""
Instance lifecycle routes.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, SecretStr

from kesher.app.api.responses import respond
from kesher.app.dependencies import get_registry
from kesher.config.schemas import GatewaySettings
from kesher.registry import InstanceRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/instances", tags=["instances"])


class GatewayBody(BaseModel):
    instance_id: str = Field(..., description="Gateway-side instance id")
    token: SecretStr
    client_token: SecretStr | None = None


class CreateInstanceBody(BaseModel):
    instance_id: str = Field(..., min_length=1)
    family: str = "embedded"
    gateway: GatewayBody | None = None


@router.post("")
async def create_instance(
    body: CreateInstanceBody,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    gateway = None
    if body.gateway is not None:
        gateway = GatewaySettings(
            instance_id=body.gateway.instance_id,
            token=body.gateway.token,
            client_token=body.gateway.client_token,
        )
    result = await registry.create(body.instance_id, family=body.family, gateway=gateway)
    return respond(result, success_status=201)


@router.get("")
async def list_instances(registry: InstanceRegistry = Depends(get_registry)) -> JSONResponse:
    return respond(registry.list_instances())


@router.get("/stats")
async def instance_stats(registry: InstanceRegistry = Depends(get_registry)) -> JSONResponse:
    return respond(registry.stats())


@router.get("/{instance_id}")
async def instance_status(
    instance_id: str,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    return respond(await registry.status(instance_id))


@router.get("/{instance_id}/pairing")
async def pairing_artifact(
    instance_id: str,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    return respond(await registry.pairing_artifact(instance_id))


@router.post("/{instance_id}/connect")
async def connect_instance(
    instance_id: str,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    return respond(await registry.connect(instance_id), success_status=202)


@router.post("/{instance_id}/disconnect")
async def disconnect_instance(
    instance_id: str,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    return respond(await registry.disconnect(instance_id))


@router.post("/{instance_id}/restart")
async def restart_instance(
    instance_id: str,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    return respond(await registry.restart(instance_id), success_status=202)


@router.post("/{instance_id}/force-reset")
async def force_reset_instance(
    instance_id: str,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    return respond(await registry.force_reset(instance_id), success_status=202)


@router.delete("/{instance_id}")
async def remove_instance(
    instance_id: str,
    wipe_credentials: bool = False,
    registry: InstanceRegistry = Depends(get_registry),
) -> JSONResponse:
    return respond(await registry.remove(instance_id, wipe_credentials=wipe_credentials))
