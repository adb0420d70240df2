from fastapi import APIRouter, Depends, Query
from typing import Optional

from launchpad.core.dependencies import get_connection_service, get_tenant_store
from launchpad.core.errors import ValidationError
from launchpad.modules.deployments.schemas import REGION_PATTERN
from launchpad.modules.tenants.connect import ConnectionService
from launchpad.modules.tenants.schemas import (
    CheckConnectionRequest, CheckConnectionResponse, ConnectUrlResponse, InitResponse
)
from launchpad.modules.tenants.service import TenantStore

router = APIRouter(tags=["tenants"])


@router.get("/init", response_model=InitResponse, response_model_by_alias=True)
async def init(
    tenants: TenantStore = Depends(get_tenant_store),
    service: ConnectionService = Depends(get_connection_service),
):
    """Tenant identity and, when the control-plane account is configured, a live check of its connection."""
    tenant = tenants.get_or_create()
    config = service.settings
    account_id = config.control_plane_account_id
    connection = None
    if account_id:
        connection = await service.verify_connection(account_id, config.default_region)
    return InitResponse(
        tenant_id=tenant.tenant_id,
        default_region=config.default_region,
        role_name=config.role_name,
        control_plane_account_id=account_id,
        connected=bool(connection and connection.ok),
        role_arn=connection.role_arn if connection else None,
    )


@router.get("/connect-url", response_model=ConnectUrlResponse, response_model_by_alias=True)
async def connect_url(
    region: Optional[str] = Query(default=None),
    service: ConnectionService = Depends(get_connection_service),
):
    """One-click CloudFormation quick-create link for the deployer role."""
    if region is not None and not REGION_PATTERN.fullmatch(region):
        raise ValidationError("Invalid AWS region format", details={"region": region})
    return ConnectUrlResponse(url=service.connect_url(region))


@router.post("/check", response_model=CheckConnectionResponse, response_model_by_alias=True,
             response_model_exclude_none=True)
async def check_connection(
    request: CheckConnectionRequest,
    service: ConnectionService = Depends(get_connection_service),
):
    return await service.verify_connection(request.account_id, request.region)
