from datetime import datetime
from pydantic import Field, field_validator
from typing import Optional

from launchpad.core.schemas import CamelModel, utc_now
from launchpad.modules.deployments.schemas import validate_account_id, validate_region


class TenantConfig(CamelModel):
    tenant_id: str
    external_id: str


class ConnectionRecord(CamelModel):
    tenant_id: str
    account_id: str
    region: str
    role_arn: str
    verified_at: datetime = Field(default_factory=utc_now)


class InitResponse(CamelModel):
    tenant_id: str
    default_region: str
    role_name: str
    control_plane_account_id: Optional[str] = None
    connected: bool
    role_arn: Optional[str] = None


class ConnectUrlResponse(CamelModel):
    url: str


class CheckConnectionRequest(CamelModel):
    account_id: str
    region: Optional[str] = None

    check_account = field_validator("account_id")(validate_account_id)

    @field_validator("region")
    @classmethod
    def check_region(cls, value: Optional[str]) -> Optional[str]:
        return validate_region(value) if value is not None else None


class CheckConnectionResponse(CamelModel):
    ok: bool
    role_arn: Optional[str] = None
    error: Optional[str] = None
