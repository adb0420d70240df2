from datetime import datetime
from enum import Enum
from pydantic import Field
from typing import Optional, Dict

from launchpad.core.schemas import CamelModel, utc_now
from launchpad.modules.generation.schemas import AppSpec, Blueprint


class Environment(str, Enum):
    DEV = "dev"
    PROD = "prod"

    @property
    def stack_suffix(self) -> str:
        return "Dev" if self is Environment.DEV else "Prod"


class DeploymentStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class DeploymentResult(CamelModel):
    stack_name: str
    environment: Environment
    outputs: Dict[str, str] = Field(default_factory=dict)
    preview_url: Optional[str] = None
    prod_url: Optional[str] = None
    api_url: Optional[str] = None
    web_bucket: Optional[str] = None
    status: DeploymentStatus
    error: Optional[str] = None
    error_kind: Optional[str] = None
    completed_at: datetime = Field(default_factory=utc_now)

    @property
    def succeeded(self) -> bool:
        return self.status == DeploymentStatus.SUCCESS


class Deployments(CamelModel):
    dev: Optional[DeploymentResult] = None
    prod: Optional[DeploymentResult] = None

    def get(self, environment: Environment) -> Optional[DeploymentResult]:
        return getattr(self, environment.value)


class AppManifest(CamelModel):
    app_id: str
    app_name: str
    blueprint: Blueprint
    spec: AppSpec
    account_id: str
    region: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    deployments: Deployments = Field(default_factory=Deployments)


class AppSummary(CamelModel):
    app_id: str
    app_name: str
    blueprint: Blueprint
    dev_url: Optional[str] = None
    prod_url: Optional[str] = None
    created_at: datetime
