import re
import uuid
from pydantic import Field, field_validator
from typing import Optional, Dict, Any

from launchpad.core.schemas import CamelModel
from launchpad.modules.generation.schemas import AppSpec, Blueprint
from launchpad.modules.manifests.schemas import Environment

ACCOUNT_ID_PATTERN = re.compile(r"[0-9]{12}")
REGION_PATTERN = re.compile(r"[a-z]{2}-[a-z]+-[0-9]")
APP_NAME_PATTERN = re.compile(r"[a-zA-Z][a-zA-Z0-9-]*")


def validate_account_id(value: str) -> str:
    if not ACCOUNT_ID_PATTERN.fullmatch(value):
        raise ValueError("AWS Account ID must be 12 digits")
    return value


def validate_region(value: str) -> str:
    if not REGION_PATTERN.fullmatch(value):
        raise ValueError("Invalid AWS region format")
    return value


def validate_confirm(value: bool) -> bool:
    if value is not True:
        raise ValueError("confirm must be true")
    return value


def validate_app_id(value: str) -> str:
    try:
        uuid.UUID(value)
    except ValueError:
        raise ValueError("appId must be a UUID")
    return value


def sanitize_app_name(name: str) -> str:
    """Make an app name safe for CloudFormation stack names."""
    cleaned = re.sub(r"[^a-zA-Z0-9-]", "-", name)
    cleaned = re.sub(r"-+", "-", cleaned)
    return cleaned.strip("-")


class GenerateRequest(CamelModel):
    account_id: str
    region: str
    blueprint: Blueprint
    prompt: str = Field(min_length=10, max_length=5000)
    app_name: str = Field(min_length=1, max_length=64)

    check_account = field_validator("account_id")(validate_account_id)
    check_region = field_validator("region")(validate_region)

    @field_validator("app_name")
    @classmethod
    def check_app_name(cls, value: str) -> str:
        if not APP_NAME_PATTERN.fullmatch(value):
            raise ValueError("App name must start with a letter and contain only alphanumeric characters and hyphens")
        return value


class PublishRequest(CamelModel):
    account_id: str
    region: str
    app_id: str
    confirm: bool

    check_account = field_validator("account_id")(validate_account_id)
    check_region = field_validator("region")(validate_region)
    check_app_id = field_validator("app_id")(validate_app_id)
    check_confirm = field_validator("confirm")(validate_confirm)


class DestroyRequest(CamelModel):
    account_id: str
    region: str
    app_id: str
    env: Environment
    confirm: bool

    check_account = field_validator("account_id")(validate_account_id)
    check_region = field_validator("region")(validate_region)
    check_app_id = field_validator("app_id")(validate_app_id)
    check_confirm = field_validator("confirm")(validate_confirm)


class GenerateResult(CamelModel):
    app_id: str
    spec: AppSpec
    preview_url: str
    stack_name: str
    outputs: Dict[str, str] = Field(default_factory=dict)


class PublishResponse(CamelModel):
    job_id: str
    prod_url: str
    stack_name: str
    outputs: Dict[str, Any] = Field(default_factory=dict)


class DestroyResponse(CamelModel):
    ok: bool
    message: str
    job_id: Optional[str] = None
