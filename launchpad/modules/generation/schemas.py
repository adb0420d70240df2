from enum import Enum
from pydantic import Field
from typing import Optional, Dict, List, Any

from launchpad.core.schemas import CamelModel


class Blueprint(str, Enum):
    SERVERLESS = "serverless"
    CONTAINERS = "containers"


class PageSpec(CamelModel):
    route: str
    components: List[str] = Field(default_factory=list)
    title: Optional[str] = None


class ApiEndpointSpec(CamelModel):
    path: str
    method: str
    handler: str
    description: Optional[str] = None
    requires_auth: bool = False


class AttributeSpec(CamelModel):
    name: str
    type: str = "string"
    required: bool = False


class DataModelSpec(CamelModel):
    table: str
    partition_key: str
    sort_key: Optional[str] = None
    attributes: List[AttributeSpec] = Field(default_factory=list)
    secondary_indexes: List[Any] = Field(default_factory=list)


class EnvVarSpec(CamelModel):
    name: str
    description: Optional[str] = None
    required: bool = False


class GeneratedCode(CamelModel):
    pages: Dict[str, str] = Field(default_factory=dict)
    components: Dict[str, str] = Field(default_factory=dict)
    lib: Dict[str, str] = Field(default_factory=dict)


class AppSpec(CamelModel):
    name: str
    blueprint: Blueprint
    description: Optional[str] = None
    pages: List[PageSpec] = Field(default_factory=list)
    api: List[ApiEndpointSpec] = Field(default_factory=list)
    data_model: List[DataModelSpec] = Field(default_factory=list)
    auth: bool = False
    env_vars: List[EnvVarSpec] = Field(default_factory=list)
    custom_domain: bool = False
    generated_code: Optional[GeneratedCode] = None
