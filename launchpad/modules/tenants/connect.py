"""
Cross-account connection setup.

The target account owner launches a small CloudFormation stack that creates
the deployer role trusting the control-plane account, conditioned on this
tenant's external id. These helpers build the one-click quick-create URL,
verify the trust by attempting an exchange, and optionally create the stack
in the control-plane account itself on startup.
"""
import json
import asyncio
import logging
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from launchpad.config import Settings
from launchpad.core.errors import CredentialError
from launchpad.modules.credentials.broker import CredentialBroker, role_arn_for
from launchpad.modules.tenants.schemas import CheckConnectionResponse
from launchpad.modules.tenants.service import TenantStore

logger = logging.getLogger(__name__)

HEALTHY_STACK_STATUSES = {"CREATE_COMPLETE", "UPDATE_COMPLETE"}


def build_connect_template() -> Dict[str, Any]:
    return {
        "AWSTemplateFormatVersion": "2010-09-09",
        "Description": "Deployer role assumed by the Launchpad control plane",
        "Parameters": {
            "ControlPlaneAccountId": {"Type": "String"},
            "ExternalId": {"Type": "String", "NoEcho": True},
            "RoleName": {"Type": "String"},
        },
        "Resources": {
            "DeployerRole": {
                "Type": "AWS::IAM::Role",
                "Properties": {
                    "RoleName": {"Ref": "RoleName"},
                    "MaxSessionDuration": 3600,
                    "AssumeRolePolicyDocument": {
                        "Version": "2012-10-17",
                        "Statement": [{
                            "Effect": "Allow",
                            "Principal": {"AWS": {"Fn::Sub": "arn:aws:iam::${ControlPlaneAccountId}:root"}},
                            "Action": "sts:AssumeRole",
                            "Condition": {"StringEquals": {"sts:ExternalId": {"Ref": "ExternalId"}}},
                        }],
                    },
                    "ManagedPolicyArns": ["arn:aws:iam::aws:policy/AdministratorAccess"],
                },
            },
        },
        "Outputs": {"RoleArn": {"Value": {"Fn::GetAtt": ["DeployerRole", "Arn"]}}},
    }


def _stack_parameters(control_plane_account_id: str, external_id: str, role_name: str):
    return [
        {"ParameterKey": "ControlPlaneAccountId", "ParameterValue": control_plane_account_id},
        {"ParameterKey": "ExternalId", "ParameterValue": external_id},
        {"ParameterKey": "RoleName", "ParameterValue": role_name},
    ]


def build_quick_create_url(region: str, external_id: str, control_plane_account_id: str,
                           role_name: str, stack_name: str) -> str:
    base_url = f"https://{region}.console.aws.amazon.com/cloudformation/home"
    query = urlencode({
        "region": region,
        "stackName": stack_name,
        "templateBody": json.dumps(build_connect_template()),
        "param_0": json.dumps(_stack_parameters(control_plane_account_id, external_id, role_name)),
    })
    return f"{base_url}#/stacks/quickcreate?{query}"


def _default_cfn_client(region: str):
    return boto3.client("cloudformation", region_name=region)


class ConnectionService:
    def __init__(self, settings: Settings, tenants: TenantStore, broker: CredentialBroker,
                 cfn_client_factory: Callable[[str], Any] = _default_cfn_client):
        self.settings = settings
        self.tenants = tenants
        self.broker = broker
        self._cfn_client_factory = cfn_client_factory

    def connect_url(self, region: Optional[str] = None) -> str:
        region = region or self.settings.default_region
        tenant = self.tenants.get_or_create()
        url = build_quick_create_url(
            region,
            tenant.external_id,
            self.settings.control_plane_account_id or "",
            self.settings.role_name,
            self.settings.connect_stack_name,
        )
        logger.info(f"Generated quick-create URL for region: {region}")
        return url

    async def verify_connection(self, account_id: str, region: Optional[str] = None) -> CheckConnectionResponse:
        """Attempt an exchange; report ok/error instead of raising."""
        region = region or self.settings.default_region
        tenant = self.tenants.get_or_create()
        role_arn = role_arn_for(account_id, self.settings.role_name)
        logger.info(f"Verifying connection to {account_id} in {region}")
        try:
            await self.broker.assume(account_id, region, self.settings.role_name,
                                     tenant.external_id, "launchpad-verification")
        except CredentialError as e:
            logger.warning(f"Verification failed: {e.message}")
            return CheckConnectionResponse(ok=False, error=e.message)
        self.tenants.record_connection(account_id, region, role_arn)
        logger.info(f"Successfully verified connection to {role_arn}")
        return CheckConnectionResponse(ok=True, role_arn=role_arn)

    async def ensure_connection_stack(self) -> CheckConnectionResponse:
        """Create the deployer stack in the control-plane account if it is missing, then verify."""
        account_id = self.settings.control_plane_account_id
        if not account_id:
            return CheckConnectionResponse(ok=False, error="control_plane_account_id is not configured")
        try:
            await asyncio.to_thread(self._ensure_stack_sync)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to ensure connection stack exists: {str(e)}")
            return CheckConnectionResponse(ok=False, error=f"Failed to create stack: {str(e)}")
        return await self.verify_connection(account_id, self.settings.default_region)

    def _ensure_stack_sync(self):
        region = self.settings.default_region
        stack_name = self.settings.connect_stack_name
        cfn = self._cfn_client_factory(region)
        try:
            stacks = cfn.describe_stacks(StackName=stack_name).get("Stacks", [])
            status = stacks[0]["StackStatus"] if stacks else None
            if status in HEALTHY_STACK_STATUSES:
                logger.info(f"Stack {stack_name} already exists with status: {status}")
                return
        except ClientError as e:
            if "does not exist" not in e.response.get("Error", {}).get("Message", ""):
                raise
            logger.info(f"Stack {stack_name} does not exist, creating...")

        tenant = self.tenants.get_or_create()
        cfn.create_stack(
            StackName=stack_name,
            TemplateBody=json.dumps(build_connect_template()),
            Parameters=_stack_parameters(self.settings.control_plane_account_id, tenant.external_id,
                                         self.settings.role_name),
            Capabilities=["CAPABILITY_NAMED_IAM"],
        )
        logger.info("Waiting for stack creation to complete...")
        cfn.get_waiter("stack_create_complete").wait(
            StackName=stack_name,
            WaiterConfig={"Delay": 10, "MaxAttempts": 30},
        )
        logger.info(f"Stack {stack_name} created")
