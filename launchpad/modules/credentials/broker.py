import re
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, SecretStr

from launchpad.core.errors import CredentialError

logger = logging.getLogger(__name__)

SESSION_DURATION_SECONDS = 3600
_SESSION_LABEL_INVALID = re.compile(r"[^\w+=,.@-]")


class AssumedCredentials(BaseModel):
    """Short-lived credentials for one operation. Secrets never render in repr or logs."""

    access_key_id: str
    secret_access_key: SecretStr
    session_token: SecretStr
    expiration: Optional[datetime] = None
    role_arn: str

    def as_env(self, account_id: str, region: str) -> Dict[str, str]:
        """Environment variables for CDK / npm subprocesses."""
        return {
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.secret_access_key.get_secret_value(),
            "AWS_SESSION_TOKEN": self.session_token.get_secret_value(),
            "AWS_REGION": region,
            "AWS_DEFAULT_REGION": region,
            "CDK_DEFAULT_ACCOUNT": account_id,
            "CDK_DEFAULT_REGION": region,
        }

    def client(self, service: str, region: str):
        return boto3.client(
            service,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key.get_secret_value(),
            aws_session_token=self.session_token.get_secret_value(),
            region_name=region,
        )


def role_arn_for(account_id: str, role_name: str) -> str:
    return f"arn:aws:iam::{account_id}:role/{role_name}"


def session_label(label: str) -> str:
    """Coerce a caller label into the STS RoleSessionName alphabet (2-64 chars)."""
    cleaned = _SESSION_LABEL_INVALID.sub("-", label)[:64]
    return cleaned if len(cleaned) >= 2 else f"launchpad-{cleaned}"[:64]


def _default_sts_client(region: str):
    return boto3.client("sts", region_name=region)


class CredentialBroker:
    """Exchanges (account, region, role, external id) for scoped STS credentials."""

    def __init__(self, sts_client_factory: Callable[[str], Any] = _default_sts_client):
        self._sts_client_factory = sts_client_factory

    async def assume(self, account_id: str, region: str, role_name: str,
                     external_id: str, label: str) -> AssumedCredentials:
        return await asyncio.to_thread(self.assume_sync, account_id, region, role_name, external_id, label)

    def assume_sync(self, account_id: str, region: str, role_name: str,
                    external_id: str, label: str) -> AssumedCredentials:
        """
        Perform one AssumeRole call.

        Failures are never retried: a wrong or stale external id will not
        correct itself.
        """
        role_arn = role_arn_for(account_id, role_name)
        logger.info(f"Assuming role {role_arn}")
        try:
            sts = self._sts_client_factory(region)
            response = sts.assume_role(
                RoleArn=role_arn,
                RoleSessionName=session_label(label),
                ExternalId=external_id,
                DurationSeconds=SESSION_DURATION_SECONDS,
            )
        except ClientError as e:
            message = e.response.get("Error", {}).get("Message") or str(e)
            logger.error(f"AssumeRole failed for {role_arn}: {message}")
            raise CredentialError(role_arn, message) from e
        except BotoCoreError as e:
            logger.error(f"AssumeRole failed for {role_arn}: {str(e)}")
            raise CredentialError(role_arn, str(e)) from e

        creds = response.get("Credentials") or {}
        access_key_id = creds.get("AccessKeyId")
        secret_access_key = creds.get("SecretAccessKey")
        session_token = creds.get("SessionToken")
        if not (access_key_id and secret_access_key and session_token):
            raise CredentialError(role_arn, "No credentials returned from AssumeRole")

        return AssumedCredentials(
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            session_token=session_token,
            expiration=creds.get("Expiration"),
            role_arn=role_arn,
        )
