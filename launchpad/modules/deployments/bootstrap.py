"""
Bootstrap-state detection.

The structured check (describe the CDKToolkit stack) runs first. The
output-pattern heuristic is only consulted when `cdk bootstrap` itself exits
non-zero, and lives in is_already_bootstrapped() alone so it can be swapped.
"""
import re
import asyncio
import logging
from typing import Any, Callable

from botocore.exceptions import BotoCoreError, ClientError

from launchpad.modules.credentials.broker import AssumedCredentials

logger = logging.getLogger(__name__)

TOOLKIT_STACK_NAME = "CDKToolkit"
_ALREADY_BOOTSTRAPPED = re.compile(r"already\s+bootstrapped|environment\s+.*\s+bootstrapped\s+\(no changes\)", re.IGNORECASE)


def is_already_bootstrapped(output: str) -> bool:
    return bool(_ALREADY_BOOTSTRAPPED.search(output or ""))


def toolkit_ready(stack_status: str) -> bool:
    return stack_status.endswith("_COMPLETE") and not stack_status.startswith(("DELETE", "ROLLBACK"))


def _default_client_factory(credentials: AssumedCredentials, service: str, region: str):
    return credentials.client(service, region)


class BootstrapProbe:
    def __init__(self, client_factory: Callable[[AssumedCredentials, str, str], Any] = _default_client_factory):
        self._client_factory = client_factory

    async def is_bootstrapped(self, credentials: AssumedCredentials, region: str) -> bool:
        return await asyncio.to_thread(self._check, credentials, region)

    def _check(self, credentials: AssumedCredentials, region: str) -> bool:
        """True only on positive evidence; any lookup failure means "run bootstrap"."""
        try:
            cfn = self._client_factory(credentials, "cloudformation", region)
            stacks = cfn.describe_stacks(StackName=TOOLKIT_STACK_NAME).get("Stacks", [])
        except ClientError as e:
            logger.info(f"No usable {TOOLKIT_STACK_NAME} stack in {region}: {e.response.get('Error', {}).get('Message', e)}")
            return False
        except BotoCoreError as e:
            logger.warning(f"Bootstrap pre-check failed in {region}: {str(e)}")
            return False
        if not stacks:
            return False
        status = stacks[0].get("StackStatus", "")
        logger.info(f"{TOOLKIT_STACK_NAME} status in {region}: {status}")
        return toolkit_ready(status)
