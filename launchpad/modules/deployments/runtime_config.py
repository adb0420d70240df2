import json
import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from launchpad.modules.credentials.broker import AssumedCredentials

logger = logging.getLogger(__name__)

CONFIG_KEY = "config.json"
NO_CACHE = "no-cache, no-store, must-revalidate"


def build_runtime_config(api_url: Optional[str], environment: str) -> Dict[str, str]:
    return {"apiUrl": api_url or "", "environment": environment}


def _default_client_factory(credentials: AssumedCredentials, service: str, region: str):
    return credentials.client(service, region)


class RuntimeConfigPublisher:
    """Writes config.json into the deployed web bucket so the front end finds its API without a rebuild."""

    def __init__(self, client_factory: Callable[[AssumedCredentials, str, str], Any] = _default_client_factory):
        self._client_factory = client_factory

    async def publish(self, credentials: AssumedCredentials, region: str, bucket: str,
                      api_url: Optional[str], environment: str) -> Dict[str, str]:
        return await asyncio.to_thread(self._publish, credentials, region, bucket, api_url, environment)

    def _publish(self, credentials: AssumedCredentials, region: str, bucket: str,
                 api_url: Optional[str], environment: str) -> Dict[str, str]:
        config = build_runtime_config(api_url, environment)
        s3 = self._client_factory(credentials, "s3", region)
        s3.put_object(
            Bucket=bucket,
            Key=CONFIG_KEY,
            Body=json.dumps(config).encode(),
            ContentType="application/json",
            CacheControl=NO_CACHE,
        )
        logger.info(f"Published runtime config to s3://{bucket}/{CONFIG_KEY}")
        return config
