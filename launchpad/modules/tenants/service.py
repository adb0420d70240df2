import os
import json
import uuid
import logging
import threading
from pathlib import Path
from typing import Optional

from launchpad.modules.tenants.schemas import TenantConfig, ConnectionRecord

logger = logging.getLogger(__name__)

TENANT_FILE = "tenant.json"


class TenantStore:
    """
    Durable identity of this installation.

    The tenant record is created on first use and never changes afterwards.
    Its external id binds the cross-account trust policy and is only ever
    handed to the credential broker and the connection-setup URL.
    """

    def __init__(self, data_dir: str):
        self.data_dir = Path(data_dir)
        self._lock = threading.Lock()
        self._cached: Optional[TenantConfig] = None

    @property
    def tenant_path(self) -> Path:
        return self.data_dir / TENANT_FILE

    def get_or_create(self) -> TenantConfig:
        with self._lock:
            if self._cached is not None:
                return self._cached
            self.data_dir.mkdir(parents=True, exist_ok=True)
            if self.tenant_path.is_file():
                with open(self.tenant_path, "r") as f:
                    self._cached = TenantConfig.model_validate(json.load(f))
                return self._cached

            config = TenantConfig(tenant_id=str(uuid.uuid4()), external_id=str(uuid.uuid4()))
            # O_EXCL so a concurrent first start cannot overwrite an existing identity
            fd = os.open(self.tenant_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w") as f:
                json.dump(config.to_json_dict(), f, indent=2)
            logger.info(f"Created new tenant: {config.tenant_id}")
            self._cached = config
            return config

    def record_connection(self, account_id: str, region: str, role_arn: str) -> ConnectionRecord:
        """Persist a verified connection (no credentials, no external id)."""
        tenant = self.get_or_create()
        record = ConnectionRecord(
            tenant_id=tenant.tenant_id,
            account_id=account_id,
            region=region,
            role_arn=role_arn,
        )
        path = self.data_dir / f"connection-{account_id}.json"
        with open(path, "w") as f:
            json.dump(record.to_json_dict(), f, indent=2)
        return record

    def get_connection(self, account_id: str) -> Optional[ConnectionRecord]:
        path = self.data_dir / f"connection-{account_id}.json"
        if not path.is_file():
            return None
        with open(path, "r") as f:
            return ConnectionRecord.model_validate(json.load(f))
