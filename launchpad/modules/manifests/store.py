import os
import json
import logging
import tempfile
import threading
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError as SchemaValidationError

from launchpad.core.errors import NotFoundError
from launchpad.core.schemas import utc_now
from launchpad.modules.generation.schemas import AppSpec
from launchpad.modules.manifests.schemas import (
    AppManifest, AppSummary, DeploymentResult, Environment
)

logger = logging.getLogger(__name__)

MANIFEST_DIR = ".launchpad"
MANIFEST_FILE = "manifest.json"


class ManifestStore:
    """
    One JSON manifest per generated app, at <work_dir>/<app_id>/.launchpad/manifest.json.

    Every mutation is a whole-file read-modify-write followed by an atomic
    replace. Writes from this process are serialized; writes from other
    processes are not coordinated.
    """

    def __init__(self, work_dir: str):
        self.work_dir = Path(work_dir)
        self._lock = threading.Lock()

    def manifest_path(self, app_id: str) -> Path:
        return self.work_dir / app_id / MANIFEST_DIR / MANIFEST_FILE

    def create(self, app_id: str, app_name: str, spec: AppSpec, account_id: str, region: str) -> AppManifest:
        """Create the manifest for a freshly materialized repository."""
        manifest = AppManifest(
            app_id=app_id,
            app_name=app_name,
            blueprint=spec.blueprint,
            spec=spec,
            account_id=account_id,
            region=region,
        )
        with self._lock:
            self._write(manifest)
        logger.info(f"Created manifest for app {app_id} ({app_name})")
        return manifest

    def get(self, app_id: str) -> Optional[AppManifest]:
        path = self.manifest_path(app_id)
        if not path.is_file():
            return None
        return self._read(path)

    def update(self, app_id: str, environment: Environment, result: DeploymentResult) -> AppManifest:
        """Replace the deployment entry for one environment with the latest run's result."""
        with self._lock:
            manifest = self._require(app_id)
            setattr(manifest.deployments, environment.value, result)
            manifest.updated_at = utc_now()
            self._write(manifest)
        logger.info(f"Recorded {result.status.value} {environment.value} deployment for app {app_id}")
        return manifest

    def remove_environment(self, app_id: str, environment: Environment) -> AppManifest:
        with self._lock:
            manifest = self._require(app_id)
            setattr(manifest.deployments, environment.value, None)
            manifest.updated_at = utc_now()
            self._write(manifest)
        logger.info(f"Removed {environment.value} deployment from app {app_id}")
        return manifest

    def list(self) -> List[AppSummary]:
        """Summaries of every app with a readable manifest, newest first."""
        if not self.work_dir.is_dir():
            return []
        summaries = []
        for entry in self.work_dir.iterdir():
            path = entry / MANIFEST_DIR / MANIFEST_FILE
            if not path.is_file():
                continue
            try:
                manifest = self._read(path)
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable manifest {path}: {e}")
                continue
            dev = manifest.deployments.dev
            prod = manifest.deployments.prod
            summaries.append(AppSummary(
                app_id=manifest.app_id,
                app_name=manifest.app_name,
                blueprint=manifest.blueprint,
                dev_url=dev.preview_url if dev else None,
                prod_url=prod.prod_url if prod else None,
                created_at=manifest.created_at,
            ))
        summaries.sort(key=lambda s: s.created_at, reverse=True)
        return summaries

    def _require(self, app_id: str) -> AppManifest:
        manifest = self.get(app_id)
        if manifest is None:
            raise NotFoundError(f"App {app_id} not found")
        return manifest

    def _read(self, path: Path) -> AppManifest:
        try:
            with open(path, "r") as f:
                return AppManifest.model_validate(json.load(f))
        except SchemaValidationError as e:
            raise ValueError(f"Invalid manifest {path}: {e}") from e

    def _write(self, manifest: AppManifest):
        path = self.manifest_path(manifest.app_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".manifest-", suffix=".json", dir=path.parent)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(manifest.to_json_dict(), f, indent=2)
            os.replace(tmp_path, path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
