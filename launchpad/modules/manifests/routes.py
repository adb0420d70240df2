from fastapi import APIRouter, Depends
from typing import List

from launchpad.core.dependencies import get_manifest_store
from launchpad.modules.manifests.schemas import AppSummary
from launchpad.modules.manifests.store import ManifestStore

router = APIRouter(tags=["apps"])


@router.get("/apps", response_model=List[AppSummary], response_model_exclude_none=True)
async def list_apps(store: ManifestStore = Depends(get_manifest_store)):
    """Generated apps, newest first."""
    return store.list()
