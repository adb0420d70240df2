from fastapi import APIRouter, Depends, BackgroundTasks

from launchpad.core.dependencies import get_deployment_service
from launchpad.modules.deployments.schemas import (
    DestroyRequest, DestroyResponse, GenerateRequest, PublishRequest, PublishResponse
)
from launchpad.modules.deployments.service import DeploymentService
from launchpad.modules.jobs.schemas import JobAccepted

router = APIRouter(tags=["deployments"])


@router.post("/generate", response_model=JobAccepted, status_code=202)
async def generate(
    request: GenerateRequest,
    background_tasks: BackgroundTasks,
    service: DeploymentService = Depends(get_deployment_service),
):
    """
    Start generation + dev deployment of a new app.
    Returns immediately with a job id; poll /generate-status/{jobId} for progress.
    """
    job_id = service.start_generation()
    background_tasks.add_task(service.run_generation, job_id, request)
    return JobAccepted(job_id=job_id)


@router.post("/publish", response_model=PublishResponse)
async def publish(
    request: PublishRequest,
    service: DeploymentService = Depends(get_deployment_service),
):
    """Deploy an existing app's prod stack and wait for it to finish."""
    return await service.publish(request)


@router.post("/destroy", response_model=DestroyResponse, response_model_exclude_none=True)
async def destroy(
    request: DestroyRequest,
    service: DeploymentService = Depends(get_deployment_service),
):
    return await service.destroy(request)
