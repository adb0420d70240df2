from fastapi import APIRouter, Depends

from launchpad.core.dependencies import get_tracker
from launchpad.core.errors import NotFoundError
from launchpad.modules.jobs.schemas import JobStatus
from launchpad.modules.jobs.tracker import JobTracker

router = APIRouter(tags=["jobs"])


@router.get("/generate-status/{job_id}", response_model=JobStatus, response_model_exclude_none=True)
async def generate_status(job_id: str, tracker: JobTracker = Depends(get_tracker)):
    """Poll a job. Unknown and reclaimed jobs are both reported as not found."""
    status = tracker.read(job_id)
    if status is None:
        raise NotFoundError("Job not found", details={"jobId": job_id})
    return status
