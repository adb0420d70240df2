import time
import uuid
import asyncio
import logging
from typing import Optional, Tuple

from launchpad.config import Settings
from launchpad.core.errors import (
    LaunchpadError, BuildError, InfrastructureError, NotFoundError, ValidationError
)
from launchpad.modules.credentials.broker import AssumedCredentials, CredentialBroker
from launchpad.modules.deployments.locks import RunLocks
from launchpad.modules.deployments.pipeline import DeployPipeline, stack_name_for
from launchpad.modules.deployments.schemas import (
    DestroyRequest, DestroyResponse, GenerateRequest, GenerateResult,
    PublishRequest, PublishResponse, sanitize_app_name
)
from launchpad.modules.generation.gateway import GenerationGateway
from launchpad.modules.generation.materializer import RepositoryMaterializer
from launchpad.modules.jobs.events import ProgressChannel
from launchpad.modules.jobs.tracker import JobTracker
from launchpad.modules.manifests.schemas import AppManifest, DeploymentResult, Environment
from launchpad.modules.manifests.store import ManifestStore
from launchpad.modules.tenants.service import TenantStore

logger = logging.getLogger(__name__)

INTERNAL_ERROR_KIND = "InternalError"
_STAGE_ERRORS = {cls.__name__: cls for cls in (BuildError, InfrastructureError)}


def _raise_for_result(result: DeploymentResult):
    if not result.succeeded:
        error_cls = _STAGE_ERRORS.get(result.error_kind, InfrastructureError)
        raise error_cls(result.error or "Deployment failed")


class DeploymentService:
    """Generate, publish and destroy operations over the pipeline, tracker and stores."""

    def __init__(
        self,
        settings: Settings,
        tenants: TenantStore,
        broker: CredentialBroker,
        gateway: GenerationGateway,
        materializer: RepositoryMaterializer,
        pipeline: DeployPipeline,
        tracker: JobTracker,
        manifests: ManifestStore,
        locks: RunLocks,
    ):
        self.settings = settings
        self.tenants = tenants
        self.broker = broker
        self.gateway = gateway
        self.materializer = materializer
        self.pipeline = pipeline
        self.tracker = tracker
        self.manifests = manifests
        self.locks = locks

    async def _assume(self, account_id: str, region: str, label: str,
                      progress: ProgressChannel) -> AssumedCredentials:
        progress.emit("credentials", f"Assuming {self.settings.role_name} in {account_id}")
        tenant = self.tenants.get_or_create()
        credentials = await self.broker.assume(account_id, region, self.settings.role_name,
                                               tenant.external_id, label)
        progress.emit("credentials", "Credentials acquired", completed=True)
        return credentials

    def _start_job(self, label: str) -> Tuple[str, ProgressChannel, "asyncio.Task[int]"]:
        job_id = str(uuid.uuid4())
        self.tracker.create(job_id)
        channel = ProgressChannel(label=f"{label} {job_id[:8]}")
        drain = asyncio.create_task(channel.drain_into(self.tracker, job_id))
        return job_id, channel, drain

    async def _finish_job(self, job_id: str, channel: ProgressChannel, drain: "asyncio.Task[int]",
                          result: Optional[dict] = None, error: Optional[Exception] = None):
        """Terminal state is set only after every emitted update has reached the tracker."""
        channel.close()
        await drain
        if error is None:
            self.tracker.complete(job_id, result)
        elif isinstance(error, LaunchpadError):
            self.tracker.fail(job_id, error.message, error.kind)
        else:
            self.tracker.fail(job_id, str(error), INTERNAL_ERROR_KIND)

    def _require_manifest(self, app_id: str, account_id: str) -> AppManifest:
        manifest = self.manifests.get(app_id)
        if manifest is None:
            raise NotFoundError(f"App {app_id} not found")
        if manifest.account_id != account_id:
            raise ValidationError(
                f"App {app_id} belongs to account {manifest.account_id}, not {account_id}",
                details={"appId": app_id},
            )
        return manifest

    # ------------------------------------------------------------------
    # Generate
    # ------------------------------------------------------------------
    def start_generation(self) -> str:
        """Register a generation job; the caller schedules run_generation in the background."""
        job_id = str(uuid.uuid4())
        self.tracker.create(job_id)
        logger.info(f"Accepted generation job {job_id}")
        return job_id

    async def run_generation(self, job_id: str, request: GenerateRequest):
        channel = ProgressChannel(label=f"generate {job_id[:8]}")
        drain = asyncio.create_task(channel.drain_into(self.tracker, job_id))
        try:
            result = await self._generate(job_id, request, channel)
        except LaunchpadError as e:
            logger.error(f"Generation job {job_id} failed: {e.message}")
            await self._finish_job(job_id, channel, drain, error=e)
        except Exception as e:
            logger.exception(f"Generation job {job_id} failed unexpectedly")
            await self._finish_job(job_id, channel, drain, error=e)
        else:
            await self._finish_job(job_id, channel, drain, result=result.to_json_dict())
            logger.info(f"Generation job {job_id} completed for app {result.app_id}")

    async def _generate(self, job_id: str, request: GenerateRequest, progress: ProgressChannel) -> GenerateResult:
        app_name = sanitize_app_name(request.app_name)
        if not app_name:
            raise ValidationError("App name is empty after sanitization")

        credentials = await self._assume(request.account_id, request.region,
                                         f"launchpad-generate-{int(time.time())}", progress)
        spec = await self.gateway.generate(request.prompt, request.blueprint, credentials, progress)

        app_id = str(uuid.uuid4())
        progress.emit("render", f"Rendering repository for {app_name}")
        repo = await self.materializer.render(app_id, spec, request.account_id, request.region, app_name)
        await asyncio.to_thread(self.manifests.create, app_id, app_name, spec, request.account_id, request.region)
        progress.emit("render", f"Repository ready for app {app_id}", completed=True)

        # Fresh credentials: generation may have used most of the first session
        credentials = await self._assume(request.account_id, request.region,
                                         f"launchpad-deploy-{app_id}", progress)
        async with self.locks.hold(app_id, Environment.DEV):
            result = await self.pipeline.deploy(
                str(repo), app_name, Environment.DEV, request.account_id, request.region,
                credentials, progress, run_id=job_id,
            )
            await asyncio.to_thread(self.manifests.update, app_id, Environment.DEV, result)
        _raise_for_result(result)

        return GenerateResult(
            app_id=app_id,
            spec=spec,
            preview_url=result.preview_url or "",
            stack_name=result.stack_name,
            outputs=result.outputs,
        )

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------
    async def publish(self, request: PublishRequest) -> PublishResponse:
        """Deploy an existing app's prod stack. Runs to completion; progress is also tracked as a job."""
        manifest = self._require_manifest(request.app_id, request.account_id)

        async with self.locks.hold(request.app_id, Environment.PROD):
            job_id, channel, drain = self._start_job("publish")
            try:
                credentials = await self._assume(request.account_id, request.region,
                                                 f"launchpad-publish-{request.app_id}", channel)
                logger.info(f"Deploying prod stack for: {manifest.app_name}")
                result = await self.pipeline.deploy(
                    str(self.materializer.repo_path(request.app_id)), manifest.app_name, Environment.PROD,
                    request.account_id, request.region, credentials, channel, run_id=job_id,
                )
                await asyncio.to_thread(self.manifests.update, request.app_id, Environment.PROD, result)
                _raise_for_result(result)
            except Exception as e:
                await self._finish_job(job_id, channel, drain, error=e)
                raise

            response = PublishResponse(
                job_id=job_id,
                prod_url=result.prod_url or "",
                stack_name=result.stack_name,
                outputs=result.outputs,
            )
            await self._finish_job(job_id, channel, drain, result=response.to_json_dict())
        return response

    # ------------------------------------------------------------------
    # Destroy
    # ------------------------------------------------------------------
    async def destroy(self, request: DestroyRequest) -> DestroyResponse:
        manifest = self._require_manifest(request.app_id, request.account_id)
        environment = request.env
        if manifest.deployments.get(environment) is None:
            raise NotFoundError(
                f"No {environment.value} deployment found for app {request.app_id}",
                details={"appId": request.app_id, "env": environment.value},
            )

        async with self.locks.hold(request.app_id, environment):
            job_id, channel, drain = self._start_job("destroy")
            try:
                credentials = await self._assume(request.account_id, request.region,
                                                 f"launchpad-destroy-{request.app_id}", channel)
                logger.info(f"Destroying {environment.value} stack for: {manifest.app_name}")
                await self.pipeline.destroy(
                    str(self.materializer.repo_path(request.app_id)), manifest.app_name, environment,
                    request.account_id, request.region, credentials, channel, run_id=job_id,
                )
                await asyncio.to_thread(self.manifests.remove_environment, request.app_id, environment)
            except Exception as e:
                await self._finish_job(job_id, channel, drain, error=e)
                raise

            stack_name = stack_name_for(manifest.app_name, environment)
            response = DestroyResponse(
                ok=True,
                message=f"{environment.value} stack {stack_name} destroyed successfully",
                job_id=job_id,
            )
            await self._finish_job(job_id, channel, drain, result=response.to_json_dict())
        return response
