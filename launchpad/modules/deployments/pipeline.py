import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional, Sequence, Type

from botocore.exceptions import BotoCoreError, ClientError

from launchpad.config import Settings
from launchpad.core.errors import LaunchpadError, BuildError, InfrastructureError
from launchpad.modules.credentials.broker import AssumedCredentials
from launchpad.modules.deployments import dependency_cache
from launchpad.modules.deployments.bootstrap import BootstrapProbe, is_already_bootstrapped
from launchpad.modules.deployments.outputs import StackOutputs, read_stack_outputs
from launchpad.modules.deployments.runner import (
    CommandNotFoundError, CommandResult, CommandRunner, CommandTimeoutError, run_command
)
from launchpad.modules.deployments.runtime_config import RuntimeConfigPublisher
from launchpad.modules.jobs.events import ProgressChannel
from launchpad.modules.manifests.schemas import DeploymentResult, DeploymentStatus, Environment

logger = logging.getLogger(__name__)

INFRA_DIR = "infra"
WEB_DIR = "web"


def stack_name_for(app_name: str, environment: Environment) -> str:
    return f"{app_name}-{environment.stack_suffix}"


def outputs_file_for(infra_dir: Path, environment: Environment) -> Path:
    return infra_dir / f"cdk-outputs-{environment.value}.json"


async def _gather_stage(*coros):
    """Run independent steps together; every step finishes before the first failure is raised."""
    results = await asyncio.gather(*coros, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


class DeployPipeline:
    """
    install -> bootstrap -> build+synth -> deploy -> outputs -> runtime-config

    Stages run against one materialized repository with one set of assumed
    credentials. A stage failure stops the run and is returned as a failed
    DeploymentResult; deploy() does not raise for stage failures.
    """

    def __init__(
        self,
        settings: Settings,
        runner: CommandRunner = run_command,
        probe: Optional[BootstrapProbe] = None,
        publisher: Optional[RuntimeConfigPublisher] = None,
    ):
        self.settings = settings
        self.runner = runner
        self.probe = probe or BootstrapProbe()
        self.publisher = publisher or RuntimeConfigPublisher()

    async def deploy(
        self,
        project_dir: str,
        app_name: str,
        environment: Environment,
        account_id: str,
        region: str,
        credentials: AssumedCredentials,
        progress: ProgressChannel,
        run_id: Optional[str] = None,
    ) -> DeploymentResult:
        repo = Path(project_dir)
        infra_dir = repo / INFRA_DIR
        web_dir = repo / WEB_DIR
        stack_name = stack_name_for(app_name, environment)
        outputs_file = outputs_file_for(infra_dir, environment)
        aws_env = credentials.as_env(account_id, region)

        logger.info(f"Deploying stack: {stack_name}")
        # A failed run must not leave an earlier run's outputs behind
        outputs_file.unlink(missing_ok=True)

        try:
            progress.emit("install", "Resolving dependencies")
            await _gather_stage(
                self._install(INFRA_DIR, infra_dir, aws_env, progress, run_id),
                self._install(WEB_DIR, web_dir, {}, progress, run_id),
            )
            progress.emit("install", "Dependencies ready", completed=True)

            await self._bootstrap(infra_dir, account_id, region, credentials, aws_env, progress, run_id)

            progress.emit("build", f"Building web app and synthesizing {stack_name}")
            await _gather_stage(
                self._build_web(web_dir, run_id),
                self._synth(infra_dir, stack_name, aws_env, run_id),
            )
            progress.emit("build", "Build and synthesis complete", completed=True)

            progress.emit("deploy", f"Deploying stack {stack_name}")
            await self._deploy(infra_dir, stack_name, outputs_file, aws_env, run_id)
            progress.emit("deploy", f"Stack {stack_name} deployed", completed=True)

            progress.emit("outputs", "Reading stack outputs")
            outputs = read_stack_outputs(outputs_file, stack_name)
            progress.emit("outputs", f"Found {len(outputs.values)} stack output(s)", completed=True)

            await self._publish_runtime_config(outputs, environment, region, credentials, progress)
        except LaunchpadError as e:
            logger.error(f"Deployment of {stack_name} failed: {e.message}")
            progress.emit("failed", e.message)
            return DeploymentResult(
                stack_name=stack_name,
                environment=environment,
                status=DeploymentStatus.FAILED,
                error=e.message,
                error_kind=e.kind,
            )

        logger.info(f"Stack deployed successfully: {stack_name}")
        return DeploymentResult(
            stack_name=stack_name,
            environment=environment,
            outputs=outputs.values,
            preview_url=outputs.preview_url,
            prod_url=outputs.prod_url,
            api_url=outputs.api_url,
            web_bucket=outputs.web_bucket,
            status=DeploymentStatus.SUCCESS,
        )

    async def destroy(
        self,
        project_dir: str,
        app_name: str,
        environment: Environment,
        account_id: str,
        region: str,
        credentials: AssumedCredentials,
        progress: ProgressChannel,
        run_id: Optional[str] = None,
    ) -> None:
        """Tear down one environment's stack. Raises InfrastructureError on failure."""
        infra_dir = Path(project_dir) / INFRA_DIR
        stack_name = stack_name_for(app_name, environment)
        if not infra_dir.is_dir():
            raise InfrastructureError(f"Infrastructure project not found for {stack_name}")

        progress.emit("destroy", f"Destroying stack {stack_name}")
        result = await self._run(
            [self.settings.npx_command, "cdk", "destroy", stack_name, "--force"],
            infra_dir, self.settings.destroy_timeout_seconds, credentials.as_env(account_id, region),
            InfrastructureError, "CDK destroy", run_id,
        )
        if not result.ok:
            raise InfrastructureError(f"CDK destroy failed: {result.tail()}")
        progress.emit("destroy", f"Stack {stack_name} destroyed", completed=True)
        logger.info(f"Stack destroyed: {stack_name}")

    async def _run(
        self,
        args: Sequence[str],
        cwd: Path,
        timeout: float,
        env: Dict[str, str],
        error_cls: Type[LaunchpadError],
        what: str,
        run_id: Optional[str],
    ) -> CommandResult:
        try:
            return await self.runner(
                list(args), cwd=str(cwd), timeout=timeout, env=env, run_id=run_id,
                grace_seconds=self.settings.kill_grace_seconds,
            )
        except CommandTimeoutError:
            raise error_cls(f"{what} timed out after {timeout:g}s")
        except CommandNotFoundError as e:
            raise error_cls(f"{what} could not start: {e}")

    async def _install(self, name: str, project_dir: Path, env: Dict[str, str],
                       progress: ProgressChannel, run_id: Optional[str]):
        if not (project_dir / "package.json").is_file():
            raise BuildError(f"No package.json found in {name}/")
        if dependency_cache.is_up_to_date(project_dir):
            progress.emit("install", f"{name}: dependencies unchanged, install skipped", completed=True)
            return

        progress.emit("install", f"{name}: installing dependencies")
        result = await self._run(
            [self.settings.npm_command, "install"], project_dir,
            self.settings.install_timeout_seconds, env, BuildError, f"{name} npm install", run_id,
        )
        if not result.ok:
            raise BuildError(f"{name} npm install failed: {result.tail()}")
        # Hash after install: npm may rewrite the lockfile
        dependency_cache.record_install(project_dir, dependency_cache.dependency_hash(project_dir))
        progress.emit("install", f"{name}: dependencies installed", completed=True)

    async def _bootstrap(self, infra_dir: Path, account_id: str, region: str,
                         credentials: AssumedCredentials, env: Dict[str, str],
                         progress: ProgressChannel, run_id: Optional[str]):
        progress.emit("bootstrap", f"Checking bootstrap state of {account_id}/{region}")
        if await self.probe.is_bootstrapped(credentials, region):
            progress.emit("bootstrap", "Environment already bootstrapped", completed=True)
            return

        progress.emit("bootstrap", "Bootstrapping CDK environment")
        result = await self._run(
            [self.settings.npx_command, "cdk", "bootstrap", f"aws://{account_id}/{region}"],
            infra_dir, self.settings.bootstrap_timeout_seconds, env, InfrastructureError, "CDK bootstrap", run_id,
        )
        if not result.ok:
            if is_already_bootstrapped(result.output):
                logger.info("CDK already bootstrapped")
                progress.emit("bootstrap", "Environment already bootstrapped", completed=True)
                return
            raise InfrastructureError(f"CDK bootstrap failed: {result.tail()}")
        progress.emit("bootstrap", "Bootstrap complete", completed=True)

    async def _build_web(self, web_dir: Path, run_id: Optional[str]):
        result = await self._run(
            [self.settings.npm_command, "run", "build"], web_dir,
            self.settings.build_timeout_seconds, {"NODE_ENV": "production"}, BuildError, "Web build", run_id,
        )
        if not result.ok:
            raise BuildError(f"Web build failed: {result.tail()}")

    async def _synth(self, infra_dir: Path, stack_name: str, env: Dict[str, str], run_id: Optional[str]):
        result = await self._run(
            [self.settings.npx_command, "cdk", "synth", stack_name], infra_dir,
            self.settings.build_timeout_seconds, env, InfrastructureError, "CDK synth", run_id,
        )
        if not result.ok:
            raise InfrastructureError(f"CDK synth failed: {result.tail()}")

    async def _deploy(self, infra_dir: Path, stack_name: str, outputs_file: Path,
                      env: Dict[str, str], run_id: Optional[str]):
        result = await self._run(
            [self.settings.npx_command, "cdk", "deploy", stack_name,
             "--require-approval", "never", "--outputs-file", outputs_file.name],
            infra_dir, self.settings.deploy_timeout_seconds, env, InfrastructureError, "CDK deploy", run_id,
        )
        if not result.ok:
            raise InfrastructureError(f"CDK deploy failed: {result.tail()}")

    async def _publish_runtime_config(self, outputs: StackOutputs, environment: Environment, region: str,
                                      credentials: AssumedCredentials, progress: ProgressChannel):
        if not outputs.web_bucket:
            progress.emit("runtime-config", "No web bucket in stack outputs, runtime config skipped", completed=True)
            return
        progress.emit("runtime-config", f"Publishing runtime config to {outputs.web_bucket}")
        try:
            await self.publisher.publish(credentials, region, outputs.web_bucket, outputs.api_url, environment.value)
        except (ClientError, BotoCoreError) as e:
            raise InfrastructureError(f"Runtime config publication failed: {str(e)}")
        progress.emit("runtime-config", "Runtime config published", completed=True)
