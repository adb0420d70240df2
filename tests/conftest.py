"""Shared fixtures and fakes for the launchpad tests."""
import json
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from launchpad.config import Settings
from launchpad.core.errors import CredentialError
from launchpad.modules.credentials.broker import AssumedCredentials, role_arn_for
from launchpad.modules.deployments.runner import CommandResult
from launchpad.modules.generation.schemas import AppSpec, Blueprint, GeneratedCode, PageSpec
from launchpad.modules.jobs.events import ProgressChannel
from launchpad.modules.jobs.schemas import StatusUpdate
from launchpad.modules.jobs.tracker import JobTracker

ACCOUNT_ID = "123456789012"
REGION = "us-east-1"


def make_credentials(account_id: str = ACCOUNT_ID) -> AssumedCredentials:
    return AssumedCredentials(
        access_key_id="ASIATESTACCESSKEY",
        secret_access_key="test-secret",
        session_token="test-session-token",
        role_arn=role_arn_for(account_id, "LaunchpadDeployerRole"),
    )


def make_spec(name: str = "todo-app", blueprint: Blueprint = Blueprint.SERVERLESS) -> AppSpec:
    return AppSpec(
        name=name,
        blueprint=blueprint,
        description="Track todos",
        pages=[PageSpec(route="/", components=["TodoList"], title="Home")],
        generated_code=GeneratedCode(pages={"/": "export default function Home() { return null; }"}),
    )


def write_project(root: Path) -> Path:
    """Minimal materialized repository: two sub-projects with package.json."""
    for sub in ("infra", "web"):
        (root / sub).mkdir(parents=True, exist_ok=True)
        (root / sub / "package.json").write_text(json.dumps({"name": sub, "version": "0.1.0"}))
    return root


class FakeRunner:
    """
    Records every command and answers from per-command handlers.

    `npm install` creates node_modules; `cdk deploy --outputs-file F` writes F
    with the configured outputs for the named stack.
    """

    def __init__(self, outputs: Optional[Dict[str, str]] = None):
        self.calls: List[Dict] = []
        self.outputs = outputs if outputs is not None else {
            "WebBucketName": "todo-web-bucket",
            "ApiUrl": "https://api.example.com",
            "PreviewUrl": "https://preview.example.com",
            "ProdUrl": "https://prod.example.com",
        }
        self.failures: Dict[str, CommandResult] = {}
        self.hooks: Dict[str, Callable] = {}

    def fail(self, key: str, stderr: str = "boom", exit_code: int = 1):
        self.failures[key] = CommandResult(args=[], exit_code=exit_code, stderr=stderr)

    @staticmethod
    def key_for(args) -> str:
        if args[0] == "npm":
            return "npm " + args[1]
        if args[0] == "npx":
            return "cdk " + args[2]
        return args[0] + " " + args[1]

    def commands(self) -> List[str]:
        return [self.key_for(call["args"]) for call in self.calls]

    async def __call__(self, args, cwd, timeout, env=None, run_id=None, grace_seconds=5.0):
        key = self.key_for(args)
        self.calls.append({"args": list(args), "cwd": cwd, "env": dict(env or {}), "run_id": run_id, "key": key})
        if key in self.hooks:
            await self.hooks[key](args, cwd)
        if key in self.failures:
            failure = self.failures[key]
            return CommandResult(args=list(args), exit_code=failure.exit_code, stderr=failure.stderr)
        if key == "npm install":
            (Path(cwd) / "node_modules").mkdir(exist_ok=True)
        if key == "cdk deploy":
            stack_name = args[3]
            outputs_name = args[args.index("--outputs-file") + 1]
            (Path(cwd) / outputs_name).write_text(json.dumps({stack_name: self.outputs}))
        return CommandResult(args=list(args), exit_code=0, stdout="ok")


class FakeProbe:
    def __init__(self, bootstrapped: bool = True):
        self.bootstrapped = bootstrapped

    async def is_bootstrapped(self, credentials, region):
        return self.bootstrapped


class FakePublisher:
    def __init__(self):
        self.published: List[Dict] = []

    async def publish(self, credentials, region, bucket, api_url, environment):
        self.published.append({"bucket": bucket, "apiUrl": api_url, "environment": environment})
        return {"apiUrl": api_url or "", "environment": environment}


class FakeBroker:
    def __init__(self, error: Optional[str] = None):
        self.error = error
        self.calls: List[Dict] = []

    async def assume(self, account_id, region, role_name, external_id, label):
        self.calls.append({"accountId": account_id, "region": region, "externalId": external_id, "label": label})
        if self.error:
            raise CredentialError(role_arn_for(account_id, role_name), self.error)
        return make_credentials(account_id)


class FakeGateway:
    def __init__(self, spec: Optional[AppSpec] = None, error: Optional[Exception] = None):
        self.spec = spec or make_spec()
        self.error = error
        self.prompts: List[str] = []

    async def generate(self, prompt, blueprint, credentials, progress):
        self.prompts.append(prompt)
        progress.emit("generate-spec", "Generating app specification with AI")
        if self.error:
            raise self.error
        progress.emit("generate-spec", f"Generated specification for {self.spec.name}", completed=True)
        return self.spec.model_copy(update={"blueprint": blueprint})


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        work_dir=str(tmp_path / "work"),
        data_dir=str(tmp_path / "data"),
        control_plane_account_id="999999999999",
        git_init=False,
        kill_grace_seconds=0.5,
    )


@pytest.fixture
def credentials() -> AssumedCredentials:
    return make_credentials()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    return write_project(tmp_path / "project")


async def collect_events(channel: ProgressChannel) -> List[StatusUpdate]:
    """Drain a closed channel and return what it carried, in emission order."""
    tracker = JobTracker()
    tracker.create("collected")
    await channel.drain_into(tracker, "collected")
    return tracker.read("collected").updates
