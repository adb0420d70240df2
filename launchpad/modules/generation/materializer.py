import re
import json
import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Dict

from jinja2 import Environment as TemplateEnvironment, StrictUndefined, TemplateError

from launchpad.config import Settings
from launchpad.core.errors import BuildError
from launchpad.core.schemas import utc_now
from launchpad.modules.deployments.runner import (
    CommandNotFoundError, CommandRunner, CommandTimeoutError, run_command
)
from launchpad.modules.generation import blueprints
from launchpad.modules.generation.schemas import AppSpec, Blueprint
from launchpad.modules.manifests.store import MANIFEST_DIR

logger = logging.getLogger(__name__)

RENDER_RECORD = "render.json"
SPEC_FILE = "spec.json"
GIT_TIMEOUT_SECONDS = 60

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9_-]")

def _safe_name(name: str) -> str:
    return _UNSAFE_NAME.sub("_", name).strip("_") or "index"


_templates = TemplateEnvironment(undefined=StrictUndefined, keep_trailing_newline=True, autoescape=False)
_templates.filters["safe_name"] = _safe_name


def _render(source: str, context: Dict) -> str:
    return _templates.from_string(source).render(**context)


def page_file_name(route: str) -> str:
    """'/' -> index.tsx, '/todos/new' -> todos/new.tsx; no segment can climb out of pages/."""
    segments = [_safe_name(s) for s in route.strip("/").split("/") if s]
    if not segments:
        return "index.tsx"
    return "/".join(segments) + ".tsx"


def render_digest(spec: AppSpec, account_id: str, region: str, app_name: str) -> str:
    payload = json.dumps(
        {"spec": spec.to_json_dict(), "accountId": account_id, "region": region, "appName": app_name},
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode()).hexdigest()


class RepositoryMaterializer:
    """Writes an app repository (infra/, web/, api/) for a spec under <work_dir>/<app_id>."""

    def __init__(self, settings: Settings, runner: CommandRunner = run_command):
        self.settings = settings
        self.work_dir = Path(settings.work_dir)
        self.runner = runner

    def repo_path(self, app_id: str) -> Path:
        return self.work_dir / app_id

    async def render(self, app_id: str, spec: AppSpec, account_id: str, region: str, app_name: str) -> Path:
        repo = self.repo_path(app_id)
        digest = render_digest(spec, account_id, region, app_name)
        if self._recorded_digest(repo) == digest:
            logger.info(f"Repository for {app_id} already rendered from this spec, skipping")
            return repo

        logger.info(f"Rendering repository at: {repo}")
        try:
            written = await asyncio.to_thread(self._write_tree, repo, app_id, spec, account_id, region, app_name)
        except (OSError, TemplateError) as e:
            raise BuildError(f"Failed to render repository: {str(e)}")

        if self.settings.git_init:
            await self._commit(repo, spec.name)

        self._record_digest(repo, digest)
        logger.info(f"Repository rendered with {written} files at: {repo}")
        return repo

    def _recorded_digest(self, repo: Path):
        record = repo / MANIFEST_DIR / RENDER_RECORD
        try:
            with open(record, "r") as f:
                return json.load(f).get("digest")
        except (OSError, ValueError, AttributeError):
            return None

    def _record_digest(self, repo: Path, digest: str):
        record = repo / MANIFEST_DIR / RENDER_RECORD
        record.parent.mkdir(parents=True, exist_ok=True)
        with open(record, "w") as f:
            json.dump({"digest": digest, "renderedAt": utc_now().isoformat()}, f, indent=2)

    def _write_tree(self, repo: Path, app_id: str, spec: AppSpec,
                    account_id: str, region: str, app_name: str) -> int:
        context = {
            "app_id": app_id,
            "app_name": app_name,
            "display_name": spec.name,
            "account_id": account_id,
            "region": region,
            "spec": spec,
            "blueprint": spec.blueprint.value,
        }
        files: Dict[str, str] = {
            "infra/package.json": _render(blueprints.INFRA_PACKAGE_JSON, context),
            "infra/tsconfig.json": blueprints.INFRA_TSCONFIG,
            "infra/cdk.json": _render(blueprints.INFRA_CDK_JSON, context),
            "infra/bin/infra.ts": _render(blueprints.INFRA_BIN, context),
            "web/package.json": _render(blueprints.WEB_PACKAGE_JSON, context),
            "web/next.config.js": blueprints.WEB_NEXT_CONFIG,
            "web/tsconfig.json": blueprints.WEB_TSCONFIG,
            "web/src/pages/_app.tsx": blueprints.WEB_APP,
            "web/src/lib/config.ts": blueprints.WEB_API_LIB,
            "api/package.json": _render(blueprints.API_PACKAGE_JSON, context),
            ".gitignore": blueprints.GITIGNORE,
            "README.md": _render(blueprints.README, context),
        }

        if spec.blueprint == Blueprint.CONTAINERS:
            files["infra/lib/app-stack.ts"] = _render(blueprints.CONTAINERS_STACK, context)
            files["api/src/server.ts"] = _render(blueprints.API_SERVER, context)
            files["api/Dockerfile"] = blueprints.API_DOCKERFILE
        else:
            files["infra/lib/app-stack.ts"] = _render(blueprints.SERVERLESS_STACK, context)
            for endpoint in spec.api:
                files[f"api/src/handlers/{_safe_name(endpoint.handler)}.ts"] = _render(
                    blueprints.API_HANDLER, {**context, "endpoint": endpoint}
                )

        code = spec.generated_code
        if code and code.pages:
            for route, source in code.pages.items():
                files[f"web/src/pages/{page_file_name(route)}"] = source
            for name, source in code.components.items():
                files[f"web/src/components/{_safe_name(name)}.tsx"] = source
            for name, source in code.lib.items():
                files[f"web/src/lib/{_safe_name(name.removesuffix('.ts'))}.ts"] = source
        else:
            files["web/src/pages/index.tsx"] = _render(blueprints.WEB_INDEX_FALLBACK, context)

        for relative, content in files.items():
            target = repo / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        spec_path = repo / MANIFEST_DIR / SPEC_FILE
        spec_path.parent.mkdir(parents=True, exist_ok=True)
        with open(spec_path, "w") as f:
            json.dump(spec.to_json_dict(), f, indent=2)
        return len(files) + 1

    async def _commit(self, repo: Path, display_name: str):
        git = self.settings.git_command
        steps = [
            [git, "init"],
            [git, "config", "user.name", "Launchpad"],
            [git, "config", "user.email", "launchpad@localhost"],
            [git, "add", "."],
            [git, "commit", "-m", f"Initial commit for {display_name}"],
        ]
        for args in steps:
            try:
                result = await self.runner(args, cwd=str(repo), timeout=GIT_TIMEOUT_SECONDS)
            except (CommandTimeoutError, CommandNotFoundError) as e:
                raise BuildError(f"Failed to initialize git repository: {e}")
            if not result.ok:
                raise BuildError(f"Failed to initialize git repository: {result.tail()}")
        logger.info(f"Initialized git repository in {repo}")
