"""Tests for the Bedrock generation gateway and the repository materializer."""
import io
import json

import pytest
from botocore.exceptions import ClientError

from launchpad.core.errors import BuildError, GenerationAccessError, GenerationError
from launchpad.modules.generation.gateway import BedrockGateway, extract_json, normalize_spec
from launchpad.modules.generation.materializer import RepositoryMaterializer, page_file_name
from launchpad.modules.generation.schemas import Blueprint
from launchpad.modules.jobs.events import ProgressChannel

from conftest import FakeRunner, collect_events, make_spec

RAW_SPEC = {
    "name": "todo-app",
    "blueprint": "containers",
    "description": "Track todos",
    "pages": [{"route": "/", "components": ["TodoList"]}, {"route": 42}],
    "api": [
        {"path": "/api/todos", "method": "GET", "handler": "listTodos"},
        {"path": "/api/todos", "method": "FETCH", "handler": "bad"},
    ],
    "dataModel": [
        {"table": "Todos", "partitionKey": "id", "attributes": [{"name": "id", "type": "string", "required": True}]},
        {"table": "NoKey", "attributes": []},
    ],
    "auth": "yes",
    "envVars": [{"name": "API_KEY"}, {"description": "nameless"}],
}


class FakeBedrockClient:
    def __init__(self, texts=None, error=None):
        self.texts = list(texts or [])
        self.error = error
        self.bodies = []

    def invoke_model(self, modelId, contentType, accept, body):
        self.bodies.append(json.loads(body))
        if self.error:
            raise self.error
        payload = {"content": [{"type": "text", "text": self.texts.pop(0)}]}
        return {"body": io.BytesIO(json.dumps(payload).encode())}


def _client_error(code, message):
    return ClientError({"Error": {"Code": code, "Message": message}}, "InvokeModel")


# ---------------------------------------------------------------------------
# JSON extraction and normalization
# ---------------------------------------------------------------------------
@pytest.mark.parametrize("content", [
    '{"name": "a"}',
    'Here is the spec:\n```json\n{"name": "a"}\n```\nEnjoy.',
    'Sure! {"name": "a"} Let me know.',
])
def test_extract_json(content):
    assert extract_json(content) == {"name": "a"}


def test_extract_json_rejects_prose():
    with pytest.raises(GenerationError):
        extract_json("I cannot help with that.")


def test_normalize_spec_drops_invalid_entries():
    spec = normalize_spec(RAW_SPEC, Blueprint.SERVERLESS)

    assert spec.blueprint == Blueprint.SERVERLESS
    assert [p.route for p in spec.pages] == ["/"]
    assert [e.handler for e in spec.api] == ["listTodos"]
    assert [m.table for m in spec.data_model] == ["Todos"]
    assert [v.name for v in spec.env_vars] == ["API_KEY"]
    # Only a literal true enables auth
    assert spec.auth is False
    assert spec.custom_domain is False


def test_normalize_spec_requires_name():
    with pytest.raises(GenerationError):
        normalize_spec({"pages": []}, Blueprint.SERVERLESS)


# ---------------------------------------------------------------------------
# Bedrock gateway
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_gateway_generates_spec_and_code(settings, credentials):
    code = {"pages": {"/": "export default () => null;"}, "components": {"TodoList": "..."}, "lib": {"api": "..."}}
    client = FakeBedrockClient(texts=[
        "```json\n" + json.dumps(RAW_SPEC) + "\n```",
        json.dumps(code),
    ])
    gateway = BedrockGateway(settings, client_factory=lambda creds, region: client)
    channel = ProgressChannel()

    spec = await gateway.generate("A todo list with due dates", Blueprint.CONTAINERS, credentials, channel)
    channel.close()
    events = await collect_events(channel)

    assert spec.blueprint == Blueprint.CONTAINERS
    assert spec.generated_code.pages == {"/": "export default () => null;"}
    assert client.bodies[0]["anthropic_version"] == "bedrock-2023-05-31"
    assert "A todo list with due dates" in client.bodies[0]["messages"][0]["content"]
    assert [e.step for e in events if e.completed] == ["generate-spec", "generate-code"]


@pytest.mark.asyncio
async def test_gateway_falls_back_when_code_is_unparsable(settings, credentials):
    client = FakeBedrockClient(texts=[json.dumps(RAW_SPEC), "no code today"])
    gateway = BedrockGateway(settings, client_factory=lambda creds, region: client)

    spec = await gateway.generate("A todo list with due dates", Blueprint.SERVERLESS, credentials, ProgressChannel())

    assert spec.generated_code.pages == {}


@pytest.mark.asyncio
async def test_gateway_access_denied(settings, credentials):
    client = FakeBedrockClient(error=_client_error(
        "AccessDeniedException", "You don't have access to the model with the specified model ID."))
    gateway = BedrockGateway(settings, client_factory=lambda creds, region: client)

    with pytest.raises(GenerationAccessError) as exc_info:
        await gateway.generate("A todo list with due dates", Blueprint.SERVERLESS, credentials, ProgressChannel())

    error = exc_info.value
    assert error.status_code == 403
    assert error.details["modelId"] == settings.bedrock_model_id
    assert error.details["region"] == settings.bedrock_region
    assert "hint" in error.details


@pytest.mark.asyncio
async def test_gateway_other_failures(settings, credentials):
    client = FakeBedrockClient(error=_client_error("ThrottlingException", "Rate exceeded"))
    gateway = BedrockGateway(settings, client_factory=lambda creds, region: client)

    with pytest.raises(GenerationError) as exc_info:
        await gateway.generate("A todo list with due dates", Blueprint.SERVERLESS, credentials, ProgressChannel())
    assert not isinstance(exc_info.value, GenerationAccessError)
    assert "Rate exceeded" in exc_info.value.message


# ---------------------------------------------------------------------------
# Materializer
# ---------------------------------------------------------------------------
def test_page_file_name_stays_inside_pages():
    assert page_file_name("/") == "index.tsx"
    assert page_file_name("/todos") == "todos.tsx"
    assert page_file_name("/todos/new") == "todos/new.tsx"
    assert ".." not in page_file_name("/../../etc/passwd")


@pytest.mark.asyncio
async def test_render_serverless_repository(settings):
    spec = normalize_spec(RAW_SPEC, Blueprint.SERVERLESS)
    materializer = RepositoryMaterializer(settings)

    repo = await materializer.render("app-1", spec, "123456789012", "us-east-1", "todo-app")

    assert repo == materializer.repo_path("app-1")
    bin_ts = (repo / "infra" / "bin" / "infra.ts").read_text()
    assert "'todo-app-Dev'" in bin_ts and "'todo-app-Prod'" in bin_ts
    assert "account: '123456789012'" in bin_ts
    stack = (repo / "infra" / "lib" / "app-stack.ts").read_text()
    for output in ("WebBucketName", "ApiUrl", "PreviewUrl", "ProdUrl"):
        assert output in stack
    assert "TodosTable" in stack
    assert json.loads((repo / "infra" / "package.json").read_text())["name"] == "todo-app-infra"
    assert json.loads((repo / "web" / "package.json").read_text())["scripts"]["build"] == "next build"
    assert (repo / "api" / "src" / "handlers" / "listTodos.ts").is_file()
    # No generated code: the scaffold index page lists the pages
    assert (repo / "web" / "src" / "pages" / "index.tsx").is_file()
    assert json.loads((repo / ".launchpad" / "spec.json").read_text())["name"] == "todo-app"
    assert "todo-app" in (repo / "README.md").read_text()


@pytest.mark.asyncio
async def test_render_containers_repository_writes_generated_code(settings):
    spec = make_spec(blueprint=Blueprint.CONTAINERS)
    repo = await RepositoryMaterializer(settings).render("app-2", spec, "123456789012", "us-east-1", "todo-app")

    assert (repo / "api" / "Dockerfile").is_file()
    assert "ApplicationLoadBalancedFargateService" in (repo / "infra" / "lib" / "app-stack.ts").read_text()
    index = (repo / "web" / "src" / "pages" / "index.tsx").read_text()
    assert index == spec.generated_code.pages["/"]


@pytest.mark.asyncio
async def test_render_is_skipped_for_identical_spec(settings):
    settings.git_init = True
    runner = FakeRunner()
    materializer = RepositoryMaterializer(settings, runner=runner)
    spec = make_spec()

    repo = await materializer.render("app-3", spec, "123456789012", "us-east-1", "todo-app")
    assert runner.commands() == ["git init", "git config", "git config", "git add", "git commit"]
    assert all(call["cwd"] == str(repo) for call in runner.calls)

    (repo / "README.md").write_text("edited")
    await materializer.render("app-3", spec, "123456789012", "us-east-1", "todo-app")
    assert (repo / "README.md").read_text() == "edited"
    assert len(runner.calls) == 5


@pytest.mark.asyncio
async def test_git_failure_is_build_error(settings):
    settings.git_init = True
    runner = FakeRunner()
    runner.fail("git commit", stderr="fatal: unable to auto-detect email address")
    materializer = RepositoryMaterializer(settings, runner=runner)

    with pytest.raises(BuildError):
        await materializer.render("app-4", make_spec(), "123456789012", "us-east-1", "todo-app")
