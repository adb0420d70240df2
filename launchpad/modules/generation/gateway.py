"""
Generation gateway: prompt + blueprint -> AppSpec with generated page code.

The model is an external collaborator. BedrockGateway is the production
adapter; anything with a matching generate() coroutine can stand in for it.
"""
import re
import json
import asyncio
import logging
from typing import Any, Callable, Dict, Protocol

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError as SchemaValidationError

from launchpad.config import Settings
from launchpad.core.errors import GenerationAccessError, GenerationError
from launchpad.modules.credentials.broker import AssumedCredentials
from launchpad.modules.generation.schemas import AppSpec, Blueprint, GeneratedCode
from launchpad.modules.jobs.events import ProgressChannel

logger = logging.getLogger(__name__)

HTTP_METHODS = {"GET", "POST", "PUT", "DELETE", "PATCH"}
ACCESS_DENIED_CODES = {"AccessDeniedException", "UnrecognizedClientException"}

SPEC_SYSTEM_PROMPT = """You are an expert system architect for AWS-based applications. Generate a detailed application specification for the user's requirements.

Output ONLY valid JSON in exactly this schema:
{
  "name": "app-name",
  "blueprint": "%(blueprint)s",
  "description": "one sentence",
  "pages": [{"route": "/", "components": ["Header", "TodoList"], "title": "Home"}],
  "api": [{"path": "/api/todos", "method": "GET", "handler": "listTodos", "description": "List all todos", "requiresAuth": false}],
  "dataModel": [{"table": "Todos", "partitionKey": "id", "sortKey": null,
                 "attributes": [{"name": "id", "type": "string", "required": true}], "secondaryIndexes": []}],
  "auth": false,
  "envVars": [{"name": "API_KEY", "description": "External API key", "required": false}],
  "customDomain": false
}

Rules:
1. Output ONLY the JSON object, no markdown, no explanations
2. For serverless: DynamoDB tables, Lambda handlers, API Gateway endpoints
3. For containers: PostgreSQL models, Express routes, containerized services
4. Include only necessary endpoints and data models
5. Set auth to true only if authentication is explicitly required"""

CODE_SYSTEM_PROMPT = """You are an expert React and TypeScript developer. Generate working Next.js pages and React components for the specification you are given.

Output ONLY valid JSON of the form:
{"pages": {"/": "<tsx source>"}, "components": {"Name": "<tsx source>"}, "lib": {"api": "<ts source>", "types": "<ts source>"}}

lib/api must load the API base URL at runtime from /config.json (field apiUrl) and fall back to /api."""


def extract_json(content: str) -> Dict[str, Any]:
    """Parse a JSON object from raw text, a fenced block, or the outermost braces."""
    candidates = [content]
    fenced = re.search(r"```(?:json)?\s*(\{[\s\S]*\})\s*```", content)
    if fenced:
        candidates.append(fenced.group(1))
    braces = re.search(r"\{[\s\S]*\}", content)
    if braces:
        candidates.append(braces.group(0))
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    raise GenerationError("Could not extract valid JSON from model response")


def normalize_spec(raw: Dict[str, Any], blueprint: Blueprint) -> AppSpec:
    """Coerce a model-produced spec into AppSpec, dropping malformed entries."""
    if not isinstance(raw.get("name"), str) or not raw["name"].strip():
        raise GenerationError("Spec must include a valid name")

    def _list(key):
        value = raw.get(key)
        return value if isinstance(value, list) else []

    pages = [p for p in _list("pages")
             if isinstance(p, dict) and isinstance(p.get("route"), str) and isinstance(p.get("components"), list)]
    api = [e for e in _list("api")
           if isinstance(e, dict) and e.get("path") and e.get("handler") and e.get("method") in HTTP_METHODS]
    data_model = [m for m in _list("dataModel")
                  if isinstance(m, dict) and m.get("table") and m.get("partitionKey") and isinstance(m.get("attributes"), list)]
    env_vars = [v for v in _list("envVars") if isinstance(v, dict) and v.get("name")]

    try:
        return AppSpec.model_validate({
            "name": raw["name"].strip(),
            "blueprint": blueprint,
            "description": raw.get("description") if isinstance(raw.get("description"), str) else None,
            "pages": pages,
            "api": api,
            "dataModel": data_model,
            "auth": raw.get("auth") is True,
            "envVars": env_vars,
            "customDomain": raw.get("customDomain") is True,
        })
    except SchemaValidationError as e:
        raise GenerationError(f"Generated spec is invalid: {e}")


class GenerationGateway(Protocol):
    async def generate(self, prompt: str, blueprint: Blueprint, credentials: AssumedCredentials,
                       progress: ProgressChannel) -> AppSpec:
        ...


def _default_client_factory(credentials: AssumedCredentials, region: str):
    return credentials.client("bedrock-runtime", region)


class BedrockGateway:
    def __init__(self, settings: Settings,
                 client_factory: Callable[[AssumedCredentials, str], Any] = _default_client_factory):
        self.region = settings.bedrock_region
        self.model_id = settings.bedrock_model_id
        self.max_tokens = settings.bedrock_max_tokens
        self._client_factory = client_factory

    async def generate(self, prompt: str, blueprint: Blueprint, credentials: AssumedCredentials,
                       progress: ProgressChannel) -> AppSpec:
        progress.emit("generate-spec", "Generating app specification with AI")
        content = await asyncio.to_thread(
            self._invoke, credentials,
            SPEC_SYSTEM_PROMPT % {"blueprint": blueprint.value},
            f"Generate an application specification for the following requirements using the "
            f"{blueprint.value} blueprint:\n\n{prompt}\n\nOutput the complete JSON specification.",
        )
        spec = normalize_spec(extract_json(content), blueprint)
        progress.emit("generate-spec", f"Generated specification for {spec.name}", completed=True)

        progress.emit("generate-code", "Generating React pages and components with AI")
        code_content = await asyncio.to_thread(
            self._invoke, credentials, CODE_SYSTEM_PROMPT,
            f"Generate the pages and components for this application:\n\n{spec.model_dump_json(by_alias=True)}",
        )
        spec.generated_code = self._parse_code(code_content)
        progress.emit(
            "generate-code",
            f"Generated {len(spec.generated_code.pages)} pages and {len(spec.generated_code.components)} components",
            completed=True,
        )
        return spec

    def _parse_code(self, content: str) -> GeneratedCode:
        try:
            data = extract_json(content)
            return GeneratedCode.model_validate({
                key: {str(k): v for k, v in (data.get(key) or {}).items() if isinstance(v, str)}
                for key in ("pages", "components", "lib")
            })
        except (GenerationError, AttributeError, SchemaValidationError) as e:
            logger.warning(f"Could not parse generated code, falling back to scaffold pages: {e}")
            return GeneratedCode()

    def _invoke(self, credentials: AssumedCredentials, system_prompt: str, user_prompt: str) -> str:
        body = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": self.max_tokens,
            "temperature": 0.7,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        try:
            client = self._client_factory(credentials, self.region)
            response = client.invoke_model(
                modelId=self.model_id,
                contentType="application/json",
                accept="application/json",
                body=json.dumps(body),
            )
            payload = json.loads(response["body"].read())
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            message = e.response.get("Error", {}).get("Message", str(e))
            logger.error(f"Bedrock invocation failed ({code}): {message}")
            if code in ACCESS_DENIED_CODES or "not enabled" in message or "access" in message.lower():
                raise GenerationAccessError(self.region, self.model_id)
            raise GenerationError(f"Failed to generate spec: {message}")
        except (BotoCoreError, json.JSONDecodeError) as e:
            raise GenerationError(f"Failed to generate spec: {str(e)}")

        try:
            return payload["content"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise GenerationError("Unable to parse model response")
