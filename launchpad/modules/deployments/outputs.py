import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

WEB_BUCKET_KEY = "WebBucketName"
API_URL_KEY = "ApiUrl"
PREVIEW_URL_KEY = "PreviewUrl"
PROD_URL_KEY = "ProdUrl"


@dataclass
class StackOutputs:
    values: Dict[str, str] = field(default_factory=dict)

    def _get(self, key: str) -> Optional[str]:
        return self.values.get(key) or None

    @property
    def web_bucket(self) -> Optional[str]:
        return self._get(WEB_BUCKET_KEY)

    @property
    def api_url(self) -> Optional[str]:
        return self._get(API_URL_KEY)

    @property
    def preview_url(self) -> Optional[str]:
        return self._get(PREVIEW_URL_KEY)

    @property
    def prod_url(self) -> Optional[str]:
        return self._get(PROD_URL_KEY)


def _flatten(raw: Dict[str, Any]) -> Dict[str, str]:
    flat = {}
    for key, value in raw.items():
        if value is None:
            continue
        flat[key] = value if isinstance(value, str) else json.dumps(value)
    return flat


def read_stack_outputs(outputs_file: Path, stack_name: str) -> StackOutputs:
    """
    Read `cdk deploy --outputs-file` for one stack.

    A missing or unparsable file, or a missing stack entry, yields empty
    outputs rather than an error.
    """
    if not outputs_file.is_file():
        logger.warning(f"Outputs file not found: {outputs_file}")
        return StackOutputs()
    try:
        with open(outputs_file, "r") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Failed to parse outputs file {outputs_file}: {e}")
        return StackOutputs()
    stack = data.get(stack_name) if isinstance(data, dict) else None
    if not isinstance(stack, dict):
        logger.warning(f"No outputs for stack {stack_name} in {outputs_file}")
        return StackOutputs()
    return StackOutputs(values=_flatten(stack))
