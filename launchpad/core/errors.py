"""
Error taxonomy for the control service.

Every error carries a stable ``kind`` (the class name) and the HTTP status
the API layer maps it to. Pipeline stages convert subprocess failures into
BuildError / InfrastructureError; the job tracker and the manifest record the
kind alongside the message.
"""
from typing import Any, Dict, Optional


class LaunchpadError(Exception):
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(LaunchpadError):
    """Malformed caller input, rejected before any credential exchange."""
    status_code = 400


class NotFoundError(LaunchpadError):
    status_code = 404


class ConflictError(LaunchpadError):
    """Another run already holds the (app, environment) slot."""
    status_code = 409


class CredentialError(LaunchpadError):
    """The delegated-trust exchange (STS AssumeRole) failed."""
    status_code = 403

    def __init__(self, role_arn: str, upstream_message: str):
        super().__init__(
            f"Failed to assume role {role_arn}: {upstream_message}",
            details={"roleArn": role_arn},
        )
        self.role_arn = role_arn
        self.upstream_message = upstream_message


class GenerationAccessError(LaunchpadError):
    """The generation gateway denied access to the model."""
    status_code = 403

    def __init__(self, region: str, model_id: str, message: Optional[str] = None):
        hint = (
            f"Access denied to Bedrock model in {region}. For Anthropic models, first-time users may "
            f"need to submit use case details: open the Bedrock model catalog, select {model_id} and "
            f"try it in the playground to complete setup."
        )
        super().__init__(
            message or hint,
            details={"type": "generation_access", "region": region, "modelId": model_id, "hint": hint},
        )
        self.region = region
        self.model_id = model_id


class GenerationError(LaunchpadError):
    status_code = 502


class BuildError(LaunchpadError):
    """Dependency install, repository render or application build failed."""
    status_code = 500


class InfrastructureError(LaunchpadError):
    """Bootstrap, synthesize, deploy, destroy or runtime-config publication failed."""
    status_code = 502
