from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Storage roots (one directory per generated app under work_dir)
    work_dir: str = "/work"
    data_dir: str = "/data"

    # Cross-account trust
    role_name: str = "LaunchpadDeployerRole"
    default_region: str = "us-east-1"
    control_plane_account_id: Optional[str] = None
    connect_stack_name: str = "LaunchpadDeployerStack"
    auto_connect_on_startup: bool = False

    # Bedrock (generation gateway)
    bedrock_region: str = "us-east-1"
    bedrock_model_id: str = "anthropic.claude-3-5-sonnet-20241022-v2:0"
    bedrock_max_tokens: int = 4096

    # Pipeline stage timeouts (seconds)
    install_timeout_seconds: float = 300
    bootstrap_timeout_seconds: float = 300
    build_timeout_seconds: float = 300
    deploy_timeout_seconds: float = 900
    destroy_timeout_seconds: float = 600
    kill_grace_seconds: float = 5

    # External tools
    npm_command: str = "npm"
    npx_command: str = "npx"
    git_command: str = "git"
    git_init: bool = True

    # Job tracker
    job_retention_seconds: float = 3600
    job_sweep_interval_seconds: float = 300

    # App
    app_name: str = "launchpad-control"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
