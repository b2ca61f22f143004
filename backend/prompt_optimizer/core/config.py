from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import EnvSettingsSource
from pydantic import field_validator, Field
from typing import Optional, Any
from pathlib import Path
from dotenv import load_dotenv
import json

# This file is at: backend/prompt_optimizer/core/config.py
# Root is at: .env
config_file_dir = Path(__file__).parent  # backend/prompt_optimizer/core
package_dir = config_file_dir.parent  # backend/prompt_optimizer
project_root = package_dir.parent.parent
env_path = project_root / ".env"

# Load from root .env if it exists
if env_path.exists():
    load_dotenv(env_path, override=False)
else:
    # Fallback: try loading from current working directory
    load_dotenv(override=False)


class CustomEnvSettingsSource(EnvSettingsSource):
    """Custom environment settings source that handles comma-separated lists."""

    def prepare_field_value(self, field_name: str, field, value: Any, value_is_complex: bool) -> Any:
        if field_name == "CORS_ORIGINS" and isinstance(value, str):
            value = value.strip()
            if value.startswith('['):
                return super().prepare_field_value(field_name, field, value, value_is_complex)
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=None,
        case_sensitive=True,
        extra="ignore",
    )

    # App Config
    APP_NAME: str = "Prompt Optimizer"
    VERSION: str = "0.1.0"
    CORS_ORIGINS: list[str] = Field(
        default=["http://localhost:3000"],
        description="Comma-separated or JSON array of allowed CORS origins"
    )

    # REST server
    HOST: str = "0.0.0.0"
    PORT: int = 3001

    # LLM
    # Provider keys (DASHSCOPE_API_KEY, DEEPSEEK_API_KEY, DOUBAO_API_KEY) are read
    # from os.environ by the gateway; .env is loaded into it above.
    DEFAULT_MODEL: str = "qwen-max"
    LLM_TIMEOUT_SECONDS: float = 300.0  # One deadline for generate, evaluate and optimize

    # Workspace layout (prompts/, outputs/, evaluations/, dialogue/ live here)
    WORKSPACE_DIR: str = "."
    LOG_DIR: Optional[str] = None  # Defaults to <WORKSPACE_DIR>/logs

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Storage
    STORAGE_LOCK_TIMEOUT: float = 5.0

    # Tasks (in-memory only, lost on restart)
    TASK_TTL_HOURS: int = 24
    TASK_LIST_LIMIT: int = 50

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string, JSON array, or list."""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            if v.startswith('['):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @property
    def workspace_path(self) -> Path:
        return Path(self.WORKSPACE_DIR)

    @property
    def log_path(self) -> Path:
        if self.LOG_DIR:
            return Path(self.LOG_DIR)
        return self.workspace_path / "logs"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Override settings sources to use custom env source."""
        return (
            init_settings,
            CustomEnvSettingsSource(settings_cls),
            dotenv_settings,
            file_secret_settings,
        )


# Initialize settings (reads from os.environ which was populated by load_dotenv)
settings = Settings()
