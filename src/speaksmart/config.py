"""Application configuration using pydantic-settings."""

import functools
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


def _find_project_root() -> Path:
    """Find project root by locating pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return Path(__file__).resolve().parent.parent.parent


class YamlSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads from settings.yaml."""

    def get_field_value(self, field_name: str) -> tuple[Any, str, bool]:
        """Not used - we implement __call__ instead."""
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        """Load settings from YAML file."""
        yaml_path = _find_project_root() / "config" / "settings.yaml"
        if not yaml_path.exists():
            return {}

        with open(yaml_path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        # Flatten nested structure to match Settings field names
        flattened = {}
        if 'server' in data:
            flattened['host'] = data['server'].get('host')
            flattened['port'] = data['server'].get('port')
        if 'storage' in data:
            flattened['store_backend'] = data['storage'].get('backend')
            flattened['local_store_path'] = data['storage'].get('local_path')
            flattened['firestore_project_id'] = data['storage'].get('firestore_project_id')
        if 'identity' in data:
            flattened['identity_backend'] = data['identity'].get('backend')
        if 'openai' in data:
            flattened['openai_model'] = data['openai'].get('model')
        if 'gemini' in data:
            flattened['gemini_model'] = data['gemini'].get('model')
            flattened['gemini_api_version'] = data['gemini'].get('api_version')
        if 'activities' in data:
            activities = data['activities']
            flattened['quiz_question_count'] = activities.get('quiz_question_count')
            flattened['timed_required_minutes'] = activities.get('timed_required_minutes')

        # Remove None values
        return {k: v for k, v in flattened.items() if v is not None}


class Settings(BaseSettings):
    """Application settings loaded from environment and config files."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # AI providers (a provider without a key is left out of the fallback chain)
    openai_api_key: str | None = Field(default=None)
    openai_model: str = Field(default="gpt-4o-mini")
    gemini_api_key: str | None = Field(default=None)
    gemini_model: str = Field(default="gemini-1.5-flash")
    gemini_api_version: str = Field(default="v1")

    # Backends
    store_backend: str = Field(default="local")  # "local" or "firestore"
    local_store_path: Path | None = Field(default=None)
    firestore_project_id: str | None = Field(default=None)
    identity_backend: str = Field(default="local")  # "local" or "firebase"
    firebase_api_key: str | None = Field(default=None)

    # Admin gate
    admin_emails: str = Field(default="")
    admin_pass: str | None = Field(default=None)

    # Activities
    quiz_question_count: int = Field(default=5)
    timed_required_minutes: int = Field(default=20)

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    allowed_origins: str = Field(default="http://localhost:5173,http://127.0.0.1:5173")

    # Paths
    project_root: Path = Field(default_factory=_find_project_root)

    @property
    def admin_email_list(self) -> list[str]:
        """Lower-cased admin allow-list; empty means nobody is admin by email."""
        return [e.strip().lower() for e in self.admin_emails.split(",") if e.strip()]

    @property
    def allowed_origin_list(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def store_path(self) -> Path:
        path = self.local_store_path or Path("data") / "store.json"
        if not path.is_absolute():
            path = self.project_root / path
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def timed_required_ms(self) -> int:
        return self.timed_required_minutes * 60 * 1000

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings sources to include YAML file.

        Priority order (highest to lowest):
        1. init_settings (arguments passed to Settings())
        2. env_settings (environment variables)
        3. dotenv_settings (.env file)
        4. YamlSettingsSource (settings.yaml)
        5. file_secret_settings
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlSettingsSource(settings_cls),
            file_secret_settings,
        )


@functools.lru_cache
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()
