"""
procflow configuration management using Pydantic Settings.

Configuration can be provided via:
1. procflow.yaml config file
2. PROCFLOW_* env vars
3. .env file
4. Direct instantiation

Priority (highest wins): init kwargs > procflow.yaml > env vars > .env > defaults

The procflow.yaml format:
    debug: false
    log_level: INFO
    engine:
      default_initial_state: idle
      template_id_length: 12
    tracing:
      type: console
      service_name: procflow
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Tuple, Type

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

logger = logging.getLogger(__name__)


class EngineConfig(BaseModel):
    """Workflow engine defaults."""

    # Used when a template names no initial state and the caller gives none
    default_initial_state: Optional[str] = None
    # Length of content-addressed template ids (hex characters)
    template_id_length: int = Field(default=12, ge=1, le=64)


class OTelConfig(BaseModel):
    """OpenTelemetry tracing configuration.

    Supports multiple exporters:
    - otlp: OTLP over gRPC (Jaeger, Tempo, collectors)
    - otlp-http: OTLP over HTTP
    - console: Print spans to stdout (for debugging)
    - none: Disable tracing
    """

    enabled: bool = False
    endpoint: str = "http://localhost:4317"
    service_name: str = "procflow"
    exporter_type: Literal["otlp", "otlp-http", "console", "none"] = "none"
    insecure: bool = True  # no TLS, for local collectors


class YamlConfigSource(PydanticBaseSettingsSource):
    """Settings source that reads a procflow.yaml config file.

    Discovers config at:
    1. Explicit path passed via _config_path init kwarg
    2. $PROCFLOW_CONFIG env var
    3. ./procflow.yaml
    4. ./procflow.yml
    """

    def __init__(
        self, settings_cls: Type[BaseSettings], config_path: Optional[str] = None
    ):
        super().__init__(settings_cls)
        self._config_path = config_path
        self._yaml_data: Dict[str, Any] = {}
        self._load()

    def _discover_config_file(self) -> Optional[Path]:
        if self._config_path:
            p = Path(self._config_path)
            return p if p.is_file() else None

        env_path = os.environ.get("PROCFLOW_CONFIG")
        if env_path:
            p = Path(env_path)
            return p if p.is_file() else None

        for name in ("procflow.yaml", "procflow.yml"):
            p = Path(name)
            if p.is_file():
                return p

        return None

    def _load(self) -> None:
        path = self._discover_config_file()
        if path is None:
            return

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return

        self._yaml_data = data if isinstance(data, dict) else {}
        logger.debug(f"Loaded config from {path}")

    def _map_to_settings(self) -> Dict[str, Any]:
        """Map procflow.yaml keys onto the ProcflowSettings structure."""
        data = self._yaml_data
        if not data:
            return {}

        result: Dict[str, Any] = {}

        if "debug" in data:
            result["debug"] = data["debug"]
        if "log_level" in data:
            result["log_level"] = data["log_level"]

        engine_cfg = data.get("engine")
        if isinstance(engine_cfg, dict) and engine_cfg:
            result["engine"] = dict(engine_cfg)

        # tracing.* -> otel.*
        tracing_cfg = data.get("tracing")
        if isinstance(tracing_cfg, dict) and tracing_cfg:
            otel = result.setdefault("otel", {})
            if "type" in tracing_cfg:
                otel["exporter_type"] = tracing_cfg["type"]
                otel["enabled"] = tracing_cfg["type"] != "none"
            for key in ("endpoint", "service_name", "insecure"):
                if key in tracing_cfg:
                    otel[key] = tracing_cfg[key]

        return result

    def get_field_value(self, field: Any, field_name: str) -> Tuple[Any, str, bool]:
        value = self._map_to_settings().get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> Dict[str, Any]:
        return self._map_to_settings()


class ProcflowSettings(BaseSettings):
    """
    Main procflow configuration.

    All settings can be overridden via environment variables with the
    PROCFLOW_ prefix. Nested settings use double underscore:
    PROCFLOW_ENGINE__TEMPLATE_ID_LENGTH=16

    Pass _config_path to override the config file location.
    """

    model_config = SettingsConfigDict(
        env_prefix="PROCFLOW_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Path to procflow.yaml (set via _config_path kwarg, not a real setting field)
    _config_path: Optional[str] = None

    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    engine: EngineConfig = Field(default_factory=EngineConfig)
    otel: OTelConfig = Field(default_factory=OTelConfig)

    def __init__(self, _config_path: Optional[str] = None, **kwargs: Any):
        self.__class__._config_path = _config_path
        super().__init__(**kwargs)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Insert the YAML config source before env vars.

        Priority (highest first): init > yaml > env > dotenv > file_secret
        """
        yaml_source = YamlConfigSource(settings_cls, config_path=cls._config_path)
        return (
            init_settings,
            yaml_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )
