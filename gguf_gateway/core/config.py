"""Core configuration module for gguf-gateway.

Loads settings from GGUF_GATEWAY_* prefixed environment variables using
Pydantic Settings.

Patterns applied:
- pydantic-settings BaseSettings with env_prefix for namespace isolation
- @field_validator + @classmethod (Pydantic v2 pattern)
- @lru_cache for singleton pattern
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from gguf_gateway.core.constants import (
    BACKEND_CPU,
    BACKEND_GPU,
    DEFAULT_CONTEXT_LENGTH,
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    GPU_PROBE_TIMEOUT_SECONDS,
)


class Settings(BaseSettings):
    """Application settings loaded from GGUF_GATEWAY_* environment variables.

    Example: GGUF_GATEWAY_PORT=8000, GGUF_GATEWAY_FORCE_BACKEND=cpu

    Attributes:
        service_name: Service identifier for logging and health payloads.
        port: HTTP port (1-65535). Default: 8000.
        host: Bind address. Default: 0.0.0.0.
        environment: Deployment environment. Default: development.
        log_level: Logging verbosity. Default: INFO.
        models_dir: Directory holding GGUF files.
        config_dir: Directory holding the optional models.yaml catalog.
        force_backend: Operator override for the native backend (cpu|gpu).
        cpu_backend_path: Explicit path to the CPU native library.
        gpu_backend_path: Explicit path to the GPU native library.
        native_base_dir: Base directory for the runtimes/ library search.
        gpu_probe_timeout_seconds: Bound on the nvidia-smi probe.
        enable_native_logging: Let the native engine write its own logs.
        context_length: Context window handed to each engine.
        gpu_layers: Layers offloaded on the GPU backend (-1 = all).
        default_max_tokens: Token limit used when a request omits one.
        default_temperature: Temperature used when a request omits one.
    """

    # =========================================================================
    # Core Settings
    # =========================================================================
    service_name: str = Field(
        default="gguf-gateway",
        description="Service name for identification",
    )
    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="HTTP server port",
    )
    host: str = Field(
        default="0.0.0.0",
        description="HTTP server bind address",
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_request_bodies: bool = Field(
        default=False,
        description="Log incoming request bodies at DEBUG level",
    )

    # =========================================================================
    # Model Catalog
    # =========================================================================
    models_dir: str = Field(
        default="./models",
        description="Path to directory containing GGUF model files",
    )
    config_dir: str = Field(
        default="./config",
        description="Path to directory containing models.yaml",
    )

    # =========================================================================
    # Native Backend
    # =========================================================================
    force_backend: str | None = Field(
        default=None,
        description="Force the native backend (cpu or gpu)",
    )
    cpu_backend_path: str | None = Field(
        default=None,
        description="Explicit path to the CPU llama library",
    )
    gpu_backend_path: str | None = Field(
        default=None,
        description="Explicit path to the GPU llama library",
    )
    native_base_dir: str = Field(
        default=".",
        description="Base directory searched for runtimes/<backend>/ libraries",
    )
    gpu_probe_timeout_seconds: float = Field(
        default=GPU_PROBE_TIMEOUT_SECONDS,
        gt=0,
        description="Timeout for the nvidia-smi GPU probe",
    )
    enable_native_logging: bool = Field(
        default=False,
        description="Enable verbose logging from the native engine",
    )

    # =========================================================================
    # Engine Defaults
    # =========================================================================
    context_length: int = Field(
        default=DEFAULT_CONTEXT_LENGTH,
        ge=1,
        description="Context window size for each engine",
    )
    gpu_layers: int = Field(
        default=-1,
        description="Number of layers to offload to GPU (-1 = all)",
    )
    default_max_tokens: int = Field(
        default=DEFAULT_MAX_TOKENS,
        ge=1,
        description="Token limit when the request does not specify one",
    )
    default_temperature: float = Field(
        default=DEFAULT_TEMPERATURE,
        ge=0.0,
        le=2.0,
        description="Sampling temperature when the request does not specify one",
    )

    # =========================================================================
    # Pydantic v2 Model Configuration
    # =========================================================================
    model_config = {
        "env_prefix": "GGUF_GATEWAY_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    # =========================================================================
    # Validators (Pydantic v2 pattern: @field_validator + @classmethod)
    # =========================================================================
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level to uppercase.

        Raises:
            ValueError: If log level is not valid.
        """
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        normalized = v.upper()
        if normalized not in valid_levels:
            msg = f"log_level must be one of {valid_levels}, got '{v}'"
            raise ValueError(msg)
        return normalized

    @field_validator("force_backend")
    @classmethod
    def validate_force_backend(cls, v: str | None) -> str | None:
        """Normalize the backend override; "cuda" is accepted for gpu."""
        if v is None or not v.strip():
            return None
        normalized = v.strip().lower()
        if normalized == "cuda":
            normalized = BACKEND_GPU
        if normalized not in {BACKEND_CPU, BACKEND_GPU}:
            msg = f"force_backend must be 'cpu' or 'gpu', got '{v}'"
            raise ValueError(msg)
        return normalized


@lru_cache
def get_settings() -> Settings:
    """Get singleton Settings instance.

    Returns:
        Cached Settings instance.
    """
    return Settings()
