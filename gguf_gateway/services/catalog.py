"""Model catalog: resolves model names to GGUF files.

Two sources, in priority order:

1. ``<config_dir>/models.yaml``::

       models:
         llama3:
           file: llama-3-8b-instruct        # file or directory under models_dir
           family: llama3                   # optional, selects the chat format

2. A scan of ``models_dir``: every ``*.gguf`` file is a model named after its
   stem, every sub-directory holding GGUF files is a model named after the
   directory.

When an entry points at a directory with several quantizations, the
QuantizationRanker chooses the file.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from gguf_gateway.core.exceptions import ConfigurationError
from gguf_gateway.core.logging import get_logger
from gguf_gateway.services.prompts import guess_family
from gguf_gateway.services.quantization import (
    UNKNOWN_QUANTIZATION,
    GgufCandidate,
    best_candidate,
)


logger = get_logger(__name__)

GGUF_SUFFIX = ".gguf"
MODELS_YAML = "models.yaml"
DEFAULT_TAG = ":latest"


@dataclass(frozen=True)
class ModelDescriptor:
    """A model the gateway can serve."""

    name: str
    path: str
    family: str
    quantization: str = UNKNOWN_QUANTIZATION
    size_bytes: int = 0
    modified_at: datetime | None = None


def _normalize_name(name: str) -> str:
    # Ollama clients send "model:latest" for untagged names
    name = name.strip()
    if name.endswith(DEFAULT_TAG):
        name = name[: -len(DEFAULT_TAG)]
    return name.lower()


def _gguf_files(directory: Path) -> list[Path]:
    return sorted(p for p in directory.iterdir() if p.is_file() and p.suffix.lower() == GGUF_SUFFIX)


class ModelCatalog:
    """Lookup-by-name over configured and discovered GGUF models.

    Args:
        models_dir: Directory holding GGUF files.
        model_configs: The ``models`` mapping from models.yaml.
    """

    def __init__(self, models_dir: Path, model_configs: dict[str, Any] | None = None) -> None:
        self.models_dir = Path(models_dir)
        self._model_configs = model_configs or {}

    @property
    def configured_count(self) -> int:
        return len(self._model_configs)

    # =========================================================================
    # Public API
    # =========================================================================

    def get_by_name(self, name: str) -> ModelDescriptor | None:
        """Return the descriptor for a model name, or None if unknown.

        Names are case-insensitive and ":latest" is ignored. A bare GGUF file
        name ("phi.Q4_K_M.gguf") also resolves.
        """
        if not name or not name.strip():
            return None
        wanted = _normalize_name(name)
        for descriptor in self.list_models():
            if _normalize_name(descriptor.name) == wanted:
                return descriptor
            if Path(descriptor.path).name.lower() == wanted:
                return descriptor
        return None

    def list_models(self) -> list[ModelDescriptor]:
        """All servable models, configured entries first."""
        descriptors: dict[str, ModelDescriptor] = {}

        for name, config in self._model_configs.items():
            descriptor = self._from_config(str(name), config or {})
            if descriptor is not None:
                descriptors[_normalize_name(descriptor.name)] = descriptor

        for descriptor in self._scan():
            descriptors.setdefault(_normalize_name(descriptor.name), descriptor)

        return list(descriptors.values())

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _from_config(self, name: str, config: dict[str, Any]) -> ModelDescriptor | None:
        target = config.get("file") or name
        path = Path(target)
        if not path.is_absolute():
            path = self.models_dir / path
        file_path = self._choose_file(path)
        if file_path is None:
            logger.debug("Configured model has no GGUF file", model=name, path=str(path))
            return None
        return self._describe(name, file_path, config.get("family"))

    def _scan(self) -> list[ModelDescriptor]:
        if not self.models_dir.is_dir():
            return []
        found: list[ModelDescriptor] = []
        for entry in sorted(self.models_dir.iterdir()):
            if entry.is_file() and entry.suffix.lower() == GGUF_SUFFIX:
                found.append(self._describe(entry.stem, entry, None))
            elif entry.is_dir():
                file_path = self._choose_file(entry)
                if file_path is not None:
                    found.append(self._describe(entry.name, file_path, None))
        return found

    def _choose_file(self, path: Path) -> Path | None:
        if path.is_file():
            return path
        if not path.is_dir():
            return None
        candidate = best_candidate(GgufCandidate.from_path(p) for p in _gguf_files(path))
        return Path(candidate.path) if candidate else None

    def _describe(self, name: str, file_path: Path, family: str | None) -> ModelDescriptor:
        candidate = GgufCandidate.from_path(file_path)
        stat = file_path.stat()
        return ModelDescriptor(
            name=name,
            path=str(file_path),
            family=family or guess_family(f"{name} {file_path.name}"),
            quantization=candidate.quantization_label,
            size_bytes=stat.st_size,
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )


# =============================================================================
# Construction
# =============================================================================


def load_model_configs(config_dir: Path) -> dict[str, Any]:
    """Read the ``models`` mapping from models.yaml, or {} if absent.

    Raises:
        ConfigurationError: The file exists but is not valid YAML of the
            expected shape.
    """
    models_yaml = Path(config_dir) / MODELS_YAML
    if not models_yaml.exists():
        return {}
    try:
        with open(models_yaml) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Invalid YAML in {models_yaml}: {exc}", setting=str(models_yaml)
        ) from exc

    models = data.get("models", {}) if isinstance(data, dict) else None
    if not isinstance(models, dict):
        raise ConfigurationError(
            f"{models_yaml} must contain a 'models' mapping", setting=str(models_yaml)
        )
    return models


def build_catalog(models_dir: str | Path, config_dir: str | Path) -> ModelCatalog:
    catalog = ModelCatalog(Path(models_dir), load_model_configs(Path(config_dir)))
    logger.info(
        "Model catalog ready",
        models_dir=str(models_dir),
        configured=catalog.configured_count,
    )
    return catalog
