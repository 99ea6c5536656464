"""
Configuration loader for a knowledge prism.

A knowledge prism is marked by a ``.knowledgeprism.json`` file at its root;
``load_config`` walks up from the start directory to find it. Values are
resolved environment first, then the file, then the defaults below. A
``.env`` file next to the marker is loaded into the environment without
overriding variables that are already set.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".knowledgeprism.json"

ENV_BASE_URL = "KNOWLEDGE_PRISM_API_BASE_URL"
ENV_MODEL = "KNOWLEDGE_PRISM_API_MODEL"
ENV_API_KEY = "KNOWLEDGE_PRISM_API_KEY"

_DOTENV_LINE_RE = re.compile(r"^([A-Z_][A-Z0-9_]*)=(.*)$")


class ConfigError(RuntimeError):
    """No usable knowledge prism configuration could be resolved."""


def _coerce_positive_int(raw: Any, default: int) -> int:
    """Return a positive int; fallback to default for invalid values."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid integer config value %r; using %d", raw, default)
        return default
    return value if value > 0 else default


def _coerce_float(raw: Any, default: float) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid number config value %r; using %s", raw, default)
        return default


def _camel_to_snake(camel_str: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(camel_str):
        if char.isupper() and i > 0:
            result.append('_')
        result.append(char.lower())
    return ''.join(result)


def _load_nested(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert camelCase keys to snake_case recursively."""
    result = {}
    for key, value in data.items():
        snake_key = _camel_to_snake(key)
        if isinstance(value, dict):
            result[snake_key] = _load_nested(value)
        else:
            result[snake_key] = value
    return result


@dataclass
class ApiConfig:
    base_url: str = "http://localhost:8888/v1"
    model: str = "unsloth/Qwen3.5-397B-A17B"
    api_key: str = "not-needed"


@dataclass
class ProcessConfig:
    batch_size: int = 5
    temperature: float = 0.3
    max_tokens: int = 8192
    timeout_ms: int = 1_800_000


@dataclass
class PrismConfig:
    name: str = "Knowledge Prism"
    api: ApiConfig = field(default_factory=ApiConfig)
    process: ProcessConfig = field(default_factory=ProcessConfig)

    def to_json_dict(self) -> Dict[str, Any]:
        """camelCase shape written to ``.knowledgeprism.json``."""
        return {
            "name": self.name,
            "api": {
                "baseUrl": self.api.base_url,
                "model": self.api.model,
                "apiKey": self.api.api_key,
            },
            "process": {
                "batchSize": self.process.batch_size,
                "temperature": self.process.temperature,
                "maxTokens": self.process.max_tokens,
                "timeoutMs": self.process.timeout_ms,
            },
        }


def find_config_path(start_dir: Optional[Union[str, Path]] = None) -> Optional[Path]:
    """Walk up from ``start_dir`` to the filesystem root looking for the marker."""
    current = Path(start_dir or os.getcwd()).resolve()
    for candidate_dir in [current, *current.parents]:
        candidate = candidate_dir / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_dotenv(env_path: Path) -> int:
    """Load simple KEY=VALUE lines into ``os.environ``; existing keys win.

    Returns the number of variables set.
    """
    if not env_path.is_file():
        return 0
    loaded = 0
    for line in env_path.read_text(encoding="utf-8").splitlines():
        m = _DOTENV_LINE_RE.match(line.strip())
        if m and not os.environ.get(m.group(1)):
            os.environ[m.group(1)] = m.group(2).strip()
            loaded += 1
    return loaded


def build_config(raw: Dict[str, Any]) -> PrismConfig:
    """Build a PrismConfig from raw (camelCase) JSON plus environment overrides."""
    data = _load_nested(raw if isinstance(raw, dict) else {})
    api_data = data.get("api") if isinstance(data.get("api"), dict) else {}
    process_data = data.get("process") if isinstance(data.get("process"), dict) else {}
    defaults_api = ApiConfig()
    defaults_proc = ProcessConfig()

    api = ApiConfig(
        base_url=os.environ.get(ENV_BASE_URL) or api_data.get("base_url") or defaults_api.base_url,
        model=os.environ.get(ENV_MODEL) or api_data.get("model") or defaults_api.model,
        api_key=os.environ.get(ENV_API_KEY) or api_data.get("api_key") or defaults_api.api_key,
    )
    process = ProcessConfig(
        batch_size=_coerce_positive_int(
            process_data.get("batch_size", defaults_proc.batch_size), defaults_proc.batch_size),
        temperature=_coerce_float(
            process_data.get("temperature", defaults_proc.temperature), defaults_proc.temperature),
        max_tokens=_coerce_positive_int(
            process_data.get("max_tokens", defaults_proc.max_tokens), defaults_proc.max_tokens),
        timeout_ms=_coerce_positive_int(
            process_data.get("timeout_ms", defaults_proc.timeout_ms), defaults_proc.timeout_ms),
    )
    return PrismConfig(name=data.get("name") or "Knowledge Prism", api=api, process=process)


def load_config(start_dir: Optional[Union[str, Path]] = None) -> Tuple[Path, PrismConfig]:
    """Resolve the knowledge prism root and its configuration.

    Returns:
        (base_dir, config) where base_dir is the directory holding the marker.

    Raises:
        ConfigError: no marker file was found, or it is not valid JSON.
    """
    config_path = find_config_path(start_dir)
    if config_path is None:
        raise ConfigError(
            f"{CONFIG_FILENAME} not found. Run `knowledge-prism init <dir>` first."
        )

    base_dir = config_path.parent
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse {config_path}: {e}") from e

    load_dotenv(base_dir / ".env")
    config = build_config(raw)
    logger.debug("Loaded config from %s (model=%s)", config_path, config.api.model)
    return base_dir, config


def save_config(path: Path, config: PrismConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(config.to_json_dict(), f, indent=2)
        f.write("\n")
    tmp.replace(path)
