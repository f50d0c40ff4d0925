"""Export configuration: defaults, JSON config file and environment overrides."""

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from .core.retry import RetryPolicy
from .core.types import ImageReference, RegistryConfig
from .exceptions import FileOperationError, ValidationError
from .tar.manifest import LAYOUTS
from .utils.log import LEVELS


@dataclass(frozen=True)
class ExportConfig:
    """Settings for one export run."""

    max_retries: int = 5
    retry_delay: float = 2.0
    concurrency: int = 1
    work_dir: str = "output"
    output: str = "output.tar"
    platform: str = "linux/amd64"
    layout: str = "flat"
    compress: bool = False
    uncompressed_layers: bool = False
    timeout: int = 300
    deadline: float | None = None
    insecure_registries: tuple[str, ...] = field(default_factory=tuple)
    username: str | None = None
    password: str | None = None
    log_level: str = "INFO"

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.max_retries, backoff_seconds=self.retry_delay)

    def registry_config(self, reference: ImageReference) -> RegistryConfig:
        insecure = reference.registry in self.insecure_registries
        return RegistryConfig(
            url=reference.registry_url(insecure=insecure),
            timeout=self.timeout,
            username=self.username,
            password=self.password,
        )

    def validate(self) -> "ExportConfig":
        """Check value ranges.

        Raises:
            ValidationError: On the first invalid setting
        """
        if self.max_retries < 1:
            raise ValidationError("max_retries must be at least 1")
        if self.retry_delay < 0:
            raise ValidationError("retry_delay must not be negative")
        if self.concurrency < 1:
            raise ValidationError("concurrency must be at least 1")
        if self.timeout <= 0:
            raise ValidationError("timeout must be positive")
        if self.deadline is not None and self.deadline <= 0:
            raise ValidationError("deadline must be positive")
        if self.layout not in LAYOUTS:
            raise ValidationError(f"layout must be one of {', '.join(LAYOUTS)}")
        if len(self.platform.split("/")) not in (2, 3):
            raise ValidationError(f"platform must be os/arch[/variant]: {self.platform}")
        if not self.output:
            raise ValidationError("output must not be empty")
        if not self.work_dir:
            raise ValidationError("work_dir must not be empty")
        if self.log_level.upper() not in LEVELS:
            raise ValidationError(f"Unknown log level: {self.log_level}")
        if bool(self.username) != bool(self.password):
            raise ValidationError("username and password must be set together")
        return self


# Environment variable -> ExportConfig field
ENV_OVERRIDES = {
    "DOWNLOAD_MAX_RETRIES": "max_retries",
    "DOWNLOAD_RETRY_DELAY": "retry_delay",
    "DOWNLOAD_CONCURRENCY": "concurrency",
    "DOWNLOAD_PLATFORM": "platform",
    "DOWNLOAD_TIMEOUT": "timeout",
    "OUTPUT_DIR": "work_dir",
    "DEFAULT_OUTPUT": "output",
    "LOG_LEVEL": "log_level",
    "REGISTRY_USERNAME": "username",
    "REGISTRY_PASSWORD": "password",
}

# Config file section -> {key: field}
FILE_SECTIONS = {
    "download": {
        "max_retries": "max_retries",
        "retry_delay": "retry_delay",
        "concurrency": "concurrency",
        "output_dir": "work_dir",
        "default_output": "output",
        "platform": "platform",
        "layout": "layout",
        "compress": "compress",
        "uncompressed_layers": "uncompressed_layers",
        "timeout": "timeout",
        "deadline": "deadline",
    },
    "registry": {
        "username": "username",
        "password": "password",
        "insecure_registries": "insecure_registries",
    },
    "logging": {"level": "log_level"},
}


def parse_seconds(value: Any) -> float:
    """Parse ``2``, ``"2"``, ``"2s"`` or ``"500ms"`` into seconds."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    text = str(value).strip().lower()
    if text.endswith("ms"):
        return float(text[:-2]) / 1000
    if text.endswith("s"):
        return float(text[:-1])
    return float(text)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _coerce(name: str, value: Any) -> Any:
    if value is None and name in ("username", "password", "deadline"):
        return None
    if name in ("max_retries", "concurrency", "timeout"):
        return int(value)
    if name == "retry_delay":
        return parse_seconds(value)
    if name == "deadline":
        return None if value in (None, "") else parse_seconds(value)
    if name in ("compress", "uncompressed_layers"):
        return _parse_bool(value)
    if name == "insecure_registries":
        if isinstance(value, str):
            value = value.split(",")
        return tuple(item.strip() for item in value if item.strip())
    return str(value)


def _apply(config: ExportConfig, updates: Mapping[str, Any], source: str) -> ExportConfig:
    known = {f.name for f in fields(ExportConfig)}
    coerced = {}
    for name, value in updates.items():
        if name not in known:
            continue
        try:
            coerced[name] = _coerce(name, value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid value for {name} from {source}: {value!r}") from e
    return replace(config, **coerced)


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Flatten a JSON config file into ExportConfig field values.

    Raises:
        FileOperationError: If the file cannot be read
        ValidationError: If it is not valid JSON
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise FileOperationError(f"Cannot open config file {path}: {e}") from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Cannot parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError(f"Config file {path} must contain a JSON object")

    values = {}
    for section, keys in FILE_SECTIONS.items():
        section_data = data.get(section) or {}
        for key, name in keys.items():
            if key in section_data:
                values[name] = section_data[key]
    return values


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    environ = os.environ if environ is None else environ
    return {
        name: environ[variable]
        for variable, name in ENV_OVERRIDES.items()
        if environ.get(variable)
    }


def load_config(
    path: str | Path | None = None, environ: Mapping[str, str] | None = None
) -> ExportConfig:
    """Build the run configuration.

    Defaults are overridden by the config file (when ``path`` exists), then
    by environment variables, and the result is validated.

    Raises:
        FileOperationError: If an existing config file cannot be read
        ValidationError: If a value is malformed or out of range
    """
    config = ExportConfig()
    if path is not None and Path(path).exists():
        config = _apply(config, load_config_file(path), str(path))
    config = _apply(config, env_overrides(environ), "environment")
    return config.validate()
