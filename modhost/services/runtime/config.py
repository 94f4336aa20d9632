"""
Runtime configuration source.

A config mapping holds one descriptor per module name plus reserved keys,
prefixed with an underscore, for the runtime's global flags and retry
buckets. Anything left unset falls back to the process settings.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from modhost.core.config import settings
from modhost.utils.error_handler import ConfigError
from modhost.utils.logger import get_logger
from modhost.utils.resilience.retry import RetryBuckets

from .models import ModuleDescriptor

logger = get_logger(__name__)

# reserved mapping key -> RuntimeConfig field
RESERVED_KEYS: Dict[str, str] = {
    "_retry": "retry",
    "_strict_validation": "strict_validation",
    "_use_recovery_queue": "use_recovery_queue",
    "_critical_background_retries": "critical_background_retries",
    "_reject_duplicates": "reject_duplicates",
    "_folder_paths": "folder_paths",
    "_on_error": "on_error",
}


class FolderPaths(BaseModel):
    """Python packages scanned for modules when no explicit source is given."""

    model_config = ConfigDict(extra="forbid")

    server: Optional[str] = Field(default_factory=lambda: settings.SERVER_MODULES_PACKAGE)
    client: Optional[str] = Field(default_factory=lambda: settings.CLIENT_MODULES_PACKAGE)
    shared: List[str] = Field(
        default_factory=lambda: list(settings.SHARED_MODULES_PACKAGES)
    )


class RuntimeConfig(BaseModel):
    """Read-only view of module descriptors and runtime flags."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    modules: Dict[str, ModuleDescriptor] = Field(default_factory=dict)
    retry: RetryBuckets = Field(
        default_factory=lambda: RetryBuckets.from_settings(settings)
    )
    strict_validation: bool = Field(default_factory=lambda: settings.STRICT_VALIDATION)
    use_recovery_queue: bool = Field(
        default_factory=lambda: settings.RECOVERY_QUEUE_ENABLED
    )
    critical_background_retries: bool = Field(
        default_factory=lambda: settings.CRITICAL_BACKGROUND_RETRIES
    )
    reject_duplicates: bool = Field(
        default_factory=lambda: settings.REJECT_DUPLICATE_MODULES
    )
    folder_paths: FolderPaths = Field(default_factory=FolderPaths)
    on_error: Optional[Callable[[str, str], Any]] = None

    @model_validator(mode="after")
    def _name_descriptors(self) -> "RuntimeConfig":
        for name, descriptor in self.modules.items():
            if descriptor.name is None:
                descriptor.name = name
        return self

    @property
    def module_names(self) -> List[str]:
        return list(self.modules)

    def descriptor(self, name: str) -> Optional[ModuleDescriptor]:
        return self.modules.get(name)

    def dependencies_of(self, name: str) -> List[str]:
        descriptor = self.modules.get(name)
        return list(descriptor.dependencies) if descriptor else []

    def is_critical(self, name: str) -> bool:
        descriptor = self.modules.get(name)
        return bool(descriptor and descriptor.critical)

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[str, Any],
        *overrides: Mapping[str, Any],
        strict: Optional[bool] = None,
    ) -> "RuntimeConfig":
        """
        Build a config from one or more mapping layers.

        Later layers win. Overriding a reserved key with a different value is
        logged. Malformed descriptors raise ConfigError in strict mode and are
        dropped with a warning otherwise.
        """
        merged: Dict[str, Any] = dict(mapping)
        for layer in overrides:
            for key, value in layer.items():
                if key.startswith("_") and key in merged and merged[key] != value:
                    logger.warning("config_key_overridden", key=key)
                merged[key] = value

        raw_globals = {k: v for k, v in merged.items() if k.startswith("_")}
        raw_modules = {k: v for k, v in merged.items() if not k.startswith("_")}

        for key in raw_globals:
            if key not in RESERVED_KEYS:
                logger.warning("unknown_reserved_config_key", key=key)

        if strict is None:
            strict = bool(
                raw_globals.get("_strict_validation", settings.STRICT_VALIDATION)
            )

        problems: List[str] = []
        fields: Dict[str, Any] = {
            field: raw_globals[key]
            for key, field in RESERVED_KEYS.items()
            if key in raw_globals
        }
        if "retry" in fields:
            try:
                fields["retry"] = _overlay_buckets(fields["retry"])
            except ValidationError as exc:
                problems.append(f"_retry: {_summarize(exc)}")
                del fields["retry"]

        modules: Dict[str, ModuleDescriptor] = {}
        for name, raw in raw_modules.items():
            try:
                descriptor = ModuleDescriptor.model_validate(raw or {})
            except ValidationError as exc:
                problems.append(f"{name}: {_summarize(exc)}")
                continue
            descriptor.name = name
            modules[name] = descriptor

        try:
            config = cls(modules=modules, **fields)
        except ValidationError as exc:
            problems.append(f"globals: {_summarize(exc)}")
            bad = {str(err["loc"][0]) for err in exc.errors() if err["loc"]}
            config = cls(
                modules=modules, **{k: v for k, v in fields.items() if k not in bad}
            )

        if problems:
            if strict:
                raise ConfigError("Invalid runtime config", problems=problems)
            for problem in problems:
                logger.warning("config_entry_ignored", problem=problem)
        return config

    @classmethod
    def from_yaml(
        cls, path: Union[str, Path], *overrides: Mapping[str, Any]
    ) -> "RuntimeConfig":
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except FileNotFoundError as exc:
            raise ConfigError(f"Config file not found: {path}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Config file is not valid YAML: {path}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Config file must contain a mapping: {path}")
        return cls.from_mapping(data, *overrides)


def _overlay_buckets(raw: Union[RetryBuckets, Mapping[str, Any]]) -> RetryBuckets:
    if isinstance(raw, RetryBuckets):
        return raw
    data = RetryBuckets.from_settings(settings).model_dump()
    for bucket, values in (raw or {}).items():
        base = data.get(bucket) or {}
        data[bucket] = {**base, **(values or {})}
    return RetryBuckets.model_validate(data)


def _summarize(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'value'}: {err['msg']}"
        for err in exc.errors()
    )
