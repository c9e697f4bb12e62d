from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import jsonschema
import yaml

from .errors import ConfigError
from .utils.yamlio import read_yaml


CONFIG_ENV_VAR = "RELEASE_PUBLISHER_CONFIG"
DEFAULT_CONFIG_REL_PATH = Path("config/publish.yml")

ON_CONFLICT_POLICIES = ("fail", "overwrite")


@dataclass(frozen=True)
class PackageSettings:
    name: str
    target: str
    source_dir: Path = Path(".")


@dataclass(frozen=True)
class VersionSettings:
    prefix_policy: str = "optional"
    manifests: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BuildSettings:
    command: Tuple[str, ...]
    timeout_seconds: float = 1800.0
    toolchain_check: Tuple[str, ...] = ()
    toolchain_version: str = ""
    verify_checkout: bool = True
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ReleaseAssetSettings:
    repository: str
    asset_name: str = "{package_name}.deb"
    on_conflict: str = "fail"
    timeout_seconds: float = 300.0
    api_url: str = "https://api.github.com"


@dataclass(frozen=True)
class AptRepoSettings:
    push_url: str
    timeout_seconds: float = 300.0


@dataclass(frozen=True)
class FormulaSettings:
    formula_name: str
    formula_repository: str = "Homebrew/homebrew-core"
    formula_path: str = ""
    push_repository: str = ""
    base_branch: str = ""
    download_url: str = "https://github.com/{repository}/archive/refs/tags/{tag}.tar.gz"
    timeout_seconds: float = 600.0
    api_url: str = "https://api.github.com"

    def resolved_push_repository(self) -> str:
        return self.push_repository or self.formula_repository


@dataclass(frozen=True)
class RetrySettings:
    attempts: int = 3
    backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0


@dataclass(frozen=True)
class PublishConfig:
    package: PackageSettings
    version: VersionSettings
    build: BuildSettings
    release_asset: ReleaseAssetSettings
    apt_repo: AptRepoSettings
    homebrew: FormulaSettings
    retry: RetrySettings = RetrySettings()
    source_path: str = ""


def resolve_config_path(repo_root: Path, cli_path: Optional[str] = None) -> Path:
    """Resolve the publish config YAML path.

    Precedence:
      1) CLI flag --config
      2) RELEASE_PUBLISHER_CONFIG
      3) <repo_root>/config/publish.yml
    """
    if cli_path and str(cli_path).strip():
        return Path(str(cli_path).strip()).expanduser().resolve()

    env_path = str(os.environ.get(CONFIG_ENV_VAR, "") or "").strip()
    if env_path:
        return Path(env_path).expanduser().resolve()

    return (repo_root / DEFAULT_CONFIG_REL_PATH).resolve()


def _string_list() -> Dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}}


def _timeout() -> Dict[str, Any]:
    return {"type": "number", "exclusiveMinimum": 0}


def _config_schema() -> Dict[str, Any]:
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "required": ["package", "build", "release_asset", "apt_repo", "homebrew"],
        "properties": {
            "description": {"type": "string"},
            "package": {
                "type": "object",
                "required": ["name", "target"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "target": {"type": "string", "minLength": 1},
                    "source_dir": {"type": "string"},
                },
                "additionalProperties": False,
            },
            "version": {
                "type": "object",
                "properties": {
                    "prefix_policy": {"type": "string", "enum": ["optional", "required", "forbidden"]},
                    "manifests": _string_list(),
                },
                "additionalProperties": False,
            },
            "build": {
                "type": "object",
                "required": ["command"],
                "properties": {
                    "command": {**_string_list(), "minItems": 1},
                    "timeout_seconds": _timeout(),
                    "toolchain_check": _string_list(),
                    "toolchain_version": {"type": "string"},
                    "verify_checkout": {"type": "boolean"},
                    "env": {"type": "object", "additionalProperties": {"type": "string"}},
                },
                "additionalProperties": False,
            },
            "release_asset": {
                "type": "object",
                "required": ["repository"],
                "properties": {
                    "repository": {"type": "string", "pattern": "^[^/\\s]+/[^/\\s]+$"},
                    "asset_name": {"type": "string", "minLength": 1},
                    "on_conflict": {"type": "string", "enum": list(ON_CONFLICT_POLICIES)},
                    "timeout_seconds": _timeout(),
                    "api_url": {"type": "string"},
                },
                "additionalProperties": False,
            },
            "apt_repo": {
                "type": "object",
                "required": ["push_url"],
                "properties": {
                    "push_url": {"type": "string", "pattern": "^https?://"},
                    "timeout_seconds": _timeout(),
                },
                "additionalProperties": False,
            },
            "homebrew": {
                "type": "object",
                "required": ["formula_name"],
                "properties": {
                    "formula_name": {"type": "string", "minLength": 1},
                    "formula_repository": {"type": "string", "pattern": "^[^/\\s]+/[^/\\s]+$"},
                    "formula_path": {"type": "string"},
                    "push_repository": {"type": "string"},
                    "base_branch": {"type": "string"},
                    "download_url": {"type": "string"},
                    "timeout_seconds": _timeout(),
                    "api_url": {"type": "string"},
                },
                "additionalProperties": False,
            },
            "retry": {
                "type": "object",
                "properties": {
                    "attempts": {"type": "integer", "minimum": 1, "maximum": 10},
                    "backoff_seconds": {"type": "number", "minimum": 0},
                    "max_backoff_seconds": {"type": "number", "minimum": 0},
                },
                "additionalProperties": False,
            },
        },
        "additionalProperties": False,
    }


def parse_config(data: Dict[str, Any], *, base_dir: Path, source_path: str = "") -> PublishConfig:
    """Validate a config mapping and turn it into :class:`PublishConfig`.

    Relative ``package.source_dir`` values resolve against ``base_dir``.
    """
    try:
        jsonschema.validate(instance=data, schema=_config_schema())
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigError(f"publish config schema validation failed at {where}: {e.message}")

    pkg = data["package"]
    source_dir = Path(str(pkg.get("source_dir") or "."))
    if not source_dir.is_absolute():
        source_dir = (base_dir / source_dir).resolve()

    ver = data.get("version") or {}
    build = data["build"]
    asset = data["release_asset"]
    apt = data["apt_repo"]
    brew = data["homebrew"]
    retry = data.get("retry") or {}

    return PublishConfig(
        package=PackageSettings(name=pkg["name"], target=pkg["target"], source_dir=source_dir),
        version=VersionSettings(
            prefix_policy=str(ver.get("prefix_policy") or "optional"),
            manifests=tuple(ver.get("manifests") or ()),
        ),
        build=BuildSettings(
            command=tuple(build["command"]),
            timeout_seconds=float(build.get("timeout_seconds", 1800)),
            toolchain_check=tuple(build.get("toolchain_check") or ()),
            toolchain_version=str(build.get("toolchain_version") or ""),
            verify_checkout=bool(build.get("verify_checkout", True)),
            env={str(k): str(v) for k, v in (build.get("env") or {}).items()},
        ),
        release_asset=ReleaseAssetSettings(
            repository=asset["repository"],
            asset_name=str(asset.get("asset_name") or "{package_name}.deb"),
            on_conflict=str(asset.get("on_conflict") or "fail"),
            timeout_seconds=float(asset.get("timeout_seconds", 300)),
            api_url=str(asset.get("api_url") or "https://api.github.com").rstrip("/"),
        ),
        apt_repo=AptRepoSettings(
            push_url=apt["push_url"],
            timeout_seconds=float(apt.get("timeout_seconds", 300)),
        ),
        homebrew=FormulaSettings(
            formula_name=brew["formula_name"],
            formula_repository=str(brew.get("formula_repository") or "Homebrew/homebrew-core"),
            formula_path=str(brew.get("formula_path") or ""),
            push_repository=str(brew.get("push_repository") or ""),
            base_branch=str(brew.get("base_branch") or ""),
            download_url=str(brew.get("download_url") or FormulaSettings.download_url),
            timeout_seconds=float(brew.get("timeout_seconds", 600)),
            api_url=str(brew.get("api_url") or "https://api.github.com").rstrip("/"),
        ),
        retry=RetrySettings(
            attempts=int(retry.get("attempts", 3)),
            backoff_seconds=float(retry.get("backoff_seconds", 1.0)),
            max_backoff_seconds=float(retry.get("max_backoff_seconds", 30.0)),
        ),
        source_path=source_path,
    )


def load_publish_config(repo_root: Path, cli_path: Optional[str] = None) -> PublishConfig:
    """Load and validate the publish config.

    Contract:
    - Strict validation: missing required keys or unknown keys fail fast.
    - ``package.source_dir`` is relative to the config file's directory's parent
      when the file lives in ``config/``, otherwise to the file's directory.

    Raises:
        ConfigError: if the file is missing, unreadable, or invalid.
    """
    path = resolve_config_path(repo_root, cli_path)
    if not path.exists():
        raise ConfigError(f"publish config not found: {path}")

    try:
        data = read_yaml(path)
    except (yaml.YAMLError, ValueError) as e:
        raise ConfigError(f"publish config parse error: {path}: {e}")

    base_dir = path.parent.parent if path.parent.name == "config" else path.parent
    return parse_config(data, base_dir=base_dir, source_path=str(path))


def asset_name_for(settings: ReleaseAssetSettings, *, package_name: str, version: str) -> str:
    try:
        return settings.asset_name.format(package_name=package_name, version=version)
    except (KeyError, IndexError) as e:
        raise ConfigError(f"release_asset.asset_name has unknown placeholder {e}")


def format_argv(template: Tuple[str, ...], values: Dict[str, str]) -> List[str]:
    try:
        return [part.format(**values) for part in template]
    except (KeyError, IndexError) as e:
        raise ConfigError(f"build.command has unknown placeholder {e}")
