"""Configuration models for uematrix."""

import json
import os
from datetime import datetime
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, field_validator

from uematrix.types import EditorPlatform, GamePlatform, LinuxBuilderMode, UEVersion

MASKED_FIELDS = {"ssh_password"}


class ConfigError(ValueError):
    """Raised when a configuration section is incomplete or inconsistent."""


def parse_environment_variables(values: list[str]) -> dict[str, str]:
    """Parse NAME=value entries into a mapping."""
    env = {}
    for entry in values:
        parts = entry.split("=")
        if len(parts) != 2 or not parts[0].strip():
            raise ConfigError("environment_variables must be in the format of NAME=value")
        env[parts[0].strip()] = parts[1]
    return env


def _timestamp(now: datetime | None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d_%H%M%S")


def _stamp_result_path(result_path: str, suffix: str, now: datetime | None) -> str:
    base = result_path or "outputs"
    return os.path.abspath(os.path.join(base, f"{_timestamp(now)}_{suffix}"))


def _parse_list(values, parser):
    if values is None:
        return []
    if isinstance(values, str):
        values = [v for v in values.split(",") if v.strip()]
    return [parser(v if isinstance(v, Enum) else str(v)) for v in values]


def _parse_version_map(values) -> dict:
    """Accept {version: value} mappings or ["5.3:value", ...] lists."""
    if values is None:
        return {}
    if isinstance(values, (list, tuple)):
        pairs = {}
        for entry in values:
            key, sep, value = str(entry).partition(":")
            if not sep:
                raise ValueError(f"Expected <version>:<value>, got '{entry}'")
            pairs[key] = value
        values = pairs
    return {UEVersion.parse(k if isinstance(k, UEVersion) else str(k)): v for k, v in values.items()}


class SSHConfigMixin(BaseModel):
    """SSH connection settings shared by remote hosts."""

    ssh_host: str = ""
    ssh_user: str = ""
    ssh_password: str = ""
    ssh_private_key_path: str = ""
    ssh_port: int = 22


class PluginConfig(BaseModel):
    """Plugin build, test and packaging run."""

    plugin_name: str = ""
    project_name: str = ""
    editor_platforms: list[EditorPlatform] = []
    engine_versions: list[UEVersion] = []
    result_path: str = "outputs"
    run_test: bool = False
    run_package: bool = False
    run_game_package: bool = False
    package_platforms: list[GamePlatform] = []
    is_zipped: bool = True
    keep_binary_directory: bool = False
    copy_package_after_build: bool = False
    environment_variables: list[str] = []

    @field_validator("editor_platforms", mode="before")
    @classmethod
    def parse_editor_platforms(cls, v):
        return _parse_list(v, EditorPlatform.parse)

    @field_validator("engine_versions", mode="before")
    @classmethod
    def parse_engine_versions(cls, v):
        return _parse_list(v, UEVersion.parse)

    @field_validator("package_platforms", mode="before")
    @classmethod
    def parse_package_platforms(cls, v):
        return _parse_list(v, GamePlatform.parse)

    @property
    def environment_map(self) -> dict[str, str]:
        return parse_environment_variables(self.environment_variables)

    def build(self, now: datetime | None = None) -> "PluginConfig":
        """Validate the section and stamp a unique result directory."""
        if not self.plugin_name.strip():
            raise ConfigError("plugin_name must not be empty")
        if not self.project_name.strip():
            raise ConfigError("project_name must not be empty")
        if not self.editor_platforms:
            raise ConfigError("editor_platforms must have at least one value")
        if not self.engine_versions:
            raise ConfigError("engine_versions must have at least one value")
        if not self.package_platforms:
            raise ConfigError("package_platforms must have at least one value")
        parse_environment_variables(self.environment_variables)

        return self.model_copy(
            update={
                "result_path": _stamp_result_path(self.result_path, self.plugin_name, now),
            }
        )


class PackageConfig(BaseModel):
    """Project packaging run."""

    project_name: str = ""
    editor_platforms: list[EditorPlatform] = []
    engine_versions: list[UEVersion] = []
    result_path: str = "outputs"
    package_platforms: list[GamePlatform] = []
    is_zipped: bool = True
    zip_package_name: str = ""
    environment_variables: list[str] = []

    @field_validator("editor_platforms", mode="before")
    @classmethod
    def parse_editor_platforms(cls, v):
        return _parse_list(v, EditorPlatform.parse)

    @field_validator("engine_versions", mode="before")
    @classmethod
    def parse_engine_versions(cls, v):
        return _parse_list(v, UEVersion.parse)

    @field_validator("package_platforms", mode="before")
    @classmethod
    def parse_package_platforms(cls, v):
        return _parse_list(v, GamePlatform.parse)

    @property
    def environment_map(self) -> dict[str, str]:
        return parse_environment_variables(self.environment_variables)

    def build(self, now: datetime | None = None) -> "PackageConfig":
        if not self.project_name.strip():
            raise ConfigError("project_name must not be empty")
        if not self.editor_platforms:
            raise ConfigError("editor_platforms must have at least one value")
        if not self.engine_versions:
            raise ConfigError("engine_versions must have at least one value")
        if not self.package_platforms:
            raise ConfigError("package_platforms must have at least one value")
        parse_environment_variables(self.environment_variables)

        return self.model_copy(
            update={
                "result_path": _stamp_result_path(
                    self.result_path, f"{self.project_name}_Package", now
                ),
            }
        )


class GitConfig(BaseModel):
    """Source repository settings."""

    repository_url: str = ""
    branch: str = "main"
    branches: dict[UEVersion, str] = {}  # Per-version branch overrides
    ssh_key_path: str = ""
    local_repository_path: str = ""

    @field_validator("branches", mode="before")
    @classmethod
    def parse_branches(cls, v):
        return _parse_version_map(v)

    def branch_for(self, engine_version: UEVersion) -> str:
        return self.branches.get(engine_version) or self.branch

    def build(self) -> "GitConfig":
        if not self.local_repository_path.strip():
            if not self.branch:
                raise ConfigError("git branch must not be empty")
            if not self.repository_url:
                raise ConfigError("git repository_url must not be empty")
        elif not Path(self.local_repository_path).is_dir():
            raise ConfigError(
                f"local_repository_path does not exist: {self.local_repository_path}"
            )
        return self


class WindowsConfig(BaseModel):
    """Local Windows engine installation."""

    unreal_base_path: str = r"C:\Program Files\Epic Games"


class MacConfig(SSHConfigMixin):
    """Remote Mac build host."""

    unreal_base_path: str = "/Users/Shared/Epic Games"
    xcode_names: dict[UEVersion, str] = {}  # Xcode app path per engine version

    @field_validator("xcode_names", mode="before")
    @classmethod
    def parse_xcode_names(cls, v):
        return _parse_version_map(v)


class LinuxConfig(SSHConfigMixin):
    """Linux build host, either a local container runtime or a remote machine."""

    builder_mode: LinuxBuilderMode = LinuxBuilderMode.DOCKER
    docker_command: str = "docker"
    docker_image: str = "ghcr.io/epicgames/unreal-engine:dev-slim-%v"
    docker_plugins_source_path: str = ""
    copy_plugins_to_docker: bool = False
    unreal_base_path: str = "/home/ue/UnrealEngine"

    @field_validator("builder_mode", mode="before")
    @classmethod
    def parse_builder_mode(cls, v):
        return LinuxBuilderMode.parse(v)

    def model_post_init(self, __context):
        if not self.docker_command.strip():
            raise ValueError("linux.docker_command must not be empty")
        if not self.docker_image.strip():
            raise ValueError("linux.docker_image must not be empty")
        if self.builder_mode == LinuxBuilderMode.REMOTE:
            if not self.ssh_host:
                raise ValueError("linux.ssh_host is required when builder_mode is 'Remote'")
            if not self.ssh_user:
                raise ValueError("linux.ssh_user is required when builder_mode is 'Remote'")


class AppConfig(BaseModel):
    """Contents of a uematrix.yaml file."""

    plugin: PluginConfig = PluginConfig()
    package: PackageConfig = PackageConfig()
    git: GitConfig = GitConfig()
    windows: WindowsConfig = WindowsConfig()
    mac: MacConfig = MacConfig()
    linux: LinuxConfig = LinuxConfig()


def load_config(path: Path) -> AppConfig:
    """Load configuration from YAML file."""
    with open(path) as f:
        data = yaml.safe_load(f)
    return AppConfig(**(data or {}))


def export_settings(path: Path, sections: dict[str, BaseModel]) -> None:
    """Write the effective configuration sections as indented JSON."""
    data = {}
    for name, section in sections.items():
        values = section.model_dump(mode="json")
        for key in MASKED_FIELDS & values.keys():
            if values[key]:
                values[key] = "********"
        data[name] = values

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2))


def get_config_template() -> str:
    """Get the default configuration template."""
    return """# uematrix configuration

plugin:
  plugin_name: MyPlugin
  project_name: MyProject
  editor_platforms: [Windows, Mac, Linux]
  engine_versions: ["5.4", "5.5"]
  result_path: outputs
  run_test: true
  run_package: true
  run_game_package: false
  package_platforms: [Win64, Mac, Linux, Android, IOS]
  is_zipped: true
  keep_binary_directory: false
  copy_package_after_build: false
  environment_variables: []  # e.g. ["UE_SHARED_DDC=/ddc"]

package:
  project_name: MyProject
  editor_platforms: [Windows]
  engine_versions: ["5.5"]
  result_path: outputs
  package_platforms: [Win64]
  is_zipped: true
  zip_package_name: ""  # Defaults to project_name
  environment_variables: []

git:
  repository_url: https://github.com/your-name/your-project.git
  branch: main
  # branches:  # Per engine version overrides
  #   "5.4": release/5.4
  ssh_key_path: ""
  local_repository_path: ""  # Use a local checkout instead of cloning

windows:
  unreal_base_path: C:\\Program Files\\Epic Games

mac:
  unreal_base_path: /Users/Shared/Epic Games
  ssh_host: ""
  ssh_user: ""
  ssh_password: ""  # Leave empty to use ssh_private_key_path
  ssh_private_key_path: ""
  ssh_port: 22
  # xcode_names:
  #   "5.4": /Applications/Xcode_15.2.app

linux:
  builder_mode: Docker  # 'Docker' (local container) or 'Remote' (ssh)
  docker_command: docker
  docker_image: ghcr.io/epicgames/unreal-engine:dev-slim-%v  # %v is replaced by e.g. 5.5
  docker_plugins_source_path: ""
  copy_plugins_to_docker: false
  unreal_base_path: /home/ue/UnrealEngine  # Remote mode only

  # SSH settings (only needed if builder_mode: Remote)
  # ssh_host: linux-builder.example.com
  # ssh_user: builder
  # ssh_private_key_path: ~/.ssh/id_ed25519
  # ssh_port: 22
"""
