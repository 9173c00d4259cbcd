"""Builder protocol and the pieces every platform builder composes."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol

from uematrix import commands
from uematrix.config import LinuxConfig, MacConfig, PackageConfig, PluginConfig, WindowsConfig
from uematrix.executor.base import OutputStream
from uematrix.filesystem import LocalFileSystem
from uematrix.types import BuildResult, BuildStatus, EditorPlatform, GamePlatform, UEVersion

logger = logging.getLogger(__name__)

SEPARATOR = "-" * 60


class Builder(Protocol):
    """Builds, tests and packages one repository copy on one editor platform."""

    platform: EditorPlatform
    repository_path: str

    @property
    def game_directory(self) -> str:
        """Local directory holding the packaged game, empty before init_directory."""
        ...

    def prepare_repository(self, base_repository_path: str, version: UEVersion) -> bool:
        """Copy the base repository to this builder's working location."""
        ...

    def init_directory(self, version: UEVersion) -> None:
        """Create result directories and compute tool paths."""
        ...

    def run(self, version: UEVersion) -> BuildResult:
        """Plugin flow: build, then optional test, package and game package."""
        ...

    def run_package(self, version: UEVersion) -> BuildResult:
        """Project flow: BuildCookRun for each target platform."""
        ...

    def cleanup_temp_directory(self) -> None:
        """Delete the working copy and release sessions."""
        ...


@dataclass
class BuildSettings:
    """Everything a builder needs from the configuration sections."""

    project_name: str
    result_path: str
    plugin_name: str = ""
    run_test: bool = False
    run_package: bool = False
    run_game_package: bool = False
    package_platforms: list[GamePlatform] = field(default_factory=list)
    is_zipped: bool = True
    zip_package_name: str = ""
    copy_package_after_build: bool = False
    environment: dict[str, str] = field(default_factory=dict)
    windows: WindowsConfig = field(default_factory=WindowsConfig)
    mac: MacConfig = field(default_factory=MacConfig)
    linux: LinuxConfig = field(default_factory=LinuxConfig)

    @property
    def work_name(self) -> str:
        """Name used for remote temp directories."""
        return self.plugin_name or self.project_name

    @classmethod
    def from_plugin_config(
        cls,
        plugin: PluginConfig,
        windows: WindowsConfig,
        mac: MacConfig,
        linux: LinuxConfig,
    ) -> "BuildSettings":
        return cls(
            project_name=plugin.project_name,
            plugin_name=plugin.plugin_name,
            result_path=plugin.result_path,
            run_test=plugin.run_test,
            run_package=plugin.run_package,
            run_game_package=plugin.run_game_package,
            package_platforms=list(plugin.package_platforms),
            is_zipped=plugin.is_zipped,
            copy_package_after_build=plugin.copy_package_after_build,
            environment=plugin.environment_map,
            windows=windows,
            mac=mac,
            linux=linux,
        )

    @classmethod
    def from_package_config(
        cls,
        package: PackageConfig,
        windows: WindowsConfig,
        mac: MacConfig,
        linux: LinuxConfig,
    ) -> "BuildSettings":
        return cls(
            project_name=package.project_name,
            result_path=package.result_path,
            run_package=True,
            package_platforms=list(package.package_platforms),
            is_zipped=package.is_zipped,
            zip_package_name=package.zip_package_name,
            environment=package.environment_map,
            windows=windows,
            mac=mac,
            linux=linux,
        )


@dataclass
class BuildLayout:
    """Result directories on this host and tool paths on the editor host."""

    platform: EditorPlatform
    version: UEVersion
    repository_path: str
    build_dir: Path
    test_dir: Path
    package_dir: Path
    game_dir: Path
    uproject: str
    engine_dir: str
    editor: str
    build_script: str
    build_args: str
    run_uat: str


def init_layout(
    settings: BuildSettings,
    platform: EditorPlatform,
    version: UEVersion,
    repository_path: str,
) -> BuildLayout:
    """Create the per-platform result directories and synthesize tool paths."""
    name = commands.result_directory_name(platform, version)
    root = Path(settings.result_path)
    engine_dir = commands.engine_directory(
        version, platform, settings.windows, settings.mac, settings.linux
    )
    uproject = commands.uproject_path(repository_path, settings.project_name, platform)

    layout = BuildLayout(
        platform=platform,
        version=version,
        repository_path=repository_path,
        build_dir=root / "build" / name,
        test_dir=root / "tests" / name,
        package_dir=root / "packages" / name,
        game_dir=root / "game" / name,
        uproject=uproject,
        engine_dir=engine_dir,
        editor=commands.editor_path(engine_dir, platform),
        build_script=commands.build_script_path(engine_dir, platform),
        build_args=commands.build_command_args(settings.project_name, uproject, platform),
        run_uat=commands.run_uat_script_path(engine_dir, platform),
    )

    for directory in (layout.build_dir, layout.test_dir, layout.package_dir, layout.game_dir):
        directory.mkdir(parents=True, exist_ok=True)

    logger.info(SEPARATOR)
    logger.info(f"[{version.full_version_string} {platform.value}] Paths")
    logger.info(f"Repository     : {layout.repository_path}")
    logger.info(f"Project file   : {layout.uproject}")
    logger.info(f"Engine         : {layout.engine_dir}")
    logger.info(f"Editor         : {layout.editor}")
    logger.info(f"Build script   : {layout.build_script}")
    logger.info(f"RunUAT         : {layout.run_uat}")
    logger.info(f"Build results  : {layout.build_dir}")
    logger.info(f"Test results   : {layout.test_dir}")
    logger.info(f"Packages       : {layout.package_dir}")
    logger.info(f"Game package   : {layout.game_dir}")
    logger.info(SEPARATOR)
    return layout


def remove_stale_output(filesystem: LocalFileSystem, *paths: str | Path) -> bool:
    """Delete artifacts an earlier run left behind so evaluation only sees fresh output."""
    for path in paths:
        path = Path(path)
        try:
            if path.is_dir():
                filesystem.delete_directory(path)
            elif path.exists():
                path.unlink()
        except OSError as e:
            logger.error(f"Failed to remove stale output {path}: {e}")
            return False
    return True


def zip_project_package(
    settings: BuildSettings,
    filesystem: LocalFileSystem,
    project_dir: Path,
    platform: EditorPlatform,
    version: UEVersion,
) -> None:
    """Archive a packaged project as releases/<Name>_<UE5.3>_<Platform>.zip."""
    name = settings.zip_package_name or settings.project_name
    archive = (
        Path(settings.result_path) / "releases"
        / f"{name}_{version.full_version_string}_{platform.value}.zip"
    )
    try:
        filesystem.zip_directory(project_dir, archive)
    except OSError as e:
        logger.error(f"[{version.full_version_string} {platform.value}] Failed to zip package: {e}")


def finish_project_package(
    result: BuildResult,
    exit_codes: list[int],
    package_status: Callable[[], BuildStatus],
) -> BuildResult:
    """Record BuildCookRun outcomes: build from exit codes, package only after a good build."""
    label = f"[{result.engine_version.full_version_string} {result.platform.value}]"
    result.build = BuildStatus.from_bool(bool(exit_codes) and all(code == 0 for code in exit_codes))
    logger.info(f"{label} Build: {result.build.value}")
    if result.build != BuildStatus.SUCCESS:
        return result

    result.package = package_status()
    logger.info(f"{label} Package: {result.package.value}")
    return result


class PhaseLog:
    """Tee phase output to the logger and a log file."""

    def __init__(self, path: Path, label: str):
        self.path = Path(path)
        self.label = label
        self._file = None

    def __enter__(self) -> "PhaseLog":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "w", encoding="utf-8")
        return self

    def __exit__(self, *exc) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def write(self, line: str) -> None:
        logger.info(f"{self.label} {line}")
        if self._file is not None:
            self._file.write(line + "\n")
            self._file.flush()

    def tee(self, stream: OutputStream) -> int:
        """Drain a stream into the log and return its exit code."""
        try:
            for line in stream:
                self.write(line)
        finally:
            stream.close()
        return stream.exit_code if stream.exit_code is not None else -1


def run_plugin_phases(
    result: BuildResult,
    settings: BuildSettings,
    build: Callable[[], BuildStatus],
    test: Callable[[], BuildStatus],
    package: Callable[[], BuildStatus],
    game_package: Callable[[], BuildStatus],
) -> BuildResult:
    """Run build, then the enabled follow-up phases only if the build succeeded."""
    label = f"[{result.engine_version.full_version_string} {result.platform.value}]"

    result.build = build()
    logger.info(f"{label} Build: {result.build.value}")
    if result.build != BuildStatus.SUCCESS:
        return result

    if settings.run_test:
        result.test = test()
        logger.info(f"{label} Test: {result.test.value}")
    if settings.run_package:
        result.package = package()
        logger.info(f"{label} Package: {result.package.value}")
    if settings.run_game_package:
        result.game_package = game_package()
        logger.info(f"{label} Game package: {result.game_package.value}")
    return result
