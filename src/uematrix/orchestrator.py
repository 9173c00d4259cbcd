"""Run the build matrix across engine versions and editor platforms."""

import logging
import tempfile
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from pathlib import Path
from typing import Callable

from uematrix import commands
from uematrix.builders import Builder, BuildSettings, create_builder
from uematrix.config import (
    GitConfig,
    LinuxConfig,
    MacConfig,
    PackageConfig,
    PluginConfig,
    WindowsConfig,
    export_settings,
)
from uematrix.evaluator import read_plugin_version_name
from uematrix.filesystem import LocalFileSystem
from uematrix.git import GitClient
from uematrix.types import BuildResult, BuildStatus, EditorPlatform, UEVersion

logger = logging.getLogger(__name__)

PROJECT_DIRECTORIES = ("Source", "Content", "Config", "Plugins")
SEPARATOR = "-" * 43

BuilderFactory = Callable[[EditorPlatform, BuildSettings], Builder]


class RepositoryError(RuntimeError):
    """Raised when the base repository cannot be cloned or copied."""


class SourceRepository:
    """Produces a clean base copy of the project for one engine version."""

    def __init__(
        self,
        git_config: GitConfig,
        project_name: str,
        git_client: GitClient | None = None,
        filesystem: LocalFileSystem | None = None,
    ):
        self.git_config = git_config
        self.project_name = project_name
        self.git_client = git_client or GitClient(git_config.ssh_key_path)
        self.filesystem = filesystem or LocalFileSystem()

    def obtain(self, version: UEVersion, work_dir: Path) -> Path:
        base = Path(work_dir) / version.value / "base"
        self.filesystem.ensure_directory(base)

        if self.git_config.local_repository_path:
            self._copy_local(Path(self.git_config.local_repository_path), base)
        else:
            self._clone(version, base)
        return base

    def _clone(self, version: UEVersion, base: Path) -> None:
        branch = self.git_config.branch_for(version)
        if not self.git_client.clone_repository(self.git_config.repository_url, branch, base):
            logger.error(f"Failed to clone {self.git_config.repository_url} ({branch})")
            raise RepositoryError(f"Failed to clone repository for {version.full_version_string}")

        try:
            self.filesystem.delete_directory(base / ".git")
        except OSError as e:
            logger.warning(f"Failed to remove .git from {base}: {e}")

    def _copy_local(self, source: Path, base: Path) -> None:
        logger.info(f"Copying local repository {source} to {base}")
        try:
            for name in PROJECT_DIRECTORIES:
                if not (source / name).is_dir():
                    logger.warning(f"Directory not found, skipping: {source / name}")
                    continue
                self.filesystem.copy_directory(source / name, base / name)

            uproject = source / f"{self.project_name}.uproject"
            if not uproject.is_file():
                raise FileNotFoundError(f"Project file not found: {uproject}")
            self.filesystem.copy_file(uproject, base / uproject.name)
        except OSError as e:
            logger.error(f"Failed to copy local repository: {e}")
            raise RepositoryError(str(e)) from e


def merge_packages(
    result_path: str | Path,
    plugin_name: str,
    version: UEVersion,
    platforms: list[EditorPlatform],
    keep_binary_directory: bool,
    is_zipped: bool,
    filesystem: LocalFileSystem | None = None,
) -> Path | None:
    """Combine per-platform plugin packages into one release.

    The first platform with a complete package contributes the whole tree;
    later platforms add their Binaries and Intermediate directories. Returns
    the zip path, or the merged directory when zipping is off.
    """
    filesystem = filesystem or LocalFileSystem()
    result_path = Path(result_path)
    merged = result_path / "release" / f"{plugin_name}_{version.full_version_string}"

    contributed = False
    for platform in platforms:
        package = (
            result_path / "packages" / commands.result_directory_name(platform, version) / "Plugin"
        )
        binaries = package / "Binaries"
        intermediate = package / "Intermediate"
        if not (package.is_dir() and binaries.is_dir() and intermediate.is_dir()):
            continue

        if not contributed:
            filesystem.copy_directory(package, merged)
            contributed = True
            if not keep_binary_directory:
                filesystem.delete_directory(merged / "Binaries")
                filesystem.delete_directory(merged / "Intermediate")
                break
        else:
            filesystem.copy_directory(binaries, merged / "Binaries")
            filesystem.copy_directory(intermediate, merged / "Intermediate")

    if not contributed:
        logger.info(f"No plugin packages to merge for {version.full_version_string}")
        return None

    logger.info(f"Merged directory created for {version.full_version_string} : {merged}")
    if not is_zipped:
        return merged

    plugin_version = read_plugin_version_name(merged / f"{plugin_name}.uplugin")
    plugin_version = plugin_version.replace(".", "_").strip()
    archive = result_path / "release" / f"{plugin_name}_{plugin_version}_{version.full_version_string}.zip"
    filesystem.zip_directory(merged, archive)
    filesystem.delete_directory(merged)
    return archive


def log_results(results: dict[UEVersion, list[BuildResult]]) -> bool:
    """Log one block per (version, platform) and return overall success."""
    success = True
    logger.info(SEPARATOR)
    for version, version_results in results.items():
        for result in version_results:
            label = f"[{version.full_version_string} {result.platform.value}]"
            logger.info(f"{label} Build : {result.build.value}")
            logger.info(f"{label} Test : {result.test.value}")
            logger.info(f"{label} Plugin Package : {result.package.value}")
            logger.info(f"{label} Game Package : {result.game_package.value}")
            if not result.is_success:
                success = False
    logger.info(f"Result : {'Success' if success else 'Failed'}")
    logger.info(SEPARATOR)
    return success


def _empty_results(platforms: list[EditorPlatform], version: UEVersion) -> list[BuildResult]:
    return [BuildResult(platform=platform, engine_version=version) for platform in platforms]


def _unique(platforms: list[EditorPlatform]) -> list[EditorPlatform]:
    return list(dict.fromkeys(platforms))


def run_builders(
    builders: dict[EditorPlatform, Builder],
    version: UEVersion,
    task: Callable[[Builder], BuildResult],
) -> list[BuildResult]:
    """Run task for every builder concurrently and return results in platform order.

    A builder that raises contributes an all-None result.
    """
    finished: dict[EditorPlatform, BuildResult] = {}
    with ThreadPoolExecutor(max_workers=len(builders)) as pool:
        futures = {pool.submit(task, builder): platform for platform, builder in builders.items()}
        for future in as_completed(futures):
            platform = futures[future]
            try:
                finished[platform] = future.result()
            except Exception as e:
                logger.exception(f"[{version.full_version_string} {platform.value}] Builder failed: {e}")
                finished[platform] = BuildResult(platform=platform, engine_version=version)
    return [finished[platform] for platform in builders]


class PluginRun:
    """Build, test and package a plugin for every engine version and editor platform."""

    def __init__(
        self,
        plugin: PluginConfig,
        git: GitConfig,
        windows: WindowsConfig,
        mac: MacConfig,
        linux: LinuxConfig,
        builder_factory: BuilderFactory = create_builder,
        repository: SourceRepository | None = None,
        filesystem: LocalFileSystem | None = None,
        work_root: Path | None = None,
    ):
        self.plugin = plugin
        self.git = git
        self.windows = windows
        self.mac = mac
        self.linux = linux
        self.builder_factory = builder_factory
        self.repository = repository or SourceRepository(git, plugin.project_name)
        self.filesystem = filesystem or LocalFileSystem()
        self.work_root = Path(work_root or tempfile.gettempdir()) / "uematrix"
        self.settings = BuildSettings.from_plugin_config(plugin, windows, mac, linux)
        self.platforms = _unique(plugin.editor_platforms)

    def execute(self) -> dict[UEVersion, list[BuildResult]]:
        export_settings(
            Path(self.plugin.result_path) / "settings.json",
            {
                "plugin": self.plugin,
                "git": self.git,
                "windows": self.windows,
                "mac": self.mac,
                "linux": self.linux,
            },
        )

        plugin_root = self.work_root / self.plugin.plugin_name
        try:
            self.filesystem.delete_directory(plugin_root)
        except OSError as e:
            logger.warning(f"Failed to clear stale runs in {plugin_root}: {e}")
        work_dir = self.filesystem.ensure_directory(
            plugin_root / datetime.now().strftime("%Y%m%d%H%M%S")
        )

        results: dict[UEVersion, list[BuildResult]] = {}
        try:
            for version in self.plugin.engine_versions:
                results[version] = self._run_version(version, work_dir)
        finally:
            try:
                self.filesystem.delete_directory(work_dir)
            except OSError as e:
                logger.warning(f"Failed to remove working directory {work_dir}: {e}")

        log_results(results)
        logger.info(f"All tasks finished. Check {self.plugin.result_path} for details.")
        return results

    def _run_version(self, version: UEVersion, work_dir: Path) -> list[BuildResult]:
        try:
            base = self.repository.obtain(version, work_dir)
        except RepositoryError as e:
            logger.error(f"[{version.full_version_string}] Skipping all platforms: {e}")
            return _empty_results(self.platforms, version)

        builders = {platform: self.builder_factory(platform, self.settings) for platform in self.platforms}
        try:
            results = run_builders(
                builders, version, lambda builder: self._run_builder(builder, base, version)
            )

            try:
                merge_packages(
                    self.plugin.result_path,
                    self.plugin.plugin_name,
                    version,
                    self.platforms,
                    self.plugin.keep_binary_directory,
                    self.plugin.is_zipped,
                    self.filesystem,
                )
            except OSError as e:
                logger.error(f"[{version.full_version_string}] Failed to merge packages: {e}")

            if self.plugin.run_game_package:
                self._zip_game_packages(version, base, builders, results)
            return results
        finally:
            for builder in builders.values():
                builder.cleanup_temp_directory()

    def _run_builder(self, builder: Builder, base: Path, version: UEVersion) -> BuildResult:
        builder.prepare_repository(str(base), version)
        builder.init_directory(version)
        return builder.run(version)

    def _zip_game_packages(
        self,
        version: UEVersion,
        base: Path,
        builders: dict[EditorPlatform, Builder],
        results: list[BuildResult],
    ) -> None:
        uplugin = base / "Plugins" / self.plugin.plugin_name / f"{self.plugin.plugin_name}.uplugin"
        plugin_version = read_plugin_version_name(uplugin).replace(".", "_").strip()

        for result in results:
            if result.game_package != BuildStatus.SUCCESS:
                continue
            game_dir = builders[result.platform].game_directory
            if not game_dir or not self.filesystem.is_directory(game_dir):
                logger.warning(f"Game package directory not found: {game_dir}")
                continue

            target = commands.native_game_platform(result.platform)
            archive = (
                Path(self.plugin.result_path) / "release"
                / f"{self.plugin.project_name}_{plugin_version}_{version.full_version_string}_{target.value}.zip"
            )
            logger.info(f"Zipping game package to {archive}")
            try:
                self.filesystem.zip_directory(game_dir, archive)
            except OSError as e:
                logger.error(f"Failed to zip game package from {game_dir} to {archive}: {e}")


class PackageRun:
    """Package a project for every engine version on all editor platforms at once."""

    def __init__(
        self,
        package: PackageConfig,
        git: GitConfig,
        windows: WindowsConfig,
        mac: MacConfig,
        linux: LinuxConfig,
        builder_factory: BuilderFactory = create_builder,
        repository: SourceRepository | None = None,
        filesystem: LocalFileSystem | None = None,
        work_root: Path | None = None,
    ):
        self.package = package
        self.git = git
        self.windows = windows
        self.mac = mac
        self.linux = linux
        self.builder_factory = builder_factory
        self.repository = repository or SourceRepository(git, package.project_name)
        self.filesystem = filesystem or LocalFileSystem()
        self.work_root = Path(work_root or tempfile.gettempdir()) / "uematrix"
        self.settings = BuildSettings.from_package_config(package, windows, mac, linux)
        self.platforms = _unique(package.editor_platforms)

    def execute(self) -> dict[UEVersion, list[BuildResult]]:
        export_settings(
            Path(self.package.result_path) / "settings.json",
            {
                "package": self.package,
                "git": self.git,
                "windows": self.windows,
                "mac": self.mac,
                "linux": self.linux,
            },
        )

        results: dict[UEVersion, list[BuildResult]] = {}
        work_dirs = []
        try:
            for version in self.package.engine_versions:
                work_dir = self.work_root / self.package.project_name / uuid.uuid4().hex
                work_dirs.append(work_dir)
                results[version] = self._run_version(version, work_dir)
        finally:
            for work_dir in work_dirs:
                try:
                    self.filesystem.delete_directory(work_dir)
                except OSError as e:
                    logger.warning(f"Failed to remove working directory {work_dir}: {e}")

        log_results(results)
        logger.info(f"All tasks finished. Check {self.package.result_path} for details.")
        return results

    def _run_version(self, version: UEVersion, work_dir: Path) -> list[BuildResult]:
        try:
            base = self.repository.obtain(version, work_dir)
        except RepositoryError as e:
            logger.error(f"[{version.full_version_string}] Skipping all platforms: {e}")
            return _empty_results(self.platforms, version)

        builders = {platform: self.builder_factory(platform, self.settings) for platform in self.platforms}
        try:
            return run_builders(
                builders, version, lambda builder: self._package_builder(builder, base, version)
            )
        finally:
            for builder in builders.values():
                builder.cleanup_temp_directory()

    def _package_builder(self, builder: Builder, base: Path, version: UEVersion) -> BuildResult:
        builder.prepare_repository(str(base), version)
        builder.init_directory(version)
        return builder.run_package(version)
