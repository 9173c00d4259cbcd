"""Linux builder running engine scripts inside a container."""

import logging
import os
import posixpath
from pathlib import Path

from uematrix import commands
from uematrix.builders.base import (
    BuildLayout,
    BuildSettings,
    PhaseLog,
    finish_project_package,
    init_layout,
    remove_stale_output,
    run_plugin_phases,
    zip_project_package,
)
from uematrix.evaluator import ResultEvaluator
from uematrix.executor.docker import DockerRunner
from uematrix.filesystem import LocalFileSystem
from uematrix.types import BuildResult, BuildStatus, EditorPlatform, UEVersion

logger = logging.getLogger(__name__)

CONTAINER_PLUGINS_DIRECTORY = posixpath.join(
    commands.DOCKER_ENGINE_DIRECTORY, "Engine", "Plugins", "Marketplace"
)


class DockerLinuxBuilder:
    """Stages the repository locally and mounts it into one container per phase."""

    platform = EditorPlatform.LINUX

    def __init__(
        self,
        settings: BuildSettings,
        docker: DockerRunner | None = None,
        filesystem: LocalFileSystem | None = None,
        evaluator: ResultEvaluator | None = None,
    ):
        self.settings = settings
        self.docker = docker or DockerRunner(settings.linux.docker_command)
        self.filesystem = filesystem or LocalFileSystem()
        self.evaluator = evaluator or ResultEvaluator()
        self.repository_path = ""
        self._staging_path = ""
        self._layout: BuildLayout | None = None

    @property
    def game_directory(self) -> str:
        return str(self._layout.game_dir) if self._layout else ""

    def _label(self, version: UEVersion) -> str:
        return f"[{version.full_version_string} {self.platform.value}]"

    def _plugin_source(self, version: UEVersion) -> str:
        return os.path.join(self.settings.linux.docker_plugins_source_path, version.version_string)

    def image_name(self, version: UEVersion) -> str:
        return self.settings.linux.docker_image.replace("%v", version.version_string).lower()

    def volumes(self, version: UEVersion) -> dict[str, str]:
        volumes = {self._staging_path: commands.DOCKER_PROJECT_DIRECTORY}
        if self.settings.linux.copy_plugins_to_docker:
            volumes[self._plugin_source(version)] = CONTAINER_PLUGINS_DIRECTORY
        return volumes

    def prepare_repository(self, base_repository_path: str, version: UEVersion) -> bool:
        label = self._label(version)
        staging = os.path.normpath(os.path.join(base_repository_path, "..", "Linux"))
        self.repository_path = ""
        self._staging_path = staging
        try:
            self.filesystem.delete_directory(staging)
            self.filesystem.copy_directory(base_repository_path, staging)
            if self.settings.copy_package_after_build and self.settings.plugin_name:
                self.filesystem.delete_directory(
                    os.path.join(self._plugin_source(version), self.settings.plugin_name)
                )
        except OSError as e:
            logger.error(f"{label} Failed to stage repository: {e}")
            return False

        self.repository_path = commands.DOCKER_PROJECT_DIRECTORY
        logger.info(f"{label} Repository staged at {staging} for {self.repository_path}")
        return True

    def init_directory(self, version: UEVersion) -> None:
        self._layout = init_layout(self.settings, self.platform, version, self.repository_path)

    def _current_layout(self, version: UEVersion) -> BuildLayout:
        layout = self._layout
        if layout is None or layout.version != version or layout.repository_path != self.repository_path:
            self.init_directory(version)
        return self._layout

    def _run_container(self, log: PhaseLog, version: UEVersion, command: str) -> int:
        logger.info(f"Running Docker with image: {self.image_name(version)}")
        stream = self.docker.run_container(
            self.image_name(version), command, self.volumes(version), self.settings.environment
        )
        return log.tee(stream)

    def _collect(self, relative: str, destination: Path) -> bool:
        """Copy container output from the staging directory back to the result path."""
        source = os.path.join(self._staging_path, relative)
        if not self.filesystem.is_directory(source):
            logger.error(f"Container output not found: {source}")
            return False
        try:
            self.filesystem.copy_directory(source, destination)
        except OSError as e:
            logger.error(f"Failed to copy {source} to {destination}: {e}")
            return False
        return True

    def _preflight(self, version: UEVersion) -> BuildLayout | None:
        label = self._label(version)
        if not self.repository_path:
            logger.error(f"{label} Linux builder is not ready")
            return None
        if not self.docker.is_ready():
            logger.error(
                f"{label} {self.settings.linux.docker_command} is not available. "
                f"Please ensure it is installed and running."
            )
            return None
        return self._current_layout(version)

    def run(self, version: UEVersion) -> BuildResult:
        result = BuildResult(platform=self.platform, engine_version=version)
        layout = self._preflight(version)
        if layout is None:
            return result

        for name in ("TestResults", "packages"):
            self.filesystem.ensure_directory(os.path.join(self._staging_path, name))

        return run_plugin_phases(
            result,
            self.settings,
            build=lambda: self._build(layout),
            test=lambda: self._test(layout),
            package=lambda: self._package(layout),
            game_package=lambda: self._game_package(layout),
        )

    def _build(self, layout: BuildLayout) -> BuildStatus:
        label = self._label(layout.version)
        with PhaseLog(layout.build_dir / "Build.log", label) as log:
            exit_code = self._run_container(
                log, layout.version, f'"{layout.build_script}" {layout.build_args}'
            )
        if exit_code != 0:
            logger.error(f"{label} Build exited with code {exit_code}")
        return BuildStatus.from_bool(exit_code == 0)

    def _staged(self, *parts: str) -> str:
        return os.path.join(self._staging_path, *parts)

    def _test(self, layout: BuildLayout) -> BuildStatus:
        label = self._label(layout.version)
        report = layout.test_dir / "index.json"
        if not remove_stale_output(self.filesystem, report, self._staged("TestResults", "index.json")):
            return BuildStatus.FAILED

        report_dir = posixpath.join(self.repository_path, "TestResults")
        args = commands.automation_test_args(layout.uproject, self.settings.plugin_name, report_dir)
        with PhaseLog(layout.test_dir / "AutomationTest.log", label) as log:
            exit_code = self._run_container(log, layout.version, f'"{layout.editor}" {args}')

        self._collect("TestResults", layout.test_dir)
        if exit_code != 0:
            logger.error(f"{label} Automation tests exited with code {exit_code}")
            return BuildStatus.FAILED
        return self.evaluator.evaluate_test_results(report, self.platform, layout.version)

    def _package(self, layout: BuildLayout) -> BuildStatus:
        label = self._label(layout.version)
        plugin_dir = layout.package_dir / "Plugin"
        if not remove_stale_output(self.filesystem, plugin_dir, self._staged("packages", "Plugin")):
            return BuildStatus.FAILED

        output_dir = posixpath.join(self.repository_path, "packages")
        targets = commands.target_platforms(self.platform, self.settings.package_platforms)
        args = commands.build_plugin_args(
            self.repository_path, self.settings.plugin_name, output_dir, targets, self.platform
        )
        with PhaseLog(layout.package_dir / "BuildPlugin.log", label) as log:
            exit_code = self._run_container(log, layout.version, f'"{layout.run_uat}" {args}')
        logger.info(f"{label} BuildPlugin exited with code {exit_code}")

        self._collect("packages", layout.package_dir)
        status = self.evaluator.evaluate_package_result(
            plugin_dir / f"{self.settings.plugin_name}.uplugin", self.platform, layout.version
        )
        if status == BuildStatus.SUCCESS and self.settings.copy_package_after_build:
            self._install_plugin(layout, plugin_dir)
        return status

    def _install_plugin(self, layout: BuildLayout, plugin_dir: Path) -> None:
        """Make the packaged plugin available to later container runs."""
        destination = os.path.join(self._plugin_source(layout.version), self.settings.plugin_name)
        try:
            self.filesystem.delete_directory(destination)
            self.filesystem.copy_directory(plugin_dir, destination)
            logger.info(f"Copied packaged plugin to {destination}")
        except OSError as e:
            logger.error(f"Failed to copy packaged plugin to {destination}: {e}")

    def _game_package(self, layout: BuildLayout) -> BuildStatus:
        label = self._label(layout.version)
        if not remove_stale_output(self.filesystem, layout.game_dir, self._staged("GamePackage")):
            return BuildStatus.FAILED

        output_dir = posixpath.join(self.repository_path, "GamePackage")
        args = commands.build_cook_run_args(
            layout.uproject, output_dir, commands.native_game_platform(self.platform), self.platform
        )
        with PhaseLog(layout.package_dir / "BuildGamePackage.log", label) as log:
            exit_code = self._run_container(log, layout.version, f'"{layout.run_uat}" {args}')
        if exit_code != 0:
            logger.error(f"{label} Game packaging exited with code {exit_code}")
            return BuildStatus.FAILED
        return BuildStatus.from_bool(self._collect("GamePackage", layout.game_dir))

    def run_package(self, version: UEVersion) -> BuildResult:
        result = BuildResult(platform=self.platform, engine_version=version)
        label = self._label(version)
        layout = self._preflight(version)
        if layout is None:
            return result

        project_dir = layout.package_dir / "Project"
        staged_project = self._staged("packages", "Project")
        if not remove_stale_output(self.filesystem, project_dir, staged_project):
            result.build = BuildStatus.FAILED
            return result

        output_dir = posixpath.join(self.repository_path, "packages", "Project")
        exit_codes = []
        with PhaseLog(layout.package_dir / "BuildCookRun.log", label) as log:
            for target in commands.target_platforms(self.platform, self.settings.package_platforms):
                args = commands.build_cook_run_args(layout.uproject, output_dir, target, self.platform)
                exit_code = self._run_container(log, version, f'"{layout.run_uat}" {args}')
                if exit_code != 0:
                    logger.error(f"{label} BuildCookRun for {target.value} exited with code {exit_code}")
                exit_codes.append(exit_code)

        return finish_project_package(
            result, exit_codes, lambda: self._evaluate_project(project_dir, layout)
        )

    def _evaluate_project(self, project_dir: Path, layout: BuildLayout) -> BuildStatus:
        if not self._collect(os.path.join("packages", "Project"), project_dir):
            return BuildStatus.FAILED
        status = self.evaluator.evaluate_project_package(layout.package_dir)
        if status == BuildStatus.SUCCESS and self.settings.is_zipped:
            zip_project_package(self.settings, self.filesystem, project_dir, self.platform, layout.version)
        return status

    def cleanup_temp_directory(self) -> None:
        if not self._staging_path:
            return
        logger.info(f"Cleaning up {self._staging_path}")
        try:
            self.filesystem.delete_directory(self._staging_path)
        except OSError as e:
            logger.warning(f"Failed to delete {self._staging_path}: {e}")
        self._staging_path = ""
