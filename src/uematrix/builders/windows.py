"""Windows builder driving the local engine install."""

import logging
import os
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
from uematrix.executor.process import ProcessRunner
from uematrix.filesystem import LocalFileSystem
from uematrix.types import BuildResult, BuildStatus, EditorPlatform, UEVersion

logger = logging.getLogger(__name__)


class WindowsBuilder:
    """Runs Build.bat, the editor and RunUAT as local processes."""

    platform = EditorPlatform.WINDOWS

    def __init__(
        self,
        settings: BuildSettings,
        process_runner: ProcessRunner | None = None,
        filesystem: LocalFileSystem | None = None,
        evaluator: ResultEvaluator | None = None,
    ):
        self.settings = settings
        self.process_runner = process_runner or ProcessRunner()
        self.filesystem = filesystem or LocalFileSystem()
        self.evaluator = evaluator or ResultEvaluator()
        self.repository_path = ""
        self._working_path = ""
        self._layout: BuildLayout | None = None

    @property
    def game_directory(self) -> str:
        return str(self._layout.game_dir) if self._layout else ""

    def _label(self, version: UEVersion) -> str:
        return f"[{version.full_version_string} {self.platform.value}]"

    def prepare_repository(self, base_repository_path: str, version: UEVersion) -> bool:
        destination = os.path.normpath(
            os.path.join(base_repository_path, "..", "Windows", version.version_string)
        )
        self.repository_path = ""
        self._working_path = destination
        try:
            self.filesystem.delete_directory(destination)
            self.filesystem.copy_directory(base_repository_path, destination)
        except OSError as e:
            logger.error(f"{self._label(version)} Failed to prepare repository: {e}")
            return False

        self.repository_path = destination
        logger.info(f"{self._label(version)} Repository prepared at {destination}")
        return True

    def init_directory(self, version: UEVersion) -> None:
        self._layout = init_layout(self.settings, self.platform, version, self.repository_path)

    def _current_layout(self, version: UEVersion) -> BuildLayout:
        layout = self._layout
        if layout is None or layout.version != version or layout.repository_path != self.repository_path:
            self.init_directory(version)
        return self._layout

    def _stream(self, program: str, args: str):
        return self.process_runner.stream(
            program, args, cwd=self.repository_path, env=self.settings.environment
        )

    def run(self, version: UEVersion) -> BuildResult:
        result = BuildResult(platform=self.platform, engine_version=version)
        if not self.repository_path:
            logger.error(f"{self._label(version)} Windows builder is not ready")
            return result

        layout = self._current_layout(version)
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
            exit_code = log.tee(self._stream(layout.build_script, layout.build_args))
        if exit_code != 0:
            logger.error(f"{label} Build exited with code {exit_code}")
        return BuildStatus.from_bool(exit_code == 0)

    def _test(self, layout: BuildLayout) -> BuildStatus:
        label = self._label(layout.version)
        args = commands.automation_test_args(
            layout.uproject, self.settings.plugin_name, str(layout.test_dir)
        )
        report = layout.test_dir / "index.json"
        if not remove_stale_output(self.filesystem, report):
            return BuildStatus.FAILED
        with PhaseLog(layout.test_dir / "AutomationTest.log", label) as log:
            exit_code = log.tee(self._stream(layout.editor, args))
        if exit_code != 0:
            logger.error(f"{label} Automation tests exited with code {exit_code}")
            return BuildStatus.FAILED
        return self.evaluator.evaluate_test_results(report, self.platform, layout.version)

    def _package(self, layout: BuildLayout) -> BuildStatus:
        label = self._label(layout.version)
        plugin_dir = layout.package_dir / "Plugin"
        if not remove_stale_output(self.filesystem, plugin_dir):
            return BuildStatus.FAILED
        targets = commands.target_platforms(self.platform, self.settings.package_platforms)
        args = commands.build_plugin_args(
            self.repository_path, self.settings.plugin_name, str(layout.package_dir),
            targets, self.platform,
        )
        with PhaseLog(layout.package_dir / "BuildPlugin.log", label) as log:
            exit_code = log.tee(self._stream(layout.run_uat, args))
        logger.info(f"{label} BuildPlugin exited with code {exit_code}")

        status = self.evaluator.evaluate_package_result(
            plugin_dir / f"{self.settings.plugin_name}.uplugin", self.platform, layout.version
        )
        if status == BuildStatus.SUCCESS and self.settings.copy_package_after_build:
            self._install_plugin(layout, plugin_dir)
        return status

    def _install_plugin(self, layout: BuildLayout, plugin_dir: Path) -> None:
        destination = commands.plugin_install_directory(
            layout.engine_dir, self.settings.plugin_name, self.platform
        )
        try:
            self.filesystem.delete_directory(destination)
            self.filesystem.copy_directory(plugin_dir, destination)
            logger.info(f"Copied packaged plugin to {destination}")
        except OSError as e:
            logger.error(f"Failed to copy packaged plugin to {destination}: {e}")

    def _game_package(self, layout: BuildLayout) -> BuildStatus:
        label = self._label(layout.version)
        if not remove_stale_output(self.filesystem, layout.game_dir):
            return BuildStatus.FAILED
        args = commands.build_cook_run_args(
            layout.uproject, str(layout.game_dir),
            commands.native_game_platform(self.platform), self.platform,
        )
        with PhaseLog(layout.package_dir / "BuildGamePackage.log", label) as log:
            exit_code = log.tee(self._stream(layout.run_uat, args))
        if exit_code != 0:
            logger.error(f"{label} Game packaging exited with code {exit_code}")
        return BuildStatus.from_bool(exit_code == 0)

    def run_package(self, version: UEVersion) -> BuildResult:
        result = BuildResult(platform=self.platform, engine_version=version)
        label = self._label(version)
        if not self.repository_path:
            logger.error(f"{label} Windows builder is not ready")
            return result

        layout = self._current_layout(version)
        project_dir = layout.package_dir / "Project"
        if not remove_stale_output(self.filesystem, project_dir):
            result.build = BuildStatus.FAILED
            return result

        exit_codes = []
        with PhaseLog(layout.package_dir / "BuildCookRun.log", label) as log:
            for target in commands.target_platforms(self.platform, self.settings.package_platforms):
                args = commands.build_cook_run_args(
                    layout.uproject, str(project_dir), target, self.platform
                )
                exit_code = log.tee(self._stream(layout.run_uat, args))
                if exit_code != 0:
                    logger.error(f"{label} BuildCookRun for {target.value} exited with code {exit_code}")
                exit_codes.append(exit_code)

        return finish_project_package(
            result, exit_codes, lambda: self._evaluate_project(project_dir, layout)
        )

    def _evaluate_project(self, project_dir: Path, layout: BuildLayout) -> BuildStatus:
        status = self.evaluator.evaluate_project_package(layout.package_dir)
        if status == BuildStatus.SUCCESS and self.settings.is_zipped:
            zip_project_package(self.settings, self.filesystem, project_dir, self.platform, layout.version)
        return status

    def cleanup_temp_directory(self) -> None:
        if not self._working_path:
            return
        logger.info(f"Cleaning up {self._working_path}")
        try:
            self.filesystem.delete_directory(self._working_path)
        except OSError as e:
            logger.warning(f"Failed to delete {self._working_path}: {e}")
        self._working_path = ""
