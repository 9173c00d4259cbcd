"""Builders that drive a remote Mac or Linux host over SSH."""

import contextlib
import logging
import posixpath
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator

import paramiko

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
from uematrix.executor.ssh import SSHSession, SSHSettings
from uematrix.filesystem import LocalFileSystem
from uematrix.types import BuildResult, BuildStatus, EditorPlatform, UEVersion

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (paramiko.SSHException, OSError, EOFError)


class XcodeSwitcher:
    """Selects the Xcode matching an engine version for the duration of a run."""

    def __init__(self, session: SSHSession, xcode_names: dict[UEVersion, str]):
        self.session = session
        self.xcode_names = xcode_names

    def current(self) -> str:
        path = self.session.send_command("xcode-select -p").strip()
        return path.removesuffix("/Contents/Developer")

    def switch(self, xcode_path: str) -> str:
        """Select xcode_path and return the previously selected Xcode."""
        original = self.current()
        self.session.send_command(f"sudo xcode-select --switch '{xcode_path}'")
        return original

    @contextlib.contextmanager
    def selected(self, version: UEVersion) -> Iterator[None]:
        xcode_path = self.xcode_names.get(version)
        if not xcode_path:
            logger.warning("Xcode name for this engine version not found. Skipping xcode-select.")
            yield
            return

        logger.info(f"Switching Xcode: {xcode_path}")
        original = self.switch(xcode_path)
        try:
            yield
        finally:
            if original:
                logger.info(f"Restoring original Xcode: {original}")
                self.session.send_command(f"sudo xcode-select --switch '{original}'")


class RemoteShellBuilder:
    """Uploads the repository, runs engine scripts over SSH and downloads results."""

    def __init__(
        self,
        platform: EditorPlatform,
        settings: BuildSettings,
        session: SSHSession,
        engine_base_path: str,
        xcode: XcodeSwitcher | None = None,
        evaluator: ResultEvaluator | None = None,
        filesystem: LocalFileSystem | None = None,
        now: datetime | None = None,
    ):
        self.platform = platform
        self.settings = settings
        self.session = session
        self.engine_base_path = engine_base_path
        self.xcode = xcode
        self.evaluator = evaluator or ResultEvaluator()
        self.filesystem = filesystem or LocalFileSystem()
        self.repository_path = ""
        self._timestamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
        self._working_path = ""
        self._session_closed = False
        self._layout: BuildLayout | None = None

    @property
    def game_directory(self) -> str:
        return str(self._layout.game_dir) if self._layout else ""

    def _label(self, version: UEVersion) -> str:
        return f"[{version.full_version_string} {self.platform.value}]"

    def _remote(self, *parts: str) -> str:
        return posixpath.join(self.repository_path, *parts)

    def _plugin_destination(self, version: UEVersion) -> str:
        engine_dir = posixpath.join(self.engine_base_path, commands.engine_folder_name(version))
        return commands.plugin_install_directory(engine_dir, self.settings.plugin_name, self.platform)

    def prepare_repository(self, base_repository_path: str, version: UEVersion) -> bool:
        label = self._label(version)
        working_path = posixpath.join(
            "/tmp", self.settings.work_name, self._timestamp, version.version_string
        )
        self.repository_path = ""
        self._working_path = working_path
        try:
            if not self.session.ensure_directory(working_path):
                logger.error(f"{label} Could not create {working_path}")
                return False

            logger.info(f"{label} Uploading {base_repository_path} to {working_path}")
            self.session.upload_directory(Path(base_repository_path), working_path)

            if self.settings.copy_package_after_build and self.settings.plugin_name:
                destination = self._plugin_destination(version)
                if self.session.directory_exists(destination):
                    self.session.delete_directory(destination)
                    logger.info(f"{label} Removed existing plugin at {destination}")
        except TRANSPORT_ERRORS as e:
            logger.error(f"{label} Error preparing remote repository: {e}")
            return False

        self.repository_path = working_path
        logger.info(f"{label} Repository prepared at {working_path}")
        return True

    def init_directory(self, version: UEVersion) -> None:
        self._layout = init_layout(self.settings, self.platform, version, self.repository_path)

    def _current_layout(self, version: UEVersion) -> BuildLayout:
        layout = self._layout
        if layout is None or layout.version != version or layout.repository_path != self.repository_path:
            self.init_directory(version)
        return self._layout

    def _xcode_selected(self, version: UEVersion):
        if self.xcode is None:
            return contextlib.nullcontext()
        return self.xcode.selected(version)

    def _run_script(self, log: PhaseLog, command: str) -> int:
        stream = self.session.run_script(
            [f'cd "{self.repository_path}"', command], self.settings.environment
        )
        return log.tee(stream)

    def _guard(self, phase: str, version: UEVersion, func: Callable[[], BuildStatus]) -> Callable[[], BuildStatus]:
        def guarded() -> BuildStatus:
            try:
                return func()
            except TRANSPORT_ERRORS as e:
                logger.error(f"{self._label(version)} {phase} failed: {e}")
                return BuildStatus.FAILED

        return guarded

    def _preflight(self, version: UEVersion) -> BuildLayout | None:
        label = self._label(version)
        if not self.repository_path:
            logger.error(f"{label} {self.platform.value} builder is not ready")
            return None
        if not self.session.is_ready():
            logger.error(f"{label} Remote host is not reachable")
            return None

        layout = self._current_layout(version)
        if not self.session.file_exists(layout.uproject):
            logger.error(f"{label} Project file does not exist: {layout.uproject}")
            return None
        return layout

    def run(self, version: UEVersion) -> BuildResult:
        result = BuildResult(platform=self.platform, engine_version=version)
        try:
            layout = self._preflight(version)
            if layout is None:
                return result
            self.session.ensure_directory(self._remote("TestResults"))

            with self._xcode_selected(version):
                return run_plugin_phases(
                    result,
                    self.settings,
                    build=self._guard("Build", version, lambda: self._build(layout)),
                    test=self._guard("Test", version, lambda: self._test(layout)),
                    package=self._guard("Package", version, lambda: self._package(layout)),
                    game_package=self._guard("Game package", version, lambda: self._game_package(layout)),
                )
        except TRANSPORT_ERRORS as e:
            logger.error(f"{self._label(version)} Remote run failed: {e}")
            return result

    def _build(self, layout: BuildLayout) -> BuildStatus:
        label = self._label(layout.version)
        with PhaseLog(layout.build_dir / "Build.log", label) as log:
            exit_code = self._run_script(log, f'"{layout.build_script}" {layout.build_args}')
        if exit_code != 0:
            logger.error(f"{label} Build exited with code {exit_code}")
        return BuildStatus.from_bool(exit_code == 0)

    def _remove_stale(self, local: Path, remote: str) -> bool:
        """Clear a phase's output on both hosts before the phase runs."""
        if not remove_stale_output(self.filesystem, local):
            return False
        if self.session.directory_exists(remote) and not self.session.delete_directory(remote):
            logger.error(f"Failed to remove stale remote output {remote}")
            return False
        return True

    def _test(self, layout: BuildLayout) -> BuildStatus:
        label = self._label(layout.version)
        report = layout.test_dir / "index.json"
        if not remove_stale_output(self.filesystem, report):
            return BuildStatus.FAILED
        remote_results = self._remote("TestResults")
        self.session.send_command(f'rm -f "{posixpath.join(remote_results, "index.json")}"')

        args = commands.automation_test_args(layout.uproject, self.settings.plugin_name, remote_results)
        with PhaseLog(layout.test_dir / "AutomationTest.log", label) as log:
            exit_code = self._run_script(log, f'"{layout.editor}" {args}')

        logger.info(f"{label} Downloading test results from {remote_results} to {layout.test_dir}")
        self.session.download_directory(remote_results, layout.test_dir)
        if exit_code != 0:
            logger.error(f"{label} Automation tests exited with code {exit_code}")
            return BuildStatus.FAILED
        return self.evaluator.evaluate_test_results(report, self.platform, layout.version)

    def _package(self, layout: BuildLayout) -> BuildStatus:
        label = self._label(layout.version)
        remote_packages = self._remote("packages")
        plugin_dir = layout.package_dir / "Plugin"
        if not self._remove_stale(plugin_dir, posixpath.join(remote_packages, "Plugin")):
            return BuildStatus.FAILED
        self.session.ensure_directory(remote_packages)

        targets = commands.target_platforms(self.platform, self.settings.package_platforms)
        args = commands.build_plugin_args(
            self.repository_path, self.settings.plugin_name, remote_packages, targets, self.platform
        )
        with PhaseLog(layout.package_dir / "BuildPlugin.log", label) as log:
            exit_code = self._run_script(log, f'"{layout.run_uat}" {args}')
        logger.info(f"{label} BuildPlugin exited with code {exit_code}")

        self.session.download_directory(remote_packages, layout.package_dir)
        status = self.evaluator.evaluate_package_result(
            plugin_dir / f"{self.settings.plugin_name}.uplugin", self.platform, layout.version
        )
        if status == BuildStatus.SUCCESS and self.settings.copy_package_after_build:
            self._install_plugin(layout, posixpath.join(remote_packages, "Plugin"))
        return status

    def _install_plugin(self, layout: BuildLayout, packaged_plugin: str) -> None:
        destination = self._plugin_destination(layout.version)
        try:
            if self.session.directory_exists(destination):
                self.session.delete_directory(destination)
            if self.session.copy_directory(packaged_plugin, destination):
                logger.info(f"Copied packaged plugin from {packaged_plugin} to {destination}")
        except TRANSPORT_ERRORS as e:
            logger.error(f"Failed to copy packaged plugin: {e}")

    def _game_package(self, layout: BuildLayout) -> BuildStatus:
        label = self._label(layout.version)
        remote_output = self._remote("GamePackage")
        if not self._remove_stale(layout.game_dir, remote_output):
            return BuildStatus.FAILED

        args = commands.build_cook_run_args(
            layout.uproject, remote_output, commands.native_game_platform(self.platform), self.platform
        )
        with PhaseLog(layout.package_dir / "BuildGamePackage.log", label) as log:
            exit_code = self._run_script(log, f'"{layout.run_uat}" {args}')
        if exit_code != 0:
            logger.error(f"{label} Game packaging exited with code {exit_code}")
            return BuildStatus.FAILED

        if not self.session.directory_exists(remote_output):
            logger.error(f"{label} Game package output not found: {remote_output}")
            return BuildStatus.FAILED
        self.session.download_directory(remote_output, layout.game_dir)
        return BuildStatus.SUCCESS

    def run_package(self, version: UEVersion) -> BuildResult:
        result = BuildResult(platform=self.platform, engine_version=version)
        label = self._label(version)
        try:
            layout = self._preflight(version)
            if layout is None:
                return result

            project_dir = layout.package_dir / "Project"
            remote_project = self._remote("packages", "Project")
            if not self._remove_stale(project_dir, remote_project):
                result.build = BuildStatus.FAILED
                return result

            exit_codes = []
            with self._xcode_selected(version), PhaseLog(layout.package_dir / "BuildCookRun.log", label) as log:
                for target in commands.target_platforms(self.platform, self.settings.package_platforms):
                    args = commands.build_cook_run_args(layout.uproject, remote_project, target, self.platform)
                    exit_code = self._run_script(log, f'"{layout.run_uat}" {args}')
                    if exit_code != 0:
                        logger.error(f"{label} BuildCookRun for {target.value} exited with code {exit_code}")
                    exit_codes.append(exit_code)
        except TRANSPORT_ERRORS as e:
            logger.error(f"{label} Remote packaging failed: {e}")
            result.build = BuildStatus.FAILED
            return result

        return finish_project_package(
            result,
            exit_codes,
            self._guard("Package", version, lambda: self._evaluate_project(project_dir, remote_project, layout)),
        )

    def _evaluate_project(self, project_dir: Path, remote_project: str, layout: BuildLayout) -> BuildStatus:
        if not self.session.directory_exists(remote_project):
            logger.error(f"{self._label(layout.version)} Project package not found: {remote_project}")
            return BuildStatus.FAILED
        self.session.download_directory(remote_project, project_dir)
        status = self.evaluator.evaluate_project_package(layout.package_dir)
        if status == BuildStatus.SUCCESS and self.settings.is_zipped:
            zip_project_package(self.settings, self.filesystem, project_dir, self.platform, layout.version)
        return status

    def cleanup_temp_directory(self) -> None:
        if self._working_path:
            logger.info(f"Cleaning up remote directory {self._working_path}")
            try:
                if not self.session.delete_directory(self._working_path):
                    logger.warning(f"Failed to delete remote directory {self._working_path}")
            except TRANSPORT_ERRORS as e:
                logger.warning(f"Error cleaning up {self._working_path}: {e}")
            self._working_path = ""

        if not self._session_closed:
            self._session_closed = True
            try:
                self.session.close()
            except TRANSPORT_ERRORS as e:
                logger.warning(f"Error closing SSH session: {e}")


def _ssh_settings(config) -> SSHSettings:
    return SSHSettings(
        host=config.ssh_host,
        user=config.ssh_user,
        port=config.ssh_port,
        password=config.ssh_password or None,
        key_path=config.ssh_private_key_path or None,
    )


def create_mac_builder(settings: BuildSettings, session: SSHSession | None = None) -> RemoteShellBuilder:
    session = session or SSHSession(_ssh_settings(settings.mac))
    return RemoteShellBuilder(
        EditorPlatform.MAC,
        settings,
        session,
        engine_base_path=settings.mac.unreal_base_path,
        xcode=XcodeSwitcher(session, settings.mac.xcode_names),
    )


def create_linux_remote_builder(
    settings: BuildSettings, session: SSHSession | None = None
) -> RemoteShellBuilder:
    session = session or SSHSession(_ssh_settings(settings.linux))
    return RemoteShellBuilder(
        EditorPlatform.LINUX,
        settings,
        session,
        engine_base_path=settings.linux.unreal_base_path,
    )
