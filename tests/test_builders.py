"""Tests for platform builders using fake transports."""

import json

import paramiko
import pytest

from uematrix.builders import (
    BuildSettings,
    DockerLinuxBuilder,
    PhaseLog,
    RemoteShellBuilder,
    WindowsBuilder,
    XcodeSwitcher,
    builder_table,
    create_linux_remote_builder,
)
from uematrix.builders.base import run_plugin_phases
from uematrix.builders.docker import CONTAINER_PLUGINS_DIRECTORY
from uematrix.config import LinuxConfig, MacConfig
from uematrix.evaluator import ResultEvaluator
from uematrix.types import BuildResult, BuildStatus, EditorPlatform, GamePlatform, LinuxBuilderMode, UEVersion

VERSION = UEVersion.UE_5_4


class FakeStream:
    def __init__(self, lines=(), exit_code=0):
        self._lines = list(lines)
        self._final_code = exit_code
        self.exit_code = None
        self.closed = False

    def __iter__(self):
        yield from self._lines
        self.exit_code = self._final_code

    def close(self):
        self.closed = True


class FakeProcessRunner:
    def __init__(self, exit_codes=None):
        self.exit_codes = list(exit_codes or [])
        self.calls = []

    def stream(self, program, args="", cwd=None, env=None):
        self.calls.append((program, args, cwd))
        code = self.exit_codes.pop(0) if self.exit_codes else 0
        return FakeStream([f"running {program}"], code)


class PassingEvaluator(ResultEvaluator):
    def evaluate_test_results(self, source, platform, version):
        return BuildStatus.SUCCESS

    def evaluate_package_result(self, source, platform, version):
        return BuildStatus.SUCCESS


class FakeSession:
    def __init__(self, ready=True, exit_codes=None, xcode="", run_error=None):
        self.ready = ready
        self.exit_codes = list(exit_codes or [])
        self.xcode = xcode
        self.run_error = run_error
        self.commands = []
        self.scripts = []
        self.uploads = []
        self.deleted = []
        self.close_calls = 0

    def is_ready(self):
        return self.ready

    def send_command(self, command):
        self.commands.append(command)
        if command == "xcode-select -p":
            return f"{self.xcode}/Contents/Developer\n"
        return ""

    def file_exists(self, path):
        return True

    def directory_exists(self, path):
        return True

    def ensure_directory(self, path):
        return True

    def delete_directory(self, path):
        self.deleted.append(path)
        return True

    def copy_directory(self, source, destination):
        return True

    def upload_directory(self, local_path, remote_path):
        self.uploads.append((local_path, remote_path))

    def download_directory(self, remote_path, local_path):
        pass

    def run_script(self, commands, env=None):
        if self.run_error is not None:
            raise self.run_error
        self.scripts.append(commands)
        code = self.exit_codes.pop(0) if self.exit_codes else 0
        return FakeStream(["remote output"], code)

    def close(self):
        self.close_calls += 1


class FakeDocker:
    def __init__(self, ready=True, exit_codes=None):
        self.ready = ready
        self.exit_codes = list(exit_codes or [])
        self.runs = []

    def is_ready(self):
        return self.ready

    def run_container(self, image, command, volumes=None, env=None):
        self.runs.append((image, command, volumes))
        code = self.exit_codes.pop(0) if self.exit_codes else 0
        return FakeStream(["container output"], code)


@pytest.fixture
def base_repo(tmp_path):
    base = tmp_path / "work" / "UE_5_4" / "base"
    (base / "Plugins" / "Tool").mkdir(parents=True)
    (base / "Game.uproject").write_text("{}")
    return base


def _settings(tmp_path, **overrides):
    values = {
        "project_name": "Game",
        "plugin_name": "Tool",
        "result_path": str(tmp_path / "results"),
        "package_platforms": [GamePlatform.WIN64, GamePlatform.MAC, GamePlatform.LINUX],
    }
    values.update(overrides)
    return BuildSettings(**values)


def _all_none(result):
    return all(
        status == BuildStatus.NONE
        for status in (result.build, result.test, result.package, result.game_package)
    )


class TestRunPluginPhases:
    def _phases(self, build_status, calls):
        def phase(name, status):
            def run():
                calls.append(name)
                return status
            return run

        return {
            "build": phase("build", build_status),
            "test": phase("test", BuildStatus.SUCCESS),
            "package": phase("package", BuildStatus.FAILED),
            "game_package": phase("game_package", BuildStatus.SUCCESS),
        }

    def test_failed_build_skips_everything(self, tmp_path):
        calls = []
        settings = _settings(tmp_path, run_test=True, run_package=True, run_game_package=True)
        result = run_plugin_phases(
            BuildResult(platform=EditorPlatform.MAC, engine_version=VERSION),
            settings,
            **self._phases(BuildStatus.FAILED, calls),
        )
        assert calls == ["build"]
        assert result.build == BuildStatus.FAILED
        assert result.test == BuildStatus.NONE

    def test_only_enabled_phases_run(self, tmp_path):
        calls = []
        settings = _settings(tmp_path, run_package=True)
        result = run_plugin_phases(
            BuildResult(platform=EditorPlatform.MAC, engine_version=VERSION),
            settings,
            **self._phases(BuildStatus.SUCCESS, calls),
        )
        assert calls == ["build", "package"]
        assert result.package == BuildStatus.FAILED
        assert result.game_package == BuildStatus.NONE


class TestPhaseLog:
    def test_tee_writes_file(self, tmp_path):
        stream = FakeStream(["a", "b"], 2)
        with PhaseLog(tmp_path / "logs" / "Build.log", "[UE5.4 Mac]") as log:
            assert log.tee(stream) == 2
        assert (tmp_path / "logs" / "Build.log").read_text() == "a\nb\n"
        assert stream.closed

    def test_unfinished_stream_is_failure(self, tmp_path):
        class Unfinished(FakeStream):
            def __iter__(self):
                yield from self._lines

        with PhaseLog(tmp_path / "Build.log", "label") as log:
            assert log.tee(Unfinished(["x"])) == -1


class TestWindowsBuilder:
    def test_prepare_copies_next_to_base(self, tmp_path, base_repo):
        builder = WindowsBuilder(_settings(tmp_path), FakeProcessRunner())
        assert builder.prepare_repository(str(base_repo), VERSION)

        expected = tmp_path / "work" / "UE_5_4" / "Windows" / "5.4"
        assert builder.repository_path == str(expected)
        assert (expected / "Game.uproject").exists()

    def test_prepare_failure(self, tmp_path):
        builder = WindowsBuilder(_settings(tmp_path), FakeProcessRunner())
        assert not builder.prepare_repository(str(tmp_path / "missing" / "base"), VERSION)
        assert builder.repository_path == ""

    def test_not_ready_returns_none(self, tmp_path):
        runner = FakeProcessRunner()
        builder = WindowsBuilder(_settings(tmp_path), runner)
        result = builder.run(VERSION)
        assert _all_none(result)
        assert runner.calls == []

    def test_build_failure_stops(self, tmp_path, base_repo):
        runner = FakeProcessRunner(exit_codes=[1])
        settings = _settings(tmp_path, run_test=True, run_package=True)
        builder = WindowsBuilder(settings, runner, evaluator=PassingEvaluator())
        builder.prepare_repository(str(base_repo), VERSION)
        builder.init_directory(VERSION)

        result = builder.run(VERSION)
        assert result.build == BuildStatus.FAILED
        assert result.test == BuildStatus.NONE
        assert result.package == BuildStatus.NONE
        assert len(runner.calls) == 1
        assert (tmp_path / "results" / "build" / "Windows_UE5.4" / "Build.log").exists()

    def test_all_phases(self, tmp_path, base_repo):
        runner = FakeProcessRunner()
        settings = _settings(tmp_path, run_test=True, run_package=True, run_game_package=True)
        builder = WindowsBuilder(settings, runner, evaluator=PassingEvaluator())
        builder.prepare_repository(str(base_repo), VERSION)
        builder.init_directory(VERSION)

        result = builder.run(VERSION)
        assert result.is_success
        assert result.game_package == BuildStatus.SUCCESS
        programs = [program for program, _, _ in runner.calls]
        assert programs[0].endswith("Build.bat")
        assert programs[1].endswith("UnrealEditor-Cmd.exe")
        assert programs[2].endswith("RunUAT.bat")
        assert "-TargetPlatforms=Win64" in runner.calls[2][1]
        assert "-platform=Win64" in runner.calls[3][1]
        assert builder.game_directory.endswith("Windows_UE5.4")

    def test_failed_tests(self, tmp_path, base_repo):
        runner = FakeProcessRunner(exit_codes=[0, 1])
        settings = _settings(tmp_path, run_test=True)
        builder = WindowsBuilder(settings, runner, evaluator=PassingEvaluator())
        builder.prepare_repository(str(base_repo), VERSION)

        result = builder.run(VERSION)
        assert result.build == BuildStatus.SUCCESS
        assert result.test == BuildStatus.FAILED

    def test_cleanup_is_idempotent(self, tmp_path, base_repo):
        builder = WindowsBuilder(_settings(tmp_path), FakeProcessRunner())
        builder.prepare_repository(str(base_repo), VERSION)
        working = builder.repository_path

        builder.cleanup_temp_directory()
        builder.cleanup_temp_directory()
        assert not (tmp_path / "work" / "UE_5_4" / "Windows" / "5.4").exists()
        assert working

    def test_run_package_zips_project(self, tmp_path, base_repo):
        results = tmp_path / "results"

        class ProjectRunner(FakeProcessRunner):
            def stream(self, program, args="", cwd=None, env=None):
                project = results / "packages" / "Windows_UE5.4" / "Project"
                (project / "Windows").mkdir(parents=True, exist_ok=True)
                (project / "Windows" / "Game.exe").write_text("exe")
                return super().stream(program, args, cwd, env)

        runner = ProjectRunner()
        settings = _settings(tmp_path, run_package=True, zip_package_name="Demo")
        builder = WindowsBuilder(settings, runner)
        builder.init_directory(VERSION)
        builder.prepare_repository(str(base_repo), VERSION)

        result = builder.run_package(VERSION)
        assert result.package == BuildStatus.SUCCESS
        assert result.build == BuildStatus.SUCCESS
        assert len(runner.calls) == 1
        assert (results / "releases" / "Demo_UE5.4_Windows.zip").exists()

    def test_failed_cook_ignores_previous_project(self, tmp_path, base_repo):
        results = tmp_path / "results"
        previous = results / "packages" / "Windows_UE5.4" / "Project" / "Windows"
        previous.mkdir(parents=True)
        (previous / "Game.exe").write_text("old")

        runner = FakeProcessRunner(exit_codes=[1])
        builder = WindowsBuilder(_settings(tmp_path, run_package=True), runner)
        builder.prepare_repository(str(base_repo), VERSION)
        builder.init_directory(VERSION)

        result = builder.run_package(VERSION)
        assert result.build == BuildStatus.FAILED
        assert result.package == BuildStatus.NONE
        assert not (results / "packages" / "Windows_UE5.4" / "Project").exists()
        assert not (results / "releases").exists()

    def test_failed_plugin_package_ignores_previous_descriptor(self, tmp_path, base_repo):
        plugin = tmp_path / "results" / "packages" / "Windows_UE5.4" / "Plugin"
        plugin.mkdir(parents=True)
        (plugin / "Tool.uplugin").write_text(json.dumps({"EngineVersion": "5.4.0"}))

        runner = FakeProcessRunner(exit_codes=[0, 1])
        builder = WindowsBuilder(_settings(tmp_path, run_package=True), runner)
        builder.prepare_repository(str(base_repo), VERSION)
        builder.init_directory(VERSION)

        result = builder.run(VERSION)
        assert result.build == BuildStatus.SUCCESS
        assert result.package == BuildStatus.FAILED
        assert not (plugin / "Tool.uplugin").exists()

    def test_missing_report_ignores_previous_report(self, tmp_path, base_repo):
        tests_dir = tmp_path / "results" / "tests" / "Windows_UE5.4"
        tests_dir.mkdir(parents=True)
        (tests_dir / "index.json").write_text(json.dumps({"failed": 0, "succeeded": 3}))

        builder = WindowsBuilder(_settings(tmp_path, run_test=True), FakeProcessRunner())
        builder.prepare_repository(str(base_repo), VERSION)
        builder.init_directory(VERSION)

        result = builder.run(VERSION)
        assert result.build == BuildStatus.SUCCESS
        assert result.test == BuildStatus.FAILED
        assert not (tests_dir / "index.json").exists()


class TestRemoteShellBuilder:
    def _builder(self, tmp_path, session, **overrides):
        return RemoteShellBuilder(
            EditorPlatform.MAC,
            _settings(tmp_path, **overrides),
            session,
            engine_base_path="/Users/Shared/Epic Games",
            evaluator=PassingEvaluator(),
        )

    def test_prepare_uploads_to_tmp(self, tmp_path, base_repo):
        session = FakeSession()
        builder = self._builder(tmp_path, session)
        assert builder.prepare_repository(str(base_repo), VERSION)
        assert builder.repository_path.startswith("/tmp/Tool/")
        assert builder.repository_path.endswith("/5.4")
        assert session.uploads == [(base_repo, builder.repository_path)]

    def test_prepare_transport_error(self, tmp_path, base_repo):
        class Broken(FakeSession):
            def upload_directory(self, local_path, remote_path):
                raise paramiko.SSHException("reset")

        builder = self._builder(tmp_path, Broken())
        assert not builder.prepare_repository(str(base_repo), VERSION)
        assert builder.repository_path == ""

    def test_unreachable_host(self, tmp_path, base_repo):
        session = FakeSession(ready=False)
        builder = self._builder(tmp_path, session, run_test=True)
        builder.prepare_repository(str(base_repo), VERSION)
        result = builder.run(VERSION)
        assert _all_none(result)
        assert session.scripts == []

    def test_scripts_run_in_repository(self, tmp_path, base_repo):
        session = FakeSession()
        builder = self._builder(tmp_path, session, run_package=True)
        builder.prepare_repository(str(base_repo), VERSION)
        result = builder.run(VERSION)

        assert result.build == BuildStatus.SUCCESS
        assert result.package == BuildStatus.SUCCESS
        assert session.scripts[0][0] == f'cd "{builder.repository_path}"'
        assert "Build.sh" in session.scripts[0][1]
        assert "-TargetPlatforms=Mac" in session.scripts[1][1]

    def test_transport_error_fails_phase(self, tmp_path, base_repo):
        session = FakeSession(run_error=EOFError("channel closed"))
        builder = self._builder(tmp_path, session, run_test=True)
        builder.prepare_repository(str(base_repo), VERSION)
        result = builder.run(VERSION)
        assert result.build == BuildStatus.FAILED
        assert result.test == BuildStatus.NONE

    def test_failed_cook_clears_previous_output(self, tmp_path, base_repo):
        previous = tmp_path / "results" / "packages" / "Mac_UE5.4" / "Project" / "Mac"
        previous.mkdir(parents=True)
        (previous / "Game.app").write_text("old")
        session = FakeSession(exit_codes=[1])
        builder = self._builder(tmp_path, session, package_platforms=[GamePlatform.MAC])
        builder.prepare_repository(str(base_repo), VERSION)

        result = builder.run_package(VERSION)
        assert result.build == BuildStatus.FAILED
        assert result.package == BuildStatus.NONE
        assert f"{builder.repository_path}/packages/Project" in session.deleted
        assert not previous.exists()
        assert not (tmp_path / "results" / "releases").exists()

    def test_project_package_downloaded_and_zipped(self, tmp_path, base_repo):
        class Downloading(FakeSession):
            def download_directory(self, remote_path, local_path):
                (local_path / "Mac").mkdir(parents=True)
                (local_path / "Mac" / "Game.app").write_text("app")

        builder = self._builder(tmp_path, Downloading(), package_platforms=[GamePlatform.MAC])
        builder.prepare_repository(str(base_repo), VERSION)

        result = builder.run_package(VERSION)
        assert result.build == BuildStatus.SUCCESS
        assert result.package == BuildStatus.SUCCESS
        assert (tmp_path / "results" / "releases" / "Game_UE5.4_Mac.zip").exists()

    def test_transport_error_during_cook(self, tmp_path, base_repo):
        session = FakeSession(run_error=paramiko.SSHException("reset"))
        builder = self._builder(tmp_path, session, package_platforms=[GamePlatform.MAC])
        builder.prepare_repository(str(base_repo), VERSION)

        result = builder.run_package(VERSION)
        assert result.build == BuildStatus.FAILED
        assert result.package == BuildStatus.NONE

    def test_failed_plugin_package_ignores_previous_descriptor(self, tmp_path, base_repo):
        plugin = tmp_path / "results" / "packages" / "Mac_UE5.4" / "Plugin"
        plugin.mkdir(parents=True)
        (plugin / "Tool.uplugin").write_text(json.dumps({"EngineVersion": "5.4.0"}))
        session = FakeSession(exit_codes=[0, 1])
        builder = RemoteShellBuilder(
            EditorPlatform.MAC, _settings(tmp_path, run_package=True), session, "/Users/Shared/Epic Games"
        )
        builder.prepare_repository(str(base_repo), VERSION)

        result = builder.run(VERSION)
        assert result.build == BuildStatus.SUCCESS
        assert result.package == BuildStatus.FAILED
        assert f"{builder.repository_path}/packages/Plugin" in session.deleted
        assert not (plugin / "Tool.uplugin").exists()

    def test_missing_report_ignores_previous_report(self, tmp_path, base_repo):
        tests_dir = tmp_path / "results" / "tests" / "Mac_UE5.4"
        tests_dir.mkdir(parents=True)
        (tests_dir / "index.json").write_text(json.dumps({"failed": 0}))
        session = FakeSession()
        builder = RemoteShellBuilder(
            EditorPlatform.MAC, _settings(tmp_path, run_test=True), session, "/Users/Shared/Epic Games"
        )
        builder.prepare_repository(str(base_repo), VERSION)

        result = builder.run(VERSION)
        assert result.test == BuildStatus.FAILED
        assert f'rm -f "{builder.repository_path}/TestResults/index.json"' in session.commands

    def test_cleanup_closes_session_once(self, tmp_path, base_repo):
        session = FakeSession()
        builder = self._builder(tmp_path, session)
        builder.prepare_repository(str(base_repo), VERSION)
        working = builder.repository_path

        builder.cleanup_temp_directory()
        builder.cleanup_temp_directory()
        assert session.deleted == [working]
        assert session.close_calls == 1

    def test_linux_remote_factory(self, tmp_path):
        linux = LinuxConfig(builder_mode="Remote", ssh_host="builder", ssh_user="ue")
        settings = _settings(tmp_path, linux=linux)
        builder = create_linux_remote_builder(settings, session=FakeSession())
        assert builder.platform == EditorPlatform.LINUX
        assert builder.xcode is None


class TestXcodeSwitcher:
    def test_restores_original(self):
        session = FakeSession(xcode="/Applications/Xcode_14.app")
        switcher = XcodeSwitcher(session, {VERSION: "/Applications/Xcode_15.app"})

        with switcher.selected(VERSION):
            pass

        assert session.commands == [
            "xcode-select -p",
            "sudo xcode-select --switch '/Applications/Xcode_15.app'",
            "sudo xcode-select --switch '/Applications/Xcode_14.app'",
        ]

    def test_restores_after_error(self):
        session = FakeSession(xcode="/Applications/Xcode_14.app")
        switcher = XcodeSwitcher(session, {VERSION: "/Applications/Xcode_15.app"})

        with pytest.raises(RuntimeError):
            with switcher.selected(VERSION):
                raise RuntimeError("boom")
        assert session.commands[-1] == "sudo xcode-select --switch '/Applications/Xcode_14.app'"

    def test_skips_without_mapping(self):
        session = FakeSession()
        with XcodeSwitcher(session, {}).selected(VERSION):
            pass
        assert session.commands == []

    def test_builder_switches_around_run(self, tmp_path, base_repo):
        session = FakeSession(xcode="/Applications/Xcode_14.app")
        settings = _settings(tmp_path, mac=MacConfig(xcode_names={"5.4": "/Applications/Xcode_15.app"}))
        builder = RemoteShellBuilder(
            EditorPlatform.MAC, settings, session, "/Users/Shared/Epic Games",
            xcode=XcodeSwitcher(session, settings.mac.xcode_names),
        )
        builder.prepare_repository(str(base_repo), VERSION)
        builder.run(VERSION)
        assert session.commands[-1] == "sudo xcode-select --switch '/Applications/Xcode_14.app'"


class TestDockerLinuxBuilder:
    def _builder(self, tmp_path, docker, linux=None, **overrides):
        settings = _settings(tmp_path, linux=linux or LinuxConfig(), **overrides)
        return DockerLinuxBuilder(settings, docker, evaluator=PassingEvaluator())

    def test_image_name(self, tmp_path):
        builder = self._builder(tmp_path, FakeDocker(), LinuxConfig(docker_image="Registry/UE:%v-Slim"))
        assert builder.image_name(VERSION) == "registry/ue:5.4-slim"

    def test_volumes(self, tmp_path, base_repo):
        linux = LinuxConfig(copy_plugins_to_docker=True, docker_plugins_source_path="/plugins")
        builder = self._builder(tmp_path, FakeDocker(), linux)
        builder.prepare_repository(str(base_repo), VERSION)

        staging = str(tmp_path / "work" / "UE_5_4" / "Linux")
        assert builder.volumes(VERSION) == {
            staging: "/home/ue4/project",
            "/plugins/5.4": CONTAINER_PLUGINS_DIRECTORY,
        }
        assert builder.repository_path == "/home/ue4/project"

    def test_docker_unavailable(self, tmp_path, base_repo):
        docker = FakeDocker(ready=False)
        builder = self._builder(tmp_path, docker, run_test=True)
        builder.prepare_repository(str(base_repo), VERSION)
        assert _all_none(builder.run(VERSION))
        assert docker.runs == []

    def test_missing_game_package_output_fails(self, tmp_path, base_repo):
        docker = FakeDocker()
        builder = self._builder(tmp_path, docker, run_game_package=True)
        builder.prepare_repository(str(base_repo), VERSION)
        result = builder.run(VERSION)

        assert result.build == BuildStatus.SUCCESS
        assert result.game_package == BuildStatus.FAILED
        image, command, _ = docker.runs[0]
        assert image == "ghcr.io/epicgames/unreal-engine:dev-slim-5.4"
        assert command.startswith('"/home/ue4/UnrealEngine/Engine/Build/BatchFiles/Linux/Build.sh"')

    def test_previous_staged_plugin_fails_package(self, tmp_path, base_repo):
        settings = _settings(tmp_path, run_package=True)
        builder = DockerLinuxBuilder(settings, FakeDocker())
        builder.prepare_repository(str(base_repo), VERSION)
        staged = tmp_path / "work" / "UE_5_4" / "Linux" / "packages" / "Plugin"
        staged.mkdir(parents=True)
        (staged / "Tool.uplugin").write_text(json.dumps({"EngineVersion": "5.4.0"}))

        result = builder.run(VERSION)
        assert result.build == BuildStatus.SUCCESS
        assert result.package == BuildStatus.FAILED
        assert not (staged / "Tool.uplugin").exists()

    def test_failed_cook_clears_staged_project(self, tmp_path, base_repo):
        docker = FakeDocker(exit_codes=[1])
        builder = self._builder(tmp_path, docker, package_platforms=[GamePlatform.LINUX])
        builder.prepare_repository(str(base_repo), VERSION)
        staged = tmp_path / "work" / "UE_5_4" / "Linux" / "packages" / "Project" / "Linux"
        staged.mkdir(parents=True)
        (staged / "Game").write_text("old")

        result = builder.run_package(VERSION)
        assert result.build == BuildStatus.FAILED
        assert result.package == BuildStatus.NONE
        assert not staged.exists()
        assert not (tmp_path / "results" / "packages" / "Linux_UE5.4" / "Project").exists()

    def test_cleanup_removes_staging(self, tmp_path, base_repo):
        builder = self._builder(tmp_path, FakeDocker())
        builder.prepare_repository(str(base_repo), VERSION)
        builder.cleanup_temp_directory()
        builder.cleanup_temp_directory()
        assert not (tmp_path / "work" / "UE_5_4" / "Linux").exists()


class TestBuilderTable:
    def test_docker_mode(self, tmp_path):
        table = builder_table(_settings(tmp_path))
        assert table[EditorPlatform.LINUX] is DockerLinuxBuilder
        assert table[EditorPlatform.WINDOWS] is WindowsBuilder

    def test_remote_mode(self, tmp_path):
        linux = LinuxConfig(builder_mode=LinuxBuilderMode.REMOTE, ssh_host="h", ssh_user="u")
        table = builder_table(_settings(tmp_path, linux=linux))
        assert table[EditorPlatform.LINUX] is create_linux_remote_builder
