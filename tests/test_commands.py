"""Tests for path and command-line synthesis."""

from uematrix import commands
from uematrix.config import LinuxConfig, MacConfig, WindowsConfig
from uematrix.types import EditorPlatform, GamePlatform, LinuxBuilderMode, UEVersion

WIN = EditorPlatform.WINDOWS
MAC = EditorPlatform.MAC
LINUX = EditorPlatform.LINUX


def _engine_dir(platform, linux=None):
    return commands.engine_directory(
        UEVersion.UE_5_3,
        platform,
        WindowsConfig(unreal_base_path=r"D:\Epic"),
        MacConfig(unreal_base_path="/Users/Shared/Epic Games"),
        linux or LinuxConfig(),
    )


class TestEngineDirectory:
    def test_windows(self):
        assert _engine_dir(WIN) == r"D:\Epic\UE_5.3"

    def test_mac(self):
        assert _engine_dir(MAC) == "/Users/Shared/Epic Games/UE_5.3"

    def test_linux_docker_is_fixed(self):
        assert _engine_dir(LINUX) == "/home/ue4/UnrealEngine"

    def test_linux_remote(self):
        linux = LinuxConfig(
            builder_mode=LinuxBuilderMode.REMOTE,
            ssh_host="builder",
            ssh_user="ue",
            unreal_base_path="/opt/ue",
        )
        assert _engine_dir(LINUX, linux) == "/opt/ue/UE_5.3"

    def test_deterministic(self):
        assert _engine_dir(MAC) == _engine_dir(MAC)


class TestToolPaths:
    def test_editor(self):
        assert commands.editor_path(r"C:\UE", WIN) == r"C:\UE\Engine\Binaries\Win64\UnrealEditor-Cmd.exe"
        assert commands.editor_path("/ue", MAC) == "/ue/Engine/Binaries/Mac/UnrealEditor-Cmd"
        assert commands.editor_path("/ue", LINUX) == "/ue/Engine/Binaries/Linux/UnrealEditor-Cmd"

    def test_build_script(self):
        assert commands.build_script_path(r"C:\UE", WIN) == r"C:\UE\Engine\Build\BatchFiles\Build.bat"
        assert commands.build_script_path("/ue", MAC) == "/ue/Engine/Build/BatchFiles/Mac/Build.sh"
        assert commands.build_script_path("/ue", LINUX) == "/ue/Engine/Build/BatchFiles/Linux/Build.sh"

    def test_run_uat(self):
        assert commands.run_uat_script_path(r"C:\UE", WIN) == r"C:\UE\Engine\Build\BatchFiles\RunUAT.bat"
        assert commands.run_uat_script_path("/ue", LINUX) == "/ue/Engine/Build/BatchFiles/RunUAT.sh"

    def test_project_files(self):
        assert commands.uproject_path("/tmp/repo", "Game", MAC) == "/tmp/repo/Game.uproject"
        assert commands.uproject_path(r"C:\repo", "Game", WIN) == r"C:\repo\Game.uproject"
        assert commands.uplugin_path("/repo", "Tool", LINUX) == "/repo/Plugins/Tool/Tool.uplugin"

    def test_result_directory_name(self):
        assert commands.result_directory_name(MAC, UEVersion.UE_5_4) == "Mac_UE5.4"


class TestCommandArgs:
    def test_build_command(self):
        args = commands.build_command_args("Game", "/repo/Game.uproject", LINUX)
        assert args == "GameEditor Linux Development -Project=/repo/Game.uproject -TargetType=Editor"

    def test_build_command_windows(self):
        args = commands.build_command_args("Game", r"C:\repo\Game.uproject", WIN)
        assert args.startswith("GameEditor Win64 Development ")

    def test_automation_test(self):
        args = commands.automation_test_args("/repo/Game.uproject", "Tool", "/repo/TestResults")
        assert args.startswith("/repo/Game.uproject -unattended -NullRHI")
        assert '-ExecCmds="Automation RunTests Tool; quit"' in args
        assert '-TestExit="Automation Test Queue Empty"' in args
        assert args.endswith("-ReportExportPath=/repo/TestResults")

    def test_build_plugin(self):
        args = commands.build_plugin_args(
            "/repo", "Tool", "/out", [GamePlatform.MAC, GamePlatform.IOS], MAC
        )
        assert args == (
            "BuildPlugin -Plugin=/repo/Plugins/Tool/Tool.uplugin -Package=/out/Plugin "
            "-TargetPlatforms=Mac+IOS"
        )

    def test_build_cook_run_mac_arm64(self):
        args = commands.build_cook_run_args("/repo/Game.uproject", "/out", GamePlatform.MAC, MAC)
        assert "-platform=Mac -architecture=arm64 -clientconfig=Shipping" in args

    def test_build_cook_run_no_architecture_elsewhere(self):
        args = commands.build_cook_run_args("/repo/Game.uproject", "/out", GamePlatform.IOS, MAC)
        assert "-architecture" not in args
        args = commands.build_cook_run_args("/repo/Game.uproject", "/out", GamePlatform.LINUX, LINUX)
        assert args == (
            "BuildCookRun -project=/repo/Game.uproject -archive -archivedirectory=/out "
            "-platform=Linux -clientconfig=Shipping -nop4 -build -cook -stage -pak -allmaps "
            "-nocompileeditor -unattended -utf8"
        )


class TestTargetPlatforms:
    ALL = [GamePlatform.WIN64, GamePlatform.MAC, GamePlatform.LINUX, GamePlatform.IOS, GamePlatform.ANDROID]

    def test_filtering(self):
        assert commands.target_platforms(WIN, self.ALL) == [GamePlatform.WIN64, GamePlatform.ANDROID]
        assert commands.target_platforms(MAC, self.ALL) == [GamePlatform.MAC, GamePlatform.IOS]
        assert commands.target_platforms(LINUX, self.ALL) == [GamePlatform.LINUX]

    def test_empty_when_nothing_requested(self):
        assert commands.target_platforms(MAC, [GamePlatform.WIN64]) == []
