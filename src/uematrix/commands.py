"""Path and command-line synthesis for engine tools."""

import ntpath
import posixpath

from uematrix.config import LinuxConfig, MacConfig, WindowsConfig
from uematrix.types import EditorPlatform, GamePlatform, LinuxBuilderMode, UEVersion

DOCKER_ENGINE_DIRECTORY = "/home/ue4/UnrealEngine"
DOCKER_PROJECT_DIRECTORY = "/home/ue4/project"

_BINARY_DIRECTORIES = {
    EditorPlatform.WINDOWS: "Win64",
    EditorPlatform.MAC: "Mac",
    EditorPlatform.LINUX: "Linux",
}

_NATIVE_GAME_PLATFORMS = {
    EditorPlatform.WINDOWS: GamePlatform.WIN64,
    EditorPlatform.MAC: GamePlatform.MAC,
    EditorPlatform.LINUX: GamePlatform.LINUX,
}

# Game platforms each editor host can package for
_SUPPORTED_TARGETS = {
    EditorPlatform.WINDOWS: (GamePlatform.WIN64, GamePlatform.ANDROID),
    EditorPlatform.MAC: (GamePlatform.MAC, GamePlatform.IOS),
    EditorPlatform.LINUX: (GamePlatform.LINUX,),
}


def path_module(platform: EditorPlatform):
    """Path flavour used on the given editor host."""
    return ntpath if platform == EditorPlatform.WINDOWS else posixpath


def join(platform: EditorPlatform, *parts: str) -> str:
    return path_module(platform).join(*parts)


def engine_folder_name(version: UEVersion) -> str:
    """Install folder name, e.g. UE_5.3."""
    return f"UE_{version.version_string}"


def result_directory_name(platform: EditorPlatform, version: UEVersion) -> str:
    return f"{platform.value}_{version.full_version_string}"


def native_game_platform(platform: EditorPlatform) -> GamePlatform:
    return _NATIVE_GAME_PLATFORMS[platform]


def uproject_path(repository_path: str, project_name: str, platform: EditorPlatform) -> str:
    return join(platform, repository_path, f"{project_name}.uproject")


def uplugin_path(repository_path: str, plugin_name: str, platform: EditorPlatform) -> str:
    return join(platform, repository_path, "Plugins", plugin_name, f"{plugin_name}.uplugin")


def engine_directory(
    version: UEVersion,
    platform: EditorPlatform,
    windows: WindowsConfig,
    mac: MacConfig,
    linux: LinuxConfig,
) -> str:
    """Engine install root for a version on an editor host."""
    folder = engine_folder_name(version)
    if platform == EditorPlatform.WINDOWS:
        return ntpath.join(windows.unreal_base_path, folder)
    if platform == EditorPlatform.MAC:
        return posixpath.join(mac.unreal_base_path, folder)
    if linux.builder_mode == LinuxBuilderMode.DOCKER:
        return DOCKER_ENGINE_DIRECTORY
    return posixpath.join(linux.unreal_base_path, folder)


def plugin_install_directory(engine_dir: str, plugin_name: str, platform: EditorPlatform) -> str:
    """Marketplace plugin folder inside an engine install."""
    return join(platform, engine_dir, "Engine", "Plugins", "Marketplace", plugin_name)


def editor_path(engine_dir: str, platform: EditorPlatform) -> str:
    name = "UnrealEditor-Cmd.exe" if platform == EditorPlatform.WINDOWS else "UnrealEditor-Cmd"
    return join(platform, engine_dir, "Engine", "Binaries", _BINARY_DIRECTORIES[platform], name)


def build_script_path(engine_dir: str, platform: EditorPlatform) -> str:
    batch_files = join(platform, engine_dir, "Engine", "Build", "BatchFiles")
    if platform == EditorPlatform.WINDOWS:
        return join(platform, batch_files, "Build.bat")
    return join(platform, batch_files, platform.value, "Build.sh")


def run_uat_script_path(engine_dir: str, platform: EditorPlatform) -> str:
    name = "RunUAT.bat" if platform == EditorPlatform.WINDOWS else "RunUAT.sh"
    return join(platform, engine_dir, "Engine", "Build", "BatchFiles", name)



def build_command_args(
    project_name: str,
    uproject: str,
    platform: EditorPlatform,
    configuration: str = "Development",
) -> str:
    return (
        f"{project_name}Editor {_BINARY_DIRECTORIES[platform]} {configuration} "
        f"-Project={uproject} -TargetType=Editor"
    )


def automation_test_args(uproject: str, plugin_name: str, report_dir: str) -> str:
    return (
        f"{uproject} -unattended -NullRHI -nosound -nopause -stdout "
        f"-DDC-ForceMemoryCache -nosplash "
        f'-ExecCmds="Automation RunTests {plugin_name}; quit" '
        f'-TestExit="Automation Test Queue Empty" '
        f"-ReportExportPath={report_dir}"
    )


def build_plugin_args(
    repository_path: str,
    plugin_name: str,
    output_dir: str,
    targets: list[GamePlatform],
    platform: EditorPlatform,
) -> str:
    target_list = "+".join(target.value for target in targets)
    return (
        f"BuildPlugin -Plugin={uplugin_path(repository_path, plugin_name, platform)} "
        f"-Package={join(platform, output_dir, 'Plugin')} "
        f"-TargetPlatforms={target_list}"
    )


def build_cook_run_args(
    uproject: str,
    output_dir: str,
    target: GamePlatform,
    platform: EditorPlatform,
) -> str:
    architecture = ""
    if target == GamePlatform.MAC and platform == EditorPlatform.MAC:
        architecture = " -architecture=arm64"
    return (
        f"BuildCookRun -project={uproject} -archive -archivedirectory={output_dir} "
        f"-platform={target.value}{architecture} -clientconfig=Shipping -nop4 "
        f"-build -cook -stage -pak -allmaps -nocompileeditor -unattended -utf8"
    )


def target_platforms(
    platform: EditorPlatform, package_platforms: list[GamePlatform]
) -> list[GamePlatform]:
    """Requested package targets this editor host can produce, in request order."""
    supported = _SUPPORTED_TARGETS[platform]
    return [target for target in package_platforms if target in supported]
