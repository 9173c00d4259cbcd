"""Platform builders and the table that selects one per editor platform."""

from typing import Callable

from uematrix.builders.base import Builder, BuildLayout, BuildSettings, PhaseLog
from uematrix.builders.docker import DockerLinuxBuilder
from uematrix.builders.remote import (
    RemoteShellBuilder,
    XcodeSwitcher,
    create_linux_remote_builder,
    create_mac_builder,
)
from uematrix.builders.windows import WindowsBuilder
from uematrix.types import EditorPlatform, LinuxBuilderMode

PlatformBuilderFactory = Callable[[BuildSettings], Builder]


def builder_table(settings: BuildSettings) -> dict[EditorPlatform, PlatformBuilderFactory]:
    """Factories keyed by editor platform for the configured Linux mode."""
    if settings.linux.builder_mode == LinuxBuilderMode.REMOTE:
        linux = create_linux_remote_builder
    else:
        linux = DockerLinuxBuilder
    return {
        EditorPlatform.WINDOWS: WindowsBuilder,
        EditorPlatform.MAC: create_mac_builder,
        EditorPlatform.LINUX: linux,
    }


def create_builder(platform: EditorPlatform, settings: BuildSettings) -> Builder:
    return builder_table(settings)[platform](settings)


__all__ = [
    "BuildLayout",
    "BuildSettings",
    "Builder",
    "PlatformBuilderFactory",
    "DockerLinuxBuilder",
    "PhaseLog",
    "RemoteShellBuilder",
    "WindowsBuilder",
    "XcodeSwitcher",
    "builder_table",
    "create_builder",
]
