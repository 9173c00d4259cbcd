"""Core type definitions for uematrix."""

import re
from enum import Enum

from pydantic import BaseModel

_VERSION_PATTERNS = [
    re.compile(r"^5\.(\d+)$", re.IGNORECASE),
    re.compile(r"^UE5\.(\d+)$", re.IGNORECASE),
    re.compile(r"^UE_5\.(\d+)$", re.IGNORECASE),
    re.compile(r"^UE_5_(\d+)$", re.IGNORECASE),
]


def _parse_member(enum_cls, value: str):
    """Look up an enum member by name or value, ignoring case."""
    text = value.strip().lower()
    for member in enum_cls:
        if member.name.lower() == text or member.value.lower() == text:
            return member
    raise ValueError(f"Invalid {enum_cls.__name__}: {value}")


class UEVersion(str, Enum):
    """Supported Unreal Engine 5 release lines."""

    UE_5_0 = "UE_5_0"
    UE_5_1 = "UE_5_1"
    UE_5_2 = "UE_5_2"
    UE_5_3 = "UE_5_3"
    UE_5_4 = "UE_5_4"
    UE_5_5 = "UE_5_5"
    UE_5_6 = "UE_5_6"
    UE_5_7 = "UE_5_7"
    UE_5_8 = "UE_5_8"
    UE_5_9 = "UE_5_9"
    UE_5_10 = "UE_5_10"

    @classmethod
    def parse(cls, value: "str | UEVersion") -> "UEVersion":
        """Parse 5.3, UE5.3, UE_5.3 or UE_5_3 (case-insensitive)."""
        if isinstance(value, UEVersion):
            return value

        text = value.strip()
        if not text:
            raise ValueError(f"Invalid UE version: {value}")

        for pattern in _VERSION_PATTERNS:
            match = pattern.match(text)
            if match:
                name = f"UE_5_{match.group(1)}"
                if name in cls.__members__:
                    return cls[name]
                break

        try:
            return _parse_member(cls, text)
        except ValueError:
            raise ValueError(f"Invalid UE version: {value}")

    @property
    def version_string(self) -> str:
        """Canonical major.minor form, e.g. 5.3."""
        return self.value.replace("UE_", "").replace("_", ".")

    @property
    def full_version_string(self) -> str:
        """Prefixed form used in directory names, e.g. UE5.3."""
        return f"UE{self.version_string}"


class EditorPlatform(str, Enum):
    """Host OS running the engine toolchain."""

    WINDOWS = "Windows"
    MAC = "Mac"
    LINUX = "Linux"

    @classmethod
    def parse(cls, value: "str | EditorPlatform") -> "EditorPlatform":
        if isinstance(value, EditorPlatform):
            return value
        return _parse_member(cls, value)


class GamePlatform(str, Enum):
    """Target a packaged build runs on."""

    WIN64 = "Win64"
    MAC = "Mac"
    LINUX = "Linux"
    IOS = "IOS"
    ANDROID = "Android"

    @classmethod
    def parse(cls, value: "str | GamePlatform") -> "GamePlatform":
        if isinstance(value, GamePlatform):
            return value
        return _parse_member(cls, value)


class LinuxBuilderMode(str, Enum):
    """How Linux builds are executed."""

    DOCKER = "Docker"
    REMOTE = "Remote"

    @classmethod
    def parse(cls, value: "str | LinuxBuilderMode") -> "LinuxBuilderMode":
        if isinstance(value, LinuxBuilderMode):
            return value
        return _parse_member(cls, value)


class BuildStatus(str, Enum):
    """Outcome of a single phase."""

    NONE = "None"
    SUCCESS = "Success"
    FAILED = "Failed"

    @classmethod
    def from_bool(cls, ok: bool) -> "BuildStatus":
        return cls.SUCCESS if ok else cls.FAILED


class BuildResult(BaseModel):
    """Per (platform, engine version) phase outcomes."""

    platform: EditorPlatform
    engine_version: UEVersion
    build: BuildStatus = BuildStatus.NONE
    test: BuildStatus = BuildStatus.NONE
    package: BuildStatus = BuildStatus.NONE
    game_package: BuildStatus = BuildStatus.NONE

    @property
    def is_success(self) -> bool:
        return all(
            status != BuildStatus.FAILED
            for status in (self.build, self.test, self.package, self.game_package)
        )
