"""Transport protocols shared by local, SSH and container execution."""

from dataclasses import dataclass, field
from typing import Iterator, Protocol


@dataclass
class ProcessResult:
    """Result of a completed process."""

    exit_code: int
    output_lines: list[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.exit_code != 0


class OutputStream(Protocol):
    """Single-use stream of output lines that reports an exit code once drained."""

    exit_code: int | None

    def __iter__(self) -> Iterator[str]:
        ...

    def close(self) -> None:
        """Stop reading and release the producer."""
        ...


class RemoteSession(Protocol):
    """A target that can run a multi-line script and stream its output."""

    def is_ready(self) -> bool:
        """Check the target is reachable. Never raises."""
        ...

    def run_script(self, commands: list[str], env: dict[str, str]) -> OutputStream:
        """Run commands in one shell, exporting env first."""
        ...

    def close(self) -> None:
        """Release connections. Safe to call more than once."""
        ...
