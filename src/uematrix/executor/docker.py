"""One-shot container runs through the docker CLI."""

import logging
import shlex

from uematrix.executor.process import ProcessRunner, ProcessStream

logger = logging.getLogger(__name__)


class DockerRunner:
    """Runs a bash command in a throwaway container."""

    def __init__(self, docker_command: str = "docker", process_runner: ProcessRunner | None = None):
        self.docker_command = docker_command
        self.process_runner = process_runner or ProcessRunner()

    def build_run_args(
        self,
        image: str,
        command: str,
        volumes: dict[str, str] | None = None,
        env: dict[str, str] | None = None,
    ) -> list[str]:
        """Arguments for ``docker run``; volumes map host path to container path."""
        args = ["run", "--rm"]
        for host_path, container_path in (volumes or {}).items():
            args.extend(["-v", f"{host_path}:{container_path}"])
        for key, value in (env or {}).items():
            args.extend(["-e", f"{key}={value}"])
        args.extend([image, "/bin/bash", "-c", command])
        return args

    def run_container(
        self,
        image: str,
        command: str,
        volumes: dict[str, str] | None = None,
        env: dict[str, str] | None = None,
    ) -> ProcessStream:
        args = self.build_run_args(image, command, volumes, env)
        logger.info(f"{self.docker_command} {shlex.join(args)}")
        return self.process_runner.stream(self.docker_command, args)

    def is_ready(self) -> bool:
        """Check the docker daemon answers ``docker info``."""
        result = self.process_runner.run(self.docker_command, ["info"])
        if result.exit_code != 0:
            logger.error(f"'{self.docker_command} info' exited with code {result.exit_code}")
            return False
        for line in result.output_lines:
            if "error" in line.lower():
                logger.error(f"Docker is not ready: {line}")
                return False
        return True

    def close(self) -> None:
        """Containers are removed on exit; nothing to release."""
