"""Transports for running engine tools locally, over SSH and in containers."""

from uematrix.executor.base import OutputStream, ProcessResult, RemoteSession
from uematrix.executor.docker import DockerRunner
from uematrix.executor.process import ProcessRunner, ProcessStream
from uematrix.executor.ssh import ShellStream, SSHSession, SSHSettings

__all__ = [
    "DockerRunner",
    "OutputStream",
    "ProcessResult",
    "ProcessRunner",
    "ProcessStream",
    "RemoteSession",
    "SSHSession",
    "SSHSettings",
    "ShellStream",
]
