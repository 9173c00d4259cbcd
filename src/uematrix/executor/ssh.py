"""SSH session implementation using paramiko."""

import codecs
import logging
import os
import posixpath
import shlex
import stat
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import paramiko

logger = logging.getLogger(__name__)

FINISH_MARKER = "__Finished_run_script__"
POLL_INTERVAL = 0.1


@dataclass
class SSHSettings:
    """SSH connection configuration."""

    host: str
    user: str
    port: int = 22
    password: str | None = None
    key_path: str | None = None


class ShellStream:
    """Output of a script sent to an interactive shell channel.

    The script ends by echoing a unique marker followed by ``$?``; the
    stream stops at that line and takes the status from it. A closed
    channel or a transport error ends the stream with exit code -1.
    """

    def __init__(self, channel, marker: str):
        self._channel = channel
        self._marker = marker
        self._consumed = False
        self.exit_code: int | None = None
        self.lines: list[str] = []

    def __iter__(self) -> Iterator[str]:
        if self._consumed:
            raise RuntimeError("ShellStream can only be iterated once")
        self._consumed = True

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        try:
            while True:
                if self._channel.recv_ready():
                    buffer += decoder.decode(self._channel.recv(32768))
                    *complete, buffer = buffer.split("\n")
                    for raw in complete:
                        line = raw.rstrip("\r")
                        if line.startswith(self._marker):
                            self.exit_code = self._parse_status(line)
                            return
                        if self._marker in line:
                            # Shell echo of the marker command itself
                            continue
                        self.lines.append(line)
                        yield line
                elif self._channel.closed or self._channel.exit_status_ready():
                    logger.error("SSH channel closed before the script finished")
                    self.exit_code = -1
                    return
                else:
                    time.sleep(POLL_INTERVAL)
        except (paramiko.SSHException, OSError, EOFError) as e:
            logger.error(f"SSH script failed: {e}")
            self.exit_code = -1
            self.lines.append(str(e))
            yield str(e)
        finally:
            self.close()

    def _parse_status(self, line: str) -> int:
        status = line[len(self._marker):].strip()
        try:
            return int(status)
        except ValueError:
            logger.error(f"Could not parse script exit status: '{status}'")
            return -1

    def close(self) -> None:
        if self.exit_code is None:
            self.exit_code = -1
        self._channel.close()

    def __enter__(self) -> "ShellStream":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class SSHSession:
    """Remote shell and file transfer over one paramiko connection."""

    def __init__(self, settings: SSHSettings):
        self.settings = settings
        self._client: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None

    @property
    def client(self) -> paramiko.SSHClient:
        """Get or create SSH client."""
        if self._client is None:
            self._client = self._connect()
        return self._client

    @property
    def sftp(self) -> paramiko.SFTPClient:
        """Get or create SFTP client."""
        if self._sftp is None:
            self._sftp = self.client.open_sftp()
        return self._sftp

    def _connect(self) -> paramiko.SSHClient:
        """Establish SSH connection."""
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        connect_kwargs = {
            "hostname": self.settings.host,
            "port": self.settings.port,
            "username": self.settings.user,
        }

        if self.settings.password:
            connect_kwargs["password"] = self.settings.password
            connect_kwargs["allow_agent"] = False
            connect_kwargs["look_for_keys"] = False
        elif self.settings.key_path:
            connect_kwargs["key_filename"] = os.path.expanduser(self.settings.key_path)
        else:
            # Use SSH agent
            connect_kwargs["allow_agent"] = True

        logger.debug(f"Connecting to {self.settings.user}@{self.settings.host}:{self.settings.port}")
        client.connect(**connect_kwargs)
        return client

    def close(self) -> None:
        """Close SSH connection."""
        if self._sftp is not None:
            self._sftp.close()
            self._sftp = None
        if self._client is not None:
            self._client.close()
            self._client = None

    def is_ready(self) -> bool:
        try:
            return self.send_command("echo ok").strip() == "ok"
        except Exception as e:
            logger.error(f"SSH host {self.settings.host} is not reachable: {e}")
            return False

    def _exec(self, command: str, timeout: int | None = None) -> tuple[int, str, str]:
        """Execute command and return (exit_code, stdout, stderr)."""
        stdin, stdout, stderr = self.client.exec_command(command, timeout=timeout)
        exit_code = stdout.channel.recv_exit_status()
        return exit_code, stdout.read().decode(), stderr.read().decode()

    def send_command(self, command: str) -> str:
        exit_code, output, error = self._exec(command)
        if exit_code != 0 and error:
            logger.debug(f"'{command}' exited {exit_code}: {error.strip()}")
        return output

    # Filesystem primitives

    def directory_exists(self, path: str) -> bool:
        output = self.send_command(f'test -d "{path}" && echo "exists" || echo "not found"')
        return output.strip() == "exists"

    def file_exists(self, path: str) -> bool:
        output = self.send_command(f'test -f "{path}" && echo "exists" || echo "not found"')
        return output.strip() == "exists"

    def ensure_directory(self, path: str) -> bool:
        self.send_command(f'mkdir -p "{path}"')
        return self.directory_exists(path)

    def delete_directory(self, path: str) -> bool:
        self.send_command(f'rm -rf "{path}"')
        return not self.directory_exists(path)

    def copy_directory(self, source: str, destination: str) -> bool:
        """Copy the contents of source into destination on the remote host."""
        if not self.ensure_directory(destination):
            return False
        exit_code, _, error = self._exec(f'cp -R "{source}/." "{destination}"')
        if exit_code != 0:
            logger.error(f"Remote copy {source} -> {destination} failed: {error.strip()}")
            return False
        return True

    def create_text_file(self, path: str, content: str) -> bool:
        self.send_command(f"cat > \"{path}\" << 'EOL'\n{content}\nEOL")
        return self.file_exists(path)

    # File transfer

    def upload_file(self, local_path: Path, remote_path: str) -> None:
        self.sftp.put(str(local_path), remote_path)

    def download_file(self, remote_path: str, local_path: Path) -> None:
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        self.sftp.get(remote_path, str(local_path))

    def upload_directory(self, local_path: Path, remote_path: str) -> None:
        """Upload a directory tree, creating remote directories as needed."""
        local_path = Path(local_path)
        self.ensure_directory(remote_path)
        for entry in sorted(local_path.iterdir()):
            target = posixpath.join(remote_path, entry.name)
            if entry.is_dir():
                self._sftp_mkdir(target)
                self.upload_directory(entry, target)
            else:
                self.upload_file(entry, target)

    def download_directory(self, remote_path: str, local_path: Path) -> None:
        """Download a directory tree."""
        local_path = Path(local_path)
        local_path.mkdir(parents=True, exist_ok=True)
        for attr in self.sftp.listdir_attr(remote_path):
            source = posixpath.join(remote_path, attr.filename)
            if stat.S_ISDIR(attr.st_mode):
                self.download_directory(source, local_path / attr.filename)
            else:
                self.download_file(source, local_path / attr.filename)

    def _sftp_mkdir(self, path: str) -> None:
        try:
            self.sftp.stat(path)
        except FileNotFoundError:
            self.sftp.mkdir(path)

    # Scripts

    def run_script(self, commands: list[str], env: dict[str, str] | None = None) -> ShellStream:
        """Send commands to one interactive shell and stream its output."""
        marker = f"{FINISH_MARKER}{uuid.uuid4()}"
        channel = self.client.get_transport().open_session()
        channel.set_combine_stderr(True)
        channel.invoke_shell()

        script = [f"export {key}={shlex.quote(value)}" for key, value in (env or {}).items()]
        script.extend(commands)
        script.append(f"echo {marker} $?")
        for line in script:
            logger.debug(f"[{self.settings.host}] $ {line}")
            channel.sendall((line + "\n").encode())

        return ShellStream(channel, marker)
