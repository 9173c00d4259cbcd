"""Source repository checkout."""

import logging
import os
import re
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

_GITHUB_HTTPS = re.compile(r"^https://github\.com/([^/]+)/(.+?)(?:\.git)?/?$")


def convert_https_to_ssh_url(url: str) -> str:
    """Rewrite a GitHub https URL as git@github.com:owner/repo.git."""
    if url.startswith("git@"):
        return url
    match = _GITHUB_HTTPS.match(url)
    if not match:
        return url
    return f"git@github.com:{match.group(1)}/{match.group(2)}.git"


class GitClient:
    """Clones repositories, optionally authenticating with an SSH key."""

    def __init__(self, ssh_key_path: str = ""):
        self.ssh_key_path = os.path.expanduser(ssh_key_path) if ssh_key_path else ""

    def _use_ssh_key(self) -> bool:
        return bool(self.ssh_key_path) and Path(self.ssh_key_path).is_file()

    def _ssh_command(self) -> str:
        key = self.ssh_key_path
        if os.name == "nt":
            key = f'"{key}"'
        return f"ssh -i {key} -o IdentitiesOnly=yes"

    def _run(self, *args: str, cwd: Path, env: dict[str, str] | None = None) -> subprocess.CompletedProcess:
        """Run git command."""
        cmd = ["git"] + list(args)
        merged_env = {**os.environ, **env} if env else None
        return subprocess.run(cmd, cwd=cwd, env=merged_env, capture_output=True, text=True)

    def clone_repository(self, url: str, branch: str, destination: Path) -> bool:
        """Clone branch of url into destination. Returns False on failure."""
        destination = Path(destination)
        destination.mkdir(parents=True, exist_ok=True)

        env = None
        if self._use_ssh_key():
            url = convert_https_to_ssh_url(url)
            env = {"GIT_SSH_COMMAND": self._ssh_command()}

        logger.info(f"Cloning {url} ({branch}) into {destination}")
        try:
            result = self._run("clone", url, "-b", branch, ".", cwd=destination, env=env)
        except OSError as e:
            logger.error(f"Failed to run git: {e}")
            return False

        for line in (result.stdout + result.stderr).splitlines():
            logger.debug(line)
        if result.returncode != 0:
            logger.error(f"git clone exited with code {result.returncode}: {result.stderr.strip()}")
            return False
        return True
