"""Local filesystem operations used by builders and the orchestrator."""

import logging
import os
import shutil
import stat
import sys
import zipfile
from pathlib import Path

logger = logging.getLogger(__name__)


def _clear_readonly(func, path, _exc):
    """Retry a failed removal after making the entry writable."""
    os.chmod(path, stat.S_IWRITE)
    func(path)


class LocalFileSystem:
    """Directory copy, removal and archiving on the local host."""

    def exists(self, path: str | Path) -> bool:
        return Path(path).exists()

    def is_directory(self, path: str | Path) -> bool:
        return Path(path).is_dir()

    def ensure_directory(self, path: str | Path) -> Path:
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def delete_directory(self, path: str | Path) -> None:
        """Remove a directory tree if it exists."""
        path = Path(path)
        if path.exists():
            if sys.version_info >= (3, 12):
                shutil.rmtree(path, onexc=_clear_readonly)
            else:
                shutil.rmtree(path, onerror=_clear_readonly)

    def copy_directory(self, source: str | Path, destination: str | Path) -> None:
        """Copy the contents of source into destination, merging with existing files."""
        source = Path(source)
        if not source.is_dir():
            raise FileNotFoundError(f"Directory not found: {source}")
        shutil.copytree(source, destination, dirs_exist_ok=True)

    def copy_file(self, source: str | Path, destination: str | Path) -> None:
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)

    def zip_directory(self, source: str | Path, archive: str | Path) -> Path:
        """Zip the contents of source (not the directory itself) into archive."""
        source = Path(source)
        archive = Path(archive)
        archive.parent.mkdir(parents=True, exist_ok=True)
        if archive.exists():
            archive.unlink()

        with zipfile.ZipFile(archive, "w", zipfile.ZIP_DEFLATED) as zf:
            for file in sorted(source.rglob("*")):
                if file.is_file():
                    zf.write(file, file.relative_to(source).as_posix())

        logger.info(f"Created archive {archive}")
        return archive
