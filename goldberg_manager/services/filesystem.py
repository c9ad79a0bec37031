"""File system service for atomic artifact writes and file management."""

import json
import os
import shutil
import sys
from pathlib import Path
from typing import Any

import structlog

log = structlog.stdlib.get_logger()

_FILE_ATTRIBUTE_HIDDEN = 0x02


class FileSystemService:
    """Service for file system operations used by the codec and provisioning.

    Every write goes to a sibling ``.tmp`` file first and is then renamed
    over the destination, so readers never observe a half-written file.
    """

    def __init__(self, base_path: Path | None = None) -> None:
        """Initialize the file system service.

        Args:
            base_path: Base directory for operations (defaults to current working directory)
        """
        self.base_path = base_path or Path.cwd()
        log.debug("File system service initialized", base_path=str(self.base_path))

    def write_text(self, path: Path, content: str) -> None:
        """Atomically write text to ``path`` with LF line endings.

        Raises:
            OSError: If the file cannot be written
        """
        self.ensure_directory(path.parent)
        temp_path = path.with_name(path.name + ".tmp")

        log.debug("Writing file", path=str(path))
        try:
            with open(temp_path, "w", encoding="utf-8", newline="\n") as f:
                f.write(content)
            temp_path.replace(path)
        except OSError as e:
            log.error("Failed to write file", path=str(path), error=str(e))
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    log.warning("Failed to clean up temporary file", path=str(temp_path))
            raise

    def write_json(self, path: Path, data: Any) -> None:
        """Atomically write ``data`` as indented JSON.

        Raises:
            OSError: If the file cannot be written
            ValueError: If data cannot be serialized to JSON
        """
        try:
            content = json.dumps(data, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            log.error("Failed to serialize data to JSON", path=str(path), error=str(e))
            raise ValueError(f"Cannot serialize data to JSON: {e}") from e

        self.write_text(path, content + "\n")

    def read_text(self, path: Path) -> str | None:
        """Read a text file, returning None when it does not exist.

        Raises:
            OSError: If the file exists but cannot be read
        """
        try:
            return path.read_text(encoding="utf-8-sig")
        except FileNotFoundError:
            return None

    def read_json(self, path: Path) -> Any | None:
        """Load JSON from ``path``.

        Returns None when the file is missing or does not hold valid JSON;
        the latter is logged so a broken artifact is visible but not fatal.

        Raises:
            OSError: If the file exists but cannot be read
        """
        content = self.read_text(path)
        if content is None:
            return None

        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            log.warning("Invalid JSON in file", path=str(path), error=str(e))
            return None

    def ensure_directory(self, path: Path) -> None:
        """Ensure that a directory exists, creating it if necessary.

        Raises:
            OSError: If the path exists as a file or cannot be created
        """
        if path.exists():
            if not path.is_dir():
                log.error("Path exists but is not a directory", path=str(path))
                raise NotADirectoryError(f"Path exists but is not a directory: {path}")
            return

        log.debug("Creating directory", path=str(path))
        path.mkdir(parents=True, exist_ok=True)

    def remove_file(self, path: Path) -> bool:
        """Delete a file if present. Returns True when something was removed."""
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        log.info("File removed", path=str(path))
        return True

    def remove_tree(self, path: Path) -> bool:
        """Delete a directory tree if present. Returns True when something was removed."""
        if not path.exists():
            return False
        if not path.is_dir():
            return self.remove_file(path)
        shutil.rmtree(path)
        log.info("Directory removed", path=str(path))
        return True

    def move_file(self, source: Path, destination: Path) -> None:
        """Move a file, replacing the destination if it exists.

        Raises:
            FileNotFoundError: If source file does not exist
            OSError: If file cannot be moved
        """
        if not source.is_file():
            raise FileNotFoundError(f"Source file not found: {source}")

        self.ensure_directory(destination.parent)
        # A hidden destination is read-only for os.replace on Windows
        self.unmark_hidden(destination)
        source.replace(destination)
        log.debug("File moved", source=str(source), destination=str(destination))

    def copy_file(self, source: Path, destination: Path) -> None:
        """Copy a file with its metadata.

        Raises:
            FileNotFoundError: If source file does not exist
            OSError: If file cannot be copied
        """
        if not source.is_file():
            raise FileNotFoundError(f"Source file not found: {source}")

        self.ensure_directory(destination.parent)
        shutil.copy2(source, destination)
        log.debug("File copied", source=str(source), destination=str(destination))

    def mark_hidden(self, path: Path) -> None:
        """Set the hidden attribute on Windows. Dot-files are already hidden elsewhere."""
        if sys.platform != "win32" or not path.exists():
            return

        import ctypes

        attributes = ctypes.windll.kernel32.GetFileAttributesW(str(path))
        if attributes != -1:
            ctypes.windll.kernel32.SetFileAttributesW(str(path), attributes | _FILE_ATTRIBUTE_HIDDEN)

    def unmark_hidden(self, path: Path) -> None:
        if sys.platform != "win32" or not path.exists():
            return

        import ctypes

        attributes = ctypes.windll.kernel32.GetFileAttributesW(str(path))
        if attributes != -1:
            ctypes.windll.kernel32.SetFileAttributesW(str(path), attributes & ~_FILE_ATTRIBUTE_HIDDEN)

    def check_write_permission(self, path: Path) -> bool:
        """Check if we have write permission for the given path or its nearest existing parent."""
        target = path
        while not target.exists() and target != target.parent:
            target = target.parent

        has_permission = os.access(target, os.W_OK)
        log.debug("Checked write permission", path=str(path), checked=str(target), has_permission=has_permission)
        return has_permission
