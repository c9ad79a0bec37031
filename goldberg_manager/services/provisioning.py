"""Download, update and swap-in of the Goldberg emulator package."""

import asyncio
import zipfile
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import httpx
import py7zr
import structlog

from ..models import AppPaths, is_update_due
from .app_config import AppConfigService
from .errors import DownloadError, ProvisioningError
from .filesystem import FileSystemService
from .http_client import HttpClientService
from .status import StatusChannel

log = structlog.stdlib.get_logger()

RELEASE_URL = "https://api.github.com/repos/Detanup01/gbe_fork/releases/latest"
ASSET_NAME = "emu-win-release.7z"

STEAM_API_NAMES = ("steam_api", "steam_api64")
ORIGINAL_SUFFIX = "_o.dll"
GUI_BACKUP_SUFFIX = ".dll.GOLDBERGGUIBACKUP"


class ProvisioningState(Enum):
    UNINITIALIZED = "uninitialized"
    CHECKING = "checking"
    UP_TO_DATE = "up_to_date"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class ReleaseInfo:
    tag: str
    asset_name: str
    download_url: str


@dataclass(frozen=True)
class ProvisioningResult:
    state: ProvisioningState
    installed_version: str | None
    downloaded: bool = False
    checked: bool = False  # Whether the release descriptor was queried
    error: str | None = None  # Recoverable update-check failure


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def architecture_for(binary_base_name: str) -> str:
    return "x64" if "64" in binary_base_name else "x32"


def detect_archive_type(path: Path) -> str | None:
    """Detect the archive type from magic bytes, falling back to the extension."""
    if not path.exists():
        return None

    with open(path, "rb") as f:
        magic_bytes = f.read(8)

    if magic_bytes[:2] == b"PK":
        return "zip"
    if magic_bytes[:6] == b"7z\xbc\xaf\x27\x1c":
        return "7z"

    suffix = path.suffix.lower()
    if suffix == ".zip":
        return "zip"
    if suffix == ".7z":
        return "7z"
    return None


def extract_archive(archive_path: Path, destination: Path) -> list[str]:
    """Extract every file entry of a 7z or zip archive into ``destination``.

    A failing entry does not stop the remaining ones.

    Returns:
        Names of the entries that failed; empty on full success
    """
    archive_type = detect_archive_type(archive_path)
    destination.mkdir(parents=True, exist_ok=True)

    if archive_type == "zip":
        return _extract_zip(archive_path, destination)
    if archive_type == "7z":
        return _extract_7z(archive_path, destination)
    return [f"{archive_path.name}: unsupported archive format"]


def _extract_zip(archive_path: Path, destination: Path) -> list[str]:
    failed: list[str] = []
    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            for member in zf.infolist():
                if member.is_dir():
                    continue
                try:
                    zf.extract(member, destination)
                except Exception as e:
                    log.error("Failed to extract entry", entry=member.filename, error=str(e))
                    failed.append(member.filename)
    except zipfile.BadZipFile as e:
        log.error("Failed to open zip archive", path=str(archive_path), error=str(e))
        failed.append(f"{archive_path.name}: {e}")
    return failed


def _extract_7z(archive_path: Path, destination: Path) -> list[str]:
    try:
        with py7zr.SevenZipFile(archive_path, mode="r") as archive:
            names = [info.filename for info in archive.list() if not info.is_directory]
            try:
                archive.extractall(path=destination)
                return []
            except Exception as e:
                log.warning("Bulk 7z extraction failed, retrying entry by entry", error=str(e))
    except py7zr.Bad7zFile as e:
        log.error("Failed to open 7z archive", path=str(archive_path), error=str(e))
        return [f"{archive_path.name}: {e}"]

    # Solid archives cannot skip to an entry, so each one reopens the archive
    failed: list[str] = []
    for name in names:
        try:
            with py7zr.SevenZipFile(archive_path, mode="r") as archive:
                archive.extract(path=destination, targets=[name])
        except Exception as e:
            log.error("Failed to extract entry", entry=name, error=str(e))
            failed.append(name)
    return failed


class ProvisioningService:
    """Keeps a local copy of the emulator package and installs its DLLs into games.

    The package lives in ``AppPaths.goldberg_dir``; its installed release tag
    and last check time live in ``app_config.json``. A new package is only
    promoted once it was downloaded in full and every entry extracted.
    """

    def __init__(
        self,
        paths: AppPaths,
        http_client: HttpClientService,
        app_config: AppConfigService,
        status: StatusChannel,
        filesystem: FileSystemService | None = None,
        release_url: str = RELEASE_URL,
        asset_name: str = ASSET_NAME,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._paths = paths
        self._http = http_client
        self._app_config = app_config
        self._status = status
        self._fs = filesystem or FileSystemService(paths.base_dir)
        self._release_url = release_url
        self._asset_name = asset_name
        self._clock = clock
        self._lock = asyncio.Lock()
        self.state = ProvisioningState.UNINITIALIZED

    def build_type(self, use_experimental: bool | None = None) -> str:
        if use_experimental is None:
            use_experimental = self._app_config.load().gui_defaults.use_experimental
        return "experimental" if use_experimental else "regular"

    def dll_source(self, binary_base_name: str, use_experimental: bool | None = None) -> Path:
        return (
            self._paths.goldberg_dir
            / "release"
            / self.build_type(use_experimental)
            / architecture_for(binary_base_name)
            / f"{binary_base_name}.dll"
        )

    def is_ready(self, use_experimental: bool | None = None) -> bool:
        """Whether the package provides the DLL for at least one architecture."""
        return any(self.dll_source(name, use_experimental).is_file() for name in STEAM_API_NAMES)

    async def fetch_latest_release(self) -> ReleaseInfo:
        """Query the latest release descriptor.

        Raises:
            ProvisioningError: If the descriptor cannot be fetched or lacks the asset
        """
        try:
            data = await self._http.get_json(self._release_url, headers={"Accept": "application/vnd.github+json"})
        except (httpx.HTTPError, ValueError) as e:
            raise ProvisioningError(
                "Could not check for emulator updates",
                stage="check",
                path=self._release_url,
                original_error=e,
                recoverable=True,
            ) from e

        tag = data.get("tag_name") if isinstance(data, dict) else None
        assets = data.get("assets") if isinstance(data, dict) else None
        url = None
        if isinstance(assets, list):
            url = next(
                (
                    a.get("browser_download_url")
                    for a in assets
                    if isinstance(a, dict) and a.get("name") == self._asset_name
                ),
                None,
            )

        if not tag or not url:
            log.error("Release descriptor is missing the tag or asset", asset=self._asset_name, tag=tag)
            raise ProvisioningError(
                f"Could not find {self._asset_name} in the latest release",
                stage="check",
                path=self._release_url,
                recoverable=True,
            )

        return ReleaseInfo(tag=str(tag), asset_name=self._asset_name, download_url=str(url))

    async def ensure_latest(self, force: bool = False) -> ProvisioningResult:
        """Bring the local package up to date if a check is due.

        An install that is not ready is always checked. When it is ready,
        failures of the update check are reported to the status channel and
        the existing package keeps being used.

        Raises:
            ProvisioningError: If no usable package exists afterwards, or a
                download or extraction failed
        """
        async with self._lock:
            return await self._ensure_latest(force)

    async def _ensure_latest(self, force: bool) -> ProvisioningResult:
        config = self._app_config.load()
        installed = config.goldberg_state.installed_version
        ready = self.is_ready(config.gui_defaults.use_experimental)
        now = self._clock()

        due = force or not ready or is_update_due(
            config.gui_defaults.goldberg_update_check_hours,
            config.goldberg_state.last_update_check,
            now,
        )
        if not due:
            log.debug("Emulator update check not due", installed_version=installed)
            self.state = ProvisioningState.READY
            return ProvisioningResult(self.state, installed)

        self.state = ProvisioningState.CHECKING
        self._status.info("Checking for emulator updates...")
        try:
            release = await self.fetch_latest_release()
        except ProvisioningError as e:
            if not ready:
                self.state = ProvisioningState.FAILED
                raise
            log.warning("Emulator update check failed, keeping installed package", error=e.technical_details)
            self._status.warning(f"{e.message}; using installed version {installed}.")
            self.state = ProvisioningState.READY
            return ProvisioningResult(self.state, installed, checked=True, error=e.message)

        if ready and release.tag == installed:
            await asyncio.to_thread(self._app_config.record_goldberg_check, now)
            log.info("Emulator is up to date", version=installed)
            self.state = ProvisioningState.UP_TO_DATE
            return ProvisioningResult(self.state, installed, checked=True)

        await self._install(release)
        await asyncio.to_thread(self._app_config.record_goldberg_check, now, release.tag)
        self._status.info(f"Emulator {release.tag} installed.")
        self.state = ProvisioningState.READY
        return ProvisioningResult(self.state, release.tag, downloaded=True, checked=True)

    async def _install(self, release: ReleaseInfo) -> None:
        archive_path = self._paths.goldberg_archive
        work_dir = self._paths.goldberg_dir.with_name(self._paths.goldberg_dir.name + ".new")

        self.state = ProvisioningState.DOWNLOADING
        self._status.info(f"Downloading emulator {release.tag}...")
        log.info("Downloading emulator release", tag=release.tag, url=release.download_url)
        try:
            await self._http.download_file(release.download_url, archive_path)
        except (DownloadError, httpx.HTTPError, OSError) as e:
            self.state = ProvisioningState.FAILED
            self._fs.remove_file(archive_path)
            raise ProvisioningError(
                f"Failed to download emulator {release.tag}",
                stage="download",
                path=str(archive_path),
                original_error=e,
            ) from e

        self.state = ProvisioningState.EXTRACTING
        self._status.info("Extracting emulator...")
        try:
            await asyncio.to_thread(self._fs.remove_tree, work_dir)
            failed = await asyncio.to_thread(extract_archive, archive_path, work_dir)
            if failed:
                raise ProvisioningError(
                    f"Failed to extract {len(failed)} entries of emulator {release.tag}",
                    stage="extract",
                    path=str(archive_path),
                    failed_entries=failed,
                )
            await asyncio.to_thread(self._promote, work_dir)
        except ProvisioningError:
            self.state = ProvisioningState.FAILED
            await asyncio.to_thread(self._fs.remove_tree, work_dir)
            raise
        except OSError as e:
            self.state = ProvisioningState.FAILED
            await asyncio.to_thread(self._fs.remove_tree, work_dir)
            raise ProvisioningError(
                "Failed to install the extracted emulator",
                stage="extract",
                path=str(self._paths.goldberg_dir),
                original_error=e,
            ) from e
        finally:
            self._fs.remove_file(archive_path)

        log.info("Emulator installed", tag=release.tag, path=str(self._paths.goldberg_dir))

    def _promote(self, work_dir: Path) -> None:
        target = self._paths.goldberg_dir
        previous = target.with_name(target.name + ".old")
        self._fs.remove_tree(previous)
        if target.exists():
            target.rename(previous)
        work_dir.rename(target)
        self._fs.remove_tree(previous)

    def provision_into(self, target_dir: Path, binary_base_name: str) -> Path:
        """Swap the emulator DLL into ``target_dir`` for one binary name.

        The first swap keeps the game's DLL as ``<name>_o.dll`` forever;
        later swaps move the current DLL to a hidden, overwritable backup.

        Returns:
            Path of the installed DLL

        Raises:
            ProvisioningError: If the package does not provide the DLL; the
                target directory is left untouched in that case
        """
        source = self.dll_source(binary_base_name)
        target = target_dir / f"{binary_base_name}.dll"
        original = target_dir / f"{binary_base_name}{ORIGINAL_SUFFIX}"
        gui_backup = target_dir / f".{binary_base_name}{GUI_BACKUP_SUFFIX}"

        if not source.is_file():
            log.error("Emulator DLL not found", source=str(source))
            raise ProvisioningError(
                f"Emulator DLL not found: {source.name}. Run the emulator update first.",
                stage="swap",
                path=str(source),
            )

        try:
            if target.exists():
                if not original.exists():
                    log.info("Backing up original Steam API DLL", target=str(target), backup=str(original))
                    target.rename(original)
                else:
                    self._fs.move_file(target, gui_backup)
                    self._fs.mark_hidden(gui_backup)
            self._fs.copy_file(source, target)
        except OSError as e:
            raise ProvisioningError(
                f"Failed to install {target.name}",
                stage="swap",
                path=str(target),
                original_error=e,
            ) from e

        log.info(
            "Emulator DLL installed",
            target=str(target),
            build=source.parent.parent.name,
            architecture=source.parent.name,
        )
        return target

    def apply_to_directory(self, game_dir: Path) -> list[Path]:
        """Run ``provision_into`` for every Steam API DLL present in ``game_dir``."""
        installed = []
        for name in STEAM_API_NAMES:
            if (game_dir / f"{name}.dll").exists():
                installed.append(self.provision_into(game_dir, name))
        return installed
