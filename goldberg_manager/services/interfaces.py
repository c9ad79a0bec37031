"""Extraction of Steam interface version strings from an original steam_api DLL.

The emulator needs ``steam_interfaces.txt`` for games built against an old
SDK; it lists the versioned interface names the game's DLL exports.
"""

import re
from pathlib import Path

import structlog

from .filesystem import FileSystemService

log = structlog.stdlib.get_logger()

INTERFACES_FILE = "steam_interfaces.txt"

INTERFACE_NAMES = (
    "SteamClient",
    "SteamGameServer",
    "SteamGameServerStats",
    "SteamUser",
    "SteamFriends",
    "SteamUtils",
    "SteamMatchMaking",
    "SteamMatchMakingServers",
    "STEAMUSERSTATS_INTERFACE_VERSION",
    "STEAMAPPS_INTERFACE_VERSION",
    "SteamNetworking",
    "STEAMREMOTESTORAGE_INTERFACE_VERSION",
    "STEAMSCREENSHOTS_INTERFACE_VERSION",
    "STEAMHTTP_INTERFACE_VERSION",
    "STEAMUNIFIEDMESSAGES_INTERFACE_VERSION",
    "STEAMUGC_INTERFACE_VERSION",
    "STEAMAPPLIST_INTERFACE_VERSION",
    "STEAMMUSIC_INTERFACE_VERSION",
    "STEAMMUSICREMOTE_INTERFACE_VERSION",
    "STEAMHTMLSURFACE_INTERFACE_VERSION_",
    "STEAMINVENTORY_INTERFACE_V",
    "SteamController",
    "SteamMasterServerUpdater",
    "STEAMVIDEO_INTERFACE_V",
)

_VERSIONED = [re.compile(re.escape(name.encode("ascii")) + rb"\d{3}") for name in INTERFACE_NAMES]
_CONTROLLER_VERSIONED = re.compile(rb"STEAMCONTROLLER_INTERFACE_VERSION\d{3}")
_CONTROLLER_UNVERSIONED = re.compile(rb"STEAMCONTROLLER_INTERFACE_VERSION")


def extract_interface_strings(blob: bytes) -> set[str]:
    """Find every ``<NAME><3 digits>`` interface string in ``blob``.

    The controller interface is also accepted without a version suffix,
    because some SDK releases shipped it that way.
    """
    found: set[str] = set()
    for pattern in _VERSIONED:
        found.update(m.group(0).decode("ascii") for m in pattern.finditer(blob))

    controller = {m.group(0).decode("ascii") for m in _CONTROLLER_VERSIONED.finditer(blob)}
    if not controller and _CONTROLLER_UNVERSIONED.search(blob):
        controller = {"STEAMCONTROLLER_INTERFACE_VERSION"}
    found.update(controller)
    return found


def generate_interfaces_file(dll_path: Path, filesystem: FileSystemService | None = None) -> Path:
    """Write ``steam_interfaces.txt`` next to ``dll_path``, one interface per line (sorted).

    Raises:
        OSError: If the DLL cannot be read or the file cannot be written
    """
    fs = filesystem or FileSystemService(dll_path.parent)
    interfaces = extract_interface_strings(dll_path.read_bytes())
    target = dll_path.parent / INTERFACES_FILE
    fs.write_text(target, "".join(f"{name}\n" for name in sorted(interfaces)))
    log.info("Interfaces file written", path=str(target), count=len(interfaces))
    return target
