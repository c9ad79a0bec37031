"""Main entry point for Goldberg Config Manager.

This module provides the command-line front end with:
- Command-line argument parsing
- Service construction and dependency injection
- Exit codes and user-facing error reporting
"""

import argparse
import asyncio
import json
import os
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

import structlog

from goldberg_manager.models import (
    Achievement,
    AppPaths,
    DlcApp,
    GoldbergConfiguration,
    GoldbergGlobalConfiguration,
    SteamApp,
    Stat,
)
from goldberg_manager.services.app_config import AppConfigService
from goldberg_manager.services.catalog_store import CatalogStore
from goldberg_manager.services.catalog_sync import CatalogSyncService, SyncReport, SyncStatus
from goldberg_manager.services.config_codec import ConfigCodec
from goldberg_manager.services.errors import AppError, get_error_service
from goldberg_manager.services.filesystem import FileSystemService
from goldberg_manager.services.goldberg import GoldbergService
from goldberg_manager.services.http_client import HttpClientService
from goldberg_manager.services.interfaces import generate_interfaces_file
from goldberg_manager.services.logging import setup_logging
from goldberg_manager.services.lookup import LookupService
from goldberg_manager.services.metadata import MetadataService
from goldberg_manager.services.provisioning import ProvisioningService
from goldberg_manager.services.status import StatusChannel, StatusMessage

log = structlog.stdlib.get_logger()

VERSION = "0.1.0"
API_KEY_ENV = "STEAM_WEB_API_KEY"


class ApplicationContext:
    """Container for application services.

    Services are created lazily, so a command only builds what it uses.
    """

    def __init__(self, base_dir: Path, api_key: str | None = None) -> None:
        self.paths = AppPaths(base_dir=base_dir)
        self.api_key = api_key

        self._filesystem: FileSystemService | None = None
        self._app_config: AppConfigService | None = None
        self._status: StatusChannel | None = None
        self._http_client: HttpClientService | None = None
        self._store: CatalogStore | None = None
        self._lookup: LookupService | None = None
        self._catalog_sync: CatalogSyncService | None = None
        self._provisioning: ProvisioningService | None = None
        self._metadata: MetadataService | None = None
        self._codec: ConfigCodec | None = None
        self._goldberg: GoldbergService | None = None

    @property
    def filesystem(self) -> FileSystemService:
        if self._filesystem is None:
            self._filesystem = FileSystemService(self.paths.base_dir)
        return self._filesystem

    @property
    def app_config(self) -> AppConfigService:
        if self._app_config is None:
            self._app_config = AppConfigService(self.paths.app_config, self.filesystem)
        return self._app_config

    @property
    def status(self) -> StatusChannel:
        if self._status is None:
            self._status = StatusChannel()
        return self._status

    @property
    def http_client(self) -> HttpClientService:
        if self._http_client is None:
            self._http_client = HttpClientService()
        return self._http_client

    @property
    def store(self) -> CatalogStore:
        if self._store is None:
            self._store = CatalogStore(self.paths.database)
        return self._store

    @property
    def lookup(self) -> LookupService:
        if self._lookup is None:
            self._lookup = LookupService(self.store)
        return self._lookup

    @property
    def catalog_sync(self) -> CatalogSyncService:
        if self._catalog_sync is None:
            self._catalog_sync = CatalogSyncService(
                store=self.store,
                http_client=self.http_client,
                app_config=self.app_config,
                status=self.status,
                api_key=self.api_key,
            )
        return self._catalog_sync

    @property
    def provisioning(self) -> ProvisioningService:
        if self._provisioning is None:
            self._provisioning = ProvisioningService(
                paths=self.paths,
                http_client=self.http_client,
                app_config=self.app_config,
                status=self.status,
                filesystem=self.filesystem,
            )
        return self._provisioning

    @property
    def metadata(self) -> MetadataService:
        if self._metadata is None:
            self._metadata = MetadataService(self.http_client, self.store, self.api_key)
        return self._metadata

    @property
    def codec(self) -> ConfigCodec:
        if self._codec is None:
            self._codec = ConfigCodec(self.filesystem)
        return self._codec

    @property
    def goldberg(self) -> GoldbergService:
        if self._goldberg is None:
            self._goldberg = GoldbergService(
                provisioning=self.provisioning,
                codec=self.codec,
                metadata=self.metadata,
                app_config=self.app_config,
                status=self.status,
            )
        return self._goldberg

    async def sync_catalog(self, force: bool = False, concurrent: bool = False) -> SyncReport:
        """Run a catalog sync and drop cached lookups if any type was replaced."""
        report = await self.catalog_sync.sync(force=force, concurrent=concurrent)
        if any(r.status == SyncStatus.SYNCED for r in report.results):
            self.lookup.invalidate()
        return report

    async def cleanup(self) -> None:
        """Close network connections."""
        if self._http_client is not None:
            await self._http_client.close()


class ParsedArgs:
    """Type-safe container for parsed command-line arguments."""

    def __init__(
        self,
        command: str,
        base_dir: Path,
        api_key: str | None,
        log_level: str,
        log_dir: Path | None,
        options: argparse.Namespace,
    ) -> None:
        self.command: str = command
        self.base_dir: Path = base_dir
        self.api_key: str | None = api_key
        self.log_level: str = log_level
        self.log_dir: Path | None = log_dir
        self.options: argparse.Namespace = options


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="goldberg-manager",
        description="Configure games for the Goldberg Steam emulator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  goldberg-manager sync                          Refresh the local Steam catalog
  goldberg-manager search half life              Search the catalog
  goldberg-manager apply "C:/Games/Foo" --name "Foo"
  goldberg-manager settings --account-name Player --language german
        """,
    )

    _ = parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    _ = parser.add_argument(
        "--base-dir",
        type=Path,
        default=Path.cwd(),
        help="Directory holding app_config.json, the catalog and the emulator package (default: current directory)",
    )
    _ = parser.add_argument(
        "--api-key",
        default=None,
        help=f"Steam Web API key (default: ${API_KEY_ENV})",
    )
    _ = parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="WARNING",
        help="Set the console logging level (default: WARNING)",
    )
    _ = parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Directory for rotating log files (default: no log files)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Update the local Steam catalog")
    _ = sync.add_argument("--force", action="store_true", help="Ignore the update cadence")
    _ = sync.add_argument("--concurrent", action="store_true", help="Fetch games and DLC at the same time")

    update = commands.add_parser("update", help="Download or update the emulator package")
    _ = update.add_argument("--force", action="store_true", help="Ignore the update cadence")

    search = commands.add_parser("search", help="Search the catalog by name")
    _ = search.add_argument("name", nargs="+", help="Words that must all appear in the name")
    _ = search.add_argument("--limit", type=int, default=25, help="Maximum number of results (default: 25)")

    show = commands.add_parser("show", help="Print the configuration of a game directory")
    _ = show.add_argument("game_dir", type=Path)

    apply = commands.add_parser("apply", help="Configure a game directory and swap in the emulator")
    _ = apply.add_argument("game_dir", type=Path)
    target = apply.add_mutually_exclusive_group(required=True)
    _ = target.add_argument("--app-id", type=int, help="Steam app id of the game")
    _ = target.add_argument("--name", help="Exact game name (punctuation and case are ignored)")
    _ = apply.add_argument("--no-dlc", action="store_true", help="Do not fetch DLC")
    _ = apply.add_argument("--no-fallbacks", action="store_true", help="Only use the store app details for DLC")
    _ = apply.add_argument("--no-achievements", action="store_true", help="Do not fetch achievements and stats")
    _ = apply.add_argument("--offline", action=argparse.BooleanOptionalAction, default=None)
    _ = apply.add_argument("--disable-networking", action=argparse.BooleanOptionalAction, default=None)
    _ = apply.add_argument("--disable-overlay", action=argparse.BooleanOptionalAction, default=None)

    settings = commands.add_parser("settings", help="Show or change the global settings")
    _ = settings.add_argument("--account-name")
    _ = settings.add_argument("--steam-id", type=int)
    _ = settings.add_argument("--language")
    _ = settings.add_argument(
        "--broadcast-ip",
        action="append",
        dest="broadcast_ips",
        help="Custom broadcast address; repeat for several, pass '' to clear",
    )
    _ = settings.add_argument("--experimental", action=argparse.BooleanOptionalAction, default=None)

    interfaces = commands.add_parser("interfaces", help="Write steam_interfaces.txt for an original steam_api DLL")
    _ = interfaces.add_argument("dll_path", type=Path)

    return parser


def parse_arguments(argv: list[str] | None = None) -> ParsedArgs:
    """Parse command-line arguments."""
    ns = build_parser().parse_args(argv)

    api_key_val: str | None = ns.api_key or os.getenv(API_KEY_ENV) or None

    return ParsedArgs(
        command=str(ns.command),
        base_dir=Path(ns.base_dir),
        api_key=api_key_val,
        log_level=ns.log_level,
        log_dir=ns.log_dir,
        options=ns,
    )


def setup_signal_handlers() -> None:
    """Treat SIGTERM like Ctrl+C so downloads clean up their partial files."""

    def signal_handler(signum: int, frame: object) -> None:
        _ = frame
        log.info("Received signal", signal=signal.Signals(signum).name)
        raise KeyboardInterrupt

    _ = signal.signal(signal.SIGTERM, signal_handler)


def _app_to_dict(app: SteamApp) -> dict[str, Any]:
    return {"app_id": app.app_id, "name": app.name, "type": app.app_type.value}


def _config_to_dict(config: GoldbergConfiguration) -> dict[str, Any]:
    override = config.overwritten_global_configuration
    return {
        "app_id": config.app_id,
        "offline": config.offline,
        "disable_networking": config.disable_networking,
        "disable_overlay": config.disable_overlay,
        "dlc": [
            {"app_id": d.app_id, "name": d.name, "app_path": d.app_path}
            for d in config.dlc_list
        ],
        "achievements": len(config.achievements),
        "stats": len(config.stats) if config.stats is not None else None,
        "user_override": None if override is None else {
            "account_name": override.account_name,
            "steam_id": override.user_steam_id,
            "language": override.language,
            "custom_broadcast_ips": override.custom_broadcast_ips,
        },
    }


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


async def run_sync(context: ApplicationContext, options: argparse.Namespace) -> int:
    report = await context.sync_catalog(force=options.force, concurrent=options.concurrent)
    for result in report.results:
        line = f"{result.app_type.value}: {result.status.value} ({result.count} entries)"
        if result.error is not None:
            line += f" - {result.error.message}"
        print(line)
    return 0 if all(r.status != SyncStatus.FAILED for r in report.results) else 2


async def run_update(context: ApplicationContext, options: argparse.Namespace) -> int:
    await context.goldberg.initialize(force_update=options.force)
    installed = context.app_config.load().goldberg_state.installed_version
    print(f"Emulator: {context.provisioning.state.value} ({installed or 'unknown version'})")
    return 0


async def _ensure_catalog(context: ApplicationContext) -> None:
    """Populate an empty catalog before the first lookup."""
    if context.store.count() == 0:
        await context.sync_catalog()


async def run_search(context: ApplicationContext, options: argparse.Namespace) -> int:
    await _ensure_catalog(context)
    results = await context.lookup.list_by_name(" ".join(options.name), limit=options.limit)
    for app in results:
        print(f"{app.app_id}\t{app.name}")
    if not results:
        print("No matches.", file=sys.stderr)
        return 1
    return 0


async def run_show(context: ApplicationContext, options: argparse.Namespace) -> int:
    game_dir: Path = options.game_dir
    if not context.goldberg.is_applied(game_dir):
        print(f"{game_dir} is not configured yet.", file=sys.stderr)
    config = await context.goldberg.read(game_dir)
    _print_json(_config_to_dict(config))
    return 0


async def _resolve_app(context: ApplicationContext, options: argparse.Namespace) -> SteamApp | None:
    if options.app_id is not None:
        return await context.lookup.get_by_id(options.app_id)
    return await context.lookup.get_by_exact_comparable_name(options.name)


async def run_apply(context: ApplicationContext, options: argparse.Namespace) -> int:
    game_dir: Path = options.game_dir
    if not game_dir.is_dir():
        print(f"Not a directory: {game_dir}", file=sys.stderr)
        return 1

    await context.goldberg.initialize()
    await _ensure_catalog(context)

    app = await _resolve_app(context, options)
    if app is None:
        print("Game not found in the catalog. Try 'search' first.", file=sys.stderr)
        return 1
    print(f"Configuring {app.name} ({app.app_id})")

    existing = await context.goldberg.read(game_dir) if context.goldberg.is_applied(game_dir) else None

    dlc_list: list[DlcApp] = []
    if not options.no_dlc:
        dlc_list = await context.metadata.get_dlc(app, use_fallbacks=not options.no_fallbacks)
        if existing is not None:
            paths = {d.app_id: d.app_path for d in existing.dlc_list if d.app_path}
            dlc_list = [replace(d, app_path=paths.get(d.app_id, d.app_path)) for d in dlc_list]
    elif existing is not None:
        dlc_list = existing.dlc_list

    achievements: list[Achievement] = []
    stats: list[Stat] | None = None
    if not options.no_achievements:
        achievements, fetched_stats = await context.metadata.get_schema_metadata(app)
        stats = fetched_stats or None
    # Keep what is on disk when nothing was fetched for the same game
    if existing is not None and existing.app_id == app.app_id:
        achievements = achievements or existing.achievements
        stats = stats or existing.stats

    def flag(value: bool | None, current: bool) -> bool:
        return current if value is None else value

    config = GoldbergConfiguration(
        app_id=app.app_id,
        dlc_list=dlc_list,
        achievements=achievements,
        stats=stats,
        offline=flag(options.offline, existing.offline if existing else False),
        disable_networking=flag(options.disable_networking, existing.disable_networking if existing else False),
        disable_overlay=flag(options.disable_overlay, existing.disable_overlay if existing else False),
        overwritten_global_configuration=existing.overwritten_global_configuration if existing else None,
    )

    saved = await context.goldberg.save(game_dir, config)
    _print_json(_config_to_dict(saved))
    return 0


async def run_settings(context: ApplicationContext, options: argparse.Namespace) -> int:
    current = context.goldberg.get_global_settings()
    changed = any(
        value is not None
        for value in (
            options.account_name,
            options.steam_id,
            options.language,
            options.broadcast_ips,
            options.experimental,
        )
    )

    if changed:
        current = context.goldberg.set_global_settings(GoldbergGlobalConfiguration(
            account_name=options.account_name if options.account_name is not None else current.account_name,
            user_steam_id=options.steam_id if options.steam_id is not None else current.user_steam_id,
            language=options.language if options.language is not None else current.language,
            custom_broadcast_ips=(
                options.broadcast_ips if options.broadcast_ips is not None else current.custom_broadcast_ips
            ),
            use_experimental=options.experimental if options.experimental is not None else current.use_experimental,
        ))

    _print_json({
        "account_name": current.account_name,
        "steam_id": current.user_steam_id,
        "language": current.language,
        "custom_broadcast_ips": current.custom_broadcast_ips,
        "use_experimental": current.use_experimental,
        "languages": context.goldberg.languages(),
    })
    return 0


async def run_interfaces(context: ApplicationContext, options: argparse.Namespace) -> int:
    target = await asyncio.to_thread(generate_interfaces_file, options.dll_path, context.filesystem)
    print(target)
    return 0


COMMANDS = {
    "sync": run_sync,
    "update": run_update,
    "search": run_search,
    "show": run_show,
    "apply": run_apply,
    "settings": run_settings,
    "interfaces": run_interfaces,
}


async def run_command(context: ApplicationContext, args: ParsedArgs) -> int:
    """Run one command and report application errors in a user-friendly way.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    def print_status(message: StatusMessage) -> None:
        print(message.text, file=sys.stderr)

    context.status.subscribe(print_status)

    try:
        return await COMMANDS[args.command](context, args.options)
    except AppError as e:
        error_service = get_error_service()
        friendly = error_service.handle_error(e, operation=args.command, component="cli")
        print(error_service.create_user_message(friendly), file=sys.stderr)
        return 1
    finally:
        await context.cleanup()


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the application."""
    args = parse_arguments(argv)

    _ = setup_logging(log_level=args.log_level, log_dir=args.log_dir)
    log.info("Starting Goldberg Config Manager", version=VERSION, command=args.command, base_dir=str(args.base_dir))

    setup_signal_handlers()
    context = ApplicationContext(base_dir=args.base_dir, api_key=args.api_key)

    try:
        exit_code = asyncio.run(run_command(context, args))
    except KeyboardInterrupt:
        log.info("Application interrupted by user")
        exit_code = 130
    except Exception as e:
        log.error("Unhandled exception", error=str(e), exc_info=True)
        print(f"Fatal error: {e}", file=sys.stderr)
        exit_code = 1

    log.info("Application exiting", exit_code=exit_code)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
