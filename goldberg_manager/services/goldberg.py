"""Service facade used by front ends: initialize, read, save and global settings."""

import asyncio
from dataclasses import replace
from pathlib import Path

import structlog

from ..models import (
    LANGUAGES,
    GoldbergConfiguration,
    GoldbergGlobalConfiguration,
    GuiDefaults,
    is_valid_steam_id,
)
from .app_config import AppConfigService
from .config_codec import IMAGES_DIR, ConfigCodec
from .errors import ProvisioningError
from .metadata import MetadataService
from .provisioning import ProvisioningService
from .status import StatusChannel

log = structlog.stdlib.get_logger()


class GoldbergService:
    """Ties provisioning, the configuration codec and metadata together."""

    def __init__(
        self,
        provisioning: ProvisioningService,
        codec: ConfigCodec,
        metadata: MetadataService,
        app_config: AppConfigService,
        status: StatusChannel,
    ) -> None:
        self._provisioning = provisioning
        self._codec = codec
        self._metadata = metadata
        self._app_config = app_config
        self._status = status

    async def initialize(self, force_update: bool = False) -> GoldbergGlobalConfiguration:
        """Make sure the emulator package is usable and return the global settings.

        Raises:
            ProvisioningError: If no usable emulator package could be set up
        """
        try:
            await self._provisioning.ensure_latest(force=force_update)
        except ProvisioningError as e:
            if not self._provisioning.is_ready():
                log.error("Emulator setup failed", error=e.message, details=e.technical_details)
                raise
            log.warning("Emulator update failed, keeping installed package", error=e.message)
            self._status.warning(f"{e.message}. Using the installed emulator.")

        return self.get_global_settings()

    def get_global_settings(self) -> GoldbergGlobalConfiguration:
        return self._app_config.load().gui_defaults.to_global_configuration()

    def set_global_settings(self, settings: GoldbergGlobalConfiguration) -> GoldbergGlobalConfiguration:
        """Store new global settings, replacing invalid values with defaults.

        Returns:
            The settings as stored
        """
        defaults = GuiDefaults()
        broadcasts = [ip.strip() for ip in settings.custom_broadcast_ips or [] if ip.strip()]

        account_name = settings.account_name.strip() or defaults.account_name
        steam_id = settings.user_steam_id if is_valid_steam_id(settings.user_steam_id) else defaults.steam_id
        language = settings.language.strip()
        if language not in LANGUAGES:
            if language:
                log.warning("Unknown language, using default", language=language)
            language = defaults.language

        if steam_id != settings.user_steam_id:
            log.warning("Invalid Steam id, using default", steam_id=settings.user_steam_id)

        stored = self._app_config.update(lambda config: replace(
            config,
            gui_defaults=replace(
                config.gui_defaults,
                account_name=account_name,
                steam_id=steam_id,
                language=language,
                custom_broadcast_ips=broadcasts or None,
                use_experimental=settings.use_experimental,
            ),
        ))
        log.info("Global settings saved", account_name=account_name, language=language)
        return stored.gui_defaults.to_global_configuration()

    async def read(self, game_dir: Path) -> GoldbergConfiguration:
        """Read the configuration of ``game_dir``.

        Raises:
            ConfigError: If a configuration file cannot be read
        """
        return await asyncio.to_thread(self._codec.read, game_dir, self.get_global_settings())

    async def save(self, game_dir: Path, config: GoldbergConfiguration) -> GoldbergConfiguration:
        """Write ``config`` into ``game_dir`` and swap in the emulator DLLs.

        Achievement icons are downloaded first so ``achievements.json`` can
        point at the local copies.

        Returns:
            The configuration as written

        Raises:
            ConfigError: If the configuration cannot be written
            ProvisioningError: If a DLL swap fails
        """
        if config.achievements:
            images_dir = self._codec.settings_dir(game_dir) / IMAGES_DIR
            achievements = await self._metadata.download_achievement_images(config.achievements, images_dir)
            config = replace(config, achievements=achievements)

        await asyncio.to_thread(self._codec.write, game_dir, config, self.get_global_settings())
        installed = await asyncio.to_thread(self._provisioning.apply_to_directory, game_dir)

        self._status.info(f"Configuration saved ({len(installed)} DLLs replaced).")
        return config

    def is_applied(self, game_dir: Path) -> bool:
        return self._codec.is_applied(game_dir)

    @staticmethod
    def languages() -> list[str]:
        return list(LANGUAGES)
