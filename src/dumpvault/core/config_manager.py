"""Configuration Manager for dumpvault"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml
from cryptography.fernet import Fernet

from .models import Cadence

# Retention quotas per cadence (manual backups are never rotated)
DEFAULT_RETENTION_QUOTAS: dict[str, int] = {
    Cadence.DAILY.value: 7,
    Cadence.WEEKLY.value: 4,
    Cadence.MONTHLY.value: 12,
}

# Scheduler trigger, local time of day
DEFAULT_SCHEDULE_HOUR = 2
DEFAULT_SCHEDULE_MINUTE = 0

# Progress monitoring of the artifact while the dump is running
DEFAULT_PROGRESS_INTERVAL_SECONDS = 1.0
DEFAULT_PROGRESS_INITIAL_DELAY_SECONDS = 0.5
DEFAULT_PROGRESS_THRESHOLD_BYTES = 1024

PRODUCTION_ENV_VAR = "DUMPVAULT_ENV"
CONFIG_DIR_ENV_VAR = "DUMPVAULT_CONFIG_DIR"


@dataclass(frozen=True)
class BackupSettings:
    """Settings resolved once at startup and passed to every component"""

    locator: str
    backup_dir: Path
    production: bool = False
    compress: bool = True
    docker_container: str | None = None
    schedule_hour: int = DEFAULT_SCHEDULE_HOUR
    schedule_minute: int = DEFAULT_SCHEDULE_MINUTE
    retention_quotas: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_RETENTION_QUOTAS))
    progress_interval: float = DEFAULT_PROGRESS_INTERVAL_SECONDS
    progress_initial_delay: float = DEFAULT_PROGRESS_INITIAL_DELAY_SECONDS
    progress_threshold: int = DEFAULT_PROGRESS_THRESHOLD_BYTES
    log_file: Path | None = None
    log_level: str = "INFO"
    desktop_notifications: bool = False

    def quota(self, cadence: Cadence | str) -> int | None:
        """Retention quota for a cadence, None for cadences that are never rotated"""
        return self.retention_quotas.get(Cadence(cadence).value)


class ConfigManager:
    """Loads settings.yaml and keeps the database locator encrypted at rest"""

    def __init__(self, config_dir: str | Path | None = None):
        self.config_dir = Path(config_dir or os.environ.get(CONFIG_DIR_ENV_VAR) or Path.cwd() / "config")
        self.settings_file = self.config_dir / "settings.yaml"

        # Check if config files exist, guide user to setup if not
        self._check_config_exists()

        # Initialize encryption key for the locator password
        self._init_encryption()

        self.settings = self._load_yaml(self.settings_file)

        # Encrypt the locator on first run
        self._encrypt_locator()

    def _check_config_exists(self) -> None:
        """Check if the settings file exists and provide setup guidance if not"""
        if not self.settings_file.exists():
            example = self.config_dir / "settings.yaml.example"
            if example.exists():
                logging.error(
                    "Configuration not found. Copy the example config first:\n"
                    f"  cp {example} {self.settings_file}"
                )
                raise SystemExit(1)

    def _init_encryption(self) -> None:
        """Initialize encryption for sensitive data"""
        key_file = self.config_dir / ".encryption_key"

        if key_file.exists():
            # Ensure correct permissions on existing key file
            current_mode = os.stat(key_file).st_mode & 0o777
            if current_mode != 0o600:
                os.chmod(key_file, 0o600)
            with open(key_file, "rb") as f:
                self.cipher = Fernet(f.read())
        else:
            # Generate new key with restricted permissions from creation
            self.config_dir.mkdir(parents=True, exist_ok=True)
            key = Fernet.generate_key()
            fd = os.open(str(key_file), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            try:
                os.write(fd, key)
            finally:
                os.close(fd)
            self.cipher = Fernet(key)

    def _load_yaml(self, file_path: Path) -> dict[str, Any]:
        """Load YAML configuration file"""
        if not file_path.exists():
            return {}

        with open(file_path) as f:
            return yaml.safe_load(f) or {}

    def _save_yaml(self, data: dict[str, Any], file_path: Path) -> None:
        """Save configuration to YAML file"""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(file_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    @staticmethod
    def _has_password(locator: str) -> bool:
        try:
            return bool(urlsplit(locator).password)
        except ValueError:
            return False

    def _encrypt_locator(self) -> None:
        """Encrypt a plaintext locator that carries a password"""
        database = self.settings.get("database") or {}
        locator = database.get("locator", "")

        if locator and not locator.startswith("enc:") and self._has_password(locator):
            database["locator"] = f"enc:{self.encrypt_value(locator)}"
            self.settings["database"] = database
            self._save_yaml(self.settings, self.settings_file)

    def encrypt_value(self, value: str) -> str:
        """Encrypt a string value"""
        return self.cipher.encrypt(value.encode()).decode()

    def decrypt_value(self, encrypted: str) -> str:
        """Decrypt an encrypted value"""
        if encrypted.startswith("enc:"):
            encrypted = encrypted[4:]  # Remove 'enc:' prefix
        return self.cipher.decrypt(encrypted.encode()).decode()

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get a setting value with optional default

        Args:
            key: Setting key (supports nested keys with dot notation, e.g., 'storage.backup_dir')
            default: Default value if setting not found

        Returns:
            Setting value or default
        """
        keys = key.split(".")
        value: Any = self.settings

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value if value is not None else default

    def get_locator(self) -> str:
        """Get the database locator, environment first, decrypted if stored encrypted"""
        locator = os.environ.get("DATABASE_URL") or self.get_setting("database.locator", "")
        if locator.startswith("enc:"):
            locator = self.decrypt_value(locator)
        return locator

    def set_locator(self, locator: str) -> None:
        """Store a new locator, encrypted when it carries a password"""
        database = self.settings.setdefault("database", {})
        database["locator"] = f"enc:{self.encrypt_value(locator)}" if self._has_password(locator) else locator
        self._save_yaml(self.settings, self.settings_file)

    def get_backup_dir(self) -> Path:
        backup_dir = os.environ.get("BACKUP_DIR") or self.get_setting("storage.backup_dir")
        return Path(backup_dir).resolve() if backup_dir else Path.cwd() / "backups"

    def is_production(self) -> bool:
        if os.environ.get(PRODUCTION_ENV_VAR, "").lower() == "production":
            return True
        return bool(self.get_setting("schedule.production", False))

    def get_retention_quotas(self) -> dict[str, int]:
        """Default quotas with per-cadence overrides from the retention section"""
        quotas = dict(DEFAULT_RETENTION_QUOTAS)
        for cadence, keep in (self.get_setting("retention", {}) or {}).items():
            if cadence not in quotas:
                logging.warning(f"Ignoring retention quota for unknown cadence '{cadence}'")
                continue
            quotas[cadence] = int(keep)
        return quotas

    def resolve(self) -> BackupSettings:
        """Resolve every setting once into an immutable BackupSettings"""
        backup_dir = self.get_backup_dir()
        log_file = self.get_setting("logging.file")
        return BackupSettings(
            locator=self.get_locator(),
            backup_dir=backup_dir,
            production=self.is_production(),
            compress=bool(self.get_setting("storage.compress", True)),
            docker_container=self.get_setting("database.docker_container"),
            schedule_hour=int(self.get_setting("schedule.hour", DEFAULT_SCHEDULE_HOUR)),
            schedule_minute=int(self.get_setting("schedule.minute", DEFAULT_SCHEDULE_MINUTE)),
            retention_quotas=self.get_retention_quotas(),
            progress_interval=float(self.get_setting("progress.interval_seconds", DEFAULT_PROGRESS_INTERVAL_SECONDS)),
            progress_initial_delay=float(
                self.get_setting("progress.initial_delay_seconds", DEFAULT_PROGRESS_INITIAL_DELAY_SECONDS)
            ),
            progress_threshold=int(self.get_setting("progress.threshold_bytes", DEFAULT_PROGRESS_THRESHOLD_BYTES)),
            log_file=Path(log_file) if log_file else backup_dir / "logs" / "backup.log",
            log_level=str(self.get_setting("logging.level", "INFO")).upper(),
            desktop_notifications=bool(self.get_setting("notifications.desktop", False)),
        )
