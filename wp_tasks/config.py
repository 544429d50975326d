"""
Configuration file parsing and management.

Supports YAML configuration files (and JSON files by extension).
Merges configurations from multiple sources (custom → env → project → user →
system → defaults).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .common import vlog


# Configuration file locations (in priority order); relative entries live in the site root
CONFIG_LOCATIONS = [
    ".wp-tasks.yml",                                       # Project root (highest priority)
    ".wp-tasks.yaml",
    os.path.expanduser("~/.config/wp-tasks/config.yml"),   # User global
    os.path.expanduser("~/.config/wp-tasks/config.yaml"),
    "/etc/wp-tasks/config.yml",                            # System global
    "/etc/wp-tasks/config.yaml",
]

DEFAULT_WP_CLI = "./vendor/bin/wp"

WP_VERSION_URL = "https://api.wordpress.org/core/version-check/1.7/"
WP_RELEASES_URL = "https://wordpress.org/download/release-archive/"
WP_SALTS_URL = "https://api.wordpress.org/secret-key/1.1/salt/"

DEFAULT_REMOVE_FILES = (
    "license.txt",
    "readme.html",
    "wp-config-sample.php",
    "wp-content/plugins/hello.php",
)

# Composer package name -> directory shipped in the core download
DEFAULT_BUNDLED_EXTRAS = {
    "wpackagist-plugin/akismet": "wp-content/plugins/akismet",
    "wpackagist-theme/twentyseventeen": "wp-content/themes/twentyseventeen",
    "wpackagist-theme/twentysixteen": "wp-content/themes/twentysixteen",
    "wpackagist-theme/twentyfifteen": "wp-content/themes/twentyfifteen",
    "wpackagist-theme/twentyfourteen": "wp-content/themes/twentyfourteen",
}

DEFAULT_WRITABLE_DIRS = ("wp-content/uploads",)


@dataclass(frozen=True)
class Endpoints:
    """
    Remote endpoints used by the tasks.

    Attributes:
        version_check: JSON endpoint advertising the latest stable release
        release_archive: HTML page listing every published release
        salts: Plaintext endpoint returning PHP salt definitions
    """
    version_check: str = WP_VERSION_URL
    release_archive: str = WP_RELEASES_URL
    salts: str = WP_SALTS_URL

    def __post_init__(self):
        for name in ("version_check", "release_archive", "salts"):
            url = getattr(self, name)
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"Invalid {name} endpoint: {url!r}. Must be an http(s) URL")

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Endpoints:
        """Create Endpoints from dictionary."""
        return Endpoints(
            version_check=data.get("version_check", WP_VERSION_URL),
            release_archive=data.get("release_archive", WP_RELEASES_URL),
            salts=data.get("salts", WP_SALTS_URL),
        )


@dataclass(frozen=True)
class Preferences:
    """
    Runtime preferences.

    Attributes:
        timeout_seconds: Timeout for each network call
        download_timeout_seconds: Timeout for a whole `wp core download` run
        max_retries: Attempts for transient WP-CLI download failures
        cache_catalog: Keep the release catalog for the process lifetime
        locale: Optional locale passed to `wp core download`
    """
    timeout_seconds: int = 30
    download_timeout_seconds: int = 300
    max_retries: int = 3
    cache_catalog: bool = True
    locale: str | None = None

    def __post_init__(self):
        """Validate preferences after initialization."""
        if self.timeout_seconds < 1 or self.timeout_seconds > 300:
            raise ValueError(
                f"Invalid timeout_seconds: {self.timeout_seconds}. "
                "Must be between 1 and 300"
            )

        if self.download_timeout_seconds < 1 or self.download_timeout_seconds > 3600:
            raise ValueError(
                f"Invalid download_timeout_seconds: {self.download_timeout_seconds}. "
                "Must be between 1 and 3600"
            )

        if self.max_retries < 1 or self.max_retries > 10:
            raise ValueError(
                f"Invalid max_retries: {self.max_retries}. "
                "Must be between 1 and 10"
            )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Preferences:
        """Create Preferences from dictionary."""
        return Preferences(
            timeout_seconds=data.get("timeout_seconds", 30),
            download_timeout_seconds=data.get("download_timeout_seconds", 300),
            max_retries=data.get("max_retries", 3),
            cache_catalog=data.get("cache_catalog", True),
            locale=data.get("locale"),
        )


@dataclass(frozen=True)
class InstallSettings:
    """
    Post-download cleanup performed by the install task.

    Attributes:
        remove_files: Files deleted after download (missing files are ignored)
        bundled_extras: Composer package name -> bundled directory, removed
            unless composer.json references the package
    """
    remove_files: tuple[str, ...] = DEFAULT_REMOVE_FILES
    bundled_extras: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_BUNDLED_EXTRAS))

    @staticmethod
    def from_dict(data: dict[str, Any]) -> InstallSettings:
        """Create InstallSettings from dictionary."""
        return InstallSettings(
            remove_files=tuple(data.get("remove_files", DEFAULT_REMOVE_FILES)),
            bundled_extras=dict(data.get("bundled_extras", DEFAULT_BUNDLED_EXTRAS)),
        )


@dataclass(frozen=True)
class Config:
    """
    Complete configuration for the task runner.

    Attributes:
        version: Config schema version
        wp_cli: Path to the WP-CLI executable
        endpoints: Remote endpoints
        preferences: Runtime preferences
        install: Install task cleanup settings
        writable_dirs: Directories made world-writable by fix-permissions
        source: Path to the configuration file(s) that were loaded
    """
    version: int = 1
    wp_cli: str = DEFAULT_WP_CLI
    endpoints: Endpoints = field(default_factory=Endpoints)
    preferences: Preferences = field(default_factory=Preferences)
    install: InstallSettings = field(default_factory=InstallSettings)
    writable_dirs: tuple[str, ...] = DEFAULT_WRITABLE_DIRS
    source: str = ""

    def __post_init__(self):
        """Validate config after initialization."""
        if self.version != 1:
            raise ValueError(f"Unsupported config version: {self.version}. Expected version 1")

        if not self.wp_cli:
            raise ValueError("wp_cli must not be empty")

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """Create Config from dictionary."""
        permissions = data.get("permissions", {})
        return Config(
            version=data.get("version", 1),
            wp_cli=data.get("wp_cli", DEFAULT_WP_CLI),
            endpoints=Endpoints.from_dict(data.get("endpoints", {})),
            preferences=Preferences.from_dict(data.get("preferences", {})),
            install=InstallSettings.from_dict(data.get("install", {})),
            writable_dirs=tuple(permissions.get("writable_dirs", DEFAULT_WRITABLE_DIRS)),
            source=source,
        )


def _load_yaml(file_path: str) -> dict[str, Any] | None:
    """
    Load YAML configuration file.

    Returns:
        Parsed configuration dictionary, or None if the file is invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return None


def _load_json(file_path: str) -> dict[str, Any] | None:
    """
    Load JSON configuration file.

    Returns:
        Parsed configuration dictionary, or None if the file is invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, json.JSONDecodeError):
        return None


def load_config_data(file_path: str, verbose: bool = False) -> dict[str, Any] | None:
    """
    Load the raw configuration mapping from a single file.

    Args:
        file_path: Path to a .yml/.yaml or .json file
        verbose: Enable verbose logging

    Returns:
        Configuration dictionary, or None if the file is missing or invalid
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Loading config from: {file_path}", verbose)

    if file_path.endswith(".json"):
        data = _load_json(file_path)
    else:
        data = _load_yaml(file_path)

    if data is None:
        vlog(f"Invalid config file: {file_path}", verbose)
    return data


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Load configuration from a single file.

    Returns:
        Config object, or None if file cannot be loaded
    """
    data = load_config_data(file_path, verbose)
    if data is None:
        return None

    try:
        config = Config.from_dict(data, source=file_path)
        vlog(f"Loaded config successfully: {file_path}", verbose)
        return config
    except (ValueError, TypeError) as e:
        vlog(f"Config validation failed for {file_path}: {e}", verbose)
        return None


def merge_config_data(high: dict[str, Any], low: dict[str, Any]) -> dict[str, Any]:
    """
    Merge two raw configuration mappings, preferring values from `high`.

    Nested mappings are merged key by key; lists and scalars are replaced.
    """
    merged = dict(low)
    for key, value in high.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config_data(value, merged[key])
        else:
            merged[key] = value
    return merged


def load_config(
    custom_path: str | None = None,
    verbose: bool = False,
    root: str | Path | None = None,
) -> Config:
    """
    Load and merge configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Custom path (if provided)
    2. WP_TASKS_CONFIG environment variable
    3. Project .wp-tasks.yml in the site root (`root`, or the working directory)
    4. User ~/.config/wp-tasks/config.yml
    5. System /etc/wp-tasks/config.yml
    6. Default configuration

    WP_TASKS_WP_CLI overrides the WP-CLI path from any file.

    Raises:
        ValueError: If an explicitly requested file cannot be loaded, or the
            merged configuration is invalid
    """
    layers: list[tuple[str, dict[str, Any]]] = []

    explicit = [p for p in (custom_path, os.environ.get("WP_TASKS_CONFIG")) if p]
    for path in explicit:
        data = load_config_data(path, verbose)
        if data is None:
            raise ValueError(f"Could not load config from specified path: {path}")
        layers.append((path, data))
        vlog(f"Using custom config: {path}", verbose)

    for location in CONFIG_LOCATIONS:
        if root is not None and not os.path.isabs(location):
            location = os.path.join(root, location)
        data = load_config_data(location, verbose)
        if data is not None:
            layers.append((location, data))
            vlog(f"Found config at: {location}", verbose)

    merged: dict[str, Any] = {}
    for _, data in reversed(layers):
        merged = merge_config_data(data, merged)

    wp_cli_override = os.environ.get("WP_TASKS_WP_CLI")
    if wp_cli_override:
        merged["wp_cli"] = wp_cli_override

    if not layers:
        vlog("No config files found, using defaults", verbose)
    else:
        vlog(f"Merged {len(layers)} config files", verbose)

    return Config.from_dict(merged, source=", ".join(path for path, _ in layers))


def validate_config(config: Config) -> list[str]:
    """
    Validate configuration and return list of warnings.

    Returns:
        List of validation warning messages (empty if valid)
    """
    warnings = []

    for path in config.install.remove_files:
        if os.path.isabs(path) or ".." in Path(path).parts:
            warnings.append(f"install.remove_files: '{path}' is outside the site root")

    for package, path in config.install.bundled_extras.items():
        if "/" not in package:
            warnings.append(f"install.bundled_extras: '{package}' is not a vendor/package name")
        if os.path.isabs(path) or ".." in Path(path).parts:
            warnings.append(f"install.bundled_extras: '{path}' is outside the site root")

    for path in config.writable_dirs:
        if os.path.isabs(path) or ".." in Path(path).parts:
            warnings.append(f"permissions.writable_dirs: '{path}' is outside the site root")

    if config.endpoints.salts.startswith("http://"):
        warnings.append("endpoints.salts uses plain http; salts would travel unencrypted")

    return warnings
