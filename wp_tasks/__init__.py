"""
wp-tasks - WordPress bootstrap and upgrade tasks.

Core Modules:
- Release data: latest version, release catalog, salts (collectors)
- Resolution: version constraints to concrete releases (resolver)
- Installation: WP-CLI core download with retry, post-install cleanup (installer)
- Upgrade: stock file manifests, removal plans, staged updates (upgrade)
- Site tasks: installation detection, salts file, permissions (site)
"""

__version__ = "1.0.0"

VERSION = __version__

from .common import TaskError
from .collectors import (
    FetchError,
    clear_catalog_cache,
    fetch_latest_version,
    fetch_release_catalog,
    fetch_salts,
    parse_release_links,
)
from .config import Config, Endpoints, InstallSettings, Preferences, load_config, validate_config
from .resolver import (
    ResolutionError,
    VersionConstraint,
    compare_versions,
    is_stable_release,
    resolve_version,
)
from .installer import (
    InstallError,
    InstallResult,
    WPCLIDownloader,
    finalize_install,
    install_wordpress,
)
from .upgrade import (
    DownloadManifestSource,
    ManifestSource,
    RemovalPlan,
    ScratchError,
    StaticManifestSource,
    UpdateResult,
    UpdateState,
    apply_removal,
    plan_removal,
    scratch_directory,
    update_wordpress,
)
from .site import (
    SiteError,
    fix_permissions,
    generate_salts,
    is_wordpress_installed,
    read_installed_version,
)
from .logging_config import setup_logging, get_logger

__all__ = [
    "__version__",
    "VERSION",
    # Errors
    "TaskError",
    "FetchError",
    "ResolutionError",
    "InstallError",
    "ScratchError",
    "SiteError",
    # Release data
    "clear_catalog_cache",
    "fetch_latest_version",
    "fetch_release_catalog",
    "fetch_salts",
    "parse_release_links",
    # Configuration
    "Config",
    "Endpoints",
    "InstallSettings",
    "Preferences",
    "load_config",
    "validate_config",
    # Resolution
    "VersionConstraint",
    "compare_versions",
    "is_stable_release",
    "resolve_version",
    # Installation
    "InstallResult",
    "WPCLIDownloader",
    "finalize_install",
    "install_wordpress",
    # Upgrade
    "DownloadManifestSource",
    "ManifestSource",
    "RemovalPlan",
    "StaticManifestSource",
    "UpdateResult",
    "UpdateState",
    "apply_removal",
    "plan_removal",
    "scratch_directory",
    "update_wordpress",
    # Site tasks
    "fix_permissions",
    "generate_salts",
    "is_wordpress_installed",
    "read_installed_version",
    # Logging
    "setup_logging",
    "get_logger",
]
