"""
Upgrade management for an existing WordPress installation.

An update removes every stock file of the *installed* release before the
target release is laid down, so files the site added itself (themes, plugins,
uploads) survive while stale core files do not. The stock file list comes
from a ManifestSource; the default one downloads the installed release into
a scratch directory and lists it.
"""

from __future__ import annotations

import enum
import os
import shutil
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator, Mapping, Protocol

from .common import TaskError, vlog
from .config import Config, load_config
from .installer import Downloader, InstallError, WPCLIDownloader, finalize_install, install_wordpress
from .logging_config import get_logger
from .resolver import compare_versions, resolve_version
from .site import SiteError, is_wordpress_installed, read_installed_version


# Always removed before reinstalling, whatever the manifest says
FIXED_DIRECTORIES = ("wp-admin", "wp-includes")

SCRATCH_PREFIX = "wp_tasks_"


class UpdateState(enum.Enum):
    """States walked by a single update operation."""
    IDLE = "idle"
    VERSIONS_COMPARED = "versions_compared"
    TARGET_STAGED = "target_staged"
    SCRATCH_CREATED = "scratch_created"
    REFERENCE_DOWNLOADED = "reference_downloaded"
    SCRATCH_CLEANED = "scratch_cleaned"
    FILES_DIFFED = "files_diffed"
    LIVE_FILES_REMOVED = "live_files_removed"
    INSTALL_INVOKED = "install_invoked"
    DONE = "done"
    FAILED = "failed"


StateListener = Callable[[UpdateState], None]


class ScratchError(TaskError):
    """Raised when a scratch directory cannot be created, filled or cleaned."""

    def __init__(self, message: str, reason: str = "scratch", remediation: str | None = None):
        super().__init__(message, reason=reason, remediation=remediation)


def _notify(on_state: StateListener | None, state: UpdateState) -> None:
    if on_state is not None:
        on_state(state)


def _remove_scratch(path: Path, strict: bool) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        if strict:
            raise ScratchError(f"Failed to clean up scratch directory {path}: {e}") from e
        # Another error is already propagating; don't mask it
        get_logger().error(f"Failed to clean up scratch directory {path}: {e}")


@contextmanager
def scratch_directory(prefix: str = SCRATCH_PREFIX, verbose: bool = False) -> Iterator[Path]:
    """
    Create a uniquely named temporary directory, removed on every exit path.

    Raises:
        ScratchError: If the directory cannot be created, or cannot be
            removed after a successful body
    """
    try:
        path = Path(tempfile.mkdtemp(prefix=prefix))
    except OSError as e:
        raise ScratchError(
            f"Cannot create scratch directory: {e}",
            remediation="Check free space and permissions of the temp directory (TMPDIR)",
        ) from e

    vlog(f"Created scratch directory: {path}", verbose)
    try:
        yield path
    except BaseException:
        _remove_scratch(path, strict=False)
        raise
    _remove_scratch(path, strict=True)
    vlog(f"Cleaned up scratch directory: {path}", verbose)


def list_files(directory: str | Path) -> frozenset[str]:
    """List every file under `directory` as POSIX paths relative to it."""
    directory = Path(directory)
    files = set()
    for dirpath, _dirnames, filenames in os.walk(directory):
        for name in filenames:
            rel = Path(dirpath, name).relative_to(directory)
            files.add(rel.as_posix())
    return frozenset(files)


class ManifestSource(Protocol):
    """Supplies the stock file list of a release."""

    def manifest(self, version: str, on_state: StateListener | None = None) -> frozenset[str]:
        ...


class DownloadManifestSource:
    """
    Builds manifests by downloading the release into a scratch directory.

    The scratch directory is removed before manifest() returns or raises.
    """

    def __init__(self, downloader: Downloader, verbose: bool = False):
        self.downloader = downloader
        self.verbose = verbose

    def manifest(self, version: str, on_state: StateListener | None = None) -> frozenset[str]:
        with scratch_directory(prefix=f"{SCRATCH_PREFIX}ref_", verbose=self.verbose) as scratch:
            _notify(on_state, UpdateState.SCRATCH_CREATED)
            try:
                self.downloader(version, scratch)
            except InstallError as e:
                raise ScratchError(
                    f"Reference download of WordPress {version} failed: {e.message}",
                    reason="reference_download",
                    remediation=e.remediation,
                ) from e
            _notify(on_state, UpdateState.REFERENCE_DOWNLOADED)
            files = list_files(scratch)
        _notify(on_state, UpdateState.SCRATCH_CLEANED)

        vlog(f"WordPress {version} ships {len(files)} files", self.verbose)
        return files


class StaticManifestSource:
    """Serves precomputed manifests keyed by version."""

    def __init__(self, manifests: Mapping[str, object]):
        self.manifests = {version: frozenset(paths) for version, paths in manifests.items()}

    def manifest(self, version: str, on_state: StateListener | None = None) -> frozenset[str]:
        try:
            return self.manifests[version]
        except KeyError:
            raise ScratchError(f"No manifest available for WordPress {version}", reason="manifest") from None


@dataclass(frozen=True)
class RemovalPlan:
    """
    Paths to remove from the live site before reinstalling.

    Attributes:
        installed_version: Release the stock files belong to
        files: Manifest files present in the live site (relative, POSIX)
        directories: Directories removed unconditionally
    """
    installed_version: str
    files: tuple[str, ...]
    directories: tuple[str, ...] = FIXED_DIRECTORIES

    @property
    def paths(self) -> tuple[str, ...]:
        return self.files + self.directories

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "installed_version": self.installed_version,
            "files": list(self.files),
            "directories": list(self.directories),
        }


def _is_inside(rel: str) -> bool:
    path = PurePosixPath(rel)
    return bool(rel) and not path.is_absolute() and ".." not in path.parts


def plan_removal(
    installed_version: str,
    root: str | Path,
    manifest_source: ManifestSource,
    on_state: StateListener | None = None,
    verbose: bool = False,
) -> RemovalPlan:
    """
    Work out which live files are stock files of the installed release.

    A live file is planned for removal when a file with the same relative
    path ships with `installed_version`; contents are not compared, so a
    locally modified core file is reset as well. wp-admin and wp-includes
    are always part of the plan.

    Raises:
        ScratchError: If the manifest cannot be obtained
    """
    root = Path(root)
    manifest = manifest_source.manifest(installed_version, on_state=on_state)

    files = []
    for rel in sorted(manifest):
        if not _is_inside(rel):
            get_logger().warning(f"Ignoring manifest entry outside the site root: {rel}")
            continue
        live = root / rel
        if live.is_file() or live.is_symlink():
            files.append(rel)

    _notify(on_state, UpdateState.FILES_DIFFED)
    vlog(f"{len(files)} of {len(manifest)} stock files of {installed_version} present", verbose)
    return RemovalPlan(installed_version=installed_version, files=tuple(files))


def apply_removal(plan: RemovalPlan, root: str | Path, verbose: bool = False) -> list[str]:
    """
    Delete the planned files and directories; entries already gone are skipped.

    Returns:
        Relative paths that were removed
    """
    root = Path(root)
    removed = []
    try:
        for rel in plan.files:
            try:
                (root / rel).unlink()
                removed.append(rel)
            except FileNotFoundError:
                continue

        for rel in plan.directories:
            path = root / rel
            if path.is_dir():
                shutil.rmtree(path)
                removed.append(rel)
    except OSError as e:
        raise SiteError(f"Failed to remove stock files: {e}") from e

    vlog(f"Removed {len(removed)} stock paths", verbose)
    return removed


@dataclass(frozen=True)
class UpdateResult:
    """
    Outcome of an update.

    Attributes:
        previous_version: Version installed before the update (None if fresh install)
        new_version: Version installed afterwards
        plan: Removal plan that was computed (None for no-ops and fresh installs)
        removed_paths: Paths removed from the live site
        states: States walked, in order
        noop: True when installed and target versions were equal
        dry_run: True when nothing was changed on disk
        duration_seconds: Total time
    """
    previous_version: str | None
    new_version: str | None
    plan: RemovalPlan | None = None
    removed_paths: tuple[str, ...] = ()
    states: tuple[UpdateState, ...] = field(default_factory=tuple)
    noop: bool = False
    dry_run: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "previous_version": self.previous_version,
            "new_version": self.new_version,
            "plan": self.plan.to_dict() if self.plan else None,
            "removed_paths": list(self.removed_paths),
            "states": [s.value for s in self.states],
            "noop": self.noop,
            "dry_run": self.dry_run,
            "duration_seconds": self.duration_seconds,
        }


def update_wordpress(
    constraint: str = "*",
    root: str | Path = ".",
    config: Config | None = None,
    downloader: Downloader | None = None,
    manifest_source: ManifestSource | None = None,
    dry_run: bool = False,
    on_state: StateListener | None = None,
    verbose: bool = False,
) -> UpdateResult:
    """
    Update WordPress to the release matching `constraint`.

    The target release is downloaded into a staging directory first, so a
    failed download leaves the live site untouched. Only then are the stock
    files of the installed release removed and the staged release copied in.
    Without an existing installation this is a plain install.

    Args:
        constraint: Version constraint for the target release
        root: Site root
        config: Configuration (loads defaults if None)
        downloader: Core download collaborator (WP-CLI if None)
        manifest_source: Stock file lists (downloads via `downloader` if None)
        dry_run: Compute the removal plan without touching the site
        on_state: Called with every state transition
        verbose: Enable verbose logging

    Raises:
        ResolutionError, ScratchError, InstallError, SiteError
    """
    config = config or load_config(verbose=verbose, root=root)
    downloader = downloader or WPCLIDownloader.from_config(config, cwd=root, verbose=verbose)
    manifest_source = manifest_source or DownloadManifestSource(downloader, verbose=verbose)
    root = Path(root)
    start_time = time.time()

    states: list[UpdateState] = []

    def record(state: UpdateState) -> None:
        states.append(state)
        _notify(on_state, state)

    record(UpdateState.IDLE)

    if not is_wordpress_installed(root):
        vlog("WordPress is not installed, running install instead", verbose)
        if dry_run:
            target = resolve_version(constraint, config, verbose=verbose)
            record(UpdateState.DONE)
            return UpdateResult(
                previous_version=None,
                new_version=target,
                states=tuple(states),
                dry_run=True,
                duration_seconds=time.time() - start_time,
            )
        result = install_wordpress(constraint, root, config, downloader, verbose)
        record(UpdateState.INSTALL_INVOKED)
        record(UpdateState.DONE)
        return UpdateResult(
            previous_version=None,
            new_version=result.version,
            removed_paths=result.removed_paths,
            states=tuple(states),
            duration_seconds=time.time() - start_time,
        )

    installed = read_installed_version(root)
    target = resolve_version(constraint, config, verbose=verbose)
    record(UpdateState.VERSIONS_COMPARED)

    cmp = compare_versions(installed, target)
    if cmp == 0:
        vlog(f"WordPress {installed} is already installed, nothing to do", verbose)
        record(UpdateState.DONE)
        return UpdateResult(
            previous_version=installed,
            new_version=installed,
            states=tuple(states),
            noop=True,
            dry_run=dry_run,
            duration_seconds=time.time() - start_time,
        )
    if cmp > 0:
        get_logger().warning(f"Downgrading WordPress {installed} → {target}")

    vlog(f"Updating WordPress {installed} → {target}", verbose)

    try:
        if dry_run:
            plan = plan_removal(installed, root, manifest_source, on_state=record, verbose=verbose)
            for rel in plan.paths:
                vlog(f"Would remove: {rel}", verbose)
            record(UpdateState.DONE)
            return UpdateResult(
                previous_version=installed,
                new_version=target,
                plan=plan,
                states=tuple(states),
                dry_run=True,
                duration_seconds=time.time() - start_time,
            )

        with scratch_directory(prefix=f"{SCRATCH_PREFIX}stage_", verbose=verbose) as stage:
            downloader(target, stage)
            record(UpdateState.TARGET_STAGED)

            plan = plan_removal(installed, root, manifest_source, on_state=record, verbose=verbose)
            removed = apply_removal(plan, root, verbose)
            record(UpdateState.LIVE_FILES_REMOVED)

            try:
                shutil.copytree(stage, root, symlinks=True, dirs_exist_ok=True)
            except OSError as e:
                raise InstallError(f"Copying WordPress {target} into {root} failed: {e}") from e
            record(UpdateState.INSTALL_INVOKED)

        removed.extend(finalize_install(root, config.install, verbose))
    except TaskError:
        record(UpdateState.FAILED)
        get_logger().error(f"Update {installed} → {target} failed after state '{states[-2].value}'")
        raise

    record(UpdateState.DONE)
    return UpdateResult(
        previous_version=installed,
        new_version=target,
        plan=plan,
        removed_paths=tuple(removed),
        states=tuple(states),
        duration_seconds=time.time() - start_time,
    )
