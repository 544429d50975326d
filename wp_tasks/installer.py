"""
Core download execution and the install task.

Runs `wp core download` with retry logic for transient failures, and
performs the post-download cleanup of files and bundled extras.
"""

from __future__ import annotations

import os
import random
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .common import TaskError, vlog
from .config import Config, InstallSettings, load_config
from .resolver import resolve_version
from .site import SiteError, is_wordpress_installed

# Downloads one release into a directory: downloader(version, path)
Downloader = Callable[[str, Path], None]

COMPOSER_FILE = "composer.json"


@dataclass(frozen=True)
class CommandStep:
    """
    A single external command.

    Attributes:
        description: Human-readable step description
        command: Argument vector
        cwd: Working directory for the command
    """
    description: str
    command: tuple[str, ...]
    cwd: str | None = None


@dataclass(frozen=True)
class StepResult:
    """
    Result of executing a single command step.

    Attributes:
        step: The step that was executed
        success: Whether the step succeeded
        stdout: Standard output from command execution
        stderr: Standard error from command execution
        exit_code: Process exit code
        duration_seconds: Time taken to execute step
        error_message: Human-readable error message if failed
        attempt_number: Which retry attempt this was (1-indexed)
    """
    step: CommandStep
    success: bool
    stdout: str
    stderr: str
    exit_code: int
    duration_seconds: float
    error_message: str | None = None
    attempt_number: int = 1


@dataclass(frozen=True)
class InstallResult:
    """
    Outcome of the install task.

    Attributes:
        version: Version that was installed (None when skipped)
        skipped: True when WordPress was already installed
        removed_paths: Files and directories removed by post-install cleanup
        duration_seconds: Total time
    """
    version: str | None
    skipped: bool
    removed_paths: tuple[str, ...] = ()
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "version": self.version,
            "skipped": self.skipped,
            "removed_paths": list(self.removed_paths),
            "duration_seconds": self.duration_seconds,
        }


class InstallError(TaskError):
    """
    Raised when the core download fails.

    Attributes:
        retryable: Whether the underlying failure looked transient
    """
    def __init__(
        self,
        message: str,
        retryable: bool = False,
        remediation: str | None = None,
    ):
        self.retryable = retryable
        super().__init__(message, reason="install", remediation=remediation)


def is_retryable_error(exit_code: int, stderr: str) -> bool:
    """
    Determine if a failed download is worth retrying.

    Args:
        exit_code: Process exit code
        stderr: Standard error output

    Returns:
        True if error is transient and should be retried
    """
    if any(indicator in stderr.lower() for indicator in [
        "connection refused",
        "connection timed out",
        "connection reset",
        "operation timed out",
        "temporary failure",
        "network unreachable",
        "could not resolve host",
        "curl error",
    ]):
        return True

    # EAGAIN, connection refused
    if exit_code in {75, 111}:
        return True

    return False


def calculate_backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Retry attempt number (0-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds

    Returns:
        Delay in seconds with jitter applied
    """
    delay = base_delay * (2 ** attempt)
    delay = min(delay, max_delay)

    # Add jitter (±20%)
    jitter = delay * 0.2 * (random.random() * 2 - 1)
    return max(0.1, delay + jitter)


def execute_step(
    step: CommandStep,
    timeout: int | None = None,
    verbose: bool = False,
) -> StepResult:
    """
    Execute a single command step.

    Args:
        step: Step to execute
        timeout: Command timeout in seconds
        verbose: Enable verbose logging

    Returns:
        StepResult with execution outcome
    """
    start_time = time.time()
    command = list(step.command)

    vlog(f"Executing: {' '.join(command)}", verbose)

    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=step.cwd,
            check=False,
        )

        duration = time.time() - start_time
        success = result.returncode == 0

        error_msg = None
        if not success:
            error_msg = f"Command failed with exit code {result.returncode}"
            if result.stderr:
                error_msg += f": {result.stderr.strip()[:200]}"

        return StepResult(
            step=step,
            success=success,
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.returncode,
            duration_seconds=duration,
            error_message=error_msg,
        )

    except subprocess.TimeoutExpired as e:
        return StepResult(
            step=step,
            success=False,
            stdout=e.stdout.decode() if isinstance(e.stdout, bytes) else (e.stdout or ""),
            stderr=e.stderr.decode() if isinstance(e.stderr, bytes) else (e.stderr or ""),
            exit_code=-1,
            duration_seconds=time.time() - start_time,
            error_message=f"Command timed out after {timeout}s",
        )
    except (FileNotFoundError, PermissionError):
        return StepResult(
            step=step,
            success=False,
            stdout="",
            stderr="",
            exit_code=-1,
            duration_seconds=time.time() - start_time,
            error_message=f"Command not found or not executable: {command[0]}",
        )


def execute_step_with_retry(
    step: CommandStep,
    max_retries: int = 3,
    timeout: int | None = None,
    verbose: bool = False,
) -> StepResult:
    """
    Execute step with retry logic for transient failures.

    Args:
        step: Step to execute
        max_retries: Maximum number of attempts
        timeout: Command timeout in seconds
        verbose: Enable verbose logging

    Returns:
        StepResult with final outcome
    """
    result = None
    for attempt in range(max_retries):
        vlog(f"Attempt {attempt + 1}/{max_retries} for: {step.description}", verbose)

        result = execute_step(step, timeout, verbose)

        if result.success:
            return StepResult(
                step=result.step,
                success=result.success,
                stdout=result.stdout,
                stderr=result.stderr,
                exit_code=result.exit_code,
                duration_seconds=result.duration_seconds,
                error_message=result.error_message,
                attempt_number=attempt + 1,
            )

        if not is_retryable_error(result.exit_code, result.stderr):
            vlog(f"Non-retryable error: {result.error_message}", verbose)
            return result

        if attempt == max_retries - 1:
            vlog(f"Max retries reached: {result.error_message}", verbose)
            return result

        delay = calculate_backoff_delay(attempt)
        vlog(f"Retrying after {delay:.1f}s delay...", verbose)
        time.sleep(delay)

    return result


def build_download_command(
    wp_cli: str,
    version: str,
    path: str | Path,
    locale: str | None = None,
) -> tuple[str, ...]:
    """Build the `wp core download` argument vector."""
    command = [wp_cli, "core", "download", f"--version={version}", f"--path={path}"]
    if locale:
        command.append(f"--locale={locale}")
    return tuple(command)


class WPCLIDownloader:
    """
    Downloads WordPress releases with WP-CLI.

    Instances are callable as downloader(version, path).
    """

    def __init__(
        self,
        wp_cli: str,
        timeout: int = 300,
        max_retries: int = 3,
        locale: str | None = None,
        cwd: str | Path | None = None,
        verbose: bool = False,
    ):
        self.wp_cli = wp_cli
        self.timeout = timeout
        self.max_retries = max_retries
        self.locale = locale
        self.cwd = str(cwd) if cwd is not None else None
        self.verbose = verbose

    @classmethod
    def from_config(cls, config: Config, cwd: str | Path | None = None, verbose: bool = False) -> WPCLIDownloader:
        """Create a downloader from configuration; relative WP-CLI paths resolve against `cwd`."""
        return cls(
            wp_cli=config.wp_cli,
            timeout=config.preferences.download_timeout_seconds,
            max_retries=config.preferences.max_retries,
            locale=config.preferences.locale,
            cwd=cwd,
            verbose=verbose,
        )

    def __call__(self, version: str, path: str | Path) -> None:
        target = Path(path).resolve()
        step = CommandStep(
            description=f"Download WordPress {version} into {target}",
            command=build_download_command(self.wp_cli, version, target, self.locale),
            cwd=self.cwd,
        )
        result = execute_step_with_retry(
            step,
            max_retries=self.max_retries,
            timeout=self.timeout,
            verbose=self.verbose,
        )
        if not result.success:
            raise InstallError(
                f"Downloading WordPress {version} failed: {result.error_message}",
                retryable=is_retryable_error(result.exit_code, result.stderr),
                remediation=f"Check that WP-CLI is available at {self.wp_cli}",
            )


def _remove_path(path: Path) -> bool:
    """Remove a file or directory tree, tolerating its absence."""
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise SiteError(f"Cannot remove {path}: {e}") from e


def read_composer_manifest(root: str | Path) -> str:
    """Return composer.json contents, or an empty string if there is none."""
    path = Path(root) / COMPOSER_FILE
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ""


def finalize_install(
    root: str | Path,
    settings: InstallSettings | None = None,
    verbose: bool = False,
) -> list[str]:
    """
    Remove files and bundled extras the project does not want.

    Bundled plugins and themes are kept only when composer.json references
    their wpackagist package.

    Returns:
        Relative paths that were removed
    """
    settings = settings or InstallSettings()
    root = Path(root)
    removed = []

    for rel in settings.remove_files:
        if _remove_path(root / rel):
            removed.append(rel)

    composer = read_composer_manifest(root)
    for package, rel in settings.bundled_extras.items():
        if package in composer:
            vlog(f"Keeping {rel} (required as {package})", verbose)
            continue
        if _remove_path(root / rel):
            removed.append(rel)

    for rel in removed:
        vlog(f"Removed: {rel}", verbose)
    return removed


def install_wordpress(
    constraint: str = "*",
    root: str | Path = ".",
    config: Config | None = None,
    downloader: Downloader | None = None,
    verbose: bool = False,
) -> InstallResult:
    """
    Install WordPress core files unless they are already present.

    Args:
        constraint: Version constraint (defaults to the latest release)
        root: Site root
        config: Configuration (defaults if None)
        downloader: Core download collaborator (WP-CLI if None)
        verbose: Enable verbose logging

    Returns:
        InstallResult

    Raises:
        ResolutionError: If the constraint cannot be resolved
        InstallError: If the download fails
    """
    config = config or load_config(verbose=verbose, root=root)
    downloader = downloader or WPCLIDownloader.from_config(config, cwd=root, verbose=verbose)
    start_time = time.time()

    if is_wordpress_installed(root):
        vlog(f"WordPress already installed in {os.path.abspath(root)}, nothing to do", verbose)
        return InstallResult(version=None, skipped=True, duration_seconds=time.time() - start_time)

    version = resolve_version(constraint, config, verbose=verbose)
    vlog(f"Installing WordPress {version}", verbose)
    downloader(version, Path(root))

    removed = finalize_install(root, config.install, verbose)
    return InstallResult(
        version=version,
        skipped=False,
        removed_paths=tuple(removed),
        duration_seconds=time.time() - start_time,
    )
