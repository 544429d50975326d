"""
Version constraint resolution.

Turns a constraint such as "*", "v4.*", "4.9.8" or ">=4.9,<5" into a concrete
released WordPress version.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from .collectors import FetchError, fetch_latest_version, fetch_release_catalog
from .common import TaskError, vlog
from .config import Config


# Reasons carried by ResolutionError
NO_MATCH = "no_match"
INVALID_CONSTRAINT = "invalid_constraint"
UPSTREAM = "upstream"

WILDCARD = "*"
KIND_LATEST = "latest"
KIND_WILDCARD = "wildcard"
KIND_EXACT = "exact"
KIND_RANGE = "range"
KIND_ANY = "any"

RANGE_OPERATORS = ("==", "!=", "<=", ">=", "~=", "<", ">")
# Composer next-significant-release operators: ^4.9, ~4.9
COMPOSER_OPERATORS = ("^", "~")
ALTERNATIVE_SEPARATOR = "||"


class ResolutionError(TaskError):
    """Raised when no released version satisfies a constraint."""

    def __init__(self, message: str, reason: str = NO_MATCH, remediation: str | None = None):
        super().__init__(message, reason=reason, remediation=remediation)


@dataclass(frozen=True)
class VersionConstraint:
    """
    A parsed version constraint.

    Attributes:
        raw: Constraint as supplied by the user
        text: Constraint with whitespace and a leading "v" removed
        kind: One of "latest", "wildcard", "exact", "range", "any"
        specifier: PEP 440 specifier set for range constraints
        alternatives: Constraints joined by "||" for "any" constraints
    """
    raw: str
    text: str
    kind: str
    specifier: str = ""
    alternatives: tuple[VersionConstraint, ...] = ()

    @staticmethod
    def parse(raw: str) -> VersionConstraint:
        """
        Parse a user supplied constraint.

        Ranges accept PEP 440 operators (">=4.9,<5") as well as Composer's
        "^4.9", "~4.9" and space separated clauses. Alternatives are joined
        with "||".

        Raises:
            ResolutionError: If nothing remains after stripping a leading "v",
                or a range expression is malformed
        """
        text = (raw or "").strip()
        if text[:1] in ("v", "V"):
            text = text[1:].strip()

        if not text:
            raise ResolutionError(
                f"Invalid version constraint: {raw!r}",
                reason=INVALID_CONSTRAINT,
                remediation="Use '*', a wildcard such as '4.9.*', or a version such as '4.9.8'",
            )

        if ALTERNATIVE_SEPARATOR in text:
            parts = [part.strip() for part in text.split(ALTERNATIVE_SEPARATOR)]
            if not all(parts):
                raise ResolutionError(
                    f"Invalid version constraint: {raw!r} has an empty alternative",
                    reason=INVALID_CONSTRAINT,
                )
            alternatives = tuple(VersionConstraint.parse(part) for part in parts)
            return VersionConstraint(raw=raw, text=text, kind=KIND_ANY, alternatives=alternatives)

        if text == WILDCARD:
            return VersionConstraint(raw=raw, text=text, kind=KIND_LATEST)

        if text.startswith(RANGE_OPERATORS + COMPOSER_OPERATORS):
            try:
                specifier = to_specifier(text)
                SpecifierSet(specifier)
            except (InvalidSpecifier, ValueError) as e:
                raise ResolutionError(
                    f"Invalid version range: {raw!r}",
                    reason=INVALID_CONSTRAINT,
                    remediation="Use ranges such as '>=4.9,<5', '^4.9' or '~4.9.1'",
                ) from e
            return VersionConstraint(raw=raw, text=text, kind=KIND_RANGE, specifier=specifier)

        if WILDCARD in text:
            return VersionConstraint(raw=raw, text=text, kind=KIND_WILDCARD)

        return VersionConstraint(raw=raw, text=text, kind=KIND_EXACT)

    @property
    def is_latest(self) -> bool:
        return self.kind == KIND_LATEST

    def matches(self, version: str) -> bool:
        """Check whether a single release identifier satisfies the constraint."""
        if self.kind == KIND_LATEST:
            return True

        if self.kind == KIND_ANY:
            return any(alternative.matches(version) for alternative in self.alternatives)

        if self.kind == KIND_WILDCARD:
            pattern = wildcard_pattern(self.text)
            if pattern.fullmatch(version):
                return True
            # The first release of a branch is "4.9", not "4.9.0"
            return pattern.fullmatch(version + ".0") is not None

        if self.kind == KIND_RANGE:
            parsed = _parse_version(version)
            return parsed is not None and SpecifierSet(self.specifier).contains(parsed, prereleases=False)

        # Exact: "4.9" and "4.9.0" name the same release
        wanted = _parse_version(self.text)
        parsed = _parse_version(version)
        if wanted is not None and parsed is not None:
            return wanted == parsed
        return self.text.lower() == version.lower()


def _release_parts(version: str) -> list[int]:
    pieces = version.split(".")
    if not all(piece.isdigit() for piece in pieces):
        raise ValueError(f"Not a release number: {version!r}")
    return [int(piece) for piece in pieces]


def _composer_upper_bound(operator: str, version: str) -> str:
    parts = _release_parts(version)
    if operator == "^":
        # Bump the first non-zero component: ^4.9 -> 5, ^0.3 -> 0.4
        index = next((i for i, part in enumerate(parts) if part), len(parts) - 1)
    else:
        # Bump the next to last component: ~4.9 -> 5, ~4.9.1 -> 4.10
        index = max(len(parts) - 2, 0)
    upper = parts[:index] + [parts[index] + 1]
    return ".".join(str(part) for part in upper)


def to_specifier(text: str) -> str:
    """
    Translate a range constraint into a PEP 440 specifier set string.

    Clauses are separated by commas or whitespace; "^X.Y" and "~X.Y" become
    a ">=X.Y,<upper" pair.

    Raises:
        ValueError: If a Composer operator is not followed by a release number
    """
    clauses = [c for c in re.split(r"\s*,\s*|\s+(?=[<>=!~^])", text.strip()) if c]
    translated = []
    for clause in clauses:
        operator = clause[:1]
        if operator in COMPOSER_OPERATORS and not clause.startswith("~="):
            version = clause[1:].strip()
            translated.append(f">={version},<{_composer_upper_bound(operator, version)}")
        else:
            translated.append(clause.replace(" ", ""))
    return ",".join(translated)


def wildcard_pattern(text: str) -> re.Pattern[str]:
    """Compile a wildcard constraint into a case-insensitive anchored pattern."""
    return re.compile(".*".join(re.escape(part) for part in text.split(WILDCARD)), re.IGNORECASE)


def _parse_version(version: str) -> Version | None:
    try:
        return Version(version)
    except InvalidVersion:
        return None


def is_stable_release(version: str) -> bool:
    """
    Check whether a release identifier is a stable release.

    Any identifier carrying a "-" suffix (alpha, beta, RC, nightly, ...) is
    treated as a pre-release.
    """
    return bool(version) and "-" not in version


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two version strings.

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2
    """
    ver1 = _parse_version(v1)
    ver2 = _parse_version(v2)

    if ver1 is not None and ver2 is not None:
        if ver1 < ver2:
            return -1
        elif ver1 > ver2:
            return 1
        return 0

    # Fallback to string comparison
    if v1 < v2:
        return -1
    elif v1 > v2:
        return 1
    return 0


def select_highest(candidates: Iterable[str]) -> str | None:
    """Return the highest version among the candidates, ignoring unparseable ones."""
    best: tuple[Version, str] | None = None
    for candidate in candidates:
        parsed = _parse_version(candidate)
        if parsed is None:
            continue
        if best is None or parsed > best[0]:
            best = (parsed, candidate)
    return best[1] if best else None


def match_catalog(constraint: VersionConstraint, catalog: Iterable[str]) -> list[str]:
    """Return the stable catalog entries that satisfy the constraint, in catalog order."""
    return [v for v in catalog if is_stable_release(v) and constraint.matches(v)]


def resolve_version(
    constraint: str,
    config: Config | None = None,
    fetch_latest: Callable[[Config], str] | None = None,
    fetch_catalog: Callable[[Config], tuple[str, ...]] | None = None,
    verbose: bool = False,
) -> str:
    """
    Resolve a version constraint to a concrete released version.

    A bare "*" asks the version-check API for the latest release. Anything
    else is matched against the release catalog, and the highest stable
    match wins.

    Args:
        constraint: Version constraint (e.g. "*", "v4.*", "4.9.8", ">=4.9,<5")
        config: Configuration (defaults if None)
        fetch_latest: Latest-version source (defaults to the version-check API)
        fetch_catalog: Catalog source (defaults to the release archive page)
        verbose: Enable verbose logging

    Returns:
        Resolved version string

    Raises:
        ResolutionError: If the constraint is invalid, nothing matches, or
            the upstream sources cannot be read
    """
    config = config or Config()
    fetch_latest = fetch_latest or fetch_latest_version
    fetch_catalog = fetch_catalog or fetch_release_catalog

    parsed = VersionConstraint.parse(constraint)

    try:
        if parsed.is_latest:
            version = fetch_latest(config)
            vlog(f"Constraint '{constraint}' resolved to latest release {version}", verbose)
            return version

        catalog = fetch_catalog(config)
    except FetchError as e:
        raise ResolutionError(
            f"Could not resolve '{constraint}': {e.message}",
            reason=UPSTREAM,
            remediation=e.remediation,
        ) from e

    matches = match_catalog(parsed, catalog)
    vlog(f"Constraint '{constraint}' matches {len(matches)} of {len(catalog)} releases", verbose)

    version = select_highest(matches)
    if version is None:
        raise ResolutionError(
            f"No WordPress release satisfies '{constraint}'",
            reason=NO_MATCH,
            remediation="Pick a different version constraint",
        )

    vlog(f"Constraint '{constraint}' resolved to {version}", verbose)
    return version
