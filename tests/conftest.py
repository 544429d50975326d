"""
Shared fixtures: fake HTTP endpoints, a fake core downloader and site builders.
"""

import json
import urllib.error
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from wp_tasks.collectors import clear_catalog_cache
from wp_tasks.config import WP_RELEASES_URL, WP_SALTS_URL, WP_VERSION_URL
from wp_tasks.installer import InstallError
from wp_tasks.logging_config import reset_logging


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch):
    """Keep tests independent of the caller's config files, env and caches."""
    for var in ("WP_TASKS_CONFIG", "WP_TASKS_WP_CLI", "WP_TASKS_DEBUG"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("wp_tasks.config.CONFIG_LOCATIONS", [])
    clear_catalog_cache()
    yield
    clear_catalog_cache()
    reset_logging()


def fake_response(body: bytes) -> MagicMock:
    response = MagicMock()
    response.read.return_value = body
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    return response


@pytest.fixture
def http():
    """
    Patch urlopen with a URL -> body routing table.

    Route values may be bytes, str or an exception instance to raise.
    Unrouted URLs fail with URLError.
    """
    routes = {}

    def _urlopen(req, timeout=None):
        url = req.full_url if hasattr(req, "full_url") else req
        if url not in routes:
            raise urllib.error.URLError(f"no route to {url}")
        body = routes[url]
        if isinstance(body, BaseException):
            raise body
        if isinstance(body, str):
            body = body.encode("utf-8")
        return fake_response(body)

    with patch("urllib.request.urlopen", side_effect=_urlopen) as mock:
        mock.routes = routes
        yield mock


def latest_json(version: str) -> str:
    return json.dumps({"offers": [{"response": "upgrade", "version": version}]})


def archive_html(*versions: str) -> str:
    """Render a minimal release archive page listing zip and tar.gz links."""
    rows = []
    for version in versions:
        rows.append(
            f"<tr><th>{version}</th>"
            f"<td><a href='https://wordpress.org/wordpress-{version}.zip'>zip</a></td>"
            f"<td><a href='https://wordpress.org/wordpress-{version}.tar.gz'>tar.gz</a></td></tr>"
        )
    return "<html><body><table>" + "\n".join(rows) + "</table></body></html>"


@pytest.fixture
def endpoints():
    """URLs of the default endpoints."""
    return {"latest": WP_VERSION_URL, "archive": WP_RELEASES_URL, "salts": WP_SALTS_URL}


class FakeDownloader:
    """
    Stands in for `wp core download`: writes a release's files into a path.

    Attributes:
        releases: version -> {relative path: content}
        calls: (version, path) for every invocation
        fail_versions: versions whose download raises InstallError
    """

    def __init__(self, releases: dict[str, dict[str, str]], fail_versions=()):
        self.releases = releases
        self.calls: list[tuple[str, Path]] = []
        self.fail_versions = set(fail_versions)

    def __call__(self, version: str, path) -> None:
        path = Path(path)
        self.calls.append((version, path))
        if version in self.fail_versions or version not in self.releases:
            raise InstallError(f"Download of {version} failed")
        for rel, content in self.releases[version].items():
            target = path / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)


def release_files(version: str, extra: dict[str, str] | None = None) -> dict[str, str]:
    """Stock files of a fake release."""
    files = {
        "index.php": f"<?php // {version}\n",
        "license.txt": "GPL\n",
        "readme.html": "<html></html>\n",
        "wp-config-sample.php": "<?php\n",
        "wp-admin/index.php": f"<?php // admin {version}\n",
        "wp-includes/version.php": f"<?php\n$wp_version = '{version}';\n",
        "wp-content/index.php": "<?php\n",
        "wp-content/plugins/hello.php": "<?php\n",
        "wp-content/plugins/akismet/akismet.php": "<?php\n",
        "wp-content/themes/twentyseventeen/style.css": "/* theme */\n",
    }
    files.update(extra or {})
    return files


@pytest.fixture
def make_site():
    """Write files into a site root: make_site(root, {rel: content})."""
    def _make(root: Path, files: dict[str, str]) -> Path:
        for rel, content in files.items():
            target = root / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        return root
    return _make
