"""
Tests for site-level tasks (wp_tasks/site.py).
"""

import os
import stat
from pathlib import Path
from unittest.mock import patch

import pytest

from wp_tasks.collectors import FetchError
from wp_tasks.config import Config
from wp_tasks.site import (
    SALTS_FILE,
    SiteError,
    fix_permissions,
    generate_salts,
    is_wordpress_installed,
    read_installed_version,
    write_atomic,
)


SALTS = (
    b"define('AUTH_KEY',         'k$8|X@!');\n"
    b"define('SECURE_AUTH_KEY',  'q\\\\w\"e');\n"
    b"define('NONCE_SALT',       'z');\n"
)


class TestInstallationDetection:
    """Tests for the version.php sentinel."""

    def test_not_installed(self, tmp_path):
        """Test an empty root is not an installation."""
        assert is_wordpress_installed(tmp_path) is False

    def test_installed(self, tmp_path, make_site):
        """Test version.php marks an installation."""
        make_site(tmp_path, {"wp-includes/version.php": "<?php\n"})
        assert is_wordpress_installed(tmp_path) is True

    @pytest.mark.parametrize("content,version", [
        ("<?php\n$wp_version = '4.9.8';\n$wp_db_version = 38590;\n", "4.9.8"),
        ('<?php\n$wp_version="6.5-RC1";\n', "6.5-RC1"),
        ("<?php\n/**\n * The WordPress version string\n */\n$wp_version   =   '5.0' ;\n", "5.0"),
    ])
    def test_read_installed_version(self, tmp_path, make_site, content, version):
        """Test $wp_version is read from version.php."""
        make_site(tmp_path, {"wp-includes/version.php": content})
        assert read_installed_version(tmp_path) == version

    def test_read_version_missing_file(self, tmp_path):
        """Test a missing version.php raises SiteError."""
        with pytest.raises(SiteError):
            read_installed_version(tmp_path)

    def test_read_version_no_assignment(self, tmp_path, make_site):
        """Test version.php without the assignment raises SiteError."""
        make_site(tmp_path, {"wp-includes/version.php": "<?php\n$wp_db_version = 1;\n"})
        with pytest.raises(SiteError) as exc_info:
            read_installed_version(tmp_path)
        assert exc_info.value.reason == "version_unreadable"


class TestGenerateSalts:
    """Tests for the salts task."""

    def test_generate_salts(self, tmp_path, http, endpoints):
        """Test body is written verbatim after an opening PHP tag."""
        http.routes[endpoints["salts"]] = SALTS

        path = generate_salts(tmp_path)

        assert path == tmp_path / SALTS_FILE
        assert path.read_bytes() == b"<?php\n" + SALTS
        assert not (tmp_path / (SALTS_FILE + ".tmp")).exists()

    def test_generate_salts_overwrites(self, tmp_path, http, endpoints):
        """Test an existing salts file is replaced."""
        (tmp_path / SALTS_FILE).write_text("<?php // old")
        http.routes[endpoints["salts"]] = SALTS

        generate_salts(tmp_path)

        assert b"old" not in (tmp_path / SALTS_FILE).read_bytes()

    def test_generate_salts_fetch_failure(self, tmp_path, http):
        """Test fetch failures propagate and leave no file behind."""
        with pytest.raises(FetchError):
            generate_salts(tmp_path)
        assert not (tmp_path / SALTS_FILE).exists()


class TestWriteAtomic:
    """Tests for temp-file-then-rename writes."""

    def test_write_atomic(self, tmp_path):
        """Test data lands in the target and no temp file remains."""
        target = tmp_path / SALTS_FILE
        write_atomic(target, b"<?php\n")
        assert target.read_bytes() == b"<?php\n"
        assert list(tmp_path.iterdir()) == [target]

    def test_failed_rename_removes_temp_file(self, tmp_path):
        """Test a failed rename leaves neither the temp file nor a partial target."""
        target = tmp_path / SALTS_FILE
        with patch.object(Path, "replace", side_effect=PermissionError("denied")):
            with pytest.raises(SiteError):
                write_atomic(target, b"<?php\n")
        assert list(tmp_path.iterdir()) == []

    def test_failed_write_keeps_existing_file(self, tmp_path):
        """Test a failed salts write keeps the previous salts file intact."""
        target = tmp_path / SALTS_FILE
        target.write_bytes(b"<?php // old")
        with patch.object(Path, "replace", side_effect=OSError("disk full")):
            with pytest.raises(SiteError):
                write_atomic(target, b"<?php // new")
        assert target.read_bytes() == b"<?php // old"
        assert not (tmp_path / (SALTS_FILE + ".tmp")).exists()


class TestFixPermissions:
    """Tests for the permissions task."""

    def test_creates_and_opens_uploads(self, tmp_path):
        """Test the uploads directory is created world-writable."""
        processed = fix_permissions(tmp_path)

        uploads = tmp_path / "wp-content" / "uploads"
        assert processed == [uploads]
        assert uploads.is_dir()
        assert stat.S_IMODE(os.stat(uploads).st_mode) == 0o777

    def test_existing_directory(self, tmp_path):
        """Test an existing restrictive directory is opened up."""
        uploads = tmp_path / "wp-content" / "uploads"
        uploads.mkdir(parents=True)
        os.chmod(uploads, 0o700)

        fix_permissions(tmp_path)

        assert stat.S_IMODE(os.stat(uploads).st_mode) == 0o777

    def test_configured_directories(self, tmp_path):
        """Test writable directories come from configuration."""
        config = Config(writable_dirs=("wp-content/uploads", "wp-content/cache"))
        processed = fix_permissions(tmp_path, config)
        assert [p.name for p in processed] == ["uploads", "cache"]
