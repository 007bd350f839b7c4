"""Tests for the nginx -t validator."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from balancer.errors import ConfigSyntaxError
from balancer.services.validator import ConfigValidator

FAKE_NGINX = """#!/bin/sh
# usage: nginx -t -c <path>
if grep -q bad_directive "$3"; then
    echo 'nginx: [emerg] unknown directive "bad_directive" in '"$3"':1' >&2
    exit 1
fi
echo "nginx: configuration file $3 test is successful" >&2
exit 0
"""

SLOW_NGINX = """#!/bin/sh
exec sleep 5
"""


def _script(tmp_path: Path, name: str, body: str) -> str:
    path = tmp_path / name
    path.write_text(body)
    path.chmod(0o755)
    return str(path)


@pytest.fixture
def staging(tmp_path: Path) -> Path:
    return tmp_path / "staging"


class TestValidator:
    def test_valid(self, tmp_path, staging):
        validator = ConfigValidator(staging, nginx_bin=_script(tmp_path, "nginx", FAKE_NGINX))
        result = validator.validate("events {}\n", fingerprint="ab" * 32)
        assert result.ok
        assert "test is successful" in result.output
        assert list(staging.iterdir()) == []

    def test_invalid(self, tmp_path, staging):
        validator = ConfigValidator(staging, nginx_bin=_script(tmp_path, "nginx", FAKE_NGINX))
        with pytest.raises(ConfigSyntaxError) as exc_info:
            validator.validate("bad_directive on;\n")
        assert 'unknown directive "bad_directive"' in exc_info.value.diagnostics
        assert list(staging.iterdir()) == []

    def test_never_touches_active(self, tmp_path, staging):
        active = tmp_path / "nginx.conf"
        active.write_text("# live\n")
        validator = ConfigValidator(staging, nginx_bin=_script(tmp_path, "nginx", FAKE_NGINX))
        with pytest.raises(ConfigSyntaxError):
            validator.validate("bad_directive on;\n")
        assert active.read_text() == "# live\n"

    def test_missing_binary(self, tmp_path, staging):
        validator = ConfigValidator(staging, nginx_bin=str(tmp_path / "no-such-nginx"))
        with pytest.raises(ConfigSyntaxError, match="not found"):
            validator.validate("events {}\n")

    def test_timeout(self, tmp_path, staging):
        validator = ConfigValidator(staging, nginx_bin=_script(tmp_path, "nginx", SLOW_NGINX), timeout=0.3)
        with pytest.raises(ConfigSyntaxError, match="did not complete"):
            validator.validate("events {}\n")
        assert list(staging.iterdir()) == []

    def test_cancelled(self, tmp_path, staging):
        validator = ConfigValidator(staging, nginx_bin=_script(tmp_path, "nginx", SLOW_NGINX))
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ConfigSyntaxError, match="did not complete"):
            validator.validate("events {}\n", cancel=cancel)

    def test_unwritable_staging_dir(self, tmp_path):
        blocker = tmp_path / "staging"
        blocker.write_text("")
        validator = ConfigValidator(blocker, nginx_bin=_script(tmp_path, "nginx", FAKE_NGINX))
        with pytest.raises(ConfigSyntaxError, match="Cannot stage candidate"):
            validator.validate("events {}\n")

    def test_concurrent_validations_use_distinct_files(self, staging):
        validator = ConfigValidator(staging)
        paths = {validator.staging_path("cd" * 32) for _ in range(20)}
        assert len(paths) == 20
        assert all(p.name.startswith("candidate-cdcdcdcdcdcdcdcd-") for p in paths)

    def test_command_with_prefix(self, staging):
        validator = ConfigValidator(staging, nginx_bin="nginx", exec_prefix=["docker", "exec", "proxy"])
        assert validator.command(Path("/tmp/c.conf")) == ["docker", "exec", "proxy", "nginx", "-t", "-c", "/tmp/c.conf"]

    def test_from_config(self, tmp_config):
        validator = ConfigValidator.from_config(tmp_config)
        assert validator.staging_dir == tmp_config.staging_dir
        assert validator.timeout == tmp_config.validate_timeout
