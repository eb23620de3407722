"""
Tests for configuration loading, layering and validation.
"""

import dataclasses
import json

import pytest

from qserv.config import (
    BasicAuthSettings,
    Config,
    ConfigError,
    apply_env,
    config_from_dict,
    default_config,
    load_config,
    save_config,
    validate_config,
    with_overrides,
)


class TestDefaults:
    """Tests for the default configuration."""

    def test_defaults(self):
        """The defaults match the documented values."""
        config = default_config()

        assert config.server.host == "0.0.0.0"
        assert config.server.port == 8080
        assert config.server.root_dir == "."
        assert config.features.index_file == "index.html"
        assert config.features.directory_listing is False
        assert config.performance.compression is True
        assert config.performance.rate_limit.enabled is False
        assert config.features.cache.max_age == 3600
        assert config.logging.level == "info"

    def test_frozen(self):
        """Sections cannot be mutated."""
        config = default_config()

        with pytest.raises(dataclasses.FrozenInstanceError):
            config.server.port = 9000


class TestLoading:
    """Tests for JSON loading and saving."""

    def test_partial_file_keeps_defaults(self, tmp_path):
        """Missing keys keep their defaults; unknown keys are ignored."""
        path = tmp_path / "qserv.json"
        path.write_text(json.dumps({
            "server": {"port": 3000, "color_scheme": "dark"},
            "features": {"spa": {"enabled": True}, "custom_error_pages": {"404": "404.html"}},
            "security": {"allowed_ips": ["10.0.0.0/8"]},
        }))

        config = load_config(str(path))

        assert config.server.port == 3000
        assert config.server.host == "0.0.0.0"
        assert config.features.spa.enabled is True
        assert config.features.spa.fallback_file == "index.html"
        assert config.features.custom_error_pages == {404: "404.html"}
        assert config.security.allowed_ips == ("10.0.0.0/8",)

    def test_round_trip(self, tmp_path):
        """A saved configuration loads back unchanged."""
        path = tmp_path / "out.json"
        original = dataclasses.replace(
            default_config(),
            security=dataclasses.replace(
                default_config().security,
                basic_auth=BasicAuthSettings(enabled=True, username="a", password="b"),
            ),
        )

        save_config(str(path), original)

        assert load_config(str(path)) == original

    def test_missing_file(self, tmp_path):
        """An unreadable file is a ConfigError."""
        with pytest.raises(ConfigError) as exc_info:
            load_config(str(tmp_path / "nope.json"))

        assert "cannot read" in exc_info.value.violations[0]

    def test_invalid_json(self, tmp_path):
        """Malformed JSON is a ConfigError."""
        path = tmp_path / "bad.json"
        path.write_text("{not json")

        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_wrong_types_collected(self):
        """Every mistyped field is reported at once."""
        with pytest.raises(ConfigError) as exc_info:
            config_from_dict({
                "server": {"port": "eighty"},
                "performance": {"compression": "yes"},
                "features": "nope",
            })

        violations = exc_info.value.violations
        assert len(violations) == 3
        assert any("server.port" in v for v in violations)
        assert any("performance.compression" in v for v in violations)


class TestOverrides:
    """Tests for environment and command-line layering."""

    def test_env(self):
        """QSERV_* variables override the file."""
        config = apply_env(default_config(), {
            "QSERV_HOST": "127.0.0.1",
            "QSERV_PORT": "9000",
            "QSERV_DIR": "/srv/www",
            "QSERV_LOG_LEVEL": "DEBUG",
        })

        assert config.server.host == "127.0.0.1"
        assert config.server.port == 9000
        assert config.server.root_dir == "/srv/www"
        assert config.logging.level == "debug"

    def test_env_bad_port(self):
        """A non-numeric QSERV_PORT is a ConfigError."""
        with pytest.raises(ConfigError):
            apply_env(default_config(), {"QSERV_PORT": "http"})

    def test_flags(self):
        """Flags override, and unset flags keep the current values."""
        config = with_overrides(default_config(), port=3000, directory_listing=True, workers=3)

        assert config.server.port == 3000
        assert config.server.host == "0.0.0.0"
        assert config.features.directory_listing is True
        assert config.performance.min_workers == 3
        assert config.performance.max_workers == 6


class TestValidation:
    """Tests for validate_config()."""

    def _config(self, tmp_path, **sections) -> Config:
        config = dataclasses.replace(
            default_config(),
            server=dataclasses.replace(default_config().server, root_dir=str(tmp_path)),
        )
        for section, values in sections.items():
            config = dataclasses.replace(
                config, **{section: dataclasses.replace(getattr(config, section), **values)}
            )
        return config

    def test_valid(self, tmp_path):
        """A valid configuration comes back normalized."""
        config = validate_config(self._config(tmp_path))

        assert config.server.root_dir == str(tmp_path)

    def test_all_violations_reported(self, tmp_path):
        """Several problems are reported together."""
        config = self._config(
            tmp_path,
            server={"port": 0, "root_dir": str(tmp_path / "missing")},
            security={"enable_https": True},
        )

        with pytest.raises(ConfigError) as exc_info:
            validate_config(config)

        violations = exc_info.value.violations
        assert any("invalid port" in v for v in violations)
        assert any("does not exist" in v for v in violations)
        assert any("HTTPS" in v for v in violations)

    def test_root_must_be_directory(self, tmp_path):
        """A file as root is rejected."""
        file_path = tmp_path / "file.txt"
        file_path.write_text("x")

        with pytest.raises(ConfigError) as exc_info:
            validate_config(self._config(tmp_path, server={"root_dir": str(file_path)}))

        assert "not a directory" in exc_info.value.violations[0]

    def test_auth_requires_credentials(self, tmp_path):
        """Enabled basic auth needs a username and password."""
        config = self._config(tmp_path, security={"basic_auth": BasicAuthSettings(enabled=True)})

        with pytest.raises(ConfigError):
            validate_config(config)

    def test_empty_realm_defaulted(self, tmp_path):
        """An empty realm becomes "Restricted"."""
        auth = BasicAuthSettings(enabled=True, username="a", password="b", realm="")

        config = validate_config(self._config(tmp_path, security={"basic_auth": auth}))

        assert config.security.basic_auth.realm == "Restricted"

    def test_bad_ip_entry(self, tmp_path):
        """IP lists must hold addresses or networks."""
        config = self._config(tmp_path, security={"denied_ips": ("999.1.1.1",)})

        with pytest.raises(ConfigError):
            validate_config(config)

    def test_soft_fixes(self, tmp_path):
        """Out-of-range compression and unknown log levels are corrected."""
        config = self._config(
            tmp_path,
            performance={"compression_level": 42},
            logging={"level": "verbose"},
        )

        fixed = validate_config(config)

        assert fixed.performance.compression_level == 6
        assert fixed.logging.level == "info"

    def test_spa_needs_fallback(self, tmp_path):
        """SPA mode without a fallback file is rejected."""
        from qserv.config import SPASettings

        config = self._config(tmp_path)
        config = dataclasses.replace(
            config,
            features=dataclasses.replace(config.features, spa=SPASettings(enabled=True, fallback_file="")),
        )

        with pytest.raises(ConfigError):
            validate_config(config)

    def test_workers(self, tmp_path):
        """max_workers may not be below min_workers."""
        config = self._config(tmp_path, performance={"min_workers": 8, "max_workers": 2})

        with pytest.raises(ConfigError) as exc_info:
            validate_config(config)

        assert "max_workers" in exc_info.value.violations[0]

    def test_tls_files_must_be_readable(self, tmp_path, monkeypatch):
        """Existing but unreadable cert and key files are rejected."""
        cert, key = tmp_path / "cert.pem", tmp_path / "key.pem"
        cert.write_text("cert")
        key.write_text("key")
        config = self._config(
            tmp_path,
            security={"enable_https": True, "cert_file": str(cert), "key_file": str(key)},
        )
        monkeypatch.setattr("qserv.config.os.access", lambda path, mode: False)

        with pytest.raises(ConfigError) as exc_info:
            validate_config(config)

        assert exc_info.value.violations == [
            f"certificate file not readable: {cert}",
            f"key file not readable: {key}",
        ]
