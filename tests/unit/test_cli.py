"""
Tests for the command line and logging setup.
"""

import json
import logging

import pytest

from qserv import __version__
from qserv.__main__ import build_parser, main
from qserv.config import LoggingSettings
from qserv.log import ColoredFormatter, setup_logging


class TestArguments:
    """Tests for argument parsing."""

    def test_single_and_double_dash(self):
        """Flags accept one dash or two."""
        parser = build_parser()

        single = parser.parse_args(["-port", "3000", "-dir", "/srv", "-list"])
        double = parser.parse_args(["--port", "3000", "--dir", "/srv", "--list"])

        assert single.port == double.port == 3000
        assert single.root_dir == double.root_dir == "/srv"
        assert single.listing and double.listing

    def test_log_level_case_insensitive(self):
        """-log-level accepts any case."""
        assert build_parser().parse_args(["-log-level", "DEBUG"]).log_level == "debug"

    def test_invalid_log_level(self):
        """Unknown log levels are rejected by the parser."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["-log-level", "chatty"])


class TestMain:
    """Tests for main()."""

    def test_version(self, capsys):
        """-version prints the version and exits 0."""
        assert main(["-version"]) == 0

        assert capsys.readouterr().out.strip() == f"qserv version {__version__}"

    def test_generate_config(self, tmp_path, capsys):
        """-generate-config writes the defaults as JSON."""
        path = tmp_path / "example.json"

        assert main(["-generate-config", str(path)]) == 0

        data = json.loads(path.read_text())
        assert data["server"]["port"] == 8080
        assert data["features"]["index_file"] == "index.html"
        assert str(path) in capsys.readouterr().out

    def test_generate_config_unwritable(self, tmp_path, capsys):
        """An unwritable target exits 1."""
        assert main(["-generate-config", str(tmp_path / "no" / "such" / "dir.json")]) == 1

        assert "Error generating config" in capsys.readouterr().err

    def test_invalid_config_exits_1(self, tmp_path, capsys, monkeypatch):
        """Validation failures are listed on stderr and exit 1."""
        for name in ("QSERV_HOST", "QSERV_PORT", "QSERV_DIR", "QSERV_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        code = main(["-dir", str(tmp_path / "missing"), "-port", "70000"])

        err = capsys.readouterr().err
        assert code == 1
        assert "Invalid configuration:" in err
        assert "root directory does not exist" in err
        assert "invalid port: 70000" in err

    def test_missing_config_file_exits_1(self, tmp_path, capsys):
        """A config file that cannot be read exits 1."""
        assert main(["-config", str(tmp_path / "absent.json")]) == 1

        assert "cannot read config file" in capsys.readouterr().err


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    access = logging.getLogger("qserv.access")
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
    access.disabled = False


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_level_and_color(self, restore_logging):
        """The level is applied and color uses the colored formatter."""
        root = setup_logging(LoggingSettings(level="warn", color=True))

        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, ColoredFormatter)

    def test_file_handler(self, tmp_path, restore_logging):
        """A log file gets its own rotating handler."""
        log_file = tmp_path / "qserv.log"

        root = setup_logging(LoggingSettings(level="info", file=str(log_file), color=False))
        logging.getLogger("qserv.test").info("hello file")
        for handler in root.handlers:
            handler.flush()

        assert "hello file" in log_file.read_text()

    def test_access_log_disabled(self, restore_logging):
        """access_log false silences the access logger."""
        setup_logging(LoggingSettings(access_log=False, color=False))

        assert logging.getLogger("qserv.access").disabled

    def test_colored_formatter(self):
        """Lines are wrapped in the level's color."""
        formatter = ColoredFormatter("%(message)s")
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "bad", None, None)

        line = formatter.format(record)

        assert line.startswith(ColoredFormatter.COLORS[logging.ERROR])
        assert "bad" in line
