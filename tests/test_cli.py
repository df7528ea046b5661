"""Tests for the s3wire command-line interface."""

import logging
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import pytest
import yaml

import s3wire.cli as cli
from conftest import make_client


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    transport = {name: logging.getLogger(name).level for name in ("httpx", "httpcore")}
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, saved in transport.items():
        logging.getLogger(name).setLevel(saved)


@pytest.fixture
def config_path(tmp_path) -> Path:
    path = tmp_path / "s3wire.yaml"
    data = {
        "client": {
            "endpoint": "http://localhost:9000",
            "credentials": {"access_key": "AKIAEXAMPLE", "secret_key": "secretkeyexample"},
        },
        "service": {"presign_expiry": 900},
    }
    path.write_text(yaml.dump(data))
    return path


@pytest.fixture
def fake_cli(fake_s3, monkeypatch):
    """Route every client the CLI builds to the in-memory service."""
    fake_s3.buckets["data"] = {}
    monkeypatch.setattr(cli, "S3Client", lambda config: make_client(fake_s3.handler))
    return fake_s3


class TestParseArgs:
    """Tests for parse_args()."""

    def test_defaults(self):
        args = cli.parse_args(["ls", "data"])
        assert args.config == Path("s3wire.yaml")
        assert args.log_level is None
        assert args.log_format is None
        assert args.command == "ls"
        assert args.recursive is False

    def test_put_options(self):
        args = cli.parse_args(["--log-format", "json", "put", "f.bin", "data", "k", "--part-size", "5242880"])
        assert args.log_format == "json"
        assert args.file == Path("f.bin")
        assert args.part_size == 5242880

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.parse_args([])


class TestMain:
    """Tests for main()."""

    def test_missing_config(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--config", str(tmp_path / "absent.yaml"), "ls", "data"])
        assert exc_info.value.code == 1

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("client: {}\n")
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--config", str(path), "ls", "data"])
        assert exc_info.value.code == 1

    def test_ls(self, config_path, fake_cli, capsys):
        fake_cli.buckets["data"].update({"a.txt": b"hello", "dir/b": b"x"})
        cli.main(["--config", str(config_path), "ls", "data"])
        lines = capsys.readouterr().out.splitlines()
        assert lines[0].split() == ["2024-01-02", "03:04:05", "5", "a.txt"]
        assert lines[1].split() == ["PRE", "dir/"]

    def test_ls_recursive_prefix(self, config_path, fake_cli, capsys):
        fake_cli.buckets["data"].update({"a.txt": b"hello", "dir/b": b"x"})
        cli.main(["--config", str(config_path), "ls", "data", "--recursive", "--prefix", "dir/"])
        assert capsys.readouterr().out.split()[-1] == "dir/b"

    def test_put_and_stat(self, config_path, fake_cli, capsys, tmp_path):
        source = tmp_path / "notes.txt"
        source.write_bytes(b"some notes")
        cli.main(["--config", str(config_path), "put", str(source), "data", "notes.txt"])
        assert fake_cli.buckets["data"]["notes.txt"] == b"some notes"
        assert capsys.readouterr().out.startswith("data/notes.txt etag=")

        cli.main(["--config", str(config_path), "stat", "data", "notes.txt"])
        out = capsys.readouterr().out
        assert "Size      : 10" in out
        assert "Type      : text/plain" in out

    def test_presign_uses_configured_expiry(self, config_path, fake_cli, capsys):
        cli.main(["--config", str(config_path), "presign", "data", "k"])
        url = capsys.readouterr().out.strip()
        assert parse_qs(urlsplit(url).query)["X-Amz-Expires"] == ["900"]

    def test_presign_expiry_override(self, config_path, fake_cli, capsys):
        cli.main(["--config", str(config_path), "presign", "data", "k", "--expires", "60"])
        url = capsys.readouterr().out.strip()
        assert parse_qs(urlsplit(url).query)["X-Amz-Expires"] == ["60"]

    def test_rm(self, config_path, fake_cli):
        fake_cli.buckets["data"]["k"] = b"x"
        cli.main(["--config", str(config_path), "rm", "data", "k"])
        assert "k" not in fake_cli.buckets["data"]

    def test_service_error_exits_1(self, config_path, fake_cli):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--config", str(config_path), "stat", "data", "missing"])
        assert exc_info.value.code == 1

    def test_log_level_override(self, config_path, fake_cli):
        cli.main(["--config", str(config_path), "--log-level", "DEBUG", "rm", "data", "k"])
        assert logging.getLogger().level == logging.DEBUG
