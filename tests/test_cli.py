"""Tests for the command line interface."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from interopclient.cli import EXIT_FAILURE, EXIT_UNSUPPORTED, app
from interopclient.errors import ExpectationViolation, TransportError, UnsupportedTestCase

URLS = ["https://server:443/file1", "https://server:443/file2"]


@pytest.fixture
def cli_runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "interopclient.yaml"
    path.write_text(yaml.safe_dump({
        "download_dir": str(tmp_path / "downloads"),
        "logging": {
            "log_file": str(tmp_path / "logs" / "log.txt"),
            "keylog_file": str(tmp_path / "logs" / "keylogfile.txt"),
        },
    }))
    return path


class TestRunCommand:
    """Test exit codes of the run command."""

    def test_unsupported_testcase(self, cli_runner, config_file, tmp_path):
        result = cli_runner.invoke(app, ["run", "-t", "keyupdate", "-c", str(config_file), *URLS])

        assert result.exit_code == EXIT_UNSUPPORTED
        assert (tmp_path / "logs" / "log.txt").exists()
        assert (tmp_path / "logs" / "keylogfile.txt").exists()

    def test_testcase_from_environment(self, cli_runner, config_file):
        result = cli_runner.invoke(
            app, ["run", "-c", str(config_file)], env={"TESTCASE": "ecn", "REQUESTS": " ".join(URLS)}
        )

        assert result.exit_code == EXIT_UNSUPPORTED

    @patch('interopclient.cli.run_testcase', new_callable=AsyncMock)
    def test_success(self, mock_run, cli_runner, config_file):
        result = cli_runner.invoke(app, ["run", "-t", "handshake", "-c", str(config_file), *URLS])

        assert result.exit_code == 0
        config, testcase, urls, tls_config = mock_run.call_args.args
        assert testcase == "handshake"
        assert urls == URLS
        assert tls_config.insecure_skip_verify is True
        assert tls_config.key_log is not None

    @patch('interopclient.cli.run_testcase', new_callable=AsyncMock)
    def test_urls_from_environment(self, mock_run, cli_runner, config_file):
        result = cli_runner.invoke(
            app, ["run", "-c", str(config_file)], env={"TESTCASE": "transfer", "REQUESTS": " ".join(URLS)}
        )

        assert result.exit_code == 0
        assert mock_run.call_args.args[2] == URLS

    @pytest.mark.parametrize("error", [
        TransportError("refused"),
        ExpectationViolation("expected version negotiation to fail"),
    ])
    def test_failure(self, cli_runner, config_file, error):
        with patch('interopclient.cli.run_testcase', new=AsyncMock(side_effect=error)):
            result = cli_runner.invoke(app, ["run", "-t", "transfer", "-c", str(config_file), *URLS])

        assert result.exit_code == EXIT_FAILURE
        assert "Downloading files failed" in result.output

    def test_unsupported_from_strategy(self, cli_runner, config_file):
        with patch('interopclient.cli.run_testcase', new=AsyncMock(side_effect=UnsupportedTestCase("nope"))):
            result = cli_runner.invoke(app, ["run", "-t", "transfer", "-c", str(config_file), *URLS])

        assert result.exit_code == EXIT_UNSUPPORTED

    def test_unwritable_key_log(self, cli_runner, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.safe_dump({
            "logging": {"log_file": None, "keylog_file": str(blocker / "keylogfile.txt")},
        }))

        result = cli_runner.invoke(app, ["run", "-t", "handshake", "-c", str(config_file), *URLS])

        assert result.exit_code == EXIT_FAILURE
        assert "Could not create key log file" in result.output


class TestOtherCommands:
    """Test the helper commands."""

    def test_testcases(self, cli_runner):
        result = cli_runner.invoke(app, ["testcases"])

        assert result.exit_code == 0
        assert "zerortt" in result.output
        assert "unknown" not in result.output

    def test_init_config(self, cli_runner, tmp_path):
        path = tmp_path / "conf" / "interopclient.yaml"

        result = cli_runner.invoke(app, ["init-config", str(path)])

        assert result.exit_code == 0
        data = yaml.safe_load(Path(path).read_text())
        assert data["download_dir"] == "/downloads"
