"""
Tests for the command line interface.
"""
import json
import sys
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from loguru import logger

from s3_watcher.exceptions import WatchSetupError
from s3_watcher.main import cli


@pytest.fixture(autouse=True)
def restore_logger():
    """The CLI replaces loguru sinks with the runner's captured streams."""
    yield
    logger.remove()
    logger.add(sys.stderr)


def invoke(*args):
    return CliRunner().invoke(cli, ['--log-dir', '', *args])


class TestCli:
    """Test cases for the click commands."""

    def test_watch_invalid_source_exits_non_zero(self, tmp_path):
        result = invoke('watch', '--source', str(tmp_path / 'missing'), '--bucket', 'b', '--region', 'us-west-2')

        assert result.exit_code == 1

    def test_watch_runs_session(self, watch_dir):
        with patch('s3_watcher.main.run_watch') as mock_run:
            result = invoke('watch', '--source', str(watch_dir), '--bucket', 'my-s3-bucket',
                            '--prefix', 'data/', '--region', 'us-west-2')

        assert result.exit_code == 0
        config = mock_run.call_args[0][0]
        assert config.watch_directory == str(watch_dir)
        assert config.bucket == 'my-s3-bucket'
        assert config.key_prefix == 'data/'

    def test_watch_fatal_error_exits_non_zero(self, watch_dir):
        with patch('s3_watcher.main.run_watch', side_effect=WatchSetupError("cannot watch")):
            result = invoke('watch', '--source', str(watch_dir), '--bucket', 'b', '--region', 'us-west-2')

        assert result.exit_code == 1

    def test_malformed_env_number_exits_cleanly(self, watch_dir, monkeypatch):
        monkeypatch.setenv('SIZE_THRESHOLD', '50MiB')

        with patch('s3_watcher.main.run_watch') as mock_run:
            result = invoke('watch', '--source', str(watch_dir), '--bucket', 'b', '--region', 'us-west-2')

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        mock_run.assert_not_called()

    def test_default_command_is_watch(self, watch_dir, monkeypatch):
        monkeypatch.setenv('WATCH_DIR', str(watch_dir))
        monkeypatch.setenv('S3_BUCKET_NAME', 'my-s3-bucket')
        monkeypatch.setenv('AWS_REGION', 'us-west-2')

        with patch('s3_watcher.main.run_watch') as mock_run:
            result = invoke()

        assert result.exit_code == 0
        mock_run.assert_called_once()

    def test_check_reports_connection_failure(self, watch_dir):
        with patch('s3_watcher.main.S3Manager') as mock_manager:
            mock_manager.return_value.test_connection.return_value = False
            result = invoke('check', '--source', str(watch_dir), '--bucket', 'b', '--region', 'us-west-2')

        assert result.exit_code == 1

    def test_show_config(self, watch_dir):
        result = invoke('show-config', '--source', str(watch_dir), '--bucket', 'b', '--threshold', '1024')

        assert result.exit_code == 0
        shown = json.loads(result.output)
        assert shown['bucket'] == 'b'
        assert shown['size_threshold'] == 1024
        assert shown['allowed_operations'] == ['write']
        assert any('region' in p for p in shown['problems'])
