"""
Pytest configuration and fixtures for the S3 folder watcher tests.
"""
import threading
from unittest.mock import Mock

import pytest

from s3_watcher.clients.s3_manager import S3Manager
from s3_watcher.models.config import S3Config, WatchConfig

ENV_VARS = [
    'WATCH_DIR',
    'S3_BUCKET_NAME',
    'S3_BUCKET_PREFIX',
    'S3_ENDPOINT',
    'AWS_REGION',
    'AWS_DEFAULT_REGION',
    'AWS_ACCESS_KEY_ID',
    'AWS_SECRET_ACCESS_KEY',
    'SIZE_THRESHOLD',
    'PART_SIZE',
    'MULTIPART_CONCURRENCY',
    'CONFIRM_TIMEOUT',
    'MAX_RETRIES',
]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Make sure no configuration leaks in from the host environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def watch_dir(tmp_path):
    """Directory being watched."""
    directory = tmp_path / "watch"
    directory.mkdir()
    return directory


@pytest.fixture
def s3_config():
    """Test S3 configuration."""
    return S3Config(
        bucket='test-bucket',
        region='us-west-2',
        endpoint='http://localhost:9000',
        access_key='test_key',
        secret_key='test_secret'
    )


@pytest.fixture
def config(watch_dir, s3_config):
    """Watch configuration with short timeouts for testing."""
    return WatchConfig(
        watch_directory=str(watch_dir),
        s3=s3_config,
        key_prefix='data/',
        confirm_timeout=1,
        retry_backoff=0,
        watch_restart_delay=0.01
    )


@pytest.fixture
def s3_manager():
    """S3Manager stand-in that succeeds immediately."""
    manager = Mock(spec=S3Manager)
    manager.put_object.return_value = {'etag': 'abc123', 'attempts': 1}
    manager.multipart_upload.return_value = {'attempts': 1}
    manager.object_exists.return_value = True
    return manager


@pytest.fixture
def write_file(watch_dir):
    """Create a file of a given size inside the watch directory."""
    def _write(name, size):
        path = watch_dir / name
        with open(path, 'wb') as fh:
            if size:
                fh.truncate(size)
        return path
    return _write


class SlowS3Manager:
    """Store stand-in whose uploads block until released."""

    def __init__(self):
        self.release = threading.Event()
        self.started = threading.Semaphore(0)
        self.active = 0
        self.max_active = 0
        self.keys = []
        self._lock = threading.Lock()

    def _upload(self, key):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.keys.append(key)
        self.started.release()
        self.release.wait(timeout=10)
        with self._lock:
            self.active -= 1

    def put_object(self, key, body, max_retries=None):
        self._upload(key)
        return {'etag': 'slow', 'attempts': 1}

    def multipart_upload(self, key, body, part_size, concurrency, max_retries=None):
        self._upload(key)
        return {'attempts': 1}

    def object_exists(self, key, timeout=None):
        return True


@pytest.fixture
def slow_s3_manager():
    manager = SlowS3Manager()
    yield manager
    manager.release.set()
