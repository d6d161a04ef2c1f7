"""
Tests for the upload dispatcher: key derivation, classification and fan-out.
"""
import os
import threading
import time
from unittest.mock import patch

import pytest

from s3_watcher.models.config import MIB
from s3_watcher.models.data_models import ChangeEvent, OperationKind, UploadStrategy
from s3_watcher.services.dispatcher import UploadDispatcher, build_destination_key, classify
from s3_watcher.services.uploader import UploadExecutor


def write_event(path):
    return ChangeEvent(OperationKind.WRITE, str(path))


@pytest.fixture
def dispatcher(config, s3_manager):
    return UploadDispatcher(config, UploadExecutor(s3_manager, config))


class TestBuildDestinationKey:
    """Test cases for destination key construction."""

    @pytest.mark.parametrize("prefix,path,expected", [
        ("data/", "/watch/a.txt", "data/a.txt"),
        ("data", "/watch/a.txt", "data/a.txt"),
        ("", "/watch/a.txt", "a.txt"),
        ("data/", "a.txt", "data/a.txt"),
        ("data/", "sub/../a.txt", "data/a.txt"),
        ("nested/deeper/", "/watch/big.bin", "nested/deeper/big.bin"),
    ])
    def test_prefix_joined_with_base_name(self, prefix, path, expected):
        assert build_destination_key(prefix, path) == expected

    def test_absolute_and_relative_paths_agree(self, watch_dir, monkeypatch):
        monkeypatch.chdir(watch_dir)
        absolute = os.path.join(str(watch_dir), "a.txt")

        assert build_destination_key("data/", "a.txt") == build_destination_key("data/", absolute)

    def test_idempotent(self):
        key = build_destination_key("data/", "/watch/a.txt")
        assert build_destination_key("data/", key) == key


class TestClassify:
    """Test cases for size based strategy selection."""

    def test_empty_file_is_skipped(self):
        assert classify(0, 50 * MIB) is None

    def test_threshold_boundary_uses_single_request(self):
        assert classify(50 * MIB, 50 * MIB) is UploadStrategy.SINGLE

    def test_above_threshold_uses_multipart(self):
        assert classify(50 * MIB + 1, 50 * MIB) is UploadStrategy.MULTIPART

    def test_small_file_uses_single_request(self):
        assert classify(1, 50 * MIB) is UploadStrategy.SINGLE


class TestUploadDispatcher:
    """Test cases for UploadDispatcher."""

    def test_small_file_single_request(self, dispatcher, s3_manager, write_file):
        """A 10 byte write goes out as one put to data/a.txt."""
        path = write_file("a.txt", 10)

        outcome = dispatcher.dispatch(write_event(path)).result(timeout=5)

        assert outcome.success is True
        assert outcome.strategy is UploadStrategy.SINGLE
        assert outcome.destination_key == "data/a.txt"
        s3_manager.put_object.assert_called_once()
        assert s3_manager.put_object.call_args[0][0] == "data/a.txt"
        s3_manager.multipart_upload.assert_not_called()

    def test_large_file_multipart(self, dispatcher, s3_manager, write_file):
        """An 80 MiB write goes out as a multipart upload with 50 MiB parts."""
        path = write_file("big.bin", 80 * MIB)

        outcome = dispatcher.dispatch(write_event(path)).result(timeout=5)

        assert outcome.success is True
        assert outcome.strategy is UploadStrategy.MULTIPART
        s3_manager.put_object.assert_not_called()
        args, kwargs = s3_manager.multipart_upload.call_args
        assert args[0] == "data/big.bin"
        assert kwargs['part_size'] == 50 * MIB
        assert kwargs['concurrency'] == 5

    def test_threshold_sized_file_single_request(self, config, s3_manager, write_file):
        from dataclasses import replace
        small_config = replace(config, size_threshold=100)
        dispatcher = UploadDispatcher(small_config, UploadExecutor(s3_manager, small_config))
        path = write_file("edge.bin", 100)

        outcome = dispatcher.dispatch(write_event(path)).result(timeout=5)

        assert outcome.strategy is UploadStrategy.SINGLE
        s3_manager.multipart_upload.assert_not_called()

    def test_empty_file_is_not_uploaded(self, dispatcher, s3_manager, write_file):
        path = write_file("empty.txt", 0)

        future = dispatcher.dispatch(write_event(path))

        assert future.done()
        outcome = future.result()
        assert outcome.skipped is True
        assert outcome.error_detail is None
        s3_manager.put_object.assert_not_called()
        s3_manager.multipart_upload.assert_not_called()
        assert dispatcher.skipped == 1

    def test_vanished_file_reports_source_unavailable(self, dispatcher, s3_manager, watch_dir):
        """A file deleted before stat fails only its own task."""
        future = dispatcher.dispatch(write_event(watch_dir / "gone.txt"))

        outcome = future.result(timeout=1)
        assert outcome.success is False
        assert outcome.error_kind == "SourceUnavailable"
        s3_manager.put_object.assert_not_called()
        assert dispatcher.failed == 1

    def test_relative_path_is_resolved(self, dispatcher, s3_manager, write_file, watch_dir, monkeypatch):
        write_file("rel.txt", 5)
        monkeypatch.chdir(watch_dir)

        outcome = dispatcher.dispatch(write_event("rel.txt")).result(timeout=5)

        assert outcome.source_path == os.path.join(str(watch_dir), "rel.txt")
        assert outcome.destination_key == "data/rel.txt"

    def test_run_survives_failed_tasks(self, dispatcher, s3_manager, write_file, watch_dir):
        path = write_file("ok.txt", 3)
        events = [write_event(watch_dir / "gone.txt"), write_event(path)]

        dispatcher.run(events)
        dispatcher.drain(timeout=5)

        assert dispatcher.failed == 1
        assert dispatcher.dispatched == 1
        s3_manager.put_object.assert_called_once()

    def test_dispatch_does_not_wait_for_uploads(self, config, slow_s3_manager, write_file):
        """Slow uploads never delay accepting the next event."""
        dispatcher = UploadDispatcher(config, UploadExecutor(slow_s3_manager, config))
        paths = [write_file(f"f{i}.txt", 10) for i in range(5)]

        started = time.monotonic()
        futures = [dispatcher.dispatch(write_event(p)) for p in paths]
        elapsed = time.monotonic() - started

        assert elapsed < 1
        for _ in paths:
            assert slow_s3_manager.started.acquire(timeout=5)
        assert slow_s3_manager.max_active == 5
        assert not any(f.done() for f in futures)
        assert len(dispatcher.in_flight) == 5

        slow_s3_manager.release.set()
        assert dispatcher.drain(timeout=5) == []
        assert all(f.result().success for f in futures)
        assert dispatcher.in_flight == []

    def test_drain_returns_pending_on_timeout(self, config, slow_s3_manager, write_file):
        dispatcher = UploadDispatcher(config, UploadExecutor(slow_s3_manager, config))
        future = dispatcher.dispatch(write_event(write_file("slow.txt", 10)))
        assert slow_s3_manager.started.acquire(timeout=5)

        pending = dispatcher.drain(timeout=0.05)

        assert pending == [future]
        slow_s3_manager.release.set()
        future.result(timeout=5)

    def test_thread_start_failure_resolves_outcome(self, dispatcher, s3_manager, write_file):
        """A task whose thread cannot start still yields a failed outcome and never blocks drain."""
        path = write_file("a.txt", 10)

        with patch.object(threading.Thread, 'start', side_effect=RuntimeError("can't start new thread")):
            future = dispatcher.dispatch(write_event(path))
            dispatcher.run([write_event(path)])

        assert dispatcher.drain(timeout=1) == []
        assert dispatcher.in_flight == []
        outcome = future.result(timeout=1)
        assert outcome.success is False
        assert outcome.error_kind == "RuntimeError"
        assert outcome.destination_key == "data/a.txt"
        assert dispatcher.failed == 2
        assert dispatcher.dispatched == 0
        s3_manager.put_object.assert_not_called()

    def test_executor_crash_is_contained(self, config, write_file):
        class BrokenExecutor:
            def upload(self, task):
                raise RuntimeError("executor bug")

        dispatcher = UploadDispatcher(config, BrokenExecutor())
        outcome = dispatcher.dispatch(write_event(write_file("a.txt", 10))).result(timeout=5)

        assert outcome.success is False
        assert outcome.error_kind == "RuntimeError"
        assert outcome.destination_key == "data/a.txt"


def test_same_file_uploads_are_not_serialized(config, slow_s3_manager, write_file):
    """Repeated writes to one file upload concurrently; last writer wins remotely."""
    dispatcher = UploadDispatcher(config, UploadExecutor(slow_s3_manager, config))
    path = write_file("same.txt", 10)

    first = dispatcher.dispatch(write_event(path))
    second = dispatcher.dispatch(write_event(path))

    assert slow_s3_manager.started.acquire(timeout=5)
    assert slow_s3_manager.started.acquire(timeout=5)
    assert slow_s3_manager.max_active == 2
    assert slow_s3_manager.keys == ["data/same.txt", "data/same.txt"]

    slow_s3_manager.release.set()
    assert first.result(timeout=5).success
    assert second.result(timeout=5).success
