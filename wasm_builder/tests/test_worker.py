"""
BuildWorker job handling, with an in-memory Redis double.
"""
import json

import pytest

from wasm_builder.errors import AmbiguousTarget
from wasm_builder.io.schema import BuildReport, ProvenanceRecord
from wasm_builder.worker import RESULT_KEY_PREFIX, BuildWorker


class FakeRedis:
    def __init__(self, queue=None):
        self.queue = list(queue or [])
        self.store = {}

    def blpop(self, keys, timeout=0):
        if not self.queue:
            return None
        return keys[0], self.queue.pop(0)

    def set(self, key, value):
        self.store[key] = value


def _report(output_dir="/out/artifacts/x86/20250601T091500"):
    record = ProvenanceRecord(target="wasm32-unknown-unknown", build_time="2025-06-01T09:15:00+00:00")
    record.add_digest("lib.wasm", "a" * 64)
    return BuildReport(
        artifact_name="power_calc.wasm",
        primary_artifact="/t/wasm32-unknown-unknown/release/power_calc.wasm",
        output_dir=output_dir,
        record=record,
    )


class TestBuildWorker:
    """Jobs in, summaries out."""

    def test_success_published(self, settings):
        calls = []

        def build(manifest_path, **kw):
            calls.append((manifest_path, kw))
            return _report()

        redis = FakeRedis()
        worker = BuildWorker(settings=settings, redis_client=redis, build=build)
        summary = worker.process_build({
            "job_id": "job-1",
            "manifest_path": "/src/power_calc/Cargo.toml",
            "output_root": "/out",
            "features": ["std"],
            "stack_size": 65536,
        })

        assert summary["status"] == "SUCCESS"
        stored = json.loads(redis.store[RESULT_KEY_PREFIX + "job-1"])
        assert stored["report"]["artifact_name"] == "power_calc.wasm"
        assert stored["report"]["record"]["artifacts"][0]["name"] == "lib.wasm"

        manifest_path, kw = calls[0]
        assert str(manifest_path) == "/src/power_calc/Cargo.toml"
        assert str(kw["output_root"]) == "/out"
        assert kw["request"].features == ("std",)
        assert kw["request"].stack_size == 65536
        assert kw["request"].no_default_features is False

    def test_failure_published(self, settings):
        def build(manifest_path, **kw):
            raise AmbiguousTarget("multi", ["multi::a (bin)", "multi::b (bin)"])

        redis = FakeRedis()
        worker = BuildWorker(settings=settings, redis_client=redis, build=build)
        summary = worker.process_build({"job_id": "job-2", "manifest_path": "/x/Cargo.toml"})

        assert summary["status"] == "FAILED"
        assert summary["error_type"] == "AmbiguousTarget"
        assert json.loads(redis.store[RESULT_KEY_PREFIX + "job-2"]) == summary

    def test_invalid_request_published(self, settings):
        redis = FakeRedis()
        worker = BuildWorker(settings=settings, redis_client=redis, build=lambda *a, **kw: _report())
        summary = worker.process_build({"job_id": "j", "manifest_path": "/x", "stack_size": -1})
        assert summary["status"] == "FAILED"
        assert summary["error_type"] == "ValueError"

    def test_poll_once(self, settings):
        job = {"job_id": "job-3", "manifest_path": "/x/Cargo.toml"}
        redis = FakeRedis([json.dumps(job)])
        worker = BuildWorker(settings=settings, redis_client=redis, build=lambda *a, **kw: _report())

        assert worker.poll_once(timeout=0) is True
        assert RESULT_KEY_PREFIX + "job-3" in redis.store
        assert worker.poll_once(timeout=0) is False

    def test_poll_requires_connection(self, settings):
        with pytest.raises(RuntimeError):
            BuildWorker(settings=settings).poll_once(timeout=0)

    def test_io_failure_still_published(self, settings):
        """An OSError from the build still yields a FAILED result."""
        def build(manifest_path, **kw):
            raise PermissionError(13, "Permission denied", "/out/artifacts")

        redis = FakeRedis()
        worker = BuildWorker(settings=settings, redis_client=redis, build=build)
        summary = worker.process_build({"job_id": "job-4", "manifest_path": "/x/Cargo.toml"})

        assert summary["status"] == "FAILED"
        assert summary["error_type"] == "PermissionError"
        assert json.loads(redis.store[RESULT_KEY_PREFIX + "job-4"]) == summary

    @pytest.mark.parametrize("features,expected", [
        ("std", ("std",)),
        ("std,alloc", ("std", "alloc")),
        ("std alloc", ("std", "alloc")),
        (["std"], ("std",)),
        ("", ()),
    ])
    def test_features_forms(self, settings, features, expected):
        worker = BuildWorker(settings=settings, redis_client=FakeRedis())
        request = worker._request({"job_id": "j", "manifest_path": "/x", "features": features})
        assert request.features == expected

    def test_features_wrong_type_fails_job(self, settings):
        redis = FakeRedis()
        worker = BuildWorker(settings=settings, redis_client=redis, build=lambda *a, **kw: _report())
        summary = worker.process_build({"job_id": "j", "manifest_path": "/x", "features": 3})
        assert summary["status"] == "FAILED"
        assert summary["error_type"] == "ValueError"
