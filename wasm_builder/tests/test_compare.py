"""
test_compare — reproducibility check between two output directories.
"""
import pytest

from wasm_builder.core.compare import compare_build_info, compare_records
from wasm_builder.io.schema import DigestMatch, ProvenanceRecord
from wasm_builder.io.writer import write_build_info

HEX_A = "a" * 64
HEX_B = "b" * 64
HEX_C = "c" * 64


def _record(digests, target="wasm32-unknown-unknown", build_time="2025-06-01T12:00:00+00:00", **kw):
    record = ProvenanceRecord(target=target, build_time=build_time, **kw)
    for name, hexdigest in digests:
        record.add_digest(name, hexdigest)
    return record


class TestCompareRecords:
    """Artifact-by-artifact verdicts between two records."""

    def test_identical_artifacts_reproducible(self):
        left = _record([("lib.wasm", HEX_A), ("lib.rwasm", HEX_B)], rustc="rustc 1.87.0")
        right = _record(
            [("lib.wasm", HEX_A), ("lib.rwasm", HEX_B)],
            build_time="2025-06-02T08:00:00+00:00",
            rustc="rustc 1.87.0",
        )
        report = compare_records(left, right)
        assert report.reproducible
        assert [a.status for a in report.artifacts] == [DigestMatch.MATCH, DigestMatch.MATCH]
        # timestamps always differ and are reported, not judged
        assert [d.key for d in report.metadata_differences] == ["build_time"]

    def test_differing_digest(self):
        report = compare_records(
            _record([("lib.wasm", HEX_A)]), _record([("lib.wasm", HEX_C)])
        )
        assert not report.reproducible
        assert report.artifacts[0].status == DigestMatch.DIFFERS

    def test_missing_sides(self):
        report = compare_records(
            _record([("lib.wasm", HEX_A), ("lib.cwasm", HEX_B)]),
            _record([("lib.wasm", HEX_A), ("lib.wat", HEX_C)]),
        )
        statuses = {a.name: a.status for a in report.artifacts}
        assert statuses == {
            "lib.wasm": DigestMatch.MATCH,
            "lib.cwasm": DigestMatch.MISSING_RIGHT,
            "lib.wat": DigestMatch.MISSING_LEFT,
        }
        assert [a.name for a in report.artifacts] == ["lib.wasm", "lib.cwasm", "lib.wat"]
        assert not report.reproducible

    def test_different_target_not_reproducible(self):
        report = compare_records(
            _record([("lib.wasm", HEX_A)]),
            _record([("lib.wasm", HEX_A)], target="wasm32-wasi"),
        )
        assert not report.reproducible
        assert "target" in [d.key for d in report.metadata_differences]

    def test_empty_records_not_reproducible(self):
        assert not compare_records(_record([]), _record([])).reproducible


class TestCompareDirectories:
    """Comparison read from two output directories."""

    def test_reads_build_info(self, tmp_path):
        left, right = tmp_path / "x86", tmp_path / "arm"
        left.mkdir()
        right.mkdir()
        write_build_info(_record([("lib.wasm", HEX_A)]), left)
        write_build_info(_record([("lib.wasm", HEX_A)]), right)
        report = compare_build_info(left, right)
        assert report.reproducible
        assert report.left_dir == str(left)
        assert report.right_dir == str(right)

    def test_missing_build_info(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            compare_build_info(tmp_path / "a", tmp_path / "b")
