import json
from datetime import timedelta

import pytest

from uptime_archive.services.compaction import ArchiveCompactor
from uptime_archive.services.window import WindowCompactor
from uptime_archive.storage.archive import ArchiveReader
from uptime_archive.storage.models import State
from tests.mocks.archive_factory import NOW, at_day, days_ago, reading, write_archive


@pytest.fixture
def archives_dir(tmp_path):
    return tmp_path / "archives"


@pytest.fixture
def compactor(tmp_path, archives_dir):
    return WindowCompactor(ArchiveReader(archives_dir), tmp_path / "current.json")


def _fill_days(archives_dir, count):
    for offset in range(count):
        day = days_ago(offset)
        write_archive(
            archives_dir,
            day,
            [reading(service="api", at=at_day(day, 6)), reading(service="web", at=at_day(day, 7))],
        )


class TestRebuild:
    def test_only_last_n_days_are_kept(self, compactor, archives_dir):
        _fill_days(archives_dir, 20)

        hot = compactor.rebuild(14, NOW)

        cutoff = NOW - timedelta(days=14)
        assert hot.readings
        assert all(item.checked_at >= cutoff for item in hot.readings)
        days = {item.day for item in hot.readings}
        # days 0..13 back are inside; day 14 back at 06:00 falls before the 12:00 boundary
        assert days == {days_ago(offset) for offset in range(14)}
        assert days_ago(15) not in days
        assert days_ago(19) not in days

    def test_exact_boundary_is_inclusive(self, compactor, archives_dir):
        boundary = NOW - timedelta(days=14)
        write_archive(archives_dir, boundary.date(), [reading(at=boundary), reading(at=boundary - timedelta(seconds=1))])
        hot = compactor.rebuild(14, NOW)
        assert [item.checked_at for item in hot.readings] == [boundary]

    def test_grouped_by_service_then_time(self, compactor, archives_dir):
        day = NOW.date()
        write_archive(
            archives_dir,
            day,
            [
                reading(service="web", at=at_day(day, 3)),
                reading(service="api", at=at_day(day, 2)),
                reading(service="web", at=at_day(day, 1)),
                reading(service="api", at=at_day(day, 1)),
            ],
        )
        hot = compactor.rebuild(14, NOW)
        assert [(item.service, item.checked_at.hour) for item in hot.readings] == [
            ("api", 1),
            ("api", 2),
            ("web", 1),
            ("web", 3),
        ]
        assert list(hot.by_service()) == ["api", "web"]

    def test_rebuild_is_byte_identical(self, compactor, archives_dir):
        _fill_days(archives_dir, 5)
        compactor.rebuild(14, NOW)
        first = compactor.output_path.read_bytes()
        compactor.rebuild(14, NOW)
        assert compactor.output_path.read_bytes() == first

    def test_compressed_days_are_replayed(self, compactor, archives_dir):
        _fill_days(archives_dir, 5)
        before = compactor.rebuild(14, NOW)

        compressed = ArchiveCompactor(ArchiveReader(archives_dir)).compress_closed_archives(NOW)

        assert len(compressed) == 4
        after = compactor.rebuild(14, NOW)
        assert after.readings == before.readings

    def test_gaps_are_not_backfilled(self, compactor, archives_dir):
        write_archive(archives_dir, days_ago(1), [reading(at=at_day(days_ago(1)))])
        write_archive(archives_dir, days_ago(5), [reading(at=at_day(days_ago(5)))])
        hot = compactor.rebuild(14, NOW)
        assert {item.day for item in hot.readings} == {days_ago(1), days_ago(5)}

    def test_corrupt_line_does_not_abort(self, compactor, archives_dir):
        day = NOW.date()
        write_archive(archives_dir, day, [reading(at=at_day(day, 1))], extra_lines=["garbage"])
        hot = compactor.rebuild(14, NOW)
        assert len(hot.readings) == 1

    def test_hot_file_can_be_deleted_and_rebuilt(self, compactor, archives_dir):
        _fill_days(archives_dir, 3)
        compactor.rebuild(14, NOW)
        first = compactor.output_path.read_bytes()
        compactor.output_path.unlink()
        compactor.rebuild(14, NOW)
        assert compactor.output_path.read_bytes() == first

    def test_file_document(self, compactor, archives_dir):
        write_archive(archives_dir, NOW.date(), [reading(state=State.DOWN, latency_ms=None, error="timeout")])
        compactor.rebuild(14, NOW)
        document = json.loads(compactor.output_path.read_text())
        assert document["version"] == 1
        assert document["generated"] == "2025-03-20T12:00:00.000Z"
        assert document["readings"] == [{"t": 1742472000000, "svc": "api", "state": "down", "code": 200, "err": "timeout"}]
        assert not list(compactor.output_path.parent.glob(".*.tmp"))

    def test_rejects_bad_window(self, compactor):
        with pytest.raises(ValueError):
            compactor.rebuild(0, NOW)
