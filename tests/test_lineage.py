"""
Tests for LineageTracker.
"""

import pytest

from migration_engine.models.record import TransformationStep
from migration_engine.services.lineage import LineageTracker
from migration_engine.services.transformer import value_hash
from migration_engine.storage import MigrationRepository


@pytest.fixture
def repository():
    return MigrationRepository()


def record(tracker, row, column="email", table="hc_staff", batch_id="batch-1", **kwargs):
    return tracker.record_cell(
        batch_id=batch_id,
        source_row=row,
        source_column=column,
        target_table=table,
        target_column=column,
        target_row_key=f"{batch_id}-{row:06d}",
        source_value=f"User{row}@Example.com",
        target_value=f"user{row}@example.com",
        **kwargs
    )


class TestRecordCell:
    def test_hashes_values(self, repository):
        tracker = LineageTracker(repository)
        step = TransformationStep(1, "lowercase", value_hash("User1@Example.com"), value_hash("user1@example.com"))

        rec = record(tracker, 1, transformations=[step], source_file="staff.csv")

        assert rec.source_value_hash == value_hash("User1@Example.com")
        assert rec.target_value_hash == value_hash("user1@example.com")
        assert rec.source_value_hash != rec.target_value_hash
        assert rec.transformations == (step,)
        assert rec.source_file == "staff.csv"
        assert rec.validation_passed

    def test_buffered_until_flush(self, repository):
        tracker = LineageTracker(repository, flush_size=100)
        record(tracker, 1)
        assert tracker.buffered == 1
        assert tracker.query() == []

        assert tracker.flush() == 1
        assert tracker.buffered == 0
        assert len(tracker.query()) == 1

    def test_flushes_at_flush_size(self, repository):
        tracker = LineageTracker(repository, flush_size=3)
        for row in range(1, 5):
            record(tracker, row)
        assert len(repository.query_lineage()) == 3
        assert tracker.buffered == 1


class TestQuery:
    def test_filters(self, repository):
        tracker = LineageTracker(repository)
        record(tracker, 1)
        record(tracker, 1, column="phone")
        record(tracker, 2)
        record(tracker, 1, batch_id="batch-2")
        record(tracker, 1, table="hc_facility", column="facility_name")
        tracker.flush()

        assert len(tracker.query(batch_id="batch-1", source_row=1)) == 3
        assert len(tracker.query(batch_id="batch-1", source_column="email")) == 2
        assert len(tracker.query(target_table="hc_facility")) == 1
        assert len(tracker.query(source_row=2)) == 1
        assert tracker.query(batch_id="batch-3") == []

    def test_query_by_target_row_key(self, repository):
        tracker = LineageTracker(repository)
        record(tracker, 7)
        record(tracker, 8)
        tracker.flush()
        matches = repository.query_lineage(target_row_key="batch-1-000007")
        assert [r.source_row for r in matches] == [7]
