"""
Tests for MigrationExecutor: the batch lifecycle end to end over an in-memory store.
"""

from datetime import timedelta

import pytest

from migration_engine.config import ExecutionOptions
from migration_engine.errors import (
    ErrorKind,
    NotFoundError,
    ReviewError,
    RollbackPreconditionError,
    SnapshotError,
    ValidationError,
)
from migration_engine.executor import row_key_for
from migration_engine.models.conditional import (
    ActionType,
    ConditionalRule,
    ConditionType,
    RuleAction,
    RuleCondition,
)
from migration_engine.models.migration import BatchStatus
from migration_engine.models.retry import RetryStatus
from migration_engine.models.schema import TransformType
from migration_engine.services.review import ReviewState

from conftest import STAFF_MAPPINGS


@pytest.fixture
def scenario_rows(staff_rows):
    rows = [dict(r) for r in staff_rows]
    rows[22]["email"] = "not-an-email"
    return rows


def assert_counts_balance(batch):
    assert batch.success_count + batch.error_count + batch.pending_retry_count == batch.record_count


# =============================================================================
# Happy path and validation failures
# =============================================================================


class TestExecute:
    def test_clean_batch_completes(self, make_executor, confirm_mappings, profile, staff_rows):
        executor, loader = make_executor()
        confirmed, _ = confirm_mappings()

        batch = executor.execute(profile(staff_rows), staff_rows, confirmed)

        assert batch.status == BatchStatus.COMPLETED
        assert batch.success_count == 50
        assert batch.error_count == 0
        assert loader.count_rows("hc_staff") == 50

        row = loader.get_row("hc_staff", row_key_for(batch.batch_id, 1))
        assert row == {
            "first_name": "James",
            "last_name": "Anderson",
            "email": "user1@example.com",
            "phone": "+15550011001",
            "date_of_birth": "1961-02-02",
        }

    def test_invalid_email_row_fails_alone(self, make_executor, confirm_mappings, profile, scenario_rows):
        executor, loader = make_executor()
        confirmed, _ = confirm_mappings()

        batch = executor.execute(profile(scenario_rows), scenario_rows, confirmed)

        assert batch.status == BatchStatus.COMPLETED_WITH_ERRORS
        assert batch.success_count == 49
        assert batch.error_count == 1
        assert loader.count_rows("hc_staff") == 49

        failures = executor.repository.list_failures(batch.batch_id)
        assert len(failures) == 1
        failure = failures[0]
        assert failure.source_row == 23
        assert failure.error_kind == "validation"
        assert failure.error_code == "validation_failed"
        assert failure.columns == ["email"]
        assert executor.retry_queue.list_items(batch_id=batch.batch_id) == []

    def test_quality_score_saved(self, make_executor, confirm_mappings, profile, scenario_rows):
        executor, _ = make_executor()
        confirmed, _ = confirm_mappings()
        batch = executor.execute(profile(scenario_rows), scenario_rows, confirmed)

        score = executor.repository.get_quality_score(batch.batch_id)
        assert score.completeness_score == 100.0
        assert score.accuracy_score == pytest.approx(99.6)
        assert score.uniqueness_score == 100.0
        assert score.overall_score == pytest.approx(99.8)
        assert score.grade == "A+"
        assert score.ready_for_production

    def test_review_session_completed(self, make_executor, confirm_mappings, profile, staff_rows):
        executor, _ = make_executor()
        confirmed, session = confirm_mappings()
        batch = executor.execute(profile(staff_rows), staff_rows, confirmed, review_session=session)
        assert session.state == ReviewState.COMPLETED
        assert session.batch_id == batch.batch_id

    def test_history_learns_from_batch(self, make_executor, confirm_mappings, profile, staff_rows):
        from migration_engine.services.mapping_engine import MigrationHistory

        executor, _ = make_executor()
        executor.history = MigrationHistory()
        confirmed, _ = confirm_mappings()
        batch = executor.execute(profile(staff_rows), staff_rows, confirmed)

        assert len(executor.history) == 1
        similar = executor.history.find_similar(profile(staff_rows), 0.7, 5)
        assert similar[0][0].migration_id == batch.batch_id

    def test_skipped_columns_are_not_written(self, make_executor, profile, staff_rows, schema):
        from migration_engine.models.mapping import MappingAnalysis, MappingSuggestion
        from migration_engine.services.review import ReviewSession

        session = ReviewSession(schema)
        session.load(MappingAnalysis(suggestions=[
            MappingSuggestion("first_name", "hc_staff", "first_name", 0.9),
            MappingSuggestion("last_name", "hc_staff", "last_name", 0.9),
            MappingSuggestion("email", "hc_staff", "email", 0.9, transform=TransformType.LOWERCASE),
        ]))
        session.begin_review()
        session.skip("email")
        confirmed = session.confirm("alice")

        executor, loader = make_executor()
        batch = executor.execute(profile(staff_rows), staff_rows, confirmed)
        row = loader.get_row("hc_staff", row_key_for(batch.batch_id, 2))
        assert set(row) == {"first_name", "last_name"}

    def test_unknown_source_value_type_fails_row(self, make_executor, confirm_mappings, profile, staff_rows):
        rows = [dict(r) for r in staff_rows[:3]]
        rows[1]["phone"] = ["555", "0000"]
        executor, _ = make_executor()
        confirmed, _ = confirm_mappings()

        batch = executor.execute(profile(staff_rows[:3]), rows, confirmed)

        assert batch.success_count == 2
        failures = executor.repository.list_failures(batch.batch_id)
        assert [(f.source_row, f.error_code) for f in failures] == [(2, "invalid_source_value")]

    def test_rejects_unconfirmed_mappings(self, make_executor, profile, staff_rows):
        executor, loader = make_executor()
        with pytest.raises(ReviewError):
            executor.execute(profile(staff_rows), staff_rows, confirmed=[])
        assert loader.dump() == {}
        assert executor.repository.list_batches() == []

    def test_get_unknown_batch(self, make_executor):
        executor, _ = make_executor()
        with pytest.raises(NotFoundError):
            executor.get_batch("missing")


# =============================================================================
# Snapshot barrier
# =============================================================================


class TestSnapshotBarrier:
    def test_snapshot_taken_before_writes(self, make_executor, confirm_mappings, profile, staff_rows):
        existing = {"legacy-1": {"first_name": "Old", "last_name": "Timer"}}
        executor, _ = make_executor(tables={"hc_staff": existing})
        confirmed, _ = confirm_mappings()

        batch = executor.execute(profile(staff_rows), staff_rows, confirmed)

        snapshot = executor.snapshots.get_snapshot(batch.snapshot_id)
        assert snapshot.migration_batch_id == batch.batch_id
        assert snapshot.snapshot_data == {"hc_staff": existing}
        assert snapshot.total_rows == 1

    def test_snapshot_failure_aborts_batch(self, make_executor, confirm_mappings, profile, staff_rows):
        executor, loader = make_executor()
        loader.inject_failures("read", table="hc_staff")
        confirmed, _ = confirm_mappings()

        with pytest.raises(SnapshotError):
            executor.execute(profile(staff_rows), staff_rows, confirmed)

        batch = executor.repository.list_batches()[0]
        assert batch.status == BatchStatus.FAILED
        assert batch.success_count == 0
        assert batch.errors[0]["phase"] == "snapshot"
        assert loader.dump() == {}
        assert executor.locks.shared_holders(["hc_staff"]) == []

    def test_rollback_restores_pre_migration_state(self, make_executor, confirm_mappings, profile, staff_rows):
        existing = {"legacy-1": {"first_name": "Old", "last_name": "Timer"}}
        executor, loader = make_executor(tables={"hc_staff": existing})
        confirmed, _ = confirm_mappings()
        batch = executor.execute(profile(staff_rows), staff_rows, confirmed)
        assert loader.count_rows("hc_staff") == 51

        event = executor.snapshots.rollback(batch.snapshot_id, "bad load", "carol")

        assert loader.dump() == {"hc_staff": existing}
        assert event.rows_deleted == 50
        assert event.rows_restored == 1
        assert event.tables_restored == ("hc_staff",)

    def test_rollback_blocked_while_batch_runs(self, make_executor, confirm_mappings, profile, staff_rows):
        executor, _ = make_executor()
        confirmed, _ = confirm_mappings()
        batch = executor.start(profile(staff_rows), staff_rows, confirmed)

        with pytest.raises(RollbackPreconditionError) as exc_info:
            executor.snapshots.rollback(batch.snapshot_id, "oops", "carol")
        assert exc_info.value.kind == ErrorKind.CONCURRENT_MIGRATION_IN_PROGRESS

        executor.advance(batch.batch_id)
        executor.snapshots.rollback(batch.snapshot_id, "oops", "carol")

    def test_rollback_blocked_while_retries_pending(
        self, make_executor, confirm_mappings, profile, staff_rows, clock
    ):
        executor, loader = make_executor()
        loader.inject_failures("upsert", table="hc_staff", count=1)
        confirmed, _ = confirm_mappings()

        batch = executor.execute(profile(staff_rows), staff_rows, confirmed)
        assert batch.status == BatchStatus.AWAITING_RETRY
        assert executor.locks.shared_holders(["hc_staff"]) == [batch.batch_id]

        with pytest.raises(RollbackPreconditionError) as exc_info:
            executor.snapshots.rollback(batch.snapshot_id, "oops", "carol")
        assert exc_info.value.kind == ErrorKind.CONCURRENT_MIGRATION_IN_PROGRESS

        executor.process_retries(clock.now + timedelta(seconds=10))
        assert batch.status == BatchStatus.COMPLETED
        assert executor.locks.shared_holders(["hc_staff"]) == []

        executor.snapshots.rollback(batch.snapshot_id, "oops", "carol")
        assert loader.count_rows("hc_staff") == 0

    def test_snapshot_failure_leaves_review_confirmed(
        self, make_executor, confirm_mappings, profile, staff_rows
    ):
        executor, loader = make_executor()
        loader.inject_failures("read", table="hc_staff")
        confirmed, session = confirm_mappings()

        with pytest.raises(SnapshotError):
            executor.execute(profile(staff_rows), staff_rows, confirmed, review_session=session)

        assert session.state == ReviewState.CONFIRMED
        assert session.batch_id is None

    def test_review_session_must_be_confirmed(self, make_executor, confirm_mappings, profile, staff_rows):
        executor, loader = make_executor()
        confirmed, session = confirm_mappings()
        executor.execute(profile(staff_rows), staff_rows, confirmed, review_session=session)
        assert session.state == ReviewState.COMPLETED

        with pytest.raises(ReviewError):
            executor.execute(profile(staff_rows), staff_rows, confirmed, review_session=session)
        assert len(executor.repository.list_batches()) == 1
        assert loader.count_rows("hc_staff") == 50


# =============================================================================
# Cancellation
# =============================================================================


class TestCancel:
    def test_cancel_accounts_for_every_row(self, make_executor, confirm_mappings, profile, staff_rows):
        executor, loader = make_executor()
        confirmed, _ = confirm_mappings()
        batch = executor.start(profile(staff_rows), staff_rows, confirmed)

        executor.advance(batch.batch_id, max_rows=10)
        assert batch.rows_processed == 10
        assert batch.status == BatchStatus.PROCESSING

        executor.cancel(batch.batch_id)

        assert batch.cancelled
        assert batch.status == BatchStatus.COMPLETED_WITH_ERRORS
        assert batch.success_count == 10
        assert batch.error_count == 40
        assert_counts_balance(batch)
        assert loader.count_rows("hc_staff") == 10

        failures = executor.repository.list_failures(batch.batch_id)
        assert len(failures) == 40
        assert {f.error_code for f in failures} == {"cancelled"}
        assert sorted(f.source_row for f in failures) == list(range(11, 51))

    def test_advance_after_cancel_is_noop(self, make_executor, confirm_mappings, profile, staff_rows):
        executor, loader = make_executor()
        confirmed, _ = confirm_mappings()
        batch = executor.start(profile(staff_rows), staff_rows, confirmed)
        executor.cancel(batch.batch_id)

        executor.advance(batch.batch_id)
        assert batch.success_count == 0
        assert batch.error_count == 50
        assert loader.count_rows("hc_staff") == 0

    def test_cancel_after_completion_returns_settled_batch(
        self, make_executor, confirm_mappings, profile, staff_rows
    ):
        executor, _ = make_executor()
        confirmed, _ = confirm_mappings()
        batch = executor.execute(profile(staff_rows), staff_rows, confirmed)

        assert batch.batch_id not in executor._runs
        settled = executor.cancel(batch.batch_id)
        assert settled.status == BatchStatus.COMPLETED
        assert not settled.cancelled
        assert executor.advance(batch.batch_id).success_count == 50

    def test_unknown_batch_cannot_be_cancelled(self, make_executor):
        executor, _ = make_executor()
        with pytest.raises(NotFoundError):
            executor.cancel("missing")

    def test_stop_on_error_cancels_remaining_rows(self, make_executor, confirm_mappings, profile, scenario_rows):
        executor, loader = make_executor()
        confirmed, _ = confirm_mappings()
        options = ExecutionOptions(stop_on_error=True, worker_count=1, chunk_size=10)

        batch = executor.execute(profile(scenario_rows), scenario_rows, confirmed, options=options)

        assert batch.cancelled
        assert batch.status == BatchStatus.COMPLETED_WITH_ERRORS
        assert batch.success_count == 22
        assert batch.error_count == 28
        assert_counts_balance(batch)
        assert loader.count_rows("hc_staff") == 22
        codes = [f.error_code for f in executor.repository.list_failures(batch.batch_id)]
        assert codes.count("validation_failed") == 1
        assert codes.count("cancelled") == 27


# =============================================================================
# Transient failures and retries
# =============================================================================


class TestRetries:
    def test_transient_failure_retried_to_completion(
        self, make_executor, confirm_mappings, profile, staff_rows, clock
    ):
        executor, loader = make_executor()
        loader.inject_failures("upsert", table="hc_staff", count=1)
        confirmed, _ = confirm_mappings()

        batch = executor.execute(profile(staff_rows), staff_rows, confirmed)

        assert batch.status == BatchStatus.AWAITING_RETRY
        assert not batch.is_terminal
        assert batch.success_count == 49
        assert batch.pending_retry_count == 1
        assert_counts_balance(batch)

        items = executor.retry_queue.list_items(batch_id=batch.batch_id)
        assert len(items) == 1
        assert items[0].row_key == row_key_for(batch.batch_id, 1)
        assert items[0].next_retry_at == clock.now + timedelta(seconds=1)

        stats = executor.process_retries(clock.now + timedelta(seconds=10))

        assert stats["succeeded"] == 1
        assert batch.status == BatchStatus.COMPLETED
        assert batch.success_count == 50
        assert batch.pending_retry_count == 0
        assert loader.count_rows("hc_staff") == 50
        assert executor.repository.get_quality_score(batch.batch_id) is not None

    def test_not_due_yet(self, make_executor, confirm_mappings, profile, staff_rows, clock):
        executor, loader = make_executor()
        loader.inject_failures("upsert", table="hc_staff", count=1)
        confirmed, _ = confirm_mappings()
        batch = executor.execute(profile(staff_rows), staff_rows, confirmed)

        stats = executor.process_retries(clock.now)
        assert stats["processed"] == 0
        assert batch.status == BatchStatus.AWAITING_RETRY

    def test_exhausted_retries_fail_rows(
        self, make_executor, engine_config, confirm_mappings, profile, staff_rows, clock
    ):
        engine_config.retry.max_attempts = 3
        executor, loader = make_executor(config=engine_config)
        loader.inject_failures("upsert", table="hc_staff", count=100)
        rows = staff_rows[:2]
        confirmed, _ = confirm_mappings()

        batch = executor.execute(profile(rows), rows, confirmed)
        assert batch.pending_retry_count == 2

        for hours in (1, 2, 3):
            executor.process_retries(clock.now + timedelta(hours=hours))

        assert batch.status == BatchStatus.COMPLETED_WITH_ERRORS
        assert batch.error_count == 2
        assert batch.pending_retry_count == 0
        items = executor.retry_queue.list_items(batch_id=batch.batch_id)
        assert {i.status for i in items} == {RetryStatus.EXHAUSTED}
        assert {i.attempt_number for i in items} == {3}
        failures = executor.repository.list_failures(batch.batch_id)
        assert {f.error_code for f in failures} == {"retry_exhausted"}

    def test_retry_disabled_fails_immediately(self, make_executor, confirm_mappings, profile, staff_rows):
        executor, loader = make_executor()
        loader.inject_failures("upsert", table="hc_staff", count=1)
        confirmed, _ = confirm_mappings()
        options = ExecutionOptions(enable_retry_logic=False, worker_count=1)

        batch = executor.execute(profile(staff_rows), staff_rows, confirmed, options=options)

        assert batch.status == BatchStatus.COMPLETED_WITH_ERRORS
        assert batch.error_count == 1
        assert executor.repository.list_failures(batch.batch_id)[0].error_code == "transient_failure"


# =============================================================================
# Dry run
# =============================================================================


class TestDryRun:
    def test_dry_run_writes_nothing(self, make_executor, confirm_mappings, profile, scenario_rows):
        executor, loader = make_executor()
        confirmed, session = confirm_mappings()
        options = ExecutionOptions(dry_run=True)

        batch = executor.execute(profile(scenario_rows), scenario_rows, confirmed, options=options,
                                 review_session=session)

        assert batch.status == BatchStatus.COMPLETED_WITH_ERRORS
        assert batch.is_terminal
        assert batch.dry_run
        assert batch.completed_at is not None
        assert batch.success_count == 49
        assert batch.error_count == 1
        assert loader.dump() == {}
        assert batch.snapshot_id is None
        assert executor.snapshots.list_snapshots() == []
        assert executor.lineage.query(batch_id=batch.batch_id) == []
        assert executor.repository.get_quality_score(batch.batch_id) is not None
        assert session.state == ReviewState.CONFIRMED


# =============================================================================
# Conflicts and duplicates
# =============================================================================


class TestConflicts:
    def test_unique_conflict_routed_to_review(self, make_executor, confirm_mappings, profile, staff_rows):
        existing = {"legacy-7": {"first_name": "James", "last_name": "Anderson", "email": "user1@example.com"}}
        executor, loader = make_executor(tables={"hc_staff": existing}, unique_columns={"hc_staff": ["email"]})
        confirmed, _ = confirm_mappings()

        batch = executor.execute(profile(staff_rows), staff_rows, confirmed)

        assert batch.error_count == 0
        assert batch.success_count == 50
        candidates = executor.dedup.pending_candidates(batch.batch_id)
        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.match_method == "unique_conflict"
        assert candidate.record_a_id == "legacy-7"
        assert candidate.record_b_id == row_key_for(batch.batch_id, 1)
        assert candidate.requires_human_review

        score = executor.repository.get_quality_score(batch.batch_id)
        assert not score.ready_for_production
        assert "Resolve 1 pending duplicate candidates" in score.recommendations

    def test_conflicting_row_has_no_lineage(self, make_executor, confirm_mappings, profile, staff_rows):
        existing = {"legacy-7": {"first_name": "James", "last_name": "Anderson", "email": "user1@example.com"}}
        executor, loader = make_executor(tables={"hc_staff": existing}, unique_columns={"hc_staff": ["email"]})
        confirmed, _ = confirm_mappings()

        batch = executor.execute(profile(staff_rows), staff_rows, confirmed)

        assert loader.get_row("hc_staff", row_key_for(batch.batch_id, 1)) is None
        assert executor.lineage.query(batch_id=batch.batch_id, source_row=1) == []
        assert len(executor.lineage.query(batch_id=batch.batch_id, source_row=2)) == 5

    def test_duplicates_flagged_after_load(self, make_executor, identity_config, confirm_mappings, profile):
        rows = [
            {"first_name": "John", "last_name": "Smith", "email": "john.smith@gmail.com",
             "phone": "555-123-4567", "dob": "01/15/1980"},
            {"first_name": "John", "last_name": "Smith", "email": "johnsmith@gmail.com",
             "phone": "555-123-4568", "dob": "1980-01-15"},
            {"first_name": "Maria", "last_name": "Garcia", "email": "maria@example.com",
             "phone": "555-987-6543", "dob": "07/04/1975"},
            {"first_name": "Wei", "last_name": "Chen", "email": "wei@example.com",
             "phone": "555-222-3333", "dob": "11/30/1990"},
        ]
        executor, loader = make_executor(config=identity_config)
        confirmed, _ = confirm_mappings()

        batch = executor.execute(profile(rows), rows, confirmed)

        assert batch.status == BatchStatus.COMPLETED
        candidates = executor.dedup.pending_candidates(batch.batch_id)
        assert len(candidates) == 1
        candidate = candidates[0]
        assert {candidate.record_a_id, candidate.record_b_id} == {
            row_key_for(batch.batch_id, 1), row_key_for(batch.batch_id, 2)
        }
        assert candidate.overall_similarity == pytest.approx(0.9)

        score = executor.repository.get_quality_score(batch.batch_id)
        assert score.uniqueness_score == 50.0
        assert score.overall_score == pytest.approx(87.5)
        assert not score.ready_for_production

        # Resolving merges into the survivor and removes the other row
        executor.dedup.resolve(candidate.candidate_id, "merge_a", "dana")
        assert loader.count_rows("hc_staff") == 3


# =============================================================================
# Lineage
# =============================================================================


class TestLineage:
    def test_every_written_cell_traced(self, make_executor, confirm_mappings, profile, scenario_rows):
        executor, _ = make_executor()
        confirmed, _ = confirm_mappings()
        batch = executor.execute(profile(scenario_rows), scenario_rows, confirmed)

        records = executor.lineage.query(batch_id=batch.batch_id, source_row=1)
        assert len(records) == 5
        assert {r.target_row_key for r in records} == {row_key_for(batch.batch_id, 1)}
        phone = next(r for r in records if r.source_column == "phone")
        assert phone.target_column == "phone"
        assert [s.transform for s in phone.transformations] == ["normalize_phone"]
        assert phone.validation_passed

    def test_failed_row_traced_as_invalid(self, make_executor, confirm_mappings, profile, scenario_rows):
        executor, _ = make_executor()
        confirmed, _ = confirm_mappings()
        batch = executor.execute(profile(scenario_rows), scenario_rows, confirmed)

        records = executor.lineage.query(batch_id=batch.batch_id, source_row=23, source_column="email")
        assert len(records) == 1
        assert not records[0].validation_passed

    def test_lineage_can_be_disabled(self, make_executor, confirm_mappings, profile, staff_rows):
        executor, _ = make_executor()
        confirmed, _ = confirm_mappings()
        options = ExecutionOptions(enable_lineage_tracking=False)
        batch = executor.execute(profile(staff_rows), staff_rows, confirmed, options=options)
        assert executor.lineage.query(batch_id=batch.batch_id) == []


# =============================================================================
# Concurrency
# =============================================================================


class TestConcurrency:
    def test_parallel_workers_keep_counts(self, make_executor, confirm_mappings, profile, make_rows):
        rows = make_rows(400)
        executor, loader = make_executor()
        confirmed, _ = confirm_mappings()
        options = ExecutionOptions(worker_count=8, chunk_size=50)

        batch = executor.execute(profile(rows), rows, confirmed, options=options)

        assert batch.success_count == 400
        assert batch.rows_processed == 400
        assert loader.count_rows("hc_staff") == 400


# =============================================================================
# Conditional mappings and table write order
# =============================================================================


NPI_MAPPINGS = dict(STAFF_MAPPINGS, npi=("hc_staff", "npi", TransformType.DIGITS_ONLY))


def _with_roles(rows, npi, roles):
    return [
        dict(row, npi=npi(f"1{i:08d}"), role=roles[(i - 1) % len(roles)])
        for i, row in enumerate(rows, start=1)
    ]


class TestConditionalMappings:
    def test_skip_rule_drops_cell_for_matching_rows(
        self, make_executor, engine_config, confirm_mappings, profile, staff_rows, npi
    ):
        engine_config.conditional_mappings = [ConditionalRule(
            source_column="npi",
            condition=RuleCondition(ConditionType.VALUE_NOT_MATCHES, "role", pattern="^(PHYSICIAN|APP)$"),
            action=RuleAction(ActionType.SKIP, reason="NPI only for prescribers"),
            priority=20,
        )]
        rows = _with_roles(staff_rows[:4], npi, ["PHYSICIAN", "NURSE"])
        executor, loader = make_executor(config=engine_config)
        confirmed, _ = confirm_mappings(NPI_MAPPINGS)

        batch = executor.execute(profile(rows), rows, confirmed)

        assert batch.status == BatchStatus.COMPLETED
        assert loader.get_row("hc_staff", row_key_for(batch.batch_id, 1))["npi"] == rows[0]["npi"]
        assert "npi" not in loader.get_row("hc_staff", row_key_for(batch.batch_id, 2))
        assert executor.lineage.query(batch_id=batch.batch_id, source_row=2, source_column="npi") == []

    def test_reroute_writes_parent_table_first(
        self, make_executor, engine_config, confirm_mappings, profile, staff_rows, npi
    ):
        rule = ConditionalRule(
            source_column="npi",
            condition=RuleCondition(ConditionType.VALUE_EQUALS, "role", value="GROUP"),
            action=RuleAction(ActionType.MAP_TO_COLUMN, "hc_organization", "organization_npi"),
            priority=10,
        )
        engine_config.conditional_mappings = [rule]
        rows = _with_roles(staff_rows[:2], npi, ["GROUP", "PHYSICIAN"])
        executor, loader = make_executor(config=engine_config)
        confirmed, _ = confirm_mappings(NPI_MAPPINGS)

        batch = executor.execute(profile(rows), rows, confirmed)

        assert batch.tables == ["hc_organization", "hc_staff"]
        assert batch.success_count == 2
        key = row_key_for(batch.batch_id, 1)
        assert loader.get_row("hc_organization", key) == {"organization_npi": rows[0]["npi"]}
        assert "npi" not in loader.get_row("hc_staff", key)
        assert loader.get_row("hc_organization", row_key_for(batch.batch_id, 2)) is None

        record = executor.lineage.query(batch_id=batch.batch_id, source_row=1, source_column="npi")[0]
        assert record.target_table == "hc_organization"
        assert record.transformations[-1].transform == f"rule:{rule.rule_id}"

        snapshot = executor.snapshots.get_snapshot(batch.snapshot_id)
        assert set(snapshot.tables_included) == {"hc_organization", "hc_staff"}

    def test_rules_can_be_disabled(
        self, make_executor, engine_config, confirm_mappings, profile, staff_rows, npi
    ):
        engine_config.conditional_mappings = [ConditionalRule(
            source_column="npi",
            condition=RuleCondition(ConditionType.VALUE_NOT_NULL, "role"),
            action=RuleAction(ActionType.SKIP),
        )]
        rows = _with_roles(staff_rows[:2], npi, ["NURSE"])
        executor, loader = make_executor(config=engine_config)
        confirmed, _ = confirm_mappings(NPI_MAPPINGS)
        options = ExecutionOptions(enable_conditional_mappings=False, worker_count=1)

        batch = executor.execute(profile(rows), rows, confirmed, options=options)

        assert batch.tables == ["hc_staff"]
        assert loader.get_row("hc_staff", row_key_for(batch.batch_id, 1))["npi"] == rows[0]["npi"]

    def test_rule_to_unknown_column_rejected(self, make_executor, engine_config, confirm_mappings, profile, staff_rows):
        engine_config.conditional_mappings = [ConditionalRule(
            source_column="email",
            condition=RuleCondition(ConditionType.VALUE_NOT_NULL, "email"),
            action=RuleAction(ActionType.MAP_TO_COLUMN, "hc_staff", "work_email"),
        )]
        executor, loader = make_executor(config=engine_config)
        confirmed, _ = confirm_mappings()

        with pytest.raises(ValidationError):
            executor.execute(profile(staff_rows), staff_rows, confirmed)
        assert executor.repository.list_batches() == []
        assert loader.dump() == {}


class TestWriteOrder:
    ORG_MAPPINGS = dict(STAFF_MAPPINGS, org=("hc_organization", "organization_name", TransformType.TRIM))

    def test_failed_parent_write_skips_child(self, make_executor, confirm_mappings, profile, staff_rows):
        rows = [dict(r, org="Acme Health") for r in staff_rows[:3]]
        executor, loader = make_executor()
        loader.inject_failures("upsert", table="hc_organization", count=1)
        confirmed, _ = confirm_mappings(self.ORG_MAPPINGS)
        options = ExecutionOptions(enable_retry_logic=False, worker_count=1)

        batch = executor.execute(profile(rows), rows, confirmed, options=options)

        assert confirmed.target_tables == ["hc_staff", "hc_organization"]
        assert batch.tables == ["hc_organization", "hc_staff"]
        assert batch.success_count == 2
        assert batch.error_count == 1
        assert loader.get_row("hc_staff", row_key_for(batch.batch_id, 1)) is None
        assert loader.count_rows("hc_staff") == 2
        assert loader.count_rows("hc_organization") == 2
        failure = executor.repository.list_failures(batch.batch_id)[0]
        assert failure.target_table == "hc_organization"

    def test_retry_resumes_in_dependency_order(
        self, make_executor, confirm_mappings, profile, staff_rows, clock
    ):
        rows = [dict(r, org="Acme Health") for r in staff_rows[:2]]
        executor, loader = make_executor()
        loader.inject_failures("upsert", table="hc_organization", count=1)
        confirmed, _ = confirm_mappings(self.ORG_MAPPINGS)

        batch = executor.execute(profile(rows), rows, confirmed)

        item = executor.retry_queue.list_items(batch_id=batch.batch_id)[0]
        assert list(item.payload["tables"]) == ["hc_organization", "hc_staff"]
        assert loader.get_row("hc_staff", row_key_for(batch.batch_id, 1)) is None

        executor.process_retries(clock.now + timedelta(seconds=10))
        assert batch.status == BatchStatus.COMPLETED
        assert loader.count_rows("hc_staff") == 2
