"""Command line interface for the migration engine."""

import argparse
import json
import logging
import sys
import time
from typing import Any, Dict, Optional

from .config import EngineConfig, ExecutionOptions
from .errors import MigrationEngineError, ReviewError
from .executor import MigrationExecutor
from .loaders.memory_loader import InMemoryLoader
from .models.dna import ProfileSummary
from .models.migration import BatchStatus
from .models.mapping import MappingAnalysis
from .models.schema import TargetSchema, TransformType
from .services.llm_assist import LLMMappingAssistant
from .services.mapping_engine import MappingSuggestionEngine, MigrationHistory
from .services.profiler import SourceProfiler
from .services.review import ConfirmedMappingSet, ReviewSession
from .services.snapshots import SnapshotManager
from .sources import read_rows
from .storage import MigrationRepository

logger = logging.getLogger(__name__)


def main(argv=None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Migration Engine - Move legacy records into a target schema"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--config", help="Path to engine config JSON file")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Profile a source file
    profile_parser = subparsers.add_parser("profile", help="Profile a CSV/JSON source file")
    profile_parser.add_argument("--input", required=True, help="Path to source file")
    profile_parser.add_argument("--source-system", help="Declared source system")
    profile_parser.add_argument("--output", help="Write the full DNA to this file")

    # Suggest mappings
    suggest_parser = subparsers.add_parser("suggest", help="Suggest column mappings")
    suggest_parser.add_argument("--input", required=True, help="Path to source file")
    suggest_parser.add_argument("--schema", required=True, help="Path to target schema JSON")
    suggest_parser.add_argument("--history", help="Path to migration history JSON")
    suggest_parser.add_argument("--output", help="Write the analysis to this file")
    suggest_parser.add_argument("--decisions-out",
                                help="Write a blank decisions file for the reviewer to fill in")

    # Run a migration
    run_parser = subparsers.add_parser("run", help="Run a migration")
    run_parser.add_argument("--input", required=True, help="Path to source file")
    run_parser.add_argument("--schema", required=True, help="Path to target schema JSON")
    run_parser.add_argument("--store", required=True, help="Path to the target store JSON file")
    run_parser.add_argument("--history", help="Path to migration history JSON (updated on success)")
    review_group = run_parser.add_mutually_exclusive_group(required=True)
    review_group.add_argument("--decisions",
                              help="Reviewed JSON file: source column -> accept, skip, \"table.column\" "
                                   "or {\"target\": \"table.column\", \"transform\": ...}")
    review_group.add_argument("--auto-approve", action="store_true",
                              help="Accept every suggestion; only allowed when the analysis is "
                                   "eligible under mapping.auto_execution_threshold")
    run_parser.add_argument("--confirmed-by", required=True, help="Identity of the approving reviewer")
    run_parser.add_argument("--dry-run", action="store_true", help="Simulate without changes")
    run_parser.add_argument("--retry-wait", type=float, default=0.0,
                            help="Seconds between retry passes; 0 leaves retries pending")

    # Roll back to a snapshot
    rollback_parser = subparsers.add_parser("rollback", help="Restore tables from a snapshot")
    rollback_parser.add_argument("--snapshot-id", required=True, help="Snapshot to restore")
    rollback_parser.add_argument("--store", required=True, help="Path to the target store JSON file")
    rollback_parser.add_argument("--approved-by", required=True, help="Approver identity")
    rollback_parser.add_argument("--reason", default="", help="Reason for the rollback")

    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    config = EngineConfig.from_json_file(args.config) if args.config else EngineConfig()

    commands = {
        "profile": run_profile,
        "suggest": run_suggest,
        "run": run_migration,
        "rollback": run_rollback,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 2

    try:
        return command(args, config) or 0
    except MigrationEngineError as e:
        print(f"Error ({e.kind.value}): {e.message}", file=sys.stderr)
        return 1


def run_profile(args, config: EngineConfig) -> int:
    """Profile a source file and print the detected patterns."""
    rows = read_rows(args.input)
    dna = SourceProfiler(config.profiler).generate_dna(rows, source_system=args.source_system)
    summary = ProfileSummary.from_dna(dna)

    print(f"\n=== Profile: {args.input} ===")
    print(f"Rows: {summary.row_count}  Columns: {summary.column_count}")
    print(f"Source system: {summary.source_system or 'unknown'}")
    for column in dna.columns:
        print(
            f"  {column.original_name}: {column.primary_pattern.value} "
            f"({column.pattern_confidence:.0%}, fill {column.fill_rate:.0%})"
        )

    if args.output:
        _write_json(args.output, dna.to_dict())
        print(f"\nDNA saved to {args.output}")
    return 0


def run_suggest(args, config: EngineConfig) -> int:
    """Print mapping suggestions for a source file."""
    rows = read_rows(args.input)
    dna = SourceProfiler(config.profiler).generate_dna(rows)
    engine = _mapping_engine(args, config)
    analysis = engine.suggest(dna)

    print(f"\n=== {len(analysis.suggestions)} Suggestions ({analysis.schema_id}) ===")
    for s in analysis.suggestions:
        target = "UNMAPPED" if s.is_unmapped else f"{s.target_table}.{s.target_column}"
        print(f"  {s.source_column} -> {target} ({s.confidence:.0%}, {s.transform.value})")
        for alt in s.alternative_mappings:
            print(f"      alt: {alt.target_table}.{alt.target_column} ({alt.confidence:.0%})")
    print(f"\nEstimated accuracy: {analysis.estimated_accuracy:.0%}")
    if analysis.similar_past_migrations:
        print(f"Similar past migrations: {len(analysis.similar_past_migrations)}")

    if args.output:
        _write_json(args.output, analysis.to_dict())
        print(f"Analysis saved to {args.output}")
    if args.decisions_out:
        _write_json(args.decisions_out, {s.source_column: None for s in analysis.suggestions})
        print(f"Decisions template saved to {args.decisions_out}; fill in every column before run")
    return 0


def run_migration(args, config: EngineConfig) -> int:
    """Profile, apply the reviewed decisions and execute a migration."""
    rows = read_rows(args.input)
    schema = TargetSchema.from_json_file(args.schema)
    dna = SourceProfiler(config.profiler).generate_dna(rows)
    engine = _mapping_engine(args, config, schema)
    analysis = engine.suggest(dna)

    session = ReviewSession(schema)
    confirmed = _review(session, analysis, args)

    loader = _open_store(args.store)
    executor = MigrationExecutor(loader, schema, config=config, history=engine.history)
    options = ExecutionOptions.from_dict(config.execution.to_dict())
    options.dry_run = options.dry_run or args.dry_run
    options.source_file = args.input

    batch = executor.execute(dna, rows, confirmed, options=options, review_session=session)

    while batch.status == BatchStatus.AWAITING_RETRY and args.retry_wait > 0:
        logger.info(f"Waiting {args.retry_wait}s for {batch.pending_retry_count} pending retries")
        time.sleep(args.retry_wait)
        executor.process_retries()

    if not options.dry_run:
        loader.save_to_json(args.store)
        if args.history and engine.history is not None:
            engine.history.save_to_json(args.history)

    print("\n" + "=" * 60)
    print("MIGRATION COMPLETE" if batch.is_terminal else "MIGRATION PENDING")
    print("=" * 60)
    print(f"Batch: {batch.batch_id}")
    print(f"Status: {batch.status.value}")
    print(f"Records: {batch.record_count}")
    print(f"Succeeded: {batch.success_count}")
    print(f"Failed: {batch.error_count}")
    if batch.pending_retry_count:
        print(f"Pending retries: {batch.pending_retry_count}")
    if batch.snapshot_id:
        print(f"Snapshot: {batch.snapshot_id}")

    score = executor.repository.get_quality_score(batch.batch_id)
    if score:
        print(f"Quality: {score.overall_score:.2f} ({score.grade})"
              f"{' - ready for production' if score.ready_for_production else ''}")
        for rec in score.recommendations:
            print(f"  - {rec}")

    return 1 if batch.status == BatchStatus.FAILED else 0


def run_rollback(args, config: EngineConfig) -> int:
    """Restore the store's tables from a persisted snapshot."""
    loader = _open_store(args.store)
    manager = SnapshotManager(loader, MigrationRepository(config.output_dir), settings=config.snapshots)
    loaded = manager.load_persisted()
    logger.debug(f"Loaded {loaded} persisted snapshots")

    event = manager.rollback(args.snapshot_id, args.reason, args.approved_by)
    loader.save_to_json(args.store)

    print(f"\nRolled back {', '.join(event.tables_restored)}")
    print(f"Rows restored: {event.rows_restored}  Rows deleted: {event.rows_deleted}")
    return 0


# =============================================================================
# Helpers
# =============================================================================

def _mapping_engine(
    args,
    config: EngineConfig,
    schema: Optional[TargetSchema] = None
) -> MappingSuggestionEngine:
    schema = schema or TargetSchema.from_json_file(args.schema)
    history = MigrationHistory()
    if getattr(args, "history", None):
        try:
            history = MigrationHistory.from_json_file(args.history)
        except FileNotFoundError:
            logger.info(f"No history at {args.history}, starting empty")

    assistant = None
    if config.llm.enabled and config.llm.api_key:
        assistant = LLMMappingAssistant.from_settings(config.llm)

    return MappingSuggestionEngine(schema, config.mapping, history=history, assistant=assistant)


def _review(session: ReviewSession, analysis: MappingAnalysis, args) -> ConfirmedMappingSet:
    """
    Replay a reviewer's decisions through the review session and confirm.

    Every column needs a decision. --auto-approve is refused unless the
    analysis is eligible for unattended execution.
    """
    session.load(analysis)
    session.begin_review()

    if args.auto_approve:
        if not analysis.auto_execution_eligible:
            raise ReviewError(
                f"Unattended run refused: estimated accuracy {analysis.estimated_accuracy:.0%} is not "
                f"eligible (mapping.auto_execution_threshold unset or not met, or UNMAPPED columns remain); "
                f"pass --decisions instead",
                details={"unmapped": analysis.unmapped_columns},
            )
        accepted = session.accept_all()
        logger.info(f"Auto-approved {len(accepted)} suggestions")
        return session.confirm(args.confirmed_by)

    decisions = _load_decisions(args.decisions)
    columns = [s.source_column for s in analysis.suggestions]

    unknown = [c for c in decisions if c not in columns]
    if unknown:
        raise ReviewError(f"Decisions name unknown columns: {', '.join(unknown)}", details={"columns": unknown})
    undecided = [c for c in columns if decisions.get(c) is None]
    if undecided:
        raise ReviewError(
            f"{len(undecided)} column(s) have no reviewer decision: {', '.join(undecided)}",
            details={"columns": undecided},
        )

    for column in columns:
        _apply_decision(session, column, decisions[column])
    return session.confirm(args.confirmed_by)


def _load_decisions(path: str) -> Dict[str, Any]:
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ReviewError(f"Decisions file not found: {path}")
    except json.JSONDecodeError as e:
        raise ReviewError(f"Decisions file is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ReviewError("Decisions file must be an object of source column -> decision")
    return data


def _apply_decision(session: ReviewSession, column: str, decision: Any) -> None:
    """accept | skip | "table.column" | {"target": "table.column", "transform": name}"""
    if decision == "accept":
        session.accept(column)
        return
    if decision == "skip":
        session.skip(column)
        return

    transform = None
    if isinstance(decision, dict):
        target = decision.get("target")
        if decision.get("transform"):
            try:
                transform = TransformType(decision["transform"])
            except ValueError:
                raise ReviewError(f"Unknown transform for {column}: {decision['transform']}")
    else:
        target = decision

    if not isinstance(target, str) or "." not in target:
        raise ReviewError(f"Unrecognized decision for {column}: {decision!r}")
    table, _, target_column = target.partition(".")
    session.override(column, table, target_column, transform=transform)


def _open_store(path: str) -> InMemoryLoader:
    try:
        return InMemoryLoader.from_json_file(path)
    except FileNotFoundError:
        logger.info(f"Target store {path} not found, starting empty")
        return InMemoryLoader(target_service=path)


def _write_json(path: str, data) -> None:
    with open(path, 'w') as f:
        json.dump(data, f, indent=2, default=str)


if __name__ == "__main__":
    sys.exit(main())
