"""
Shared fixtures for the migration engine tests.

Everything here is deterministic: a fixed clock, a generated staff export
and mappings confirmed through a real review session.
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from migration_engine.config import EngineConfig, IdentityFields  # noqa: E402
from migration_engine.executor import MigrationExecutor  # noqa: E402
from migration_engine.loaders.memory_loader import InMemoryLoader  # noqa: E402
from migration_engine.models.mapping import MappingAnalysis, MappingSuggestion  # noqa: E402
from migration_engine.models.schema import TargetSchema, TransformType  # noqa: E402
from migration_engine.services.profiler import SourceProfiler, is_valid_npi  # noqa: E402
from migration_engine.services.review import ReviewSession  # noqa: E402

SCHEMA_PATH = REPO_ROOT / "config" / "target_schema.healthcare.v1.json"

FIRST_NAMES = ["James", "Mary", "Robert", "Patricia", "Michael", "Linda", "David", "Barbara", "Thomas", "Susan"]
LAST_NAMES = ["Anderson", "Brooks", "Castillo", "Dawson", "Ellison"]

STAFF_MAPPINGS = {
    "first_name": ("hc_staff", "first_name", TransformType.TRIM),
    "last_name": ("hc_staff", "last_name", TransformType.TRIM),
    "email": ("hc_staff", "email", TransformType.LOWERCASE),
    "phone": ("hc_staff", "phone", TransformType.NORMALIZE_PHONE),
    "dob": ("hc_staff", "date_of_birth", TransformType.CONVERT_DATE_TO_ISO),
}


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 9, 0, 0))


# =============================================================================
# Schema and source data
# =============================================================================


@pytest.fixture
def schema():
    return TargetSchema.from_json_file(str(SCHEMA_PATH))


@pytest.fixture
def npi():
    """Build a valid NPI from a nine-digit prefix by searching the check digit."""

    def _make(prefix: str) -> str:
        for digit in "0123456789":
            if is_valid_npi(prefix + digit):
                return prefix + digit
        raise AssertionError(f"No check digit for {prefix}")

    return _make


def build_staff_rows(count: int):
    rows = []
    for i in range(1, count + 1):
        rows.append({
            "first_name": FIRST_NAMES[(i - 1) % len(FIRST_NAMES)],
            "last_name": LAST_NAMES[((i - 1) // len(FIRST_NAMES)) % len(LAST_NAMES)],
            "email": f"User{i}@Example.com",
            "phone": f"555-{i:03d}-{1000 + i}",
            "dob": f"{(i % 12) + 1:02d}/{(i % 28) + 1:02d}/{1960 + i % 30}",
        })
    return rows


@pytest.fixture
def staff_rows():
    return build_staff_rows(50)


@pytest.fixture
def make_rows():
    return build_staff_rows


# =============================================================================
# Review
# =============================================================================


@pytest.fixture
def confirm_mappings(schema):
    """
    Confirm a column -> (table, column, transform) mapping through a review session.

    Returns (ConfirmedMappingSet, ReviewSession).
    """

    def _confirm(mappings=None, confirmed_by="reviewer@example.com"):
        mappings = mappings or STAFF_MAPPINGS
        analysis = MappingAnalysis(
            suggestions=[
                MappingSuggestion(
                    source_column=source,
                    target_table=table,
                    target_column=column,
                    confidence=0.9,
                    reasons=["fixture"],
                    transform=transform,
                )
                for source, (table, column, transform) in mappings.items()
            ],
            schema_id=schema.schema_id,
        )
        session = ReviewSession(schema)
        session.load(analysis)
        session.begin_review()
        return session.confirm(confirmed_by), session

    return _confirm


@pytest.fixture
def profile():
    def _profile(rows):
        return SourceProfiler().generate_dna(rows)

    return _profile


# =============================================================================
# Executor
# =============================================================================


@pytest.fixture
def engine_config():
    config = EngineConfig()
    config.execution.worker_count = 1
    config.execution.chunk_size = 10
    return config


@pytest.fixture
def identity_config(engine_config):
    engine_config.dedup.identity_tables = {"hc_staff": IdentityFields()}
    return engine_config


@pytest.fixture
def make_executor(schema, engine_config, clock):
    """Executor over an in-memory store; returns (executor, loader)."""

    def _make(config=None, tables=None, unique_columns=None):
        loader = InMemoryLoader(tables=tables, unique_columns=unique_columns)
        executor = MigrationExecutor(loader, schema, config=config or engine_config, clock=clock)
        return executor, loader

    return _make
