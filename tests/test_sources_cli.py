"""
Tests for source file reading and the command line interface.
"""

import csv
import json

import pytest

from migration_engine.cli import main
from migration_engine.errors import ValidationError
from migration_engine.sources import read_rows

from conftest import SCHEMA_PATH, build_staff_rows


def write_csv(path, rows):
    with open(path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)
    return path


@pytest.fixture
def staff_csv(tmp_path):
    return write_csv(tmp_path / "staff.csv", build_staff_rows(50))


# =============================================================================
# Sources
# =============================================================================


class TestReadRows:
    def test_csv(self, staff_csv):
        rows = read_rows(staff_csv)
        assert len(rows) == 50
        assert rows[0]["first_name"] == "James"
        assert rows[0]["email"] == "User1@Example.com"

    def test_semicolon_csv(self, tmp_path):
        path = tmp_path / "export.csv"
        path.write_text("id;name\n1;Ada\n2;Grace\n")
        assert read_rows(path) == [{"id": "1", "name": "Ada"}, {"id": "2", "name": "Grace"}]

    def test_json_list(self, tmp_path):
        path = tmp_path / "export.json"
        path.write_text(json.dumps([{"id": 1}, {"id": 2}]))
        assert read_rows(path) == [{"id": 1}, {"id": 2}]

    def test_json_wrapper(self, tmp_path):
        path = tmp_path / "export.json"
        path.write_text(json.dumps({"records": [{"id": 1}], "total": 1}))
        assert read_rows(path) == [{"id": 1}]

    def test_json_scalars_rejected(self, tmp_path):
        path = tmp_path / "export.json"
        path.write_text(json.dumps([1, 2, 3]))
        with pytest.raises(ValidationError):
            read_rows(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError):
            read_rows(tmp_path / "nope.csv")


STAFF_DECISIONS = {
    "first_name": {"target": "hc_staff.first_name", "transform": "trim"},
    "last_name": {"target": "hc_staff.last_name", "transform": "trim"},
    "email": "accept",
    "phone": {"target": "hc_staff.phone", "transform": "normalize_phone"},
    "dob": {"target": "hc_staff.date_of_birth", "transform": "convert_date_to_iso"},
}


def write_decisions(path, decisions=None):
    path.write_text(json.dumps(STAFF_DECISIONS if decisions is None else decisions))
    return path


def run_args(staff_csv, store, decisions, *extra):
    return [
        "run", "--input", str(staff_csv), "--schema", str(SCHEMA_PATH), "--store", str(store),
        "--decisions", str(decisions), "--confirmed-by", "dana@example.com", *extra,
    ]


# =============================================================================
# CLI
# =============================================================================


class TestCLI:
    def test_no_command(self, capsys):
        assert main([]) == 2

    def test_profile(self, staff_csv, tmp_path, capsys):
        output = tmp_path / "dna.json"
        assert main(["profile", "--input", str(staff_csv), "--output", str(output)]) == 0

        printed = capsys.readouterr().out
        assert "Rows: 50" in printed
        assert json.loads(output.read_text())["row_count"] == 50

    def test_suggest(self, staff_csv, tmp_path, capsys):
        output = tmp_path / "analysis.json"
        decisions = tmp_path / "decisions.json"
        assert main([
            "suggest", "--input", str(staff_csv), "--schema", str(SCHEMA_PATH), "--output", str(output),
            "--decisions-out", str(decisions),
        ]) == 0
        assert "email -> hc_staff.email" in capsys.readouterr().out
        assert json.loads(output.read_text())["schema_id"] == "healthcare@1"
        assert json.loads(decisions.read_text()) == {c: None for c in STAFF_DECISIONS}

    def test_run_writes_store(self, staff_csv, tmp_path):
        store = tmp_path / "store.json"
        history = tmp_path / "history.json"
        decisions = write_decisions(tmp_path / "decisions.json")

        assert main(run_args(staff_csv, store, decisions, "--history", str(history))) == 0

        tables = json.loads(store.read_text())
        assert len(tables["hc_staff"]) == 50
        row = next(iter(tables["hc_staff"].values()))
        assert row["date_of_birth"] == "1961-02-02"
        assert len(json.loads(history.read_text())) == 1

    def test_skipped_column_not_written(self, staff_csv, tmp_path):
        store = tmp_path / "store.json"
        decisions = write_decisions(tmp_path / "decisions.json", dict(STAFF_DECISIONS, phone="skip"))

        assert main(run_args(staff_csv, store, decisions)) == 0

        rows = json.loads(store.read_text())["hc_staff"].values()
        assert all("phone" not in row for row in rows)

    def test_dry_run_leaves_store_alone(self, staff_csv, tmp_path, capsys):
        store = tmp_path / "store.json"
        decisions = write_decisions(tmp_path / "decisions.json")
        assert main(run_args(staff_csv, store, decisions, "--dry-run")) == 0
        assert not store.exists()
        assert "MIGRATION COMPLETE" in capsys.readouterr().out

    def test_undecided_column_refused(self, staff_csv, tmp_path, capsys):
        store = tmp_path / "store.json"
        decisions = write_decisions(tmp_path / "decisions.json", dict(STAFF_DECISIONS, dob=None))

        assert main(run_args(staff_csv, store, decisions)) == 1

        err = capsys.readouterr().err
        assert "Error (review_required)" in err
        assert "dob" in err
        assert not store.exists()

    def test_missing_column_refused(self, staff_csv, tmp_path, capsys):
        partial = {k: v for k, v in STAFF_DECISIONS.items() if k != "phone"}
        decisions = write_decisions(tmp_path / "decisions.json", partial)
        assert main(run_args(staff_csv, tmp_path / "store.json", decisions)) == 1
        assert "phone" in capsys.readouterr().err

    def test_unknown_column_refused(self, staff_csv, tmp_path, capsys):
        decisions = write_decisions(tmp_path / "decisions.json", dict(STAFF_DECISIONS, fax="skip"))
        assert main(run_args(staff_csv, tmp_path / "store.json", decisions)) == 1
        assert "fax" in capsys.readouterr().err

    @pytest.mark.parametrize("decision", ["maybe", {"target": "hc_staff.email", "transform": "shout"}, 3])
    def test_bad_decision_refused(self, staff_csv, tmp_path, capsys, decision):
        decisions = write_decisions(tmp_path / "decisions.json", dict(STAFF_DECISIONS, email=decision))
        assert main(run_args(staff_csv, tmp_path / "store.json", decisions)) == 1
        assert "Error (review_required)" in capsys.readouterr().err

    def test_unreadable_decisions_file(self, staff_csv, tmp_path, capsys):
        decisions = tmp_path / "decisions.json"
        decisions.write_text("[1, 2]")
        assert main(run_args(staff_csv, tmp_path / "store.json", decisions)) == 1
        assert main(run_args(staff_csv, tmp_path / "store.json", tmp_path / "absent.json")) == 1

    def test_decisions_or_auto_approve_required(self, staff_csv, tmp_path):
        with pytest.raises(SystemExit):
            main([
                "run", "--input", str(staff_csv), "--schema", str(SCHEMA_PATH),
                "--store", str(tmp_path / "store.json"), "--confirmed-by", "dana@example.com",
            ])

    def test_reviewer_identity_required(self, staff_csv, tmp_path):
        decisions = write_decisions(tmp_path / "decisions.json")
        with pytest.raises(SystemExit):
            main([
                "run", "--input", str(staff_csv), "--schema", str(SCHEMA_PATH),
                "--store", str(tmp_path / "store.json"), "--decisions", str(decisions),
            ])

    def test_auto_approve_refused_without_threshold(self, staff_csv, tmp_path, capsys):
        store = tmp_path / "store.json"
        assert main([
            "run", "--input", str(staff_csv), "--schema", str(SCHEMA_PATH), "--store", str(store),
            "--auto-approve", "--confirmed-by", "dana@example.com",
        ]) == 1
        assert "Unattended run refused" in capsys.readouterr().err
        assert not store.exists()

    def test_missing_input_is_an_error(self, tmp_path, capsys):
        assert main(["profile", "--input", str(tmp_path / "nope.csv")]) == 1
        assert "Error (validation)" in capsys.readouterr().err

    def test_rollback_from_persisted_snapshot(self, staff_csv, tmp_path):
        snapshot_dir = tmp_path / "snapshots"
        config = tmp_path / "engine.json"
        config.write_text(json.dumps({"snapshots": {"storage_dir": str(snapshot_dir)}}))
        store = tmp_path / "store.json"
        decisions = write_decisions(tmp_path / "decisions.json")

        assert main(["--config", str(config), *run_args(staff_csv, store, decisions)]) == 0
        snapshot_id = next(snapshot_dir.glob("*.json")).stem

        assert main([
            "--config", str(config), "rollback", "--snapshot-id", snapshot_id,
            "--store", str(store), "--approved-by", "ops@example.com", "--reason", "test",
        ]) == 0
        assert json.loads(store.read_text())["hc_staff"] == {}
