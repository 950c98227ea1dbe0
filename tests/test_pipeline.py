"""
End-to-end tests: CSV in, SQLite (and CSV) out.

Covers:
- scenarios from raw rows through every stage
- persisted ranges, audit rows, malformed rows and run metadata
- invariants on a generated history
- command line entry point
"""
import json
import random
import sqlite3
from dataclasses import replace
from datetime import timedelta
from itertools import combinations

import pandas as pd
import pytest

from conftest import GLOBAL_MIN, TODAY, d, raw_row
from linktable.models import ConfigurationError
from linktable.pipeline import LinkTablePipeline, build_link_ranges, main, ranges_to_frame


def _rows():
    return [
        # contiguous fragments of one pair
        raw_row("001000", "10001", "1972-01-01", "1976-12-30"),
        raw_row("001000", "10001", "1976-12-31", "1976-12-31"),
        raw_row("001000", "10001", "1977-01-01", "1977-03-30"),
        # two firms claiming the same security
        raw_row("002000", "20001", "1982-04-06", "1984-06-29"),
        raw_row("003000", "20001", "1983-12-30", "1985-08-31"),
        # open ended, no neighbors
        raw_row("004000", "40001", "1990-01-01", "E"),
        # dropped
        raw_row("005000", "50001", "1990-01-01", "1999-12-31", linktype="NR"),
        raw_row("005000", "50002", "1990-01-01", "1999-12-31", linkprim="N"),
        raw_row("006000", "60001", "bad", "1999-12-31"),
    ]


@pytest.fixture
def csv_path(tmp_path):
    path = tmp_path / "ccmxpf_lnkhist.csv"
    pd.DataFrame(_rows()).to_csv(path, index=False)
    return path


# ============================================================================
# In-memory run
# ============================================================================

class TestBuildLinkRanges:
    def test_scenarios(self, config):
        result = build_link_ranges(_rows(), config)
        ranges = {(r.a_id, r.b_id): r for r in result["ranges"]}
        assert set(ranges) == {
            ("001000", "10001"),
            ("002000", "20001"),
            ("003000", "20001"),
            ("004000", "40001"),
        }

        collapsed = ranges[("001000", "10001")]
        assert (collapsed.link_start, collapsed.link_end) == (d("1972-01-01"), d("1977-03-30"))
        assert collapsed.collapsed is True

        loser = ranges[("002000", "20001")]
        winner = ranges[("003000", "20001")]
        assert loser.link_end == d("1983-12-29")
        assert loser.truncated is True
        assert winner.link_start == d("1983-12-30")
        # the two now touch: no room to extend into each other
        assert loser.soft_end == loser.link_end
        assert winner.soft_start == winner.link_start
        assert loser.extreme_start == GLOBAL_MIN
        assert winner.extreme_end == TODAY

        open_link = ranges[("004000", "40001")]
        assert open_link.link_end == TODAY
        assert (open_link.extreme_start, open_link.extreme_end) == (GLOBAL_MIN, TODAY)
        assert open_link.soft_start == d("1990-01-01") - timedelta(days=180)

        stats = result["stats"]
        assert stats["load"]["rows_read"] == 9
        assert stats["load"]["malformed"] == 1
        assert stats["collapse"]["runs_merged"] == 1
        assert stats["resolution"]["truncated"] == 1
        assert stats["ranges"] == 4

    def test_slack_request_larger_than_gap(self, config):
        rows = [
            raw_row("001000", "10001", "1990-01-01", "1994-12-31"),
            raw_row("002000", "10001", "1995-01-31", "1999-12-31"),
        ]
        ranges = build_link_ranges(rows, replace(config, slack_days=180))["ranges"]
        first = next(r for r in ranges if r.a_id == "001000")
        assert first.bounds.max_slack_on_b == 29
        assert first.soft_end == d("1994-12-31") + timedelta(days=29)

    def test_firm_holding_a_security_between_two_spells_survives(self, config):
        rows = [
            raw_row("001000", "10001", "1970-01-01", "1975-12-31"),
            raw_row("002000", "10001", "1976-01-01", "1980-12-31"),
            raw_row("001000", "10001", "1981-01-01", "1985-12-31"),
        ]
        result = build_link_ranges(rows, config)
        spans = sorted((r.a_id, r.link_start, r.link_end) for r in result["ranges"])
        assert spans == [
            ("001000", d("1970-01-01"), d("1975-12-31")),
            ("001000", d("1981-01-01"), d("1985-12-31")),
            ("002000", d("1976-01-01"), d("1980-12-31")),
        ]
        assert result["actions"] == []
        assert result["stats"]["collapse"]["gaps_kept"] == 1

    def test_invalid_config_aborts_before_processing(self, config):
        bad = replace(config, global_min_date=d("2030-01-01"))
        with pytest.raises(ConfigurationError):
            build_link_ranges(_rows(), bad)


# ============================================================================
# Invariants on a generated history
# ============================================================================

def _generated_rows(seed=7, n=300):
    rng = random.Random(seed)
    rows = []
    for _ in range(n):
        start = d("1950-01-01") + timedelta(days=rng.randint(0, 25000))
        end = start + timedelta(days=rng.randint(0, 4000))
        end_value = "E" if end > TODAY else end.isoformat()
        rows.append(raw_row(
            f"{rng.randint(1, 12):06d}",
            str(10000 + rng.randint(1, 15)),
            start.isoformat(),
            end_value,
            linktype=rng.choice(["LC", "LU", "LS"]),
        ))
    return rows


class TestInvariants:
    @pytest.fixture
    def ranges(self, config):
        return build_link_ranges(_generated_rows(), config)["ranges"]

    def test_coverage_uniqueness(self, ranges):
        for first, second in combinations(ranges, 2):
            shares_axis = first.a_id == second.a_id or first.b_id == second.b_id
            if not shares_axis or (first.a_id, first.b_id) == (second.a_id, second.b_id):
                continue
            assert first.link_end < second.link_start or second.link_end < first.link_start

    def test_clamping(self, ranges):
        for r in ranges:
            for value in (r.soft_start, r.soft_end, r.extreme_start, r.extreme_end):
                assert GLOBAL_MIN <= value <= TODAY

    def test_monotonic_extension(self, ranges):
        for r in ranges:
            assert r.extreme_start <= r.soft_start <= r.link_start <= r.link_end
            assert r.link_end <= r.soft_end <= r.extreme_end

    def test_no_negative_slack_after_resolution(self, ranges):
        assert not any(r.bounds.has_negative() for r in ranges)


# ============================================================================
# Persisted run
# ============================================================================

class TestPipeline:
    def test_run_writes_database_and_csv(self, config, csv_path, tmp_path):
        output = tmp_path / "link_table.db"
        export = tmp_path / "link_table.csv"
        stats = LinkTablePipeline(replace(config, input_path=csv_path, output_path=output,
                                          export_csv_path=export)).run()

        assert stats["ranges"] == 4
        assert stats["run_id"]

        connection = sqlite3.connect(str(output))
        connection.row_factory = sqlite3.Row
        try:
            rows = connection.execute("SELECT * FROM link_ranges ORDER BY a_id").fetchall()
            assert [row["a_id"] for row in rows] == ["001000", "002000", "003000", "004000"]
            open_link = rows[3]
            assert open_link["link_end"] == TODAY.isoformat()
            assert open_link["max_slack_on_a"] is None

            loser = rows[1]
            assert loser["link_end"] == "1983-12-29"
            assert loser["truncated"] == 1
            assert loser["max_slack_on_b"] == 0

            actions = connection.execute("SELECT * FROM resolution_actions").fetchall()
            assert [(a["action"], a["loser_a_id"], a["winner_a_id"]) for a in actions] == [
                ("truncated", "002000", "003000"),
            ]

            malformed = connection.execute("SELECT * FROM malformed_records").fetchall()
            assert len(malformed) == 1
            assert json.loads(malformed[0]["raw_json"])["gvkey"] == "006000"

            run = connection.execute("SELECT * FROM run_metadata").fetchone()
            assert run["run_id"] == stats["run_id"]
            assert len(run["input_fingerprint"]) == 64
            assert json.loads(run["stats_json"])["ranges"] == 4
            assert json.loads(run["config_json"])["today"] == TODAY.isoformat()
        finally:
            connection.close()

        exported = pd.read_csv(export, dtype=str)
        assert len(exported) == 4
        assert list(exported.columns[:8]) == [
            "a_id", "b_id", "link_start", "link_end",
            "soft_start", "soft_end", "extreme_start", "extreme_end",
        ]

    def test_rerun_replaces_previous_output(self, config, csv_path, tmp_path):
        output = tmp_path / "link_table.db"
        pipeline_config = replace(config, input_path=csv_path, output_path=output)
        first = LinkTablePipeline(pipeline_config).run()
        second = LinkTablePipeline(pipeline_config).run()
        assert first["run_id"] == second["run_id"]

        connection = sqlite3.connect(str(output))
        try:
            assert connection.execute("SELECT COUNT(*) FROM link_ranges").fetchone()[0] == 4
            assert connection.execute("SELECT COUNT(*) FROM run_metadata").fetchone()[0] == 1
        finally:
            connection.close()

    def test_output_path_required(self, config, csv_path):
        with pytest.raises(ConfigurationError):
            LinkTablePipeline(replace(config, input_path=csv_path))

    def test_frame_columns(self, config):
        ranges = build_link_ranges(_rows(), config)["ranges"]
        frame = ranges_to_frame(ranges)
        assert len(frame) == 4
        assert "max_slack_on_b" in frame.columns


class TestCommandLine:
    def test_main(self, csv_path, tmp_path):
        output = tmp_path / "out.db"
        config_path = tmp_path / "config.yaml"
        config_path.write_text("slack_days: 30\nglobal_min_date: 1925-01-01\n", encoding="utf-8")

        main([
            "--config", str(config_path),
            "--input", str(csv_path),
            "--output", str(output),
            "--today", TODAY.isoformat(),
            "--preslack-days", "60",
        ])

        connection = sqlite3.connect(str(output))
        connection.row_factory = sqlite3.Row
        try:
            row = connection.execute(
                "SELECT * FROM link_ranges WHERE a_id = ?", ("004000",)
            ).fetchone()
            assert row["link_end"] == TODAY.isoformat()
            assert row["soft_start"] == (d("1990-01-01") - timedelta(days=60)).isoformat()
            config_json = json.loads(connection.execute("SELECT config_json FROM run_metadata").fetchone()[0])
            assert config_json["slack_days"] == 30
            assert config_json["preslack_days"] == 60
        finally:
            connection.close()
