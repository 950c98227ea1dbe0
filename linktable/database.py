import math
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from linktable.logger import get_logger
from linktable.models import MalformedRecord, OutputRange, ResolutionAction
from linktable.utils import DateUtils, canonical_json

logger = get_logger(__name__)


class Database:
    """Interface for the SQLite database."""

    def __init__(self, database_path: Path):
        self.database_path = database_path
        logger.info(f"Opening database {str(database_path)}")
        self.connection = sqlite3.connect(str(database_path))
        self.connection.row_factory = sqlite3.Row
        self._in_transaction = False

    def begin(self):
        """Begin transaction."""
        self._in_transaction = True
        self.connection.execute("BEGIN TRANSACTION")

    def rollback(self):
        """Rollback current transaction."""
        self.connection.rollback()
        self._in_transaction = False

    def commit(self):
        """Commit transaction."""
        if not self._in_transaction:
            raise RuntimeError("Cannot commit if not in transaction")
        self.connection.commit()
        self._in_transaction = False

    def close(self):
        """Close database connection."""
        self.connection.close()

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        return self.connection.execute(sql, params)

    def executemany(self, sql: str, params_list: List[tuple]) -> sqlite3.Cursor:
        return self.connection.executemany(sql, params_list)


def _bound(value: float) -> Optional[int]:
    """UNBOUNDED slack is stored as NULL."""
    return None if math.isinf(value) else int(value)


class LinkTableDatabase(Database):
    """Output tables of the link table pipeline."""

    TABLES = [
        "run_metadata",
        "link_ranges",
        "resolution_actions",
        "malformed_records",
    ]

    def drop_tables(self):
        """Drop existing output tables (for re-run)."""
        for table in reversed(self.TABLES):
            self.execute(f"DROP TABLE IF EXISTS {table}")
        logger.info("Dropped existing link table output")

    def initialize_schema(self):
        """Create output tables and indices."""
        self.drop_tables()

        self.execute("""
            CREATE TABLE run_metadata (
                run_id TEXT PRIMARY KEY,
                started_at_utc TEXT NOT NULL,
                finished_at_utc TEXT,
                input_fingerprint TEXT,
                config_json TEXT NOT NULL,
                stats_json TEXT
            )
        """)

        self.execute("""
            CREATE TABLE link_ranges (
                a_id TEXT NOT NULL,
                b_id TEXT NOT NULL,
                link_start TEXT NOT NULL,
                link_end TEXT NOT NULL,
                soft_start TEXT NOT NULL,
                soft_end TEXT NOT NULL,
                extreme_start TEXT NOT NULL,
                extreme_end TEXT NOT NULL,
                link_type TEXT,
                link_prim TEXT,
                collapsed INTEGER NOT NULL,
                truncated INTEGER NOT NULL,
                max_preslack_on_a INTEGER,
                max_slack_on_a INTEGER,
                max_preslack_on_b INTEGER,
                max_slack_on_b INTEGER,
                PRIMARY KEY (a_id, b_id, link_start)
            )
        """)
        self.execute("CREATE INDEX idx_link_ranges_b ON link_ranges(b_id, soft_start, soft_end)")

        self.execute("""
            CREATE TABLE resolution_actions (
                action_index INTEGER PRIMARY KEY,
                axis TEXT NOT NULL,
                axis_value TEXT NOT NULL,
                action TEXT NOT NULL,
                winner_a_id TEXT,
                winner_b_id TEXT,
                loser_a_id TEXT NOT NULL,
                loser_b_id TEXT NOT NULL,
                loser_start TEXT NOT NULL,
                loser_end_before TEXT NOT NULL,
                loser_end_after TEXT
            )
        """)
        self.execute("CREATE INDEX idx_actions_action ON resolution_actions(action)")

        self.execute("""
            CREATE TABLE malformed_records (
                source_row INTEGER,
                reason TEXT NOT NULL,
                raw_json TEXT NOT NULL
            )
        """)
        self.connection.commit()

    # --- Run metadata ---

    def insert_run(self, run_id: str, started_at_utc: str, input_fingerprint: Optional[str], config: Dict[str, Any]):
        self.execute(
            "INSERT INTO run_metadata (run_id, started_at_utc, input_fingerprint, config_json) VALUES (?, ?, ?, ?)",
            (run_id, started_at_utc, input_fingerprint, canonical_json(config)),
        )

    def finish_run(self, run_id: str, stats: Dict[str, Any]):
        self.execute(
            "UPDATE run_metadata SET finished_at_utc = ?, stats_json = ? WHERE run_id = ?",
            (DateUtils.now_utc(), canonical_json(stats), run_id),
        )

    # --- Output ---

    def insert_link_ranges(self, ranges: List[OutputRange]):
        self.executemany("""
            INSERT INTO link_ranges (
                a_id, b_id, link_start, link_end, soft_start, soft_end, extreme_start, extreme_end,
                link_type, link_prim, collapsed, truncated,
                max_preslack_on_a, max_slack_on_a, max_preslack_on_b, max_slack_on_b
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            (
                r.a_id, r.b_id,
                DateUtils.format(r.link_start), DateUtils.format(r.link_end),
                DateUtils.format(r.soft_start), DateUtils.format(r.soft_end),
                DateUtils.format(r.extreme_start), DateUtils.format(r.extreme_end),
                r.link_type, r.link_prim, int(r.collapsed), int(r.truncated),
                _bound(r.bounds.max_preslack_on_a), _bound(r.bounds.max_slack_on_a),
                _bound(r.bounds.max_preslack_on_b), _bound(r.bounds.max_slack_on_b),
            )
            for r in ranges
        ])

    def insert_resolution_actions(self, actions: List[ResolutionAction]):
        self.executemany("""
            INSERT INTO resolution_actions (
                action_index, axis, axis_value, action, winner_a_id, winner_b_id,
                loser_a_id, loser_b_id, loser_start, loser_end_before, loser_end_after
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            (
                i, a.axis, a.axis_value, a.action,
                a.winner_pair[0] if a.winner_pair else None,
                a.winner_pair[1] if a.winner_pair else None,
                a.loser_pair[0], a.loser_pair[1],
                DateUtils.format(a.loser_start), DateUtils.format(a.loser_end_before),
                DateUtils.format(a.loser_end_after),
            )
            for i, a in enumerate(actions)
        ])

    def insert_malformed_records(self, errors: List[MalformedRecord]):
        self.executemany(
            "INSERT INTO malformed_records (source_row, reason, raw_json) VALUES (?, ?, ?)",
            [(e.source_row, e.reason, canonical_json(e.raw)) for e in errors],
        )

