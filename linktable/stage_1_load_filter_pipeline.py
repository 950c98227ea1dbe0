"""
Stage 1: Record Loader/Filter

Reads the raw link history and produces normalized LinkRecords:
1. Map source columns onto logical link fields
2. Drop excluded link types, dual-class qualifiers and rows without a B-side id
3. Replace open-ended end dates with today
4. Report and skip malformed rows
5. Sort deterministically by (a_id, link_start, link_end, b_id)
"""
import sqlite3
from contextlib import closing
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from linktable.config import LinkTableConfig
from linktable.logger import get_logger
from linktable.models import ConfigurationError, LinkRecord, MalformedRecord
from linktable.utils import DateUtils

logger = get_logger(__name__)


@dataclass
class LoadResult:
    """Output of the loader: kept records plus skipped rows and counters."""
    records: List[LinkRecord]
    malformed: List[MalformedRecord] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)


def _is_null(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def normalize_id(value: Any) -> Optional[str]:
    """Identifiers become stripped strings; 10001.0 becomes '10001'."""
    if _is_null(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    s = str(value).strip()
    if s.endswith(".0") and s[:-2].isdigit():
        s = s[:-2]
    return s


class RecordLoader:
    """Reads raw link rows from CSV or SQLite and normalizes them."""

    def __init__(self, config: LinkTableConfig):
        self.config = config
        self.columns = config.columns

    # ---| Sources |---

    def read_rows(self) -> List[Dict[str, Any]]:
        """Read every raw row from the configured source."""
        path = self.config.input_path
        if path is None:
            raise ConfigurationError("No input_path configured")

        if self.config.input_table:
            logger.info(f"Reading table '{self.config.input_table}' from {path}")
            with closing(sqlite3.connect(str(path))) as connection:
                exists = connection.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
                    (self.config.input_table,),
                ).fetchone()
                if exists is None:
                    raise ConfigurationError(f"Input table '{self.config.input_table}' not found in {path}")
                frame = pd.read_sql_query(f'SELECT * FROM "{self.config.input_table}"', connection)
        else:
            logger.info(f"Reading CSV {path}")
            frame = pd.read_csv(path, dtype=str)

        frame.columns = [str(c).strip().lower() for c in frame.columns]
        missing = [
            self.columns[name] for name in ("a_id", "b_id", "link_start", "link_end", "link_type")
            if self.columns[name].lower() not in frame.columns
        ]
        if missing:
            raise ConfigurationError(f"Input is missing required columns: {missing}")

        logger.info(f"Read {len(frame)} raw link rows")
        return frame.to_dict(orient="records")

    # ---| Normalization |---

    def run(self, rows: Iterable[Dict[str, Any]]) -> LoadResult:
        """Filter and normalize raw rows."""
        stats = {
            "rows_read": 0,
            "excluded_link_type": 0,
            "excluded_dual_class": 0,
            "missing_b_id": 0,
            "malformed": 0,
            "kept": 0,
        }
        records: List[LinkRecord] = []
        malformed: List[MalformedRecord] = []

        for i, row in enumerate(rows):
            stats["rows_read"] += 1
            try:
                record = self._normalize_row(i, row, stats)
            except MalformedRecord as e:
                stats["malformed"] += 1
                malformed.append(e)
                logger.warning(f"Skipping malformed link record: {e}")
                continue
            if record is not None:
                records.append(record)

        records.sort(key=lambda r: (r.a_id, r.link_start, r.link_end, r.b_id))
        stats["kept"] = len(records)
        logger.info(
            f"Kept {stats['kept']} of {stats['rows_read']} rows "
            f"({stats['excluded_link_type']} excluded link type, "
            f"{stats['excluded_dual_class']} dual class, "
            f"{stats['missing_b_id']} without B id, {stats['malformed']} malformed)"
        )
        return LoadResult(records=records, malformed=malformed, stats=stats)

    def _field(self, row: Dict[str, Any], name: str) -> Any:
        column = self.columns.get(name)
        if not column:
            return None
        if column in row:
            return row[column]
        return row.get(column.lower())

    def _normalize_row(self, index: int, row: Dict[str, Any], stats: Dict[str, int]) -> Optional[LinkRecord]:
        """Return a LinkRecord, None if filtered out, or raise MalformedRecord."""
        raw = {k: (None if _is_null(v) else str(v)) for k, v in row.items()}

        link_type_raw = self._field(row, "link_type")
        link_type = "" if _is_null(link_type_raw) else str(link_type_raw).strip().upper()
        if link_type in self.config.exclude_link_types:
            stats["excluded_link_type"] += 1
            return None

        link_prim_raw = self._field(row, "link_prim")
        link_prim = None if _is_null(link_prim_raw) else str(link_prim_raw).strip().upper()
        if self.config.exclude_dual_class and link_prim in self.config.dual_class_primacy:
            stats["excluded_dual_class"] += 1
            return None

        b_id = normalize_id(self._field(row, "b_id"))
        if b_id is None:
            stats["missing_b_id"] += 1
            return None

        a_id = normalize_id(self._field(row, "a_id"))
        if a_id is None:
            raise MalformedRecord("missing A-side identifier", index, raw)

        start_raw = self._field(row, "link_start")
        if _is_null(start_raw):
            raise MalformedRecord("missing link start date", index, raw)
        try:
            link_start = DateUtils.parse(start_raw)
        except ValueError as e:
            raise MalformedRecord(f"bad link start date {start_raw!r}", index, raw) from e

        link_end = self._parse_end(self._field(row, "link_end"), index, raw)
        if link_start > link_end:
            raise MalformedRecord(f"link start {link_start} is after link end {link_end}", index, raw)

        return LinkRecord(
            a_id=a_id,
            b_id=b_id,
            link_start=link_start,
            link_end=link_end,
            link_type=link_type,
            link_prim=link_prim,
            sub_id=normalize_id(self._field(row, "sub_id")),
            source_row=index,
        )

    def _parse_end(self, value: Any, index: int, raw: Dict[str, Any]) -> date:
        """Open-ended links run until today."""
        if _is_null(value) or str(value).strip().upper() in self.config.open_end_markers:
            return self.config.today
        try:
            return DateUtils.parse(value)
        except ValueError as e:
            raise MalformedRecord(f"bad link end date {value!r}", index, raw) from e
