"""
Link table consolidation pipeline.

Builds a cleaned firm/security link table with extended validity ranges from
a raw link history (CRSP/Compustat style):
1. Load and filter raw link records
2. Collapse same-pair runs
3. Resolve overlaps on the A axis, then on the B axis
4. Compute slack to neighbors on both axes
5. Synthesize soft and extreme ranges
6. Persist ranges, resolution audit and run metadata (optional CSV export)
"""
import uuid
from argparse import ArgumentParser
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from linktable.config import LinkTableConfig
from linktable.database import LinkTableDatabase
from linktable.logger import get_logger, set_level
from linktable.models import ConfigurationError, OutputRange
from linktable.stage_1_load_filter_pipeline import RecordLoader
from linktable.stage_2_interval_collapse_pipeline import IntervalCollapser
from linktable.stage_3_overlap_resolution_pipeline import OverlapResolver
from linktable.stage_4_slack_calculation_pipeline import SlackCalculator
from linktable.stage_5_range_synthesis_pipeline import RangeSynthesizer
from linktable.utils import DateUtils, HashUtils, IDGenerator

logger = get_logger(__name__)

OUTPUT_COLUMNS = [
    "a_id", "b_id", "link_start", "link_end",
    "soft_start", "soft_end", "extreme_start", "extreme_end",
    "link_type", "link_prim", "collapsed", "truncated",
]


def build_link_ranges(rows: List[Dict[str, Any]], config: LinkTableConfig) -> Dict[str, Any]:
    """
    Run the in-memory stages on already-read rows.

    Returns a dict with `ranges`, `actions`, `malformed` and `stats`; nothing
    is persisted.
    """
    config.validate()
    stats: Dict[str, Any] = {}

    logger.info("Phase 1: Loading and filtering link records")
    loaded = RecordLoader(config).run(rows)
    stats["load"] = loaded.stats

    logger.info("Phase 2: Collapsing same-pair runs")
    collapsed = IntervalCollapser().run(loaded.records)
    stats["collapse"] = {
        "intervals": len(collapsed.intervals),
        "runs_merged": collapsed.runs_merged,
        "records_absorbed": collapsed.records_absorbed,
        "gaps_kept": collapsed.gaps_kept,
    }

    logger.info("Phase 3: Resolving overlaps")
    resolved = OverlapResolver().run(collapsed.intervals)
    stats["resolution"] = resolved.stats

    logger.info("Phase 4: Computing slack bounds")
    slack = SlackCalculator().run(resolved.intervals)
    stats["slack"] = slack.stats

    logger.info("Phase 5: Synthesizing extended ranges")
    synthesizer = RangeSynthesizer(
        preslack_request=config.preslack_days,
        slack_request=config.slack_days,
        global_min_date=config.global_min_date,
        today=config.today,
    )
    ranges = synthesizer.run(slack.bounds)
    stats["ranges"] = len(ranges)

    return {
        "ranges": ranges,
        "actions": resolved.actions,
        "malformed": loaded.malformed,
        "stats": stats,
    }


def ranges_to_frame(ranges: List[OutputRange]) -> pd.DataFrame:
    """Tabular view of the output, one row per link."""
    records = []
    for r in ranges:
        row = {name: getattr(r, name) for name in OUTPUT_COLUMNS}
        row.update(asdict(r.bounds))
        records.append(row)
    frame = pd.DataFrame.from_records(records, columns=OUTPUT_COLUMNS + [
        "max_preslack_on_b", "max_slack_on_b", "max_preslack_on_a", "max_slack_on_a",
    ])
    return frame


class LinkTablePipeline:
    """Main pipeline orchestrator: read, transform, persist."""

    def __init__(self, config: LinkTableConfig):
        config.validate()
        if config.output_path is None:
            raise ConfigurationError("No output_path configured")
        self.config = config
        self.id_generator = IDGenerator(uuid.UUID(config.id_namespace))
        self.started_at_utc = DateUtils.now_utc()

    def run(self) -> Dict[str, Any]:
        """Execute the pipeline. Returns statistics."""
        logger.info(f"Running link table pipeline: {self.config.input_path} -> {self.config.output_path}")

        rows = RecordLoader(self.config).read_rows()
        fingerprint = HashUtils.sha256_file(self.config.input_path)
        config_dict = self.config.to_dict()
        run_id = self.id_generator.generate(["run", fingerprint, config_dict])

        result = build_link_ranges(rows, self.config)
        stats = result["stats"]

        db = LinkTableDatabase(self.config.output_path)
        try:
            db.initialize_schema()
            db.begin()
            try:
                db.insert_run(run_id, self.started_at_utc, fingerprint, config_dict)
                db.insert_link_ranges(result["ranges"])
                db.insert_resolution_actions(result["actions"])
                db.insert_malformed_records(result["malformed"])
                db.finish_run(run_id, stats)
                db.commit()
            except Exception as e:
                logger.error(f"Persisting link table failed: {e}")
                db.rollback()
                raise
        finally:
            db.close()

        if self.config.export_csv_path is not None:
            ranges_to_frame(result["ranges"]).to_csv(self.config.export_csv_path, index=False)
            logger.info(f"Exported {len(result['ranges'])} ranges to {self.config.export_csv_path}")

        stats["run_id"] = run_id
        logger.info("Link table pipeline completed successfully")
        return stats


def run_pipeline(config: LinkTableConfig) -> Dict[str, Any]:
    """Run the full pipeline for a configuration."""
    return LinkTablePipeline(config).run()


def _build_config(args) -> LinkTableConfig:
    """YAML config (if any) with command line flags layered on top."""
    config = LinkTableConfig.from_yaml(args.config) if args.config is not None else LinkTableConfig()

    overrides = {
        "input_path": args.input,
        "input_table": args.input_table,
        "output_path": args.output,
        "export_csv_path": args.export_csv,
        "preslack_days": args.preslack_days,
        "slack_days": args.slack_days,
        "global_min_date": args.global_min_date,
        "today": args.today,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if args.keep_dual_class:
        overrides["exclude_dual_class"] = False
    if not overrides:
        return config

    # from_dict does the parsing; unset keys keep the YAML values
    parsed = LinkTableConfig.from_dict(overrides)
    return replace(config, **{k: getattr(parsed, k) for k in overrides})


def main(argv: Optional[List[str]] = None) -> None:
    parser = ArgumentParser(description="Build a cleaned link table with extended validity ranges.")
    parser.add_argument("--config", type=Path, default=None, help="YAML configuration file")
    parser.add_argument("--input", type=Path, default=None, help="Raw link history (CSV, or SQLite with --input-table)")
    parser.add_argument("--input-table", type=str, default=None, help="Table name when --input is a SQLite database")
    parser.add_argument("--output", type=Path, default=None, help="Output SQLite database")
    parser.add_argument("--export-csv", type=Path, default=None, help="Also write the ranges to this CSV file")
    parser.add_argument("--preslack-days", type=int, default=None, help="Requested backward extension (default: 180)")
    parser.add_argument("--slack-days", type=int, default=None, help="Requested forward extension (default: 180)")
    parser.add_argument("--global-min-date", type=str, default=None, help="Earliest output date (default: 1925-01-01)")
    parser.add_argument("--today", type=str, default=None, help="Date that open links run until (default: today)")
    parser.add_argument("--keep-dual-class", action="store_true", help="Keep secondary share class links")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args(argv)
    if args.verbose:
        set_level("DEBUG")

    config = _build_config(args)
    stats = run_pipeline(config)

    logger.info("=== Link table summary ===")
    logger.info(f"Rows read: {stats['load']['rows_read']}, kept: {stats['load']['kept']}")
    logger.info(f"Intervals after collapse: {stats['collapse']['intervals']}")
    logger.info(f"Intervals after resolution: {stats['resolution']['surviving']}")
    logger.info(f"Intervals with negative slack: {stats['slack']['negative_slack']}")
    logger.info(f"Ranges written: {stats['ranges']}")


if __name__ == "__main__":
    main()
