from dataclasses import asdict, dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

import yaml

from linktable.models import ConfigurationError, LinkPrimacy, LinkType
from linktable.utils import DateUtils

# ===| DEFAULTS |===

DEFAULT_EXCLUDED_LINK_TYPES = frozenset({
    LinkType.LD, LinkType.LN, LinkType.LX, LinkType.NR, LinkType.NU,
})
DEFAULT_DUAL_CLASS_PRIMACY = frozenset({LinkPrimacy.JOINER_SECONDARY, LinkPrimacy.SECONDARY})
DEFAULT_OPEN_END_MARKERS = frozenset({"E", "C", "."})
DEFAULT_GLOBAL_MIN_DATE = date(1925, 1, 1)

# logical field -> source column (CCM link history naming)
DEFAULT_COLUMNS: Dict[str, str] = {
    "a_id": "gvkey",
    "b_id": "lpermno",
    "link_start": "linkdt",
    "link_end": "linkenddt",
    "link_type": "linktype",
    "link_prim": "linkprim",
    "sub_id": "liid",
}
REQUIRED_COLUMNS = ("a_id", "b_id", "link_start", "link_end", "link_type")


@dataclass
class LinkTableConfig:
    """Configuration for the link table pipeline."""
    input_path: Optional[Path] = None
    output_path: Optional[Path] = None
    input_table: Optional[str] = None  # read from a SQLite table instead of CSV
    export_csv_path: Optional[Path] = None
    id_namespace: str = "7d3f5a52-3c1e-4b8e-9a51-0c5e2a7f9b10"

    # Extension requests in days
    preslack_days: int = 180
    slack_days: int = 180

    # Filtering
    exclude_link_types: FrozenSet[str] = DEFAULT_EXCLUDED_LINK_TYPES
    exclude_dual_class: bool = True
    dual_class_primacy: FrozenSet[str] = DEFAULT_DUAL_CLASS_PRIMACY
    open_end_markers: FrozenSet[str] = DEFAULT_OPEN_END_MARKERS

    # Global date bounds; today defaults to the current date in `timezone`
    global_min_date: date = DEFAULT_GLOBAL_MIN_DATE
    today: Optional[date] = None
    timezone: str = "UTC"

    columns: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_COLUMNS))

    def __post_init__(self):
        if self.today is None:
            self.today = DateUtils.today(self.timezone)

    @classmethod
    def from_yaml(cls, path: Path) -> "LinkTableConfig":
        """Load configuration from a YAML file."""
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Expected YAML top-level mapping (dict), got {type(data).__name__}")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LinkTableConfig":
        """Create from dictionary, parsing paths, dates and code sets."""
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")

        kwargs: Dict[str, Any] = {}
        for key in ("input_path", "output_path", "export_csv_path"):
            if data.get(key) is not None:
                kwargs[key] = Path(data[key])
        for key in ("input_table", "id_namespace", "timezone"):
            if data.get(key) is not None:
                kwargs[key] = str(data[key])
        for key in ("preslack_days", "slack_days"):
            if data.get(key) is not None:
                kwargs[key] = _as_int(key, data[key])
        if data.get("exclude_dual_class") is not None:
            kwargs["exclude_dual_class"] = bool(data["exclude_dual_class"])
        for key in ("exclude_link_types", "dual_class_primacy", "open_end_markers"):
            if data.get(key) is not None:
                kwargs[key] = _as_code_set(key, data[key])
        for key in ("global_min_date", "today"):
            if data.get(key) is not None:
                kwargs[key] = _as_date(key, data[key])
        if data.get("columns") is not None:
            if not isinstance(data["columns"], dict):
                raise ConfigurationError("'columns' must be a mapping of field -> source column")
            columns = dict(DEFAULT_COLUMNS)
            columns.update({str(k): str(v) for k, v in data["columns"].items()})
            kwargs["columns"] = columns

        return cls(**kwargs)

    def validate(self) -> None:
        """Reject configurations that cannot produce a meaningful table."""
        if self.today < self.global_min_date:
            raise ConfigurationError(
                f"global_min_date {self.global_min_date} is after today {self.today}"
            )
        if self.slack_days < 0:
            raise ConfigurationError(f"slack_days must be non-negative, got {self.slack_days}")

        unknown_fields = set(self.columns) - set(DEFAULT_COLUMNS)
        if unknown_fields:
            raise ConfigurationError(f"Unknown column mapping fields: {sorted(unknown_fields)}")
        for name in REQUIRED_COLUMNS:
            if not self.columns.get(name):
                raise ConfigurationError(f"Missing source column for '{name}'")

        if self.input_path is not None and not self.input_path.exists():
            raise ConfigurationError(f"Input file not found: {self.input_path}")

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view, stored with every run."""
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, (Path, date)):
                data[key] = str(value)
            elif isinstance(value, frozenset):
                data[key] = sorted(str(v) for v in value)
        return data


def _as_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"'{key}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"'{key}' must be an integer, got {value!r}") from e


def _as_code_set(key: str, value: Any) -> FrozenSet[str]:
    if isinstance(value, str):
        value = [v for v in value.split(",")]
    if not isinstance(value, (list, tuple, set, frozenset)):
        raise ConfigurationError(f"'{key}' must be a list of codes")
    return frozenset(str(v).strip().upper() for v in value if str(v).strip())


def _as_date(key: str, value: Any) -> date:
    try:
        return DateUtils.parse(value)
    except ValueError as e:
        raise ConfigurationError(f"'{key}' is not a valid date: {value!r}") from e
