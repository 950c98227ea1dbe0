"""
Record types, enums and errors shared by the link table stages.

Lifecycle of a link:
    LinkRecord -> ConsolidatedInterval -> ResolvedInterval -> SlackBounds -> OutputRange

All records are frozen; stages derive new records with dataclasses.replace.
"""
import math
from dataclasses import dataclass
from datetime import date
from enum import StrEnum
from typing import Optional, Tuple


# Slack value for an interval with no neighbor in that direction
UNBOUNDED: float = math.inf

Pair = Tuple[str, str]


# ===| ENUMS |===

class Axis(StrEnum):
    """Identifier axis of the many-to-many link."""
    A = "a"  # firm side (e.g. GVKEY)
    B = "b"  # security side (e.g. PERMNO)


class ResolutionActionType(StrEnum):
    """What the overlap resolver did to an interval."""
    TRUNCATED = "truncated"
    DELETED_NESTED = "deleted_nested"
    DELETED_SUPERSEDED = "deleted_superseded"
    AMBIGUOUS_OVERLAP = "ambiguous_overlap"
    MERGED_SAME_PAIR = "merged_same_pair"


class LinkType(StrEnum):
    """CCM link type codes."""
    LC = "LC"  # confirmed by research
    LU = "LU"  # unconfirmed but usable
    LS = "LS"  # valid for this security only
    LD = "LD"  # duplicate link
    LX = "LX"  # non-US exchange security
    LN = "LN"  # no link available
    NR = "NR"  # not researched
    NU = "NU"  # not researched, unusable


class LinkPrimacy(StrEnum):
    """CCM link primacy qualifiers."""
    PRIMARY = "P"
    PRIMARY_CANDIDATE = "C"
    JOINER_SECONDARY = "J"
    SECONDARY = "N"


# ===| ERRORS |===

class LinkTableError(Exception):
    """Base error for the link table pipeline."""


class ConfigurationError(LinkTableError):
    """Invalid configuration; raised before any record is processed."""


class MalformedRecord(LinkTableError):
    """A raw row that cannot be turned into a LinkRecord."""

    def __init__(self, reason: str, source_row: Optional[int] = None, raw: Optional[dict] = None):
        super().__init__(reason)
        self.reason = reason
        self.source_row = source_row
        self.raw = raw or {}

    def __str__(self):
        if self.source_row is None:
            return self.reason
        return f"row {self.source_row}: {self.reason}"


# ===| RECORDS |===

@dataclass(frozen=True)
class LinkRecord:
    """A normalized raw link: open end dates already replaced by today."""
    a_id: str
    b_id: str
    link_start: date
    link_end: date
    link_type: str
    link_prim: Optional[str] = None
    sub_id: Optional[str] = None
    source_row: Optional[int] = None

    @property
    def pair(self) -> Pair:
        return (self.a_id, self.b_id)


@dataclass(frozen=True)
class ConsolidatedInterval:
    """A run of same-pair records merged into one span."""
    a_id: str
    b_id: str
    link_start: date
    link_end: date
    link_type: str
    link_prim: Optional[str] = None
    sub_id: Optional[str] = None
    collapsed: bool = False
    source_count: int = 1

    @property
    def pair(self) -> Pair:
        return (self.a_id, self.b_id)

    def axis_value(self, axis: Axis) -> str:
        return self.a_id if axis == Axis.A else self.b_id


@dataclass(frozen=True)
class ResolvedInterval(ConsolidatedInterval):
    """A consolidated interval that survived overlap resolution."""
    truncated: bool = False

    @classmethod
    def from_consolidated(cls, interval: ConsolidatedInterval) -> "ResolvedInterval":
        return cls(
            a_id=interval.a_id,
            b_id=interval.b_id,
            link_start=interval.link_start,
            link_end=interval.link_end,
            link_type=interval.link_type,
            link_prim=interval.link_prim,
            sub_id=interval.sub_id,
            collapsed=interval.collapsed,
            source_count=interval.source_count,
        )


@dataclass(frozen=True)
class ResolutionAction:
    """Audit entry for one overlap resolution decision."""
    axis: str
    axis_value: str
    action: str
    winner_pair: Optional[Pair]
    loser_pair: Pair
    loser_start: date
    loser_end_before: date
    loser_end_after: Optional[date]


@dataclass(frozen=True)
class SlackBounds:
    """Gap in days to the nearest neighbor, per axis and direction."""
    max_preslack_on_b: float = UNBOUNDED
    max_slack_on_b: float = UNBOUNDED
    max_preslack_on_a: float = UNBOUNDED
    max_slack_on_a: float = UNBOUNDED

    @property
    def max_preslack(self) -> float:
        return min(self.max_preslack_on_a, self.max_preslack_on_b)

    @property
    def max_slack(self) -> float:
        return min(self.max_slack_on_a, self.max_slack_on_b)

    def has_negative(self) -> bool:
        return min(self.max_preslack, self.max_slack) < 0


@dataclass(frozen=True)
class OutputRange:
    """Final linkage row with soft and extreme extended ranges."""
    a_id: str
    b_id: str
    link_start: date
    link_end: date
    soft_start: date
    soft_end: date
    extreme_start: date
    extreme_end: date
    link_type: str
    link_prim: Optional[str]
    collapsed: bool
    truncated: bool
    bounds: SlackBounds
