"""
Stage 4: Slack Calculator

For each surviving interval, measures how many days it could be pushed
backwards (preslack) or forwards (slack) before touching its neighbor on the
same A value and on the same B value. Intervals without a neighbor in a
direction get UNBOUNDED. Negative gaps come from overlaps left in the source
and are kept as-is; they are only clamped when ranges are synthesized.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from linktable.logger import get_logger
from linktable.models import UNBOUNDED, Axis, ResolvedInterval, SlackBounds
from linktable.stage_2_interval_collapse_pipeline import interval_sort_key
from linktable.utils import DateUtils

logger = get_logger(__name__)


def compute_axis_slack(intervals: Sequence[ResolvedInterval], axis: Axis) -> List[Tuple[float, float]]:
    """
    Return (max_preslack, max_slack) for every interval, by position.

    Neighbors are the previous and next intervals sharing the same value on
    `axis`, in (link_start, link_end, pair) order.
    """
    groups: Dict[str, List[int]] = defaultdict(list)
    for index, interval in enumerate(intervals):
        groups[interval.axis_value(axis)].append(index)

    result: List[Tuple[float, float]] = [(UNBOUNDED, UNBOUNDED)] * len(intervals)
    for indices in groups.values():
        ordered = sorted(indices, key=lambda k: interval_sort_key(intervals[k]))
        for position, index in enumerate(ordered):
            current = intervals[index]
            preslack: float = UNBOUNDED
            slack: float = UNBOUNDED
            if position > 0:
                previous = intervals[ordered[position - 1]]
                preslack = DateUtils.days_between(previous.link_end, current.link_start) - 1
            if position < len(ordered) - 1:
                following = intervals[ordered[position + 1]]
                slack = DateUtils.days_between(current.link_end, following.link_start) - 1
            result[index] = (preslack, slack)
    return result


@dataclass
class SlackResult:
    bounds: List[Tuple[ResolvedInterval, SlackBounds]]
    stats: Dict[str, int] = field(default_factory=dict)


class SlackCalculator:
    """Runs the per-axis gap computation on both axes and pairs up the results."""

    def run(self, intervals: Sequence[ResolvedInterval]) -> SlackResult:
        on_a = compute_axis_slack(intervals, Axis.A)
        on_b = compute_axis_slack(intervals, Axis.B)

        bounds: List[Tuple[ResolvedInterval, SlackBounds]] = []
        negative = 0
        for interval, (pre_a, post_a), (pre_b, post_b) in zip(intervals, on_a, on_b):
            slack_bounds = SlackBounds(
                max_preslack_on_b=pre_b,
                max_slack_on_b=post_b,
                max_preslack_on_a=pre_a,
                max_slack_on_a=post_a,
            )
            if slack_bounds.has_negative():
                negative += 1
                logger.warning(
                    f"Negative slack for {interval.pair} [{interval.link_start}, {interval.link_end}]: "
                    f"pre A/B={pre_a}/{pre_b}, post A/B={post_a}/{post_b}; extension disabled"
                )
            bounds.append((interval, slack_bounds))

        unbounded = sum(
            1 for _, b in bounds if b.max_preslack == UNBOUNDED and b.max_slack == UNBOUNDED
        )
        logger.info(
            f"Computed slack for {len(bounds)} intervals "
            f"({unbounded} fully unbounded, {negative} with negative slack)"
        )
        return SlackResult(bounds=bounds, stats={
            "intervals": len(bounds),
            "fully_unbounded": unbounded,
            "negative_slack": negative,
        })
