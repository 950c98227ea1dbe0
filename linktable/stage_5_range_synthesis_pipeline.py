"""
Stage 5: Range Synthesizer

Turns slack bounds into two extended ranges per link:
- soft: at most the requested number of days, and never past a neighbor
- extreme: as far as the neighbors allow
Both are clamped to [global_min_date, today].

Adjacent links on the same axis each extend into the gap between them, so
their extreme ranges may overlap each other. Consumers joining on extreme
ranges have to expect that.
"""
from datetime import date
from typing import Iterable, List, Tuple

from linktable.logger import get_logger
from linktable.models import OutputRange, ResolvedInterval, SlackBounds
from linktable.utils import DateUtils

logger = get_logger(__name__)


def _usable(value: float) -> float:
    """Negative bounds disable extension rather than shrink the link."""
    return max(0, value)


class RangeSynthesizer:
    """Builds OutputRange rows from resolved intervals and their slack bounds."""

    def __init__(self, preslack_request: int, slack_request: int, global_min_date: date, today: date):
        self.preslack_request = abs(preslack_request)
        self.slack_request = slack_request
        self.global_min_date = global_min_date
        self.today = today

    def synthesize(self, interval: ResolvedInterval, bounds: SlackBounds) -> OutputRange:
        pre_a = _usable(bounds.max_preslack_on_a)
        pre_b = _usable(bounds.max_preslack_on_b)
        post_a = _usable(bounds.max_slack_on_a)
        post_b = _usable(bounds.max_slack_on_b)

        soft_back = min(self.preslack_request, pre_a, pre_b)
        soft_forward = min(self.slack_request, post_a, post_b)
        extreme_back = min(pre_a, pre_b)
        extreme_forward = min(post_a, post_b)

        return OutputRange(
            a_id=interval.a_id,
            b_id=interval.b_id,
            link_start=interval.link_start,
            link_end=interval.link_end,
            soft_start=self._shift(interval.link_start, -soft_back),
            soft_end=self._shift(interval.link_end, soft_forward),
            extreme_start=self._shift(interval.link_start, -extreme_back),
            extreme_end=self._shift(interval.link_end, extreme_forward),
            link_type=interval.link_type,
            link_prim=interval.link_prim,
            collapsed=interval.collapsed,
            truncated=interval.truncated,
            bounds=bounds,
        )

    def run(self, bounded: Iterable[Tuple[ResolvedInterval, SlackBounds]]) -> List[OutputRange]:
        ranges = [self.synthesize(interval, bounds) for interval, bounds in bounded]
        logger.info(
            f"Synthesized {len(ranges)} ranges (preslack {self.preslack_request}d, "
            f"slack {self.slack_request}d, bounds [{self.global_min_date}, {self.today}])"
        )
        return ranges

    def _shift(self, value: date, days: float) -> date:
        return DateUtils.shift_clamped(value, days, self.global_min_date, self.today)
