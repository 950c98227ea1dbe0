"""
Stage 3: Overlap Resolver

Enforces that, for every value of an identifier axis, no two different pairs
claim the same day. Applied to the A axis first and then to the B axis; the
second pass only ever shortens or removes intervals, so it cannot reintroduce
an overlap on the first axis.

Max rule, comparing each interval with the last survivor in
(link_start, link_end, pair) order:
- no overlap: keep both
- identical dates: keep the one sorting second (larger pair id)
- later one ends no earlier: cut the earlier one to end the day before
- later one nested inside the earlier one: drop the later one
"""
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Dict, Iterable, List, Tuple

from linktable.logger import get_logger
from linktable.models import (
    Axis,
    ConsolidatedInterval,
    ResolutionAction,
    ResolutionActionType,
    ResolvedInterval,
)
from linktable.stage_2_interval_collapse_pipeline import interval_sort_key

logger = get_logger(__name__)

ONE_DAY = timedelta(days=1)


def output_sort_key(interval: ConsolidatedInterval):
    return (interval.a_id, interval.link_start, interval.link_end, interval.b_id)


@dataclass
class ResolutionResult:
    intervals: List[ResolvedInterval]
    actions: List[ResolutionAction] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)


class OverlapResolver:
    """Applies the max rule per axis value, A axis then B axis."""

    AXES: Tuple[Axis, ...] = (Axis.A, Axis.B)

    def run(self, intervals: Iterable[ConsolidatedInterval]) -> ResolutionResult:
        current = [
            i if isinstance(i, ResolvedInterval) else ResolvedInterval.from_consolidated(i)
            for i in intervals
        ]
        actions: List[ResolutionAction] = []

        for axis in self.AXES:
            current, axis_actions = self.resolve_axis(current, axis)
            actions.extend(axis_actions)

        current.sort(key=output_sort_key)
        stats = {action_type.value: 0 for action_type in ResolutionActionType}
        for action in actions:
            stats[action.action] += 1
        stats["surviving"] = len(current)

        logger.info(
            f"Overlap resolution kept {len(current)} intervals "
            f"({stats[ResolutionActionType.TRUNCATED]} truncated, "
            f"{stats[ResolutionActionType.DELETED_NESTED] + stats[ResolutionActionType.DELETED_SUPERSEDED]} deleted, "
            f"{stats[ResolutionActionType.AMBIGUOUS_OVERLAP]} ambiguous)"
        )
        return ResolutionResult(intervals=current, actions=actions, stats=stats)

    def resolve_axis(
            self,
            intervals: List[ResolvedInterval],
            axis: Axis,
    ) -> Tuple[List[ResolvedInterval], List[ResolutionAction]]:
        """Resolve every axis value with more than one distinct pair."""
        groups: Dict[str, List[ResolvedInterval]] = defaultdict(list)
        for interval in intervals:
            groups[interval.axis_value(axis)].append(interval)

        resolved: List[ResolvedInterval] = []
        actions: List[ResolutionAction] = []
        contested = 0

        for value in sorted(groups):
            group = groups[value]
            if len({i.pair for i in group}) < 2:
                resolved.extend(group)
                continue
            contested += 1
            survivors, group_actions = self._resolve_group(sorted(group, key=interval_sort_key), axis, value)
            resolved.extend(survivors)
            actions.extend(group_actions)

        logger.debug(f"Axis {axis}: {contested} contested values, {len(actions)} actions")
        return resolved, actions

    def _resolve_group(
            self,
            ordered: List[ResolvedInterval],
            axis: Axis,
            value: str,
    ) -> Tuple[List[ResolvedInterval], List[ResolutionAction]]:
        kept: List[ResolvedInterval] = []
        actions: List[ResolutionAction] = []

        for cur in ordered:
            while True:
                if not kept:
                    kept.append(cur)
                    break

                prev = kept[-1]
                if cur.link_start > prev.link_end:
                    kept.append(cur)
                    break

                if cur.pair == prev.pair:
                    # same link seen twice; fold it back together
                    kept[-1] = replace(prev, link_end=max(prev.link_end, cur.link_end))
                    actions.append(self._action(axis, value, ResolutionActionType.MERGED_SAME_PAIR,
                                                prev.pair, cur, kept[-1].link_end))
                    break

                if cur.link_start == prev.link_start and cur.link_end == prev.link_end:
                    logger.warning(
                        f"Ambiguous overlap on {axis}={value}: {prev.pair} and {cur.pair} both cover "
                        f"[{cur.link_start}, {cur.link_end}]; keeping {cur.pair}"
                    )
                    actions.append(self._action(axis, value, ResolutionActionType.AMBIGUOUS_OVERLAP,
                                                cur.pair, prev, None))
                    kept[-1] = cur
                    break

                if cur.link_end >= prev.link_end:
                    new_end = cur.link_start - ONE_DAY
                    if new_end < prev.link_start:
                        actions.append(self._action(axis, value, ResolutionActionType.DELETED_SUPERSEDED,
                                                    cur.pair, prev, None))
                        kept.pop()
                        continue
                    kept[-1] = replace(prev, link_end=new_end, truncated=True)
                    actions.append(self._action(axis, value, ResolutionActionType.TRUNCATED,
                                                cur.pair, prev, new_end))
                    kept.append(cur)
                    break

                actions.append(self._action(axis, value, ResolutionActionType.DELETED_NESTED,
                                            prev.pair, cur, None))
                break

        return kept, actions

    @staticmethod
    def _action(axis, value, action_type, winner_pair, loser, loser_end_after) -> ResolutionAction:
        logger.debug(
            f"{action_type} on {axis}={value}: {loser.pair} "
            f"[{loser.link_start}, {loser.link_end}] -> {loser_end_after}"
        )
        return ResolutionAction(
            axis=str(axis),
            axis_value=value,
            action=str(action_type),
            winner_pair=winner_pair,
            loser_pair=loser.pair,
            loser_start=loser.link_start,
            loser_end_before=loser.link_end,
            loser_end_after=loser_end_after,
        )


def resolve_overlaps(intervals: Iterable[ConsolidatedInterval]) -> List[ResolvedInterval]:
    """Convenience wrapper returning only the surviving intervals."""
    return OverlapResolver().run(intervals).intervals
