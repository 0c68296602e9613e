from __future__ import annotations

from bisect import bisect_left, bisect_right
from typing import Iterable, List, Sequence, Union

from .intronpyClasses import CollapsedRepeat, Interval, RepeatAnnotation

RepeatLike = Union[RepeatAnnotation, CollapsedRepeat]


def _names_of(repeat: RepeatLike) -> tuple:
    if isinstance(repeat, CollapsedRepeat):
        return repeat.names
    return (repeat.name,)


class RepeatTrack(list):
    """Repeats of one chromosome strand sorted by (start, end), with their start keys."""

    def __init__(self, repeats: Iterable[RepeatAnnotation] = ()):
        super().__init__(sorted(repeats, key=lambda r: r.interval))
        self.starts = [r.interval.start for r in self]
        self.max_length = max((len(r.interval) for r in self), default=0)


def overlapping_repeats(repeats: Sequence[RepeatAnnotation], bound: Interval) -> List[RepeatAnnotation]:
    """
    Repeats (sorted by start) that share at least one base with bound.
    Only repeats starting within the longest repeat length of bound are scanned.
    """
    if not isinstance(repeats, RepeatTrack):
        repeats = RepeatTrack(repeats)
    lo = bisect_left(repeats.starts, bound.start - repeats.max_length + 1)
    hi = bisect_right(repeats.starts, bound.end)
    return [r for r in repeats[lo:hi] if r.interval.end >= bound.start]


def collapse_repeats(repeats: Iterable[RepeatLike], bound: Interval) -> List[CollapsedRepeat]:
    """
    Merge overlapping and adjacent repeats within bound.

    Every repeat is clipped to bound (repeats entirely outside are dropped),
    then runs whose next start is at most one past the current end are merged.
    Names of a merged run are kept as a sorted, de-duplicated tuple.
    """
    clipped = []
    for r in repeats:
        iv = r.interval.clip(bound)
        if iv is None:
            continue
        clipped.append((iv, _names_of(r)))
    if not clipped:
        return []

    clipped.sort(key=lambda x: x[0])

    collapsed: List[CollapsedRepeat] = []
    cur_start, cur_end = clipped[0][0].start, clipped[0][0].end
    cur_names = set(clipped[0][1])
    for iv, names in clipped[1:]:
        if iv.start > cur_end + 1:
            collapsed.append(CollapsedRepeat(Interval(cur_start, cur_end), tuple(sorted(cur_names))))
            cur_start, cur_end = iv.start, iv.end
            cur_names = set(names)
        else:
            cur_end = max(cur_end, iv.end)
            cur_names.update(names)
    collapsed.append(CollapsedRepeat(Interval(cur_start, cur_end), tuple(sorted(cur_names))))

    return collapsed


def segment_interval(bound: Interval, repeats: Sequence[CollapsedRepeat]) -> List[Interval]:
    """
    Sub-intervals of bound not covered by any of the (sorted, non-overlapping) repeats.
    Zero-length segments are never emitted.
    """
    segments: List[Interval] = []
    cursor = bound.start
    for r in repeats:
        if r.interval.start > cursor:
            segments.append(Interval(cursor, r.interval.start - 1))
        cursor = r.interval.end + 1
    if cursor <= bound.end:
        segments.append(Interval(cursor, bound.end))
    return segments
