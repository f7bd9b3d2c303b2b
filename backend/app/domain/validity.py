from __future__ import annotations

"""Date-span arithmetic for rate validity windows.

A validity window is an inclusive [start_date, end_date] span minus any
carved-out exclusions. All helpers work on inclusive (start, end) tuples of
`datetime.date`.
"""

from datetime import date, timedelta
from typing import Iterable, List, Optional, Tuple

from app.schemas_rates import DateSpan, ValidityPeriod


Span = Tuple[date, date]

_ONE_DAY = timedelta(days=1)


def spans_overlap(a: Span, b: Span) -> bool:
    return a[0] <= b[1] and b[0] <= a[1]


def intersect(a: Span, b: Span) -> Optional[Span]:
    if not spans_overlap(a, b):
        return None
    return max(a[0], b[0]), min(a[1], b[1])


def subtract(span: Span, cut: Span) -> List[Span]:
    """Remove `cut` from `span`, returning 0, 1 or 2 remaining pieces."""
    if not spans_overlap(span, cut):
        return [span]
    out: List[Span] = []
    if cut[0] > span[0]:
        out.append((span[0], cut[0] - _ONE_DAY))
    if cut[1] < span[1]:
        out.append((cut[1] + _ONE_DAY, span[1]))
    return out


def merge_spans(spans: Iterable[Span]) -> List[Span]:
    """Sort and merge overlapping or adjacent spans."""
    ordered = sorted(spans)
    merged: List[Span] = []
    for s in ordered:
        if merged and s[0] <= merged[-1][1] + _ONE_DAY:
            last = merged[-1]
            merged[-1] = (last[0], max(last[1], s[1]))
        else:
            merged.append(s)
    return merged


def effective_spans(validity: ValidityPeriod) -> List[Span]:
    """Validity window with exclusions removed, as ordered disjoint spans."""
    pieces: List[Span] = [(validity.start_date, validity.end_date)]
    for ex in validity.exclusions:
        cut = (ex.start, ex.end)
        next_pieces: List[Span] = []
        for p in pieces:
            next_pieces.extend(subtract(p, cut))
        pieces = next_pieces
    return merge_spans(pieces)


def overlapping_spans(a: ValidityPeriod, b: ValidityPeriod) -> List[Span]:
    """Days on which both validity windows are effective."""
    out: List[Span] = []
    for sa in effective_spans(a):
        for sb in effective_spans(b):
            hit = intersect(sa, sb)
            if hit is not None:
                out.append(hit)
    return merge_spans(out)


def contains(validity: ValidityPeriod, day: date) -> bool:
    return any(s[0] <= day <= s[1] for s in effective_spans(validity))


def carve(validity: ValidityPeriod, cut: Span) -> ValidityPeriod:
    """Return a copy of `validity` with `cut` added to its exclusions."""
    exclusions = merge_spans([(e.start, e.end) for e in validity.exclusions] + [cut])
    return validity.model_copy(
        update={"exclusions": [DateSpan(start=s, end=e) for s, e in exclusions]}
    )
