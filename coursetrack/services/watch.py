"""Anti-skip validation for completing video views.

The player reports the segments it actually played.  Coverage is
computed server-side from those segments; the client's own percentage is
only trusted as a tie-breaker because mobile browsers drop timeupdate
events near the end of playback.
"""

from __future__ import annotations

from coursetrack.models.signals import WatchData, WatchSegment

REQUIRED_COVERAGE = 85.0
CLIENT_REPORTED_THRESHOLD = 90.0
CLIENT_ASSISTED_MIN_COVERAGE = 75.0
MERGE_GAP_SECONDS = 2.0


def merge_segments(segments: tuple[WatchSegment, ...] | list[WatchSegment]) -> list[WatchSegment]:
    """Drop invalid segments, sort, and merge overlaps/gaps of <= 2 seconds."""
    valid = sorted(
        (s for s in segments if s.start >= 0 and s.end > s.start),
        key=lambda s: s.start,
    )
    merged: list[WatchSegment] = []
    for seg in valid:
        if merged and seg.start <= merged[-1].end + MERGE_GAP_SECONDS:
            last = merged[-1]
            merged[-1] = WatchSegment(start=last.start, end=max(last.end, seg.end))
        else:
            merged.append(seg)
    return merged


def coverage_percentage(watch: WatchData) -> float | None:
    """Percentage of the video covered by played segments (None if duration unknown)."""
    if watch.video_duration <= 0:
        return None
    watched = sum(s.end - s.start for s in merge_segments(watch.watched_segments))
    return watched / watch.video_duration * 100


def is_watch_sufficient(watch: WatchData) -> bool:
    coverage = coverage_percentage(watch)
    if coverage is None:
        return True
    if coverage >= REQUIRED_COVERAGE:
        return True
    return (
        watch.reported_percentage >= CLIENT_REPORTED_THRESHOLD
        and coverage >= CLIENT_ASSISTED_MIN_COVERAGE
    )
