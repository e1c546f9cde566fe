import logging
from typing import List, Optional

from ..models import Region, Segment, TickedSegment

logger = logging.getLogger("slides_worker")


def select_segments(items: List[TickedSegment], start: float, end: float) -> List[Segment]:
    """
    Segments whose start or end falls within [start, end], in seconds.

    A trailing segment whose trimmed text starts with "[" is a non-speech
    marker such as [BLANK_AUDIO] and is dropped.
    """
    selected = []
    for ticked in items:
        segment = Segment.from_ticks(ticked)
        if start <= segment.start <= end or start <= segment.end <= end:
            selected.append(segment)

    if selected and selected[-1].text.strip().startswith("["):
        selected.pop()

    return selected


def build_regions(
    splits: List[float],
    utterances: List[TickedSegment],
    words: Optional[List[TickedSegment]] = None,
) -> List[Region]:
    """
    One region per consecutive boundary pair, in ascending order

    Returns:
        List of regions whose summary starts as the space-joined utterance text
    """
    regions = []

    for split_start, split_end in zip(splits, splits[1:]):
        segments = select_segments(utterances, split_start, split_end)
        region_words = select_segments(words, split_start, split_end) if words is not None else None

        regions.append(Region(
            start=split_start,
            end=split_end,
            segments=segments,
            words=region_words,
            summary=" ".join(s.text for s in segments)
        ))

    logger.info(f"Built {len(regions)} regions from {len(utterances)} utterances")
    return regions
