"""Composite cost scoring for tabs.

Higher score means more resource intensive. Weights:
memory 30%, CPU 30%, activity 25%, media 15%.
"""

import math
import time
from typing import Dict, Optional

from .models import ResourceUsage, Score, ScoreCategory, ScoreComponent, Tab

WEIGHTS: Dict[str, float] = {
    "memory": 0.30,
    "cpu": 0.30,
    "activity": 0.25,
    "media": 0.15,
}

MEDIA_SITES = ("youtube.com", "vimeo.com", "twitch.tv", "netflix.com", "hulu.com")

STREAMING_BYTES_THRESHOLD = 500_000


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def memory_score(memory_mb: float) -> int:
    """Map MB to 0-100.

    0-50MB -> 0-20, 50-150MB -> 20-60, 150-300MB -> 60-90, 300MB+ -> 90-100.
    """
    if memory_mb <= 0:
        return 0
    if memory_mb < 50:
        return min(20, round_half_up(memory_mb / 50 * 20))
    if memory_mb < 150:
        return round_half_up(20 + (memory_mb - 50) / 100 * 40)
    if memory_mb < 300:
        return round_half_up(60 + (memory_mb - 150) / 150 * 30)
    return min(100, round_half_up(90 + (memory_mb - 300) / 200 * 10))


def cpu_score(cpu_percent: float) -> int:
    """0% -> 0 points, 50% and above -> 100 points."""
    if cpu_percent <= 0:
        return 0
    return min(100, round_half_up(cpu_percent / 50 * 100))


def activity_score(tab: Tab, usage: ResourceUsage) -> int:
    if tab.discarded:
        return 0

    score = 80 if tab.active else 10
    if tab.audible:
        score += 20
    if usage.network is not None and usage.network.requests_per_second > 1:
        score += 15
    return min(100, score)


def media_score(tab: Tab, usage: ResourceUsage) -> int:
    score = 0
    if tab.audible:
        score += 50
    # High inbound traffic suggests streaming
    if usage.network is not None and usage.network.bytes_in > STREAMING_BYTES_THRESHOLD:
        score += 40
    if tab.url:
        url = tab.url.lower()
        if any(site in url for site in MEDIA_SITES):
            score += 60
    return min(100, score)


def compute_score(tab: Tab, usage: ResourceUsage, timestamp: Optional[float] = None) -> Score:
    """Score a tab from its resource snapshot."""
    activity = activity_score(tab, usage)
    media = media_score(tab, usage)
    breakdown = {
        "memory": ScoreComponent(value=usage.memory, score=memory_score(usage.memory), weight=WEIGHTS["memory"]),
        "cpu": ScoreComponent(value=usage.cpu, score=cpu_score(usage.cpu), weight=WEIGHTS["cpu"]),
        "activity": ScoreComponent(value=activity, score=activity, weight=WEIGHTS["activity"]),
        "media": ScoreComponent(value=media, score=media, weight=WEIGHTS["media"]),
    }
    total = round_half_up(sum(component.score * component.weight for component in breakdown.values()))

    return Score(
        tab_id=tab.id,
        total_score=total,
        breakdown=breakdown,
        timestamp=timestamp if timestamp is not None else time.time(),
    )


def score_category(score: int) -> ScoreCategory:
    if score < 25:
        return ScoreCategory.LOW
    if score < 50:
        return ScoreCategory.MEDIUM
    if score < 75:
        return ScoreCategory.HIGH
    return ScoreCategory.CRITICAL
