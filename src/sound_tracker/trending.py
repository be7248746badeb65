"""Trend signals derived from a sound's snapshot history."""

from typing import Dict, List, Optional, Sequence

from .models import SoundSnapshot, Trajectory

TRAJECTORY_WINDOW = 7
TRAJECTORY_THRESHOLD = 0.05

# Declaration order matters: the first genre with a matching keyword wins.
GENRE_KEYWORDS: Dict[str, List[str]] = {
    "Hip Hop": ["rap", "hip hop", "trap", "drill", "hiphop"],
    "Pop": ["pop", "dance pop", "synth"],
    "R&B": ["r&b", "rnb", "soul", "r & b"],
    "Electronic": ["edm", "electronic", "house", "techno", "dubstep", "bass"],
    "Latin": ["reggaeton", "latin", "bachata", "salsa", "cumbia"],
    "Country": ["country", "western", "nashville"],
    "Rock": ["rock", "punk", "metal", "grunge", "alternative"],
    "K-Pop": ["kpop", "k-pop", "korean"],
    "Afrobeats": ["afrobeat", "afro", "amapiano"],
    "Indie": ["indie", "lo-fi", "lofi"],
}


def _sorted_by_date(snapshots: Sequence[SoundSnapshot]) -> List[SoundSnapshot]:
    return sorted(snapshots, key=lambda s: s.snapshot_date)


def calculate_trajectory(snapshots: Sequence[SoundSnapshot]) -> Trajectory:
    """
    Classify the recent usage trend of a sound.

    Fits a least-squares line to usage_count over the last 7 snapshots
    (by date) and normalizes the slope by the window's mean usage.
    Above 0.05 is rising, below -0.05 is falling, otherwise stable.
    Fewer than two snapshots is new.
    """
    if len(snapshots) < 2:
        return "new"

    recent = _sorted_by_date(snapshots)[-TRAJECTORY_WINDOW:]
    n = len(recent)

    sum_x = sum_y = sum_xy = sum_x2 = 0.0
    for i, snapshot in enumerate(recent):
        sum_x += i
        sum_y += snapshot.usage_count
        sum_xy += i * snapshot.usage_count
        sum_x2 += i * i

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)
    mean_usage = sum_y / n
    normalized_slope = slope / mean_usage if mean_usage > 0 else 0.0

    if normalized_slope > TRAJECTORY_THRESHOLD:
        return "rising"
    if normalized_slope < -TRAJECTORY_THRESHOLD:
        return "falling"
    return "stable"


def calculate_growth_rate(snapshots: Sequence[SoundSnapshot]) -> float:
    """Percentage change in usage_count from the oldest to the newest snapshot."""
    if len(snapshots) < 2:
        return 0.0

    ordered = _sorted_by_date(snapshots)
    oldest = ordered[0].usage_count
    newest = ordered[-1].usage_count

    if oldest == 0:
        return 100.0 if newest > 0 else 0.0

    return (newest - oldest) / oldest * 100


def classify_genre(title: str, artist: str) -> Optional[str]:
    """Best-effort genre from keywords in the title and artist."""
    text = f"{title} {artist}".lower()

    for genre, keywords in GENRE_KEYWORDS.items():
        if any(keyword in text for keyword in keywords):
            return genre

    return None
