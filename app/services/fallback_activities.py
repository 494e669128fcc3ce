"""
Deterministic fallback activities.

Used when the model fails or returns nothing usable for a block. Options are
keyed by time of day; when outdoor activities are unsafe only the indoor
variants are eligible, and options already used elsewhere in the day are
skipped by a fuzzy prefix match on the activity text.
"""
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from app.models.planner import Activity, TimeBlock

# Characters compared when deciding that two activities are the same idea
SIMILARITY_PREFIX = 12


@dataclass(frozen=True)
class FallbackOption:
    activity: str
    indoor: bool
    notes: str
    meal: Optional[str] = None


FALLBACK_TEMPLATES: Dict[str, Tuple[FallbackOption, ...]] = {
    "early_morning": (
        FallbackOption("Brisk morning walk around the neighbourhood", False, "Start slowly and hydrate first."),
        FallbackOption("Home stretching and mobility routine", True, "Fifteen minutes is enough to wake up."),
        FallbackOption("Prepare a calm breakfast at home", True, "Keep screens away while you eat.", meal="Oatmeal with fruit and coffee or tea"),
    ),
    "late_morning": (
        FallbackOption("Focused work or study session in a park", False, "Pick a shaded bench with good signal."),
        FallbackOption("Deep-work session at your desk", True, "Silence notifications for 90 minutes."),
        FallbackOption("Visit the local library", True, "Browse a section you never explore."),
    ),
    "afternoon": (
        FallbackOption("Picnic lunch outdoors", False, "Bring a blanket and something to read.", meal="Sandwiches, salad and fruit"),
        FallbackOption("Lunch at a nearby cafe", True, "Try something new on the menu.", meal="Soup and a sandwich"),
        FallbackOption("Cook a simple lunch at home", True, "Batch-cook leftovers for tomorrow.", meal="Pasta with vegetables"),
    ),
    "late_afternoon": (
        FallbackOption("Bike ride or jog on a local trail", False, "Keep an easy conversational pace."),
        FallbackOption("Visit a museum or gallery", True, "Many have free entry on weekdays."),
        FallbackOption("Indoor workout or yoga class", True, "A 45-minute session fits before dinner."),
    ),
    "evening": (
        FallbackOption("Evening stroll and dinner outdoors", False, "Catch the light before sunset.", meal="Grilled fish or vegetables"),
        FallbackOption("Cook dinner with friends or family", True, "Share the prep to make it social.", meal="Home-made stir fry"),
        FallbackOption("Watch a film or play a board game", True, "Pick something light to wind down."),
    ),
    "night": (
        FallbackOption("Short stargazing session on a balcony or garden", False, "Dim indoor lights for five minutes first."),
        FallbackOption("Read a book before bed", True, "Paper over screens helps you sleep."),
        FallbackOption("Journal and plan tomorrow", True, "Write three things that went well today."),
    ),
}


def period_for(block: TimeBlock) -> str:
    """Map a block to its time-of-day template key."""
    hour = block.start_hour
    if hour < 9:
        return "early_morning"
    if hour < 12:
        return "late_morning"
    if hour < 15:
        return "afternoon"
    if hour < 18:
        return "late_afternoon"
    if hour < 21:
        return "evening"
    return "night"


def _normalize(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", text.lower()).strip()


def is_similar_activity(first: str, second: str) -> bool:
    """Fuzzy prefix match: the normalized texts share their leading characters."""
    a = _normalize(first)[:SIMILARITY_PREFIX]
    b = _normalize(second)[:SIMILARITY_PREFIX]
    if not a or not b:
        return False
    return a.startswith(b) or b.startswith(a)


def _minutes(clock: str) -> int:
    hours, minutes = clock.split(":")
    return int(hours) * 60 + int(minutes)


def _clock(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def eligible_options(block: TimeBlock, outdoor_safe: bool) -> List[FallbackOption]:
    options = FALLBACK_TEMPLATES[period_for(block)]
    return [option for option in options if option.indoor or outdoor_safe]


def generate_fallback_activities(
    block: TimeBlock,
    used_activities: Iterable[str] = (),
    outdoor_safe: bool = True,
    clothing: Optional[str] = None,
) -> List[Activity]:
    """
    Build a deterministic plan for one block.

    Args:
        block: Block to fill
        used_activities: Activity texts already planned elsewhere today
        outdoor_safe: Whether outdoor options may be chosen
        clothing: Clothing recommendation to attach

    Returns:
        One activity per ninety minutes of the block (at least one)
    """
    used = list(used_activities)
    eligible = eligible_options(block, outdoor_safe)
    fresh = [
        option for option in eligible
        if not any(is_similar_activity(option.activity, text) for text in used)
    ]
    # Repeat rather than leave the block empty when every option is taken
    pool = fresh or eligible

    start = _minutes(block.start_time)
    duration = max(_minutes(block.end_time) - start, 60)
    count = max(1, min(len(pool), duration // 90))
    step = duration // count

    return [
        Activity(
            time=_clock(start + index * step),
            activity=option.activity,
            clothing=clothing,
            meal=option.meal,
            notes=option.notes,
            details="Offline suggestion (indoor)" if option.indoor else "Offline suggestion (outdoor)",
        )
        for index, option in enumerate(pool[:count])
    ]
