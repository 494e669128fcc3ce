"""Turn free-text user instructions into Preferences."""
import logging
import re
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.config import settings
from app.models.planner import (
    ActivityLevel,
    Budget,
    IndoorPreference,
    Preferences,
    PreferencesUpdate,
    SocialLevel,
)
from app.services.cancellation import CancellationToken
from app.services.llm_gateway import ModelGateway
from app.services.prompts import build_preferences_prompt

logger = logging.getLogger(__name__)

FOCUS_KEYWORDS = {
    "fitness": ("fitness", "workout", "exercise", "gym", "run"),
    "work": ("work", "study", "productive"),
    "family": ("family", "kids", "children"),
    "creative": ("creative", "art", "music", "writing"),
    "food": ("food", "cook", "restaurant"),
    "nature": ("nature", "park", "hike"),
    "rest": ("rest", "sleep", "calm"),
}


def _has_word(text: str, *words: str) -> bool:
    return any(re.search(rf"\b{re.escape(word)}", text) for word in words)


def parse_with_keywords(instructions: str) -> PreferencesUpdate:
    """
    Keyword heuristics used when the model cannot parse the instructions.

    Only the fields a keyword mentions are set, so merging keeps every
    other preference unchanged.
    """
    text = instructions.lower()
    fields: Dict[str, Any] = {}

    if _has_word(text, "relax"):
        fields["activity_level"] = ActivityLevel.LOW
    elif _has_word(text, "active"):
        fields["activity_level"] = ActivityLevel.HIGH

    if _has_word(text, "indoor"):
        fields["indoor_preference"] = IndoorPreference.INDOOR
    elif _has_word(text, "outdoor"):
        fields["indoor_preference"] = IndoorPreference.OUTDOOR

    if _has_word(text, "free"):
        fields["budget"] = Budget.FREE
    elif _has_word(text, "budget", "cheap"):
        fields["budget"] = Budget.LOW

    if _has_word(text, "social"):
        fields["social_level"] = SocialLevel.HIGH

    focus = {topic for topic, words in FOCUS_KEYWORDS.items() if _has_word(text, *words)}
    if focus:
        fields["focus"] = focus

    return PreferencesUpdate(**fields)


class PreferenceParser:
    """Parse instructions with the model, falling back to keyword heuristics."""

    def __init__(self, gateway: ModelGateway) -> None:
        self.gateway = gateway

    async def parse(
        self,
        instructions: str,
        current: Preferences,
        token: Optional[CancellationToken] = None,
    ) -> Preferences:
        """
        Merge the preferences expressed in `instructions` into `current`.

        Raises:
            GenerationStopped: The token fired while the model was parsing
        """
        instructions = instructions.strip()
        if not instructions:
            return current

        update: Optional[PreferencesUpdate] = None
        value = await self.gateway.complete(
            build_preferences_prompt(instructions, current),
            max_attempts=settings.preferences_max_attempts,
            base_delay=settings.preferences_retry_base_delay,
            token=token,
        )
        if isinstance(value, dict):
            try:
                update = PreferencesUpdate.model_validate(value)
            except ValidationError as exc:
                logger.warning(f"Model returned invalid preferences, using keywords: {exc}")
        else:
            logger.info("Model could not parse preferences, using keyword heuristics")

        if update is None:
            update = parse_with_keywords(instructions)

        merged = current.merged(update)
        return merged.model_copy(update={"custom_instructions": instructions})
