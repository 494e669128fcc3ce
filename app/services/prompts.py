"""Prompt builders for block generation and preference parsing."""
import json
from typing import Iterable, List, Optional

from app.models.planner import Activity, EnvironmentSnapshot, Location, Preferences, TimeBlock


def _preferences_json(preferences: Preferences) -> str:
    data = preferences.model_dump(mode="json")
    data["focus"] = sorted(preferences.focus)
    return json.dumps(data)


def build_block_prompt(
    environment: EnvironmentSnapshot,
    block: TimeBlock,
    preferences: Preferences,
    *,
    outdoor_safe: bool,
    location: Optional[Location] = None,
    clothing: Optional[str] = None,
    previous_activities: Iterable[Activity] = (),
    social_context: Optional[str] = None,
    instructions: Optional[str] = None,
) -> str:
    """Build the prompt asking the model for one block's activities."""
    lines: List[str] = [
        f"Plan the user's activities for {block.label} ({block.start_time}-{block.end_time}).",
    ]
    if location is not None:
        where = f"{location.city}, {location.country}" if location.country else location.city
        lines.append(f"Location: {where}")
    lines.extend([
        f"Weather: {environment.temperature}°C, precipitation {environment.precipitation_mm}mm, "
        f"wind {environment.wind_speed_kmh}km/h, sunrise {environment.sunrise}, sunset {environment.sunset}",
        f"AQI: {environment.aqi if environment.aqi is not None else 'unknown'}",
        f"Outdoor safe: {'yes' if outdoor_safe else 'no'}",
    ])
    if clothing:
        lines.append(f"Recommended clothing: {clothing}")
    lines.append(f"User preferences: {_preferences_json(preferences)}")
    if social_context:
        lines.append(f"Social options nearby: {social_context}")

    previous = [activity.activity for activity in previous_activities]
    if previous:
        lines.append(f"Already planned today (do not repeat): {'; '.join(previous)}")
    if instructions:
        lines.append(f"Extra instructions for this block: {instructions}")

    lines.extend([
        "",
        "Rules:",
        "- Suggest clothing, meals and activities",
        "- Only suggest indoor activities" if not outdoor_safe else "- Outdoor activities are fine",
        f"- Every time must fall between {block.start_time} and {block.end_time}",
        "- Return a JSON array of objects with fields: time, activity, clothing, meal, notes, details",
        "- No extra text",
    ])
    return "\n".join(lines)


def build_preferences_prompt(instructions: str, current: Preferences) -> str:
    """Build the prompt turning free-text instructions into preference fields."""
    return "\n".join([
        "Extract planning preferences from the user's instructions.",
        f"Current preferences: {_preferences_json(current)}",
        f"Instructions: {instructions}",
        "",
        "Return a JSON object containing only the fields the instructions change:",
        '- activity_level: "low" | "moderate" | "high"',
        '- indoor_preference: "indoor" | "outdoor" | "flexible"',
        '- budget: "free" | "low" | "flexible"',
        '- social_level: "low" | "moderate" | "high"',
        "- focus: list of short lowercase topics",
        "No extra text.",
    ])
