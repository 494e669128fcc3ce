from app.models.planner import DEFAULT_TIME_BLOCKS
from app.services.fallback_activities import (
    FALLBACK_TEMPLATES,
    generate_fallback_activities,
    is_similar_activity,
    period_for,
)


def test_every_block_maps_to_a_template_with_indoor_options():
    periods = [period_for(block) for block in DEFAULT_TIME_BLOCKS]
    assert periods == ["early_morning", "late_morning", "afternoon", "late_afternoon", "evening", "night"]
    for options in FALLBACK_TEMPLATES.values():
        assert any(option.indoor for option in options)


def test_unsafe_conditions_allow_only_indoor_options():
    for block in DEFAULT_TIME_BLOCKS:
        activities = generate_fallback_activities(block, outdoor_safe=False, clothing="Base: t-shirt")
        assert activities
        assert all(activity.details == "Offline suggestion (indoor)" for activity in activities)
        assert all(activity.clothing == "Base: t-shirt" for activity in activities)


def test_one_activity_per_ninety_minutes_within_the_block():
    morning = DEFAULT_TIME_BLOCKS[0]
    activities = generate_fallback_activities(morning)
    assert [activity.time for activity in activities] == ["06:00", "07:30"]

    night = DEFAULT_TIME_BLOCKS[5]
    assert [activity.time for activity in generate_fallback_activities(night)] == ["21:00"]


def test_used_activities_are_not_repeated():
    block = DEFAULT_TIME_BLOCKS[0]
    used = ["home stretching and mobility routine!"]

    activities = generate_fallback_activities(block, used, outdoor_safe=False)

    assert [activity.activity for activity in activities] == ["Prepare a calm breakfast at home"]


def test_all_options_used_still_produces_a_plan():
    block = DEFAULT_TIME_BLOCKS[2]
    used = [option.activity for option in FALLBACK_TEMPLATES["afternoon"]]
    assert generate_fallback_activities(block, used)


def test_similarity_is_a_normalized_prefix_match():
    assert is_similar_activity("Visit the local library", "visit the LOCAL library today")
    assert is_similar_activity("Read a book", "Read a book before bed")
    assert not is_similar_activity("Read a book before bed", "Journal and plan tomorrow")
    assert not is_similar_activity("", "anything")
