from marinework.errors import (
    create_error_type_map,
    error_description_by_field_name,
    field_key,
    map_errors_for_display,
    resolve_message,
)

CATALOG = {"PROJECT_NAME_REQUIRED": "Enter the project name", "string.max": "Too long"}


def test_field_key_joins_path():
    assert field_key(["coordinates", 0, "latitude"]) == "coordinates.0.latitude"
    assert field_key([]) == ""


def test_resolve_message_prefers_type_then_message():
    assert resolve_message({"type": "string.max", "message": "PROJECT_NAME_REQUIRED"}, CATALOG) == "Too long"
    assert resolve_message({"type": "string.empty", "message": "PROJECT_NAME_REQUIRED"}, CATALOG) == "Enter the project name"
    assert resolve_message({"type": "other", "message": "Raw text"}, CATALOG) == "Raw text"


def test_map_errors_for_display():
    details = [
        {"type": "string.empty", "path": ["projectName"], "message": "PROJECT_NAME_REQUIRED"},
        {"type": "custom", "path": [], "message": "Whole form"},
    ]
    summary = map_errors_for_display(details, CATALOG)
    assert summary[0] == {"href": "#projectName", "text": "Enter the project name", "field": ["projectName"]}
    assert summary[1]["href"] == "#"


def test_error_description_by_field_name():
    summary = [{"href": "#a", "text": "A", "field": ["a"]}]
    assert error_description_by_field_name(summary) == {"a": summary[0]}
    assert error_description_by_field_name(None) == {}


def test_create_error_type_map_indexes_type_segment_and_message():
    detail = {"type": "number.max", "path": ["activity-start-date-day"], "message": "activity-start-date-day"}
    mapping = create_error_type_map([detail])
    assert mapping["number.max"] is detail
    assert mapping["activity-start-date-day"] is detail
