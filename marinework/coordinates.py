from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

from marinework import constants as c

COORDINATE_FIELDS = {
    "wgs84": ("latitude", "longitude"),
    "osgb36": ("eastings", "northings"),
}

_PAYLOAD_INDEX_RE = re.compile(r"^coordinates\[(\d+)\]")
_FIELD_INDEX_RE = re.compile(r"coordinates(\d+)")
_FIELD_BRACKETS_RE = re.compile(r"[\[\]]")
_DIGITS_RE = re.compile(r"(\d+)")

_WGS84_MESSAGE_CONFIG = {
    "latitude": ("LATITUDE", "between -90 and 90", "55.019889"),
    "longitude": ("LONGITUDE", "between -180 and 180", "-1.399500"),
}

_OSGB36_MESSAGE_CONFIG = {
    "eastings": ("EASTINGS", "6 digits", "6-digit number", "123456"),
    "northings": ("NORTHINGS", "6 or 7 digits", "6 or 7-digit number", "123456"),
}


def fields_for(coordinate_system: Optional[str]) -> tuple:
    if coordinate_system == c.COORDINATE_SYSTEMS["WGS84"]:
        return COORDINATE_FIELDS["wgs84"]
    return COORDINATE_FIELDS["osgb36"]


def point_name(index: int) -> str:
    return "start and end point" if index == 0 else f"point {index + 1}"


def coordinate_messages(field: str, style: str = "simple") -> Dict[str, str]:
    """Validator messages for one coordinate field.

    ``constants`` style yields catalog keys such as ``LATITUDE_REQUIRED`` for
    the centre point page; ``simple`` yields display text for polygon points.
    """
    if field in _WGS84_MESSAGE_CONFIG:
        prefix, range_text, example = _WGS84_MESSAGE_CONFIG[field]
        if style == "constants":
            return {
                c.STRING_EMPTY: f"{prefix}_REQUIRED",
                c.ANY_REQUIRED: f"{prefix}_REQUIRED",
                c.STRING_PATTERN_BASE: f"{prefix}_NON_NUMERIC",
                c.NUMBER_BASE: f"{prefix}_NON_NUMERIC",
                c.NUMBER_RANGE: f"{prefix}_LENGTH",
                c.NUMBER_DECIMAL: f"{prefix}_DECIMAL_PLACES",
            }
        label = field.capitalize()
        return {
            c.STRING_EMPTY: f"Enter the {field}",
            c.ANY_REQUIRED: f"Enter the {field}",
            c.STRING_PATTERN_BASE: f"{label} must be a number",
            c.NUMBER_BASE: f"{label} must be a number",
            c.NUMBER_RANGE: f"{label} must be {range_text}",
            c.NUMBER_DECIMAL: f"{label} must include 6 decimal places, like {example}",
        }

    prefix, length_text, positive_text, example = _OSGB36_MESSAGE_CONFIG[field]
    if style == "constants":
        return {
            c.STRING_EMPTY: f"{prefix}_REQUIRED",
            c.ANY_REQUIRED: f"{prefix}_REQUIRED",
            c.STRING_PATTERN_BASE: f"{prefix}_NON_NUMERIC",
            c.NUMBER_BASE: f"{prefix}_NON_NUMERIC",
            c.NUMBER_POSITIVE: f"{prefix}_POSITIVE_NUMBER",
            c.NUMBER_RANGE: f"{prefix}_LENGTH",
        }
    label = field.capitalize()
    return {
        c.STRING_EMPTY: f"Enter the {field}",
        c.ANY_REQUIRED: f"Enter the {field}",
        c.STRING_PATTERN_BASE: f"{label} must be a number",
        c.NUMBER_BASE: f"{label} must be a number",
        c.NUMBER_POSITIVE: f"{label} must be a positive {positive_text}, like {example}",
        c.NUMBER_RANGE: f"{label} must be {length_text}",
    }


def generate_point_specific_error_message(base_message: str, index: int) -> str:
    """Rewrite a generic coordinate message to name the polygon point it refers to."""
    name = point_name(index)
    for field in ("latitude", "longitude", "eastings", "northings"):
        label = field.capitalize()
        if base_message == f"Enter the {field}":
            return f"Enter the {field} of {name}"
        if base_message.startswith(f"{label} must "):
            return f"{label} of {name} must {base_message[len(label) + len(' must '):]}"
    return base_message


def _empty_point(coordinate_system: Optional[str]) -> Dict[str, str]:
    first, second = fields_for(coordinate_system)
    return {first: "", second: ""}


def convert_payload_to_coordinates_array(payload: Mapping[str, Any], coordinate_system: Optional[str]) -> List[Dict[str, str]]:
    """Read ``coordinates[<i>][<field>]`` form keys into an ordered point list."""
    first, second = fields_for(coordinate_system)
    indexes = set()
    for name in payload.keys():
        match = _PAYLOAD_INDEX_RE.match(str(name))
        if match:
            indexes.add(int(match.group(1)))
    points: List[Dict[str, str]] = []
    for index in sorted(indexes):
        points.append({
            first: str(payload.get(f"coordinates[{index}][{first}]") or "").strip(),
            second: str(payload.get(f"coordinates[{index}][{second}]") or "").strip(),
        })
    return points


def normalise_coordinates_for_display(coordinate_system: Optional[str], coordinates: Optional[Sequence[Mapping[str, Any]]] = None) -> List[Dict[str, str]]:
    """Points for the polygon form, padded to the minimum of three.

    Stored points for the other coordinate system are dropped.
    """
    first, second = fields_for(coordinate_system)
    points = list(coordinates or [])
    if not points or not isinstance(points[0], Mapping) or first not in points[0]:
        return [_empty_point(coordinate_system) for _ in range(c.POLYGON_MIN_COORDINATE_POINTS)]
    normalised = [
        {first: str(point.get(first) or ""), second: str(point.get(second) or "")}
        for point in points
    ]
    while len(normalised) < c.POLYGON_MIN_COORDINATE_POINTS:
        normalised.append(_empty_point(coordinate_system))
    return normalised


def remove_coordinate_at_index(coordinates: Sequence[Any], index: int) -> List[Any]:
    """Drop one point; the first three points can only be cleared, not removed."""
    points = list(coordinates)
    if c.POLYGON_MIN_COORDINATE_POINTS <= index < len(points) and len(points) > c.POLYGON_MIN_COORDINATE_POINTS:
        return points[:index] + points[index + 1:]
    return points


def flatten_error_path(path: Sequence[Any]) -> str:
    if not path:
        return ""
    head, rest = str(path[0]), path[1:]
    return head + "".join(f"[{segment}]" for segment in rest)


def convert_array_errors_to_flattened_errors(details: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [{**detail, "path": [flatten_error_path(detail.get("path") or [])]} for detail in details]


def sanitise_field_name(path: Sequence[Any]) -> str:
    return _FIELD_BRACKETS_RE.sub("", "".join(str(part) for part in path))


def sanitise_field_id(path: Sequence[Any]) -> str:
    return _DIGITS_RE.sub(r"-\1-", sanitise_field_name(path))


def _coordinate_index(field_name: str) -> int:
    match = _FIELD_INDEX_RE.search(field_name)
    return int(match.group(1)) if match else 0


def _describe_point_error(detail: Mapping[str, Any]) -> Dict[str, Any]:
    path = detail.get("path") or []
    field_name = sanitise_field_name(path)
    return {
        "fieldName": field_name,
        "fieldId": sanitise_field_id(path),
        "message": generate_point_specific_error_message(detail.get("message") or "", _coordinate_index(field_name)),
    }


def create_coordinate_error_summary(details: Sequence[Mapping[str, Any]]) -> List[Dict[str, str]]:
    summary = []
    for detail in convert_array_errors_to_flattened_errors(details):
        described = _describe_point_error(detail)
        summary.append({"href": f"#{described['fieldId']}", "text": described["message"]})
    return summary


def create_coordinate_field_errors(details: Sequence[Mapping[str, Any]]) -> Dict[str, Dict[str, str]]:
    errors: Dict[str, Dict[str, str]] = {}
    for detail in convert_array_errors_to_flattened_errors(details):
        described = _describe_point_error(detail)
        errors[described["fieldName"]] = {"text": described["message"]}
    return errors


def extract_coordinates_from_geojson(geojson: Optional[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    coordinates: List[Dict[str, Any]] = []
    for feature in (geojson or {}).get("features") or []:
        geometry = (feature or {}).get("geometry")
        if geometry and geometry.get("coordinates") is not None:
            coordinates.append({"type": geometry.get("type"), "coordinates": geometry.get("coordinates")})
    return coordinates


def create_site_details_data_json(site: Optional[Mapping[str, Any]], coordinate_system: Optional[str]) -> str:
    """Serialise one site for the map widget."""
    if not site:
        return json.dumps({"coordinatesType": "none", "coordinateSystem": None})
    if site.get("coordinatesType") == c.COORDINATES_TYPE["FILE"]:
        return json.dumps({
            "coordinatesType": "file",
            "geoJSON": site.get("geoJSON"),
            "fileUploadType": site.get("fileUploadType"),
            "uploadedFile": site.get("uploadedFile"),
        })
    return json.dumps({
        "coordinatesType": "coordinates",
        "coordinateSystem": coordinate_system,
        "coordinatesEntry": site.get("coordinatesEntry"),
        "coordinates": site.get("coordinates"),
        "circleWidth": site.get("circleWidth"),
    })
