"""Turn validator error details into GOV.UK error summaries.

An error detail is a dict shaped ``{"type", "path", "message"}``. Details come
from the form schemas in ``schemas.py`` and from backend validation responses,
which use the same shape.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence


def field_key(path: Optional[Sequence[Any]]) -> str:
    if not path:
        return ""
    return ".".join(str(part) for part in path)


def _first_segment(detail: Mapping[str, Any]) -> Optional[str]:
    path = detail.get("path") or []
    if not path:
        return None
    return str(path[0])


def create_error_type_map(details: Sequence[Mapping[str, Any]]) -> Dict[str, Mapping[str, Any]]:
    """Index details by type, first path segment and message."""
    mapping: Dict[str, Mapping[str, Any]] = {}
    for detail in details:
        error_type = detail.get("type")
        message = detail.get("message")
        if error_type:
            mapping[error_type] = detail
        segment = _first_segment(detail)
        if segment is not None:
            mapping[segment] = detail
        if message and message != error_type:
            mapping[message] = detail
    return mapping


def resolve_message(detail: Mapping[str, Any], catalog: Mapping[str, str]) -> str:
    error_type = detail.get("type")
    message = detail.get("message") or ""
    if error_type and error_type in catalog:
        return catalog[error_type]
    if message in catalog:
        return catalog[message]
    return message


def map_errors_for_display(details: Sequence[Mapping[str, Any]], catalog: Mapping[str, str]) -> List[Dict[str, Any]]:
    summary: List[Dict[str, Any]] = []
    for detail in details:
        segment = _first_segment(detail)
        summary.append({
            "href": f"#{segment}" if segment is not None else "#",
            "text": resolve_message(detail, catalog),
            "field": list(detail.get("path") or []),
        })
    return summary


def error_description_by_field_name(summary: Optional[Sequence[Mapping[str, Any]]]) -> Dict[str, Mapping[str, Any]]:
    result: Dict[str, Mapping[str, Any]] = {}
    for entry in summary or []:
        result[field_key(entry.get("field"))] = entry
    return result
