"""Reconcile date validation errors into one message per logical date.

A date form reports day/month/year problems per field and whole-date problems
(not a real date, in the past, before the other date) at object level. The
page shows exactly one summary line per date, picked in a fixed order:
missing, invalid, today-or-future, before-other-date, then day, month, year.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, model_validator

from marinework import constants as c
from marinework.dates import create_date_field_names
from marinework.errors import (
    create_error_type_map,
    error_description_by_field_name,
    map_errors_for_display,
)


class DateErrorKind(str, Enum):
    MISSING = "MISSING"
    INVALID = "INVALID"
    TODAY_OR_FUTURE = "TODAY_OR_FUTURE"
    BEFORE_OTHER_DATE = "BEFORE_OTHER_DATE"
    DAY = "DAY"
    MONTH = "MONTH"
    YEAR = "YEAR"


REQUIRED_KINDS = (
    DateErrorKind.MISSING,
    DateErrorKind.INVALID,
    DateErrorKind.DAY,
    DateErrorKind.MONTH,
    DateErrorKind.YEAR,
)

_PRECEDENCE_AFTER_INVALID = (
    DateErrorKind.TODAY_OR_FUTURE,
    DateErrorKind.BEFORE_OTHER_DATE,
)

_FIELD_KINDS = (DateErrorKind.DAY, DateErrorKind.MONTH, DateErrorKind.YEAR)


class DateConfig(BaseModel):
    """One logical date on a form.

    ``error_keys`` maps each kind of problem to its catalog key and
    ``error_messages`` is the catalog those keys resolve against. Both are
    checked when the config is built.
    """

    prefix: str
    error_message_key: str
    error_keys: Dict[DateErrorKind, str]
    error_messages: Dict[str, str]

    @model_validator(mode="after")
    def _check_catalog(self) -> "DateConfig":
        missing = [kind.value for kind in REQUIRED_KINDS if not self.error_keys.get(kind)]
        if missing:
            raise ValueError(f"Date config '{self.prefix}' has no error key for: {', '.join(missing)}")
        unresolved = [key for key in self.error_keys.values() if key not in self.error_messages]
        if unresolved:
            raise ValueError(f"Date config '{self.prefix}' has no message for: {', '.join(sorted(unresolved))}")
        return self

    @property
    def field_names(self) -> Dict[str, str]:
        return create_date_field_names(self.prefix)

    @property
    def field_error_keys(self) -> Dict[str, str]:
        names = self.field_names
        return {names[kind.value]: self.error_keys[kind] for kind in _FIELD_KINDS}

    def message(self, kind: DateErrorKind) -> Optional[str]:
        key = self.error_keys.get(kind)
        if not key:
            return None
        return self.error_messages[key]


def build_activity_date_configs(messages: Optional[Dict[str, str]] = None) -> List[DateConfig]:
    catalog = dict(messages or c.ACTIVITY_DATES_ERROR_MESSAGES)
    return [
        DateConfig(
            prefix=c.ACTIVITY_START_DATE_PREFIX,
            error_message_key="startDateErrorMessage",
            error_keys={
                DateErrorKind.MISSING: c.CUSTOM_START_DATE_MISSING,
                DateErrorKind.INVALID: c.CUSTOM_START_DATE_INVALID,
                DateErrorKind.TODAY_OR_FUTURE: c.CUSTOM_START_DATE_TODAY_OR_FUTURE,
                DateErrorKind.DAY: c.ACTIVITY_START_DATE_DAY,
                DateErrorKind.MONTH: c.ACTIVITY_START_DATE_MONTH,
                DateErrorKind.YEAR: c.ACTIVITY_START_DATE_YEAR,
            },
            error_messages=catalog,
        ),
        DateConfig(
            prefix=c.ACTIVITY_END_DATE_PREFIX,
            error_message_key="endDateErrorMessage",
            error_keys={
                DateErrorKind.MISSING: c.CUSTOM_END_DATE_MISSING,
                DateErrorKind.INVALID: c.CUSTOM_END_DATE_INVALID,
                DateErrorKind.TODAY_OR_FUTURE: c.CUSTOM_END_DATE_TODAY_OR_FUTURE,
                DateErrorKind.BEFORE_OTHER_DATE: c.CUSTOM_END_DATE_BEFORE_START_DATE,
                DateErrorKind.DAY: c.ACTIVITY_END_DATE_DAY,
                DateErrorKind.MONTH: c.ACTIVITY_END_DATE_MONTH,
                DateErrorKind.YEAR: c.ACTIVITY_END_DATE_YEAR,
            },
            error_messages=catalog,
        ),
    ]


ACTIVITY_DATES_CONFIG = build_activity_date_configs()


def is_complete_date_missing(errors: Mapping[str, Any], prefix: str, field_error_keys: Mapping[str, str]) -> bool:
    names = create_date_field_names(prefix)
    keys = [field_error_keys.get(names[part]) for part in ("DAY", "MONTH", "YEAR")]
    return all(key and errors.get(key) for key in keys)


def has_number_max_errors_for_date(prefix: str, error_type_map: Mapping[str, Mapping[str, Any]]) -> bool:
    """A day or month over its maximum means the date cannot exist."""
    names = create_date_field_names(prefix)
    for part in ("DAY", "MONTH"):
        detail = error_type_map.get(names[part])
        if detail and detail.get("type") == c.NUMBER_MAX:
            return True
    return False


def get_date_error_message(
    config: DateConfig,
    *,
    is_date_missing: bool,
    error_type_map: Mapping[str, Mapping[str, Any]],
    errors: Mapping[str, Any],
) -> Optional[Dict[str, str]]:
    def _reported(kind: DateErrorKind) -> bool:
        key = config.error_keys.get(kind)
        return bool(key and key in error_type_map)

    if is_date_missing:
        return {"text": config.message(DateErrorKind.MISSING)}

    if _reported(DateErrorKind.INVALID) or has_number_max_errors_for_date(config.prefix, error_type_map):
        return {"text": config.message(DateErrorKind.INVALID)}

    for kind in _PRECEDENCE_AFTER_INVALID:
        if _reported(kind):
            return {"text": config.message(kind)}

    for kind in _FIELD_KINDS:
        if errors.get(config.error_keys[kind]):
            return {"text": config.message(kind)}

    return None


def _details_of(err: Any) -> Optional[Sequence[Mapping[str, Any]]]:
    if err is None:
        return None
    if isinstance(err, Mapping):
        return err.get("details")
    return getattr(err, "details", None)


def process_date_validation_errors(
    err: Any,
    date_configs: Sequence[DateConfig],
    error_messages: Mapping[str, str],
) -> Optional[Dict[str, Any]]:
    """Build ``errors``, ``errorSummary`` and one message key per date.

    ``err`` is anything carrying ``details`` (a mapping or an object with a
    ``details`` attribute). Returns None when there are no details at all.
    """
    details = _details_of(err)
    if details is None:
        return None

    error_type_map = create_error_type_map(details)
    basic_summary = map_errors_for_display(details, error_messages)
    errors = error_description_by_field_name(basic_summary)

    ordered = sorted(date_configs, key=lambda config: 0 if "start" in config.prefix else 1)

    error_summary: List[Dict[str, Any]] = []
    date_messages: Dict[str, Optional[Dict[str, str]]] = {}
    for config in ordered:
        message = get_date_error_message(
            config,
            is_date_missing=is_complete_date_missing(errors, config.prefix, config.field_error_keys),
            error_type_map=error_type_map,
            errors=errors,
        )
        date_messages[config.error_message_key] = message
        if message:
            error_summary.append({"href": f"#{config.field_names['DAY']}", "text": message["text"]})

    for entry in basic_summary:
        field = entry.get("field") or []
        first = str(field[0]) if field else ""
        is_date_error = bool(first) and any(config.prefix in first for config in date_configs)
        if not is_date_error and entry["href"] not in ("#", "#undefined"):
            error_summary.append(entry)

    return {
        "errors": errors,
        "errorSummary": error_summary,
        **date_messages,
    }
