"""Form schemas.

Each form is a pydantic model validated from the raw URL-encoded payload.
Failures are reported as error details shaped ``{"type", "path", "message"}``
(the same shape the backend returns), so one set of helpers in ``errors.py``
and ``date_errors.py`` renders both.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator, model_validator
from pydantic_core import PydanticCustomError

from marinework import constants as c
from marinework.coordinates import coordinate_messages
from marinework.dates import (
    create_date_iso,
    is_end_date_before_start_date,
    is_today_or_future,
    year_window,
)

# pydantic's built-in error types, renamed to the validator vocabulary used in catalogs
PYDANTIC_ERROR_TYPES = {
    "missing": c.ANY_REQUIRED,
    "int_parsing": c.NUMBER_BASE,
    "int_type": c.NUMBER_BASE,
    "int_from_float": c.NUMBER_INTEGER,
    "greater_than_equal": c.NUMBER_MIN,
    "less_than_equal": c.NUMBER_MAX,
    "string_type": "string.base",
    "string_too_short": c.STRING_EMPTY,
    "string_too_long": c.STRING_MAX,
    "too_short": c.ARRAY_MIN,
    "list_type": "array.base",
}

_NUMBER_RE = re.compile(r"^[+-]?\d+(\.\d+)?$")
_WGS84_RE = re.compile(r"^-?\d+(\.\d+)?$")
_OSGB36_RE = re.compile(r"^-?[0-9.]+$")

FormT = TypeVar("FormT", bound="FormSchema")


class FormSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def errors_to_details(exc: ValidationError) -> List[Dict[str, Any]]:
    details: List[Dict[str, Any]] = []
    for error in exc.errors():
        path = list(error.get("loc") or ())
        error_type = PYDANTIC_ERROR_TYPES.get(error["type"], error["type"])
        details.append({
            "type": error_type,
            "path": path,
            "message": error.get("msg") or error_type,
        })
    return details


def validate_form(
    schema: Type[FormT],
    payload: Mapping[str, Any],
    *,
    context: Optional[Dict[str, Any]] = None,
) -> Tuple[Optional[FormT], Optional[List[Dict[str, Any]]]]:
    """Validate ``payload``; returns ``(form, None)`` or ``(None, details)``."""
    try:
        return schema.model_validate(dict(payload), context=context or {}), None
    except ValidationError as exc:
        return None, errors_to_details(exc)


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def whole_number(
    value: Any,
    message: str,
    *,
    minimum: Optional[int] = None,
    maximum: Optional[int] = None,
    min_message: Optional[str] = None,
) -> int:
    text = _text(value)
    if not text:
        raise PydanticCustomError(c.ANY_REQUIRED, message)
    if not _NUMBER_RE.match(text):
        raise PydanticCustomError(c.NUMBER_BASE, message)
    number = float(text)
    if not number.is_integer():
        raise PydanticCustomError(c.NUMBER_INTEGER, message)
    result = int(number)
    if minimum is not None and result < minimum:
        raise PydanticCustomError(c.NUMBER_MIN, min_message or message)
    if maximum is not None and result > maximum:
        raise PydanticCustomError(c.NUMBER_MAX, message)
    return result


def _today(info: ValidationInfo) -> Optional[date]:
    return (info.context or {}).get("today")


# ---------------------------------------------------------------------------
# Activity dates
# ---------------------------------------------------------------------------
class ActivityDatesForm(FormSchema):
    start_day: Any = Field(default=None, alias=c.ACTIVITY_START_DATE_DAY, validate_default=True)
    start_month: Any = Field(default=None, alias=c.ACTIVITY_START_DATE_MONTH, validate_default=True)
    start_year: Any = Field(default=None, alias=c.ACTIVITY_START_DATE_YEAR, validate_default=True)
    end_day: Any = Field(default=None, alias=c.ACTIVITY_END_DATE_DAY, validate_default=True)
    end_month: Any = Field(default=None, alias=c.ACTIVITY_END_DATE_MONTH, validate_default=True)
    end_year: Any = Field(default=None, alias=c.ACTIVITY_END_DATE_YEAR, validate_default=True)

    @field_validator("start_day", "end_day")
    @classmethod
    def _day(cls, value: Any, info: ValidationInfo) -> int:
        field = cls.model_fields[info.field_name].alias
        return whole_number(value, field, minimum=1, maximum=31)

    @field_validator("start_month", "end_month")
    @classmethod
    def _month(cls, value: Any, info: ValidationInfo) -> int:
        field = cls.model_fields[info.field_name].alias
        return whole_number(value, field, minimum=1, maximum=12)

    @field_validator("start_year", "end_year")
    @classmethod
    def _year(cls, value: Any, info: ValidationInfo) -> int:
        field = cls.model_fields[info.field_name].alias
        min_year, max_year = year_window(_today(info))
        if info.field_name == "start_year":
            too_early = c.CUSTOM_START_DATE_TODAY_OR_FUTURE
        else:
            too_early = c.CUSTOM_END_DATE_TODAY_OR_FUTURE
        return whole_number(value, field, minimum=min_year, maximum=max_year, min_message=too_early)

    @model_validator(mode="after")
    def _check_dates(self, info: ValidationInfo) -> "ActivityDatesForm":
        start = create_date_iso(self.start_year, self.start_month, self.start_day)
        if start is None:
            raise PydanticCustomError(c.START_DATE_INVALID_TYPE, c.CUSTOM_START_DATE_INVALID)
        end = create_date_iso(self.end_year, self.end_month, self.end_day)
        if end is None:
            raise PydanticCustomError(c.END_DATE_INVALID_TYPE, c.CUSTOM_END_DATE_INVALID)
        today = _today(info)
        if is_end_date_before_start_date(start, end):
            raise PydanticCustomError(c.END_DATE_BEFORE_START_DATE_TYPE, c.CUSTOM_END_DATE_BEFORE_START_DATE)
        if not is_today_or_future(end, today):
            raise PydanticCustomError(c.END_DATE_TODAY_OR_FUTURE_TYPE, c.CUSTOM_END_DATE_TODAY_OR_FUTURE)
        if not is_today_or_future(start, today):
            raise PydanticCustomError(c.START_DATE_TODAY_OR_FUTURE_TYPE, c.CUSTOM_START_DATE_TODAY_OR_FUTURE)
        return self

    @property
    def start(self) -> str:
        return create_date_iso(self.start_year, self.start_month, self.start_day)  # type: ignore[return-value]

    @property
    def end(self) -> str:
        return create_date_iso(self.end_year, self.end_month, self.end_day)  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Free text
# ---------------------------------------------------------------------------
def _bounded_text(value: Any, max_length: int, required_key: str, max_key: str) -> str:
    text = _text(value)
    if not text:
        raise PydanticCustomError(c.STRING_EMPTY, required_key)
    if len(text) > max_length:
        raise PydanticCustomError(c.STRING_MAX, max_key)
    return text


class ProjectNameForm(FormSchema):
    projectName: Any = Field(default=None, validate_default=True)

    @field_validator("projectName")
    @classmethod
    def _name(cls, value: Any) -> str:
        return _bounded_text(value, c.PROJECT_NAME_MAX_LENGTH, "PROJECT_NAME_REQUIRED", "PROJECT_NAME_MAX_LENGTH")


class SiteNameForm(FormSchema):
    siteName: Any = Field(default=None, validate_default=True)

    @field_validator("siteName")
    @classmethod
    def _name(cls, value: Any) -> str:
        return _bounded_text(value, c.SITE_NAME_MAX_LENGTH, "SITE_NAME_REQUIRED", "SITE_NAME_MAX_LENGTH")


class ActivityDescriptionForm(FormSchema):
    activityDescription: Any = Field(default=None, validate_default=True)

    @field_validator("activityDescription")
    @classmethod
    def _description(cls, value: Any) -> str:
        return _bounded_text(
            value,
            c.ACTIVITY_DESCRIPTION_MAX_LENGTH,
            "ACTIVITY_DESCRIPTION_REQUIRED",
            "ACTIVITY_DESCRIPTION_MAX_LENGTH",
        )


# ---------------------------------------------------------------------------
# Radio questions
# ---------------------------------------------------------------------------
def _choice(value: Any, options: Tuple[str, ...], required_key: str) -> str:
    text = _text(value)
    if text not in options:
        raise PydanticCustomError(c.ANY_REQUIRED, required_key)
    return text


class MultipleSitesForm(FormSchema):
    multipleSitesEnabled: Any = Field(default=None, validate_default=True)

    @field_validator("multipleSitesEnabled")
    @classmethod
    def _answer(cls, value: Any) -> bool:
        return _choice(value, ("yes", "no"), "MULTIPLE_SITES_REQUIRED") == "yes"


class SameActivityDatesForm(FormSchema):
    sameActivityDates: Any = Field(default=None, validate_default=True)

    @field_validator("sameActivityDates")
    @classmethod
    def _answer(cls, value: Any) -> str:
        return _choice(value, ("yes", "no"), "SAME_ACTIVITY_DATES_REQUIRED")


class SameActivityDescriptionForm(FormSchema):
    sameActivityDescription: Any = Field(default=None, validate_default=True)

    @field_validator("sameActivityDescription")
    @classmethod
    def _answer(cls, value: Any) -> str:
        return _choice(value, ("yes", "no"), "SAME_ACTIVITY_DESCRIPTION_REQUIRED")


class CoordinatesTypeForm(FormSchema):
    coordinatesType: Any = Field(default=None, validate_default=True)

    @field_validator("coordinatesType")
    @classmethod
    def _answer(cls, value: Any) -> str:
        return _choice(value, tuple(c.COORDINATES_TYPE.values()), "COORDINATES_TYPE_REQUIRED")


class FileUploadTypeForm(FormSchema):
    fileUploadType: Any = Field(default=None, validate_default=True)

    @field_validator("fileUploadType")
    @classmethod
    def _answer(cls, value: Any) -> str:
        return _choice(value, tuple(c.FILE_UPLOAD_TYPES.values()), "FILE_TYPE_ENTRY_REQUIRED")


class CoordinatesEntryForm(FormSchema):
    coordinatesEntry: Any = Field(default=None, validate_default=True)

    @field_validator("coordinatesEntry")
    @classmethod
    def _answer(cls, value: Any) -> str:
        return _choice(value, tuple(c.COORDINATES_ENTRY.values()), "COORDINATES_ENTRY_REQUIRED")


class CoordinateSystemForm(FormSchema):
    coordinateSystem: Any = Field(default=None, validate_default=True)

    @field_validator("coordinateSystem")
    @classmethod
    def _answer(cls, value: Any) -> str:
        return _choice(value, tuple(c.COORDINATE_SYSTEMS.values()), "COORDINATE_SYSTEM_REQUIRED")


# ---------------------------------------------------------------------------
# Coordinates
# ---------------------------------------------------------------------------
def wgs84_value(value: Any, field: str, messages: Mapping[str, str]) -> str:
    text = _text(value)
    if not text:
        raise PydanticCustomError(c.STRING_EMPTY, messages[c.STRING_EMPTY])
    if not _WGS84_RE.match(text):
        raise PydanticCustomError(c.STRING_PATTERN_BASE, messages[c.STRING_PATTERN_BASE])
    number = float(text)
    limits = c.WGS84_CONSTANTS
    if field == "latitude":
        in_range = limits["MIN_LATITUDE"] <= number <= limits["MAX_LATITUDE"]
    else:
        in_range = limits["MIN_LONGITUDE"] <= number <= limits["MAX_LONGITUDE"]
    if not in_range:
        raise PydanticCustomError(c.NUMBER_RANGE, messages[c.NUMBER_RANGE])
    parts = text.split(".")
    if len(parts) != 2 or len(parts[1]) != limits["DECIMAL_PLACES"]:
        raise PydanticCustomError(c.NUMBER_DECIMAL, messages[c.NUMBER_DECIMAL])
    return text


def osgb36_value(value: Any, field: str, messages: Mapping[str, str]) -> str:
    text = _text(value)
    if not text:
        raise PydanticCustomError(c.STRING_EMPTY, messages[c.STRING_EMPTY])
    if not _OSGB36_RE.match(text):
        raise PydanticCustomError(c.STRING_PATTERN_BASE, messages[c.STRING_PATTERN_BASE])
    try:
        number = float(text)
    except ValueError:
        raise PydanticCustomError(c.STRING_PATTERN_BASE, messages[c.STRING_PATTERN_BASE])
    if number <= 0:
        raise PydanticCustomError(c.NUMBER_POSITIVE, messages[c.NUMBER_POSITIVE])
    limits = c.OSGB36_CONSTANTS
    if field == "eastings":
        in_range = limits["MIN_EASTINGS"] <= number <= limits["MAX_EASTINGS"]
    else:
        in_range = limits["MIN_NORTHINGS"] <= number <= limits["MAX_NORTHINGS"]
    if not in_range:
        raise PydanticCustomError(c.NUMBER_RANGE, messages[c.NUMBER_RANGE])
    return text


class Wgs84CentreForm(FormSchema):
    latitude: Any = Field(default=None, validate_default=True)
    longitude: Any = Field(default=None, validate_default=True)

    @field_validator("latitude", "longitude")
    @classmethod
    def _coordinate(cls, value: Any, info: ValidationInfo) -> str:
        return wgs84_value(value, info.field_name, coordinate_messages(info.field_name, "constants"))


class Osgb36CentreForm(FormSchema):
    eastings: Any = Field(default=None, validate_default=True)
    northings: Any = Field(default=None, validate_default=True)

    @field_validator("eastings", "northings")
    @classmethod
    def _coordinate(cls, value: Any, info: ValidationInfo) -> str:
        return osgb36_value(value, info.field_name, coordinate_messages(info.field_name, "constants"))


class Wgs84Point(FormSchema):
    latitude: Any = Field(default=None, validate_default=True)
    longitude: Any = Field(default=None, validate_default=True)

    @field_validator("latitude", "longitude")
    @classmethod
    def _coordinate(cls, value: Any, info: ValidationInfo) -> str:
        return wgs84_value(value, info.field_name, coordinate_messages(info.field_name, "simple"))


class Osgb36Point(FormSchema):
    eastings: Any = Field(default=None, validate_default=True)
    northings: Any = Field(default=None, validate_default=True)

    @field_validator("eastings", "northings")
    @classmethod
    def _coordinate(cls, value: Any, info: ValidationInfo) -> str:
        return osgb36_value(value, info.field_name, coordinate_messages(info.field_name, "simple"))


_POLYGON_MIN_MESSAGE = f"You must provide at least {c.POLYGON_MIN_COORDINATE_POINTS} coordinate points"


def _polygon_points(value: Any) -> Any:
    if value is None:
        raise PydanticCustomError(c.ANY_REQUIRED, "Coordinates are required")
    if isinstance(value, list) and len(value) < c.POLYGON_MIN_COORDINATE_POINTS:
        raise PydanticCustomError(c.ARRAY_MIN, _POLYGON_MIN_MESSAGE)
    return value


class Wgs84PolygonForm(FormSchema):
    coordinates: List[Wgs84Point] = Field(default=None, validate_default=True)  # type: ignore[assignment]

    @field_validator("coordinates", mode="before")
    @classmethod
    def _minimum(cls, value: Any) -> Any:
        return _polygon_points(value)


class Osgb36PolygonForm(FormSchema):
    coordinates: List[Osgb36Point] = Field(default=None, validate_default=True)  # type: ignore[assignment]

    @field_validator("coordinates", mode="before")
    @classmethod
    def _minimum(cls, value: Any) -> Any:
        return _polygon_points(value)


class CircleWidthForm(FormSchema):
    width: Any = Field(default=None, validate_default=True)

    @field_validator("width")
    @classmethod
    def _width(cls, value: Any) -> str:
        text = _text(value)
        if not text:
            raise PydanticCustomError(c.STRING_EMPTY, "WIDTH_REQUIRED")
        try:
            number = float(text)
        except ValueError:
            raise PydanticCustomError(c.NUMBER_BASE, "WIDTH_INVALID")
        if number != number:
            raise PydanticCustomError(c.NUMBER_BASE, "WIDTH_INVALID")
        if number <= 0:
            raise PydanticCustomError(c.NUMBER_MIN, "WIDTH_MIN")
        if not number.is_integer():
            raise PydanticCustomError(c.NUMBER_INTEGER, "WIDTH_NON_INTEGER")
        return text


CENTRE_FORMS = {
    c.COORDINATE_SYSTEMS["WGS84"]: Wgs84CentreForm,
    c.COORDINATE_SYSTEMS["OSGB36"]: Osgb36CentreForm,
}

POLYGON_FORMS = {
    c.COORDINATE_SYSTEMS["WGS84"]: Wgs84PolygonForm,
    c.COORDINATE_SYSTEMS["OSGB36"]: Osgb36PolygonForm,
}
