from __future__ import annotations

from typing import Dict

# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
ROUTES = {
    "DASHBOARD": "/exemption/dashboard",
    "START": "/exemption",
    "PROJECT_NAME": "/exemption/project-name",
    "TASK_LIST": "/exemption/task-list",
    "ACTIVITY_DATES": "/exemption/activity-dates",
    "ACTIVITY_DESCRIPTION": "/exemption/activity-description",
    "MULTIPLE_SITES_CHOICE": "/exemption/does-your-project-involve-more-than-one-site",
    "SITE_NAME": "/exemption/site-name",
    "SAME_ACTIVITY_DATES": "/exemption/same-activity-dates",
    "SAME_ACTIVITY_DESCRIPTION": "/exemption/same-activity-description",
    "SITE_DETAILS_ACTIVITY_DATES": "/exemption/site-details-activity-dates",
    "SITE_DETAILS_ACTIVITY_DESCRIPTION": "/exemption/site-details-activity-description",
    "COORDINATES_TYPE_CHOICE": "/exemption/how-do-you-want-to-provide-the-coordinates",
    "CHOOSE_FILE_UPLOAD_TYPE": "/exemption/choose-file-type-to-upload",
    "FILE_UPLOAD": "/exemption/upload-file",
    "UPLOAD_AND_WAIT": "/exemption/upload-and-wait",
    "COORDINATES_ENTRY_CHOICE": "/exemption/how-do-you-want-to-enter-the-coordinates",
    "COORDINATE_SYSTEM_CHOICE": "/exemption/what-coordinate-system",
    "CIRCLE_CENTRE_POINT": "/exemption/enter-the-coordinates-at-the-centre-point",
    "WIDTH_OF_SITE": "/exemption/width-of-site",
    "ENTER_MULTIPLE_COORDINATES": "/exemption/enter-multiple-coordinates",
    "REVIEW_SITE_DETAILS": "/exemption/review-site-details",
    "ADD_ANOTHER_SITE": "/exemption/add-another-site",
    "DELETE_SITE": "/exemption/delete-site",
    "DELETE_ALL_SITES": "/exemption/delete-all-sites",
    "CHECK_YOUR_ANSWERS": "/exemption/check-your-answers",
    "CONFIRMATION": "/exemption/confirmation",
    "VIEW_DETAILS": "/exemption/view-details",
    "SITE_DETAILS_MAP": "/site-details-map.json",
}

# ---------------------------------------------------------------------------
# Validator error types (shared with the backend's validation payloads)
# ---------------------------------------------------------------------------
ANY_REQUIRED = "any.required"
ANY_ONLY = "any.only"
ARRAY_MIN = "array.min"
NUMBER_BASE = "number.base"
NUMBER_DECIMAL = "number.decimal"
NUMBER_INTEGER = "number.integer"
NUMBER_MAX = "number.max"
NUMBER_MIN = "number.min"
NUMBER_POSITIVE = "number.positive"
NUMBER_RANGE = "number.range"
STRING_EMPTY = "string.empty"
STRING_MAX = "string.max"
STRING_PATTERN_BASE = "string.pattern.base"

# ---------------------------------------------------------------------------
# Activity dates
# ---------------------------------------------------------------------------
ACTIVITY_START_DATE_PREFIX = "activity-start-date"
ACTIVITY_END_DATE_PREFIX = "activity-end-date"

ACTIVITY_START_DATE_DAY = "activity-start-date-day"
ACTIVITY_START_DATE_MONTH = "activity-start-date-month"
ACTIVITY_START_DATE_YEAR = "activity-start-date-year"
ACTIVITY_END_DATE_DAY = "activity-end-date-day"
ACTIVITY_END_DATE_MONTH = "activity-end-date-month"
ACTIVITY_END_DATE_YEAR = "activity-end-date-year"

CUSTOM_START_DATE_MISSING = "CUSTOM_START_DATE_MISSING"
CUSTOM_START_DATE_INVALID = "CUSTOM_START_DATE_INVALID"
CUSTOM_START_DATE_TODAY_OR_FUTURE = "CUSTOM_START_DATE_TODAY_OR_FUTURE"
CUSTOM_END_DATE_MISSING = "CUSTOM_END_DATE_MISSING"
CUSTOM_END_DATE_INVALID = "CUSTOM_END_DATE_INVALID"
CUSTOM_END_DATE_TODAY_OR_FUTURE = "CUSTOM_END_DATE_TODAY_OR_FUTURE"
CUSTOM_END_DATE_BEFORE_START_DATE = "CUSTOM_END_DATE_BEFORE_START_DATE"

# Object-level error types raised once every date part is individually valid
START_DATE_INVALID_TYPE = "custom.startDate.invalid"
END_DATE_INVALID_TYPE = "custom.endDate.invalid"
END_DATE_BEFORE_START_DATE_TYPE = "custom.endDate.before.startDate"
END_DATE_TODAY_OR_FUTURE_TYPE = "custom.endDate.todayOrFuture"
START_DATE_TODAY_OR_FUTURE_TYPE = "custom.startDate.todayOrFuture"

DATE_EXTRACTION_CONFIG = [
    ("activityStartDate", ACTIVITY_START_DATE_PREFIX),
    ("activityEndDate", ACTIVITY_END_DATE_PREFIX),
]

ACTIVITY_DATES_ERROR_MESSAGES: Dict[str, str] = {
    ACTIVITY_START_DATE_DAY: "The start date must include a day",
    ACTIVITY_START_DATE_MONTH: "The start date must include a month",
    ACTIVITY_START_DATE_YEAR: "The start date must include a year",
    ACTIVITY_END_DATE_DAY: "The end date must include a day",
    ACTIVITY_END_DATE_MONTH: "The end date must include a month",
    ACTIVITY_END_DATE_YEAR: "The end date must include a year",
    CUSTOM_START_DATE_MISSING: "Enter the start date",
    CUSTOM_END_DATE_MISSING: "Enter the end date",
    CUSTOM_START_DATE_INVALID: "The start date must be a real date",
    CUSTOM_END_DATE_INVALID: "The end date must be a real date",
    CUSTOM_START_DATE_TODAY_OR_FUTURE: "The start date must be today or in the future",
    CUSTOM_END_DATE_TODAY_OR_FUTURE: "The end date must be today or in the future",
    CUSTOM_END_DATE_BEFORE_START_DATE: "The end date must be the same as or after the start date",
}

# ---------------------------------------------------------------------------
# Coordinates
# ---------------------------------------------------------------------------
COORDINATE_SYSTEMS = {"WGS84": "wgs84", "OSGB36": "osgb36"}
COORDINATES_ENTRY = {"SINGLE": "single", "MULTIPLE": "multiple"}
COORDINATES_TYPE = {"FILE": "file", "COORDINATES": "coordinates"}
FILE_UPLOAD_TYPES = {"KML": "kml", "SHAPEFILE": "shapefile"}

POLYGON_MIN_COORDINATE_POINTS = 3

WGS84_CONSTANTS = {
    "MIN_LATITUDE": -90,
    "MAX_LATITUDE": 90,
    "MIN_LONGITUDE": -180,
    "MAX_LONGITUDE": 180,
    "DECIMAL_PLACES": 6,
}

OSGB36_CONSTANTS = {
    "MIN_EASTINGS": 100000,
    "MAX_EASTINGS": 999999,
    "MIN_NORTHINGS": 100000,
    "MAX_NORTHINGS": 9999999,
}

COORDINATE_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "wgs84": {
        "LATITUDE_REQUIRED": "Enter the latitude",
        "LATITUDE_LENGTH": "Latitude must be between -90 and 90",
        "LATITUDE_NON_NUMERIC": "Latitude must be a number",
        "LATITUDE_DECIMAL_PLACES": "Latitude must include 6 decimal places, like 55.019889",
        "LONGITUDE_REQUIRED": "Enter the longitude",
        "LONGITUDE_LENGTH": "Longitude must be between -180 and 180",
        "LONGITUDE_NON_NUMERIC": "Longitude must be a number",
        "LONGITUDE_DECIMAL_PLACES": "Longitude must include 6 decimal places, like -1.399500",
    },
    "osgb36": {
        "EASTINGS_REQUIRED": "Enter the eastings",
        "EASTINGS_NON_NUMERIC": "Eastings must be a number",
        "EASTINGS_LENGTH": "Eastings must be 6 digits",
        "EASTINGS_POSITIVE_NUMBER": "Eastings must be a positive 6-digit number, like 123456",
        "NORTHINGS_REQUIRED": "Enter the northings",
        "NORTHINGS_NON_NUMERIC": "Northings must be a number",
        "NORTHINGS_LENGTH": "Northings must be 6 or 7 digits",
        "NORTHINGS_POSITIVE_NUMBER": "Northings must be a positive 6 or 7-digit number, like 123456",
    },
}

ENTER_WIDTH = "Enter the width of the circular site in metres"

WIDTH_ERROR_MESSAGES = {
    "WIDTH_REQUIRED": ENTER_WIDTH,
    "WIDTH_INVALID": "The width of the circular site must be a number",
    "WIDTH_MIN": "The width of the circular site must be 1 metre or more",
    "WIDTH_NON_INTEGER": "The width of the circular site must be a whole number, like 10",
}

# ---------------------------------------------------------------------------
# Other pages
# ---------------------------------------------------------------------------
PROJECT_NAME_MAX_LENGTH = 250
SITE_NAME_MAX_LENGTH = 250
ACTIVITY_DESCRIPTION_MAX_LENGTH = 4000

PAGE_ERROR_MESSAGES: Dict[str, str] = {
    "PROJECT_NAME_REQUIRED": "Enter the project name",
    "PROJECT_NAME_MAX_LENGTH": "Project name should be 250 characters or less",
    "SITE_NAME_REQUIRED": "Enter the site name",
    "SITE_NAME_MAX_LENGTH": "Site name should be 250 characters or less",
    "ACTIVITY_DESCRIPTION_REQUIRED": "Enter the activity description",
    "ACTIVITY_DESCRIPTION_MAX_LENGTH": f"Activity description must be {ACTIVITY_DESCRIPTION_MAX_LENGTH} characters or less",
    "MULTIPLE_SITES_REQUIRED": "Select whether you need to tell us about more than one site",
    "SAME_ACTIVITY_DATES_REQUIRED": "Select whether the activity dates are the same for every site",
    "SAME_ACTIVITY_DESCRIPTION_REQUIRED": "Select whether the activity description is the same for every site",
    "COORDINATES_TYPE_REQUIRED": "Select how you want to provide the site location",
    "FILE_TYPE_ENTRY_REQUIRED": "Select which type of file you want to upload",
    "COORDINATES_ENTRY_REQUIRED": "Select how you want to enter the coordinates",
    "COORDINATE_SYSTEM_REQUIRED": "Select which coordinate system you want to use",
}

# ---------------------------------------------------------------------------
# Review page copy
# ---------------------------------------------------------------------------
COORDINATE_SYSTEM_TEXT = {
    "wgs84": "WGS84 (World Geodetic System 1984)\nLatitude and longitude",
    "osgb36": "British National Grid (OSGB36)\nEastings and Northings",
}

REVIEW_SUMMARY_TEXT = {
    "single": "Manually enter one set of coordinates and a width to create a circular site",
    "multiple": "Manually enter multiple sets of coordinates to mark the boundary of the site",
}

FILE_UPLOAD_METHOD_TEXT = "Upload a file with the coordinates of the site"
FILE_TYPE_TEXT = {"kml": "KML", "shapefile": "Shapefile"}
UNKNOWN_FILENAME = "Unknown file"

SERVICE_ERROR_MESSAGES = {
    "EXEMPTION_DATA_NOT_FOUND": "Exemption data not found",
    "EXEMPTION_NOT_FOUND": "Exemption not found",
    "SUBMISSION_FAILED": "Error submitting exemption",
    "UNEXPECTED_API_RESPONSE": "Unexpected API response format",
}
