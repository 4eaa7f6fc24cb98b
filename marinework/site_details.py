from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from marinework import constants as c
from marinework.coordinates import create_site_details_data_json, extract_coordinates_from_geojson, point_name
from marinework.dates import format_date
from marinework.exemption_cache import CacheContext

log = logging.getLogger("uvicorn.error")

FILE_UPLOAD_DATA_ERROR = "Error getting file upload summary data"


def _is_wgs84(coordinate_system: Optional[str]) -> bool:
    return coordinate_system == c.COORDINATE_SYSTEMS["WGS84"]


def get_coordinate_system_text(coordinate_system: Optional[str]) -> str:
    if not coordinate_system:
        return ""
    return c.COORDINATE_SYSTEM_TEXT["wgs84" if _is_wgs84(coordinate_system) else "osgb36"]


def get_review_summary_text(site: Mapping[str, Any]) -> str:
    if site.get("coordinatesType") != c.COORDINATES_TYPE["COORDINATES"]:
        return ""
    return c.REVIEW_SUMMARY_TEXT.get(site.get("coordinatesEntry") or "", "")


def get_coordinate_display_text(point: Optional[Mapping[str, Any]], coordinate_system: Optional[str]) -> str:
    if not point or not coordinate_system or not isinstance(point, Mapping):
        return ""
    if _is_wgs84(coordinate_system):
        return f"{point.get('latitude')}, {point.get('longitude')}"
    return f"{point.get('eastings')}, {point.get('northings')}"


def _is_complete_point(point: Any, coordinate_system: Optional[str]) -> bool:
    if not isinstance(point, Mapping):
        return False
    if _is_wgs84(coordinate_system):
        return bool(point.get("latitude") and point.get("longitude"))
    return bool(point.get("eastings") and point.get("northings"))


def get_polygon_coordinates_display_data(site: Mapping[str, Any], coordinate_system: Optional[str]) -> List[Dict[str, str]]:
    coordinates = site.get("coordinates")
    if not coordinate_system or not isinstance(coordinates, list):
        return []
    # Labels keep the position the point was entered at.
    return [
        {
            "label": point_name(index).capitalize(),
            "value": get_coordinate_display_text(point, coordinate_system),
        }
        for index, point in enumerate(coordinates)
        if _is_complete_point(point, coordinate_system)
    ]


def get_file_type_text(file_upload_type: Optional[str]) -> str:
    text = c.FILE_TYPE_TEXT.get(file_upload_type or "")
    if not text:
        raise ValueError("Unsupported file type for site details")
    return text


def get_file_upload_summary_data(site: Mapping[str, Any]) -> Dict[str, Any]:
    """Summary of an uploaded-file site. Raises when the site's file data is unusable."""
    uploaded_file = site.get("uploadedFile")
    if not isinstance(uploaded_file, Mapping):
        raise ValueError("Site has no uploaded file")
    geojson = site.get("geoJSON") or {}
    return {
        "method": c.FILE_UPLOAD_METHOD_TEXT,
        "fileUploadType": get_file_type_text(site.get("fileUploadType")),
        "uploadedFile": dict(uploaded_file),
        "geoJSON": geojson,
        "coordinates": extract_coordinates_from_geojson(geojson),
    }


def metres_label(metres: Any) -> str:
    text = str(metres)
    return f"{text} metre" if text == "1" else f"{text} metres"


def visibility_flags(exemption: Mapping[str, Any]) -> Dict[str, bool]:
    multiple = exemption.get("multipleSiteDetails") or {}
    enabled = bool(multiple.get("multipleSitesEnabled"))
    return {
        "showActivityDates": not enabled or multiple.get("sameActivityDates") == "no",
        "showActivityDescription": not enabled or multiple.get("sameActivityDescription") == "no",
    }


def activity_dates_text(activity_dates: Optional[Mapping[str, Any]]) -> str:
    if activity_dates and activity_dates.get("start") and activity_dates.get("end"):
        return f"{format_date(activity_dates['start'])} to {format_date(activity_dates['end'])}"
    return ""


def _file_site_view(site: Dict[str, Any], exemption_id: Any, logger: logging.Logger) -> Dict[str, Any]:
    try:
        summary = get_file_upload_summary_data(site)
        return {
            **site,
            "isFileUpload": True,
            "method": summary["method"],
            "fileType": summary["fileUploadType"],
            "filename": summary["uploadedFile"].get("filename") or c.UNKNOWN_FILENAME,
        }
    except Exception as exc:
        logger.error("%s exemptionId=%s error=%s", FILE_UPLOAD_DATA_ERROR, exemption_id, exc)
        uploaded = site.get("uploadedFile") if isinstance(site.get("uploadedFile"), Mapping) else {}
        return {
            **site,
            "isFileUpload": True,
            "method": c.FILE_UPLOAD_METHOD_TEXT,
            "fileType": "KML" if site.get("fileUploadType") == c.FILE_UPLOAD_TYPES["KML"] else "Shapefile",
            "filename": uploaded.get("filename") or c.UNKNOWN_FILENAME,
        }


def _manual_site_view(site: Dict[str, Any]) -> Dict[str, Any]:
    coordinate_system = site.get("coordinateSystem")
    coordinates_entry = site.get("coordinatesEntry")
    view = {
        "isFileUpload": False,
        "coordinateSystemText": get_coordinate_system_text(coordinate_system),
        "reviewSummaryText": get_review_summary_text({**site, "coordinatesType": c.COORDINATES_TYPE["COORDINATES"]}),
        "coordinatesType": c.COORDINATES_TYPE["COORDINATES"],
        "coordinateSystem": coordinate_system,
        "coordinatesEntry": coordinates_entry,
        "coordinates": site.get("coordinates"),
    }
    if coordinates_entry == c.COORDINATES_ENTRY["MULTIPLE"]:
        view["isPolygonSite"] = True
        view["polygonCoordinates"] = get_polygon_coordinates_display_data(site, coordinate_system)
    else:
        view["isPolygonSite"] = False
        view["coordinateDisplayText"] = get_coordinate_display_text(site.get("coordinates"), coordinate_system)
        view["circleWidth"] = site.get("circleWidth")
    return view


def process_site_details(
    exemption: Mapping[str, Any],
    exemption_id: Any,
    ctx: Optional[CacheContext] = None,
) -> Optional[List[Dict[str, Any]]]:
    """Per-site view models for read-only pages, or None when there are no sites.

    A site whose file data cannot be summarised is logged against the
    exemption id and shown with a generic summary instead.
    """
    sites = exemption.get("siteDetails") or []
    if not sites:
        return None
    logger = ctx.logger if ctx is not None else log
    flags = visibility_flags(exemption)

    views: List[Dict[str, Any]] = []
    for index, raw_site in enumerate(sites):
        site = dict(raw_site or {})
        if site.get("coordinatesType") == c.COORDINATES_TYPE["FILE"]:
            view = _file_site_view(site, exemption_id, logger)
        else:
            view = _manual_site_view(site)
        view.update(flags)
        view["siteNumber"] = index + 1
        view["siteName"] = site.get("siteName") or ""
        view["activityDatesText"] = activity_dates_text(site.get("activityDates")) if flags["showActivityDates"] else ""
        view["activityDescriptionText"] = (site.get("activityDescription") or "") if flags["showActivityDescription"] else ""
        views.append(view)
    return views


def build_site_summary_data(exemption: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """Rows for the review page, one per site, including map data."""
    flags = visibility_flags(exemption)
    rows: List[Dict[str, Any]] = []
    for index, raw_site in enumerate(exemption.get("siteDetails") or []):
        site = dict(raw_site or {})
        coordinate_system = site.get("coordinateSystem")
        row: Dict[str, Any] = {
            "siteNumber": index + 1,
            "siteName": site.get("siteName") or "",
            "activityDates": activity_dates_text(site.get("activityDates")) if flags["showActivityDates"] else "",
            "activityDescription": (site.get("activityDescription") or "") if flags["showActivityDescription"] else "",
            "siteDetailsData": create_site_details_data_json(site, coordinate_system),
            **flags,
        }
        if site.get("coordinatesType") == c.COORDINATES_TYPE["FILE"]:
            uploaded = site.get("uploadedFile") if isinstance(site.get("uploadedFile"), Mapping) else {}
            row.update({
                "isFileUpload": True,
                "method": c.FILE_UPLOAD_METHOD_TEXT,
                "fileType": c.FILE_TYPE_TEXT.get(site.get("fileUploadType") or "", ""),
                "filename": uploaded.get("filename") or c.UNKNOWN_FILENAME,
                "featureCount": site.get("featureCount"),
            })
        else:
            row.update({
                "isFileUpload": False,
                "method": get_review_summary_text(site),
                "coordinateSystem": get_coordinate_system_text(coordinate_system),
            })
            if site.get("coordinatesEntry") == c.COORDINATES_ENTRY["MULTIPLE"]:
                row["polygonCoordinates"] = get_polygon_coordinates_display_data(site, coordinate_system)
            else:
                row["coordinates"] = get_coordinate_display_text(site.get("coordinates"), coordinate_system)
                row["width"] = metres_label(site["circleWidth"]) if site.get("circleWidth") else ""
        rows.append(row)
    return rows


def build_multiple_sites_summary_data(
    multiple_site_details: Optional[Mapping[str, Any]],
    sites: Optional[Sequence[Mapping[str, Any]]],
) -> Dict[str, Any]:
    if not sites or not sites[0]:
        return {}
    details = multiple_site_details or {}
    first = sites[0]
    data: Dict[str, Any] = {
        "multipleSiteDetails": "Yes" if details.get("multipleSitesEnabled") else "No",
        "sameActivityDates": "Yes" if details.get("sameActivityDates") == "yes" else "No",
        "sameActivityDescription": "Yes" if details.get("sameActivityDescription") == "yes" else "No",
    }
    if first.get("coordinatesType") == c.COORDINATES_TYPE["COORDINATES"]:
        data["method"] = "Enter the coordinates of the site manually"
    else:
        data["method"] = c.FILE_UPLOAD_METHOD_TEXT
    if details.get("sameActivityDates") == "yes":
        data["activityDates"] = activity_dates_text(first.get("activityDates"))
    if details.get("sameActivityDescription") == "yes":
        data["activityDescription"] = first.get("activityDescription")
    if first.get("coordinatesType") == c.COORDINATES_TYPE["FILE"]:
        data["fileType"] = get_file_type_text(first.get("fileUploadType"))
        data["filename"] = (first.get("uploadedFile") or {}).get("filename")
    return data


def _site_is_incomplete(site: Mapping[str, Any], multiple_site_details: Mapping[str, Any]) -> bool:
    if not (site.get("siteName") or "").strip():
        return True
    dates = site.get("activityDates") or {}
    if multiple_site_details.get("sameActivityDates") == "no" and not (dates.get("start") and dates.get("end")):
        return True
    if multiple_site_details.get("sameActivityDescription") == "no" and not (site.get("activityDescription") or "").strip():
        return True
    return False


def has_incomplete_fields(sites: Optional[Sequence[Mapping[str, Any]]], multiple_site_details: Optional[Mapping[str, Any]]) -> bool:
    if not sites:
        return False
    details = multiple_site_details or {}
    if not details.get("multipleSitesEnabled"):
        return False
    return any(_site_is_incomplete(site or {}, details) for site in sites)


def prepare_site_details_for_save(exemption: Mapping[str, Any]) -> Dict[str, Any]:
    """Body for ``PATCH /exemption/site-details``; transient upload state is not sent."""
    sites = []
    for raw_site in exemption.get("siteDetails") or []:
        site = {key: value for key, value in dict(raw_site or {}).items() if key not in ("uploadConfig", "uploadError")}
        sites.append(site)
    return {
        "id": exemption.get("id"),
        "multipleSiteDetails": exemption.get("multipleSiteDetails") or {"multipleSitesEnabled": False},
        "siteDetails": sites,
    }
