"""Read-modify-write helpers for the exemption document held in the session store.

Every mutator reads the whole document, changes one part and writes the whole
document back within the same request. Concurrent requests for one session
(two tabs) are last-write-wins; nothing here locks.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from marinework import constants as c

log = logging.getLogger("uvicorn.error")

# Answers that survive when a multi-site file redefines the site locations.
SITE_ANSWER_FIELDS = ("siteName", "activityDates", "activityDescription")


@dataclass
class CacheContext:
    session_store: Any
    session_key: str
    logger: logging.Logger = field(default=log)


def get_exemption_cache(ctx: CacheContext) -> Dict[str, Any]:
    stored = ctx.session_store.get(ctx.session_key)
    return copy.deepcopy(stored) if stored else {}


def set_exemption_cache(ctx: CacheContext, value: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    cache_value = value or {}
    ctx.session_store.set(ctx.session_key, cache_value)
    return cache_value


def clear_exemption_cache(ctx: CacheContext) -> None:
    ctx.session_store.clear(ctx.session_key)


def _site_list(exemption: Dict[str, Any], length: int) -> List[Dict[str, Any]]:
    sites = [dict(site or {}) for site in (exemption.get("siteDetails") or [])]
    while len(sites) < length:
        sites.append({})
    return sites


def get_site_details_by_site(exemption: Mapping[str, Any], site_index: int = 0) -> Dict[str, Any]:
    """The site being edited; always site 0 outside multi-site mode."""
    sites = exemption.get("siteDetails") or []
    multiple = exemption.get("multipleSiteDetails") or {}
    index = site_index if multiple.get("multipleSitesEnabled") else 0
    if 0 <= index < len(sites):
        return dict(sites[index] or {})
    return {}


def get_site_number(exemption: Mapping[str, Any], raw_site: Any) -> int:
    """1-based site number from a ``?site=`` value, falling back to 1 for unknown sites."""
    sites = exemption.get("siteDetails") or []
    if raw_site in (None, ""):
        return 1
    try:
        number = int(str(raw_site))
    except ValueError:
        return 1
    if 1 <= number <= len(sites):
        return number
    return 1


def update_exemption_site_details(ctx: CacheContext, site_index: int, field_name: str, value: Any) -> Dict[str, Any]:
    exemption = get_exemption_cache(ctx)
    sites = _site_list(exemption, site_index + 1)
    site = sites[site_index]
    site[field_name] = value
    exemption["siteDetails"] = sites
    set_exemption_cache(ctx, exemption)
    return copy.deepcopy(site)


def update_exemption_multiple_site_details(ctx: CacheContext, field_name: str, value: Any) -> Dict[str, Any]:
    exemption = get_exemption_cache(ctx)
    details = dict(exemption.get("multipleSiteDetails") or {})
    details[field_name] = value
    exemption["multipleSiteDetails"] = details
    set_exemption_cache(ctx, exemption)
    return copy.deepcopy(details)


def update_exemption_site_details_batch(
    ctx: CacheContext,
    upload_status: Mapping[str, Any],
    coordinate_data: Mapping[str, Any],
    s3_location: Optional[Mapping[str, Any]],
    *,
    is_multiple_sites_file: bool = False,
) -> Any:
    """Fold a processed upload into the site list.

    ``coordinate_data`` carries ``geoJSON`` (a FeatureCollection) and
    ``extractedCoordinates``. A single-site file updates site 0 and returns it;
    a multi-site file becomes one site per feature and the list is returned.
    """
    exemption = get_exemption_cache(ctx)
    geojson = dict(coordinate_data.get("geoJSON") or {})
    features = list(geojson.get("features") or [])
    uploaded_file = {
        "filename": upload_status.get("filename"),
        "status": upload_status.get("status"),
    }
    if s3_location:
        uploaded_file["s3Location"] = dict(s3_location)

    if not is_multiple_sites_file:
        sites = _site_list(exemption, 1)
        site = sites[0]
        site.update({
            "uploadedFile": uploaded_file,
            "s3Location": dict(s3_location) if s3_location else None,
            "geoJSON": geojson,
            "extractedCoordinates": coordinate_data.get("extractedCoordinates"),
            "featureCount": len(features),
            "uploadConfig": None,
        })
        exemption["siteDetails"] = sites
        set_exemption_cache(ctx, exemption)
        return copy.deepcopy(site)

    extracted = list(coordinate_data.get("extractedCoordinates") or [])
    existing = _site_list(exemption, max(len(features), 1))
    template = existing[0]
    inherited = {
        key: template[key]
        for key in ("coordinatesType", "fileUploadType")
        if key in template
    }
    sites: List[Dict[str, Any]] = []
    for index, feature in enumerate(features):
        if index == 0:
            site = {
                key: value
                for key, value in template.items()
                if key not in COORDINATE_FIELDS_BY_TYPE[c.COORDINATES_TYPE["FILE"]]
            }
        else:
            previous = existing[index] if index < len(existing) else {}
            site = dict(inherited)
            site.update({key: previous[key] for key in SITE_ANSWER_FIELDS if key in previous})
        site.update({
            "uploadedFile": copy.deepcopy(uploaded_file),
            "s3Location": dict(s3_location) if s3_location else None,
            "geoJSON": {**geojson, "features": [feature]},
            "extractedCoordinates": [extracted[index]] if index < len(extracted) else [],
            "featureCount": 1,
            "uploadConfig": None,
        })
        sites.append(site)

    exemption["siteDetails"] = sites
    set_exemption_cache(ctx, exemption)
    ctx.logger.info("Upload fanned out to %s sites session=%s", len(sites), ctx.session_key)
    return copy.deepcopy(sites)


def reset_exemption_site_details(ctx: CacheContext) -> Dict[str, Any]:
    exemption = get_exemption_cache(ctx)
    exemption.pop("siteDetails", None)
    set_exemption_cache(ctx, exemption)
    return {"siteDetails": None}


def remove_exemption_site(ctx: CacheContext, site_index: int) -> List[Dict[str, Any]]:
    exemption = get_exemption_cache(ctx)
    sites = list(exemption.get("siteDetails") or [])
    if 0 <= site_index < len(sites):
        sites.pop(site_index)
    if sites:
        exemption["siteDetails"] = sites
    else:
        exemption.pop("siteDetails", None)
    set_exemption_cache(ctx, exemption)
    return sites


def _copy_to_all_sites(ctx: CacheContext, field_name: str, toggle: str) -> Dict[str, Any]:
    exemption = get_exemption_cache(ctx)
    multiple = exemption.get("multipleSiteDetails") or {}
    sites = list(exemption.get("siteDetails") or [])
    if multiple.get(toggle) != "yes" or len(sites) < 2:
        return exemption
    source = (sites[0] or {}).get(field_name)
    exemption["siteDetails"] = [
        {**(site or {}), field_name: copy.deepcopy(source)} for site in sites
    ]
    return set_exemption_cache(ctx, exemption)


def copy_same_activity_dates_to_all_sites(ctx: CacheContext) -> Dict[str, Any]:
    """Copy site 1's dates onto every site while the dates are shared."""
    return _copy_to_all_sites(ctx, "activityDates", "sameActivityDates")


def copy_same_activity_description_to_all_sites(ctx: CacheContext) -> Dict[str, Any]:
    return _copy_to_all_sites(ctx, "activityDescription", "sameActivityDescription")


def add_exemption_site(ctx: CacheContext) -> int:
    """Append an empty site and return its 1-based number."""
    exemption = get_exemption_cache(ctx)
    sites = list(exemption.get("siteDetails") or [])
    multiple = exemption.get("multipleSiteDetails") or {}
    new_site: Dict[str, Any] = {}
    if sites:
        if multiple.get("sameActivityDates") == "yes" and sites[0].get("activityDates"):
            new_site["activityDates"] = copy.deepcopy(sites[0]["activityDates"])
        if multiple.get("sameActivityDescription") == "yes" and sites[0].get("activityDescription"):
            new_site["activityDescription"] = sites[0]["activityDescription"]
    sites.append(new_site)
    exemption["siteDetails"] = sites
    set_exemption_cache(ctx, exemption)
    return len(sites)


COORDINATE_FIELDS_BY_TYPE = {
    c.COORDINATES_TYPE["FILE"]: (
        "coordinatesEntry",
        "coordinateSystem",
        "coordinates",
        "circleWidth",
    ),
    c.COORDINATES_TYPE["COORDINATES"]: (
        "fileUploadType",
        "uploadedFile",
        "s3Location",
        "geoJSON",
        "extractedCoordinates",
        "featureCount",
        "uploadConfig",
        "uploadError",
    ),
}


def set_coordinates_type(ctx: CacheContext, site_index: int, coordinates_type: str) -> Dict[str, Any]:
    """Record how a site's location is provided and drop data from the other method."""
    exemption = get_exemption_cache(ctx)
    sites = _site_list(exemption, site_index + 1)
    site = sites[site_index]
    if site.get("coordinatesType") != coordinates_type:
        for key in COORDINATE_FIELDS_BY_TYPE.get(coordinates_type, ()):
            site.pop(key, None)
    site["coordinatesType"] = coordinates_type
    exemption["siteDetails"] = sites
    set_exemption_cache(ctx, exemption)
    return copy.deepcopy(site)
