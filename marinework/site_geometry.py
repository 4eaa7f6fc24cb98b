# marinework/site_geometry.py
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pyproj
from pyproj.enums import TransformDirection
from shapely.geometry import Point as ShapelyPoint, Polygon, mapping
from shapely.ops import transform as shapely_transform

from marinework import constants as c

log = logging.getLogger("uvicorn.error")


@lru_cache(maxsize=1)
def _osgb36_to_wgs84() -> pyproj.Transformer:
    return pyproj.Transformer.from_crs("EPSG:27700", "EPSG:4326", always_xy=True)


def _utm_transformer(lat: float, lon: float) -> pyproj.Transformer:
    zone = int((lon + 180.0) / 6.0) + 1
    zone = max(1, min(60, zone))
    hemisphere = "north" if lat >= 0 else "south"
    proj = pyproj.CRS.from_proj4(f"+proj=utm +zone={zone} +{hemisphere} +datum=WGS84 +units=m +no_defs")
    return pyproj.Transformer.from_crs("EPSG:4326", proj, always_xy=True)


def point_to_lon_lat(point: Mapping[str, Any], coordinate_system: Optional[str]) -> Tuple[float, float]:
    """(longitude, latitude) of a stored point. Raises ValueError for incomplete points."""
    if coordinate_system == c.COORDINATE_SYSTEMS["WGS84"]:
        return float(point["longitude"]), float(point["latitude"])
    eastings = float(point["eastings"])
    northings = float(point["northings"])
    lon, lat = _osgb36_to_wgs84().transform(eastings, northings)
    return float(lon), float(lat)


def circle_polygon(lon: float, lat: float, width_m: float) -> Polygon:
    """Circle around the centre; the stored width is a diameter."""
    transformer = _utm_transformer(lat, lon)
    centre_xy = ShapelyPoint(*transformer.transform(lon, lat))
    circle_xy = centre_xy.buffer(width_m / 2.0)

    def to_wgs84(x, y, z=None):
        return transformer.transform(x, y, direction=TransformDirection.INVERSE)

    return shapely_transform(to_wgs84, circle_xy)


def site_geometry(site: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """GeoJSON geometry (WGS84) for a manually entered site, or None if it is incomplete."""
    coordinate_system = site.get("coordinateSystem")
    coordinates = site.get("coordinates")
    try:
        if site.get("coordinatesEntry") == c.COORDINATES_ENTRY["MULTIPLE"]:
            points = [point_to_lon_lat(point, coordinate_system) for point in coordinates or []]
            if len(points) < c.POLYGON_MIN_COORDINATE_POINTS:
                return None
            return mapping(Polygon(points))
        if not isinstance(coordinates, Mapping) or not site.get("circleWidth"):
            return None
        lon, lat = point_to_lon_lat(coordinates, coordinate_system)
        return mapping(circle_polygon(lon, lat, float(site["circleWidth"])))
    except (KeyError, TypeError, ValueError) as exc:
        log.warning("Skipping site geometry coordinateSystem=%s error=%s", coordinate_system, exc)
        return None


def sites_feature_collection(sites: List[Mapping[str, Any]]) -> Dict[str, Any]:
    """FeatureCollection for the map; uploaded sites reuse their stored features."""
    features: List[Dict[str, Any]] = []
    for index, site in enumerate(sites):
        properties = {"siteNumber": index + 1, "siteName": site.get("siteName") or ""}
        if site.get("coordinatesType") == c.COORDINATES_TYPE["FILE"]:
            for feature in (site.get("geoJSON") or {}).get("features") or []:
                features.append({**feature, "properties": {**(feature.get("properties") or {}), **properties}})
            continue
        geometry = site_geometry(site)
        if geometry is None:
            continue
        features.append({"type": "Feature", "geometry": _plain(geometry), "properties": properties})
    return {"type": "FeatureCollection", "features": features}


def _plain(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    return value
