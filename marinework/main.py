# marinework/main.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from marinework import constants as c
from marinework import settings
from marinework.api_client import ApiResult, BackendClient, get_backend_client
from marinework.coordinates import (
    convert_payload_to_coordinates_array,
    create_coordinate_error_summary,
    create_coordinate_field_errors,
    extract_coordinates_from_geojson,
    fields_for,
    normalise_coordinates_for_display,
    point_name,
    remove_coordinate_at_index,
)
from marinework.date_errors import ACTIVITY_DATES_CONFIG, process_date_validation_errors
from marinework.dates import create_date_fields_from_value, format_date, utc_today
from marinework.errors import error_description_by_field_name, map_errors_for_display
from marinework.exemption_cache import (
    CacheContext,
    add_exemption_site,
    clear_exemption_cache,
    copy_same_activity_dates_to_all_sites,
    copy_same_activity_description_to_all_sites,
    get_exemption_cache,
    get_site_details_by_site,
    get_site_number,
    remove_exemption_site,
    reset_exemption_site_details,
    set_coordinates_type,
    set_exemption_cache,
    update_exemption_multiple_site_details,
    update_exemption_site_details,
    update_exemption_site_details_batch,
)
from marinework.schemas import (
    CENTRE_FORMS,
    POLYGON_FORMS,
    ActivityDatesForm,
    ActivityDescriptionForm,
    CircleWidthForm,
    CoordinateSystemForm,
    CoordinatesEntryForm,
    CoordinatesTypeForm,
    FileUploadTypeForm,
    MultipleSitesForm,
    ProjectNameForm,
    SameActivityDatesForm,
    SameActivityDescriptionForm,
    SiteNameForm,
    validate_form,
)
from marinework.session_store import build_session_store
from marinework.site_details import (
    activity_dates_text,
    build_multiple_sites_summary_data,
    build_site_summary_data,
    has_incomplete_fields,
    prepare_site_details_for_save,
    process_site_details,
)
from marinework.site_geometry import sites_feature_collection
from marinework import upload_service
from marinework.upload_service import UploadServiceClient, get_upload_client

log = logging.getLogger("uvicorn.error")
log.setLevel(settings.LOG_LEVEL)

ROUTES = c.ROUTES

# Ensure templates directory exists
if not settings.TEMPLATES_DIR.exists():
    settings.TEMPLATES_DIR.mkdir(parents=True, exist_ok=True)
    log.warning("templates/ directory was missing; created at %s", settings.TEMPLATES_DIR)

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(title=settings.SERVICE_NAME, version="0.4.0")

SESSION_SECRET = settings.SESSION_SECRET
if not SESSION_SECRET:
    SESSION_SECRET = "dev-secret-key"
    log.warning("SESSION_SECRET not set; using insecure default. Set SESSION_SECRET in production.")

app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET,
    session_cookie=settings.SESSION_COOKIE_NAME,
    max_age=settings.SESSION_TTL_SECONDS,
    same_site="strict",
)

templates = Jinja2Templates(directory=str(settings.TEMPLATES_DIR))
templates.env.filters["format_date"] = format_date

# only mount /static (not as root) for stylesheets and the map script
if settings.STATIC_DIR.exists():
    app.mount("/static", StaticFiles(directory=str(settings.STATIC_DIR)), name="static")
    log.info("Static dir: %s", settings.STATIC_DIR)
else:
    log.warning("static/ not found at %s", settings.STATIC_DIR)

app.state.session_store = build_session_store(settings.SESSION_STORE)


@app.on_event("startup")
async def _on_startup() -> None:
    store = app.state.session_store
    log.info("Session store: %s backend=%s", type(store).__name__, settings.BACKEND_API_URL)
    try:
        purged = store.purge_expired()
    except Exception:
        log.exception("Could not purge expired session documents")
        return
    if purged:
        log.info("Purged %s expired session documents", purged)


# ---------------------------------------------------------------------------
# Error pages
# ---------------------------------------------------------------------------
ERROR_PAGE_TITLES = {
    403: "You do not have access to this page",
    404: "Page not found",
    500: "Sorry, there is a problem with the service",
    503: "Sorry, the service is unavailable",
}


def _error_page(request: Request, status_code: int, detail: Any = None) -> HTMLResponse:
    code = status_code if status_code in ERROR_PAGE_TITLES else 500
    return templates.TemplateResponse(
        request,
        "error.html",
        {
            "request": request,
            "serviceName": settings.SERVICE_NAME,
            "routes": ROUTES,
            "pageTitle": ERROR_PAGE_TITLES[code],
            "heading": ERROR_PAGE_TITLES[code],
            "message": detail if isinstance(detail, str) else None,
            "statusCode": status_code,
        },
        status_code=status_code,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> HTMLResponse:
    if exc.status_code >= 500:
        log.error("HTTP %s on %s: %s", exc.status_code, request.url.path, exc.detail)
    return _error_page(request, exc.status_code, exc.detail)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> HTMLResponse:
    log.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=exc)
    return _error_page(request, 500)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _session_key(request: Request) -> str:
    sid = request.session.get("sid")
    if not sid:
        sid = uuid4().hex
        request.session["sid"] = sid
    return sid


def _ctx(request: Request) -> CacheContext:
    return CacheContext(session_store=request.app.state.session_store, session_key=_session_key(request), logger=log)


def _add_flash(request: Request, message: str, category: str = "info") -> None:
    flashes = request.session.get("_flashes") or []
    flashes.append({"message": message, "category": category})
    request.session["_flashes"] = flashes


def _consume_flashes(request: Request) -> List[Dict[str, str]]:
    flashes = request.session.get("_flashes") or []
    if flashes:
        request.session["_flashes"] = []
    return flashes


def _render(request: Request, name: str, context: Dict[str, Any], status_code: int = 200) -> HTMLResponse:
    payload = {
        "request": request,
        "serviceName": settings.SERVICE_NAME,
        "routes": ROUTES,
        "flashes": _consume_flashes(request),
        "errors": None,
        "errorSummary": None,
    }
    payload.update(context)
    return templates.TemplateResponse(request, name, payload, status_code=status_code)


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=303)


async def _form_payload(request: Request) -> Dict[str, str]:
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def _display_errors(details: List[Dict[str, Any]], catalog: Mapping[str, str]) -> Dict[str, Any]:
    summary = map_errors_for_display(details, catalog)
    return {"errorSummary": summary, "errors": error_description_by_field_name(summary)}


def _raise_backend_failure(result: ApiResult, action: str, exemption_id: Any = None) -> None:
    log.error("%s failed exemptionId=%s status=%s error=%s", action, exemption_id, result.status_code, result.error)
    raise HTTPException(status_code=500, detail=result.error or c.SERVICE_ERROR_MESSAGES["UNEXPECTED_API_RESPONSE"])


@dataclass
class SiteRef:
    index: int
    number: int
    details: Dict[str, Any]
    query: str
    multiple: bool


def _site_ref(request: Request, exemption: Mapping[str, Any]) -> SiteRef:
    multiple = bool((exemption.get("multipleSiteDetails") or {}).get("multipleSitesEnabled"))
    number = get_site_number(exemption, request.query_params.get("site")) if multiple else 1
    index = number - 1
    query = f"?site={number}" if multiple else ""
    return SiteRef(index, number, get_site_details_by_site(exemption, index), query, multiple)


def _is_change(request: Request) -> bool:
    return request.query_params.get("action") == "change"


def _review_anchor(site: SiteRef) -> str:
    return f"{ROUTES['REVIEW_SITE_DETAILS']}#site-details-{site.number}"


def _with_action(url: str, request: Request) -> str:
    if not _is_change(request):
        return url
    return f"{url}{'&' if '?' in url else '?'}action=change"


def _location_route(site: SiteRef) -> str:
    if site.details.get("coordinatesType") == c.COORDINATES_TYPE["FILE"]:
        return ROUTES["CHOOSE_FILE_UPLOAD_TYPE"]
    return ROUTES["COORDINATES_ENTRY_CHOICE"] + site.query


def _require_exemption_id(exemption: Mapping[str, Any]) -> Optional[RedirectResponse]:
    if not exemption.get("id"):
        return _redirect(ROUTES["PROJECT_NAME"])
    return None


# ---------------------------------------------------------------------------
# Radio questions
# ---------------------------------------------------------------------------
RADIO_PAGES: Dict[str, Dict[str, Any]] = {
    "MULTIPLE_SITES_CHOICE": {
        "pageTitle": "Does your project involve more than one site?",
        "name": "multipleSitesEnabled",
        "hint": "A site is an area where the activity will take place.",
        "options": [("yes", "Yes", None), ("no", "No", None)],
        "backLink": ROUTES["COORDINATES_TYPE_CHOICE"],
    },
    "SAME_ACTIVITY_DATES": {
        "pageTitle": "Are the activity dates the same for every site?",
        "name": "sameActivityDates",
        "hint": None,
        "options": [("yes", "Yes", None), ("no", "No", None)],
        "backLink": ROUTES["SITE_NAME"],
    },
    "SAME_ACTIVITY_DESCRIPTION": {
        "pageTitle": "Is the activity description the same for every site?",
        "name": "sameActivityDescription",
        "hint": None,
        "options": [("yes", "Yes", None), ("no", "No", None)],
        "backLink": ROUTES["SITE_DETAILS_ACTIVITY_DATES"],
    },
    "COORDINATES_TYPE_CHOICE": {
        "pageTitle": "How do you want to provide the site location?",
        "name": "coordinatesType",
        "hint": None,
        "options": [
            (c.COORDINATES_TYPE["FILE"], c.FILE_UPLOAD_METHOD_TEXT, None),
            (c.COORDINATES_TYPE["COORDINATES"], "Enter the coordinates of the site manually", None),
        ],
        "backLink": ROUTES["TASK_LIST"],
    },
    "CHOOSE_FILE_UPLOAD_TYPE": {
        "pageTitle": "Which type of file do you want to upload?",
        "name": "fileUploadType",
        "hint": None,
        "options": [
            (c.FILE_UPLOAD_TYPES["KML"], "KML", None),
            (c.FILE_UPLOAD_TYPES["SHAPEFILE"], "Shapefile", "Upload a .zip file containing the .shp, .shx, .dbf and .prj files"),
        ],
        "backLink": ROUTES["COORDINATES_TYPE_CHOICE"],
    },
    "COORDINATES_ENTRY_CHOICE": {
        "pageTitle": "How do you want to enter the coordinates?",
        "name": "coordinatesEntry",
        "hint": None,
        "options": [
            (c.COORDINATES_ENTRY["SINGLE"], "Enter one set of coordinates and a width to create a circular site", None),
            (c.COORDINATES_ENTRY["MULTIPLE"], "Enter multiple sets of coordinates to mark the boundary of the site", None),
        ],
        "backLink": ROUTES["SITE_DETAILS_ACTIVITY_DESCRIPTION"],
    },
    "COORDINATE_SYSTEM_CHOICE": {
        "pageTitle": "Which coordinate system do you want to use?",
        "name": "coordinateSystem",
        "hint": None,
        "options": [
            (c.COORDINATE_SYSTEMS["WGS84"], "WGS84 (World Geodetic System 1984)", "Latitude and longitude"),
            (c.COORDINATE_SYSTEMS["OSGB36"], "British National Grid (OSGB36)", "Eastings and Northings"),
        ],
        "backLink": ROUTES["COORDINATES_ENTRY_CHOICE"],
    },
}


def _render_radio(
    request: Request,
    page_key: str,
    exemption: Mapping[str, Any],
    selected: Optional[str],
    *,
    site: Optional[SiteRef] = None,
    errors: Optional[Dict[str, Any]] = None,
) -> HTMLResponse:
    page = RADIO_PAGES[page_key]
    query = site.query if site else ""
    back_link = _review_anchor(site) if site and _is_change(request) else page["backLink"] + query
    context = {
        **page,
        "heading": page["pageTitle"],
        "projectName": exemption.get("projectName"),
        "selected": selected,
        "backLink": back_link,
        "cancelLink": ROUTES["TASK_LIST"],
        "siteNumber": site.number if site and site.multiple else None,
    }
    if errors:
        context.update(errors)
    return _render(request, "radio_page.html", context, status_code=400 if errors else 200)


def _yes_no(value: Any) -> Optional[str]:
    if value is True:
        return "yes"
    if value is False:
        return "no"
    return None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/", include_in_schema=False)
def root() -> RedirectResponse:
    return _redirect(ROUTES["DASHBOARD"])


@app.get("/healthz")
def healthz() -> Dict[str, bool]:
    return {"ok": True}


@app.get(ROUTES["START"])
def start_exemption(request: Request) -> RedirectResponse:
    clear_exemption_cache(_ctx(request))
    return _redirect(ROUTES["PROJECT_NAME"])


# --- Project name ----------------------------------------------------------
@app.get(ROUTES["PROJECT_NAME"], response_class=HTMLResponse)
def project_name_page(request: Request) -> HTMLResponse:
    exemption = get_exemption_cache(_ctx(request))
    return _render_project_name(request, exemption.get("projectName") or "", exemption)


def _render_project_name(request: Request, value: str, exemption: Mapping[str, Any], errors: Optional[Dict[str, Any]] = None) -> HTMLResponse:
    context = {
        "pageTitle": "Project name",
        "heading": "Project name",
        "name": "projectName",
        "value": value,
        "hint": "The project name should be recognisable to you and help you to identify it.",
        "multiline": False,
        "backLink": ROUTES["TASK_LIST"] if exemption.get("id") else ROUTES["DASHBOARD"],
        "cancelLink": ROUTES["TASK_LIST"] if exemption.get("id") else ROUTES["DASHBOARD"],
    }
    if errors:
        context.update(errors)
    return _render(request, "text_page.html", context, status_code=400 if errors else 200)


@app.post(ROUTES["PROJECT_NAME"], response_class=HTMLResponse)
async def project_name_submit(request: Request, backend: BackendClient = Depends(get_backend_client)) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    payload = await _form_payload(request)
    form, details = validate_form(ProjectNameForm, payload)
    if details:
        return _render_project_name(request, payload.get("projectName", ""), exemption, _display_errors(details, c.PAGE_ERROR_MESSAGES))

    if exemption.get("id"):
        result = backend.update_project_name(exemption["id"], form.projectName)
    else:
        result = backend.create_project_name(form.projectName)
    if result.is_validation_error:
        return _render_project_name(request, form.projectName, exemption, _display_errors(result.details, c.PAGE_ERROR_MESSAGES))
    if not result.ok:
        _raise_backend_failure(result, "Project name save", exemption.get("id"))

    exemption_id = exemption.get("id") or (result.value or {}).get("id")
    if not exemption_id:
        log.error("Project name create returned no id: value=%s", result.value)
        raise HTTPException(status_code=500, detail=c.SERVICE_ERROR_MESSAGES["UNEXPECTED_API_RESPONSE"])
    set_exemption_cache(ctx, {**exemption, "id": exemption_id, "projectName": form.projectName})
    return _redirect(ROUTES["TASK_LIST"])


# --- Task list -------------------------------------------------------------
def _task_list_items(exemption: Mapping[str, Any]) -> List[Dict[str, Any]]:
    sites = exemption.get("siteDetails") or []
    sites_complete = bool(sites) and not has_incomplete_fields(sites, exemption.get("multipleSiteDetails"))
    return [
        {"title": "Project name", "href": ROUTES["PROJECT_NAME"], "complete": bool(exemption.get("projectName"))},
        {"title": "Activity dates", "href": ROUTES["ACTIVITY_DATES"], "complete": bool(exemption.get("activityDates"))},
        {"title": "Activity description", "href": ROUTES["ACTIVITY_DESCRIPTION"], "complete": bool(exemption.get("activityDescription"))},
        {
            "title": "Site details",
            "href": ROUTES["REVIEW_SITE_DETAILS"] if sites else ROUTES["COORDINATES_TYPE_CHOICE"],
            "complete": sites_complete,
        },
    ]


@app.get(ROUTES["TASK_LIST"], response_class=HTMLResponse)
def task_list_page(request: Request) -> Response:
    exemption = get_exemption_cache(_ctx(request))
    missing = _require_exemption_id(exemption)
    if missing:
        return missing
    items = _task_list_items(exemption)
    return _render(request, "task_list.html", {
        "pageTitle": "Task list",
        "heading": exemption.get("projectName"),
        "projectName": exemption.get("projectName"),
        "tasks": items,
        "allComplete": all(item["complete"] for item in items),
    })


# --- Activity dates --------------------------------------------------------
def _date_values(payload: Optional[Mapping[str, Any]], dates: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    if payload is not None:
        names = [
            c.ACTIVITY_START_DATE_DAY, c.ACTIVITY_START_DATE_MONTH, c.ACTIVITY_START_DATE_YEAR,
            c.ACTIVITY_END_DATE_DAY, c.ACTIVITY_END_DATE_MONTH, c.ACTIVITY_END_DATE_YEAR,
        ]
        return {name: str(payload.get(name) or "") for name in names}
    dates = dates or {}
    return {
        **create_date_fields_from_value(dates.get("start"), c.ACTIVITY_START_DATE_PREFIX),
        **create_date_fields_from_value(dates.get("end"), c.ACTIVITY_END_DATE_PREFIX),
    }


def _render_activity_dates(
    request: Request,
    exemption: Mapping[str, Any],
    values: Dict[str, str],
    *,
    back_link: str,
    site: Optional[SiteRef] = None,
    errors: Optional[Dict[str, Any]] = None,
) -> HTMLResponse:
    context: Dict[str, Any] = {
        "pageTitle": "Activity dates",
        "heading": "Activity dates",
        "projectName": exemption.get("projectName"),
        "values": values,
        "startPrefix": c.ACTIVITY_START_DATE_PREFIX,
        "endPrefix": c.ACTIVITY_END_DATE_PREFIX,
        "backLink": back_link,
        "cancelLink": ROUTES["TASK_LIST"],
        "siteNumber": site.number if site and site.multiple else None,
        "startDateErrorMessage": None,
        "endDateErrorMessage": None,
    }
    if errors:
        context.update(errors)
    return _render(request, "activity_dates.html", context, status_code=400 if errors else 200)


def _validate_activity_dates(payload: Mapping[str, Any]) -> Tuple[Optional[ActivityDatesForm], Optional[Dict[str, Any]]]:
    form, details = validate_form(ActivityDatesForm, payload, context={"today": utc_today()})
    if details:
        return None, process_date_validation_errors(
            {"details": details}, ACTIVITY_DATES_CONFIG, c.ACTIVITY_DATES_ERROR_MESSAGES
        )
    return form, None


@app.get(ROUTES["ACTIVITY_DATES"], response_class=HTMLResponse)
def activity_dates_page(request: Request) -> HTMLResponse:
    exemption = get_exemption_cache(_ctx(request))
    return _render_activity_dates(
        request, exemption, _date_values(None, exemption.get("activityDates")), back_link=ROUTES["TASK_LIST"]
    )


@app.post(ROUTES["ACTIVITY_DATES"], response_class=HTMLResponse)
async def activity_dates_submit(request: Request, backend: BackendClient = Depends(get_backend_client)) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    missing = _require_exemption_id(exemption)
    if missing:
        return missing
    payload = await _form_payload(request)
    form, errors = _validate_activity_dates(payload)
    if errors:
        return _render_activity_dates(request, exemption, _date_values(payload, None), back_link=ROUTES["TASK_LIST"], errors=errors)

    result = backend.update_activity_dates(exemption["id"], form.start, form.end)
    if result.is_validation_error:
        backend_errors = process_date_validation_errors(result, ACTIVITY_DATES_CONFIG, c.ACTIVITY_DATES_ERROR_MESSAGES)
        return _render_activity_dates(request, exemption, _date_values(payload, None), back_link=ROUTES["TASK_LIST"], errors=backend_errors)
    if not result.ok:
        _raise_backend_failure(result, "Activity dates save", exemption["id"])

    set_exemption_cache(ctx, {**exemption, "activityDates": {"start": form.start, "end": form.end}})
    return _redirect(ROUTES["TASK_LIST"])


# --- Activity description --------------------------------------------------
def _render_description(
    request: Request,
    exemption: Mapping[str, Any],
    value: str,
    *,
    back_link: str,
    site: Optional[SiteRef] = None,
    errors: Optional[Dict[str, Any]] = None,
) -> HTMLResponse:
    context = {
        "pageTitle": "Activity description",
        "heading": "Activity description",
        "name": "activityDescription",
        "value": value,
        "hint": "Briefly describe what you will be doing, how you will do it and what equipment you will use.",
        "multiline": True,
        "maxLength": c.ACTIVITY_DESCRIPTION_MAX_LENGTH,
        "projectName": exemption.get("projectName"),
        "backLink": back_link,
        "cancelLink": ROUTES["TASK_LIST"],
        "siteNumber": site.number if site and site.multiple else None,
    }
    if errors:
        context.update(errors)
    return _render(request, "text_page.html", context, status_code=400 if errors else 200)


@app.get(ROUTES["ACTIVITY_DESCRIPTION"], response_class=HTMLResponse)
def activity_description_page(request: Request) -> HTMLResponse:
    exemption = get_exemption_cache(_ctx(request))
    return _render_description(request, exemption, exemption.get("activityDescription") or "", back_link=ROUTES["TASK_LIST"])


@app.post(ROUTES["ACTIVITY_DESCRIPTION"], response_class=HTMLResponse)
async def activity_description_submit(request: Request, backend: BackendClient = Depends(get_backend_client)) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    missing = _require_exemption_id(exemption)
    if missing:
        return missing
    payload = await _form_payload(request)
    form, details = validate_form(ActivityDescriptionForm, payload)
    if details:
        return _render_description(
            request, exemption, payload.get("activityDescription", ""),
            back_link=ROUTES["TASK_LIST"], errors=_display_errors(details, c.PAGE_ERROR_MESSAGES),
        )

    result = backend.update_activity_description(exemption["id"], form.activityDescription)
    if result.is_validation_error:
        return _render_description(
            request, exemption, form.activityDescription,
            back_link=ROUTES["TASK_LIST"], errors=_display_errors(result.details, c.PAGE_ERROR_MESSAGES),
        )
    if not result.ok:
        _raise_backend_failure(result, "Activity description save", exemption["id"])

    set_exemption_cache(ctx, {**exemption, "activityDescription": form.activityDescription})
    return _redirect(ROUTES["TASK_LIST"])


# --- Site details: how the location is provided ----------------------------
@app.get(ROUTES["COORDINATES_TYPE_CHOICE"], response_class=HTMLResponse)
def coordinates_type_page(request: Request) -> HTMLResponse:
    exemption = get_exemption_cache(_ctx(request))
    site = _site_ref(request, exemption)
    return _render_radio(request, "COORDINATES_TYPE_CHOICE", exemption, site.details.get("coordinatesType"), site=site)


@app.post(ROUTES["COORDINATES_TYPE_CHOICE"], response_class=HTMLResponse)
async def coordinates_type_submit(request: Request) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    site = _site_ref(request, exemption)
    payload = await _form_payload(request)
    form, details = validate_form(CoordinatesTypeForm, payload)
    if details:
        return _render_radio(
            request, "COORDINATES_TYPE_CHOICE", exemption, None,
            site=site, errors=_display_errors(details, c.PAGE_ERROR_MESSAGES),
        )
    set_coordinates_type(ctx, site.index, form.coordinatesType)
    if _is_change(request) and site.details.get("coordinatesType") == form.coordinatesType:
        return _redirect(_review_anchor(site))
    if form.coordinatesType == c.COORDINATES_TYPE["FILE"] and site.index > 0:
        return _redirect(ROUTES["CHOOSE_FILE_UPLOAD_TYPE"])
    if site.index > 0:
        return _redirect(ROUTES["COORDINATES_ENTRY_CHOICE"] + site.query)
    return _redirect(ROUTES["MULTIPLE_SITES_CHOICE"])


# --- Site details: one site or several ------------------------------------
@app.get(ROUTES["MULTIPLE_SITES_CHOICE"], response_class=HTMLResponse)
def multiple_sites_page(request: Request) -> HTMLResponse:
    exemption = get_exemption_cache(_ctx(request))
    selected = _yes_no((exemption.get("multipleSiteDetails") or {}).get("multipleSitesEnabled"))
    return _render_radio(request, "MULTIPLE_SITES_CHOICE", exemption, selected)


@app.post(ROUTES["MULTIPLE_SITES_CHOICE"], response_class=HTMLResponse)
async def multiple_sites_submit(request: Request) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    payload = await _form_payload(request)
    form, details = validate_form(MultipleSitesForm, payload)
    if details:
        return _render_radio(
            request, "MULTIPLE_SITES_CHOICE", exemption, None,
            errors=_display_errors(details, c.PAGE_ERROR_MESSAGES),
        )

    if form.multipleSitesEnabled:
        update_exemption_multiple_site_details(ctx, "multipleSitesEnabled", True)
        return _redirect(f"{ROUTES['SITE_NAME']}?site=1")

    exemption = get_exemption_cache(ctx)
    sites = exemption.get("siteDetails") or []
    if len(sites) > 1:
        log.info("Multiple sites switched off; keeping site 1 of %s session=%s", len(sites), ctx.session_key)
        exemption["siteDetails"] = sites[:1]
    exemption["multipleSiteDetails"] = {"multipleSitesEnabled": False}
    set_exemption_cache(ctx, exemption)
    return _redirect(ROUTES["SITE_DETAILS_ACTIVITY_DATES"])


# --- Site details: site name -----------------------------------------------
def _render_site_name(request: Request, exemption: Mapping[str, Any], site: SiteRef, value: str, errors: Optional[Dict[str, Any]] = None) -> HTMLResponse:
    if _is_change(request):
        back_link = _review_anchor(site)
    elif site.index == 0:
        back_link = ROUTES["MULTIPLE_SITES_CHOICE"]
    else:
        back_link = ROUTES["REVIEW_SITE_DETAILS"]
    context = {
        "pageTitle": "Site name",
        "heading": "Site name",
        "name": "siteName",
        "value": value,
        "hint": "The site name should help you identify the site.",
        "multiline": False,
        "projectName": exemption.get("projectName"),
        "backLink": back_link,
        "cancelLink": ROUTES["TASK_LIST"],
        "siteNumber": site.number,
    }
    if errors:
        context.update(errors)
    return _render(request, "text_page.html", context, status_code=400 if errors else 200)


@app.get(ROUTES["SITE_NAME"], response_class=HTMLResponse)
def site_name_page(request: Request) -> HTMLResponse:
    exemption = get_exemption_cache(_ctx(request))
    site = _site_ref(request, exemption)
    return _render_site_name(request, exemption, site, site.details.get("siteName") or "")


def _next_after_site_dates(exemption: Mapping[str, Any], site: SiteRef) -> str:
    multiple = exemption.get("multipleSiteDetails") or {}
    if site.multiple and site.index == 0:
        return ROUTES["SAME_ACTIVITY_DESCRIPTION"]
    if not site.multiple or multiple.get("sameActivityDescription") == "no":
        return ROUTES["SITE_DETAILS_ACTIVITY_DESCRIPTION"] + site.query
    return _location_route(site)


@app.post(ROUTES["SITE_NAME"], response_class=HTMLResponse)
async def site_name_submit(request: Request) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    site = _site_ref(request, exemption)
    payload = await _form_payload(request)
    form, details = validate_form(SiteNameForm, payload)
    if details:
        return _render_site_name(request, exemption, site, payload.get("siteName", ""), _display_errors(details, c.PAGE_ERROR_MESSAGES))

    update_exemption_site_details(ctx, site.index, "siteName", form.siteName)
    if _is_change(request):
        return _redirect(_review_anchor(site))
    if site.index == 0:
        return _redirect(ROUTES["SAME_ACTIVITY_DATES"])
    multiple = exemption.get("multipleSiteDetails") or {}
    if multiple.get("sameActivityDates") == "no":
        return _redirect(ROUTES["SITE_DETAILS_ACTIVITY_DATES"] + site.query)
    return _redirect(_next_after_site_dates(exemption, site))


# --- Site details: shared dates and description ---------------------------
@app.get(ROUTES["SAME_ACTIVITY_DATES"], response_class=HTMLResponse)
def same_activity_dates_page(request: Request) -> HTMLResponse:
    exemption = get_exemption_cache(_ctx(request))
    selected = (exemption.get("multipleSiteDetails") or {}).get("sameActivityDates")
    return _render_radio(request, "SAME_ACTIVITY_DATES", exemption, selected)


@app.post(ROUTES["SAME_ACTIVITY_DATES"], response_class=HTMLResponse)
async def same_activity_dates_submit(request: Request) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    payload = await _form_payload(request)
    form, details = validate_form(SameActivityDatesForm, payload)
    if details:
        return _render_radio(
            request, "SAME_ACTIVITY_DATES", exemption, None,
            errors=_display_errors(details, c.PAGE_ERROR_MESSAGES),
        )
    update_exemption_multiple_site_details(ctx, "sameActivityDates", form.sameActivityDates)
    copy_same_activity_dates_to_all_sites(ctx)
    return _redirect(f"{ROUTES['SITE_DETAILS_ACTIVITY_DATES']}?site=1")


@app.get(ROUTES["SAME_ACTIVITY_DESCRIPTION"], response_class=HTMLResponse)
def same_activity_description_page(request: Request) -> HTMLResponse:
    exemption = get_exemption_cache(_ctx(request))
    selected = (exemption.get("multipleSiteDetails") or {}).get("sameActivityDescription")
    return _render_radio(request, "SAME_ACTIVITY_DESCRIPTION", exemption, selected)


@app.post(ROUTES["SAME_ACTIVITY_DESCRIPTION"], response_class=HTMLResponse)
async def same_activity_description_submit(request: Request) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    payload = await _form_payload(request)
    form, details = validate_form(SameActivityDescriptionForm, payload)
    if details:
        return _render_radio(
            request, "SAME_ACTIVITY_DESCRIPTION", exemption, None,
            errors=_display_errors(details, c.PAGE_ERROR_MESSAGES),
        )
    update_exemption_multiple_site_details(ctx, "sameActivityDescription", form.sameActivityDescription)
    copy_same_activity_description_to_all_sites(ctx)
    return _redirect(f"{ROUTES['SITE_DETAILS_ACTIVITY_DESCRIPTION']}?site=1")


# --- Site details: per-site dates and description -------------------------
def _site_dates_back_link(request: Request, site: SiteRef) -> str:
    if _is_change(request):
        return _review_anchor(site)
    if site.multiple and site.index == 0:
        return ROUTES["SAME_ACTIVITY_DATES"]
    if site.multiple:
        return ROUTES["SITE_NAME"] + site.query
    return ROUTES["MULTIPLE_SITES_CHOICE"]


@app.get(ROUTES["SITE_DETAILS_ACTIVITY_DATES"], response_class=HTMLResponse)
def site_activity_dates_page(request: Request) -> HTMLResponse:
    exemption = get_exemption_cache(_ctx(request))
    site = _site_ref(request, exemption)
    return _render_activity_dates(
        request, exemption, _date_values(None, site.details.get("activityDates")),
        back_link=_site_dates_back_link(request, site), site=site,
    )


@app.post(ROUTES["SITE_DETAILS_ACTIVITY_DATES"], response_class=HTMLResponse)
async def site_activity_dates_submit(request: Request) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    site = _site_ref(request, exemption)
    payload = await _form_payload(request)
    form, errors = _validate_activity_dates(payload)
    if errors:
        return _render_activity_dates(
            request, exemption, _date_values(payload, None),
            back_link=_site_dates_back_link(request, site), site=site, errors=errors,
        )
    update_exemption_site_details(ctx, site.index, "activityDates", {"start": form.start, "end": form.end})
    if site.index == 0:
        copy_same_activity_dates_to_all_sites(ctx)
    if _is_change(request):
        return _redirect(_review_anchor(site))
    return _redirect(_next_after_site_dates(get_exemption_cache(ctx), site))


def _site_description_back_link(request: Request, site: SiteRef) -> str:
    if _is_change(request):
        return _review_anchor(site)
    if site.multiple and site.index == 0:
        return ROUTES["SAME_ACTIVITY_DESCRIPTION"]
    return ROUTES["SITE_DETAILS_ACTIVITY_DATES"] + site.query


@app.get(ROUTES["SITE_DETAILS_ACTIVITY_DESCRIPTION"], response_class=HTMLResponse)
def site_activity_description_page(request: Request) -> HTMLResponse:
    exemption = get_exemption_cache(_ctx(request))
    site = _site_ref(request, exemption)
    return _render_description(
        request, exemption, site.details.get("activityDescription") or "",
        back_link=_site_description_back_link(request, site), site=site,
    )


@app.post(ROUTES["SITE_DETAILS_ACTIVITY_DESCRIPTION"], response_class=HTMLResponse)
async def site_activity_description_submit(request: Request) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    site = _site_ref(request, exemption)
    payload = await _form_payload(request)
    form, details = validate_form(ActivityDescriptionForm, payload)
    if details:
        return _render_description(
            request, exemption, payload.get("activityDescription", ""),
            back_link=_site_description_back_link(request, site), site=site,
            errors=_display_errors(details, c.PAGE_ERROR_MESSAGES),
        )
    update_exemption_site_details(ctx, site.index, "activityDescription", form.activityDescription)
    if site.index == 0:
        copy_same_activity_description_to_all_sites(ctx)
    if _is_change(request):
        return _redirect(_review_anchor(site))
    return _redirect(_location_route(site))


# --- Site details: file upload --------------------------------------------
@app.get(ROUTES["CHOOSE_FILE_UPLOAD_TYPE"], response_class=HTMLResponse)
def choose_file_type_page(request: Request) -> HTMLResponse:
    exemption = get_exemption_cache(_ctx(request))
    site = get_site_details_by_site(exemption, 0)
    return _render_radio(request, "CHOOSE_FILE_UPLOAD_TYPE", exemption, site.get("fileUploadType"))


@app.post(ROUTES["CHOOSE_FILE_UPLOAD_TYPE"], response_class=HTMLResponse)
async def choose_file_type_submit(request: Request) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    payload = await _form_payload(request)
    form, details = validate_form(FileUploadTypeForm, payload)
    if details:
        return _render_radio(
            request, "CHOOSE_FILE_UPLOAD_TYPE", exemption, None,
            errors=_display_errors(details, c.PAGE_ERROR_MESSAGES),
        )
    update_exemption_site_details(ctx, 0, "fileUploadType", form.fileUploadType)
    return _redirect(ROUTES["FILE_UPLOAD"])


@app.get(ROUTES["FILE_UPLOAD"], response_class=HTMLResponse)
def file_upload_page(request: Request, uploads: UploadServiceClient = Depends(get_upload_client)) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    site = get_site_details_by_site(exemption, 0)
    file_upload_type = site.get("fileUploadType")
    if not file_upload_type:
        return _redirect(ROUTES["CHOOSE_FILE_UPLOAD_TYPE"])

    errors: Dict[str, Any] = {}
    upload_error = site.get("uploadError")
    if upload_error:
        detail = {"type": "upload.error", "path": [upload_error.get("fieldName") or "file"], "message": upload_error.get("message")}
        errors = _display_errors([detail], {})
        update_exemption_site_details(ctx, 0, "uploadError", None)

    try:
        upload_config = uploads.initiate(
            redirect_url=f"{settings.APP_BASE_URL}{ROUTES['UPLOAD_AND_WAIT']}",
            s3_bucket=settings.UPLOAD_BUCKET,
            s3_path=settings.UPLOAD_PATH_PREFIX,
        )
    except (RuntimeError, ValueError) as exc:
        log.error("Failed to initialise file upload exemptionId=%s fileType=%s error=%s", exemption.get("id"), file_upload_type, exc)
        return _redirect(ROUTES["CHOOSE_FILE_UPLOAD_TYPE"])

    update_exemption_site_details(ctx, 0, "uploadConfig", {
        "uploadId": upload_config["uploadId"],
        "statusUrl": upload_config["statusUrl"],
        "fileType": file_upload_type,
    })
    heading = "Upload a KML file" if file_upload_type == c.FILE_UPLOAD_TYPES["KML"] else "Upload a Shapefile"
    context = {
        "pageTitle": heading,
        "heading": heading,
        "projectName": exemption.get("projectName"),
        "uploadUrl": upload_config["uploadUrl"],
        "maxFileSize": upload_config["maxFileSize"],
        "acceptAttribute": upload_service.ACCEPT_ATTRIBUTES.get(file_upload_type, ""),
        "fileUploadType": file_upload_type,
        "backLink": ROUTES["CHOOSE_FILE_UPLOAD_TYPE"],
        "cancelLink": f"{ROUTES['TASK_LIST']}?cancel=site-details",
        **errors,
    }
    return _render(request, "upload_file.html", context, status_code=400 if errors else 200)


def _upload_failed(ctx: CacheContext, message: str, file_type: Optional[str]) -> RedirectResponse:
    update_exemption_site_details(ctx, 0, "uploadError", {"message": message, "fieldName": "file", "fileType": file_type})
    update_exemption_site_details(ctx, 0, "uploadConfig", None)
    return _redirect(ROUTES["FILE_UPLOAD"])


@app.get(ROUTES["UPLOAD_AND_WAIT"], response_class=HTMLResponse)
def upload_and_wait_page(
    request: Request,
    uploads: UploadServiceClient = Depends(get_upload_client),
    backend: BackendClient = Depends(get_backend_client),
) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    upload_config = get_site_details_by_site(exemption, 0).get("uploadConfig")
    if not upload_config:
        return _redirect(ROUTES["CHOOSE_FILE_UPLOAD_TYPE"])
    file_type = upload_config.get("fileType")

    try:
        status = uploads.get_status(upload_config["uploadId"], upload_config["statusUrl"])
    except RuntimeError as exc:
        log.error("Failed to check upload status uploadId=%s error=%s", upload_config.get("uploadId"), exc)
        update_exemption_site_details(ctx, 0, "uploadConfig", None)
        return _redirect(ROUTES["CHOOSE_FILE_UPLOAD_TYPE"])

    state = status.get("status")
    if state in (upload_service.STATUS_PENDING, upload_service.STATUS_SCANNING):
        return _render(request, "upload_and_wait.html", {
            "pageTitle": "Checking your file...",
            "heading": "Checking your file...",
            "pageRefreshTimeInSeconds": 2,
            "projectName": exemption.get("projectName"),
            "isProcessing": True,
            "filename": status.get("filename"),
        })

    if state in (upload_service.STATUS_REJECTED, upload_service.STATUS_ERROR):
        error = upload_service.transform_upload_error(status.get("message"), file_type)
        return _upload_failed(ctx, error["message"], file_type)

    if state != upload_service.STATUS_READY:
        log.warning("Unknown upload status uploadId=%s status=%s", upload_config.get("uploadId"), state)
        return _redirect(ROUTES["CHOOSE_FILE_UPLOAD_TYPE"])

    validation = upload_service.validate_file_extension(status.get("filename"), upload_service.allowed_extensions(file_type))
    if not validation["isValid"]:
        error = upload_service.transform_upload_error(validation["errorMessage"], file_type)
        return _upload_failed(ctx, error["message"], file_type)

    s3_location = status.get("s3Location")
    if not s3_location:
        log.error("Upload ready without S3 location uploadId=%s", upload_config.get("uploadId"))
        return _upload_failed(ctx, upload_service.DEFAULT_UPLOAD_ERROR_MESSAGE, file_type)

    result = backend.extract_geo_data(s3_location["s3Bucket"], s3_location["s3Key"], file_type)
    if not result.ok:
        log.error("Geo-parser extraction failed exemptionId=%s error=%s", exemption.get("id"), result.error)
        return _upload_failed(ctx, upload_service.geo_parser_error_message(result.error), file_type)

    geojson = result.value if isinstance(result.value, dict) else {}
    features = geojson.get("features") or []
    multiple = bool((exemption.get("multipleSiteDetails") or {}).get("multipleSitesEnabled"))
    update_exemption_site_details_batch(
        ctx,
        status,
        {"geoJSON": geojson, "extractedCoordinates": extract_coordinates_from_geojson(geojson)},
        s3_location,
        is_multiple_sites_file=multiple and len(features) > 1,
    )
    return _redirect(ROUTES["REVIEW_SITE_DETAILS"])


# --- Site details: manual coordinates -------------------------------------
@app.get(ROUTES["COORDINATES_ENTRY_CHOICE"], response_class=HTMLResponse)
def coordinates_entry_page(request: Request) -> HTMLResponse:
    exemption = get_exemption_cache(_ctx(request))
    site = _site_ref(request, exemption)
    return _render_radio(request, "COORDINATES_ENTRY_CHOICE", exemption, site.details.get("coordinatesEntry"), site=site)


@app.post(ROUTES["COORDINATES_ENTRY_CHOICE"], response_class=HTMLResponse)
async def coordinates_entry_submit(request: Request) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    site = _site_ref(request, exemption)
    payload = await _form_payload(request)
    form, details = validate_form(CoordinatesEntryForm, payload)
    if details:
        return _render_radio(
            request, "COORDINATES_ENTRY_CHOICE", exemption, None,
            site=site, errors=_display_errors(details, c.PAGE_ERROR_MESSAGES),
        )
    previous = site.details.get("coordinatesEntry")
    update_exemption_site_details(ctx, site.index, "coordinatesEntry", form.coordinatesEntry)
    if previous and previous != form.coordinatesEntry:
        update_exemption_site_details(ctx, site.index, "coordinates", None)
        update_exemption_site_details(ctx, site.index, "circleWidth", None)
    elif _is_change(request):
        return _redirect(_review_anchor(site))
    return _redirect(_with_action(ROUTES["COORDINATE_SYSTEM_CHOICE"] + site.query, request))


@app.get(ROUTES["COORDINATE_SYSTEM_CHOICE"], response_class=HTMLResponse)
def coordinate_system_page(request: Request) -> HTMLResponse:
    exemption = get_exemption_cache(_ctx(request))
    site = _site_ref(request, exemption)
    return _render_radio(request, "COORDINATE_SYSTEM_CHOICE", exemption, site.details.get("coordinateSystem"), site=site)


@app.post(ROUTES["COORDINATE_SYSTEM_CHOICE"], response_class=HTMLResponse)
async def coordinate_system_submit(request: Request) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    site = _site_ref(request, exemption)
    payload = await _form_payload(request)
    form, details = validate_form(CoordinateSystemForm, payload)
    if details:
        return _render_radio(
            request, "COORDINATE_SYSTEM_CHOICE", exemption, None,
            site=site, errors=_display_errors(details, c.PAGE_ERROR_MESSAGES),
        )
    previous = site.details.get("coordinateSystem")
    update_exemption_site_details(ctx, site.index, "coordinateSystem", form.coordinateSystem)
    if previous != form.coordinateSystem:
        update_exemption_site_details(ctx, site.index, "coordinates", None)
    elif _is_change(request) and site.details.get("coordinates"):
        return _redirect(_review_anchor(site))
    if site.details.get("coordinatesEntry") == c.COORDINATES_ENTRY["MULTIPLE"]:
        return _redirect(_with_action(ROUTES["ENTER_MULTIPLE_COORDINATES"] + site.query, request))
    return _redirect(_with_action(ROUTES["CIRCLE_CENTRE_POINT"] + site.query, request))


def _render_centre_point(
    request: Request,
    exemption: Mapping[str, Any],
    site: SiteRef,
    values: Mapping[str, Any],
    errors: Optional[Dict[str, Any]] = None,
) -> HTMLResponse:
    coordinate_system = site.details.get("coordinateSystem")
    first, second = fields_for(coordinate_system)
    context = {
        "pageTitle": "Enter the coordinates at the centre point of the site",
        "heading": "Enter the coordinates at the centre point of the site",
        "projectName": exemption.get("projectName"),
        "coordinateSystem": coordinate_system,
        "fields": [(first, first.capitalize()), (second, second.capitalize())],
        "values": {first: values.get(first) or "", second: values.get(second) or ""},
        "backLink": ROUTES["COORDINATE_SYSTEM_CHOICE"] + site.query,
        "cancelLink": ROUTES["TASK_LIST"],
        "siteNumber": site.number if site.multiple else None,
    }
    if errors:
        context.update(errors)
    return _render(request, "centre_point.html", context, status_code=400 if errors else 200)


@app.get(ROUTES["CIRCLE_CENTRE_POINT"], response_class=HTMLResponse)
def centre_point_page(request: Request) -> Response:
    exemption = get_exemption_cache(_ctx(request))
    site = _site_ref(request, exemption)
    if site.details.get("coordinateSystem") not in CENTRE_FORMS:
        return _redirect(ROUTES["COORDINATE_SYSTEM_CHOICE"] + site.query)
    stored = site.details.get("coordinates")
    return _render_centre_point(request, exemption, site, stored if isinstance(stored, dict) else {})


@app.post(ROUTES["CIRCLE_CENTRE_POINT"], response_class=HTMLResponse)
async def centre_point_submit(request: Request) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    site = _site_ref(request, exemption)
    coordinate_system = site.details.get("coordinateSystem")
    schema = CENTRE_FORMS.get(coordinate_system)
    if schema is None:
        return _redirect(ROUTES["COORDINATE_SYSTEM_CHOICE"] + site.query)
    payload = await _form_payload(request)
    form, details = validate_form(schema, payload)
    if details:
        return _render_centre_point(
            request, exemption, site, payload,
            _display_errors(details, c.COORDINATE_ERROR_MESSAGES[coordinate_system]),
        )
    update_exemption_site_details(ctx, site.index, "coordinates", form.model_dump())
    if _is_change(request) and site.details.get("circleWidth"):
        return _redirect(_review_anchor(site))
    return _redirect(ROUTES["WIDTH_OF_SITE"] + site.query)


def _render_width(request: Request, exemption: Mapping[str, Any], site: SiteRef, value: str, errors: Optional[Dict[str, Any]] = None) -> HTMLResponse:
    context = {
        "pageTitle": c.ENTER_WIDTH,
        "heading": c.ENTER_WIDTH,
        "projectName": exemption.get("projectName"),
        "value": value,
        "backLink": ROUTES["CIRCLE_CENTRE_POINT"] + site.query,
        "cancelLink": ROUTES["TASK_LIST"],
        "siteNumber": site.number if site.multiple else None,
    }
    if errors:
        context.update(errors)
    return _render(request, "width_of_site.html", context, status_code=400 if errors else 200)


@app.get(ROUTES["WIDTH_OF_SITE"], response_class=HTMLResponse)
def width_of_site_page(request: Request) -> HTMLResponse:
    exemption = get_exemption_cache(_ctx(request))
    site = _site_ref(request, exemption)
    return _render_width(request, exemption, site, str(site.details.get("circleWidth") or ""))


@app.post(ROUTES["WIDTH_OF_SITE"], response_class=HTMLResponse)
async def width_of_site_submit(request: Request) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    site = _site_ref(request, exemption)
    payload = await _form_payload(request)
    form, details = validate_form(CircleWidthForm, payload)
    if details:
        return _render_width(request, exemption, site, payload.get("width", ""), _display_errors(details, c.WIDTH_ERROR_MESSAGES))
    update_exemption_site_details(ctx, site.index, "circleWidth", form.width)
    return _redirect(_review_anchor(site))


def _render_multiple_coordinates(
    request: Request,
    exemption: Mapping[str, Any],
    site: SiteRef,
    points: List[Dict[str, str]],
    errors: Optional[Dict[str, Any]] = None,
) -> HTMLResponse:
    coordinate_system = site.details.get("coordinateSystem")
    first, second = fields_for(coordinate_system)
    context = {
        "pageTitle": "Enter multiple sets of coordinates to mark the boundary of the site",
        "heading": "Enter multiple sets of coordinates to mark the boundary of the site",
        "projectName": exemption.get("projectName"),
        "coordinateSystem": coordinate_system,
        "fields": [(first, first.capitalize()), (second, second.capitalize())],
        "points": [{"label": point_name(i).capitalize(), **point} for i, point in enumerate(points)],
        "minPoints": c.POLYGON_MIN_COORDINATE_POINTS,
        "backLink": ROUTES["COORDINATE_SYSTEM_CHOICE"] + site.query,
        "cancelLink": ROUTES["TASK_LIST"],
        "siteNumber": site.number if site.multiple else None,
    }
    if errors:
        context.update(errors)
    return _render(request, "multiple_coordinates.html", context, status_code=400 if errors else 200)


@app.get(ROUTES["ENTER_MULTIPLE_COORDINATES"], response_class=HTMLResponse)
def multiple_coordinates_page(request: Request) -> Response:
    exemption = get_exemption_cache(_ctx(request))
    site = _site_ref(request, exemption)
    coordinate_system = site.details.get("coordinateSystem")
    if coordinate_system not in POLYGON_FORMS:
        return _redirect(ROUTES["COORDINATE_SYSTEM_CHOICE"] + site.query)
    stored = site.details.get("coordinates")
    points = normalise_coordinates_for_display(coordinate_system, stored if isinstance(stored, list) else None)
    return _render_multiple_coordinates(request, exemption, site, points)


@app.post(ROUTES["ENTER_MULTIPLE_COORDINATES"], response_class=HTMLResponse)
async def multiple_coordinates_submit(request: Request) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    site = _site_ref(request, exemption)
    coordinate_system = site.details.get("coordinateSystem")
    schema = POLYGON_FORMS.get(coordinate_system)
    if schema is None:
        return _redirect(ROUTES["COORDINATE_SYSTEM_CHOICE"] + site.query)
    payload = await _form_payload(request)
    points = convert_payload_to_coordinates_array(payload, coordinate_system)
    action = payload.get("action") or ""

    if action == "add":
        first, second = fields_for(coordinate_system)
        points.append({first: "", second: ""})
        return _render_multiple_coordinates(request, exemption, site, points)
    if action.startswith("remove-"):
        try:
            index = int(action[len("remove-"):])
        except ValueError:
            index = -1
        points = remove_coordinate_at_index(points, index)
        return _render_multiple_coordinates(request, exemption, site, points)

    form, details = validate_form(schema, {"coordinates": points})
    if details:
        summary = create_coordinate_error_summary(details)
        errors = {"errorSummary": summary, "errors": create_coordinate_field_errors(details)}
        display_points = normalise_coordinates_for_display(coordinate_system, points)
        return _render_multiple_coordinates(request, exemption, site, display_points, errors)

    update_exemption_site_details(ctx, site.index, "coordinates", [point.model_dump() for point in form.coordinates])
    return _redirect(_review_anchor(site))


# --- Site details: review --------------------------------------------------
def _review_context(exemption: Mapping[str, Any]) -> Dict[str, Any]:
    sites = exemption.get("siteDetails") or []
    multiple = exemption.get("multipleSiteDetails") or {}
    try:
        multiple_summary = build_multiple_sites_summary_data(multiple, sites)
    except ValueError as exc:
        log.error("Could not build multiple sites summary exemptionId=%s error=%s", exemption.get("id"), exc)
        multiple_summary = {}
    return {
        "pageTitle": "Review site details",
        "heading": "Review site details",
        "projectName": exemption.get("projectName"),
        "sites": build_site_summary_data(exemption),
        "multipleSitesEnabled": bool(multiple.get("multipleSitesEnabled")),
        "multipleSiteSummary": multiple_summary,
        "hasIncompleteFields": has_incomplete_fields(sites, multiple),
        "backLink": ROUTES["TASK_LIST"],
    }


@app.get(ROUTES["REVIEW_SITE_DETAILS"], response_class=HTMLResponse)
def review_site_details_page(request: Request) -> Response:
    exemption = get_exemption_cache(_ctx(request))
    if not exemption.get("siteDetails"):
        return _redirect(ROUTES["TASK_LIST"])
    return _render(request, "review_site_details.html", _review_context(exemption))


@app.post(ROUTES["REVIEW_SITE_DETAILS"], response_class=HTMLResponse)
async def review_site_details_submit(request: Request, backend: BackendClient = Depends(get_backend_client)) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    missing = _require_exemption_id(exemption)
    if missing:
        return missing
    if not exemption.get("siteDetails"):
        return _redirect(ROUTES["TASK_LIST"])
    context = _review_context(exemption)
    if context["hasIncompleteFields"]:
        context["errorSummary"] = [{"href": "#site-details-1", "text": "Add the missing details for each site"}]
        return _render(request, "review_site_details.html", context, status_code=400)

    result = backend.update_site_details(prepare_site_details_for_save(exemption))
    if result.is_validation_error:
        context.update(_display_errors(result.details, {}))
        return _render(request, "review_site_details.html", context, status_code=400)
    if not result.ok:
        _raise_backend_failure(result, "Site details save", exemption["id"])
    return _redirect(ROUTES["TASK_LIST"])


@app.post(ROUTES["ADD_ANOTHER_SITE"])
def add_another_site(request: Request) -> RedirectResponse:
    ctx = _ctx(request)
    number = add_exemption_site(ctx)
    set_coordinates_type(ctx, number - 1, c.COORDINATES_TYPE["COORDINATES"])
    return _redirect(f"{ROUTES['SITE_NAME']}?site={number}")


@app.post(ROUTES["DELETE_SITE"] + "/{site_number}")
def delete_site(request: Request, site_number: int) -> RedirectResponse:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    sites = exemption.get("siteDetails") or []
    if not 1 <= site_number <= len(sites):
        return _redirect(ROUTES["REVIEW_SITE_DETAILS"])
    remaining = remove_exemption_site(ctx, site_number - 1)
    _add_flash(request, f"Site {site_number} deleted")
    if not remaining:
        return _redirect(ROUTES["TASK_LIST"])
    return _redirect(ROUTES["REVIEW_SITE_DETAILS"])


@app.post(ROUTES["DELETE_ALL_SITES"])
def delete_all_sites(request: Request) -> RedirectResponse:
    ctx = _ctx(request)
    reset_exemption_site_details(ctx)
    exemption = get_exemption_cache(ctx)
    exemption.pop("multipleSiteDetails", None)
    set_exemption_cache(ctx, exemption)
    _add_flash(request, "Sites deleted")
    return _redirect(ROUTES["TASK_LIST"])


@app.get(ROUTES["SITE_DETAILS_MAP"])
def site_details_map(request: Request) -> JSONResponse:
    exemption = get_exemption_cache(_ctx(request))
    return JSONResponse(sites_feature_collection(exemption.get("siteDetails") or []))


# --- Check your answers and submission ------------------------------------
def _exemption_summary(exemption: Mapping[str, Any], ctx: Optional[CacheContext] = None) -> Dict[str, Any]:
    exemption_id = exemption.get("id")
    multiple = exemption.get("multipleSiteDetails") or {}
    try:
        multiple_summary = build_multiple_sites_summary_data(multiple, exemption.get("siteDetails"))
    except ValueError as exc:
        log.error("Could not build multiple sites summary exemptionId=%s error=%s", exemption_id, exc)
        multiple_summary = {}
    return {
        "projectName": exemption.get("projectName"),
        "activityDatesText": activity_dates_text(exemption.get("activityDates")),
        "activityDescription": exemption.get("activityDescription") or "",
        "sites": process_site_details(exemption, exemption_id, ctx) or [],
        "multipleSiteSummary": multiple_summary,
        "applicationReference": exemption.get("applicationReference"),
        "status": exemption.get("status"),
    }


@app.get(ROUTES["CHECK_YOUR_ANSWERS"], response_class=HTMLResponse)
def check_your_answers_page(request: Request) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    missing = _require_exemption_id(exemption)
    if missing:
        return missing
    return _render(request, "check_your_answers.html", {
        "pageTitle": "Check your answers before sending your information",
        "heading": "Check your answers before sending your information",
        "backLink": ROUTES["TASK_LIST"],
        "editable": True,
        **_exemption_summary(exemption, ctx),
    })


@app.post(ROUTES["CHECK_YOUR_ANSWERS"], response_class=HTMLResponse)
async def check_your_answers_submit(request: Request, backend: BackendClient = Depends(get_backend_client)) -> Response:
    ctx = _ctx(request)
    exemption = get_exemption_cache(ctx)
    missing = _require_exemption_id(exemption)
    if missing:
        return missing
    result = backend.submit_exemption(exemption["id"])
    if result.is_validation_error:
        context = {
            "pageTitle": "Check your answers before sending your information",
            "heading": "Check your answers before sending your information",
            "backLink": ROUTES["TASK_LIST"],
            "editable": True,
            **_exemption_summary(exemption, ctx),
            **_display_errors(result.details, {}),
        }
        return _render(request, "check_your_answers.html", context, status_code=400)
    if not result.ok:
        log.error("%s exemptionId=%s error=%s", c.SERVICE_ERROR_MESSAGES["SUBMISSION_FAILED"], exemption["id"], result.error)
        raise HTTPException(status_code=500, detail=c.SERVICE_ERROR_MESSAGES["SUBMISSION_FAILED"])

    reference = (result.value or {}).get("applicationReference") if isinstance(result.value, dict) else None
    log.info("Exemption submitted exemptionId=%s reference=%s", exemption["id"], reference)
    clear_exemption_cache(ctx)
    query = urlencode({"applicationReference": reference}) if reference else ""
    return _redirect(f"{ROUTES['CONFIRMATION']}?{query}" if query else ROUTES["CONFIRMATION"])


@app.get(ROUTES["CONFIRMATION"], response_class=HTMLResponse)
def confirmation_page(request: Request) -> HTMLResponse:
    return _render(request, "confirmation.html", {
        "pageTitle": "Application complete",
        "heading": "Application complete",
        "applicationReference": request.query_params.get("applicationReference"),
    })


# --- Dashboard and read-only view -----------------------------------------
@app.get(ROUTES["DASHBOARD"], response_class=HTMLResponse)
def dashboard_page(request: Request, backend: BackendClient = Depends(get_backend_client)) -> HTMLResponse:
    result = backend.list_exemptions()
    if not result.ok:
        _raise_backend_failure(result, "Exemption list")
    rows = []
    for item in result.value or []:
        if not isinstance(item, dict):
            continue
        rows.append({
            "id": item.get("id"),
            "projectName": item.get("projectName") or "",
            "status": item.get("status") or "Draft",
            "applicationReference": item.get("applicationReference") or "",
            "submittedAt": format_date(item.get("submittedAt")) if item.get("submittedAt") else "",
            "href": f"{ROUTES['VIEW_DETAILS']}/{item.get('id')}",
        })
    return _render(request, "dashboard.html", {
        "pageTitle": "Projects",
        "heading": "Projects",
        "exemptions": rows,
    })


@app.get(ROUTES["VIEW_DETAILS"] + "/{exemption_id}", response_class=HTMLResponse)
def view_details_page(request: Request, exemption_id: str, backend: BackendClient = Depends(get_backend_client)) -> HTMLResponse:
    result = backend.get_exemption(exemption_id)
    if not result.ok:
        if result.status_code == 404:
            raise HTTPException(status_code=404, detail=c.SERVICE_ERROR_MESSAGES["EXEMPTION_NOT_FOUND"])
        _raise_backend_failure(result, "Exemption fetch", exemption_id)
    exemption = result.value if isinstance(result.value, dict) else None
    if not exemption:
        log.error("%s exemptionId=%s", c.SERVICE_ERROR_MESSAGES["EXEMPTION_DATA_NOT_FOUND"], exemption_id)
        raise HTTPException(status_code=404, detail=c.SERVICE_ERROR_MESSAGES["EXEMPTION_DATA_NOT_FOUND"])
    return _render(request, "view_details.html", {
        "pageTitle": exemption.get("projectName") or "Project",
        "heading": exemption.get("projectName") or "Project",
        "backLink": ROUTES["DASHBOARD"],
        **_exemption_summary({**exemption, "id": exemption.get("id") or exemption_id}, _ctx(request)),
    })
