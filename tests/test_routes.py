from __future__ import annotations

from markupsafe import escape

from marinework import constants as c
from marinework.api_client import ApiResult
from marinework.dates import utc_today

from conftest import EXEMPTION_ID, FEATURE_COLLECTION

R = c.ROUTES
NEXT_YEAR = str(utc_today().year + 1)


def _dates(start=("1", "3", NEXT_YEAR), end=("1", "4", NEXT_YEAR)):
    return {
        c.ACTIVITY_START_DATE_DAY: start[0],
        c.ACTIVITY_START_DATE_MONTH: start[1],
        c.ACTIVITY_START_DATE_YEAR: start[2],
        c.ACTIVITY_END_DATE_DAY: end[0],
        c.ACTIVITY_END_DATE_MONTH: end[1],
        c.ACTIVITY_END_DATE_YEAR: end[2],
    }


def _circle_site(**extra):
    site = {
        "coordinatesType": "coordinates",
        "coordinatesEntry": "single",
        "coordinateSystem": "wgs84",
        "coordinates": {"latitude": "55.019889", "longitude": "-1.399500"},
        "circleWidth": "100",
    }
    site.update(extra)
    return site


def _shows(resp, text):
    return str(escape(text)) in resp.text


# ---------------------------------------------------------------------------
# Basics
# ---------------------------------------------------------------------------
def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True}


def test_root_redirects_to_dashboard(client):
    resp = client.get("/")
    assert resp.status_code == 303
    assert resp.headers["location"] == R["DASHBOARD"]


def test_unknown_page_renders_not_found(client):
    resp = client.get("/exemption/no-such-page")
    assert resp.status_code == 404
    assert "Page not found" in resp.text


# ---------------------------------------------------------------------------
# Project name
# ---------------------------------------------------------------------------
def test_project_name_required(client, backend):
    resp = client.post(R["PROJECT_NAME"], data={"projectName": "  "})
    assert resp.status_code == 400
    assert _shows(resp, "Enter the project name")
    assert backend.called("create_project_name") == []


def test_project_name_creates_exemption(client, backend, store):
    resp = client.post(R["PROJECT_NAME"], data={"projectName": "Harbour survey"})
    assert resp.status_code == 303
    assert resp.headers["location"] == R["TASK_LIST"]
    assert backend.called("create_project_name") == [("Harbour survey",)]
    document = store.get(store.keys()[0])
    assert document == {"id": EXEMPTION_ID, "projectName": "Harbour survey"}


def test_project_name_updates_existing_exemption(client, backend, cached, session_key):
    resp = client.post(R["PROJECT_NAME"], data={"projectName": "Renamed"})
    assert resp.status_code == 303
    assert backend.called("update_project_name") == [(EXEMPTION_ID, "Renamed")]
    assert cached()["projectName"] == "Renamed"


def test_project_name_backend_validation_is_shown(client, backend):
    backend.results["create_project_name"] = ApiResult.validation(
        [{"type": "string.max", "path": ["projectName"], "message": "PROJECT_NAME_MAX_LENGTH"}], 400
    )
    resp = client.post(R["PROJECT_NAME"], data={"projectName": "Harbour survey"})
    assert resp.status_code == 400
    assert _shows(resp, "Project name should be 250 characters or less")


def test_project_name_backend_failure_renders_error_page(client, backend):
    backend.results["create_project_name"] = ApiResult.failure("HTTP 500", 500)
    resp = client.post(R["PROJECT_NAME"], data={"projectName": "Harbour survey"})
    assert resp.status_code == 500
    assert "Sorry, there is a problem with the service" in resp.text


# ---------------------------------------------------------------------------
# Task list
# ---------------------------------------------------------------------------
def test_task_list_requires_exemption(client):
    resp = client.get(R["TASK_LIST"])
    assert resp.status_code == 303
    assert resp.headers["location"] == R["PROJECT_NAME"]


def test_task_list_offers_review_when_complete(client, seed):
    seed(
        activityDates={"start": f"{NEXT_YEAR}-03-01T00:00:00.000Z", "end": f"{NEXT_YEAR}-04-01T00:00:00.000Z"},
        activityDescription="Dredging",
        siteDetails=[_circle_site()],
    )
    resp = client.get(R["TASK_LIST"])
    assert resp.status_code == 200
    assert "Review and send" in resp.text


def test_task_list_hides_review_until_complete(client, session_key):
    resp = client.get(R["TASK_LIST"])
    assert resp.status_code == 200
    assert "Review and send" not in resp.text


# ---------------------------------------------------------------------------
# Activity dates
# ---------------------------------------------------------------------------
def test_activity_dates_saved(client, backend, cached, session_key):
    resp = client.post(R["ACTIVITY_DATES"], data=_dates())
    assert resp.status_code == 303
    start = f"{NEXT_YEAR}-03-01T00:00:00.000Z"
    end = f"{NEXT_YEAR}-04-01T00:00:00.000Z"
    assert backend.called("update_activity_dates") == [(EXEMPTION_ID, start, end)]
    assert cached()["activityDates"] == {"start": start, "end": end}


def test_activity_dates_missing(client, session_key):
    resp = client.post(R["ACTIVITY_DATES"], data=_dates(("", "", ""), ("", "", "")))
    assert resp.status_code == 400
    assert "Enter the start date" in resp.text
    assert "Enter the end date" in resp.text


def test_activity_dates_day_out_of_range_is_not_a_real_date(client, session_key):
    resp = client.post(R["ACTIVITY_DATES"], data=_dates(start=("32", "3", NEXT_YEAR)))
    assert resp.status_code == 400
    assert "The start date must be a real date" in resp.text
    assert "The end date" not in resp.text


def test_activity_dates_impossible_day(client, session_key):
    resp = client.post(R["ACTIVITY_DATES"], data=_dates(start=("31", "2", NEXT_YEAR)))
    assert resp.status_code == 400
    assert "The start date must be a real date" in resp.text


def test_activity_dates_end_before_start(client, session_key):
    resp = client.post(R["ACTIVITY_DATES"], data=_dates(start=("1", "4", NEXT_YEAR), end=("1", "3", NEXT_YEAR)))
    assert resp.status_code == 400
    assert "The end date must be the same as or after the start date" in resp.text


def test_activity_dates_backend_validation_is_shown(client, backend, cached, session_key):
    backend.results["update_activity_dates"] = ApiResult.validation(
        [{"type": c.END_DATE_BEFORE_START_DATE_TYPE, "path": [], "message": c.CUSTOM_END_DATE_BEFORE_START_DATE}], 400
    )
    resp = client.post(R["ACTIVITY_DATES"], data=_dates())
    assert resp.status_code == 400
    assert "The end date must be the same as or after the start date" in resp.text
    assert 'href="#activity-end-date-day"' in resp.text
    assert "activityDates" not in cached()


def test_activity_dates_in_the_past(client, session_key):
    last_year = str(utc_today().year - 1)
    resp = client.post(R["ACTIVITY_DATES"], data=_dates(start=("1", "3", last_year)))
    assert resp.status_code == 400
    assert "The start date must be today or in the future" in resp.text


def test_activity_dates_prefilled(client, seed):
    seed(activityDates={"start": "2031-03-09T00:00:00.000Z", "end": "2031-04-01T00:00:00.000Z"})
    resp = client.get(R["ACTIVITY_DATES"])
    assert resp.status_code == 200
    assert 'value="2031"' in resp.text
    assert 'value="9"' in resp.text


def test_activity_dates_need_exemption(client):
    resp = client.post(R["ACTIVITY_DATES"], data=_dates())
    assert resp.status_code == 303
    assert resp.headers["location"] == R["PROJECT_NAME"]


# ---------------------------------------------------------------------------
# Activity description
# ---------------------------------------------------------------------------
def test_activity_description_saved(client, backend, cached, session_key):
    resp = client.post(R["ACTIVITY_DESCRIPTION"], data={"activityDescription": "Dredging the channel"})
    assert resp.status_code == 303
    assert backend.called("update_activity_description") == [(EXEMPTION_ID, "Dredging the channel")]
    assert cached()["activityDescription"] == "Dredging the channel"


def test_activity_description_too_long(client, session_key):
    resp = client.post(R["ACTIVITY_DESCRIPTION"], data={"activityDescription": "x" * 4001})
    assert resp.status_code == 400
    assert "Activity description must be 4000 characters or less" in resp.text


# ---------------------------------------------------------------------------
# Site details: single circular site
# ---------------------------------------------------------------------------
def test_single_circular_site_journey(client, backend, cached, seed):
    seed()
    resp = client.post(R["COORDINATES_TYPE_CHOICE"], data={"coordinatesType": "coordinates"})
    assert resp.headers["location"] == R["MULTIPLE_SITES_CHOICE"]

    resp = client.post(R["MULTIPLE_SITES_CHOICE"], data={"multipleSitesEnabled": "no"})
    assert resp.headers["location"] == R["SITE_DETAILS_ACTIVITY_DATES"]

    resp = client.post(R["SITE_DETAILS_ACTIVITY_DATES"], data=_dates())
    assert resp.headers["location"] == R["SITE_DETAILS_ACTIVITY_DESCRIPTION"]

    resp = client.post(R["SITE_DETAILS_ACTIVITY_DESCRIPTION"], data={"activityDescription": "Mooring"})
    assert resp.headers["location"] == R["COORDINATES_ENTRY_CHOICE"]

    resp = client.post(R["COORDINATES_ENTRY_CHOICE"], data={"coordinatesEntry": "single"})
    assert resp.headers["location"] == R["COORDINATE_SYSTEM_CHOICE"]

    resp = client.post(R["COORDINATE_SYSTEM_CHOICE"], data={"coordinateSystem": "wgs84"})
    assert resp.headers["location"] == R["CIRCLE_CENTRE_POINT"]

    resp = client.post(R["CIRCLE_CENTRE_POINT"], data={"latitude": "55.019889", "longitude": "-1.399500"})
    assert resp.headers["location"] == R["WIDTH_OF_SITE"]

    resp = client.post(R["WIDTH_OF_SITE"], data={"width": "50"})
    assert resp.headers["location"] == f"{R['REVIEW_SITE_DETAILS']}#site-details-1"

    review = client.get(R["REVIEW_SITE_DETAILS"])
    assert review.status_code == 200
    assert "55.019889, -1.399500" in review.text
    assert "50 metres" in review.text

    resp = client.post(R["REVIEW_SITE_DETAILS"])
    assert resp.status_code == 303
    assert resp.headers["location"] == R["TASK_LIST"]
    (body,) = backend.called("update_site_details")[0]
    assert body["id"] == EXEMPTION_ID
    assert body["siteDetails"][0]["circleWidth"] == "50"
    assert body["siteDetails"][0]["coordinates"] == {"latitude": "55.019889", "longitude": "-1.399500"}
    assert cached()["multipleSiteDetails"] == {"multipleSitesEnabled": False}


def test_radio_question_requires_answer(client, seed):
    seed()
    resp = client.post(R["MULTIPLE_SITES_CHOICE"], data={})
    assert resp.status_code == 400
    assert "Select whether you need to tell us about more than one site" in resp.text


def test_centre_point_redirects_without_coordinate_system(client, seed):
    seed(siteDetails=[{"coordinatesType": "coordinates", "coordinatesEntry": "single"}])
    resp = client.get(R["CIRCLE_CENTRE_POINT"])
    assert resp.status_code == 303
    assert resp.headers["location"] == R["COORDINATE_SYSTEM_CHOICE"]


def test_centre_point_validation_message(client, seed):
    seed(siteDetails=[{"coordinatesType": "coordinates", "coordinatesEntry": "single", "coordinateSystem": "wgs84"}])
    resp = client.post(R["CIRCLE_CENTRE_POINT"], data={"latitude": "abc", "longitude": "-1.399500"})
    assert resp.status_code == 400
    assert "Latitude must be a number" in resp.text
    assert 'href="#latitude"' in resp.text


def test_osgb36_centre_point_saved(client, cached, seed):
    seed(siteDetails=[{"coordinatesType": "coordinates", "coordinatesEntry": "single", "coordinateSystem": "osgb36"}])
    resp = client.post(R["CIRCLE_CENTRE_POINT"], data={"eastings": "425053", "northings": "564180"})
    assert resp.status_code == 303
    assert cached()["siteDetails"][0]["coordinates"] == {"eastings": "425053", "northings": "564180"}


def test_width_must_be_positive(client, seed):
    seed(siteDetails=[_circle_site(circleWidth=None)])
    resp = client.post(R["WIDTH_OF_SITE"], data={"width": "0"})
    assert resp.status_code == 400
    assert "The width of the circular site must be 1 metre or more" in resp.text


def test_width_must_be_whole_number(client, seed):
    seed(siteDetails=[_circle_site(circleWidth=None)])
    resp = client.post(R["WIDTH_OF_SITE"], data={"width": "2.5"})
    assert resp.status_code == 400
    assert "The width of the circular site must be a whole number, like 10" in resp.text


def test_changing_coordinate_system_clears_coordinates(client, cached, seed):
    seed(siteDetails=[_circle_site()])
    resp = client.post(R["COORDINATE_SYSTEM_CHOICE"], data={"coordinateSystem": "osgb36"})
    assert resp.headers["location"] == R["CIRCLE_CENTRE_POINT"]
    site = cached()["siteDetails"][0]
    assert site["coordinateSystem"] == "osgb36"
    assert site["coordinates"] is None


# ---------------------------------------------------------------------------
# Site details: polygon
# ---------------------------------------------------------------------------
def _polygon_payload(points):
    payload = {}
    for index, (lat, lon) in enumerate(points):
        payload[f"coordinates[{index}][latitude]"] = lat
        payload[f"coordinates[{index}][longitude]"] = lon
    return payload


def _polygon_site():
    return {"coordinatesType": "coordinates", "coordinatesEntry": "multiple", "coordinateSystem": "wgs84"}


def test_polygon_page_shows_three_points(client, seed):
    seed(siteDetails=[_polygon_site()])
    resp = client.get(R["ENTER_MULTIPLE_COORDINATES"])
    assert resp.status_code == 200
    assert 'name="coordinates[2][longitude]"' in resp.text
    assert 'name="coordinates[3][longitude]"' not in resp.text


def test_polygon_add_point(client, seed):
    seed(siteDetails=[_polygon_site()])
    data = _polygon_payload([("", ""), ("", ""), ("", "")])
    data["action"] = "add"
    resp = client.post(R["ENTER_MULTIPLE_COORDINATES"], data=data)
    assert resp.status_code == 200
    assert 'name="coordinates[3][latitude]"' in resp.text


def test_polygon_remove_point(client, seed):
    seed(siteDetails=[_polygon_site()])
    data = _polygon_payload([("1", "1"), ("2", "2"), ("3", "3"), ("4", "4")])
    data["action"] = "remove-3"
    resp = client.post(R["ENTER_MULTIPLE_COORDINATES"], data=data)
    assert resp.status_code == 200
    assert 'name="coordinates[3][latitude]"' not in resp.text


def test_polygon_errors_name_the_point(client, seed):
    seed(siteDetails=[_polygon_site()])
    resp = client.post(R["ENTER_MULTIPLE_COORDINATES"], data=_polygon_payload([("", ""), ("", ""), ("", "")]))
    assert resp.status_code == 400
    assert "Enter the latitude of start and end point" in resp.text
    assert "Enter the longitude of point 3" in resp.text
    assert 'href="#coordinates-0-latitude"' in resp.text


def test_polygon_saved(client, cached, seed):
    seed(siteDetails=[_polygon_site()])
    points = [("55.019889", "-1.399500"), ("55.029889", "-1.389500"), ("55.039889", "-1.399500")]
    resp = client.post(R["ENTER_MULTIPLE_COORDINATES"], data=_polygon_payload(points))
    assert resp.status_code == 303
    assert resp.headers["location"] == f"{R['REVIEW_SITE_DETAILS']}#site-details-1"
    stored = cached()["siteDetails"][0]["coordinates"]
    assert stored[1] == {"latitude": "55.029889", "longitude": "-1.389500"}
    assert len(stored) == 3


# ---------------------------------------------------------------------------
# Site details: several sites
# ---------------------------------------------------------------------------
def test_multiple_sites_journey_shares_answers(client, cached, seed):
    seed()
    client.post(R["COORDINATES_TYPE_CHOICE"], data={"coordinatesType": "coordinates"})
    resp = client.post(R["MULTIPLE_SITES_CHOICE"], data={"multipleSitesEnabled": "yes"})
    assert resp.headers["location"] == f"{R['SITE_NAME']}?site=1"

    resp = client.post(f"{R['SITE_NAME']}?site=1", data={"siteName": "North mooring"})
    assert resp.headers["location"] == R["SAME_ACTIVITY_DATES"]

    resp = client.post(R["SAME_ACTIVITY_DATES"], data={"sameActivityDates": "yes"})
    assert resp.headers["location"] == f"{R['SITE_DETAILS_ACTIVITY_DATES']}?site=1"

    resp = client.post(f"{R['SITE_DETAILS_ACTIVITY_DATES']}?site=1", data=_dates())
    assert resp.headers["location"] == R["SAME_ACTIVITY_DESCRIPTION"]

    resp = client.post(R["SAME_ACTIVITY_DESCRIPTION"], data={"sameActivityDescription": "yes"})
    assert resp.headers["location"] == f"{R['SITE_DETAILS_ACTIVITY_DESCRIPTION']}?site=1"

    resp = client.post(f"{R['SITE_DETAILS_ACTIVITY_DESCRIPTION']}?site=1", data={"activityDescription": "Mooring"})
    assert resp.headers["location"] == f"{R['COORDINATES_ENTRY_CHOICE']}?site=1"

    resp = client.post(R["ADD_ANOTHER_SITE"])
    assert resp.headers["location"] == f"{R['SITE_NAME']}?site=2"

    resp = client.post(f"{R['SITE_NAME']}?site=2", data={"siteName": "South mooring"})
    assert resp.headers["location"] == f"{R['COORDINATES_ENTRY_CHOICE']}?site=2"

    sites = cached()["siteDetails"]
    assert [site["siteName"] for site in sites] == ["North mooring", "South mooring"]
    assert sites[1]["activityDates"] == sites[0]["activityDates"]
    assert sites[1]["activityDescription"] == "Mooring"
    assert sites[1]["coordinatesType"] == "coordinates"


def test_switching_to_single_site_keeps_first_site(client, cached, seed):
    seed(
        multipleSiteDetails={"multipleSitesEnabled": True, "sameActivityDates": "yes"},
        siteDetails=[_circle_site(siteName="A"), _circle_site(siteName="B")],
    )
    resp = client.post(R["MULTIPLE_SITES_CHOICE"], data={"multipleSitesEnabled": "no"})
    assert resp.status_code == 303
    document = cached()
    assert len(document["siteDetails"]) == 1
    assert document["multipleSiteDetails"] == {"multipleSitesEnabled": False}


def test_review_blocks_incomplete_sites(client, backend, seed):
    seed(
        multipleSiteDetails={"multipleSitesEnabled": True, "sameActivityDates": "no", "sameActivityDescription": "yes"},
        siteDetails=[_circle_site(siteName="A"), _circle_site()],
    )
    resp = client.post(R["REVIEW_SITE_DETAILS"])
    assert resp.status_code == 400
    assert backend.called("update_site_details") == []


def test_review_shows_backend_failure(client, backend, seed):
    seed(siteDetails=[_circle_site()])
    backend.results["update_site_details"] = ApiResult.failure("HTTP 503", 503)
    resp = client.post(R["REVIEW_SITE_DETAILS"])
    assert resp.status_code == 500


def test_review_without_sites_goes_to_task_list(client, seed):
    seed()
    resp = client.get(R["REVIEW_SITE_DETAILS"])
    assert resp.status_code == 303
    assert resp.headers["location"] == R["TASK_LIST"]


def test_delete_site(client, cached, seed):
    seed(
        multipleSiteDetails={"multipleSitesEnabled": True},
        siteDetails=[_circle_site(siteName="A"), _circle_site(siteName="B")],
    )
    resp = client.post(f"{R['DELETE_SITE']}/2")
    assert resp.status_code == 303
    assert resp.headers["location"] == R["REVIEW_SITE_DETAILS"]
    assert [site["siteName"] for site in cached()["siteDetails"]] == ["A"]

    review = client.get(R["REVIEW_SITE_DETAILS"])
    assert "Site 2 deleted" in review.text


def test_delete_last_site_returns_to_task_list(client, cached, seed):
    seed(siteDetails=[_circle_site()])
    resp = client.post(f"{R['DELETE_SITE']}/1")
    assert resp.headers["location"] == R["TASK_LIST"]
    assert "siteDetails" not in cached()


def test_delete_all_sites(client, cached, seed):
    seed(multipleSiteDetails={"multipleSitesEnabled": True}, siteDetails=[_circle_site(), _circle_site()])
    resp = client.post(R["DELETE_ALL_SITES"])
    assert resp.headers["location"] == R["TASK_LIST"]
    document = cached()
    assert "siteDetails" not in document
    assert "multipleSiteDetails" not in document


def test_site_details_map(client, seed):
    seed(siteDetails=[_circle_site(siteName="Pier")])
    resp = client.get(R["SITE_DETAILS_MAP"])
    assert resp.status_code == 200
    body = resp.json()
    assert body["type"] == "FeatureCollection"
    assert len(body["features"]) == 1
    feature = body["features"][0]
    assert feature["geometry"]["type"] == "Polygon"
    assert feature["properties"] == {"siteNumber": 1, "siteName": "Pier"}


# ---------------------------------------------------------------------------
# File upload
# ---------------------------------------------------------------------------
UPLOAD_CONFIG = {"uploadId": "upload-1", "statusUrl": "http://uploader.test/status/upload-1", "fileType": "kml"}


def _file_site(**extra):
    site = {"coordinatesType": "file", "fileUploadType": "kml"}
    site.update(extra)
    return site


def test_file_upload_page_initiates_upload(client, uploads, cached, seed):
    seed(siteDetails=[_file_site()])
    resp = client.get(R["FILE_UPLOAD"])
    assert resp.status_code == 200
    assert "http://uploader.test/upload-and-scan/upload-1" in resp.text
    assert 'accept=".kml"' in resp.text
    assert uploads.initiated[0]["redirect_url"].endswith(R["UPLOAD_AND_WAIT"])
    assert cached()["siteDetails"][0]["uploadConfig"] == UPLOAD_CONFIG


def test_file_upload_page_needs_file_type(client, seed):
    seed(siteDetails=[{"coordinatesType": "file"}])
    resp = client.get(R["FILE_UPLOAD"])
    assert resp.headers["location"] == R["CHOOSE_FILE_UPLOAD_TYPE"]


def test_file_upload_initiate_failure(client, uploads, seed):
    seed(siteDetails=[_file_site()])
    uploads.initiate_error = RuntimeError("API call failed with status: 500")
    resp = client.get(R["FILE_UPLOAD"])
    assert resp.status_code == 303
    assert resp.headers["location"] == R["CHOOSE_FILE_UPLOAD_TYPE"]


def test_upload_and_wait_while_scanning(client, uploads, seed):
    seed(siteDetails=[_file_site(uploadConfig=UPLOAD_CONFIG)])
    uploads.statuses.append({"status": "scanning", "filename": "site.kml"})
    resp = client.get(R["UPLOAD_AND_WAIT"])
    assert resp.status_code == 200
    assert "Checking your file..." in resp.text
    assert 'http-equiv="refresh"' in resp.text


def test_upload_and_wait_ready(client, backend, uploads, cached, seed):
    seed(siteDetails=[_file_site(uploadConfig=UPLOAD_CONFIG)])
    uploads.statuses.append({
        "status": "ready",
        "filename": "site.kml",
        "s3Location": {"s3Bucket": "mmo-uploads", "s3Key": "exemptions/abc"},
    })
    resp = client.get(R["UPLOAD_AND_WAIT"])
    assert resp.status_code == 303
    assert resp.headers["location"] == R["REVIEW_SITE_DETAILS"]
    assert backend.called("extract_geo_data") == [("mmo-uploads", "exemptions/abc", "kml")]
    site = cached()["siteDetails"][0]
    assert site["geoJSON"] == FEATURE_COLLECTION
    assert site["uploadedFile"]["filename"] == "site.kml"
    assert site["featureCount"] == 1
    assert site["uploadConfig"] is None


def test_upload_and_wait_fans_out_multiple_sites(client, backend, uploads, cached, seed):
    seed(
        multipleSiteDetails={"multipleSitesEnabled": True},
        siteDetails=[_file_site(uploadConfig=UPLOAD_CONFIG, siteName="Harbour"), _circle_site(siteName="Jetty")],
    )
    second = {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [-1.2, 55.2]},
        "properties": {},
    }
    backend.results["extract_geo_data"] = ApiResult.success(
        {"type": "FeatureCollection", "features": FEATURE_COLLECTION["features"] + [second]}, 200
    )
    uploads.statuses.append({
        "status": "ready",
        "filename": "sites.kml",
        "s3Location": {"s3Bucket": "mmo-uploads", "s3Key": "exemptions/abc"},
    })
    resp = client.get(R["UPLOAD_AND_WAIT"])
    assert resp.headers["location"] == R["REVIEW_SITE_DETAILS"]
    sites = cached()["siteDetails"]
    assert len(sites) == 2
    assert [site["featureCount"] for site in sites] == [1, 1]
    assert sites[1]["geoJSON"]["features"] == [second]
    assert sites[1]["coordinatesType"] == "file"
    assert sites[1]["siteName"] == "Jetty"
    assert "circleWidth" not in sites[1]


def test_upload_with_wrong_extension(client, backend, uploads, cached, seed):
    seed(siteDetails=[_file_site(uploadConfig=UPLOAD_CONFIG)])
    uploads.statuses.append({
        "status": "ready",
        "filename": "site.zip",
        "s3Location": {"s3Bucket": "mmo-uploads", "s3Key": "exemptions/abc"},
    })
    resp = client.get(R["UPLOAD_AND_WAIT"])
    assert resp.headers["location"] == R["FILE_UPLOAD"]
    assert backend.called("extract_geo_data") == []
    assert cached()["siteDetails"][0]["uploadError"]["message"] == "The selected file must be a KML file"

    page = client.get(R["FILE_UPLOAD"])
    assert page.status_code == 400
    assert "The selected file must be a KML file" in page.text
    assert cached()["siteDetails"][0]["uploadError"] is None


def test_upload_rejected_by_scan(client, uploads, cached, seed):
    seed(siteDetails=[_file_site(uploadConfig=UPLOAD_CONFIG)])
    uploads.statuses.append({"status": "rejected", "message": "The selected file contains a virus"})
    resp = client.get(R["UPLOAD_AND_WAIT"])
    assert resp.headers["location"] == R["FILE_UPLOAD"]
    assert cached()["siteDetails"][0]["uploadError"]["message"] == "The selected file contains a virus"


def test_upload_geo_parser_failure(client, backend, uploads, cached, seed):
    seed(siteDetails=[_file_site(uploadConfig=UPLOAD_CONFIG)])
    backend.results["extract_geo_data"] = ApiResult.failure("SHAPEFILE_MISSING_PRJ_FILE", 400)
    uploads.statuses.append({
        "status": "ready",
        "filename": "site.kml",
        "s3Location": {"s3Bucket": "mmo-uploads", "s3Key": "exemptions/abc"},
    })
    resp = client.get(R["UPLOAD_AND_WAIT"])
    assert resp.headers["location"] == R["FILE_UPLOAD"]
    assert cached()["siteDetails"][0]["uploadError"]["message"] == "The selected file must include a .prj file"


def test_upload_and_wait_without_upload(client, seed):
    seed(siteDetails=[_file_site()])
    resp = client.get(R["UPLOAD_AND_WAIT"])
    assert resp.headers["location"] == R["CHOOSE_FILE_UPLOAD_TYPE"]


# ---------------------------------------------------------------------------
# Check your answers, dashboard and view details
# ---------------------------------------------------------------------------
def _complete(seed):
    return seed(
        activityDates={"start": "2031-03-01T00:00:00.000Z", "end": "2031-04-01T00:00:00.000Z"},
        activityDescription="Dredging",
        siteDetails=[_circle_site()],
    )


def test_check_your_answers_page(client, seed):
    _complete(seed)
    resp = client.get(R["CHECK_YOUR_ANSWERS"])
    assert resp.status_code == 200
    assert "Harbour survey" in resp.text
    assert "1 March 2031 to 1 April 2031" in resp.text


def test_submit_clears_session_and_confirms(client, backend, store, session_key, seed):
    _complete(seed)
    resp = client.post(R["CHECK_YOUR_ANSWERS"])
    assert resp.status_code == 303
    assert resp.headers["location"] == f"{R['CONFIRMATION']}?applicationReference=EXE%2F2026%2F10001"
    assert backend.called("submit_exemption") == [(EXEMPTION_ID,)]
    assert store.get(session_key) is None

    page = client.get(resp.headers["location"])
    assert page.status_code == 200
    assert "EXE/2026/10001" in page.text


def test_submit_failure(client, backend, seed):
    _complete(seed)
    backend.results["submit_exemption"] = ApiResult.failure("HTTP 500", 500)
    resp = client.post(R["CHECK_YOUR_ANSWERS"])
    assert resp.status_code == 500
    assert "Error submitting exemption" in resp.text


def test_dashboard_lists_exemptions(client, backend):
    backend.results["list_exemptions"] = ApiResult.success([
        {
            "id": "a1",
            "projectName": "Harbour survey",
            "status": "Submitted",
            "applicationReference": "EXE/2026/10001",
            "submittedAt": "2026-06-01T00:00:00.000Z",
        }
    ], 200)
    resp = client.get(R["DASHBOARD"])
    assert resp.status_code == 200
    assert "1 June 2026" in resp.text
    assert f"{R['VIEW_DETAILS']}/a1" in resp.text


def test_dashboard_backend_failure(client, backend):
    backend.results["list_exemptions"] = ApiResult.failure("HTTP 502", 502)
    resp = client.get(R["DASHBOARD"])
    assert resp.status_code == 500


def test_view_details(client, backend):
    backend.results["get_exemption"] = ApiResult.success({
        "id": "a1",
        "projectName": "Harbour survey",
        "applicationReference": "EXE/2026/10001",
        "siteDetails": [_circle_site()],
    }, 200)
    resp = client.get(f"{R['VIEW_DETAILS']}/a1")
    assert resp.status_code == 200
    assert "EXE/2026/10001" in resp.text
    assert "55.019889, -1.399500" in resp.text


def test_view_details_not_found(client, backend):
    backend.results["get_exemption"] = ApiResult.failure("Not found", 404)
    resp = client.get(f"{R['VIEW_DETAILS']}/missing")
    assert resp.status_code == 404
    assert "Page not found" in resp.text
