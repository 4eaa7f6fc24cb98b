import json

from marinework import coordinates


def test_point_names():
    assert coordinates.point_name(0) == "start and end point"
    assert coordinates.point_name(3) == "point 4"


def test_generate_point_specific_error_message():
    assert coordinates.generate_point_specific_error_message("Enter the latitude", 0) == "Enter the latitude of start and end point"
    assert (
        coordinates.generate_point_specific_error_message("Eastings must be 6 digits", 2)
        == "Eastings of point 3 must be 6 digits"
    )
    assert coordinates.generate_point_specific_error_message("Something else", 1) == "Something else"


def test_convert_payload_to_coordinates_array_orders_points():
    payload = {
        "coordinates[1][eastings]": "200000",
        "coordinates[1][northings]": "300000",
        "coordinates[0][eastings]": " 100000 ",
        "coordinates[0][northings]": "400000",
        "action": "add",
    }
    assert coordinates.convert_payload_to_coordinates_array(payload, "osgb36") == [
        {"eastings": "100000", "northings": "400000"},
        {"eastings": "200000", "northings": "300000"},
    ]


def test_normalise_pads_and_drops_other_system():
    padded = coordinates.normalise_coordinates_for_display("wgs84", [{"latitude": "1", "longitude": "2"}])
    assert len(padded) == 3
    assert padded[1] == {"latitude": "", "longitude": ""}
    dropped = coordinates.normalise_coordinates_for_display("osgb36", [{"latitude": "1", "longitude": "2"}])
    assert dropped[0] == {"eastings": "", "northings": ""}


def test_remove_coordinate_keeps_minimum_points():
    points = [1, 2, 3, 4]
    assert coordinates.remove_coordinate_at_index(points, 3) == [1, 2, 3]
    assert coordinates.remove_coordinate_at_index(points, 1) == points
    assert coordinates.remove_coordinate_at_index([1, 2, 3], 2) == [1, 2, 3]


def test_field_name_and_id_sanitising():
    path = ["coordinates[12][latitude]"]
    assert coordinates.sanitise_field_name(path) == "coordinates12latitude"
    assert coordinates.sanitise_field_id(path) == "coordinates-12-latitude"


def test_coordinate_error_summary_and_field_errors():
    details = [{"type": "string.empty", "path": ["coordinates", 1, "longitude"], "message": "Enter the longitude"}]
    assert coordinates.create_coordinate_error_summary(details) == [
        {"href": "#coordinates-1-longitude", "text": "Enter the longitude of point 2"}
    ]
    assert coordinates.create_coordinate_field_errors(details) == {
        "coordinates1longitude": {"text": "Enter the longitude of point 2"}
    }


def test_extract_coordinates_from_geojson_skips_empty_features():
    geojson = {"features": [{"geometry": {"type": "Point", "coordinates": [1, 2]}}, {"geometry": None}]}
    assert coordinates.extract_coordinates_from_geojson(geojson) == [{"type": "Point", "coordinates": [1, 2]}]


def test_site_details_data_json():
    data = json.loads(coordinates.create_site_details_data_json({"coordinatesType": "coordinates", "circleWidth": "5"}, "wgs84"))
    assert data["coordinatesType"] == "coordinates"
    assert data["coordinateSystem"] == "wgs84"
    assert json.loads(coordinates.create_site_details_data_json(None, None))["coordinatesType"] == "none"
