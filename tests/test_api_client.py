import json

import requests

from marinework.api_client import ApiResult, BackendClient, extract_validation_details, unwrap_value


class FakeResponse:
    def __init__(self, status_code, body=None, raw=None):
        self.status_code = status_code
        if raw is not None:
            self.content = raw
        elif body is not None:
            self.content = json.dumps(body).encode()
        else:
            self.content = b""

    def json(self):
        return json.loads(self.content)


class FakeHttp:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def _client(response=None, error=None):
    http = FakeHttp(response, error)
    return BackendClient("http://backend.test/", timeout=5, session=http), http


def test_unwrap_value():
    assert unwrap_value({"message": "success", "value": {"id": "abc"}}) == {"id": "abc"}
    assert unwrap_value({"id": "abc"}) == {"id": "abc"}


def test_extract_validation_details_from_either_location():
    detail = {"type": "string.empty", "path": ["projectName"], "message": "PROJECT_NAME_REQUIRED"}
    assert extract_validation_details({"validation": {"details": [detail]}}) == [detail]
    assert extract_validation_details({"payload": {"validation": {"details": [detail]}}}) == [detail]
    assert extract_validation_details({"message": "Bad request"}) is None


def test_success_sends_json_and_unwraps():
    client, http = _client(FakeResponse(201, {"message": "success", "value": {"id": "abc"}}))
    result = client.create_project_name("Harbour survey")
    assert result.ok
    assert result.value == {"id": "abc"}
    method, url, kwargs = http.requests[0]
    assert (method, url) == ("POST", "http://backend.test/exemption/project-name")
    assert kwargs["json"] == {"projectName": "Harbour survey"}
    assert kwargs["timeout"] == 5


def test_validation_failure():
    detail = {"type": "string.max", "path": ["projectName"], "message": "PROJECT_NAME_MAX_LENGTH"}
    client, _ = _client(FakeResponse(400, {"payload": {"validation": {"details": [detail]}}}))
    result = client.update_project_name("abc", "x" * 300)
    assert not result.ok
    assert result.is_validation_error
    assert result.details == [detail]
    assert result.status_code == 400


def test_other_failures():
    client, _ = _client(FakeResponse(404, {"message": "Exemption not found"}))
    result = client.get_exemption("abc")
    assert result.kind == "other"
    assert result.error == "Exemption not found"
    assert result.status_code == 404

    client, _ = _client(FakeResponse(500))
    assert client.submit_exemption("abc").error == "HTTP 500"


def test_non_json_success_is_a_failure():
    client, _ = _client(FakeResponse(200, raw=b"<html>"))
    result = client.list_exemptions()
    assert not result.ok
    assert result.error == "Unexpected API response format"


def test_transport_error_is_a_failure():
    client, _ = _client(error=requests.ConnectionError("refused"))
    result = client.extract_geo_data("bucket", "key", "kml")
    assert not result.ok
    assert not result.is_validation_error
    assert result.status_code is None


def test_api_result_constructors():
    assert ApiResult.success([]).ok
    assert ApiResult.validation([]).is_validation_error
    assert ApiResult.failure("boom").kind == "other"
