from __future__ import annotations

import os
import tempfile
from typing import Any, Dict, List, Optional

import pytest

os.environ.setdefault("SESSION_STORE", "memory")
os.environ.setdefault("SESSION_SECRET", "test-secret")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="marinework-tests-"))

from fastapi.testclient import TestClient  # noqa: E402

from marinework import constants as c  # noqa: E402
from marinework.api_client import ApiResult, get_backend_client  # noqa: E402
from marinework.exemption_cache import CacheContext  # noqa: E402
from marinework.main import app  # noqa: E402
from marinework.session_store import MemorySessionStore  # noqa: E402
from marinework.upload_service import get_upload_client  # noqa: E402

EXEMPTION_ID = "exemption-1"

FEATURE_COLLECTION = {
    "type": "FeatureCollection",
    "features": [
        {
            "type": "Feature",
            "geometry": {
                "type": "Polygon",
                "coordinates": [[[-1.4, 55.0], [-1.3, 55.0], [-1.3, 55.1], [-1.4, 55.0]]],
            },
            "properties": {},
        }
    ],
}


class FakeBackend:
    """Stands in for BackendClient; ``results`` overrides a method's return value."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.results: Dict[str, ApiResult] = {}

    def _result(self, name: str, default: ApiResult, *args: Any) -> ApiResult:
        self.calls.append((name, args))
        return self.results.get(name, default)

    def create_project_name(self, project_name):
        return self._result("create_project_name", ApiResult.success({"id": EXEMPTION_ID}, 201), project_name)

    def update_project_name(self, exemption_id, project_name):
        return self._result("update_project_name", ApiResult.success({}, 200), exemption_id, project_name)

    def update_activity_dates(self, exemption_id, start, end):
        return self._result("update_activity_dates", ApiResult.success({}, 200), exemption_id, start, end)

    def update_activity_description(self, exemption_id, description):
        return self._result("update_activity_description", ApiResult.success({}, 200), exemption_id, description)

    def update_site_details(self, body):
        return self._result("update_site_details", ApiResult.success({}, 200), body)

    def get_exemption(self, exemption_id):
        return self._result("get_exemption", ApiResult.success({"id": exemption_id, "projectName": "Harbour survey"}, 200), exemption_id)

    def list_exemptions(self):
        return self._result("list_exemptions", ApiResult.success([], 200))

    def submit_exemption(self, exemption_id):
        return self._result(
            "submit_exemption",
            ApiResult.success({"applicationReference": "EXE/2026/10001"}, 200),
            exemption_id,
        )

    def extract_geo_data(self, s3_bucket, s3_key, file_type):
        return self._result("extract_geo_data", ApiResult.success(FEATURE_COLLECTION, 200), s3_bucket, s3_key, file_type)

    def called(self, name: str) -> List[tuple]:
        return [args for call, args in self.calls if call == name]


class FakeUploads:
    def __init__(self) -> None:
        self.initiated: List[Dict[str, Any]] = []
        self.statuses: List[Dict[str, Any]] = []
        self.initiate_error: Optional[Exception] = None

    def initiate(self, *, redirect_url, s3_bucket, s3_path="", mime_types=None):
        if self.initiate_error is not None:
            raise self.initiate_error
        self.initiated.append({"redirect_url": redirect_url, "s3_bucket": s3_bucket, "s3_path": s3_path})
        return {
            "uploadId": "upload-1",
            "uploadUrl": "http://uploader.test/upload-and-scan/upload-1",
            "statusUrl": "http://uploader.test/status/upload-1",
            "maxFileSize": 50000000,
            "allowedTypes": [],
        }

    def get_status(self, upload_id, status_url):
        return self.statuses.pop(0)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def uploads() -> FakeUploads:
    return FakeUploads()


@pytest.fixture
def store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def client(backend, uploads, store):
    app.state.session_store = store
    app.dependency_overrides[get_backend_client] = lambda: backend
    app.dependency_overrides[get_upload_client] = lambda: uploads
    yield TestClient(app, follow_redirects=False)
    app.dependency_overrides.clear()


@pytest.fixture
def session_key(client, store) -> str:
    """Start an exemption so the browser session has a stored document."""
    resp = client.post(c.ROUTES["PROJECT_NAME"], data={"projectName": "Harbour survey"})
    assert resp.status_code == 303
    return store.keys()[0]


@pytest.fixture
def seed(store, session_key):
    def _seed(**fields: Any) -> Dict[str, Any]:
        document = {"id": EXEMPTION_ID, "projectName": "Harbour survey", **fields}
        store.set(session_key, document)
        return document

    return _seed


@pytest.fixture
def cached(store, session_key):
    def _cached() -> Dict[str, Any]:
        return store.get(session_key) or {}

    return _cached


@pytest.fixture
def ctx(store) -> CacheContext:
    return CacheContext(session_store=store, session_key="test-session")
