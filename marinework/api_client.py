"""HTTP client for the exemption backend.

Every call returns an :class:`ApiResult` rather than raising, so route
handlers can tell a validation failure (re-render the form) from any other
failure (error page) without inspecting exceptions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import requests

from marinework import settings

log = logging.getLogger("uvicorn.error")

KIND_VALIDATION = "validation"
KIND_OTHER = "other"


@dataclass
class ApiResult:
    ok: bool
    value: Any = None
    kind: Optional[str] = None
    details: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    status_code: Optional[int] = None

    @classmethod
    def success(cls, value: Any, status_code: Optional[int] = None) -> "ApiResult":
        return cls(ok=True, value=value, status_code=status_code)

    @classmethod
    def validation(cls, details: List[Dict[str, Any]], status_code: Optional[int] = None) -> "ApiResult":
        return cls(ok=False, kind=KIND_VALIDATION, details=details, error="Validation failed", status_code=status_code)

    @classmethod
    def failure(cls, error: str, status_code: Optional[int] = None) -> "ApiResult":
        return cls(ok=False, kind=KIND_OTHER, error=error, status_code=status_code)

    @property
    def is_validation_error(self) -> bool:
        return self.kind == KIND_VALIDATION


def extract_validation_details(body: Any) -> Optional[List[Dict[str, Any]]]:
    """Validation details from ``validation.details`` or ``payload.validation.details``."""
    if not isinstance(body, Mapping):
        return None
    for holder in (body, body.get("payload")):
        if not isinstance(holder, Mapping):
            continue
        validation = holder.get("validation")
        if isinstance(validation, Mapping) and isinstance(validation.get("details"), list):
            return [dict(detail) for detail in validation["details"] if isinstance(detail, Mapping)]
    return None


def unwrap_value(body: Any) -> Any:
    """``{"message": "success", "value": ...}`` bodies yield ``value``; anything else is returned as is."""
    if isinstance(body, Mapping) and body.get("message") == "success" and "value" in body:
        return body["value"]
    return body


class BackendClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.base_url = (base_url or settings.BACKEND_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SEC
        self.http = session or requests.Session()
        self.log = logger or log

    def _request(self, method: str, endpoint: str, payload: Optional[Mapping[str, Any]] = None) -> ApiResult:
        url = f"{self.base_url}{endpoint}"
        try:
            resp = self.http.request(
                method,
                url,
                json=dict(payload) if payload is not None else None,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            self.log.error("Backend API call failed: method=%s endpoint=%s error=%s", method, endpoint, exc)
            return ApiResult.failure(f"Backend API call failed: {exc}")

        try:
            body = resp.json() if resp.content else None
        except ValueError:
            body = None

        if 200 <= resp.status_code < 300:
            if body is None and resp.content:
                self.log.error("Backend returned non-JSON body: endpoint=%s status=%s", endpoint, resp.status_code)
                return ApiResult.failure("Unexpected API response format", resp.status_code)
            return ApiResult.success(unwrap_value(body), resp.status_code)

        if 400 <= resp.status_code < 500:
            details = extract_validation_details(body)
            if details is not None:
                self.log.info("Backend validation failed: endpoint=%s errors=%s", endpoint, len(details))
                return ApiResult.validation(details, resp.status_code)

        self.log.error("Backend API error: method=%s endpoint=%s status=%s", method, endpoint, resp.status_code)
        message = body.get("message") if isinstance(body, Mapping) else None
        return ApiResult.failure(message or f"HTTP {resp.status_code}", resp.status_code)

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------
    def create_project_name(self, project_name: str) -> ApiResult:
        return self._request("POST", "/exemption/project-name", {"projectName": project_name})

    def update_project_name(self, exemption_id: str, project_name: str) -> ApiResult:
        return self._request("PATCH", "/exemption/project-name", {"id": exemption_id, "projectName": project_name})

    def update_activity_dates(self, exemption_id: str, start: str, end: str) -> ApiResult:
        return self._request(
            "PATCH",
            "/exemption/activity-dates",
            {"id": exemption_id, "start": start, "end": end},
        )

    def update_activity_description(self, exemption_id: str, description: str) -> ApiResult:
        return self._request(
            "PATCH",
            "/exemption/activity-description",
            {"id": exemption_id, "activityDescription": description},
        )

    def update_site_details(self, body: Mapping[str, Any]) -> ApiResult:
        return self._request("PATCH", "/exemption/site-details", body)

    def get_exemption(self, exemption_id: str) -> ApiResult:
        return self._request("GET", f"/exemption/{exemption_id}")

    def list_exemptions(self) -> ApiResult:
        return self._request("GET", "/exemptions")

    def submit_exemption(self, exemption_id: str) -> ApiResult:
        return self._request("POST", "/exemption/submit", {"id": exemption_id})

    def extract_geo_data(self, s3_bucket: str, s3_key: str, file_type: str) -> ApiResult:
        return self._request(
            "POST",
            "/geo-parser/extract",
            {"s3Bucket": s3_bucket, "s3Key": s3_key, "fileType": file_type},
        )


_client: Optional[BackendClient] = None


def get_backend_client() -> BackendClient:
    """FastAPI dependency; tests override it with a fake."""
    global _client
    if _client is None:
        _client = BackendClient()
    return _client
