"""Client for the file-upload service and the rules applied to its results.

The upload service receives the browser's multipart POST directly, virus-scans
the file and writes it to S3. This app only initiates an upload session and
polls its status URL; statuses are normalised to ``pending``, ``scanning``,
``ready``, ``rejected`` and ``error``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.header import decode_header, make_header
from typing import Any, Dict, List, Mapping, Optional, Sequence

import requests

from marinework import settings

log = logging.getLogger("uvicorn.error")

# Upload service vocabulary
UPLOAD_STATUS_READY = "ready"
FILE_STATUS_PENDING = "pending"
FILE_STATUS_COMPLETE = "complete"
FILE_STATUS_REJECTED = "rejected"

STATUS_PENDING = "pending"
STATUS_SCANNING = "scanning"
STATUS_READY = "ready"
STATUS_REJECTED = "rejected"
STATUS_ERROR = "error"

ENDPOINT_INITIATE = "/initiate"

ERROR_CODES = {
    "NO_FILE_SELECTED": "NO_FILE_SELECTED",
    "VIRUS_DETECTED": "VIRUS_DETECTED",
    "FILE_EMPTY": "FILE_EMPTY",
    "FILE_TOO_LARGE": "FILE_TOO_LARGE",
    "INVALID_FILE_TYPE": "INVALID_FILE_TYPE",
    "UPLOAD_ERROR": "UPLOAD_ERROR",
}

ERROR_CODE_KEYWORDS = [
    (("virus",), "VIRUS_DETECTED"),
    (("empty",), "FILE_EMPTY"),
    (("smaller than", "must be smaller than"), "FILE_TOO_LARGE"),
    (("must be a", "KML file", "Shapefile"), "INVALID_FILE_TYPE"),
    (("could not be uploaded",), "UPLOAD_ERROR"),
]

STATUS_MESSAGES = {
    "UPLOAD_NOT_FOUND": "Upload session not found",
    "SERVICE_UNAVAILABLE": "Service temporarily unavailable",
    "STATUS_CHECK_FAILED": "Unable to check status",
    "NO_FILE_SELECTED": "Select a file to upload",
}

UNKNOWN_FILE = "unknown-file"

# Messages shown on the upload page
NO_FILE_SELECTED_MESSAGE = "Select a file to upload"
DEFAULT_UPLOAD_ERROR_MESSAGE = "The selected file could not be uploaded – try again"
DEFAULT_GEO_PARSER_ERROR_MESSAGE = "The selected file could not be processed – try again"

FILE_TYPE_ERROR_MESSAGES = {
    "kml": "The selected file must be a KML file",
    "shapefile": "The selected file must be a Shapefile",
}

GEO_PARSER_ERROR_MESSAGES = {
    "SHAPEFILE_MISSING_CORE_FILES": "The selected file must include .shp .shx and .dbf files",
    "SHAPEFILE_MISSING_PRJ_FILE": "The selected file must include a .prj file",
    "SHAPEFILE_PRJ_FILE_TOO_LARGE": "The selected file's .prj file must be smaller than 50KB",
    "SHAPEFILE_NOT_FOUND": "The selected file does not contain a valid shapefile",
    "ZIP_TOO_MANY_FILES": "The selected file contains too many files",
    "ZIP_TOO_LARGE": "The selected file is too large",
    "ZIP_COMPRESSION_SUSPICIOUS": DEFAULT_GEO_PARSER_ERROR_MESSAGE,
    "COORDINATES_INVALID_LONGITUDE": "The selected file contains invalid coordinates",
    "COORDINATES_INVALID_LATITUDE": "The selected file contains invalid coordinates",
    "UNSUPPORTED_FILE_TYPE": "The selected file type is not supported",
}

ALLOWED_EXTENSIONS = {
    "kml": ["kml"],
    "shapefile": ["zip"],
}

ACCEPT_ATTRIBUTES = {
    "kml": ".kml",
    "shapefile": ".zip",
}


# ---------------------------------------------------------------------------
# Upload error rules
# ---------------------------------------------------------------------------
def transform_upload_error(message: Optional[str], file_type: Optional[str]) -> Dict[str, str]:
    """Map an upload-service or extension message to the copy shown on the upload page."""
    text = message or ""
    if NO_FILE_SELECTED_MESSAGE in text:
        error_message = NO_FILE_SELECTED_MESSAGE
    elif "virus" in text:
        error_message = "The selected file contains a virus"
    elif "empty" in text:
        error_message = "The selected file is empty"
    elif "smaller than" in text:
        error_message = "The selected file must be smaller than 50 MB"
    elif "must be a" in text:
        error_message = FILE_TYPE_ERROR_MESSAGES.get(file_type or "", DEFAULT_UPLOAD_ERROR_MESSAGE)
    else:
        error_message = DEFAULT_UPLOAD_ERROR_MESSAGE
    return {"message": error_message, "fieldName": "file"}


def geo_parser_error_message(code: Optional[str]) -> str:
    return GEO_PARSER_ERROR_MESSAGES.get(code or "", DEFAULT_GEO_PARSER_ERROR_MESSAGE)


def allowed_extensions(file_type: Optional[str]) -> List[str]:
    return list(ALLOWED_EXTENSIONS.get(file_type or "", []))


def _extension(filename: str) -> str:
    dot = filename.rfind(".")
    if dot == -1 or dot == len(filename) - 1:
        return ""
    return filename[dot + 1:]


def _extension_error_message(allowed: Sequence[str]) -> str:
    if len(allowed) == 1:
        ext = allowed[0]
        if ext == "kml":
            return "The selected file must be a KML file"
        if ext == "zip":
            return "The selected file must be a Shapefile"
        return f"The selected file must be a {ext.upper()} file"
    return f"The selected file must be a {' or '.join(ext.upper() for ext in allowed)} file"


def validate_file_extension(filename: Optional[str], allowed: Optional[Sequence[str]]) -> Dict[str, Any]:
    """Case-insensitive extension check; returns ``isValid``, ``extension`` and ``errorMessage``."""
    if not filename or not isinstance(filename, str):
        return {"isValid": False, "extension": "", "errorMessage": "No filename provided"}
    if not allowed:
        return {"isValid": False, "extension": "", "errorMessage": "No allowed extensions specified"}
    extension = _extension(filename).lower()
    normalised = [ext.lower() for ext in allowed]
    is_valid = extension in normalised
    log.debug("File extension validation filename=%s extension=%s valid=%s", filename, extension, is_valid)
    return {
        "isValid": is_valid,
        "extension": extension,
        "errorMessage": None if is_valid else _extension_error_message(normalised),
    }


# ---------------------------------------------------------------------------
# Status normalisation
# ---------------------------------------------------------------------------
def determine_overall_status(upload_status: Optional[str], file_status: Optional[str], has_error: bool) -> str:
    if has_error or file_status == FILE_STATUS_REJECTED:
        return STATUS_REJECTED
    if file_status == FILE_STATUS_COMPLETE and upload_status == UPLOAD_STATUS_READY:
        return STATUS_READY
    if file_status == FILE_STATUS_PENDING:
        return STATUS_SCANNING
    return STATUS_PENDING


def extract_error_code(message: str) -> str:
    for keywords, code in ERROR_CODE_KEYWORDS:
        if any(keyword in message for keyword in keywords):
            return ERROR_CODES[code]
    return ERROR_CODES["UPLOAD_ERROR"]


def extract_filename(file_data: Optional[Mapping[str, Any]]) -> str:
    if not file_data:
        return UNKNOWN_FILE
    if file_data.get("filename"):
        return str(file_data["filename"])
    encoded = file_data.get("encodedfilename")
    if encoded:
        try:
            return str(make_header(decode_header(str(encoded))))
        except (LookupError, UnicodeDecodeError, ValueError) as exc:
            log.warning("Failed to decode RFC-2047 filename encoded=%s error=%s", encoded, exc)
            return str(encoded)
    return UNKNOWN_FILE


def _has_s3_fields(file_data: Mapping[str, Any]) -> bool:
    return bool(
        file_data.get("s3Key")
        and file_data.get("s3Bucket")
        and file_data.get("fileId")
        and file_data.get("contentLength")
    )


def build_s3_location(file_data: Mapping[str, Any]) -> Dict[str, Any]:
    bucket = file_data.get("s3Bucket")
    key = file_data.get("s3Key")
    return {
        "s3Bucket": bucket,
        "s3Key": key,
        "fileId": file_data.get("fileId"),
        "s3Url": f"s3://{bucket}/{key}",
        "detectedContentType": file_data.get("detectedContentType"),
        "checksumSha256": file_data.get("checksumSha256"),
    }


def _error_status(message: str, code: str, retryable: bool) -> Dict[str, Any]:
    return {"status": STATUS_ERROR, "message": message, "errorCode": code, "retryable": retryable}


def transform_status_response(body: Mapping[str, Any]) -> Dict[str, Any]:
    """Normalise the upload service's status document."""
    upload_status = body.get("uploadStatus")
    form = body.get("form") or {}
    file_data = next(iter(form.values()), None) if isinstance(form, Mapping) and form else None
    if not file_data:
        return _error_status(STATUS_MESSAGES["NO_FILE_SELECTED"], ERROR_CODES["NO_FILE_SELECTED"], True)

    status = determine_overall_status(upload_status, file_data.get("fileStatus"), bool(file_data.get("hasError")))
    result: Dict[str, Any] = {
        "status": status,
        "filename": extract_filename(file_data),
        "fileSize": file_data.get("contentLength"),
    }
    if status in (STATUS_READY, STATUS_REJECTED):
        result["completedAt"] = datetime.now(timezone.utc).isoformat()
    if file_data.get("hasError") and file_data.get("errorMessage"):
        result["message"] = file_data["errorMessage"]
        result["errorCode"] = extract_error_code(file_data["errorMessage"])
    if (
        status == STATUS_READY
        and file_data.get("fileStatus") == FILE_STATUS_COMPLETE
        and _has_s3_fields(file_data)
    ):
        result["s3Location"] = build_s3_location(file_data)
    return result


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------
class UploadServiceClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_file_size: Optional[int] = None,
        allowed_mime_types: Optional[List[str]] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = (base_url or settings.UPLOAD_SERVICE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SEC
        self.max_file_size = max_file_size or settings.UPLOAD_MAX_FILE_SIZE
        self.allowed_mime_types = allowed_mime_types
        self.http = session or requests.Session()

    def initiate(
        self,
        *,
        redirect_url: str,
        s3_bucket: str,
        s3_path: str = "",
        mime_types: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Open an upload session. Raises ValueError for bad arguments and RuntimeError on failure."""
        if not redirect_url:
            raise ValueError("redirectUrl is required")
        if not s3_bucket:
            raise ValueError("S3 Bucket is required")
        allowed = mime_types if mime_types is not None else self.allowed_mime_types
        payload: Dict[str, Any] = {
            "redirect": redirect_url,
            "maxFileSize": self.max_file_size,
            "s3Path": s3_path,
            "s3Bucket": s3_bucket,
        }
        if allowed is not None:
            payload["mimeTypes"] = allowed
        try:
            resp = self.http.post(f"{self.base_url}{ENDPOINT_INITIATE}", json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            log.error("Failed to initiate upload session redirect=%s error=%s", redirect_url, exc)
            raise RuntimeError(f"Upload initiate failed: {exc}") from exc
        if not 200 <= resp.status_code < 300:
            log.error("Upload initiate failed status=%s", resp.status_code)
            raise RuntimeError(f"API call failed with status: {resp.status_code}")
        data = resp.json()
        log.info("Upload session initiated uploadId=%s", data.get("uploadId"))
        return {
            "uploadId": data.get("uploadId"),
            "uploadUrl": data.get("uploadUrl"),
            "statusUrl": data.get("statusUrl"),
            "maxFileSize": self.max_file_size,
            "allowedTypes": allowed or [],
        }

    def get_status(self, upload_id: str, status_url: str) -> Dict[str, Any]:
        """Current status of an upload; service and timeout failures come back as ``error`` statuses."""
        try:
            resp = self.http.get(status_url, timeout=self.timeout)
        except requests.Timeout as exc:
            log.error("Request timeout when checking status uploadId=%s error=%s", upload_id, exc)
            return _error_status(STATUS_MESSAGES["STATUS_CHECK_FAILED"], ERROR_CODES["UPLOAD_ERROR"], True)
        except requests.ConnectionError as exc:
            log.error("Connection error when checking status uploadId=%s error=%s", upload_id, exc)
            return _error_status(STATUS_MESSAGES["STATUS_CHECK_FAILED"], ERROR_CODES["UPLOAD_ERROR"], True)

        if resp.status_code == 404:
            log.warning("Upload session not found uploadId=%s", upload_id)
            return _error_status(STATUS_MESSAGES["UPLOAD_NOT_FOUND"], ERROR_CODES["UPLOAD_ERROR"], False)
        if resp.status_code >= 500:
            log.error("Service error when checking status uploadId=%s status=%s", upload_id, resp.status_code)
            return _error_status(STATUS_MESSAGES["SERVICE_UNAVAILABLE"], ERROR_CODES["UPLOAD_ERROR"], True)
        if not 200 <= resp.status_code < 300:
            log.error("Upload status failed uploadId=%s status=%s", upload_id, resp.status_code)
            raise RuntimeError(f"API call failed with status: {resp.status_code}")

        result = transform_status_response(resp.json())
        log.debug("Upload status retrieved uploadId=%s status=%s", upload_id, result["status"])
        return result


_upload_client: Optional[UploadServiceClient] = None


def get_upload_client() -> UploadServiceClient:
    """FastAPI dependency; tests override it with a fake."""
    global _upload_client
    if _upload_client is None:
        _upload_client = UploadServiceClient()
    return _upload_client
