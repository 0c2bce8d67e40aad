from typing import Any, Optional

import requests

from core.models import ErrorKind, JobError

USER_MESSAGES = {
    ErrorKind.INVALID_INPUT: (
        "Invalid argument. There might be an issue with the prompt or uploaded file. "
        "Please review your input."
    ),
    ErrorKind.AUTH_ERROR: (
        "The provided API key is not valid or is not enabled for the Gemini API. "
        "Please check your key."
    ),
    ErrorKind.QUOTA_EXCEEDED: (
        "API quota exceeded. Please check your account status and billing in Google AI Studio."
    ),
    ErrorKind.MODEL_UNAVAILABLE: (
        "The requested model was not found. Your API key might not have access to this model."
    ),
    ErrorKind.NETWORK_ERROR: (
        "Could not reach the generation service. Please check your network connection."
    ),
    ErrorKind.UPSTREAM_MALFORMED: (
        "Generation completed but the service returned no usable result."
    ),
    ErrorKind.TIMEOUT: "The generation job did not finish before the polling deadline.",
    ErrorKind.UNKNOWN: "An unexpected error occurred.",
}

# google.rpc.Code values seen in operation errors.
RPC_CODE_NAMES = {
    3: "INVALID_ARGUMENT",
    4: "DEADLINE_EXCEEDED",
    5: "NOT_FOUND",
    7: "PERMISSION_DENIED",
    8: "RESOURCE_EXHAUSTED",
    13: "INTERNAL",
    14: "UNAVAILABLE",
    16: "UNAUTHENTICATED",
}


class GenerationError(Exception):
    """A classified failure raised inside the workflow and converted at its boundary."""

    def __init__(
        self,
        kind: ErrorKind,
        detail: str = "",
        status_code: Optional[int] = None,
        message: Optional[str] = None,
    ):
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        self.message = message or USER_MESSAGES[kind]
        super().__init__(f"{kind.value}: {detail or self.message}")

    def to_job_error(self) -> JobError:
        return JobError(
            kind=self.kind,
            message=self.message,
            detail=self.detail,
            status_code=self.status_code,
        )

    @classmethod
    def from_job_error(cls, error: JobError) -> "GenerationError":
        return cls(
            kind=error.kind,
            detail=error.detail,
            status_code=error.status_code,
            message=error.message,
        )


class JobCancelled(Exception):
    def __init__(self, operation_name: Optional[str] = None):
        self.operation_name = operation_name
        super().__init__(f"job cancelled operation={operation_name or '-'}")


def classify_error(
    message: str,
    status_code: Optional[int] = None,
    rpc_status: Optional[str] = None,
) -> ErrorKind:
    text = message or ""
    low = text.lower()
    status = (rpc_status or "").upper()

    if "api key not valid" in low or "api_key_invalid" in low:
        return ErrorKind.AUTH_ERROR
    if status == "UNAUTHENTICATED" or status_code == 401:
        return ErrorKind.AUTH_ERROR
    if "quota" in low or "resource_exhausted" in low:
        return ErrorKind.QUOTA_EXCEEDED
    if status == "RESOURCE_EXHAUSTED" or status_code == 429:
        return ErrorKind.QUOTA_EXCEEDED
    if "model was not found" in low or status == "NOT_FOUND" or status_code == 404:
        return ErrorKind.MODEL_UNAVAILABLE
    if "permission denied" in low or status == "PERMISSION_DENIED" or status_code == 403:
        if "model" in low:
            return ErrorKind.MODEL_UNAVAILABLE
        return ErrorKind.AUTH_ERROR
    if "invalid argument" in low or status == "INVALID_ARGUMENT" or status_code == 400:
        return ErrorKind.INVALID_INPUT
    if status in {"UNAVAILABLE", "DEADLINE_EXCEEDED"} or status_code in {502, 503, 504}:
        return ErrorKind.NETWORK_ERROR
    return ErrorKind.UNKNOWN


def error_from_payload(raw: Any, status_code: Optional[int] = None) -> GenerationError:
    """Classify a backend error body such as ``{"error": {"code", "message", "status"}}``."""
    message = ""
    rpc_status: Optional[str] = None
    body = raw.get("error") if isinstance(raw, dict) else None
    if isinstance(body, dict):
        message = str(body.get("message") or "")
        rpc_status = _rpc_status(body.get("status"), body.get("code"))
    elif isinstance(body, str):
        message = body
    elif isinstance(raw, dict) and isinstance(raw.get("message"), str):
        message = raw["message"]
    detail = message or str(raw)[:500]
    kind = classify_error(message, status_code=status_code, rpc_status=rpc_status)
    return GenerationError(kind=kind, detail=detail, status_code=status_code)


def error_from_operation(raw_error: Any) -> JobError:
    if not isinstance(raw_error, dict):
        return GenerationError(ErrorKind.UNKNOWN, detail=str(raw_error)[:500]).to_job_error()
    message = str(raw_error.get("message") or "")
    rpc_status = _rpc_status(raw_error.get("status"), raw_error.get("code"))
    kind = classify_error(message, rpc_status=rpc_status)
    return GenerationError(kind=kind, detail=message or str(raw_error)[:500]).to_job_error()


def error_from_exception(exc: Exception) -> GenerationError:
    if isinstance(exc, GenerationError):
        return exc
    if isinstance(exc, requests.RequestException):
        return GenerationError(ErrorKind.NETWORK_ERROR, detail=f"{type(exc).__name__}: {exc}")
    return GenerationError(ErrorKind.UNKNOWN, detail=f"{type(exc).__name__}: {exc}")


def user_message(error: JobError) -> str:
    if error.kind == ErrorKind.UNKNOWN and error.detail:
        return f"{error.message} ({error.detail})"
    return error.message


def _rpc_status(status: Any, code: Any) -> Optional[str]:
    if isinstance(status, str) and status.strip():
        return status.strip().upper()
    if isinstance(code, int) and code in RPC_CODE_NAMES:
        return RPC_CODE_NAMES[code]
    return None
