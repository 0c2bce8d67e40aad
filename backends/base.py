from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Union

import requests

from core.errors import GenerationError, error_from_exception, error_from_payload
from core.models import (
    Artifact,
    ErrorKind,
    GenerationRequest,
    KeyValidation,
    Operation,
)


class BackendClient(ABC):
    """HTTP client for a generation backend.

    The credential is an argument of every call; clients hold no key state.
    """

    provider: str

    def __init__(self, base_url: str, timeout_seconds: int = 120):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    def submit_generation(
        self, request: GenerationRequest, api_key: str
    ) -> Union[Artifact, Operation]:
        raise NotImplementedError

    @abstractmethod
    def poll_operation(self, name: str, api_key: str) -> Operation:
        raise NotImplementedError

    @abstractmethod
    def fetch_artifact(self, uri: str, api_key: str) -> Artifact:
        raise NotImplementedError

    @abstractmethod
    def validate_key(self, api_key: str) -> KeyValidation:
        raise NotImplementedError

    @abstractmethod
    def build_headers(self, api_key: str) -> Dict[str, str]:
        raise NotImplementedError

    def _post_json(self, url: str, api_key: str, payload: Dict[str, Any]) -> Any:
        return self._send("POST", url, api_key, json=payload)

    def _get_json(self, url: str, api_key: str) -> Any:
        return self._send("GET", url, api_key)

    def _send(
        self,
        method: str,
        url: str,
        api_key: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = self.build_headers(api_key)
        try:
            resp = requests.request(
                method,
                url,
                headers=headers,
                json=json,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise error_from_exception(exc) from exc
        raw = self._json_or_text(resp)
        if not resp.ok:
            raise error_from_payload(raw, status_code=resp.status_code)
        if not isinstance(raw, dict) or "raw_text" in raw:
            raise GenerationError(
                ErrorKind.UPSTREAM_MALFORMED,
                detail=f"{self.provider} returned a non-JSON body: {str(raw)[:500]}",
                status_code=resp.status_code,
            )
        return raw

    def _json_or_text(self, response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return {"raw_text": response.text}
