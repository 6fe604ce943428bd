"""Batch service adapter using the Gemini REST API."""

import base64
import logging
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, BinaryIO
from urllib.parse import urlsplit

import httpx

from ...domain.exceptions import RemoteServiceError
from ...domain.models import InlineResults, RemoteJobStatus, RequestCounts, ResultFile, ResultHandle
from ...domain.parser import response_text
from ...ports.batch_service import BatchServicePort
from .prompts import EXTRACTION_PROMPT

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
CHUNK_SIZE = 64 * 1024


def _first(data: dict[str, Any], *names: str) -> Any:
    for name in names:
        if data.get(name) is not None:
            return data[name]
    return None


class GeminiBatchAdapter(BatchServicePort):
    """BatchServicePort implementation over httpx."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        parsed = urlsplit(base_url)
        if parsed.scheme not in ("http", "https"):
            raise ValueError(f"Invalid Gemini base_url scheme: {parsed.scheme}")
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.download_url = f"{parsed.scheme}://{parsed.netloc}/download{parsed.path.rstrip('/')}"
        self.client = client or httpx.Client(timeout=timeout)
        self.headers = {"x-goog-api-key": api_key}

    def get_job_status(self, job_id: str) -> RemoteJobStatus:
        name = job_id if job_id.startswith("batches/") else f"batches/{job_id}"
        logger.debug(f"Fetching status of {name}")
        data = self._request("GET", f"{self.base_url}/{name}").json()
        return self._parse_status(data)

    @contextmanager
    def open_results(self, file_name: str) -> Iterator[BinaryIO]:
        """Download a result file to a temporary file and yield it for reading."""
        url = f"{self.download_url}/{file_name}:download"
        with tempfile.TemporaryFile() as buffer:
            try:
                with self.client.stream(
                    "GET", url, params={"alt": "media"}, headers=self.headers
                ) as response:
                    if response.status_code >= 400:
                        response.read()
                        raise self._error_for(response, f"Download of {file_name} failed")
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        buffer.write(chunk)
            except httpx.HTTPError as e:
                raise RemoteServiceError(f"Download of {file_name} failed: {e}") from e

            logger.info(f"Downloaded {file_name} ({buffer.tell()} bytes)")
            buffer.seek(0)
            yield buffer

    def extract_document(self, data: bytes, mime_type: str = "application/pdf") -> str:
        logger.info(f"Extracting document with Gemini ({self.model})")
        payload = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": EXTRACTION_PROMPT},
                        {
                            "inlineData": {
                                "mimeType": mime_type,
                                "data": base64.b64encode(data).decode("ascii"),
                            }
                        },
                    ],
                }
            ],
            "generationConfig": {"responseMimeType": "application/json", "temperature": 0},
        }
        response = self._request(
            "POST", f"{self.base_url}/models/{self.model}:generateContent", json=payload
        )
        text = response_text(response.json())
        if not text:
            raise RemoteServiceError("Extraction response contained no text")
        return text

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self.client.request(method, url, headers=self.headers, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteServiceError(f"{method} {url} failed: {e}") from e
        if response.status_code >= 400:
            raise self._error_for(response, f"{method} {url} failed")
        return response

    @staticmethod
    def _error_for(response: httpx.Response, prefix: str) -> RemoteServiceError:
        message = response.text[:500]
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error = body["error"]
            message = error.get("message") or error.get("status") or message
        return RemoteServiceError(
            f"{prefix} ({response.status_code}): {message}", status_code=response.status_code
        )

    def _parse_status(self, data: dict[str, Any]) -> RemoteJobStatus:
        # Long-running operation envelope or a bare batch resource
        batch = _first(data, "metadata") or data
        state = _first(batch, "state") or _first(data, "state")
        stats = _first(batch, "batchStats", "batch_stats", "requestCounts", "request_counts")
        output = _first(batch, "output", "dest") or _first(data, "response", "dest") or {}
        return RemoteJobStatus(
            state=state,
            counts=RequestCounts.from_payload(stats),
            output=self._parse_output(output),
        )

    def _parse_output(self, output: dict[str, Any]) -> ResultHandle | None:
        file_name = _first(output, "responsesFile", "responses_file", "fileName", "file_name")
        if file_name:
            return ResultFile(name=file_name)

        inlined = _first(output, "inlinedResponses", "inlined_responses")
        if isinstance(inlined, dict):
            inlined = _first(inlined, "inlinedResponses", "inlined_responses")
        if not isinstance(inlined, list):
            return None

        records = []
        for entry in inlined:
            if isinstance(entry, dict) and not entry.get("key"):
                key = (entry.get("metadata") or {}).get("key")
                if key:
                    entry = {**entry, "key": key}
            records.append(entry)
        return InlineResults(records=records)
