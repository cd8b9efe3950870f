from __future__ import annotations

from typing import Any

import httpx

from yt_transcripts.errors import TranscriptionError
from yt_transcripts.types import TranscriptionJob

_KNOWN_STATUSES = ("queued", "processing", "completed", "error")


class AssemblyAIClient:
    def __init__(
        self,
        api_key: str,
        timeout_seconds: float = 600.0,
        base_url: str = "https://api.assemblyai.com/v2",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.base_url = base_url
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers={"authorization": self.api_key},
                timeout=self.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> AssemblyAIClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def upload(self, data: bytes) -> str:
        payload = self._request("POST", "/upload", "upload", content=data)
        uploaded = payload.get("upload_url")
        if not isinstance(uploaded, str) or not uploaded:
            raise TranscriptionError("AssemblyAI upload response missing upload_url")
        return uploaded

    def submit(self, audio_url: str, *, language_detection: bool = True) -> str:
        request_payload = {
            "audio_url": audio_url,
            "language_detection": language_detection,
            "punctuate": True,
            "format_text": True,
        }
        payload = self._request("POST", "/transcript", "transcript create", json=request_payload)
        transcript_id = payload.get("id")
        if not transcript_id:
            raise TranscriptionError("AssemblyAI transcript response missing id")
        return str(transcript_id)

    def poll(self, job_id: str) -> TranscriptionJob:
        payload = self._request("GET", f"/transcript/{job_id}", "transcript poll")
        status = str(payload.get("status") or "").lower()
        if status not in _KNOWN_STATUSES:
            raise TranscriptionError(f"AssemblyAI returned unknown status {status!r}")

        text = payload.get("text")
        error = payload.get("error")
        return TranscriptionJob(
            id=str(payload.get("id") or job_id),
            status=status,  # type: ignore[arg-type]
            text=str(text) if text is not None else None,
            error_detail=str(error) if error is not None else None,
        )

    def _request(self, method: str, path: str, action: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise TranscriptionError(f"AssemblyAI {action} request failed: {exc}") from exc

        if response.status_code >= 400:
            raise TranscriptionError(
                f"AssemblyAI {action} failed ({response.status_code}): {response.text[:400]}"
            )
        try:
            payload = response.json()
        except ValueError:
            raise TranscriptionError(f"AssemblyAI {action} returned invalid JSON") from None
        if not isinstance(payload, dict):
            raise TranscriptionError(f"AssemblyAI {action} returned unexpected payload")
        return payload
