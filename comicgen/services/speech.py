import logging

import httpx

logger = logging.getLogger(__name__)


class SpeechError(Exception):
    """Raised when the text-to-speech API rejects or fails a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SpeechClient:
    """Client for a Sarvam-compatible text-to-speech HTTP API."""

    def __init__(
        self,
        api_url: str,
        api_key: str | None,
        model: str = "bulbul:v2",
        timeout_seconds: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._api_url = api_url
        self._api_key = api_key
        self._model = model
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    def build_payload(self, text: str, language: str, speaker: str) -> dict:
        return {
            "inputs": [text],
            "target_language_code": language,
            "speaker": speaker,
            "model": self._model,
            "pitch": 0,
            "pace": 1.0,
            "loudness": 1.0,
            "enable_preprocessing": True,
        }

    def synthesize(self, text: str, language: str, speaker: str) -> str | None:
        """Return the first synthesized clip as base64, or None if the API returned none."""
        headers = {
            "Content-Type": "application/json",
            "api-subscription-key": self._api_key or "",
        }
        with httpx.Client(timeout=self._timeout_seconds, transport=self._transport) as client:
            try:
                resp = client.post(
                    self._api_url,
                    json=self.build_payload(text, language, speaker),
                    headers=headers,
                )
            except httpx.HTTPError as exc:
                raise SpeechError(f"TTS request failed: {exc}") from exc

        if resp.status_code < 200 or resp.status_code >= 300:
            raise SpeechError(f"TTS API error: {resp.status_code} - {resp.text}", status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as exc:
            raise SpeechError(f"TTS API returned invalid JSON: {exc}") from exc

        audios = data.get("audios") if isinstance(data, dict) else None
        if not audios:
            logger.warning("tts_no_audio language=%s speaker=%s", language, speaker)
            return None
        return audios[0]
