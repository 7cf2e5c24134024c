"""
Image Generation Client

Talks to the Gemini image model through the Trendify proxy. Each public
coroutine performs one logical operation and either returns an ImageArtifact
or raises an ImageGenerationError subclass whose message carries the marker
text the error classifier keys on (SAFETY, MODEL_ERROR:, NO_API_KEY,
NETWORK_ERROR, HTTP status).

The proxy contract is `{endpoint, payload, userApiKey}` in, the raw vendor
payload out on 2xx, `{"error": "<message>"}` with a non-2xx status otherwise.
Requests are made with `requests` on a worker thread so the event loop keeps
running other workers while a call is in flight.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests

from ..core.client_config import ClientConfig, get_client_config
from ..core.credential_store import normalize_credential
from ..core.constants import (
    GENERATE_CONTENT_ENDPOINT,
    GENERATE_IMAGES_ENDPOINT,
    VALIDATE_ENDPOINT,
    RESPONSE_MODALITIES,
    ENHANCEMENT_TIERS,
    ENHANCEMENT_PASSES,
    ENHANCEMENT_PROMPT_TEMPLATE,
    PROMPT_VARIATION_SYSTEM_INSTRUCTION,
    INTER_CALL_DELAY_SECONDS,
    EMPTY_MODEL_RESPONSE_TEXT,
)
from ..models import ImageArtifact

logger = logging.getLogger(__name__)


class ImageGenerationError(Exception):
    """Base class for failures of a single generation call."""


class NoCredentialError(ImageGenerationError):
    def __init__(self):
        super().__init__("NO_API_KEY: No API key is configured and none was supplied.")


class SafetyBlockedError(ImageGenerationError):
    def __init__(self):
        super().__init__("SAFETY")


class ModelRefusalError(ImageGenerationError):
    """The call succeeded but the model answered with text instead of an image."""

    def __init__(self, text: str):
        self.text = text
        super().__init__(f"MODEL_ERROR: {text}")


class UpstreamError(ImageGenerationError):
    """Non-2xx response from the proxy or the vendor behind it."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


class NetworkError(ImageGenerationError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"NETWORK_ERROR: Could not connect to the server ({detail}).")


def _extract_upstream_message(response: requests.Response) -> str:
    """Pull the error message out of a failed response, falling back to raw text."""
    body = response.text or ""
    try:
        data = json.loads(body)
    except ValueError:
        data = None

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, str) and error:
            return error
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])

    if body.strip():
        return body.strip()
    return f"Request failed with status {response.status_code}"


def _response_text(parts: List[Dict[str, Any]]) -> str:
    return "".join(part["text"] for part in parts if isinstance(part.get("text"), str)).strip()


def _normalize_gemini_response(response: Dict[str, Any]) -> ImageArtifact:
    """Return the first inline image of a generateContent payload or raise."""
    feedback = response.get("promptFeedback") or {}
    if feedback.get("blockReason") == "SAFETY":
        raise SafetyBlockedError()

    candidates = response.get("candidates") or []
    first_candidate = candidates[0] if candidates else {}
    if first_candidate.get("finishReason") == "SAFETY":
        raise SafetyBlockedError()

    parts = (first_candidate.get("content") or {}).get("parts") or []
    for part in parts:
        inline_data = part.get("inlineData") or part.get("inline_data")
        if inline_data and inline_data.get("data"):
            mime_type = inline_data.get("mimeType") or inline_data.get("mime_type")
            try:
                return ImageArtifact.from_base64(inline_data["data"], mime_type)
            except ValueError as e:
                raise ImageGenerationError(f"Malformed image payload in model response: {e}")

    raise ModelRefusalError(_response_text(parts) or EMPTY_MODEL_RESPONSE_TEXT)


class ImageGenerationClient:
    """Async client for image generation, enhancement and key validation."""

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        inter_call_delay: float = INTER_CALL_DELAY_SECONDS,
    ):
        self.config = config or get_client_config()
        self.session = session or requests.Session()
        self.sleep = sleep
        self.inter_call_delay = inter_call_delay

    @property
    def model_id(self) -> str:
        return self.config.model_config["IMAGE_GENERATION_MODEL_ID"]

    def resolve_credential(self, user_credential: Optional[str]) -> Tuple[str, bool]:
        """
        Pick the key for a call: the user's key when present, else the default.

        Returns:
            (key, is_user_key)

        Raises:
            NoCredentialError: neither key is available.
        """
        user_key = normalize_credential(user_credential)
        if user_key:
            return user_key, True
        if self.config.default_api_key:
            return self.config.default_api_key, False
        raise NoCredentialError()

    def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.session.post(
                self.config.proxy_url,
                json=body,
                timeout=self.config.request_timeout,
            )
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            logger.error(f"❌ Connection to image proxy failed: {e}")
            raise NetworkError(str(e))
        except requests.exceptions.RequestException as e:
            logger.error(f"❌ Request to image proxy failed: {type(e).__name__}: {e}")
            raise NetworkError(f"{type(e).__name__}: {e}")

        if not response.ok:
            detail = _extract_upstream_message(response)
            logger.error(f"❌ Image API returned {response.status_code}: {detail}")
            raise UpstreamError(response.status_code, detail)

        try:
            return response.json()
        except ValueError:
            raise UpstreamError(response.status_code, f"Response was not valid JSON: {response.text[:200]}")

    async def _call(self, endpoint: str, payload: Dict[str, Any], credential: Optional[str]) -> Dict[str, Any]:
        api_key, is_user_key = self.resolve_credential(credential)
        logger.debug(f"Calling {endpoint} ({payload.get('model')}) with {'user' if is_user_key else 'default'} key")
        body = {"endpoint": endpoint, "payload": payload, "userApiKey": api_key}
        return await asyncio.to_thread(self._post, body)

    def _image_payload(self, images: Sequence[ImageArtifact], prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model_id,
            "contents": {
                "parts": [image.to_inline_part() for image in images] + [{"text": prompt}],
            },
            "generationConfig": {"responseModalities": list(RESPONSE_MODALITIES)},
        }

    async def generate(
        self,
        images: Sequence[ImageArtifact],
        prompt: str,
        credential: Optional[str] = None,
    ) -> ImageArtifact:
        """Apply `prompt` to `images` and return the generated image."""
        if not images:
            raise ValueError("At least one image is required.")
        if not prompt or not prompt.strip():
            raise ValueError("A prompt is required.")

        logger.info(f"--- Calling Gemini Image API ({self.model_id}) with {len(images)} image(s) ---")
        response = await self._call(GENERATE_CONTENT_ENDPOINT, self._image_payload(images, prompt), credential)
        return _normalize_gemini_response(response)

    async def enhance_once(
        self,
        image: ImageArtifact,
        quality: str,
        credential: Optional[str] = None,
    ) -> ImageArtifact:
        """Run a single enhancement pass at `quality`."""
        if quality not in ENHANCEMENT_TIERS:
            raise ValueError(f"Unsupported quality tier: {quality}")
        prompt = ENHANCEMENT_PROMPT_TEMPLATE.format(quality=quality)
        response = await self._call(GENERATE_CONTENT_ENDPOINT, self._image_payload([image], prompt), credential)
        return _normalize_gemini_response(response)

    async def enhance(
        self,
        image: ImageArtifact,
        quality: str,
        credential: Optional[str] = None,
        before_dispatch: Optional[Callable[[], None]] = None,
    ) -> ImageArtifact:
        """
        Enhance an image to the requested tier.

        Multi-pass tiers (4K) feed each pass the previous pass's output, and
        every pass of a multi-pass tier waits the inter-call delay first.
        """
        if quality not in ENHANCEMENT_TIERS:
            raise ValueError(f"Unsupported quality tier: {quality}")

        passes = ENHANCEMENT_PASSES[quality]
        result = image
        for pass_number in range(1, passes + 1):
            if passes > 1:
                await self.sleep(self.inter_call_delay)
            if before_dispatch:
                before_dispatch()
            logger.info(f"Enhancing image to {quality} (pass {pass_number}/{passes})")
            result = await self.enhance_once(result, quality, credential)
        return result

    async def generate_from_text(self, prompt: str, credential: Optional[str] = None) -> ImageArtifact:
        """Text-only generation through the Imagen endpoint."""
        if not prompt or not prompt.strip():
            raise ValueError("A prompt is required.")
        payload = {
            "model": self.config.model_config["TEXT_TO_IMAGE_MODEL_ID"],
            "prompt": prompt,
            "numberOfImages": 1,
            "outputMimeType": "image/png",
        }
        response = await self._call(GENERATE_IMAGES_ENDPOINT, payload, credential)
        generated = response.get("generatedImages") or []
        image_bytes = ((generated[0] if generated else {}).get("image") or {}).get("imageBytes")
        if not image_bytes:
            raise ModelRefusalError("No image was returned by the model.")
        return ImageArtifact.from_base64(image_bytes, "image/png")

    async def generate_prompt_variations(
        self,
        base_prompt: str,
        count: int,
        credential: Optional[str] = None,
    ) -> List[str]:
        """Ask the text model for `count` rewrites of `base_prompt`."""
        payload = {
            "model": self.config.model_config["PROMPT_VARIATION_MODEL_ID"],
            "contents": {"parts": [{"text": f'Base Prompt: "{base_prompt}"\nNumber of variations: {count}'}]},
            "systemInstruction": {"parts": [{"text": PROMPT_VARIATION_SYSTEM_INSTRUCTION}]},
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": {
                    "type": "ARRAY",
                    "items": {
                        "type": "STRING",
                        "description": "A unique variation of the original image generation prompt.",
                    },
                },
            },
        }
        response = await self._call(GENERATE_CONTENT_ENDPOINT, payload, credential)

        candidates = response.get("candidates") or []
        parts = ((candidates[0] if candidates else {}).get("content") or {}).get("parts") or []
        try:
            variations = json.loads(_response_text(parts))
        except ValueError:
            logger.error("Error parsing prompt variations from model response")
            raise ModelRefusalError("The model response was not valid JSON.")

        if not isinstance(variations, list) or not all(isinstance(item, str) for item in variations):
            raise ModelRefusalError("The model did not return a list of prompt strings.")
        return variations

    async def validate_credential(self, credential: Optional[str]) -> Tuple[bool, Optional[str]]:
        """
        Check a key with the side-effect-free validation request.

        The default key is never substituted here: only the supplied key is tested.
        """
        key = normalize_credential(credential)
        if not key:
            return False, "API key must not be empty."

        body = {"endpoint": VALIDATE_ENDPOINT, "payload": {}, "userApiKey": key}
        try:
            await asyncio.to_thread(self._post, body)
        except ImageGenerationError as e:
            return False, f"Invalid key. Response from Google: {e}"
        return True, None
