"""Stability AI image generation provider."""

import base64
import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from divination.ai.errors import ProviderNotConfigured, ProviderResponseError

logger = logging.getLogger(__name__)

# Optional form fields forwarded to the API when present in options
VALID_PARAMS = (
    "negative_prompt",
    "seed",
    "steps",
    "cfg_scale",
    "samples",
    "dimensions",
    "weight",
    "image_strength",
    "safety_filter",
    "aspect_ratio",
)


def stability_params_info() -> dict[str, str]:
    """Describe the options accepted by ``StabilityProvider.generate_image``."""
    return {
        "prompt": "Main image description (English works best)",
        "style_preset": "Style preset, e.g. 'fantasy-art', 'photographic', 'digital-art', 'comic-book'",
        "negative_prompt": "Elements that should not appear in the image",
        "seed": "Randomness control; the same seed gives similar results (number)",
        "cfg_scale": "Prompt adherence, usually 0-30, default 7 (number)",
        "steps": "Diffusion steps, affects quality and detail, usually 20-50 (number)",
        "samples": "Number of images per request (number)",
        "dimensions": "Image size, e.g. '1024x1024' (string)",
        "weight": "Prompt weight (number)",
        "image_strength": "How much of the source image to keep in image-to-image, 0-1 (number)",
        "safety_filter": "Enable the safety filter (boolean)",
        "aspect_ratio": "Aspect ratio, e.g. '1:1', '16:9' (string)",
        "output_format": "Output format: 'webp', 'png' or 'jpeg' (string)",
    }


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class StabilityProvider:
    """Stability AI stable-image provider."""

    name = "stability"
    base_url = "https://api.stability.ai/v2beta/stable-image/generate"

    def __init__(
        self,
        api_key: str,
        model: str = "stable-image-core",
        default_style_preset: str = "fantasy-art",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize Stability provider.

        Args:
            api_key: Stability AI API key (empty means not configured)
            model: Model name; "stable-image-core" maps to the /core endpoint
            default_style_preset: Preset used when a call passes none
            timeout: HTTP timeout in seconds
            client: Optional pre-built httpx client
        """
        self.api_key = api_key
        self.model = model
        self.default_style_preset = default_style_preset
        self.timeout = timeout
        self._client = client

    @property
    def endpoint(self) -> str:
        """Generation endpoint for the configured model."""
        return f"{self.base_url}/{self.model.removeprefix('stable-image-')}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create persistent httpx client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _post(self, form: dict[str, str]) -> httpx.Response:
        client = await self._get_client()
        # Multipart body: every field is sent as a form part
        files = {key: (None, value) for key, value in form.items()}
        return await client.post(
            self.endpoint,
            files=files,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "image/*",
            },
        )

    async def generate_image(
        self,
        prompt: str,
        style_preset: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> str:
        """Generate an image.

        Args:
            prompt: Image prompt (English)
            style_preset: Style preset, falls back to the provider default
            options: Extra parameters; only ``VALID_PARAMS`` and ``output_format`` are sent

        Returns:
            ``data:<mime>;base64,<payload>`` URL

        Raises:
            ProviderNotConfigured: If no API key is set
            ProviderResponseError: On non-2xx responses
        """
        options = options or {}
        style_preset = style_preset or self.default_style_preset
        logger.info(f"[Stability request] style={style_preset}")
        if not self.api_key:
            raise ProviderNotConfigured("Stability AI API key is not configured", "image")

        form = {
            "prompt": prompt,
            "output_format": str(options.get("output_format") or "webp"),
        }
        if style_preset:
            form["style_preset"] = style_preset
        for param in VALID_PARAMS:
            if options.get(param) is not None:
                form[param] = _form_value(options[param])

        response = await self._post(form)
        if response.is_error:
            message = f"Image generation request failed: {response.status_code}"
            body = response.text[:200]
            if body:
                message += f" - {body}"
            logger.error(f"[Stability error] {message}")
            raise ProviderResponseError(message, "image", status_code=response.status_code, detail=body)

        mime_type = response.headers.get("content-type") or "image/webp"
        encoded = base64.b64encode(response.content).decode()
        logger.info(f"[Stability success] mime={mime_type} base64_length={len(encoded)}")
        return f"data:{mime_type};base64,{encoded}"
