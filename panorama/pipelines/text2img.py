"""Text-to-image service backed by the remote Gemini image model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from config.settings import AppConfig
from panorama.pipelines.gemini_client import GeminiImageClient, text_part
from panorama.services.errors import GenerationError, MissingCredential, PreconditionError


@dataclass(slots=True)
class PromptRequest:
    """Request data for text-to-image generation."""

    prompt: str
    api_key: Optional[str] = None


@dataclass(slots=True)
class ImageResult:
    """Encoded image produced by the text-to-image call."""

    data: bytes
    mime_type: str
    prompt: str
    text: Optional[str] = None


class Text2ImageService:
    """Facade around the remote text-to-image operation."""

    def __init__(self, config: AppConfig, client: Optional[GeminiImageClient] = None) -> None:
        self.config = config
        self._client = client or GeminiImageClient(config.gemini_base_url, timeout=config.request_timeout)

    def generate(self, request: PromptRequest) -> ImageResult:
        """Generate a source image from a description."""
        prompt = request.prompt.strip()
        if not prompt:
            raise PreconditionError("description", user_message="Please describe the image to generate.")
        if not request.api_key:
            raise MissingCredential("API key is required to generate an image.")

        response = self._client.generate_content(
            self.config.text2img_model,
            [text_part(prompt)],
            request.api_key,
        )
        if not response.images:
            raise GenerationError(
                "Model returned no image for the description.",
                user_message="Could not generate the image. The model returned no image.",
            )

        image = response.images[0]
        return ImageResult(data=image.data, mime_type=image.mime_type, prompt=prompt, text=response.text)
