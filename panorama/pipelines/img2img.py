"""Image-to-image services: outpainting a template and enhancing a result."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from config.settings import AppConfig
from panorama.pipelines.gemini_client import GeminiImageClient, GeminiResponse, inline_part, text_part
from panorama.services.errors import GenerationError
from panorama.utils.image_utils import TEMPLATE_MIME_TYPE, encode_data_uri

OUTPAINT_SYSTEM_PROMPT = (
    "Your task is to fill the transparent areas of this canvas to create a complete, "
    "seamless and coherent scene. The central image is the starting point. Extend the "
    "scene naturally, preserving the style, lighting, perspective and details of the "
    "original image. The final result must be a complete image with a 16:9 aspect ratio. "
    "Also take the user's wishes into account:"
)

ENHANCE_INSTRUCTION = (
    "Improve the quality of this image: increase its sharpness, resolution and realism. "
    "Do not add any new objects or content and keep the composition exactly as it is."
)


def compose_outpaint_prompt(user_prompt: str) -> str:
    """Combine the fixed outpainting instruction with the user's free text."""
    return f"{OUTPAINT_SYSTEM_PROMPT} {user_prompt.strip()}"


@dataclass(slots=True)
class OutpaintRequest:
    """Request data for extending a template to a 16:9 panorama."""

    template: bytes
    prompt: str
    api_key: Optional[str] = None
    mime_type: str = TEMPLATE_MIME_TYPE


@dataclass(slots=True)
class EnhanceRequest:
    """Request data for a quality pass over an existing result."""

    image: bytes
    mime_type: str
    api_key: Optional[str] = None


@dataclass(slots=True)
class GenerationResult:
    """Result payload for outpaint and enhance calls."""

    image_url: str
    text: Optional[str] = None


class ImageEditService:
    """Facade around the remote outpaint and enhance operations."""

    def __init__(self, config: AppConfig, client: Optional[GeminiImageClient] = None) -> None:
        self.config = config
        self._client = client or GeminiImageClient(config.gemini_base_url, timeout=config.request_timeout)

    def outpaint(self, request: OutpaintRequest) -> GenerationResult:
        """Extend the template into a full panorama."""
        response = self._client.generate_content(
            self.config.image_model,
            [
                inline_part(request.template, request.mime_type),
                text_part(compose_outpaint_prompt(request.prompt)),
            ],
            request.api_key,
        )
        return self._to_result(
            response,
            "Could not generate the panorama. The model returned no image.",
        )

    def enhance(self, request: EnhanceRequest) -> GenerationResult:
        """Sharpen and upscale the image without changing its content."""
        response = self._client.generate_content(
            self.config.image_model,
            [
                inline_part(request.image, request.mime_type),
                text_part(ENHANCE_INSTRUCTION),
            ],
            request.api_key,
        )
        return self._to_result(
            response,
            "Could not enhance the image. The model returned no image.",
        )

    def _to_result(self, response: GeminiResponse, failure_message: str) -> GenerationResult:
        if not response.images:
            raise GenerationError("Model reply contained no image part.", user_message=failure_message)
        # The last image part wins when the model returns several.
        image = response.images[-1]
        return GenerationResult(image_url=encode_data_uri(image.data, image.mime_type), text=response.text)
