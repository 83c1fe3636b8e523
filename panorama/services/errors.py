"""Error taxonomy shared by the compositor, remote services and controller."""

from __future__ import annotations

from typing import Optional


class PanoramaError(Exception):
    """Base class for failures that are reported to the user."""

    user_message = "An unknown error occurred."

    def __init__(self, message: str = "", *, user_message: Optional[str] = None) -> None:
        super().__init__(message or self.user_message)
        if user_message:
            self.user_message = user_message


class TemplateError(PanoramaError):
    """Raised by the image template compositor."""

    user_message = "Could not process the image."


class DecodeError(TemplateError):
    """The source image could not be decoded."""


class EncodeError(TemplateError):
    """The composited canvas did not export to a well-formed payload."""


class RenderContextUnavailable(TemplateError):
    """The drawing surface could not be allocated."""

    user_message = "Could not get a drawing canvas for the image."


class ImageProcessingError(PanoramaError):
    """An uploaded or generated source image could not be turned into a template."""

    user_message = "Could not process the image."


class ConfigError(PanoramaError):
    """Missing or rejected credential."""

    user_message = "A configuration error occurred. Check your API key."


class MissingCredential(ConfigError):
    """No credential was supplied for a remote call."""

    user_message = "Please provide your API key."


class GenerationError(PanoramaError):
    """The remote call failed or returned no usable image."""

    user_message = "Could not generate the image. Please try again later."

    def __init__(
        self,
        message: str = "",
        *,
        status_code: Optional[int] = None,
        user_message: Optional[str] = None,
    ) -> None:
        super().__init__(message, user_message=user_message)
        self.status_code = status_code


class PreconditionError(PanoramaError):
    """A required input is missing before an operation is attempted."""

    user_message = "Please upload an image, enter a prompt and provide your API key."

    def __init__(self, field: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(f"Missing required input: {field}", user_message=user_message)
        self.field = field


class StorageError(PanoramaError):
    """The history could not be written to the local store."""

    user_message = "The result is shown but the history could not be saved."
