# =============================================================================
# Closet Tagger VLM - Image Helpers
# =============================================================================
# Small PIL utilities shared by the HTTP layer and the engines: decoding
# uploaded bytes into an upright RGB image, shrinking it to the configured
# resize target, and encoding it as a base64 data URL for llama.cpp's
# multimodal chat handlers.
# =============================================================================

import base64
import io
import logging
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)


def decode_image(data: bytes) -> Image.Image:
    """
    Decode raw image bytes into an EXIF-oriented RGB PIL image.

    Args:
        data: Encoded image bytes (JPEG, PNG, HEIF if a plugin is installed...).

    Returns:
        PIL.Image.Image in RGB mode.

    Raises:
        ValueError: If the bytes are empty or not a decodable image.
    """
    if not data:
        raise ValueError("Empty image payload")
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError(f"Could not decode image: {exc}") from exc

    # Phone photos carry their rotation in EXIF
    return ImageOps.exif_transpose(image).convert("RGB")


def resize_image(
    image: Image.Image, target: Optional[Tuple[int, int]]
) -> Image.Image:
    """
    Shrink an image to fit inside target (width, height), keeping aspect ratio.

    Images already inside the box are returned unchanged; nothing is upscaled.
    """
    if target is None:
        return image
    width, height = target
    if image.width <= width and image.height <= height:
        return image

    resized = image.copy()
    resized.thumbnail((width, height), Image.BICUBIC)
    logger.debug(
        "Resized image %dx%d -> %dx%d",
        image.width, image.height, resized.width, resized.height,
    )
    return resized


def image_to_data_url(image: Image.Image) -> str:
    """Encode a PIL image as a PNG base64 data URL."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
