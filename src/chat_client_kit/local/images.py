"""Image decoding and sizing for local vision models."""

import base64
import binascii
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from chat_client_kit.core.errors import InvalidImageError
from chat_client_kit.utils import get_logger

logger = get_logger(__name__)

MIN_EDGE = 64
MAX_EDGE = 512


def decode_data_url(url: str) -> Image.Image:
    """Decode a base64 data URL into an RGB image.

    Args:
        url: ``data:image/...;base64,...`` URL

    Returns:
        Decoded image

    Raises:
        InvalidImageError: If the URL carries no decodable image
    """
    _, separator, payload = url.partition(";base64,")
    if not separator or not payload:
        raise InvalidImageError("Image URL is not a base64 data URL")
    try:
        data = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError(f"Invalid base64 image data: {e}") from e

    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            return img.convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidImageError(f"Unreadable image: {e}") from e


def fit_image(image: Image.Image, min_edge: int = MIN_EDGE, max_edge: int = MAX_EDGE) -> Image.Image:
    """Scale an image, keeping its aspect ratio, into the edge bounds.

    Images whose shorter edge is below ``min_edge`` are enlarged first;
    images whose longer edge exceeds ``max_edge`` are then shrunk, so the
    upper bound wins for extreme aspect ratios.
    """
    width, height = image.size
    shortest = min(width, height)
    if 0 < shortest < min_edge:
        scale = min_edge / shortest
        image = image.resize(
            (max(1, round(width * scale)), max(1, round(height * scale))),
            Image.LANCZOS,
        )
        width, height = image.size

    longest = max(width, height)
    if longest > max_edge:
        scale = max_edge / longest
        image = image.resize(
            (max(1, int(width * scale)), max(1, int(height * scale))),
            Image.LANCZOS,
        )
    return image


def load_image(url: str, min_edge: int = MIN_EDGE, max_edge: int = MAX_EDGE) -> Image.Image:
    """Decode and size an image content part."""
    image = decode_data_url(url)
    original = image.size
    image = fit_image(image, min_edge, max_edge)
    if image.size != original:
        logger.debug("local.image.resized", original=original, resized=image.size)
    return image


def placeholder_image() -> Image.Image:
    """Blank white image for vision models that require one."""
    return Image.new("RGB", (1, 1), (255, 255, 255))
