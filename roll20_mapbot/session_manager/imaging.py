"""Post-processing for exported map images: crop, downsample, encode."""

from __future__ import annotations

import io
import logging
import sys

from PIL import Image, ImageChops

from ..config import MAP_FORMAT, MAP_QUALITY

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def _visible_bbox(img: Image.Image):
    """Bounding box of pixels whose alpha-premultiplied RGB is not black."""
    if "A" not in img.getbands():
        rgb = img if img.mode == "RGB" else img.convert("RGB")
        return rgb.getbbox()

    red, green, blue, alpha = img.convert("RGBA").split()
    brightest = ImageChops.lighter(ImageChops.lighter(red, green), blue)
    # Any non-zero alpha keeps a non-zero channel non-zero once premultiplied.
    covered = alpha.point(lambda value: 255 if value else 0)
    return ImageChops.multiply(brightest, covered).getbbox()


def crop_visible(img: Image.Image) -> Image.Image:
    """Crop the image to the bounding box of its visible pixels.

    A pixel is visible when its alpha-premultiplied RGB value is not pure
    black, so fully transparent pixels are background whatever their color.
    The box is half-open, so the right and bottom bounds are one past the
    last visible column and row.

    The input object itself is returned when the image is entirely black or
    when the visible area already spans the full canvas.
    """
    width, height = img.size
    logger.info(f"Source image dimensions 0, 0, {width}, {height}")

    bbox = _visible_bbox(img)

    if bbox is None:
        logger.info("Entire image is blank, returning whole thing")
        return img

    if bbox == (0, 0, width, height):
        logger.info("Entire image is visible, not cropping")
        return img

    logger.info(f"Cropping to {bbox[0]}, {bbox[1]}, {bbox[2]}, {bbox[3]}")
    return img.crop(bbox)


def resize_to_fit(img: Image.Image, max_dimension: int) -> Image.Image:
    """Downscale so the larger side equals ``max_dimension``.

    Images that already fit are returned unchanged. The shorter side is
    derived from the aspect ratio.
    """
    width, height = img.size
    if max(width, height) <= max_dimension:
        logger.info("Image is smaller than requested resolution, not resizing")
        return img

    if width >= height:
        new_size = (max_dimension, max(1, round(height * max_dimension / width)))
    else:
        new_size = (max(1, round(width * max_dimension / height)), max_dimension)

    logger.info(f"Resizing image from {width}x{height} to {new_size[0]}x{new_size[1]}")
    return img.resize(new_size, Image.Resampling.LANCZOS)


def encode(img: Image.Image, fmt: str = MAP_FORMAT, quality: int = MAP_QUALITY) -> bytes:
    """Serialize the image. JPEG output is flattened to RGB first."""
    if fmt.upper() in ("JPEG", "JPG") and img.mode != "RGB":
        img = img.convert("RGB")

    buf = io.BytesIO()
    if fmt.upper() in ("JPEG", "JPG"):
        img.save(buf, format="JPEG", quality=quality)
    else:
        img.save(buf, format=fmt)
    return buf.getvalue()


def render_map(
    img: Image.Image,
    resolutions: tuple[int, ...],
    fmt: str = MAP_FORMAT,
    quality: int = MAP_QUALITY,
) -> list[bytes]:
    """Crop once, then resize and encode for each requested resolution."""
    visible = crop_visible(img)
    return [encode(resize_to_fit(visible, resolution), fmt, quality) for resolution in resolutions]
