"""Pillow transforms producing the clean image and the thumbnail."""

import io

from PIL import Image, ImageOps, UnidentifiedImageError

from image_pipeline.errors import ErrorKind, PipelineError

BACKGROUND = (255, 255, 255)


def _open(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise PipelineError(f"Cannot decode image: {e}", ErrorKind.UNSUPPORTED_FORMAT, cause=e) from e
    # apply camera orientation before EXIF is dropped by re-encoding
    return ImageOps.exif_transpose(image)


def _flatten(image: Image.Image) -> Image.Image:
    """Composite any transparency onto white and return an RGB image."""
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        canvas = Image.new("RGB", rgba.size, BACKGROUND)
        canvas.paste(rgba, mask=rgba.split()[-1])
        return canvas
    return image.convert("RGB")


def _encode_jpeg(image: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality, optimize=True, exif=b"")
    return buffer.getvalue()


def resize_clean_image(data: bytes, max_dimension: int = 1600, quality: int = 85) -> bytes:
    """Fit inside ``max_dimension`` on the long edge, keeping aspect ratio, never upscaling."""
    image = _flatten(_open(data))
    image.thumbnail((max_dimension, max_dimension), Image.LANCZOS)
    return _encode_jpeg(image, quality)


def generate_thumbnail(data: bytes, size: int = 200, quality: int = 90) -> bytes:
    """Letterbox the image, centred, on a ``size`` x ``size`` white square."""
    image = _flatten(_open(data))
    image.thumbnail((size, size), Image.LANCZOS)
    canvas = Image.new("RGB", (size, size), BACKGROUND)
    canvas.paste(image, ((size - image.width) // 2, (size - image.height) // 2))
    return _encode_jpeg(canvas, quality)
