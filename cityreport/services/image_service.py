#!/usr/bin/env python3
"""
Photo compression pipeline for report attachments.

Turns a user-submitted photo into a bounded JPEG buffer ready for the media store:

- Header-only probe to pick a power-of-two downsample factor (bounds peak memory)
- Decode at that factor (JPEG DCT scaling, Image.reduce for other formats)
- EXIF orientation correction (90/180/270 only)
- Aspect-preserving LANCZOS downscale to the requested box, never upscaling
- JPEG encode at the requested quality

A JPEG, PNG or WebP source that needed no rotation or resize is returned as-is
(with its own content type) when the re-encoded JPEG would be larger, so
compression never grows a photo that is already in bounds.

Every intermediate image is closed before the call returns, on success and on
every failure path. Failures raise DecodeError / EncodeError, never a partial buffer.
"""

import io
import logging
import os
import tempfile
import uuid
from contextlib import ExitStack
from pathlib import Path
from typing import NamedTuple, Optional, Tuple, Union

import pillow_heif
from PIL import Image, UnidentifiedImageError

from cityreport.core.errors import DecodeError, EncodeError, ImagePipelineError
from cityreport.models.report_model import CompressedImage

pillow_heif.register_heif_opener()  # HEIC photos from iOS devices

logger = logging.getLogger(__name__)

EXIF_ORIENTATION_TAG = 0x0112

# EXIF orientation -> Pillow transpose giving the clockwise rotation it asks for
_ROTATIONS = {
    3: Image.Transpose.ROTATE_180,
    6: Image.Transpose.ROTATE_270,
    8: Image.Transpose.ROTATE_90,
}

_DECODE_ERRORS = (UnidentifiedImageError, OSError, SyntaxError, ValueError, Image.DecompressionBombError)

# Source formats that may be stored as-is when they are already in bounds.
# HEIC and the rest are always converted to JPEG.
_PASS_THROUGH_FORMATS = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
}

_SUFFIXES = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp"}


class _Decoded(NamedTuple):
    image: Image.Image
    orientation: int
    source_format: Optional[str]
    source_size: Tuple[int, int]


def calculate_downsample_factor(width: int, height: int, max_width: int, max_height: int) -> int:
    """Largest power of two that keeps both decoded dimensions at or above the bounds."""
    factor = 1
    if height > max_height or width > max_width:
        half_height = (height + 1) // 2
        half_width = (width + 1) // 2
        while half_height // factor >= max_height and half_width // factor >= max_width:
            factor *= 2
    return factor


def scaled_dimensions(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Fit ``width x height`` inside the box, keeping aspect ratio. Never upscales."""
    if width <= max_width and height <= max_height:
        return width, height
    # ratio = min(max_width / width, max_height / height), kept in integers
    if max_width * height <= max_height * width:
        return max_width, max(1, height * max_width // width)
    return max(1, width * max_height // height), max_height


def read_orientation(image: Image.Image) -> int:
    """EXIF orientation value, 1 (normal) when absent or unreadable."""
    try:
        orientation = image.getexif().get(EXIF_ORIENTATION_TAG, 1)
        return int(orientation)
    except Exception as e:
        logger.warning(f"⚠️ EXIF orientation skipped: {e}")
        return 1


class ImagePipeline:
    """Compress photos to bounded JPEG buffers.

    Holds only configuration, so one instance can serve concurrent callers;
    each call owns its own pixel buffers.
    """

    def __init__(
        self,
        max_width: int = 1024,
        max_height: int = 1024,
        quality: int = 80,
        profile_size: int = 512,
        profile_quality: int = 85,
    ):
        self.max_width = max_width
        self.max_height = max_height
        self.quality = quality
        self.profile_size = profile_size
        self.profile_quality = profile_quality

    def compress(
        self,
        source: bytes,
        max_width: Optional[int] = None,
        max_height: Optional[int] = None,
        quality: Optional[int] = None,
    ) -> CompressedImage:
        max_width = self.max_width if max_width is None else max_width
        max_height = self.max_height if max_height is None else max_height
        quality = self.quality if quality is None else quality
        if max_width < 1 or max_height < 1:
            raise ValueError("max_width and max_height must be positive")
        if not 0 <= quality <= 100:
            raise ValueError("quality must be between 0 and 100")
        if not source:
            raise DecodeError("empty image source")

        with ExitStack() as stack:
            decoded = self._decode(stack, source, max_width, max_height)
            current = decoded.image

            try:
                rotation = _ROTATIONS.get(decoded.orientation)
                if rotation is not None:
                    current = self._own(stack, current.transpose(rotation))

                target = scaled_dimensions(current.width, current.height, max_width, max_height)
                if target != current.size:
                    current = self._own(stack, current.resize(target, Image.Resampling.LANCZOS))
                untouched = rotation is None and current.size == decoded.source_size

                if current.mode not in ("RGB", "L"):
                    current = self._own(stack, current.convert("RGB"))
            except (OSError, ValueError) as e:
                raise ImagePipelineError(f"Image transform failed: {e}") from e

            buffer = io.BytesIO()
            try:
                current.save(buffer, format="JPEG", quality=quality)
            except (OSError, ValueError, KeyError) as e:
                raise EncodeError(f"JPEG encode failed: {e}") from e

            result = CompressedImage(data=buffer.getvalue(), width=current.width, height=current.height)

        if (
            untouched
            and quality < 100
            and result.byte_length > len(source)
            and decoded.source_format in _PASS_THROUGH_FORMATS
        ):
            # Re-encoding an in-bounds photo would only grow it; keep the original bytes
            logger.debug(f"Kept original {decoded.source_format}: re-encode gave {result.byte_length} bytes")
            return CompressedImage(
                data=source,
                width=result.width,
                height=result.height,
                content_type=_PASS_THROUGH_FORMATS[decoded.source_format],
            )

        logger.info(
            f"📉 Compressed image: {len(source)} -> {result.byte_length} bytes, "
            f"{result.width}x{result.height} @ q{quality}"
        )
        return result

    def compress_profile_photo(self, source: bytes) -> CompressedImage:
        return self.compress(source, self.profile_size, self.profile_size, self.profile_quality)

    def compress_to_file(
        self,
        source: bytes,
        directory: Union[str, Path],
        max_width: Optional[int] = None,
        max_height: Optional[int] = None,
        quality: Optional[int] = None,
    ) -> Path:
        """Compress and write the result into ``directory``; returns the new file path.

        The bytes go to a temporary file first, which is removed if anything fails.
        """
        image = self.compress(source, max_width, max_height, quality)
        directory = Path(directory)
        target = directory / f"compressed_{uuid.uuid4().hex}{_SUFFIXES[image.content_type]}"

        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".compressed_", suffix=".part", dir=directory)
        except OSError as e:
            raise EncodeError(f"Could not prepare {directory} for compressed image: {e}") from e

        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(image.data)
            os.replace(tmp_name, target)
        except OSError as e:
            raise EncodeError(f"Could not write compressed image: {e}") from e
        finally:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)

        logger.debug(f"Saved compressed image to {target}")
        return target

    # ---------------------------
    # Internal helpers
    # ---------------------------
    def _decode(self, stack: ExitStack, source: bytes, max_width: int, max_height: int) -> _Decoded:
        try:
            image = stack.enter_context(Image.open(io.BytesIO(source)))
            source_format = image.format
            width, height = image.size  # header only, no pixels yet
            factor = calculate_downsample_factor(width, height, max_width, max_height)
            if factor > 1:
                # JPEG decodes directly at 1/2, 1/4, 1/8 scale; no-op for other formats
                image.draft(image.mode, (-(-width // factor), -(-height // factor)))
            image.load()
            orientation = read_orientation(image)
            if factor > 1 and image.size == (width, height):
                image = self._own(stack, image.reduce(factor))
            logger.debug(f"Decoded {width}x{height} at 1/{factor} -> {image.width}x{image.height}")
            return _Decoded(image, orientation, source_format, (width, height))
        except _DECODE_ERRORS as e:
            raise DecodeError(f"Unreadable image: {e}") from e

    @staticmethod
    def _own(stack: ExitStack, image: Image.Image) -> Image.Image:
        stack.callback(image.close)
        return image
