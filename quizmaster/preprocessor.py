"""
QuizMaster - Image Preprocessing Module
Normalizes a photographed quiz paper before it is sent for extraction.

Pipeline: decode → bound to 1600 px → contrast/brightness/saturation boost →
JPEG (quality 90).

The enhancement reproduces the canvas filter chain
``contrast(1.25) brightness(1.1) saturate(1.1)`` so faint pencil and pen
marks survive re-encoding. It is a fixed transform, not adaptive.
"""

import base64
import binascii
import io
import logging
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np
from PIL import Image

from quizmaster.exceptions import EncodeError, ImageDecodeError

logger = logging.getLogger(__name__)

JPEG_MIME = "image/jpeg"

# Rec. 709 luma weights used by the CSS saturate() matrix, in BGR order
_LUMA_BGR = np.array([0.0722, 0.7152, 0.2126], dtype=np.float32)


@dataclass
class PreparedImage:
    encoded_bytes: bytes
    mime_type: str
    preview: str  # data URL shown on the review screen and stored with the record
    width: int = 0
    height: int = 0

    @property
    def base64(self) -> str:
        return base64.b64encode(self.encoded_bytes).decode("ascii")

    @classmethod
    def from_data_url(cls, data_url: str) -> "PreparedImage":
        """Rebuild a prepared image from a preview data URL (e.g. a kept answer key)."""
        try:
            header, payload = data_url.split(",", 1)
            mime_type = header.split(":", 1)[1].split(";", 1)[0]
            raw = base64.b64decode(payload, validate=True)
        except (ValueError, IndexError, binascii.Error) as e:
            raise ImageDecodeError(f"Invalid image data URL: {e}")
        return cls(encoded_bytes=raw, mime_type=mime_type or JPEG_MIME, preview=data_url)


class ImagePreprocessor:
    """
    Prepares captured quiz photos for the extraction service.
    Output never exceeds max_dimension on either side.
    """

    def __init__(
        self,
        max_dimension: int = 1600,
        jpeg_quality: int = 90,
        contrast: float = 1.25,
        brightness: float = 1.1,
        saturation: float = 1.1,
    ):
        self.max_dimension = max_dimension
        self.jpeg_quality  = jpeg_quality
        self.contrast      = contrast
        self.brightness    = brightness
        self.saturation    = saturation

    # ─────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────

    def prepare(self, image_input) -> PreparedImage:
        """
        Accept a file path, bytes, io.BytesIO, PIL Image, or np.ndarray.
        Returns the enhanced JPEG plus a data-URL preview.
        """
        img = self._load_image(image_input)
        img = self._resize(img)
        img = self._enhance(img)
        encoded = self._encode(img)

        h, w = img.shape[:2]
        preview = f"data:{JPEG_MIME};base64," + base64.b64encode(encoded).decode("ascii")
        logger.debug("Prepared image %dx%d (%d bytes).", w, h, len(encoded))
        return PreparedImage(
            encoded_bytes=encoded,
            mime_type=JPEG_MIME,
            preview=preview,
            width=w,
            height=h,
        )

    def target_size(self, width: int, height: int) -> tuple:
        """(width, height) after bounding the longer side to max_dimension."""
        longest = max(width, height)
        if longest <= self.max_dimension:
            return width, height
        scale = self.max_dimension / float(longest)
        return (
            min(self.max_dimension, max(1, int(round(width * scale)))),
            min(self.max_dimension, max(1, int(round(height * scale)))),
        )

    # ─────────────────────────────────────────────────────────
    # Private helpers
    # ─────────────────────────────────────────────────────────

    def _load_image(self, image_input) -> np.ndarray:
        if isinstance(image_input, np.ndarray):
            img = image_input
        elif isinstance(image_input, Image.Image):
            img = cv2.cvtColor(np.array(image_input.convert("RGB")), cv2.COLOR_RGB2BGR)
        elif isinstance(image_input, io.BytesIO):
            img = self._decode(image_input.getvalue())
        elif isinstance(image_input, (bytes, bytearray)):
            img = self._decode(bytes(image_input))
        elif isinstance(image_input, (str, Path)):
            path = Path(image_input)
            if not path.is_file():
                raise ImageDecodeError(f"Cannot load image: {image_input}")
            img = self._decode(path.read_bytes())
        else:
            raise ImageDecodeError(f"Unsupported image type: {type(image_input)}")

        if img is None or img.size == 0:
            raise ImageDecodeError("Image has no pixels")
        if img.ndim == 2:
            img = cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
        elif img.shape[2] == 4:
            img = cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)
        if img.dtype != np.uint8:
            img = np.clip(img, 0, 255).astype(np.uint8)
        return img

    def _decode(self, data: bytes) -> np.ndarray:
        if not data:
            raise ImageDecodeError("Empty image data")
        arr = np.frombuffer(data, np.uint8)
        img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
        if img is None:
            raise ImageDecodeError("Failed to decode image")
        return img

    def _resize(self, img: np.ndarray) -> np.ndarray:
        h, w = img.shape[:2]
        new_w, new_h = self.target_size(w, h)
        if (new_w, new_h) == (w, h):
            return img
        logger.debug("Resizing %dx%d -> %dx%d", w, h, new_w, new_h)
        return cv2.resize(img, (new_w, new_h), interpolation=cv2.INTER_AREA)

    def _enhance(self, img: np.ndarray) -> np.ndarray:
        """contrast → brightness → saturate, applied in that order like a canvas filter."""
        out = img.astype(np.float32) / 255.0

        out = (out - 0.5) * self.contrast + 0.5
        out = np.clip(out, 0.0, 1.0)

        out = np.clip(out * self.brightness, 0.0, 1.0)

        luma = (out @ _LUMA_BGR)[..., np.newaxis]
        out = luma + (out - luma) * self.saturation
        out = np.clip(out, 0.0, 1.0)

        return (out * 255.0 + 0.5).astype(np.uint8)

    def _encode(self, img: np.ndarray) -> bytes:
        try:
            ok, buf = cv2.imencode(".jpg", img, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality])
        except cv2.error as e:
            raise EncodeError(f"Could not encode image: {e}")
        if not ok:
            raise EncodeError("Could not encode image")
        return buf.tobytes()
