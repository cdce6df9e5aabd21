"""
Image codec boundary for imagestore.

Wraps Pillow for probing, resizing and re-encoding, pillow-heif for
camera-native formats, and imagehash for the content hash that becomes the
image's identity. Everything in here is blocking; the async wrappers push the
work to a thread and bound it with a timeout.
"""

import asyncio
import logging
from io import BytesIO
from typing import Optional

import imagehash
from PIL import Image, UnidentifiedImageError

from imagestore.services.variants import resized_dimensions

# Optional: HEIC/HEIF support through pillow-heif
try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
    _HAS_HEIF = True
except ImportError:
    _HAS_HEIF = False

logger = logging.getLogger("imagestore.codec")

# Side of the DCT hash; 16 gives a 256-bit hash (64 hex chars)
HASH_SIZE = 16


class CodecError(Exception):
    pass


class ImageInfo:
    def __init__(self, width: int, height: int, format: Optional[str]):
        self.width = width
        self.height = height
        self.format = format


class Rendition:
    def __init__(self, data: bytes, width: int, height: int):
        self.data = data
        self.width = width
        self.height = height


def _prepare_mode(im: Image.Image, fmt: str) -> Image.Image:
    if fmt == "JPEG" and im.mode not in ("RGB", "L", "CMYK"):
        return im.convert("RGB")
    if fmt == "WEBP" and im.mode not in ("RGB", "RGBA"):
        has_alpha = im.mode in ("RGBA", "LA", "PA") or "transparency" in im.info
        return im.convert("RGBA" if has_alpha else "RGB")
    return im


class PillowCodec:
    def __init__(self, jpeg_quality: int = 90, webp_quality: int = 80, timeout: float = 60.0):
        self.jpeg_quality = jpeg_quality
        self.webp_quality = webp_quality
        self.timeout = timeout
        self.heif_enabled = _HAS_HEIF

    # -- blocking primitives -------------------------------------------------

    def probe_sync(self, data: bytes) -> ImageInfo:
        try:
            with Image.open(BytesIO(data)) as im:
                return ImageInfo(im.width, im.height, im.format)
        except Image.DecompressionBombError:
            raise
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise CodecError(f"Could not determine image dimensions: {e}") from e

    def transcode_sync(self, data: bytes) -> bytes:
        """Convert a camera-native image (HEIC/HEIF) to JPEG."""
        if not self.heif_enabled:
            raise CodecError("HEIF support is not installed")
        with Image.open(BytesIO(data)) as im:
            out = _prepare_mode(im, "JPEG")
            buf = BytesIO()
            out.save(buf, format="JPEG", quality=self.jpeg_quality)
            return buf.getvalue()

    def content_hash_sync(self, data: bytes) -> str:
        with Image.open(BytesIO(data)) as im:
            return str(imagehash.phash(im.convert("RGB"), hash_size=HASH_SIZE))

    def render_sync(self, data: bytes, fmt: str, target: Optional[int] = None) -> Rendition:
        """Re-encode ``data`` as ``fmt``, resizing the longer side to ``target`` when given."""
        with Image.open(BytesIO(data)) as im:
            im.load()
            if target is not None:
                size = resized_dimensions(im.width, im.height, target)
                im = im.resize(size, Image.Resampling.LANCZOS)
            im = _prepare_mode(im, fmt)
            buf = BytesIO()
            if fmt == "JPEG":
                im.save(buf, format=fmt, quality=self.jpeg_quality, optimize=True)
            elif fmt == "WEBP":
                im.save(buf, format=fmt, quality=self.webp_quality, method=4)
            else:
                im.save(buf, format=fmt)
            return Rendition(buf.getvalue(), im.width, im.height)

    # -- async wrappers ------------------------------------------------------

    async def _run(self, fn, *args):
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.timeout)

    async def probe(self, data: bytes) -> ImageInfo:
        return await self._run(self.probe_sync, data)

    async def transcode(self, data: bytes) -> bytes:
        return await self._run(self.transcode_sync, data)

    async def content_hash(self, data: bytes) -> str:
        return await self._run(self.content_hash_sync, data)

    async def render(self, data: bytes, fmt: str, target: Optional[int] = None) -> Rendition:
        return await self._run(self.render_sync, data, fmt, target)
