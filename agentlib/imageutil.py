"""
Image preparation for model calls.

Downloads an image reference and, when it exceeds the byte limit, scales
and re-encodes it as JPEG until it fits. Images already under the limit
are passed through untouched.
"""

import base64
import io
import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlparse

import httpx
from PIL import Image, UnidentifiedImageError

from agentlib.config import ImageSettings, settings
from agentlib.exceptions import ExecutionError

logger = logging.getLogger(__name__)


@dataclass
class PreparedImage:
    data: bytes
    mime_type: str
    original_bytes: int
    final_bytes: int
    original_size: Tuple[int, int]
    final_size: Tuple[int, int]
    reencoded: bool = False

    def data_url(self) -> str:
        if not self.data:
            return ""
        mime_type = self.mime_type.strip() or "application/octet-stream"
        return f"data:{mime_type};base64,{base64.b64encode(self.data).decode('ascii')}"


async def prepare_image_for_service(
    image_url: str,
    limits: Optional[ImageSettings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> PreparedImage:
    """
    Download ``image_url`` and shrink it below the configured byte limit.

    Raises:
        ExecutionError: on bad URLs, download failures, or images that stay
            too large after every resize pass.
    """
    limits = limits or settings.image
    raw_url = (image_url or "").strip()
    if not raw_url:
        raise ExecutionError("image url is empty")
    scheme = urlparse(raw_url).scheme
    if scheme not in ("http", "https"):
        raise ExecutionError(f"unsupported image url scheme {scheme!r}")

    body, content_type = await _download(raw_url, limits, client)
    return prepare_image_bytes(body, content_type, limits)


async def _download(
    url: str,
    limits: ImageSettings,
    client: Optional[httpx.AsyncClient],
) -> Tuple[bytes, str]:
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=limits.download_timeout_seconds, follow_redirects=True)
    try:
        async with client.stream("GET", url, headers={"Accept": "image/*"}) as resp:
            if resp.status_code < 200 or resp.status_code >= 300:
                raise ExecutionError(f"failed to download image: status={resp.status_code}")
            buf = bytearray()
            async for chunk in resp.aiter_bytes():
                buf.extend(chunk)
                if len(buf) > limits.max_download_bytes:
                    raise ExecutionError(
                        f"downloaded image exceeded max download bytes ({limits.max_download_bytes})"
                    )
            return bytes(buf), resp.headers.get("content-type", "")
    except httpx.HTTPError as e:
        raise ExecutionError(f"failed to download image: {e}") from e
    finally:
        if owns_client:
            await client.aclose()


def prepare_image_bytes(data: bytes, content_type: str, limits: Optional[ImageSettings] = None) -> PreparedImage:
    limits = limits or settings.image
    if not data:
        raise ExecutionError("image data is empty")

    try:
        img = Image.open(io.BytesIO(data))
        size = img.size
        detected = Image.MIME.get(img.format or "", "")
    except (UnidentifiedImageError, OSError):
        img, size, detected = None, (0, 0), ""
    mime_type = _normalize_mime(content_type, detected)

    if len(data) <= limits.max_bytes:
        return PreparedImage(
            data=data,
            mime_type=mime_type,
            original_bytes=len(data),
            final_bytes=len(data),
            original_size=size,
            final_size=size,
        )

    if img is None:
        raise ExecutionError(
            f"image exceeds max_bytes={limits.max_bytes} (got {len(data)} bytes) and decode failed"
        )
    src_w, src_h = size
    if src_w == 0 or src_h == 0:
        raise ExecutionError(f"image has invalid dimensions {src_w}x{src_h}")

    rgb = img.convert("RGB")
    cur_w, cur_h = _scale_to_max_dimension(src_w, src_h, limits.max_dimension)
    best = (0, 0, (cur_w, cur_h))
    for _ in range(limits.max_resize_passes):
        resized = rgb.resize((cur_w, cur_h), Image.Resampling.LANCZOS)
        for quality in limits.jpeg_qualities:
            out = io.BytesIO()
            resized.save(out, format="JPEG", quality=quality)
            encoded = out.getvalue()
            if best[0] == 0 or len(encoded) < best[0]:
                best = (len(encoded), quality, (cur_w, cur_h))
            if len(encoded) <= limits.max_bytes:
                logger.info(
                    f"Re-encoded image {src_w}x{src_h} ({len(data)} bytes) -> "
                    f"{cur_w}x{cur_h} q={quality} ({len(encoded)} bytes)"
                )
                return PreparedImage(
                    data=encoded,
                    mime_type="image/jpeg",
                    original_bytes=len(data),
                    final_bytes=len(encoded),
                    original_size=(src_w, src_h),
                    final_size=(cur_w, cur_h),
                    reencoded=True,
                )
        if cur_w <= limits.min_dimension or cur_h <= limits.min_dimension:
            break
        next_w = max(int(cur_w * limits.scale_step), limits.min_dimension)
        next_h = max(int(cur_h * limits.scale_step), limits.min_dimension)
        if (next_w, next_h) == (cur_w, cur_h):
            break
        cur_w, cur_h = next_w, next_h

    smallest, quality, (best_w, best_h) = best
    raise ExecutionError(
        f"unable to optimize image below max_bytes={limits.max_bytes} "
        f"(smallest={smallest}, quality={quality}, size={best_w}x{best_h}, "
        f"original_bytes={len(data)}, original_size={src_w}x{src_h})"
    )


def _scale_to_max_dimension(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    if max_dimension <= 0 or (width <= max_dimension and height <= max_dimension):
        return width, height
    scale = max_dimension / max(width, height)
    return max(1, int(width * scale)), max(1, int(height * scale))


def _normalize_mime(content_type: str, detected: str) -> str:
    for candidate in (content_type, detected):
        ct = (candidate or "").split(";")[0].strip().lower()
        if ct.startswith("image/"):
            return ct
    return "image/jpeg"
