"""
Image preparation tests.

Run with:
    pytest tests/test_imageutil.py -v
"""

import io

import httpx
import pytest
from PIL import Image

from agentlib.config import ImageSettings
from agentlib.exceptions import ExecutionError
from agentlib.imageutil import prepare_image_bytes, prepare_image_for_service


def _gradient_bmp(width: int, height: int) -> bytes:
    img = Image.new("RGB", (width, height))
    img.putdata([((x * 255) // width, (y * 255) // height, 128) for y in range(height) for x in range(width)])
    out = io.BytesIO()
    img.save(out, format="BMP")
    return out.getvalue()


def _png(width: int = 8, height: int = 8) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (width, height), (10, 20, 30)).save(out, format="PNG")
    return out.getvalue()


class TestPrepareImageBytes:

    def test_small_image_passes_through(self):
        data = _png()
        prepared = prepare_image_bytes(data, "image/png")
        assert prepared.data == data
        assert prepared.mime_type == "image/png"
        assert not prepared.reencoded
        assert prepared.data_url().startswith("data:image/png;base64,")

    def test_large_image_is_scaled_and_reencoded(self):
        data = _gradient_bmp(800, 600)
        limits = ImageSettings(max_bytes=200_000, max_dimension=512)

        prepared = prepare_image_bytes(data, "application/octet-stream", limits)

        assert prepared.reencoded
        assert prepared.mime_type == "image/jpeg"
        assert prepared.final_bytes <= 200_000
        assert max(prepared.final_size) <= 512
        assert prepared.original_size == (800, 600)

    def test_undecodable_large_payload(self):
        limits = ImageSettings(max_bytes=10)
        with pytest.raises(ExecutionError, match="decode failed"):
            prepare_image_bytes(b"not an image at all", "image/png", limits)

    def test_empty_payload(self):
        with pytest.raises(ExecutionError, match="empty"):
            prepare_image_bytes(b"", "image/png")


class TestPrepareImageForService:

    @pytest.mark.asyncio
    async def test_downloads_and_prepares(self):
        data = _png()

        def handler(request):
            return httpx.Response(200, content=data, headers={"content-type": "image/png"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            prepared = await prepare_image_for_service("https://cdn.example.com/a.png", client=client)

        assert prepared.data == data

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        def handler(request):
            return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ExecutionError, match="status=404"):
                await prepare_image_for_service("https://cdn.example.com/a.png", client=client)

    @pytest.mark.asyncio
    async def test_download_limit(self):
        def handler(request):
            return httpx.Response(200, content=b"x" * 64, headers={"content-type": "image/png"})

        limits = ImageSettings(max_download_bytes=16)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ExecutionError, match="max download bytes"):
                await prepare_image_for_service("https://cdn.example.com/a.png", limits, client)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["", "file:///etc/passwd", "s3://bucket/key.png"])
    async def test_rejects_bad_urls(self, url):
        with pytest.raises(ExecutionError):
            await prepare_image_for_service(url)
