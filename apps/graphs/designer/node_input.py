"""
Human input turn construction for workers and supervisors.

A node's input text is either plain text or an image reference. Image
references are downloaded, shrunk to the service limits and sent inline as
a data URL.
"""
import logging
from posixpath import splitext
from typing import Any, Awaitable, Callable, Dict, List
from urllib.parse import urlparse

from langchain_core.messages import HumanMessage

from agentlib.exceptions import ExecutionError, GraphBackendError
from agentlib.imageutil import PreparedImage, prepare_image_for_service

from .configs import NodeInputConfig

logger = logging.getLogger(__name__)

INPUT_MODE_IMAGE_URL = "image_url"

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".tiff", ".heic"}
SIGNED_URL_MARKER = "x-amz-signature="

ImagePreparer = Callable[[str], Awaitable[PreparedImage]]


def looks_like_image_url(value: Any) -> bool:
    """True for http(s) URLs with an image extension or an S3 signature."""
    if not isinstance(value, str):
        return False
    raw = value.strip()
    if not raw:
        return False
    try:
        parsed = urlparse(raw)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    if SIGNED_URL_MARKER in parsed.query.lower():
        return True
    return splitext(parsed.path)[1].lower() in IMAGE_EXTENSIONS


async def build_human_input_message(
    input_text: str,
    config: NodeInputConfig,
    default_prompt: str,
    image_preparer: ImagePreparer = prepare_image_for_service,
) -> HumanMessage:
    """
    Build the single human turn a node sends to its model.

    Image mode (explicit ``input_mode="image_url"``, or no mode and an input
    that looks like an image URL) sends the image followed by the prompt.
    Text mode sends the prompt followed by the input text. Either way an
    empty turn falls back to ``default_prompt``.
    """
    mode = config.input_mode.strip().lower()
    prompt = config.input_prompt.strip() or default_prompt
    parts: List[Dict[str, Any]] = []

    if mode == INPUT_MODE_IMAGE_URL or (not mode and looks_like_image_url(input_text)):
        raw_input = (input_text or "").strip()
        if raw_input:
            try:
                prepared = await image_preparer(raw_input)
            except GraphBackendError as e:
                raise ExecutionError(f"failed to optimize image input: {e}") from e
            data_url = prepared.data_url()
            if not data_url:
                raise ExecutionError("optimized image data url is empty")
            logger.info(
                f"Image input prepared: {prepared.original_bytes} -> {prepared.final_bytes} bytes, "
                f"{prepared.original_size} -> {prepared.final_size}, reencoded={prepared.reencoded}"
            )
            parts.append({"type": "image_url", "image_url": {"url": data_url}})
        if prompt:
            parts.append({"type": "text", "text": prompt})
    else:
        if prompt:
            parts.append({"type": "text", "text": prompt})
        if (input_text or "").strip():
            parts.append({"type": "text", "text": input_text})

    if not parts:
        parts.append({"type": "text", "text": default_prompt})
    return HumanMessage(content=parts)
