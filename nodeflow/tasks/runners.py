"""Task runners backing the in-process task system.

Each runner takes the task payload dict and returns the task output dict, or
raises; the task client turns exceptions into a failed status.
"""

from __future__ import annotations

import base64
import logging
import mimetypes
import subprocess
import tempfile
import uuid
from functools import partial
from io import BytesIO
from pathlib import Path
from typing import Any
from urllib.parse import urlparse
from urllib.request import url2pathname

import ffmpeg
import httpx
from langchain_core.messages import HumanMessage, SystemMessage
from PIL import Image

from ..config import AppConfig
from .base import CROP_TASK, FRAME_TASK, LLM_TASK
from .local import LocalTaskClient

logger = logging.getLogger(__name__)


def load_media(reference: str, timeout: float = 30.0) -> tuple[bytes, str]:
    """Return the bytes and mime type behind a URL, file URI or local path."""
    parsed = urlparse(reference)
    if parsed.scheme in ("http", "https"):
        response = httpx.get(reference, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        return response.content, content_type or _guess_mime(parsed.path)

    path = Path(url2pathname(parsed.path)) if parsed.scheme == "file" else Path(reference)
    if not path.is_file():
        raise FileNotFoundError(f"Media not found: {reference}")
    return path.read_bytes(), _guess_mime(path.name)


def _guess_mime(name: str) -> str:
    return mimetypes.guess_type(name)[0] or "application/octet-stream"


def _media_path(output_dir: str, prefix: str, suffix: str) -> Path:
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)
    return directory / f"{prefix}-{uuid.uuid4().hex[:12]}{suffix}"


def _extract_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
        return "\n".join(parts)
    return str(content)


def generate_text(
    payload: dict[str, Any],
    *,
    base_url: str,
    temperature: float,
    download_timeout: float,
) -> dict[str, Any]:
    """Run a local Ollama chat model with an optional system prompt and images."""
    model = payload.get("model")
    prompt = payload.get("prompt")
    if not isinstance(model, str) or not model:
        raise ValueError("llm-generate.model must be a non-empty string")
    if not isinstance(prompt, str) or not prompt:
        raise ValueError("llm-generate.prompt must be a non-empty string")

    content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
    for image in payload.get("images") or []:
        data, mime = load_media(str(image), timeout=download_timeout)
        if not mime.startswith("image/"):
            mime = "image/jpeg"
        encoded = base64.b64encode(data).decode("ascii")
        content.append({"type": "image_url", "image_url": f"data:{mime};base64,{encoded}"})

    messages: list[Any] = []
    system_prompt = payload.get("system_prompt")
    if isinstance(system_prompt, str) and system_prompt:
        messages.append(SystemMessage(content=system_prompt))
    messages.append(HumanMessage(content=content))

    try:
        from langchain_ollama import ChatOllama
    except ImportError as exc:
        raise RuntimeError("Missing LLM dependencies. Install with: pip install langchain-ollama") from exc

    llm = ChatOllama(model=model, base_url=base_url, temperature=float(temperature))
    result = llm.invoke(messages)
    return {"response": _extract_text(result.content), "model": model}


def crop_image(payload: dict[str, Any], *, output_dir: str, download_timeout: float) -> dict[str, Any]:
    """Crop by percentages of the source size and store the result as PNG."""
    data, _ = load_media(str(payload["image_url"]), timeout=download_timeout)
    x, y = float(payload.get("x", 0)), float(payload.get("y", 0))
    width, height = float(payload.get("width", 100)), float(payload.get("height", 100))

    with Image.open(BytesIO(data)) as image:
        image_width, image_height = image.size
        left = round(image_width * x / 100)
        top = round(image_height * y / 100)
        right = min(image_width, left + round(image_width * width / 100))
        bottom = min(image_height, top + round(image_height * height / 100))
        if right <= left or bottom <= top:
            raise ValueError(f"Crop box is empty for a {image_width}x{image_height} image")

        cropped = image.crop((left, top, right, bottom))
        target = _media_path(output_dir, "crop", ".png")
        cropped.save(target, format="PNG")

    logger.info(f"Cropped {image_width}x{image_height} image to {right - left}x{bottom - top}: {target}")
    return {"cropped_url": target.resolve().as_uri()}


def _resolve_offset(timestamp: Any, video_path: str) -> float:
    if isinstance(timestamp, str) and timestamp.strip().endswith("%"):
        percentage = float(timestamp.strip()[:-1])
        probe = ffmpeg.probe(video_path)
        duration = float(probe.get("format", {}).get("duration") or 0)
        return duration * percentage / 100
    return float(timestamp)


def extract_frame(
    payload: dict[str, Any],
    *,
    output_dir: str,
    download_timeout: float,
    ffmpeg_timeout: float,
) -> dict[str, Any]:
    """Grab a single JPEG frame at an absolute or percentage offset."""
    data, mime = load_media(str(payload["video_url"]), timeout=download_timeout)
    if not data:
        raise ValueError("Downloaded video file is empty")

    suffix = mimetypes.guess_extension(mime) or ".mp4"
    with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as handle:
        handle.write(data)
        video_path = handle.name

    try:
        timestamp = payload.get("timestamp")
        if timestamp is None or timestamp == "":
            timestamp = "50%"
        offset = _resolve_offset(timestamp, video_path)
        target = _media_path(output_dir, "frame", ".jpg")
        stream = ffmpeg.input(video_path, ss=offset).output(str(target), vframes=1, **{"q:v": 2})
        process = stream.run_async(quiet=True, overwrite_output=True)
        try:
            _, stderr = process.communicate(timeout=ffmpeg_timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
            raise RuntimeError(f"ffmpeg did not finish within {ffmpeg_timeout:.0f}s")
        if process.returncode != 0 or not target.exists():
            detail = stderr.decode("utf-8", errors="ignore").strip()[-400:] if stderr else ""
            raise RuntimeError(f"ffmpeg exited with code {process.returncode}: {detail}")
    finally:
        Path(video_path).unlink(missing_ok=True)

    logger.info(f"Extracted frame at {offset:.2f}s: {target}")
    return {"frame_url": target.resolve().as_uri()}


def build_local_task_client(config: AppConfig) -> LocalTaskClient:
    llm = config.llm_defaults()
    media = config.media_settings()
    download_timeout = float(media["download_timeout"])

    client = LocalTaskClient()
    client.register(
        LLM_TASK,
        partial(
            generate_text,
            base_url=str(llm["base_url"]),
            temperature=float(llm["temperature"]),
            download_timeout=download_timeout,
        ),
    )
    client.register(
        CROP_TASK,
        partial(crop_image, output_dir=str(media["output_dir"]), download_timeout=download_timeout),
    )
    client.register(
        FRAME_TASK,
        partial(
            extract_frame,
            output_dir=str(media["output_dir"]),
            download_timeout=download_timeout,
            ffmpeg_timeout=float(media["ffmpeg_timeout"]),
        ),
    )
    return client
