"""
MIT License — Try-On provider (Google Gemini)
Uses the Gemini generateContent REST API with inline image parts.
"""

from __future__ import annotations
import httpx
import logging
from typing import Any, Dict, List, Optional

from tryonapi.types import DescriptionResult, ImageResult, InlineImage, OutputMode, TryOnResult

logger = logging.getLogger(__name__)

DEFAULT_MODELS: Dict[str, str] = {
    "image": "gemini-2.5-flash-image",
    "text": "gemini-2.5-flash",
}


class GeminiError(Exception):
    pass


class GeminiNoContent(GeminiError):
    pass


def build_prompt(prompt: str) -> str:
    return (
        f"{prompt.strip()}\n"
        "The first image shows the person. The second image shows the product."
    )


def build_request(prompt: str, images: List[InlineImage], mode: OutputMode) -> Dict[str, Any]:
    parts: List[Dict[str, Any]] = [{"text": build_prompt(prompt)}]
    for image in images:
        parts.append({"inline_data": {"mime_type": image.mime_type, "data": image.data}})

    body: Dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
    if mode == "image":
        body["generationConfig"] = {"responseModalities": ["TEXT", "IMAGE"]}
    return body


def _response_parts(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    block_reason = (data.get("promptFeedback") or {}).get("blockReason")
    if block_reason:
        raise GeminiError(f"Prompt blocked: {block_reason}")

    candidates = data.get("candidates") or []
    if not candidates:
        raise GeminiNoContent("Gemini returned no candidates")
    return (candidates[0].get("content") or {}).get("parts") or []


def _inline_data(part: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    # REST responses use camelCase, request-style snake_case is accepted too
    return part.get("inlineData") or part.get("inline_data")


def parse_response(data: Dict[str, Any], mode: OutputMode) -> TryOnResult:
    parts = _response_parts(data)

    if mode == "image":
        for part in parts:
            inline = _inline_data(part)
            if inline and inline.get("data"):
                mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                return ImageResult(url=f"data:{mime_type};base64,{inline['data']}")
        raise GeminiNoContent("No image in Gemini response")

    text = "\n".join(p["text"].strip() for p in parts if p.get("text") and p["text"].strip())
    if not text:
        raise GeminiNoContent("No text in Gemini response")
    return DescriptionResult(text=text)


async def generate_with_gemini(
    client: httpx.AsyncClient,
    *,
    api_key: str,
    model: str,
    prompt: str,
    images: List[InlineImage],
    mode: OutputMode,
    api_base: str = "https://generativelanguage.googleapis.com",
) -> TryOnResult:
    if not api_key:
        raise GeminiError("GEMINI_API_KEY not configured")

    url = f"{api_base.rstrip('/')}/v1beta/models/{model}:generateContent"
    headers = {
        "x-goog-api-key": api_key,
        "Content-Type": "application/json",
    }
    payload = build_request(prompt, images, mode)

    logger.info(f"Calling Gemini model {model} ({mode} mode) with {len(images)} inline images")
    r = await client.post(url, headers=headers, json=payload)
    logger.info(f"Gemini API response status: {r.status_code}")

    if r.status_code >= 400:
        logger.error(f"Gemini API error response: {r.text}")
        raise GeminiError(f"Gemini API failed: {r.status_code}")

    try:
        data = r.json()
    except ValueError as e:
        raise GeminiError(f"Gemini API returned invalid JSON: {e}")

    return parse_response(data, mode)
