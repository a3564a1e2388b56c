import io
import base64
from typing import Callable, List

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from tryonapi.app import Settings, create_app

PRODUCT_URL = "https://shop.example.com/products/dress.jpg"
GEMINI_HOST = "generativelanguage.googleapis.com"


def make_image_bytes(fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), (200, 30, 30)).save(buf, format=fmt)
    return buf.getvalue()


def gemini_text_response(text: str) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def gemini_image_response(data: str, mime_type: str = "image/png") -> dict:
    return {
        "candidates": [
            {
                "content": {
                    "role": "model",
                    "parts": [
                        {"text": "Here is the try-on."},
                        {"inlineData": {"mimeType": mime_type, "data": data}},
                    ],
                }
            }
        ]
    }


class FakeUpstream:
    """Routes outbound requests to the product host or the Gemini API and records them."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.product_response = httpx.Response(
            200, content=make_image_bytes("JPEG"), headers={"content-type": "image/jpeg"}
        )
        self.gemini_response = httpx.Response(200, json=gemini_text_response("A red dress."))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == GEMINI_HOST:
            return self.gemini_response
        return self.product_response

    @property
    def gemini_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == GEMINI_HOST]


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def make_client(upstream) -> Callable[..., TestClient]:
    def _make(**overrides) -> TestClient:
        values = {
            "GEMINI_API_KEY": "test-key",
            "OUTPUT_MODE": "text",
            "RATE_LIMIT_ENABLED": False,
        }
        values.update(overrides)
        app = create_app(Settings(**values), transport=httpx.MockTransport(upstream))
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


@pytest.fixture
def valid_body() -> dict:
    photo = base64.b64encode(make_image_bytes("PNG")).decode("ascii")
    return {
        "userPhoto": f"data:image/png;base64,{photo}",
        "productImage": PRODUCT_URL,
        "prompt": "Show how this dress would look on the person",
    }


@pytest.fixture
def anyio_backend():
    return "asyncio"
