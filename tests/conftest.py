"""Pytest configuration and fixtures."""
import io
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest
from PIL import Image

from inpaint_studio.client import InpaintClient
from inpaint_studio.imaging import decode_image, to_data_url
from inpaint_studio.schemas import InpaintResponse

GRAY = (128, 128, 128)


def _encode(width, height, color=GRAY, format="PNG"):
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format=format)
    return buffer.getvalue()


@pytest.fixture
def image_bytes():
    """Factory for encoded solid-colour images."""
    return _encode


@pytest.fixture
def gray_png():
    """Small mid-gray PNG (200x150), no red pixels."""
    return _encode(200, 150)


@pytest.fixture
def gray_payload(gray_png):
    return decode_image(gray_png, mime_type="image/png", filename="gray.png")


@pytest.fixture
def gray_base():
    """Opaque mid-gray RGBA base layer, 200x150."""
    base = np.zeros((150, 200, 4), dtype=np.uint8)
    base[..., :3] = GRAY
    base[..., 3] = 255
    return base


@pytest.fixture
def result_data_url():
    """A result image as the service returns it."""
    return to_data_url(_encode(64, 48, color=(10, 200, 30)), "image/png")


@pytest.fixture
def mock_client(result_data_url):
    """InpaintClient double that succeeds with job 'job_001'."""
    client = MagicMock(spec=InpaintClient)
    client.submit = AsyncMock(
        return_value=InpaintResponse(result_image=result_data_url, job_id="job_001")
    )
    client.close = AsyncMock()
    return client
