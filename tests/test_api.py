"""Tests for the FaceMatch HTTP API."""

from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING
from unittest.mock import patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from numpy.typing import NDArray

import cv2
import httpx
import numpy as np
import pytest
from fastapi import FastAPI, status
from pydantic import TypeAdapter

from facematch.api.schemas import IdentifiedResponse, IdentifyResponse, NotIdentifiedResponse
from facematch.config import get_settings
from facematch.core.matching import ChannelRangeMismatchError, FaceRegion, FeatureVector, LabeledFace, Matcher
from facematch.main import create_app, init_state
from facematch.ml.inference import InferencePool, PoolSaturatedError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _WholeImageDetector:
    """Treats any non-black image as one face covering the whole frame."""

    model_name = "whole_image"

    def detect(self, image: NDArray[np.uint8]) -> list[FaceRegion]:
        if not image.any():
            return []
        height, width = image.shape[:2]
        return [FaceRegion(x=0, y=0, width=width, height=height)]


def _png(image: NDArray[np.uint8]) -> bytes:
    ok, encoded = cv2.imencode(".png", image)
    assert ok
    return encoded.tobytes()


def _gradient(size: int = 64) -> NDArray[np.uint8]:
    row = np.linspace(0, 255, size).astype(np.uint8)
    return np.tile(row, (size, 1))


GRADIENT = _png(_gradient())
INVERTED = _png(255 - _gradient())
BLACK = _png(np.zeros((64, 64), dtype=np.uint8))


def _upload(data: bytes, name: str = "image") -> dict[str, tuple[str, bytes, str]]:
    return {name: (f"{name}.png", data, "image/png")}


def _init_app_state(app: FastAPI, **env_overrides: str) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan)."""
    with patch.dict(os.environ, env_overrides):
        settings = get_settings()
    init_state(app, settings)
    app.state.pipeline.detector = _WholeImageDetector()


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    pool: InferencePool = app.state.inference_pool
    pool.shutdown()


@pytest.fixture()
def app() -> FastAPI:
    """Create a fresh app instance with default settings."""
    application = create_app()
    _init_app_state(application)
    return application


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client for testing the app."""
    async for ac in _make_client(app):
        yield ac


async def _register(client: httpx.AsyncClient, label: str, data: bytes) -> httpx.Response:
    return await client.post("/api/v1/faces/register", files=_upload(data), data={"label": label})


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestHealthEndpoint:
    async def test_health_returns_ok(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "ok"
        assert data["detector"] == "whole_image"
        assert data["registered_faces"] == 0
        assert isinstance(data["concurrent_requests"], int)
        assert isinstance(data["queue_depth"], int)

    async def test_health_counts_registered_faces(self, client: httpx.AsyncClient) -> None:
        await _register(client, "alice", GRADIENT)
        response = await client.get("/api/v1/health")
        assert response.json()["registered_faces"] == 1


class TestDetectEndpoint:
    async def test_detect_returns_regions(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/faces/detect", files=_upload(GRADIENT))
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == [{"x": 0, "y": 0, "width": 64, "height": 64}]

    async def test_detect_no_faces(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/faces/detect", files=_upload(BLACK))
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == []

    async def test_detect_rejects_unreadable_image(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/faces/detect", files=_upload(b"fake image data"))
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"].startswith("Error processing image")

    async def test_upload_size_limit(self) -> None:
        app = create_app()
        _init_app_state(app, FACEMATCH_MAX_FILE_SIZE="16")
        async for ac in _make_client(app):
            response = await ac.post("/api/v1/faces/detect", files=_upload(GRADIENT))
            assert response.status_code == status.HTTP_413_CONTENT_TOO_LARGE


class TestRegisterEndpoint:
    async def test_register_returns_face_without_features(self, client: httpx.AsyncClient) -> None:
        response = await _register(client, "alice", GRADIENT)
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"label": "alice", "x": 0, "y": 0, "width": 64, "height": 64}

    async def test_register_without_face(self, client: httpx.AsyncClient) -> None:
        response = await _register(client, "nobody", BLACK)
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "No face detected in the image"

    async def test_register_requires_label(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/faces/register", files=_upload(GRADIENT))
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT

    async def test_known_lists_labels_in_registration_order(self, client: httpx.AsyncClient) -> None:
        await _register(client, "bob", INVERTED)
        await _register(client, "alice", GRADIENT)
        await _register(client, "bob", INVERTED)

        response = await client.get("/api/v1/faces/known")
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == ["bob", "alice"]


class TestIdentifyEndpoint:
    async def test_identifies_registered_face(self, client: httpx.AsyncClient) -> None:
        await _register(client, "bob", INVERTED)
        await _register(client, "alice", GRADIENT)

        response = await client.post("/api/v1/faces/identify", files=_upload(GRADIENT))

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["identified"] is True
        assert data["label"] == "alice"
        assert data["width"] == 64
        assert data["score"] == pytest.approx(1.0)

    async def test_no_registered_faces(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/faces/identify", files=_upload(GRADIENT))
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"identified": False, "reason": "no_candidates", "message": "No match found"}

    async def test_below_threshold(self, client: httpx.AsyncClient) -> None:
        await _register(client, "bob", INVERTED)
        response = await client.post("/api/v1/faces/identify", files=_upload(GRADIENT))
        data = response.json()
        assert data["identified"] is False
        assert data["reason"] == "below_threshold"

    async def test_score_must_exceed_threshold(self, client: httpx.AsyncClient) -> None:
        await _register(client, "alice", GRADIENT)
        response = await client.post(
            "/api/v1/faces/identify",
            files=_upload(GRADIENT),
            data={"threshold": "1.0"},
        )
        assert response.json()["identified"] is False

    async def test_lower_threshold_accepts_weaker_match(self, client: httpx.AsyncClient) -> None:
        await _register(client, "bob", INVERTED)
        response = await client.post(
            "/api/v1/faces/identify",
            files=_upload(GRADIENT),
            data={"threshold": "0.0"},
        )
        assert response.json()["label"] == "bob"

    async def test_threshold_out_of_range(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/faces/identify",
            files=_upload(GRADIENT),
            data={"threshold": "1.5"},
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT

    async def test_identify_without_face(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/faces/identify", files=_upload(BLACK))
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_configured_threshold_is_default(self) -> None:
        app = create_app()
        _init_app_state(app, FACEMATCH_SIMILARITY_THRESHOLD="0.0")
        async for ac in _make_client(app):
            await _register(ac, "bob", INVERTED)
            response = await ac.post("/api/v1/faces/identify", files=_upload(GRADIENT))
            assert response.json()["label"] == "bob"


class TestCompareEndpoint:
    async def test_identical_images(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/faces/compare",
            files={**_upload(GRADIENT, "image1"), **_upload(GRADIENT, "image2")},
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["similarity"] == pytest.approx(1.0)

    async def test_different_images(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/faces/compare",
            files={**_upload(GRADIENT, "image1"), **_upload(INVERTED, "image2")},
        )
        assert response.json()["similarity"] < 0.7

    async def test_missing_face(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/faces/compare",
            files={**_upload(GRADIENT, "image1"), **_upload(BLACK, "image2")},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Face not detected in one or both images"


class TestWorkerPool:
    async def test_saturated_pool_returns_503(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        async def _saturated(*args: object) -> None:
            raise PoolSaturatedError("Face processing is at capacity, retry later")

        with patch.object(app.state.inference_pool, "run", _saturated):
            response = await client.post("/api/v1/faces/detect", files=_upload(GRADIENT))
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE

    async def test_pool_times_out_when_full(self) -> None:
        with patch.dict(os.environ, {"FACEMATCH_MAX_CONCURRENT": "1", "FACEMATCH_QUEUE_TIMEOUT": "0.05"}):
            pool = InferencePool(get_settings())
        await pool._semaphore.acquire()
        try:
            with pytest.raises(PoolSaturatedError):
                await pool.run(len, b"data")
            assert pool.queue_depth == 0
        finally:
            pool._semaphore.release()
            pool.shutdown()

    async def test_pool_runs_function(self) -> None:
        pool = InferencePool(get_settings())
        try:
            assert await pool.run(len, b"data") == 4
            assert pool.active_count == 0
        finally:
            pool.shutdown()


class TestStartup:
    def test_channel_range_misconfiguration_fails_startup(self) -> None:
        with patch.dict(os.environ, {"FACEMATCH_MAX_CHANNEL_VALUE": "100"}):
            settings = get_settings()
        with pytest.raises(ChannelRangeMismatchError, match="FACEMATCH_MAX_CHANNEL_VALUE"):
            init_state(create_app(), settings)


class TestIncomparableFeatures:
    async def test_identify_length_mismatch_returns_422(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        app.state.matcher = Matcher(strict_length=True)
        app.state.registry.put("short", LabeledFace(features=FeatureVector.from_values([0.0] * 4)))

        response = await client.post("/api/v1/faces/identify", files=_upload(GRADIENT))

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT
        assert response.json()["detail"].startswith("Features cannot be compared")

    async def test_compare_channel_range_mismatch_returns_422(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        app.state.matcher = Matcher(max_channel_value=100.0)

        response = await client.post(
            "/api/v1/faces/compare",
            files={**_upload(GRADIENT, "image1"), **_upload(GRADIENT, "image2")},
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_CONTENT
        assert response.json()["detail"].startswith("Features cannot be compared")


class TestIdentifyResponseSchema:
    def test_validation_selects_variant_by_identified(self) -> None:
        adapter = TypeAdapter(IdentifyResponse)
        miss = adapter.validate_python({"identified": False, "reason": "no_query"})
        hit = adapter.validate_python({"identified": True, "label": "alice", "score": 0.9})
        assert isinstance(miss, NotIdentifiedResponse)
        assert isinstance(hit, IdentifiedResponse)

    def test_openapi_declares_discriminator(self, app: FastAPI) -> None:
        assert '"propertyName": "identified"' in json.dumps(app.openapi())


class TestMatchingOffEventLoop:
    async def test_identify_and_compare_run_on_worker_pool(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        pool: InferencePool = app.state.inference_pool
        matcher: Matcher = app.state.matcher
        original_run = pool.run
        submitted: list[object] = []

        async def _recording_run(func: object, *args: object) -> object:
            submitted.append(func)
            return await original_run(func, *args)  # type: ignore[arg-type]

        await _register(client, "alice", GRADIENT)
        with patch.object(pool, "run", _recording_run):
            await client.post("/api/v1/faces/identify", files=_upload(GRADIENT))
            await client.post(
                "/api/v1/faces/compare",
                files={**_upload(GRADIENT, "image1"), **_upload(GRADIENT, "image2")},
            )

        assert matcher.match in submitted
        assert matcher.similarity in submitted
