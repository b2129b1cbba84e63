"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from facematch.api.routes import router
from facematch.config import Settings, get_settings
from facematch.core.matching import ChannelRangeMismatchError, Matcher
from facematch.core.registry import FaceRegistry
from facematch.ml.face_detector import HaarCascadeDetector
from facematch.ml.feature_extractor import PixelFeatureExtractor
from facematch.ml.inference import InferencePool
from facematch.ml.pipeline import FacePipeline

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Build the detector, pipeline, matcher, registry and worker pool on ``app.state``.

    Raises:
        ClassifierLoadError: If the cascade classifier cannot be loaded.
        ChannelRangeMismatchError: If the configured max channel value does not
            match what the feature extractor produces.
    """
    detector = HaarCascadeDetector(
        cascade_path=settings.cascade_path,
        scale_factor=settings.scale_factor,
        min_neighbors=settings.min_neighbors,
        min_size=settings.min_face_size,
    )
    extractor = PixelFeatureExtractor(face_size=settings.face_size)
    if extractor.max_channel_value != settings.max_channel_value:
        raise ChannelRangeMismatchError(
            f"Extractor produces values up to {extractor.max_channel_value} "
            f"but FACEMATCH_MAX_CHANNEL_VALUE is {settings.max_channel_value}"
        )

    app.state.settings = settings
    app.state.pipeline = FacePipeline(detector, extractor, max_image_pixels=settings.max_image_pixels)
    app.state.matcher = Matcher(
        threshold=settings.similarity_threshold,
        max_channel_value=settings.max_channel_value,
        strict_length=settings.strict_length,
        clamp=settings.clamp_similarity,
    )
    app.state.registry = FaceRegistry()
    app.state.inference_pool = InferencePool(settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FaceMatch (threshold=%s, face_size=%s, strict_length=%s, max_concurrent=%s)",
        settings.similarity_threshold,
        settings.face_size,
        settings.strict_length,
        settings.max_concurrent,
    )

    init_state(app, settings)

    logger.info("FaceMatch ready")
    yield

    logger.info("Shutting down FaceMatch")
    app.state.inference_pool.shutdown()
    logger.info("FaceMatch shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FaceMatch",
        description="Face detection, registration and identification over raw pixel features",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run("facematch.main:app", host=settings.host, port=settings.port)
