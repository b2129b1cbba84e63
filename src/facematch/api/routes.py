"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, TypeVar

from fastapi import APIRouter, Form, HTTPException, Request, UploadFile, status

from facematch.api.schemas import (
    CompareResponse,
    ErrorResponse,
    FaceRegion,
    HealthResponse,
    IdentifiedResponse,
    IdentifyResponse,
    NotIdentifiedResponse,
    RegisteredFace,
)
from facematch.core.matching import ChannelRangeMismatchError, FeatureLengthMismatchError, Identified
from facematch.ml.inference import PoolSaturatedError
from facematch.ml.preprocessing import ImageDecodeError

if TYPE_CHECKING:
    from collections.abc import Callable

    from facematch.config import Settings
    from facematch.core.matching import Matcher
    from facematch.core.registry import FaceRegistry
    from facematch.ml.inference import InferencePool
    from facematch.ml.pipeline import FacePipeline

logger = logging.getLogger(__name__)

T = TypeVar("T")

router = APIRouter(prefix="/api/v1")

_IMAGE_ERRORS = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_422_UNPROCESSABLE_CONTENT: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}

NO_FACE_DETECTED = "No face detected in the image"


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_pipeline(request: Request) -> FacePipeline:
    pipeline: FacePipeline = request.app.state.pipeline
    return pipeline


def _get_matcher(request: Request) -> Matcher:
    matcher: Matcher = request.app.state.matcher
    return matcher


def _get_registry(request: Request) -> FaceRegistry:
    registry: FaceRegistry = request.app.state.registry
    return registry


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


async def _read_upload(request: Request, upload: UploadFile) -> bytes:
    limit = _get_settings(request).max_file_size
    data = await upload.read(limit + 1)
    if len(data) > limit:
        raise HTTPException(
            status_code=status.HTTP_413_CONTENT_TOO_LARGE,
            detail=f"Upload exceeds the {limit} byte limit",
        )
    return data


async def _process(request: Request, func: Callable[..., T], *args: object) -> T:
    """Run a pipeline or matching step on the worker pool, mapping failures to HTTP errors."""
    try:
        return await _get_inference_pool(request).run(func, *args)
    except ImageDecodeError as e:
        logger.warning("Rejected upload: %s", e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Error processing image: {e}",
        ) from e
    except (ChannelRangeMismatchError, FeatureLengthMismatchError) as e:
        logger.error("Features cannot be compared: %s", e)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"Features cannot be compared: {e}",
        ) from e
    except PoolSaturatedError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        ) from e


@router.post(
    "/faces/detect",
    response_model=list[FaceRegion],
    responses=_IMAGE_ERRORS,
    summary="Detect faces in an image",
)
async def detect_faces(request: Request, image: UploadFile) -> list[FaceRegion]:
    """Return the bounding box of every face found in the uploaded image."""
    data = await _read_upload(request, image)
    regions = await _process(request, _get_pipeline(request).detect_faces, data)
    return [FaceRegion.from_core(region) for region in regions]


@router.post(
    "/faces/register",
    response_model=RegisteredFace,
    responses=_IMAGE_ERRORS,
    summary="Register a labeled face",
)
async def register_face(
    request: Request,
    image: UploadFile,
    label: Annotated[str, Form(min_length=1)],
) -> RegisteredFace:
    """Extract the first face in the image and store it under ``label``."""
    data = await _read_upload(request, image)
    face = await _process(request, _get_pipeline(request).extract_face, data)
    if face is None or face.region is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NO_FACE_DETECTED)

    _get_registry(request).put(label, face)
    region = face.region
    return RegisteredFace(label=label, x=region.x, y=region.y, width=region.width, height=region.height)


@router.post(
    "/faces/identify",
    response_model=IdentifyResponse,
    responses=_IMAGE_ERRORS,
    summary="Identify a face against registered faces",
)
async def identify_face(
    request: Request,
    image: UploadFile,
    threshold: Annotated[float | None, Form(ge=0.0, le=1.0)] = None,
) -> IdentifyResponse:
    """Find the registered face most similar to the uploaded one.

    ``threshold`` defaults to the configured similarity threshold; a match
    must score strictly above it.
    """
    data = await _read_upload(request, image)
    face = await _process(request, _get_pipeline(request).extract_face, data)
    if face is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=NO_FACE_DETECTED)

    known = _get_registry(request).snapshot()
    result = await _process(request, _get_matcher(request).match, face.features, known, threshold)

    if not isinstance(result, Identified):
        logger.info("No match among %d registered face(s): %s", len(known), result.reason)
        return NotIdentifiedResponse(reason=result.reason)

    logger.info("Identified %r with score %.4f", result.label, result.score)
    region = result.region
    return IdentifiedResponse(
        label=result.label,
        x=region.x if region else None,
        y=region.y if region else None,
        width=region.width if region else None,
        height=region.height if region else None,
        score=result.score,
    )


@router.post(
    "/faces/compare",
    response_model=CompareResponse,
    responses=_IMAGE_ERRORS,
    summary="Compare the faces in two images",
)
async def compare_faces(request: Request, image1: UploadFile, image2: UploadFile) -> CompareResponse:
    """Return the similarity of the first face in each image."""
    pipeline = _get_pipeline(request)
    face1 = await _process(request, pipeline.extract_face, await _read_upload(request, image1))
    face2 = await _process(request, pipeline.extract_face, await _read_upload(request, image2))
    if face1 is None or face2 is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Face not detected in one or both images",
        )

    score = await _process(request, _get_matcher(request).similarity, face1.features, face2.features)
    return CompareResponse(similarity=score)


@router.get(
    "/faces/known",
    response_model=list[str],
    summary="List registered face labels",
)
async def known_faces(request: Request) -> list[str]:
    return _get_registry(request).labels()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        detector=_get_pipeline(request).detector.model_name,
        registered_faces=len(_get_registry(request)),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )
