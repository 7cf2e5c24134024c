from typing import List, Optional
import logging

from fastapi import APIRouter, HTTPException, Depends, WebSocket, UploadFile, File, Form
from fastapi.responses import JSONResponse

from trendify.api.dependencies import get_orchestrator
from trendify.api.schemas import (
    StyleResponse, StyleListResponse, RateLimitStatus, RunCreatedResponse, RunDetail,
    EnhanceResponse, TextToImageRequest, PromptVariationsRequest, PromptVariationsResponse,
    CredentialRequest, CredentialStatus, ErrorDetail
)
from trendify.api.websocket import websocket_endpoint
from trendify.api.background_tasks import task_processor
from trendify.core.constants import DEFAULT_VARIATIONS, ENHANCEMENT_TIERS
from trendify.models import ImageArtifact
from trendify.pipeline.executor import RunOrchestrator, CooldownActiveError, OperationFailedError

# Create logger
logger = logging.getLogger(__name__)

# Create routers
api_router = APIRouter(prefix="/api/v1")
runs_router = APIRouter(prefix="/runs", tags=["Runs"])
images_router = APIRouter(tags=["Images"])
settings_router = APIRouter(tags=["Settings"])
ws_router = APIRouter(prefix="/ws", tags=["WebSocket"])

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


async def _read_image(upload: UploadFile) -> Optional[ImageArtifact]:
    """Read an uploaded image; an empty part stands for an empty slot"""
    data = await upload.read()
    if not data:
        return None
    if upload.content_type and not upload.content_type.startswith("image/") \
            and upload.content_type != "application/octet-stream":
        raise HTTPException(status_code=400, detail="Uploaded file must be an image")
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="Image file too large (max 10MB)")
    return ImageArtifact.from_bytes(data)


async def _read_images(uploads: List[UploadFile]) -> List[Optional[ImageArtifact]]:
    return [await _read_image(upload) for upload in uploads]


def _operation_failed(e: OperationFailedError) -> JSONResponse:
    detail = ErrorDetail(kind=e.classified.kind, message=e.classified.message)
    return JSONResponse(status_code=502, content={"detail": detail.model_dump(mode="json")})


async def _start(orchestrator_call) -> RunCreatedResponse:
    """Submit a run and hand its event stream to the background processor"""
    try:
        ctx, stream = orchestrator_call()
    except CooldownActiveError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    snapshot = task_processor.register_run(ctx.run_id, ctx.mode, ctx.total)
    logger.info(f"🎬 Starting background task for {ctx.mode.value} run {ctx.run_id}")
    await task_processor.start_run(ctx, stream)
    return RunCreatedResponse(run_id=ctx.run_id, mode=ctx.mode, total=snapshot.total)


# Style and status endpoints
@settings_router.get("/styles", response_model=StyleListResponse)
async def list_styles(orchestrator: RunOrchestrator = Depends(get_orchestrator)):
    """List the selectable style templates"""
    default = orchestrator.styles.default
    return StyleListResponse(
        styles=[
            StyleResponse(id=style.id, name=style.name, prompt=style.prompt, images_per_task=style.images_per_task)
            for style in orchestrator.styles
        ],
        default_style_id=default.id if default else None,
    )


@settings_router.get("/status", response_model=RateLimitStatus)
async def rate_limit_status(orchestrator: RunOrchestrator = Depends(get_orchestrator)):
    """Requests used in the current window and the cooldown countdown"""
    return RateLimitStatus(**orchestrator.governor.status())


# Run endpoints
@runs_router.post("/single", response_model=RunCreatedResponse)
async def create_single_run(
    images: List[UploadFile] = File(..., description="Source image(s)"),
    style_id: Optional[str] = Form(None, description="Style template id"),
    custom_prompt: Optional[str] = Form(None, description="Custom prompt, overrides the style"),
    orchestrator: RunOrchestrator = Depends(get_orchestrator)
):
    """Apply one prompt to the uploaded image(s)"""
    artifacts = await _read_images(images)
    return await _start(lambda: orchestrator.submit_single(artifacts, style_id, custom_prompt))


@runs_router.post("/batch", response_model=RunCreatedResponse)
async def create_batch_run(
    style_id: str = Form(..., description="Style template id"),
    images: List[UploadFile] = File(..., description="Image slots in order; empty parts are empty slots"),
    orchestrator: RunOrchestrator = Depends(get_orchestrator)
):
    """Process every filled image slot with one style, strictly in order"""
    artifacts = await _read_images(images)
    return await _start(lambda: orchestrator.submit_batch(style_id, artifacts))


@runs_router.post("/variations", response_model=RunCreatedResponse)
async def create_variations_run(
    images: List[UploadFile] = File(..., description="Source image(s)"),
    quantity: int = Form(DEFAULT_VARIATIONS, description="Number of variations (clamped to 1-60)"),
    style_id: Optional[str] = Form(None, description="Style template id"),
    custom_prompt: Optional[str] = Form(None, description="Custom prompt, overrides the style"),
    orchestrator: RunOrchestrator = Depends(get_orchestrator)
):
    """Generate several variations of one request concurrently"""
    artifacts = await _read_images(images)
    return await _start(lambda: orchestrator.submit_variations(artifacts, quantity, style_id, custom_prompt))


@runs_router.get("/{run_id}", response_model=RunDetail)
async def get_run(run_id: str):
    """Current snapshot of a run"""
    snapshot = task_processor.get_snapshot(run_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return RunDetail.from_snapshot(snapshot)


@runs_router.post("/{run_id}/cancel")
async def cancel_run(run_id: str):
    """Stop a running run"""
    if task_processor.get_snapshot(run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")
    cancelled = await task_processor.cancel_run(run_id)
    return {"run_id": run_id, "cancelled": cancelled}


@runs_router.delete("/{run_id}")
async def discard_run(run_id: str):
    """Forget a finished run"""
    if task_processor.get_snapshot(run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")
    if not task_processor.discard_run(run_id):
        raise HTTPException(status_code=409, detail="Run is still running")
    return {"run_id": run_id, "discarded": True}


# Direct image endpoints
@images_router.post("/enhance", response_model=EnhanceResponse)
async def enhance_image(
    image: UploadFile = File(..., description="Image to enhance"),
    quality: str = Form(..., description="HD, 2K or 4K"),
    orchestrator: RunOrchestrator = Depends(get_orchestrator)
):
    """Upscale an image to the requested tier"""
    if quality not in ENHANCEMENT_TIERS:
        raise HTTPException(status_code=400, detail=f"Invalid quality: {quality}. Must be one of {', '.join(ENHANCEMENT_TIERS)}")
    artifact = await _read_image(image)
    if artifact is None:
        raise HTTPException(status_code=400, detail="Please upload an image to enhance.")

    try:
        enhanced = await orchestrator.enhance(artifact, quality)
    except CooldownActiveError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except OperationFailedError as e:
        return _operation_failed(e)
    return EnhanceResponse(quality=quality, image_data_uri=enhanced.to_data_uri())


@images_router.post("/text-to-image", response_model=EnhanceResponse)
async def text_to_image(request: TextToImageRequest, orchestrator: RunOrchestrator = Depends(get_orchestrator)):
    """Generate an image from a prompt without a source image"""
    try:
        image = await orchestrator.text_to_image(request.prompt)
    except CooldownActiveError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OperationFailedError as e:
        return _operation_failed(e)
    return EnhanceResponse(quality="original", image_data_uri=image.to_data_uri())


@images_router.post("/prompt-variations", response_model=PromptVariationsResponse)
async def prompt_variations(request: PromptVariationsRequest, orchestrator: RunOrchestrator = Depends(get_orchestrator)):
    """Rewrite a prompt into several distinct variations"""
    try:
        prompts = await orchestrator.prompt_variations(request.base_prompt, request.count)
    except OperationFailedError as e:
        return _operation_failed(e)
    return PromptVariationsResponse(prompts=prompts)


# Credential endpoints
@settings_router.get("/credential", response_model=CredentialStatus)
async def get_credential(orchestrator: RunOrchestrator = Depends(get_orchestrator)):
    """Whether a personal API key is stored (masked)"""
    return CredentialStatus(**orchestrator.credential_summary())


@settings_router.put("/credential", response_model=CredentialStatus)
async def save_credential(request: CredentialRequest, orchestrator: RunOrchestrator = Depends(get_orchestrator)):
    """Validate a personal API key and store it"""
    if not request.api_key.strip():
        raise HTTPException(status_code=400, detail="API key must not be empty.")
    try:
        await orchestrator.save_credential(request.api_key)
    except OperationFailedError as e:
        return _operation_failed(e)
    return CredentialStatus(**orchestrator.credential_summary())


@settings_router.delete("/credential", response_model=CredentialStatus)
async def delete_credential(orchestrator: RunOrchestrator = Depends(get_orchestrator)):
    """Remove the stored personal API key"""
    orchestrator.delete_credential()
    return CredentialStatus(**orchestrator.credential_summary())


# WebSocket endpoint
@ws_router.websocket("/{run_id}")
async def websocket_run_updates(websocket: WebSocket, run_id: str):
    """Live event stream for a run"""
    await websocket_endpoint(websocket, run_id)


# Include all routers
api_router.include_router(runs_router)
api_router.include_router(images_router)
api_router.include_router(settings_router)
api_router.include_router(ws_router)
