import logging
import uuid
from typing import List
from fastapi import FastAPI, Depends, File, Request, Response, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from app.auth import get_current_user
from app.cache import image_cache_key, metadata_cache_key
from app.config import settings
from app.core.config import ERROR_STATUS_TEMPLATE, JOB_KEY_PARAM
from app.core.logging import configure_logging
from app.errors import InputValidationError, NotFoundError, PipelineError, ProviderError
from app.models.job import parse_criteria
from app.schemas import DetectionRequest, DetectionResponse, ImageMetadata, ImageObject
from app.services import Services, get_services

configure_logging(settings.LOG_LEVEL, settings.LOG_FILE_PATH)
logger = logging.getLogger(__name__)

app = FastAPI(title="Urban Insight")

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add error handling middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"Request {request.url} failed: {str(e)}", exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

@app.exception_handler(PipelineError)
async def pipeline_exception_handler(request: Request, exc: PipelineError):
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}

@app.post("/ai/v1/detection", response_model=DetectionResponse)
async def detection(
    request: DetectionRequest,
    response: Response,
    username: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Start (or join) the analysis pipeline for an image and criteria."""
    criteria = parse_criteria(request.criteria)
    runner = services.runner
    state = await runner.run(runner.submit, request.image_name, criteria, username)

    outcome = state.get("outcome")
    if outcome == "queued":
        response.status_code = 202
        return DetectionResponse(status="queued", message="Job queued", job_key=state.get("job_key"))
    if outcome == "running":
        return DetectionResponse(status="running", message="Job still running", job_key=state.get("job_key"))
    if outcome == "completed":
        return DetectionResponse(status="completed", message="Job completed", result=state.get("result"))
    if outcome == "failed":
        raise ProviderError(ERROR_STATUS_TEMPLATE.format(stage=state.get("failed_stage") or "pipeline"))
    raise ValueError(f"Unexpected pipeline outcome {outcome!r}")

@app.post("/webhooks/v1/replicate/{stage}")
async def replicate_webhook(stage: str, request: Request, services: Services = Depends(get_services)):
    """Completion callback from the async provider."""
    body = await request.body()
    job_key = request.query_params.get(JOB_KEY_PARAM)
    runner = services.runner
    state = await runner.run(services.webhooks.handle, stage, job_key, request.headers, body)
    return {"status": state.get("outcome"), "job_key": job_key}

@app.post("/images/v1/images", status_code=201, response_model=List[ImageObject])
async def upload_images(
    image: List[UploadFile] = File(...),
    username: str = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    config = services.settings
    if len(image) > config.MAX_UPLOAD_FILES:
        raise InputValidationError(f"You can only upload {config.MAX_UPLOAD_FILES} files at once")

    uploaded = []
    for upload in image:
        raw = await upload.read()
        if not raw:
            raise InputValidationError("Uploaded file is empty")
        if len(raw) > config.MAX_UPLOAD_BYTES:
            raise PipelineError("File size exceeds upload limit", status_code=413)

        name = f"{username}-{uuid.uuid4()}.jpg"
        services.storage.put(name, raw, {}, content_type="image/jpeg")
        uploaded.append(ImageObject(name=name, href=services.image_url(name)))
    return uploaded

@app.get("/images/v1/images", response_model=List[ImageObject])
async def list_images(username: str = Depends(get_current_user), services: Services = Depends(get_services)):
    names = services.storage.list(prefix=f"{username}-")
    return [ImageObject(name=name, href=services.image_url(name)) for name in names]

@app.get("/images/v1/image/{name}")
async def get_image(name: str, services: Services = Depends(get_services)):
    key = image_cache_key(name)
    cached = services.cache.get(key)
    if cached is None:
        obj = services.storage.get(name)
        if obj is None:
            raise NotFoundError("Image not found")
        cached = (obj.body, obj.content_type)
        services.cache.put(key, cached)

    body, content_type = cached
    return Response(
        content=body,
        media_type=content_type,
        headers={"Cache-Control": "private, max-age=31536000"},
    )

@app.get("/images/v1/image/{name}/metadata", response_model=ImageMetadata)
async def get_image_metadata(name: str, services: Services = Depends(get_services)):
    key = metadata_cache_key(name)
    cached = services.cache.get(key)
    if cached is None:
        cached = ImageMetadata(name=name, metadata=services.metadata.read(name))
        services.cache.put(key, cached)
    return cached
