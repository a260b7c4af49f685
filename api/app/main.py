"""
FastAPI server for FalSprite sprite generation
"""

import base64
import binascii
import logging
from typing import Any, Optional

import httpx
from fastapi import Body, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from falsprite.config import PORT, PUBLIC_DIR, SHOWCASE_JSON, get_fal_key, get_google_api_key
from falsprite.errors import GenerationError, StorageError, ValidationError
from falsprite.fal_client import FalClient
from falsprite.generate import Rewriter, fal_rewriter, generate_sprite
from falsprite.rewrite import run_gemini_rewrite
from falsprite.showcase import ShowcaseRecord, load_showcase, save_showcase

from .models import GenerateRequest, GenerateResponse, UploadRequest, UploadResponse

# Reduce noisy logging from HTTP clients
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 2 * 1024 * 1024

app = FastAPI(title="FalSprite API", version="1.0.0")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "x-fal-key"],
)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def create_fal_client(api_key: str) -> FalClient:
    return FalClient(api_key)


def create_rewriter(client: FalClient) -> Rewriter:
    """Gemini when GOOGLE_API_KEY is configured, otherwise the fal queue."""
    if get_google_api_key():
        async def rewrite(prompt: str, system_prompt: str):
            return await run_gemini_rewrite(prompt, system_prompt)
        return rewrite
    return fal_rewriter(client)


def require_api_key(header_key: Optional[str], body_key: Optional[str] = None) -> str:
    api_key = get_fal_key(header_key or body_key)
    if not api_key:
        raise HTTPException(status_code=400, detail="Missing FAL API key")
    return api_key


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError):
    return JSONResponse(status_code=exc.status, content={"error": exc.message, "warnings": exc.warnings})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    return JSONResponse(status_code=502, content={"error": exc.message})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


# ============================================================================
# ROUTES
# ============================================================================

@app.get("/health")
def health_check():
    return {"ok": True, "service": "falsprite"}


@app.post("/api/generate", response_model=GenerateResponse)
async def generate(req: GenerateRequest, x_fal_key: Optional[str] = Header(default=None)):
    """
    Rewrite the prompt, generate a sprite sheet and remove its background.

    Rewrite and background-removal problems come back as `warnings`; a failed
    sprite job is an error response with the remote's status code.
    """
    api_key = require_api_key(x_fal_key, req.apiKey)

    async with create_fal_client(api_key) as client:
        result = await generate_sprite(
            client,
            prompt=req.prompt,
            grid_size=req.gridSize,
            image_url=req.imageUrl,
            rewriter=create_rewriter(client),
        )

    return result.to_response()


@app.post("/api/upload", response_model=UploadResponse)
async def upload(req: UploadRequest, x_fal_key: Optional[str] = Header(default=None)):
    """Upload a base64 reference image to fal storage."""
    api_key = require_api_key(x_fal_key, req.apiKey)

    try:
        data = base64.b64decode(req.data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Invalid base64 data")

    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Payload too large")

    async with create_fal_client(api_key) as client:
        url = await client.upload_bytes(data, req.contentType, req.filename or "upload.png")

    return {"url": url}


@app.get("/api/fal/media")
async def proxy_media(url: str = Query(default=""), x_fal_key: Optional[str] = Header(default=None)):
    """Proxy a fal media URL so the browser can read it without CORS issues."""
    media_url = url.strip()
    async with create_fal_client(get_fal_key(x_fal_key)) as client:
        try:
            response = await client.fetch_media(media_url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Media proxy failed for {media_url}: {e}")
            return JSONResponse(status_code=502, content={"error": "Unable to proxy media"})

    if not response.is_success:
        return JSONResponse(status_code=response.status_code, content={"error": "Unable to fetch media"})

    return Response(
        content=response.content,
        media_type=response.headers.get("content-type", "application/octet-stream"),
        headers={"Cache-Control": "no-store"},
    )


@app.get("/api/showcase")
def get_showcase():
    return [record.to_json() for record in load_showcase(SHOWCASE_JSON)]


@app.post("/api/showcase")
def replace_showcase(body: Any = Body(...)):
    """Replace the showcase index with the posted JSON array."""
    if not isinstance(body, list):
        raise HTTPException(status_code=400, detail="Body must be a JSON array")

    try:
        records = [ShowcaseRecord.model_validate(item) for item in body]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    save_showcase(SHOWCASE_JSON, records)
    return {"ok": True, "count": len(records)}


if PUBLIC_DIR.is_dir():
    app.mount("/", StaticFiles(directory=str(PUBLIC_DIR), html=True), name="public")


def run():
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    run()
