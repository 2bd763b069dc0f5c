import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Header, HTTPException, Request, Response

app = FastAPI(
    title="Mock Object Storage Provider",
    description="Bucket-style, write-once object storage API",
)

# Configuration
STORAGE_PROVIDER_API_KEY = os.getenv("STORAGE_PROVIDER_API_KEY")
if not STORAGE_PROVIDER_API_KEY:
    raise ValueError("STORAGE_PROVIDER_API_KEY is not set")

# Objects are never evicted: stored URLs must stay valid
objects: Dict[str, Dict[str, Any]] = {}


def _object_id(bucket: str, key: str) -> str:
    return f"{bucket}/{key}"


def _check_api_key(authorization: Optional[str]) -> None:
    if authorization != f"Bearer {STORAGE_PROVIDER_API_KEY}":
        raise HTTPException(status_code=401, detail="Invalid API key")


@app.post("/object/{bucket}/{key:path}")
async def upload_object(
    bucket: str,
    key: str,
    request: Request,
    authorization: Optional[str] = Header(None),
    x_upsert: str = Header("false"),
    simulate_error: Optional[str] = None,
) -> Dict[str, str]:
    """Store an object; an existing key is only replaced with ``x-upsert: true``"""
    _check_api_key(authorization)

    # Simulate error scenarios if requested
    if simulate_error == "500":
        raise HTTPException(
            status_code=500,
            detail="Internal Server Error - Storage temporarily unavailable",
        )

    object_id = _object_id(bucket, key)
    if object_id in objects and x_upsert.lower() != "true":
        raise HTTPException(status_code=409, detail="The resource already exists")

    objects[object_id] = {
        "content": await request.body(),
        "content_type": request.headers.get(
            "content-type", "application/octet-stream"
        ),
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    return {"Key": object_id}


@app.get("/object/public/{bucket}/{key:path}")
async def download_object(bucket: str, key: str) -> Response:
    """Serve a stored object at its public URL"""
    stored = objects.get(_object_id(bucket, key))
    if stored is None:
        raise HTTPException(status_code=404, detail="Object not found")
    return Response(content=stored["content"], media_type=stored["content_type"])


@app.get("/health")
async def health_check() -> Dict[str, str]:
    """Health check endpoint"""
    return {"status": "healthy", "service": "storage_provider"}


@app.get("/objects")
async def list_objects() -> Dict[str, List[Dict[str, Any]]]:
    """List stored objects without their content (for debugging)"""
    return {
        "objects": [
            {
                "key": object_id,
                "content_type": stored["content_type"],
                "size": len(stored["content"]),
                "created_at": stored["created_at"],
            }
            for object_id, stored in objects.items()
        ]
    }


if __name__ == "__main__":
    port = int(os.getenv("PORT", 8003))
    host = os.getenv("HOST", "0.0.0.0")  # nosec B104
    uvicorn.run(app, host=host, port=port)
