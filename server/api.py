"""
server/api.py
FastAPI backend for:
- POST /api/analyze: CTR/position/benchmark payload -> AI summary text
- GET /health

Notes:
- Every failure is a JSON body {"error": <code>, "detail": ...}, including
  405 for wrong verbs and 404 for unknown paths.
- The analyze pipeline blocks on the upstream call, so it runs in the threadpool.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from server.analyze import analyze_payload

logger = logging.getLogger("ctr-insights")
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO")

app = FastAPI(title="CTR Insights")

# -------------------------------
# CORS (the analyzer page is served from another origin)
# -------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

HTTP_ERROR_CODES = {
    400: "invalid_input",
    404: "not_found",
    405: "method_not_allowed",
    413: "payload_too_large",
}


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = HTTP_ERROR_CODES.get(exc.status_code, "http_error")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": code, "detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


# -------------------------------
# Routes
# -------------------------------
@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/api/analyze")
async def analyze(request: Request) -> JSONResponse:
    body: Any = await request.body()
    status, content = await run_in_threadpool(analyze_payload, body)
    return JSONResponse(status_code=status, content=content)
