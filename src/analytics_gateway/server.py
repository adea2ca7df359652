"""FastAPI gateway: query proxy for the browser plus the dashboard API."""
from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from contextlib import asynccontextmanager
from typing import Any, Dict, Tuple

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .configuration import UpstreamConfig, load_gateway_config
from .logging_config import configure_logging

load_dotenv()
config = load_gateway_config()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(config.logging)
    logger.info(
        "Gateway ready | upstream=%s credential=%s",
        config.upstream.host,
        "set" if config.upstream.api_key else "missing",
    )
    yield


app = FastAPI(title="Analytics Gateway", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors.allow_origins,
    allow_credentials=config.cors.allow_credentials,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

if config.mount_dashboard:
    from backend.analytics_dashboard.server import app as dashboard_app

    app.mount("/dashboard", dashboard_app)


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/api/projects/{project_id}/query")
async def proxy_query(project_id: str, request: Request) -> JSONResponse:
    """
    Forward an analytical query to the upstream API with the server-side credential.

    The request body is passed through untouched; the upstream status code and
    JSON body are returned as-is.
    """

    upstream = config.upstream
    if not upstream.api_key:
        raise HTTPException(status_code=500, detail="POSTHOG_API_KEY is not configured.")

    body = await request.body()
    status, payload = await asyncio.to_thread(forward_query, upstream, project_id, body)
    return JSONResponse(status_code=status, content=payload)


def forward_query(upstream: UpstreamConfig, project_id: str, body: bytes) -> Tuple[int, Any]:
    url = f"{upstream.host.rstrip('/')}/api/projects/{urllib.parse.quote(project_id, safe='@')}/query"
    forwarded = urllib.request.Request(
        url,
        data=body,
        headers={
            "Authorization": f"Bearer {upstream.api_key}",
            "Content-Type": "application/json",
        },
        method="POST",
    )
    try:
        with urllib.request.urlopen(forwarded, timeout=upstream.timeout_seconds) as response:
            return response.status, _decode(response.read())
    except urllib.error.HTTPError as exc:
        logger.warning("Upstream query returned HTTP %s", exc.code)
        return exc.code, _decode(exc.read())
    except urllib.error.URLError as exc:
        logger.warning("Upstream unreachable [%s]: %s", url, exc.reason)
        return 502, {"detail": f"Upstream unreachable: {exc.reason}"}
    except TimeoutError:
        logger.warning("Upstream query timed out after %ss [%s]", upstream.timeout_seconds, url)
        return 502, {"detail": f"Upstream timed out after {upstream.timeout_seconds}s"}
    except OSError as exc:
        logger.warning("Upstream connection failed [%s]: %s", url, exc)
        return 502, {"detail": f"Upstream unreachable: {exc}"}


def _decode(raw: bytes) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {"detail": raw.decode("utf-8", errors="replace")}
