"""
FastAPI application — the Saathi chat proxy entry point.

Endpoints:
  OPTIONS /{any}   CORS pre-flight, empty body
  POST    /chat    {messages, language?} → upstream SSE stream, or {error}
  GET     /health  liveness + whether the gateway credential is present
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from saathi import __version__
from saathi.config import get_config
from saathi.errors import SaathiError
from saathi.languages import load_language_table
from saathi.proxy import ChatProxy

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Globals — initialized at startup
# ---------------------------------------------------------------------------
proxy: ChatProxy | None = None


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        from pathlib import Path
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def _get_proxy() -> ChatProxy:
    global proxy
    if proxy is None:
        proxy = ChatProxy.from_config()
    return proxy


def cors_headers() -> dict:
    c_cfg = get_config().get("cors", {})
    return {
        "Access-Control-Allow-Origin": c_cfg.get("allow_origin", "*"),
        "Access-Control-Allow-Headers": c_cfg.get(
            "allow_headers", "authorization, x-client-info, apikey, content-type"
        ),
        "Access-Control-Allow-Methods": c_cfg.get("allow_methods", "POST, OPTIONS"),
    }


def _error_response(payload: dict, status_code: int) -> JSONResponse:
    return JSONResponse(payload, status_code=status_code, headers=cors_headers())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    global proxy

    cfg = get_config()
    _setup_logging(cfg)

    languages = load_language_table(cfg.get("languages", {}).get("path") or None)
    proxy = ChatProxy.from_config()

    logger.info(
        "Saathi proxy started — listening on %s:%s, gateway %s (model %s)",
        cfg["server"]["host"],
        cfg["server"]["port"],
        proxy.gateway.url,
        proxy.gateway.model,
    )
    logger.info("Languages: %s (default %s)", ", ".join(languages), proxy.default_language)
    if not proxy.gateway.configured:
        logger.warning(
            "%s is not set — every /chat request will fail until it is",
            proxy.gateway.api_key_env,
        )

    yield

    logger.info("Saathi proxy shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Saathi",
    description="Streaming chat proxy for the Saathi wellness companion.",
    version=__version__,
    lifespan=lifespan,
)


@app.options("/{path:path}")
async def preflight(path: str):
    """CORS pre-flight. Answers every path the same way."""
    return Response(status_code=204, headers=cors_headers())


@app.post("/chat")
async def chat(request: Request):
    """
    Forward the conversation to the model gateway and relay its SSE body.
    Every failure comes back as {"error": ...} with 429, 402 or 500.
    """
    try:
        payload = await request.json()
        upstream = await _get_proxy().open_chat_stream(payload)
    except SaathiError as e:
        return _error_response(e.to_payload(), e.status_code)
    except Exception as e:
        logger.exception("Chat error")
        return _error_response({"error": str(e) or "Unknown error"}, 500)

    return StreamingResponse(
        upstream.iter_bytes(),
        media_type="text/event-stream",
        headers={
            **cors_headers(),
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
        background=BackgroundTask(upstream.aclose),
    )


@app.get("/health")
async def health():
    """Health check."""
    p = _get_proxy()
    return JSONResponse({
        "status": "ok",
        "version": __version__,
        "model": p.gateway.model,
        "credential": p.gateway.configured,
    }, headers=cors_headers())


# ---------------------------------------------------------------------------
# Run with: python -m saathi.main
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn

    cfg = get_config()
    uvicorn.run(
        "saathi.main:app",
        host=cfg["server"]["host"],
        port=cfg["server"]["port"],
        reload=False,
    )
