from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from genorch import __version__
from genorch.api.routes import generations, worker
from genorch.config import get_settings
from genorch.core.exceptions import global_exception_handler, http_exception_handler, request_validation_exception_handler, submission_exception_handler
from genorch.core.lifespan import lifespan
from genorch.core.middleware import RequestLoggingMiddleware
from genorch.jobs.errors import SubmissionError

settings = get_settings()

app = FastAPI(title="genorch", version=__version__, lifespan=lifespan, docs_url=None, redoc_url=None)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "DELETE", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["x-request-id"])

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(SubmissionError, submission_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": __version__}


app.include_router(generations.router, prefix="/v1/generations", tags=["generations"])
app.include_router(worker.router, prefix="/internal", tags=["worker"])
