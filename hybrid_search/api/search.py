"""
Search HTTP API

POST /search        hybrid search
POST /cache/clear   drop cached results
GET  /cache/stats   {size, hitCount, missCount}
GET  /health        liveness
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from hybrid_search.config.logging_config import setup_logger
from hybrid_search.services.errors import FusionUnavailableError, InputValidationError
from hybrid_search.services.models import LabelFilterSpec
from hybrid_search.services.retrieval import HybridSearchPipeline

logger = setup_logger(__name__)

RETRY_AFTER_SECONDS = "5"


class LabelFiltersBody(BaseModel):
    """Label filters in the request's camelCase shape."""

    model_config = ConfigDict(populate_by_name=True)

    include_meeting_notes: bool = Field(False, alias="includeMeetingNotes")
    include_archived: bool = Field(False, alias="includeArchived")
    include_labels: list[str] = Field(default_factory=list, alias="includeLabels")
    exclude_labels: list[str] = Field(default_factory=list, alias="excludeLabels")

    def to_spec(self) -> LabelFilterSpec:
        return LabelFilterSpec(
            include_meeting_notes=self.include_meeting_notes,
            include_archived=self.include_archived,
            include_labels=tuple(sorted(self.include_labels)),
            exclude_labels=tuple(sorted(self.exclude_labels)),
        )


class SearchBody(BaseModel):
    """Request model for hybrid search"""

    model_config = ConfigDict(populate_by_name=True)

    query: str = ""
    top_k: Optional[int] = Field(None, alias="topK")
    label_filters: Optional[LabelFiltersBody] = Field(None, alias="labelFilters")
    table_name: Optional[str] = Field(None, alias="tableName")


def create_app(pipeline: HybridSearchPipeline) -> FastAPI:
    """Build the FastAPI app around an already constructed pipeline."""
    app = FastAPI(title="Hybrid Document Search API")
    app.state.pipeline = pipeline

    @app.exception_handler(InputValidationError)
    async def _invalid_request(request: Request, exc: InputValidationError):
        return JSONResponse(status_code=400, content={"error": "invalid_request", "detail": str(exc)})

    @app.exception_handler(FusionUnavailableError)
    async def _unavailable(request: Request, exc: FusionUnavailableError):
        logger.error("Search unavailable: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"error": "search_unavailable", "detail": str(exc), "retryable": exc.retryable},
            headers={"Retry-After": RETRY_AFTER_SECONDS},
        )

    @app.post("/search")
    async def search(body: SearchBody):
        """Hybrid search over the configured corpus"""
        response = await app.state.pipeline.search(
            body.query,
            top_k=body.top_k,
            label_filters=body.label_filters.to_spec() if body.label_filters else None,
            table_name=body.table_name,
        )
        return response.to_dict()

    @app.post("/cache/clear")
    async def clear_cache():
        """Drop every cached search response"""
        removed = app.state.pipeline.clear_cache()
        return {"cleared": removed}

    @app.get("/cache/stats")
    async def cache_stats():
        """Result cache statistics"""
        return app.state.pipeline.get_cache_stats().to_dict()

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy"}

    return app


def run(pipeline: HybridSearchPipeline, host: str = "0.0.0.0", port: int = 8000) -> None:
    uvicorn.run(create_app(pipeline), host=host, port=port)
