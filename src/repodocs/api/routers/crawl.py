"""Repository crawl endpoint."""

import logging
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from repodocs.api.deps import get_crawl_function, get_settings
from repodocs.api.errors import http_error, status_for
from repodocs.api.schemas import CrawlRequest, CrawlResponse, RepoFileOut
from repodocs.config import Config
from repodocs.errors import ValidationError
from repodocs.generation.orchestrator import CrawlFunction
from repodocs.repo.url_parser import parse_repo_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["crawl"])


@router.post("/crawl", response_model=CrawlResponse)
async def crawl(
    body: CrawlRequest,
    crawl_function: CrawlFunction = Depends(get_crawl_function),
    settings: Config = Depends(get_settings),
):
    """Crawl a repository and return its documentable files.

    A malformed URL is rejected with 400 before any request is sent to
    GitHub. Failures after that are reported in the body with ``success``
    false and a status code matching the error kind.
    """
    try:
        parse_repo_url(body.repo_url)
    except ValidationError as e:
        raise http_error(e)

    start_time = time.perf_counter()
    result = await crawl_function(body.repo_url, body.github_token or settings.github_token)
    latency_ms = int((time.perf_counter() - start_time) * 1000)

    if result.error is not None:
        logger.warning(f"Crawl of {body.repo_url} failed: {result.error.message}")
        response = CrawlResponse(
            success=False,
            error=result.error.message,
            error_kind=result.error.kind,
            stats=result.stats.to_dict(),
            latency_ms=latency_ms,
        )
        return JSONResponse(
            status_code=status_for(result.error),
            content=response.model_dump(by_alias=True),
        )

    return CrawlResponse(
        success=True,
        files=[
            RepoFileOut(path=f.path, content=f.content, size=f.size, language=f.language)
            for f in result.files
        ],
        stats=result.stats.to_dict(),
        latency_ms=latency_ms,
    )
