"""Quick scan and deep crawl routes."""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from siteprompt.api.deps import Orchestrator
from siteprompt.errors import CrawlError
from siteprompt.services.orchestrator import CrawlResult

router = APIRouter()


class QuickScanRequest(BaseModel):
    """Request to scan a homepage and a few of its links."""

    url: str


class DeepCrawlRequest(BaseModel):
    """Request to discover and extract a whole site."""

    url: str
    max_pages: int = Field(default=50, ge=1, le=100)
    crawl_depth: int = Field(default=2, ge=1, le=4)


class CrawlResponse(BaseModel):
    """Aggregated page text."""

    crawled_text: str
    page_count: int


def _to_response(result: CrawlResult) -> CrawlResponse:
    return CrawlResponse(crawled_text=result.crawled_text, page_count=result.page_count)


@router.post("/scan/quick", response_model=CrawlResponse)
async def quick_scan(data: QuickScanRequest, orchestrator: Orchestrator) -> CrawlResponse:
    """Scan the homepage plus up to four internal links."""
    try:
        result = await orchestrator.quick_scan(data.url)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except CrawlError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return _to_response(result)


@router.post("/crawl/deep", response_model=CrawlResponse)
async def deep_crawl(data: DeepCrawlRequest, orchestrator: Orchestrator) -> CrawlResponse:
    """Crawl the site (sitemap first) and extract every discovered page."""
    try:
        result = await orchestrator.deep_crawl(data.url, data.max_pages, data.crawl_depth)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except CrawlError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return _to_response(result)
