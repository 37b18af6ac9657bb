"""Text generation and credential pool routes."""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from siteprompt.api.deps import Pool, TextGenerator
from siteprompt.errors import GenerationError, NoCredentialsAvailableError

router = APIRouter()


class GenerateRequest(BaseModel):
    """Prompt and sampling options."""

    prompt: str = Field(min_length=1)
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_tokens: int | None = Field(default=None, ge=1)
    model: str | None = None


class GenerateResponse(BaseModel):
    """Generated text."""

    content: str
    model: str
    usage: dict[str, int] | None = None


class CredentialStats(BaseModel):
    key_preview: str
    tokens_used: int
    token_limit: int
    is_active: bool
    is_suspended: bool
    has_geo_restriction: bool
    suspended_reason: str | None = None
    last_used_at: float | None = None


class CredentialStatsResponse(BaseModel):
    """Pool summary plus per-key counters."""

    total_keys: int
    available_keys: int
    suspended_keys: int
    location_restricted_keys: int
    limit_exceeded_keys: int
    total_tokens_used: int
    keys: list[CredentialStats]


@router.post("/generate", response_model=GenerateResponse)
async def generate(data: GenerateRequest, generator: TextGenerator) -> GenerateResponse:
    """Generate text with the least-used available API key."""
    try:
        result = await generator.generate(
            data.prompt,
            temperature=data.temperature,
            max_tokens=data.max_tokens,
            model=data.model,
        )
    except NoCredentialsAvailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except GenerationError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    return GenerateResponse(content=result.content, model=result.model, usage=result.usage)


@router.get("/credentials/stats", response_model=CredentialStatsResponse)
async def credential_stats(pool: Pool) -> CredentialStatsResponse:
    """Usage and health of every configured key (previews only)."""
    return CredentialStatsResponse(
        **pool.summary(),
        keys=[CredentialStats(**entry) for entry in pool.stats()],
    )


@router.post("/credentials/{key_suffix}/reset", response_model=CredentialStats)
async def reset_credential(key_suffix: str, pool: Pool) -> CredentialStats:
    """Manually clear usage and suspension flags for the key ending in ``key_suffix``."""
    key = pool.find_by_preview(key_suffix)
    if key is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No unique API key ends with that suffix",
        )
    pool.reset_credential(key)
    record = pool.get(key)
    return next(
        CredentialStats(**entry) for entry in pool.stats() if entry["key_preview"] == record.preview
    )
