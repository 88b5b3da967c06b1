"""AI text generation, metered against the monthly allowance."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool

from propel_api.auth.session_auth import get_tenant_context
from propel_api.dependencies import get_enforcement_engine, get_rate_limiter
from propel_api.errors import RateLimited
from propel_api.generation.provider import TextGenerator, get_text_generator, normalize_prompt
from propel_api.pricing.enforcement import EnforcementEngine
from propel_api.rate_limiter import RateLimiter
from propel_api.schemas import GenerateRequest, GenerateResponse, GenerationMeta
from propel_api.tenancy.context import TenantContext

router = APIRouter(prefix="/v1/ai", tags=["ai"])
logger = logging.getLogger(__name__)

RATE_LIMIT_SCOPE = "ai.generate"


@router.post("/generate", response_model=GenerateResponse)
async def generate(
    request: Optional[GenerateRequest] = None,
    ctx: TenantContext = Depends(get_tenant_context),
    engine: EnforcementEngine = Depends(get_enforcement_engine),
    limiter: RateLimiter = Depends(get_rate_limiter),
    generator: TextGenerator = Depends(get_text_generator),
) -> GenerateResponse:
    """
    Generate text for the active organization.

    FREE organizations get 402 once the monthly allowance is used up. A
    provider failure still returns 200 with a stub output and
    ``meta.degraded=true``; that response counts as one generation.
    """
    # Redis and database calls are blocking; keep them off the event loop
    rl = await run_in_threadpool(limiter.check_rate_limit, ctx.org_id, RATE_LIMIT_SCOPE)
    if not rl.allowed:
        raise RateLimited(
            f"Too many generation requests. Retry in {rl.reset}s.",
            retry_after=rl.reset,
        )

    prompt = normalize_prompt(request.prompt if request else None)

    async with engine.ametered_generation(ctx.org_id, ctx.plan) as charge:
        result = await generator.generate(prompt)

    logger.info(
        "AI_GENERATION_COMPLETED",
        extra={
            "org_id": ctx.org_id,
            "plan": ctx.plan,
            "used": charge.used,
            "degraded": result.degraded,
        },
    )
    return GenerateResponse(
        output=result.text,
        meta=GenerationMeta(
            plan=ctx.plan,
            month=charge.month,
            used=charge.used,
            remaining=charge.remaining,
            degraded=result.degraded,
        ),
    )
