"""
AI content API
Post generation, hashtag suggestions and content ideas; every call is
metered against the aiGenerations quota before the model is asked
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from socialpulse.api.deps import get_content_generator, get_entitlement_gate
from socialpulse.config.plan_limits import FEATURE_AI_GENERATIONS
from socialpulse.services.ai_content import ContentGenerator
from socialpulse.services.entitlements import EntitlementGate
from socialpulse.utils.database import get_db
from socialpulse.utils.exceptions import require_fields

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


class GenerateRequest(BaseModel):
    userId: Optional[str] = None
    platform: Optional[str] = None
    topic: Optional[str] = None
    tone: Optional[str] = "professional"


@router.post("/generate")
async def generate_post(
    body: GenerateRequest,
    gate: EntitlementGate = Depends(get_entitlement_gate),
    generator: ContentGenerator = Depends(get_content_generator),
    db: AsyncSession = Depends(get_db),
):
    require_fields(userId=body.userId, platform=body.platform, topic=body.topic)

    check = await gate.consume(db, body.userId, FEATURE_AI_GENERATIONS)
    suggestion = await generator.generate_post(body.platform, body.topic, body.tone or "professional")

    logger.info(f"Generated {body.platform} post for user {body.userId} ({check.used}/{check.limit})")
    return {**suggestion, "usage": check.to_dict()}


class HashtagRequest(BaseModel):
    userId: Optional[str] = None
    topic: Optional[str] = None
    platform: Optional[str] = None


class IdeasRequest(BaseModel):
    userId: Optional[str] = None
    niche: Optional[str] = None
    platform: Optional[str] = None


@router.post("/hashtags")
async def suggest_hashtags(
    body: HashtagRequest,
    gate: EntitlementGate = Depends(get_entitlement_gate),
    generator: ContentGenerator = Depends(get_content_generator),
    db: AsyncSession = Depends(get_db),
):
    require_fields(userId=body.userId, topic=body.topic)

    check = await gate.consume(db, body.userId, FEATURE_AI_GENERATIONS)
    result = await generator.suggest_hashtags(body.topic, body.platform)
    return {**result, "usage": check.to_dict()}


@router.post("/ideas")
async def content_ideas(
    body: IdeasRequest,
    gate: EntitlementGate = Depends(get_entitlement_gate),
    generator: ContentGenerator = Depends(get_content_generator),
    db: AsyncSession = Depends(get_db),
):
    require_fields(userId=body.userId, niche=body.niche)

    check = await gate.consume(db, body.userId, FEATURE_AI_GENERATIONS)
    result = await generator.content_ideas(body.niche, body.platform)
    logger.info(f"Generated {len(result['ideas'])} content ideas for user {body.userId}")
    return {**result, "usage": check.to_dict()}
