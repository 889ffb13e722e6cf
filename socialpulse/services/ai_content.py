"""
AI Content Generation
Post drafts, hashtag suggestions and content ideas from an OpenAI chat model,
with deterministic fallbacks when the model is unavailable or replies badly
"""

import json
import logging
import re
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from socialpulse.config.settings import Settings

logger = logging.getLogger(__name__)

PLATFORM_LIMITS = {
    "twitter": 280,
    "instagram": 2200,
    "facebook": 63206,
    "linkedin": 3000,
    "tiktok": 2200,
}
DEFAULT_CHARACTER_LIMIT = 500
MAX_HASHTAGS = 15
MAX_IDEAS = 8
IDEA_CATEGORIES = (
    "educational",
    "entertaining",
    "promotional",
    "behind-the-scenes",
    "thought-leadership",
    "social-proof",
    "trending",
    "engagement",
)


def character_limit(platform: Optional[str]) -> int:
    return PLATFORM_LIMITS.get((platform or "").lower(), DEFAULT_CHARACTER_LIMIT)


def _camel_tag(text: str) -> str:
    return re.sub(r"[^A-Za-z0-9]", "", text.title())


class ContentGenerator:
    """Content helpers backed by an OpenAI chat model"""

    def __init__(self, settings: Settings):
        self.model = settings.openai_model
        self.client = (
            AsyncOpenAI(api_key=settings.openai_api_key, timeout=settings.ai_timeout)
            if settings.openai_api_key
            else None
        )

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()

    def fallback_suggestion(self, platform: str, topic: str, tone: str) -> Dict[str, Any]:
        """Deterministic draft used when the model is unavailable"""
        content = f"Let's talk about {topic}! What are your thoughts? Share below 👇"
        tag = _camel_tag(topic) or "SocialPulse"
        return {
            "content": content[:character_limit(platform)],
            "hashtags": [tag, platform.capitalize() if platform else "Social"],
            "bestTime": "9:00 AM - 11:00 AM",
            "engagementPrediction": "medium",
            "platform": platform,
            "fallback": True,
        }

    def fallback_hashtags(self, topic: str, platform: Optional[str]) -> Dict[str, Any]:
        tags = [_camel_tag(topic)] + [_camel_tag(word) for word in topic.split()]
        if platform:
            tags.append(_camel_tag(platform))
        unique = [tag for i, tag in enumerate(tags) if tag and tag not in tags[:i]]
        return {
            "hashtags": [
                {"tag": tag, "popularity": "niche", "posts": None, "relevanceScore": None, "competition": "low"}
                for tag in unique[:MAX_HASHTAGS]
            ],
            "fallback": True,
        }

    def fallback_ideas(self, niche: str, platform: Optional[str]) -> Dict[str, Any]:
        target = platform if platform and platform != "all" else "instagram"
        tag = _camel_tag(niche) or "SocialPulse"
        templates = [
            ("educational", f"3 things beginners get wrong about {niche}", "A short myth-busting post or carousel."),
            ("behind-the-scenes", f"A day in your {niche} workflow", "Show the tools and routine behind your work."),
            ("engagement", f"Ask your audience: what's hardest about {niche}?", "A question post to start a conversation."),
        ]
        return {
            "ideas": [
                {
                    "id": str(i),
                    "title": title,
                    "description": description,
                    "category": category,
                    "platform": target,
                    "trendingScore": None,
                    "suggestedHashtags": [tag],
                }
                for i, (category, title, description) in enumerate(templates, start=1)
            ],
            "fallback": True,
        }

    async def _ask(self, prompt: str, max_tokens: int = 800) -> Dict[str, Any]:
        """Run one chat completion and pull the JSON object out of the reply"""
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": "You are a social media strategist. Always respond with valid JSON only."},
                {"role": "user", "content": prompt},
            ],
            temperature=0.7,
            max_tokens=max_tokens,
        )
        text = (response.choices[0].message.content or "").strip()
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if not match:
            raise ValueError("no JSON object in model output")
        parsed = json.loads(match.group(0))
        if not isinstance(parsed, dict):
            raise ValueError("model output is not a JSON object")
        return parsed

    async def generate_post(self, platform: str, topic: str, tone: str) -> Dict[str, Any]:
        if not self.client:
            return self.fallback_suggestion(platform, topic, tone)

        limit = character_limit(platform)
        prompt = f"""Generate a {platform} post about "{topic}" with a {tone} tone.
Character limit: {limit} characters. Include a call-to-action.

Respond ONLY with JSON:
{{"content": "...", "hashtags": ["..."], "bestTime": "...", "engagementPrediction": "high|medium|low"}}"""

        try:
            parsed = await self._ask(prompt)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse AI response as JSON: {e}")
            return self.fallback_suggestion(platform, topic, tone)
        except Exception as e:
            logger.error(f"OpenAI API error: {e}")
            return self.fallback_suggestion(platform, topic, tone)

        return {
            "content": str(parsed.get("content", ""))[:limit],
            "hashtags": parsed.get("hashtags") or [],
            "bestTime": parsed.get("bestTime"),
            "engagementPrediction": parsed.get("engagementPrediction"),
            "platform": platform,
            "fallback": False,
        }

    async def suggest_hashtags(self, topic: str, platform: Optional[str]) -> Dict[str, Any]:
        if not self.client:
            return self.fallback_hashtags(topic, platform)

        prompt = f"""Generate {MAX_HASHTAGS} relevant hashtags for a {platform or "social media"} post about "{topic}".
Mix trending, popular and niche tags.

Respond ONLY with JSON:
{{"hashtags": [{{"tag": "example", "popularity": "trending|popular|niche", "posts": "5.2M", "relevanceScore": 0-100, "competition": "low|medium|high"}}]}}"""

        try:
            parsed = await self._ask(prompt)
            hashtags = [
                {**item, "tag": str(item["tag"]).lstrip("#")}
                for item in parsed.get("hashtags") or []
                if isinstance(item, dict) and item.get("tag")
            ]
            if not hashtags:
                raise ValueError("no hashtags in model output")
        except Exception as e:
            logger.error(f"Hashtag generation failed: {e}")
            return self.fallback_hashtags(topic, platform)

        return {"hashtags": hashtags[:MAX_HASHTAGS], "fallback": False}

    async def content_ideas(self, niche: str, platform: Optional[str]) -> Dict[str, Any]:
        if not self.client:
            return self.fallback_ideas(niche, platform)

        target = f"specifically for {platform}" if platform and platform != "all" else "for various social platforms"
        prompt = f"""Generate {MAX_IDEAS} unique content ideas for a social media account in the "{niche}" niche {target}.
category is one of: {", ".join(IDEA_CATEGORIES)}.

Respond ONLY with JSON:
{{"ideas": [{{"id": "1", "title": "...", "description": "...", "category": "...", "platform": "...", "trendingScore": 0-100, "suggestedHashtags": ["..."]}}]}}"""

        try:
            parsed = await self._ask(prompt, max_tokens=1500)
            ideas = [item for item in parsed.get("ideas") or [] if isinstance(item, dict) and item.get("title")]
            if not ideas:
                raise ValueError("no ideas in model output")
        except Exception as e:
            logger.error(f"Idea generation failed: {e}")
            return self.fallback_ideas(niche, platform)

        return {"ideas": ideas[:MAX_IDEAS], "fallback": False}
