import json
import logging
import re
from typing import Optional, Sequence

import openai
from openai import OpenAI

from conversation_buffer import Message
from settings import Settings
from suggestion_store import Suggestion

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "claude": "claude-3-sonnet-20240229",
}

# Anthropic exposes an OpenAI-compatible endpoint, so one SDK covers both providers
CLAUDE_BASE_URL = "https://api.anthropic.com/v1/"
CLAUDE_API_VERSION = "2023-06-01"

#--- System prompt for conversation analysis ---
SYSTEM_PROMPT = """
You are an expert content strategist helping founders and product teams identify post-worthy moments from their Slack conversations.

Your job is to analyze the conversation and identify moments that would make compelling LinkedIn or X (Twitter) posts.

FOCUS ON:
- Real insights and learnings
- Product decisions and the reasoning behind them
- Founder learnings and reflections
- Growth or engineering tradeoffs
- Interesting technical discoveries
- Team culture moments that show authenticity

EXPLICITLY AVOID:
- Clickbait or sensationalized content
- Inventing or exaggerating facts
- Inside jokes that won't translate
- Logistics, scheduling, or mundane updates
- Generic advice without specific context

RESPONSE FORMAT:
Respond in valid JSON with this structure:
{
  "isPostWorthy": boolean,
  "reasoning": "Brief explanation of why this is (or isn't) post-worthy",
  "linkedInDraft": "Full LinkedIn post draft (or null if not post-worthy)",
  "xDraft": "Full X/Twitter post draft, max 280 chars (or null if not post-worthy)"
}

If the conversation doesn't contain anything post-worthy, set isPostWorthy to false and explain why in reasoning.
""".strip()

_FENCE = re.compile(r"```(?:json)?[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)


def failed(reason: str) -> Suggestion:
    return Suggestion(
        is_post_worthy=False,
        reasoning=f"Analysis failed: {reason}",
        linkedin_draft=None,
        x_draft=None,
        error=True,
    )


def format_transcript(messages: Sequence[Message]) -> str:
    return "\n\n".join(
        f"[{i}] User {m.user}: {m.text}" for i, m in enumerate(messages, start=1)
    )


def _strip_fences(content: str) -> str:
    content = content.strip()
    # bare JSON is taken as-is; backticks inside a draft are content
    if content.startswith(("{", "[")):
        return content
    m = _FENCE.search(content)
    if m:
        return m.group(1)
    # an opening fence with no closing one (truncated reply)
    return re.sub(r"```(?:json)?", "", content, flags=re.IGNORECASE)


def parse_analysis(content: Optional[str]) -> Suggestion:
    """
    Turn raw model output into a Suggestion. Never raises: anything that isn't
    a JSON object comes back as an error suggestion with the reason attached.
    """
    if not content or not content.strip():
        return failed("Empty response from LLM")

    body = _strip_fences(content).strip()
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        return failed(f"Could not parse LLM response as JSON ({e.msg})")

    if not isinstance(data, dict):
        return failed("LLM response was not a JSON object")

    return Suggestion(
        is_post_worthy=bool(data.get("isPostWorthy") or False),
        reasoning=data.get("reasoning") or "No reasoning provided.",
        linkedin_draft=data.get("linkedInDraft") or None,
        x_draft=data.get("xDraft") or None,
    )


def build_client(settings: Settings) -> OpenAI:
    if settings.llm_provider == "claude":
        return OpenAI(
            api_key=settings.claude_api_key,
            base_url=CLAUDE_BASE_URL,
            default_headers={"anthropic-version": CLAUDE_API_VERSION},
        )
    return OpenAI(api_key=settings.openai_api_key)


class PostAnalyzer:
    def __init__(self, client, provider: str = "openai", model: Optional[str] = None, configured: bool = True) -> None:
        self.client = client
        self.provider = provider
        self.model = model or DEFAULT_MODELS[provider]
        self.configured = configured

    @classmethod
    def from_settings(cls, settings: Settings) -> "PostAnalyzer":
        client = build_client(settings) if settings.llm_api_key else None
        return cls(
            client,
            provider=settings.llm_provider,
            model=settings.llm_model,
            configured=bool(settings.llm_api_key),
        )

    def is_configured(self) -> bool:
        return self.configured and self.client is not None

    def analyze(self, messages: Sequence[Message]) -> Suggestion:
        if not messages:
            return Suggestion(is_post_worthy=False, reasoning="No messages to analyze.")

        transcript = format_transcript(messages)
        logger.info("[llm] analyzing %d messages with %s (%s)", len(messages), self.provider, self.model)

        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": f"Analyze this Slack conversation and identify any post-worthy moments:\n\n{transcript}",
                    },
                ],
                temperature=0.7,
                max_tokens=1024,
            )
        except openai.OpenAIError as e:
            logger.warning("[llm] request failed: %s", e)
            return failed(str(e) or e.__class__.__name__)

        content = resp.choices[0].message.content if resp.choices else None
        result = parse_analysis(content)
        if result.error:
            logger.warning("[llm] %s", result.reasoning)
        else:
            logger.info("[llm] analysis complete, post-worthy: %s", result.is_post_worthy)
        return result
