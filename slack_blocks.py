from typing import Dict, List, Optional

from dedup import DuplicateCheck
from orchestrator import (
    Accepted,
    AnalysisFailed,
    AnalysisInProgress,
    DuplicateSkipped,
    NotEnoughMessages,
    NotPostWorthy,
    NothingNew,
)
from suggestion_store import Suggestion

Block = Dict[str, object]


def _section(text: str) -> Block:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _context(text: str) -> Block:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}


def _header(text: str) -> Block:
    return {"type": "header", "text": {"type": "plain_text", "text": text, "emoji": True}}


def _draft_blocks(reasoning: str, linkedin_draft: Optional[str], x_draft: Optional[str]) -> List[Block]:
    return [
        _section(f"*Why this works:*\n{reasoning}"),
        {"type": "divider"},
        _section(f"*📝 LinkedIn Draft:*\n\n{linkedin_draft or '_(none)_'}"),
        {"type": "divider"},
        _section(f"*𝕏 Twitter/X Draft:*\n\n{x_draft or '_(none)_'}"),
    ]


def duplicate_warning_text(check: DuplicateCheck) -> str:
    return (
        f"⚠️ This looks similar to a past suggestion ({check.similarity * 100:.0f}% match). "
        "Check before posting."
    )


def outcome_text(outcome) -> str:
    """Plain-text fallback for every outcome (also used for notifications)."""
    if isinstance(outcome, NotEnoughMessages):
        return (
            f"Not enough meaningful conversation yet. Need at least {outcome.needed} messages "
            f"(currently have {outcome.have})."
        )
    if isinstance(outcome, NotPostWorthy):
        return f"No post-worthy content found. {outcome.reasoning}"
    if isinstance(outcome, AnalysisFailed):
        return f"⚠️ {outcome.reasoning}\n\nPlease try again later."
    if isinstance(outcome, Accepted):
        return "💡 Post-worthy idea spotted"
    if isinstance(outcome, NothingNew):
        return "No new messages since the last analysis."
    if isinstance(outcome, DuplicateSkipped):
        return f"Skipped a duplicate suggestion ({outcome.similarity * 100:.0f}% similar)."
    if isinstance(outcome, AnalysisInProgress):
        return "An analysis for this channel is already running. Try again in a moment."
    raise TypeError(f"unhandled outcome: {outcome!r}")


def analysis_blocks(outcome, provider: str) -> List[Block]:
    """Reply blocks for an on-demand /chitchatposts run."""
    if isinstance(outcome, NotPostWorthy):
        return [_section(f"*No post-worthy content found*\n\n{outcome.reasoning}")]

    if not isinstance(outcome, Accepted):
        return [_section(outcome_text(outcome))]

    blocks = [_header("💡 Post-worthy idea spotted")]
    if outcome.duplicate_warning is not None:
        blocks.append(_context(duplicate_warning_text(outcome.duplicate_warning)))
    blocks.extend(_draft_blocks(outcome.reasoning, outcome.linkedin_draft, outcome.x_draft))
    blocks.append(_context(f"_Analyzed with {provider} • Human review required before posting_"))
    return blocks


def suggestion_blocks(suggestion: Suggestion, source: str) -> List[Block]:
    """Blocks for a scheduled post to the suggestions channel."""
    return [
        _header("💡 New Post Suggestion"),
        _context(f"Source: {source} • Generated automatically"),
        *_draft_blocks(suggestion.reasoning, suggestion.linkedin_draft, suggestion.x_draft),
        _context("_Please review and edit before posting. Human approval required._"),
    ]
