import logging
from dataclasses import dataclass
from typing import Optional

from suggestion_store import Suggestion, SuggestionStore, fingerprint

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.8
# good enough to stop scanning
NEAR_EXACT = 0.99


@dataclass
class DuplicateCheck:
    is_duplicate: bool
    similarity: float
    matched_with: Optional[Suggestion] = None


def _jaccard(a: str, b: str) -> float:
    words_a = set(a.split())
    words_b = set(b.split())

    if not words_a and not words_b:
        return 1.0
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def similarity(text_a: Optional[str], text_b: Optional[str]) -> float:
    fp_a = fingerprint(text_a)
    fp_b = fingerprint(text_b)
    if fp_a == fp_b:
        return 1.0
    return _jaccard(fp_a, fp_b)


class DuplicateDetector:
    def __init__(self, store: SuggestionStore, threshold: float = SIMILARITY_THRESHOLD) -> None:
        self.store = store
        self.threshold = threshold

    def check(self, candidate: Suggestion) -> DuplicateCheck:
        """
        Compare the candidate's primary draft against every stored suggestion.
        Returns the best match; it only counts as a duplicate at or above threshold.
        """
        stored = self.store.list_all()
        text = candidate.primary_text
        if not stored or not text:
            return DuplicateCheck(False, 0.0, None)

        best = 0.0
        best_match = None
        for s in stored:
            other = s.primary_text
            if not other:
                continue

            score = similarity(text, other)
            if score > best:
                best = score
                best_match = s
            if score >= NEAR_EXACT:
                break

        is_dup = best >= self.threshold
        if is_dup:
            logger.info("[dedup] duplicate found (%.1f%% similarity)", best * 100)
        return DuplicateCheck(is_dup, best, best_match)
