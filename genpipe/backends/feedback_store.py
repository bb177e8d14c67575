"""Model selection and vote recording against a REST feedback store.

The store exposes two tables over a PostgREST-style API: ``token_stats``
(per-token realism/anime scores learned from votes) and ``feedback`` (raw
votes). When the store is unreachable or has no signal yet, model selection
falls back to keyword heuristics.
"""

import logging
import re
from typing import Optional, List

import requests

from genpipe.core.collaborators import ModelSelector, FeedbackRecorder

logger = logging.getLogger(__name__)

REALISM_MODEL = "flux"
ANIME_MODEL = "sdv1"

TABLE_TOKEN_STATS = "token_stats"
TABLE_FEEDBACK = "feedback"

MAX_TOKENS = 40
SCORE_INERTIA = 0.5

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "of", "to", "in", "on", "for", "with", "at", "by", "from",
    "this", "that", "these", "those", "as", "is", "are", "be", "it", "its", "into", "over",
    "under", "through", "about", "your", "my", "our", "their", "his", "her",
})

_ANIME_HINTS = [
    "anime", "manga", "chibi", "illustration", "vector", "flat", "logo", "icon", "pixel",
    "isometric", "cartoon", "comic", "cel", "toon",
]
_PHOTO_HINTS = [
    "photo", "photoreal", "realistic", "dslr", "bokeh", "macro", "lens", "hdr", "cinematic",
    "street photography", "film", "portrait", "studio", "packshot",
]
_PAINTERLY_HINTS = [
    "oil painting", "watercolor", "gouache", "digital painting", "concept art", "fantasy",
    "matte painting",
]


def tokenize_prompt(prompt: str) -> List[str]:
    """Lowercase, strip punctuation and drop stop words and short tokens."""
    cleaned = re.sub(r"[^a-z0-9\s]", " ", (prompt or "").lower())
    tokens = [t for t in cleaned.split() if len(t) > 2 and t not in STOP_WORDS]
    return tokens[:MAX_TOKENS]


def heuristic_model(prompt: str) -> str:
    """Pick a model from keywords when the store has nothing to say."""
    text = (prompt or "").lower()

    def has(hints: List[str]) -> bool:
        return any(hint in text for hint in hints)

    if has(_ANIME_HINTS):
        return ANIME_MODEL
    if has(_PHOTO_HINTS):
        return REALISM_MODEL
    if has(_PAINTERLY_HINTS):
        return ANIME_MODEL
    return REALISM_MODEL


class HeuristicModelSelector(ModelSelector):
    """Keyword-only model selection; no I/O."""

    def choose_model(self, prompt: str) -> str:
        return heuristic_model(prompt)


class _RestStore:
    """Shared HTTP plumbing for the feedback store."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None
    ):
        if not base_url:
            raise ValueError("Feedback store URL is required")
        if not api_key:
            raise ValueError("Feedback store API key is required")

        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _table_url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    def _headers(self) -> dict:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }


class RestModelSelector(_RestStore, ModelSelector):
    """Chooses between the realism and anime models from learned token scores.

    Scores for every prompt token are summed per bucket, with a small inertia
    on both sides so a handful of votes does not flip the choice. Any failure
    falls back to :func:`heuristic_model`.
    """

    def choose_model(self, prompt: str) -> str:
        tokens = tokenize_prompt(prompt)
        if not tokens:
            return heuristic_model(prompt)

        try:
            response = self.session.get(
                self._table_url(TABLE_TOKEN_STATS),
                params={
                    "select": "token,score_realism,score_anime",
                    "token": f"in.({','.join(tokens)})",
                },
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            rows = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"[{TABLE_TOKEN_STATS}] select failed: {e}")
            return heuristic_model(prompt)

        if not rows:
            return heuristic_model(prompt)

        realism = SCORE_INERTIA + sum(float(row.get("score_realism") or 0) for row in rows)
        anime = SCORE_INERTIA + sum(float(row.get("score_anime") or 0) for row in rows)
        logger.debug(f"Token scores for prompt: realism={realism:.2f}, anime={anime:.2f}")
        return REALISM_MODEL if realism >= anime else ANIME_MODEL


class RestFeedbackRecorder(_RestStore, FeedbackRecorder):
    """Inserts votes into the ``feedback`` table. Never raises."""

    def record_vote(self, prompt: str, model: str, seed: Optional[int], up: bool) -> bool:
        payload = {
            "prompt": str(prompt or "")[:1000],
            "model": str(model or "")[:64],
            "seed": int(seed) if isinstance(seed, int) else None,
            "up": bool(up),
        }

        try:
            response = self.session.post(
                self._table_url(TABLE_FEEDBACK),
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.warning(f"[{TABLE_FEEDBACK}] insert failed: {e}")
            return False

        logger.info(f"Recorded {'up' if up else 'down'} vote for model {payload['model']}")
        return True
