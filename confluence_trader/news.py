"""Headline sentiment scoring.

Fetching headlines is the job of an external ``NewsProvider``; this module only
scores them by keyword matching and caches the per-instrument result for 30
minutes. A provider failure degrades to NEUTRAL, never to an error.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .cache import TTLCache
from .logging_setup import logger, sanitize_error

POSITIVE_KEYWORDS = (
    "surge", "soar", "rally", "record high", "beats", "upgrade", "outperform",
    "profit rise", "turnaround", "contract win", "buyback", "dividend increase",
    "raises guidance", "strong demand", "breakout", "golden cross",
)

NEGATIVE_KEYWORDS = (
    "plunge", "slump", "tumble", "record low", "misses", "downgrade", "underperform",
    "loss widens", "deficit", "recall", "lawsuit", "dividend cut", "cuts guidance",
    "weak demand", "short selling", "dead cross",
)

HEADLINES_PER_INSTRUMENT = 5


@dataclass(frozen=True)
class HeadlineScore:
    title: str
    score: int
    keywords: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NewsSentiment:
    code: str = ""
    total_score: int = 0
    news_count: int = 0
    sentiment: str = "NEUTRAL"  # POSITIVE, NEUTRAL or NEGATIVE
    details: List[HeadlineScore] = field(default_factory=list)

    @property
    def positive(self) -> bool:
        return self.sentiment == "POSITIVE"

    @property
    def negative(self) -> bool:
        return self.sentiment == "NEGATIVE"


class NewsProvider(ABC):
    @abstractmethod
    def fetch_headlines(self, code: str, count: int) -> List[str]:
        """Return up to ``count`` recent headline titles for an instrument."""


def score_headline(title: str) -> HeadlineScore:
    lowered = title.lower()
    matched = []
    score = 0
    for keyword in POSITIVE_KEYWORDS:
        if keyword in lowered:
            score += 1
            matched.append(f"+{keyword}")
    for keyword in NEGATIVE_KEYWORDS:
        if keyword in lowered:
            score -= 1
            matched.append(f"-{keyword}")
    return HeadlineScore(title=title, score=score, keywords=tuple(matched))


def score_headlines(code: str, titles: Sequence[str]) -> NewsSentiment:
    details = [score_headline(t) for t in titles]
    total = sum(d.score for d in details)
    if total >= 2:
        sentiment = "POSITIVE"
    elif total <= -2:
        sentiment = "NEGATIVE"
    else:
        sentiment = "NEUTRAL"
    return NewsSentiment(code=code, total_score=total, news_count=len(details), sentiment=sentiment, details=details)


class NewsAnalyzer:
    def __init__(self, provider: Optional[NewsProvider], cache: Optional[TTLCache] = None, cache_minutes: float = 30.0):
        self.provider = provider
        self.cache = cache or TTLCache(ttl_seconds=cache_minutes * 60)

    def get_sentiment(self, code: str) -> NewsSentiment:
        if self.provider is None:
            return NewsSentiment(code=code)
        cached = self.cache.get(code)
        if cached is not None:
            return cached
        try:
            titles = self.provider.fetch_headlines(code, HEADLINES_PER_INSTRUMENT)
        except Exception as e:
            logger.warning(f"News fetch failed | code={code} error={sanitize_error(e)}")
            return NewsSentiment(code=code)
        result = score_headlines(code, titles)
        self.cache.set(code, result)
        if result.sentiment != "NEUTRAL":
            logger.info(f"News sentiment | code={code} sentiment={result.sentiment} score={result.total_score}")
        return result
