"""
Scoring engine for the personalized feed.

Each candidate is scored with an additive engagement + affinity signal divided
by an exponential time-decay factor:

    engagement = reactions * W_reaction + comments * W_comment + shares * W_share
    time_decay = exp(-age_in_hours / time_decay_factor)
    score      = (engagement + author_affinity + hashtag_affinity) / time_decay

The signal is divided by time_decay, not multiplied by it.
"""

import asyncio
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import FeedConfig
from .database import Database, utcnow

logger = logging.getLogger(__name__)

# Smallest time-decay factor used as a divisor; exp() underflows to 0.0 for
# posts older than ~1300 hours at the default factor.
MIN_TIME_DECAY = 1e-300


class RankingEngine:
    """
    Scores and ranks hydrated candidates for a viewer.

    Affinity lookups are batched: one query for every distinct author among
    the candidates and one for every distinct hashtag, both scoped to the
    viewer and run concurrently.
    """

    def __init__(
        self,
        database: Database,
        config: Optional[FeedConfig] = None,
    ):
        """
        Initialize ranking engine.

        Args:
            database: Database instance for affinity lookups
            config: Feed configuration (defaults if not provided)
        """
        self.database = database
        self.config = config or FeedConfig()

    def _calculate_age_hours(self, created_at: datetime, now: Optional[datetime] = None) -> float:
        """
        Calculate age of a post in hours.

        Timestamps in the future count as age 0.
        """
        now = now or utcnow()
        age = now - created_at
        return max(0.0, age.total_seconds() / 3600)

    def calculate_time_decay(self, age_hours: float) -> float:
        """
        Exponential decay factor in (0, 1], decreasing with age.

        Examples:
            >>> engine.calculate_time_decay(0)
            1.0
            >>> engine.calculate_time_decay(2)   # default factor 1.8
            0.329
        """
        return max(math.exp(-age_hours / self.config.time_decay_factor), MIN_TIME_DECAY)

    def calculate_engagement_score(self, post: Dict[str, Any]) -> float:
        """Weighted sum of reaction, comment and share counts."""
        return (
            post.get("reaction_count", 0) * self.config.reaction_weight
            + post.get("comment_count", 0) * self.config.comment_weight
            + post.get("share_count", 0) * self.config.share_weight
        )

    def calculate_score(
        self,
        engagement: float,
        age_hours: float,
        author_affinity: float = 0,
        hashtag_affinity: float = 0,
    ) -> float:
        """
        Calculate the ranking score of a single post.

        Formula: score = (engagement + author_affinity + hashtag_affinity) / time_decay

        Examples:
            >>> engine.calculate_score(6, 2)     # 3 reactions + 1 comment, 2h old
            18.23
            >>> engine.calculate_score(50, 10)   # 50 reactions, 10h old
            12933.5
        """
        time_decay = self.calculate_time_decay(age_hours)
        return (engagement + author_affinity + hashtag_affinity) / time_decay

    def calculate_profile_score(self, post: Dict[str, Any], now: Optional[datetime] = None) -> float:
        """
        Sort-stability score for chronological profile pages.

        Formula: (1 + engagement) * time_decay. Newer posts score higher.
        """
        age_hours = self._calculate_age_hours(post["created_at"], now)
        return (1 + self.calculate_engagement_score(post)) * self.calculate_time_decay(age_hours)

    async def score_and_rank_candidates(
        self,
        candidates: List[Dict[str, Any]],
        user_id: str,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        Score candidates for a viewer and sort them by score, highest first.

        If the affinity lookups fail every candidate is returned with a score
        of 0 in its original order, so the feed still renders unranked.

        Args:
            candidates: Hydrated candidate dictionaries
            user_id: The viewer
            now: Reference time for post age (current time if None)

        Returns:
            New list of candidate dictionaries, each with an added 'score'
        """
        if not candidates:
            return []

        now = now or utcnow()

        try:
            author_ids = {post["author"]["id"] for post in candidates}
            hashtag_ids = {
                hashtag["id"]
                for post in candidates
                for hashtag in post.get("hashtags") or []
            }

            author_affinity, hashtag_affinity = await asyncio.gather(
                self.database.get_author_affinity_scores(user_id, author_ids),
                self.database.get_hashtag_affinity_scores(user_id, hashtag_ids),
            )

            ranked_posts = []
            for post in candidates:
                hashtag_score = sum(
                    hashtag_affinity.get(hashtag["id"], 0)
                    for hashtag in post.get("hashtags") or []
                )
                score = self.calculate_score(
                    self.calculate_engagement_score(post),
                    self._calculate_age_hours(post["created_at"], now),
                    author_affinity=author_affinity.get(post["author"]["id"], 0),
                    hashtag_affinity=hashtag_score,
                )
                ranked_posts.append({**post, "score": score})

            ranked_posts.sort(key=lambda p: p["score"], reverse=True)

            logger.debug(f"Scored {len(ranked_posts)} candidates for {user_id}")
            return ranked_posts

        except Exception as e:
            logger.error(f"Error scoring candidates for {user_id}: {e}", exc_info=True)
            return [{**post, "score": 0.0} for post in candidates]
