"""
Candidate sourcing for the personalized feed.

Candidates are drawn from four pools, sized per viewer from their interest
profile:
- friend:   newest posts from accepted friends
- topic:    newest posts tagged with hashtags the viewer engaged with
- trending: most engaged posts of the last trending window
- random:   uniformly random posts, for serendipity

The pools are fetched concurrently, de-duplicated and hydrated in one
batched call.
"""

import asyncio
import logging
import math
from datetime import timedelta
from typing import Any, Dict, List, Optional

from .config import FeedConfig
from .database import Database, utcnow

logger = logging.getLogger(__name__)

DEFAULT_INTEREST_PROFILE = {"friend": 0.5, "topic": 0.3, "discovery": 0.2}

# Interest profile clamps
MAX_SOURCE_RATIO = 0.4
MIN_FRIEND_RATIO = 0.2
MIN_TOPIC_RATIO = 0.2
MIN_DISCOVERY_RATIO = 0.1

# Second caps applied inside the friend/topic queries on top of the allocation
FRIEND_QUERY_SHARE = 0.4
TOPIC_QUERY_SHARE = 0.3

# Split of the discovery allocation
TRENDING_SHARE = 0.7
RANDOM_SHARE = 0.3

INTEREST_HASHTAG_LIMIT = 10


class CandidateSourcer:
    """Builds the candidate pool for one viewer."""

    def __init__(self, database: Database, config: Optional[FeedConfig] = None):
        self.database = database
        self.config = config or FeedConfig()

    async def get_interest_profile(self, user_id: str) -> Dict[str, float]:
        """
        Split the viewer's interest between friend, topic and discovery content.

        The split follows how the viewer's author-affinity mass divides between
        accepted friends and everyone else. Viewers without any affinity signal
        get DEFAULT_INTEREST_PROFILE.

        Returns:
            Dictionary with 'friend', 'topic' and 'discovery' ratios
        """
        try:
            affinity_scores, friend_ids = await asyncio.gather(
                self.database.get_author_affinity_scores(user_id),
                self.database.get_accepted_friend_ids(user_id),
            )
        except Exception as e:
            logger.error(f"Error getting interest profile for {user_id}: {e}", exc_info=True)
            return dict(DEFAULT_INTEREST_PROFILE)

        friend_sum = 0
        non_friend_sum = 0
        for target_id, score in affinity_scores.items():
            if score < self.config.min_affinity_threshold:
                continue
            if target_id in friend_ids:
                friend_sum += score
            else:
                non_friend_sum += score

        total = friend_sum + non_friend_sum
        if total == 0:
            return dict(DEFAULT_INTEREST_PROFILE)

        friend_ratio = min(MAX_SOURCE_RATIO, friend_sum / total)
        topic_ratio = min(MAX_SOURCE_RATIO, non_friend_sum / total)

        return {
            "friend": max(MIN_FRIEND_RATIO, friend_ratio),
            "topic": max(MIN_TOPIC_RATIO, topic_ratio),
            "discovery": max(MIN_DISCOVERY_RATIO, 1 - friend_ratio - topic_ratio),
        }

    def allocate_pool(self, pool_size: int, profile: Dict[str, float]) -> Dict[str, int]:
        """
        Turn a pool size and interest profile into per-query limits.

        Returns:
            Dictionary with the query limit for each of the four pools
        """
        friend_limit = math.floor(pool_size * profile["friend"])
        topic_limit = math.floor(pool_size * profile["topic"])
        discovery_limit = pool_size - friend_limit - topic_limit

        return {
            "friend": math.floor(friend_limit * FRIEND_QUERY_SHARE),
            "topic": math.floor(topic_limit * TOPIC_QUERY_SHARE),
            "trending": (
                math.floor(discovery_limit * TRENDING_SHARE)
                or self.config.trending_posts_count
            ),
            "random": (
                math.floor(discovery_limit * RANDOM_SHARE)
                or self.config.random_posts_count
            ),
        }

    async def get_candidate_post_ids(self, user_id: str, pool_size: int) -> List[str]:
        """
        Fetch and de-duplicate the IDs of all four pools.

        Raises:
            Exception: Any store error, left to the caller
        """
        profile = await self.get_interest_profile(user_id)
        limits = self.allocate_pool(pool_size, profile)
        since = utcnow() - timedelta(hours=self.config.trending_time_window_hours)

        # Each query opens its own session, so the pools are not read from one snapshot
        friend_ids, topic_ids, trending_ids, random_ids = await asyncio.gather(
            self.database.get_friend_post_ids(user_id, limits["friend"]),
            self.database.get_topic_post_ids(
                user_id, limits["topic"], hashtag_limit=INTEREST_HASHTAG_LIMIT
            ),
            self.database.get_trending_post_ids(
                user_id,
                limits["trending"],
                since=since,
                reaction_weight=self.config.reaction_weight,
                comment_weight=self.config.comment_weight,
            ),
            self.database.get_random_post_ids(user_id, limits["random"]),
        )

        logger.debug(
            f"Sourced for {user_id}: profile={profile}, limits={limits}, "
            f"friend={len(friend_ids)}, topic={len(topic_ids)}, "
            f"trending={len(trending_ids)}, random={len(random_ids)}"
        )

        return list(set(friend_ids) | set(topic_ids) | set(trending_ids) | set(random_ids))

    async def get_candidate_posts(
        self,
        user_id: str,
        pool_size: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Get hydrated candidate posts for a viewer.

        Store errors are logged and produce an empty list, which callers
        treat as an empty feed.

        Args:
            user_id: The viewer
            pool_size: Total candidates to aim for (config default if None)

        Returns:
            List of candidate post dictionaries (unordered)
        """
        if pool_size is None:
            pool_size = self.config.candidate_pool_size

        try:
            post_ids = await self.get_candidate_post_ids(user_id, pool_size)
            if not post_ids:
                logger.info(f"No candidates found for {user_id}")
                return []

            candidates = await self.database.get_posts_by_ids(post_ids, user_id)
            logger.info(f"Sourced {len(candidates)} candidates for {user_id}")
            return candidates

        except Exception as e:
            logger.error(f"Error sourcing candidates for {user_id}: {e}", exc_info=True)
            return []
