"""
Configuration for the feed ranking engine.

All knobs are plain numbers loaded once at process start, either from the
constructor defaults or from a JSON file (see `FeedConfig.from_file`).
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_WEIGHTS = {
    "friend": 1.7,
    "topic": 1.2,
    "trending": 1.0,
    "discovery": 1.0,
}


class FeedConfig:
    """Configuration for sourcing, scoring, diversification and pagination."""

    def __init__(
        self,
        candidate_pool_size: int = 100,
        source_weights: Optional[Dict[str, float]] = None,
        reaction_weight: float = 1.0,
        comment_weight: float = 3.0,
        share_weight: float = 5.0,
        time_decay_factor: float = 1.8,
        page_size: int = 20,
        max_page_size: int = 50,
        min_remaining_candidates_for_cache: int = 10,
        trending_posts_count: int = 10,
        random_posts_count: int = 5,
        trending_time_window_hours: int = 48,
        diversification_window: int = 3,
        reengagement_inactive_days: int = 7,
        reengagement_window_days: int = 7,
        friend_base_affinity: int = 50,
        min_affinity_threshold: int = 1,
    ):
        """
        Initialize feed configuration.

        Args:
            candidate_pool_size: Unique posts gathered per ranking run.
                                 Larger pools mean more variety and more DB load.
            source_weights: Per-source multipliers (friend/topic/trending/discovery).
                            Reported with the config; the scoring formula does not use them.
            reaction_weight: Score contribution of one reaction.
            comment_weight: Score contribution of one comment.
            share_weight: Score contribution of one share.
            time_decay_factor: Hours constant in exp(-age / factor).
                               Higher = slower change with age.
            page_size: Default number of posts per page.
            max_page_size: Upper bound accepted for a page request.
            min_remaining_candidates_for_cache: A cursor must hold more IDs than
                                                this to be reused instead of re-sourcing.
            trending_posts_count: Trending pool size when the allocation is zero.
            random_posts_count: Random pool size when the allocation is zero.
            trending_time_window_hours: Look-back window for trending posts.
            diversification_window: Number of recent authors avoided when reordering.
                                    Lists this long or shorter are returned
                                    unchanged.
            reengagement_inactive_days: Inactivity after which a viewer gets the
                                        re-engagement feed.
            reengagement_window_days: Look-back window for re-engagement posts.
            friend_base_affinity: Baseline affinity of a friend (reported only).
            min_affinity_threshold: Author affinity rows below this are ignored
                                    when building the interest profile.
        """
        self.candidate_pool_size = candidate_pool_size
        self.source_weights = dict(source_weights or DEFAULT_SOURCE_WEIGHTS)
        self.reaction_weight = reaction_weight
        self.comment_weight = comment_weight
        self.share_weight = share_weight
        self.time_decay_factor = time_decay_factor
        self.page_size = page_size
        self.max_page_size = max_page_size
        self.min_remaining_candidates_for_cache = min_remaining_candidates_for_cache
        self.trending_posts_count = trending_posts_count
        self.random_posts_count = random_posts_count
        self.trending_time_window_hours = trending_time_window_hours
        self.diversification_window = diversification_window
        self.reengagement_inactive_days = reengagement_inactive_days
        self.reengagement_window_days = reengagement_window_days
        self.friend_base_affinity = friend_base_affinity
        self.min_affinity_threshold = min_affinity_threshold

        if self.time_decay_factor <= 0:
            raise ValueError("time_decay_factor must be positive")

    @classmethod
    def from_file(cls, config_path: str = "config/feed.json") -> "FeedConfig":
        """
        Load configuration from JSON file.

        Unknown keys are ignored; missing keys keep their defaults.

        Args:
            config_path: Path to feed configuration file

        Returns:
            FeedConfig instance

        Raises:
            json.JSONDecodeError: If config file is invalid JSON
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning(f"Config file {config_path} not found, using defaults")
            return cls()

        with open(path, 'r') as f:
            config_data = json.load(f)

        known = cls().to_dict().keys()
        ignored = sorted(set(config_data) - set(known))
        if ignored:
            logger.warning(f"Ignoring unknown config keys in {config_path}: {ignored}")

        logger.info(f"Loaded feed config from {config_path}")
        return cls(**{k: v for k, v in config_data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "candidate_pool_size": self.candidate_pool_size,
            "source_weights": dict(self.source_weights),
            "reaction_weight": self.reaction_weight,
            "comment_weight": self.comment_weight,
            "share_weight": self.share_weight,
            "time_decay_factor": self.time_decay_factor,
            "page_size": self.page_size,
            "max_page_size": self.max_page_size,
            "min_remaining_candidates_for_cache": self.min_remaining_candidates_for_cache,
            "trending_posts_count": self.trending_posts_count,
            "random_posts_count": self.random_posts_count,
            "trending_time_window_hours": self.trending_time_window_hours,
            "diversification_window": self.diversification_window,
            "reengagement_inactive_days": self.reengagement_inactive_days,
            "reengagement_window_days": self.reengagement_window_days,
            "friend_base_affinity": self.friend_base_affinity,
            "min_affinity_threshold": self.min_affinity_threshold,
        }
