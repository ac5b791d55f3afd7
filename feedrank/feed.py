"""
Feed orchestration: the entry point that turns a page request into posts.

Home feed paths:
- re-engagement: viewers inactive for longer than the configured threshold
  (and not paginating) get a single page of their friends' best recent posts;
  only a failed or empty re-engagement query falls through to the paths below
- cursor: a cursor holding enough unshown IDs is re-hydrated and re-scored
- cold: candidates are sourced and scored from scratch

Whichever path produced the ranked list, it is diversified, the first
`limit` posts form the page and the remainder becomes the next cursor.

Profile feeds bypass ranking and page chronologically through one author's
posts with a timestamp cursor.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from .config import FeedConfig
from .database import Database, utcnow
from .diversification import diversify_ranked_feed
from .ranking import RankingEngine
from .sourcing import CandidateSourcer
from .state import decode_state, encode_state, fetch_posts_from_state

logger = logging.getLogger(__name__)

FEED_TYPES = ("home", "profile")
PROFILE_DIRECTIONS = ("newest", "oldest")

# Re-engagement ordering: reactions * 1 + comments * 3
REENGAGEMENT_REACTION_WEIGHT = 1.0
REENGAGEMENT_COMMENT_WEIGHT = 3.0


def _empty_feed() -> Dict[str, Any]:
    return {"posts": [], "next_cursor": None}


def _order_by_ids(posts: List[Dict[str, Any]], post_ids: List[str]) -> List[Dict[str, Any]]:
    """Put hydrated posts back into the order of `post_ids`."""
    by_id = {post["id"]: post for post in posts}
    return [by_id[pid] for pid in post_ids if pid in by_id]


def _to_naive_utc(value: datetime) -> datetime:
    """Convert aware datetimes to naive UTC, the form stored in SQLite."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _parse_profile_cursor(cursor: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 profile cursor into a naive UTC datetime, or None."""
    if not cursor:
        return None
    try:
        parsed = date_parser.isoparse(cursor)
    except (ValueError, OverflowError):
        logger.debug(f"Ignoring malformed profile cursor: {cursor!r}")
        return None
    return _to_naive_utc(parsed)


class FeedService:
    """
    Builds feed pages for viewers.

    Composes sourcing, scoring, diversification and cursor state. No ranked
    results are kept between requests; the cursor is the only carried state.
    """

    def __init__(self, database: Database, config: Optional[FeedConfig] = None):
        """
        Initialize the feed service.

        Args:
            database: Database instance shared by all components
            config: Feed configuration (defaults if not provided)
        """
        self.database = database
        self.config = config or FeedConfig()
        self.sourcer = CandidateSourcer(database, self.config)
        self.ranking_engine = RankingEngine(database, self.config)
        logger.info(f"Feed service initialized with config: {self.config.to_dict()}")

    def is_reengagement_user(
        self,
        user_last_active_at: Optional[datetime],
        now: Optional[datetime] = None,
    ) -> bool:
        """True when the viewer has been inactive longer than the threshold."""
        if user_last_active_at is None:
            return False
        now = _to_naive_utc(now or utcnow())
        return now - _to_naive_utc(user_last_active_at) > timedelta(days=self.config.reengagement_inactive_days)

    async def get_reengagement_feed(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        """
        Best friend posts of the re-engagement window, highest engagement first.

        Each post's score is its engagement value (reactions + 3 * comments).

        Raises:
            Exception: Any store error, left to the caller
        """
        since = utcnow() - timedelta(days=self.config.reengagement_window_days)
        ranked_ids = await self.database.get_reengagement_post_ids(
            user_id,
            since=since,
            limit=limit,
            reaction_weight=REENGAGEMENT_REACTION_WEIGHT,
            comment_weight=REENGAGEMENT_COMMENT_WEIGHT,
        )
        if not ranked_ids:
            return []

        scores = dict(ranked_ids)
        posts = await self.database.get_posts_by_ids(scores.keys(), user_id)
        ordered = _order_by_ids(posts, [pid for pid, _ in ranked_ids])
        return [{**post, "score": scores[post["id"]]} for post in ordered]

    async def _rank_from_cursor(self, user_id: str, cursor: str) -> Optional[List[Dict[str, Any]]]:
        """
        Ranked posts reconstituted from a cursor.

        Returns:
            Ranked posts, or None when the cursor is unusable or holds too
            few IDs and a fresh ranking run is needed
        """
        cached_ids = decode_state(cursor)
        if cached_ids is None:
            logger.info(f"Malformed cursor for {user_id}, running fresh ranking")
            return None

        if len(cached_ids) <= self.config.min_remaining_candidates_for_cache:
            logger.info(
                f"Cursor for {user_id} holds {len(cached_ids)} posts, "
                f"running fresh ranking"
            )
            return None

        return await fetch_posts_from_state(self.database, self.ranking_engine, cached_ids, user_id)

    async def get_ranked_feed(
        self,
        user_id: str,
        limit: Optional[int] = None,
        user_last_active_at: Optional[datetime] = None,
        cursor: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Get one page of the viewer's ranked home feed.

        Args:
            user_id: The viewer
            limit: Page size (config default if None)
            user_last_active_at: When the viewer was last active
            cursor: Cursor returned with the previous page

        Returns:
            Dictionary with:
                - posts: Ranked post dictionaries for this page
                - next_cursor: Cursor for the next page, or None at the end
        """
        if limit is None:
            limit = self.config.page_size

        try:
            if not cursor and self.is_reengagement_user(user_last_active_at):
                try:
                    posts = await self.get_reengagement_feed(user_id, limit)
                except Exception as e:
                    logger.error(
                        f"Re-engagement feed failed for {user_id}, falling back: {e}",
                        exc_info=True,
                    )
                    posts = []

                if posts:
                    logger.info(f"Serving re-engagement feed to {user_id} ({len(posts)} posts)")
                    return {"posts": posts, "next_cursor": None}

            ranked = None
            if cursor:
                ranked = await self._rank_from_cursor(user_id, cursor)

            if ranked is None:
                candidates = await self.sourcer.get_candidate_posts(user_id)
                if not candidates:
                    return _empty_feed()
                ranked = await self.ranking_engine.score_and_rank_candidates(candidates, user_id)

            diversified = diversify_ranked_feed(ranked, window=self.config.diversification_window)

            page = diversified[:limit]
            remaining = diversified[limit:]
            next_cursor = encode_state(remaining) if remaining else None

            logger.info(
                f"Feed page for {user_id}: {len(page)} posts, {len(remaining)} remaining"
            )
            return {"posts": page, "next_cursor": next_cursor}

        except Exception as e:
            logger.error(f"Error building feed for {user_id}: {e}", exc_info=True)
            return _empty_feed()

    async def get_profile_feed(
        self,
        author_id: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        direction: str = "newest",
        viewer_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Get one chronological page of an author's posts.

        The cursor is the ISO-8601 creation time of the last post returned.
        Malformed cursors restart from the first page.

        Args:
            author_id: Author whose posts to list
            limit: Page size (config default if None)
            cursor: Cursor returned with the previous page
            direction: "newest" (reverse-chronological) or "oldest"
            viewer_id: Viewer, used for `current_user_reaction_id`

        Returns:
            Dictionary with 'posts' and 'next_cursor'

        Raises:
            ValueError: If direction is unknown
        """
        if direction not in PROFILE_DIRECTIONS:
            raise ValueError(f"Unknown direction: {direction}")
        if limit is None:
            limit = self.config.page_size

        try:
            # One extra row tells us whether another page exists
            post_ids = await self.database.get_author_post_ids(
                author_id,
                limit=limit + 1,
                cursor_time=_parse_profile_cursor(cursor),
                direction=direction,
            )
            has_more = len(post_ids) > limit
            post_ids = post_ids[:limit]

            posts = _order_by_ids(
                await self.database.get_posts_by_ids(post_ids, viewer_id),
                post_ids,
            )

            now = utcnow()
            page = [
                {**post, "score": self.ranking_engine.calculate_profile_score(post, now)}
                for post in posts
            ]
            next_cursor = page[-1]["created_at"].isoformat() if has_more and page else None
            return {"posts": page, "next_cursor": next_cursor}

        except Exception as e:
            logger.error(f"Error building profile feed for {author_id}: {e}", exc_info=True)
            return _empty_feed()

    async def get_feed(
        self,
        viewer_id: str,
        limit: Optional[int] = None,
        feed_for: str = "home",
        cursor: Optional[str] = None,
        profile_user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Serve a feed request.

        Args:
            viewer_id: The requesting user
            limit: Page size, 1..max_page_size (config default if None)
            feed_for: "home" for the ranked feed, "profile" for an author's posts
            cursor: Cursor returned with the previous page
            profile_user_id: Author of the profile feed (the viewer if None)

        Returns:
            Dictionary with 'posts' and 'next_cursor'

        Raises:
            ValueError: If limit or feed_for is out of range
        """
        if limit is None:
            limit = self.config.page_size
        if not 1 <= limit <= self.config.max_page_size:
            raise ValueError(f"limit must be between 1 and {self.config.max_page_size}")
        if feed_for not in FEED_TYPES:
            raise ValueError(f"Unknown feed type: {feed_for}")

        if feed_for == "profile":
            return await self.get_profile_feed(
                profile_user_id or viewer_id,
                limit=limit,
                cursor=cursor,
                viewer_id=viewer_id,
            )

        try:
            user = await self.database.get_user(viewer_id)
        except Exception as e:
            logger.error(f"Error loading viewer {viewer_id}: {e}", exc_info=True)
            user = None
        last_active_at = user["last_active_at"] if user else None
        return await self.get_ranked_feed(
            viewer_id,
            limit=limit,
            user_last_active_at=last_active_at,
            cursor=cursor,
        )
