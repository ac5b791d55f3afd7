"""
Cursor state for ranked-feed pagination.

A cursor is the URL-safe base64 encoding of a JSON array holding the IDs of
ranked posts not yet shown. It never carries scores or content: decoding
re-hydrates the posts and scores them again, so later pages reflect current
engagement and affinity.
"""

import base64
import binascii
import json
import logging
from typing import Any, Dict, List, Optional

from .database import Database
from .ranking import RankingEngine

logger = logging.getLogger(__name__)


def encode_state(posts: List[Dict[str, Any]]) -> str:
    """
    Encode ranked posts into an opaque cursor string.

    Args:
        posts: Ranked post dictionaries (only their 'id' is kept)

    Returns:
        URL-safe base64 string without padding
    """
    post_ids = [post["id"] for post in posts]
    payload = json.dumps(post_ids, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")


def decode_state(cursor: Optional[str]) -> Optional[List[str]]:
    """
    Decode a cursor back into the list of post IDs.

    Returns:
        List of post IDs, or None if the cursor is malformed, tampered
        with, or does not hold a list of strings
    """
    if not cursor or not isinstance(cursor, str):
        return None

    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        payload = base64.urlsafe_b64decode(padded.encode("ascii"))
        post_ids = json.loads(payload.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError, RecursionError) as e:
        logger.debug(f"Discarding undecodable cursor: {e}")
        return None

    if isinstance(post_ids, list) and all(isinstance(pid, str) for pid in post_ids):
        return post_ids

    logger.debug("Discarding cursor with unexpected payload shape")
    return None


async def fetch_posts_from_state(
    database: Database,
    ranking_engine: RankingEngine,
    post_ids: List[str],
    user_id: str,
) -> List[Dict[str, Any]]:
    """
    Re-hydrate cursor post IDs and rank them with fresh scores.

    Posts deleted since the cursor was issued simply drop out. Store
    errors yield an empty list.

    Args:
        database: Database used for hydration
        ranking_engine: Engine used to re-score the hydrated posts
        post_ids: IDs decoded from the cursor
        user_id: The viewer

    Returns:
        Ranked post dictionaries, highest score first
    """
    if not post_ids:
        return []

    try:
        candidates = await database.get_posts_by_ids(post_ids, user_id)
    except Exception as e:
        logger.error(f"Error fetching posts from cursor state: {e}", exc_info=True)
        return []

    return await ranking_engine.score_and_rank_candidates(candidates, user_id)
