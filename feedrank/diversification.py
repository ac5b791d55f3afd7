"""
Post-ranking reordering that breaks up runs of posts by the same author.
"""

from collections import deque
from typing import Any, Dict, List

DEFAULT_WINDOW = 3


def diversify_ranked_feed(
    ranked_posts: List[Dict[str, Any]],
    window: int = DEFAULT_WINDOW,
) -> List[Dict[str, Any]]:
    """
    Reorder a score-sorted feed so the same author does not repeat back to back.

    Greedy: at each step take the highest-scored remaining post whose author
    is not among the last `window` chosen authors. When every remaining post
    belongs to a recent author, take the highest-scored one anyway.

    The result is always a permutation of the input. Lists of `window` posts
    or fewer are returned unchanged.

    Args:
        ranked_posts: Posts sorted by score, highest first
        window: Number of recently chosen authors to avoid

    Returns:
        New list with the same posts in diversified order
    """
    if len(ranked_posts) <= window:
        return list(ranked_posts)

    remaining = list(ranked_posts)
    recent_authors = deque(maxlen=window)
    diversified = []

    while remaining:
        selected = next(
            (i for i, post in enumerate(remaining) if post["author"]["id"] not in recent_authors),
            0,
        )
        post = remaining.pop(selected)
        diversified.append(post)
        recent_authors.append(post["author"]["id"])

    return diversified
