#!/usr/bin/env python3
"""
Manual score checker for debugging feed rankings.

Sources the candidate pool for a viewer, scores it and prints how each
score was put together. Useful for understanding why a post from a
stranger outranks a friend's post, or why a post keeps showing up.

Usage:
    python scripts/check_scores.py --user USER_ID [options]

Examples:
    # Top 10 candidates for a viewer
    python scripts/check_scores.py --user 3f2c...

    # Show detailed breakdown of score calculation
    python scripts/check_scores.py --user 3f2c... --detailed

    # Check a specific post as seen by a viewer
    python scripts/check_scores.py --user 3f2c... --post 9a1e...

    # Show the viewer's interest profile and pool allocation
    python scripts/check_scores.py --user 3f2c... --profile
"""

import asyncio
import argparse
import sys
from pathlib import Path
from typing import Optional, Dict, Any

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from feedrank.config import FeedConfig
from feedrank.database import Database, utcnow
from feedrank.ranking import RankingEngine
from feedrank.sourcing import CandidateSourcer


def format_post_info(
    post: Dict[str, Any],
    engine: RankingEngine,
    affinity: Optional[Dict[str, float]] = None,
    detailed: bool = False,
) -> str:
    """Format a scored candidate for display."""
    lines = []
    lines.append(f"\n{'='*80}")
    lines.append(f"Post: {post['id']}")
    lines.append(f"Author: {post['author']['username']} ({post['author']['id']})")
    lines.append(f"Post Created: {post['created_at']}")
    if post.get("hashtags"):
        lines.append(f"Hashtags: {', '.join('#' + h['tag'] for h in post['hashtags'])}")

    lines.append(f"\n--- Scoring Factors ---")
    lines.append(f"Reactions: {post['reaction_count']}")
    lines.append(f"Comments: {post['comment_count']}")
    lines.append(f"Shares: {post['share_count']}")
    lines.append(f"SCORE: {post.get('score', 0):.4f}")

    if detailed:
        config = engine.config
        age_hours = engine._calculate_age_hours(post["created_at"])
        engagement = engine.calculate_engagement_score(post)
        time_decay = engine.calculate_time_decay(age_hours)
        affinity = affinity or {}
        author_affinity = affinity.get("author", 0)
        hashtag_affinity = affinity.get("hashtag", 0)

        lines.append(f"\n--- Score Breakdown ---")
        lines.append(
            f"  Engagement: {post['reaction_count']}*{config.reaction_weight} + "
            f"{post['comment_count']}*{config.comment_weight} + "
            f"{post['share_count']}*{config.share_weight} = {engagement:.4f}"
        )
        lines.append(f"  Author affinity: {author_affinity}")
        lines.append(f"  Hashtag affinity: {hashtag_affinity}")
        lines.append(f"  Age (hours): {age_hours:.2f}")
        lines.append(
            f"  Time decay: exp(-{age_hours:.2f} / {config.time_decay_factor}) = {time_decay:.6g}"
        )
        lines.append(
            f"  Formula: ({engagement:.4f} + {author_affinity} + {hashtag_affinity}) / {time_decay:.6g}"
        )
        lines.append(f"  Result: {post.get('score', 0):.4f}")

    lines.append(f"{'='*80}")
    return "\n".join(lines)


async def load_affinity(db: Database, user_id: str, posts) -> Dict[str, Dict[str, float]]:
    """Per-post author and hashtag affinity for the breakdown."""
    author_scores = await db.get_author_affinity_scores(
        user_id, {p["author"]["id"] for p in posts}
    )
    hashtag_scores = await db.get_hashtag_affinity_scores(
        user_id, {h["id"] for p in posts for h in p["hashtags"]}
    )
    return {
        p["id"]: {
            "author": author_scores.get(p["author"]["id"], 0),
            "hashtag": sum(hashtag_scores.get(h["id"], 0) for h in p["hashtags"]),
        }
        for p in posts
    }


async def check_top_candidates(
    db: Database,
    sourcer: CandidateSourcer,
    engine: RankingEngine,
    user_id: str,
    limit: int = 10,
    detailed: bool = False,
):
    """Score the viewer's candidate pool and show the top N."""
    print(f"\nSourcing candidates for {user_id}...")
    candidates = await sourcer.get_candidate_posts(user_id)

    if not candidates:
        print("No candidates found")
        return

    ranked = await engine.score_and_rank_candidates(candidates, user_id)
    affinity = await load_affinity(db, user_id, ranked[:limit])

    print(f"\nScored {len(ranked)} candidates")
    for i, post in enumerate(ranked[:limit], 1):
        print(f"\n--- Rank #{i} ---")
        print(format_post_info(post, engine, affinity.get(post["id"]), detailed))


async def check_post(
    db: Database,
    engine: RankingEngine,
    user_id: str,
    post_id: str,
):
    """Score one post as the given viewer would see it."""
    print(f"\nLooking up post: {post_id}")

    posts = await db.get_posts_by_ids([post_id], user_id)
    if not posts:
        print(f"Post not found: {post_id}")
        return

    ranked = await engine.score_and_rank_candidates(posts, user_id)
    affinity = await load_affinity(db, user_id, ranked)
    print(format_post_info(ranked[0], engine, affinity.get(post_id), detailed=True))


async def show_profile(sourcer: CandidateSourcer, user_id: str):
    """Show the viewer's interest profile and pool allocation."""
    profile = await sourcer.get_interest_profile(user_id)
    limits = sourcer.allocate_pool(sourcer.config.candidate_pool_size, profile)

    print("\n" + "="*80)
    print(f"INTEREST PROFILE FOR {user_id}")
    print("="*80)
    for source, ratio in profile.items():
        print(f"  {source:<10} {ratio:.2f}")

    print(f"\nPool allocation (pool size {sourcer.config.candidate_pool_size}):")
    for source, count in limits.items():
        print(f"  {source:<10} {count}")
    print("="*80)


async def main():
    parser = argparse.ArgumentParser(
        description="Check feed scores for debugging rankings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument(
        "--db",
        default="data/feed.db",
        help="Path to database file (default: data/feed.db)"
    )

    parser.add_argument(
        "--config",
        default="config/feed.json",
        help="Path to feed config (default: config/feed.json)"
    )

    parser.add_argument(
        "--user",
        required=True,
        help="Viewer ID to score candidates for"
    )

    parser.add_argument(
        "--post",
        help="Check specific post by ID"
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Number of posts to show (default: 10)"
    )

    parser.add_argument(
        "--detailed",
        action="store_true",
        help="Show detailed score breakdown"
    )

    parser.add_argument(
        "--profile",
        action="store_true",
        help="Show interest profile and pool allocation"
    )

    args = parser.parse_args()

    print(f"Connecting to database: {args.db}")
    db = Database(args.db)
    await db.initialize()

    print(f"Loading feed config: {args.config}")
    config = FeedConfig.from_file(args.config)
    engine = RankingEngine(db, config)
    sourcer = CandidateSourcer(db, config)

    print(f"Reference time (UTC): {utcnow().isoformat()}")

    try:
        if args.profile:
            await show_profile(sourcer, args.user)
        elif args.post:
            await check_post(db, engine, args.user, args.post)
        else:
            await check_top_candidates(db, sourcer, engine, args.user, args.limit, args.detailed)

    finally:
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())
