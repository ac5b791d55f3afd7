"""
Tests for feed orchestration.

Tests cover:
- Cold-path ranking and page slicing
- Cursor reuse, re-sourcing and malformed cursors
- Walking a feed to exhaustion without repeats
- Re-engagement feed for inactive viewers and its fallbacks
- Chronological profile feeds
- Request validation
"""

import base64
import pytest
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from feedrank.config import FeedConfig
from feedrank.database import Database, utcnow
from feedrank.feed import FeedService
from feedrank.state import decode_state, encode_state


@pytest.fixture
async def test_db():
    """Create a temporary test database."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    db = Database(db_path)
    await db.initialize()
    yield db

    await db.close()
    Path(db_path).unlink(missing_ok=True)


@pytest.fixture
async def crowded_db(test_db):
    """A viewer and 30 posts spread over 10 other authors."""
    viewer = await test_db.add_user("viewer")
    now = utcnow()
    post_ids = []
    for a in range(10):
        author = await test_db.add_user(f"author{a}")
        for p in range(3):
            post_ids.append(await test_db.add_post(
                author,
                content={"text": f"post {p} by author {a}"},
                created_at=now - timedelta(minutes=10 * (a * 3 + p + 1)),
            ))
    return test_db, viewer, post_ids


@pytest.fixture
def big_pool_config():
    """Config whose random pool alone covers every seeded post."""
    return FeedConfig(candidate_pool_size=1000)


async def seed_reengagement(db):
    """Inactive viewer with one friend who posted during the absence."""
    now = utcnow()
    viewer = await db.add_user("viewer", last_active_at=now - timedelta(days=30))
    friend = await db.add_user("friend")
    stranger = await db.add_user("stranger")
    reactors = [await db.add_user(f"reactor{i}") for i in range(3)]
    await db.add_friendship(viewer, friend)

    reacted = await db.add_post(friend, created_at=now - timedelta(days=1))
    commented = await db.add_post(friend, created_at=now - timedelta(days=2))
    quiet = await db.add_post(friend, created_at=now - timedelta(hours=3))
    await db.add_post(stranger, created_at=now - timedelta(hours=1))

    # reactions: 3 * 1 = 3; comments: 2 * 3 = 6
    for reactor in reactors:
        await db.add_reaction(reactor, reacted)
    await db.add_comment(reactors[0], commented)
    await db.add_comment(reactors[1], commented)

    return viewer, {"reacted": reacted, "commented": commented, "quiet": quiet}


class TestColdPath:
    """Tests for feeds ranked from freshly sourced candidates."""

    @pytest.mark.asyncio
    async def test_first_page(self, crowded_db, big_pool_config):
        """Test the first page is limited and a cursor holds the rest."""
        db, viewer, post_ids = crowded_db
        service = FeedService(db, big_pool_config)

        result = await service.get_ranked_feed(viewer, limit=10)

        assert len(result["posts"]) == 10
        assert all("score" in p for p in result["posts"])
        assert set(p["id"] for p in result["posts"]) <= set(post_ids)

        remaining = decode_state(result["next_cursor"])
        assert len(remaining) == 20
        assert not set(remaining) & {p["id"] for p in result["posts"]}

    @pytest.mark.asyncio
    async def test_everything_fits_in_one_page(self, crowded_db, big_pool_config):
        """Test no cursor is returned when the pool fits the page."""
        db, viewer, post_ids = crowded_db
        service = FeedService(db, big_pool_config)

        result = await service.get_ranked_feed(viewer, limit=50)

        assert len(result["posts"]) == 30
        assert result["next_cursor"] is None

    @pytest.mark.asyncio
    async def test_page_is_diversified(self, crowded_db, big_pool_config):
        """Test the same author does not appear twice within three posts."""
        db, viewer, _ = crowded_db
        service = FeedService(db, big_pool_config)

        result = await service.get_ranked_feed(viewer, limit=20)
        authors = [p["author"]["id"] for p in result["posts"]]

        for i in range(len(authors)):
            assert authors[i] not in authors[max(0, i - 3):i]

    @pytest.mark.asyncio
    async def test_engaged_post_ranks_first(self, crowded_db, big_pool_config):
        """Test the most engaged post leads the page."""
        db, viewer, post_ids = crowded_db
        reactor = await db.add_user("reactor")
        await db.add_reaction(reactor, post_ids[0])
        await db.add_comment(reactor, post_ids[0])

        service = FeedService(db, big_pool_config)
        result = await service.get_ranked_feed(viewer, limit=5)

        assert result["posts"][0]["id"] == post_ids[0]

    @pytest.mark.asyncio
    async def test_empty_store(self, test_db):
        """Test a viewer with nothing to see gets an empty feed."""
        viewer = await test_db.add_user("viewer")
        service = FeedService(test_db, FeedConfig())

        assert await service.get_ranked_feed(viewer) == {"posts": [], "next_cursor": None}

    @pytest.mark.asyncio
    async def test_unexpected_error_gives_empty_feed(self, crowded_db):
        """Test failures inside the pipeline degrade to an empty feed."""
        db, viewer, _ = crowded_db
        service = FeedService(db, FeedConfig())
        service.sourcer.get_candidate_posts = AsyncMock(side_effect=RuntimeError("boom"))

        assert await service.get_ranked_feed(viewer) == {"posts": [], "next_cursor": None}


class TestCursorPath:
    """Tests for pages served from cursor state."""

    @pytest.mark.asyncio
    async def test_walk_to_exhaustion(self, crowded_db, big_pool_config):
        """Test paging through the feed shows every post exactly once."""
        db, viewer, post_ids = crowded_db
        service = FeedService(db, big_pool_config)

        first = await service.get_ranked_feed(viewer, limit=15)
        assert len(first["posts"]) == 15
        assert first["next_cursor"] is not None

        second = await service.get_ranked_feed(viewer, limit=15, cursor=first["next_cursor"])
        assert len(second["posts"]) == 15
        assert second["next_cursor"] is None

        seen = [p["id"] for p in first["posts"] + second["posts"]]
        assert len(seen) == len(set(seen))
        assert set(seen) == set(post_ids)

    @pytest.mark.asyncio
    async def test_cursor_reused_without_sourcing(self, crowded_db, big_pool_config):
        """Test a cursor with enough IDs is served without re-sourcing."""
        db, viewer, post_ids = crowded_db
        service = FeedService(db, big_pool_config)
        service.sourcer.get_candidate_posts = AsyncMock(return_value=[])

        cursor = encode_state([{"id": pid} for pid in post_ids[:12]])
        result = await service.get_ranked_feed(viewer, limit=5, cursor=cursor)

        service.sourcer.get_candidate_posts.assert_not_awaited()
        assert {p["id"] for p in result["posts"]} <= set(post_ids[:12])
        assert len(decode_state(result["next_cursor"])) == 7

    @pytest.mark.asyncio
    async def test_small_cursor_triggers_fresh_ranking(self, crowded_db, big_pool_config):
        """Test cursors at or below the cache threshold are discarded."""
        db, viewer, post_ids = crowded_db
        service = FeedService(db, big_pool_config)

        small_cursor = encode_state([{"id": pid} for pid in post_ids[:10]])
        assert await service._rank_from_cursor(viewer, small_cursor) is None

        result = await service.get_ranked_feed(viewer, limit=5, cursor=small_cursor)
        assert len(result["posts"]) == 5
        assert len(decode_state(result["next_cursor"])) == 25

    @pytest.mark.asyncio
    async def test_malformed_cursor_treated_as_absent(self, crowded_db, big_pool_config):
        """Test garbage cursors fall back to a fresh ranking run."""
        db, viewer, _ = crowded_db
        service = FeedService(db, big_pool_config)

        result = await service.get_ranked_feed(viewer, limit=10, cursor="%%%not-a-cursor%%%")

        assert len(result["posts"]) == 10
        assert len(decode_state(result["next_cursor"])) == 20

    @pytest.mark.asyncio
    async def test_deeply_nested_cursor_treated_as_absent(self, crowded_db, big_pool_config):
        """Test a cursor of deeply nested arrays still serves a full fresh page."""
        db, viewer, _ = crowded_db
        service = FeedService(db, big_pool_config)
        cursor = base64.urlsafe_b64encode(("[" * 5000).encode("ascii")).decode("ascii").rstrip("=")

        result = await service.get_ranked_feed(viewer, limit=10, cursor=cursor)

        assert len(result["posts"]) == 10
        assert len(decode_state(result["next_cursor"])) == 20

    @pytest.mark.asyncio
    async def test_cursor_rescored(self, crowded_db, big_pool_config):
        """Test cursor pages reflect engagement added after the cursor was issued."""
        db, viewer, post_ids = crowded_db
        service = FeedService(db, big_pool_config)

        cursor = encode_state([{"id": pid} for pid in post_ids[:12]])
        reactor = await db.add_user("reactor")
        await db.add_reaction(reactor, post_ids[11])

        result = await service.get_ranked_feed(viewer, limit=3, cursor=cursor)
        assert result["posts"][0]["id"] == post_ids[11]


class TestReengagement:
    """Tests for the single-page feed of returning viewers."""

    def test_is_reengagement_user(self):
        """Test the inactivity threshold."""
        service = FeedService(MagicMock(), FeedConfig(reengagement_inactive_days=7))
        now = utcnow()

        assert service.is_reengagement_user(None) is False
        assert service.is_reengagement_user(now - timedelta(days=1), now) is False
        assert service.is_reengagement_user(now - timedelta(days=7), now) is False
        assert service.is_reengagement_user(now - timedelta(days=8), now) is True

    def test_is_reengagement_user_with_aware_datetimes(self):
        """Test timezone-aware activity times are compared as UTC."""
        service = FeedService(MagicMock(), FeedConfig(reengagement_inactive_days=7))
        aware_now = datetime.now(timezone.utc)

        assert service.is_reengagement_user(aware_now - timedelta(days=30)) is True
        assert service.is_reengagement_user(aware_now - timedelta(hours=1)) is False
        assert service.is_reengagement_user(utcnow() - timedelta(days=30), aware_now) is True

    @pytest.mark.asyncio
    async def test_recently_active_aware_datetime_gets_ranked_feed(self, crowded_db, big_pool_config):
        """Test an aware last-active time for an active viewer serves the ranked feed."""
        db, viewer, _ = crowded_db
        service = FeedService(db, big_pool_config)

        result = await service.get_ranked_feed(
            viewer, limit=10, user_last_active_at=datetime.now(timezone.utc) - timedelta(hours=1)
        )

        assert len(result["posts"]) == 10
        assert result["next_cursor"] is not None

    @pytest.mark.asyncio
    async def test_reengagement_feed(self, test_db):
        """Test inactive viewers get friend posts ordered by engagement, no cursor."""
        viewer, posts = await seed_reengagement(test_db)
        service = FeedService(test_db, FeedConfig())

        result = await service.get_feed(viewer, limit=10)

        assert [p["id"] for p in result["posts"]] == [
            posts["commented"], posts["reacted"], posts["quiet"],
        ]
        assert [p["score"] for p in result["posts"]] == [6.0, 3.0, 0.0]
        assert result["next_cursor"] is None

    @pytest.mark.asyncio
    async def test_reengagement_respects_limit(self, test_db):
        """Test the page size caps the re-engagement page."""
        viewer, posts = await seed_reengagement(test_db)
        service = FeedService(test_db, FeedConfig())

        result = await service.get_feed(viewer, limit=1)

        assert [p["id"] for p in result["posts"]] == [posts["commented"]]
        assert result["next_cursor"] is None

    @pytest.mark.asyncio
    async def test_reengagement_failure_falls_back(self, test_db):
        """Test a failing re-engagement query falls through to the normal feed."""
        viewer, posts = await seed_reengagement(test_db)
        service = FeedService(test_db, FeedConfig())
        test_db.get_reengagement_post_ids = AsyncMock(side_effect=RuntimeError("db down"))

        result = await service.get_feed(viewer, limit=10)

        assert result["posts"]
        assert set(posts.values()) <= {p["id"] for p in result["posts"]}

    @pytest.mark.asyncio
    async def test_reengagement_without_friend_posts_falls_back(self, test_db):
        """Test an empty re-engagement page falls through to the normal feed."""
        viewer = await test_db.add_user("viewer", last_active_at=utcnow() - timedelta(days=30))
        stranger = await test_db.add_user("stranger")
        post_id = await test_db.add_post(stranger)

        service = FeedService(test_db, FeedConfig())
        result = await service.get_feed(viewer)

        assert [p["id"] for p in result["posts"]] == [post_id]

    @pytest.mark.asyncio
    async def test_cursor_skips_reengagement(self, test_db):
        """Test paginating viewers never get the re-engagement page."""
        viewer, posts = await seed_reengagement(test_db)
        service = FeedService(test_db, FeedConfig())
        service.get_reengagement_feed = AsyncMock(return_value=[])

        await service.get_feed(viewer, cursor=encode_state([{"id": "x"}]))
        service.get_reengagement_feed.assert_not_awaited()


class TestProfileFeed:
    """Tests for chronological author feeds."""

    @pytest.fixture
    async def author_posts(self, test_db):
        author = await test_db.add_user("author")
        other = await test_db.add_user("other")
        now = utcnow()
        # Oldest first
        ids = [
            await test_db.add_post(author, created_at=now - timedelta(hours=h))
            for h in (5, 4, 3, 2, 1)
        ]
        await test_db.add_post(other, created_at=now)
        return author, ids

    @pytest.mark.asyncio
    async def test_pages_newest_first(self, test_db, author_posts):
        """Test profile pages walk backwards in time until exhausted."""
        author, ids = author_posts
        service = FeedService(test_db, FeedConfig())

        page1 = await service.get_feed(author, limit=2, feed_for="profile")
        page2 = await service.get_feed(author, limit=2, feed_for="profile", cursor=page1["next_cursor"])
        page3 = await service.get_feed(author, limit=2, feed_for="profile", cursor=page2["next_cursor"])

        assert [p["id"] for p in page1["posts"]] == [ids[4], ids[3]]
        assert [p["id"] for p in page2["posts"]] == [ids[2], ids[1]]
        assert [p["id"] for p in page3["posts"]] == [ids[0]]
        assert page3["next_cursor"] is None

    @pytest.mark.asyncio
    async def test_profile_scores_decrease(self, test_db, author_posts):
        """Test newer posts carry higher sort scores on a profile page."""
        author, _ = author_posts
        service = FeedService(test_db, FeedConfig())

        result = await service.get_profile_feed(author, limit=5)
        scores = [p["score"] for p in result["posts"]]

        assert scores == sorted(scores, reverse=True)
        assert result["next_cursor"] is None

    @pytest.mark.asyncio
    async def test_oldest_direction(self, test_db, author_posts):
        """Test chronological paging from the first post."""
        author, ids = author_posts
        service = FeedService(test_db, FeedConfig())

        page1 = await service.get_profile_feed(author, limit=3, direction="oldest")
        page2 = await service.get_profile_feed(author, limit=3, direction="oldest", cursor=page1["next_cursor"])

        assert [p["id"] for p in page1["posts"]] == ids[:3]
        assert [p["id"] for p in page2["posts"]] == ids[3:]
        assert page2["next_cursor"] is None

    @pytest.mark.asyncio
    async def test_other_profile(self, test_db, author_posts):
        """Test a viewer can page through someone else's profile."""
        author, ids = author_posts
        viewer = await test_db.add_user("viewer")
        await test_db.add_reaction(viewer, ids[4], "love")
        service = FeedService(test_db, FeedConfig())

        result = await service.get_feed(viewer, limit=1, feed_for="profile", profile_user_id=author)

        assert [p["id"] for p in result["posts"]] == [ids[4]]
        assert result["posts"][0]["current_user_reaction_id"] == "love"

    @pytest.mark.asyncio
    async def test_malformed_profile_cursor_restarts(self, test_db, author_posts):
        """Test an unparseable cursor serves the first page."""
        author, ids = author_posts
        service = FeedService(test_db, FeedConfig())

        result = await service.get_profile_feed(author, limit=2, cursor="yesterday-ish")
        assert [p["id"] for p in result["posts"]] == [ids[4], ids[3]]

    @pytest.mark.asyncio
    async def test_unknown_direction(self, test_db):
        """Test an unknown direction is rejected."""
        service = FeedService(test_db, FeedConfig())
        with pytest.raises(ValueError):
            await service.get_profile_feed("author", direction="sideways")


class TestValidation:
    """Tests for request validation in get_feed."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, -1, 51])
    async def test_limit_out_of_range(self, test_db, limit):
        """Test limits outside 1..50 are rejected."""
        service = FeedService(test_db, FeedConfig())
        with pytest.raises(ValueError):
            await service.get_feed("viewer", limit=limit)

    @pytest.mark.asyncio
    async def test_unknown_feed_type(self, test_db):
        """Test unknown feed types are rejected."""
        service = FeedService(test_db, FeedConfig())
        with pytest.raises(ValueError):
            await service.get_feed("viewer", feed_for="explore")

    @pytest.mark.asyncio
    async def test_default_page_size(self, crowded_db, big_pool_config):
        """Test the configured page size applies when no limit is given."""
        db, viewer, _ = crowded_db
        service = FeedService(db, big_pool_config)

        result = await service.get_feed(viewer)
        assert len(result["posts"]) == big_pool_config.page_size
