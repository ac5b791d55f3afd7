"""
Database operations for the personalized feed engine.

This module provides async database operations using SQLAlchemy with SQLite.
The ranking engine only reads from these tables; the write helpers exist for
seeding, tooling and tests. Tables:
- users: Viewer/author profiles with last activity timestamp
- friendships: Unordered user pairs with a status (pending/accepted/blocked)
- posts: Post records with opaque JSON content
- hashtags / post_hashtags: Hashtags with usage counters and their post links
- post_reactions / comments: Engagement facts counted at query time
- post_media / link_previews: Display relations hydrated with candidates
- user_affinity / user_hashtag_affinity: Directional interest scores
"""

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterable, Set, Tuple

from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Index,
    and_,
    case,
    event,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base, relationship, selectinload
from sqlalchemy.exc import IntegrityError

logger = logging.getLogger(__name__)

Base = declarative_base()

FRIENDSHIP_STATUSES = ("pending", "accepted", "blocked")


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching what SQLite stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """A viewer or post author."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    username = Column(String, unique=True, nullable=False)
    image = Column(String)
    last_active_at = Column(DateTime, default=utcnow)
    created_at = Column(DateTime, default=utcnow)

    posts = relationship("Post", back_populates="author")

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username})>"


class Friendship(Base):
    """Unordered friendship edge; either side may be the viewer."""

    __tablename__ = "friendships"

    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    friend_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    status = Column(String, nullable=False)
    # Who performed the last action (sent the request, blocked, ...)
    action_user_id = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_friendships_friend_id", "friend_id"),
    )

    def __repr__(self):
        return f"<Friendship({self.user_id} <-> {self.friend_id}, {self.status})>"


class PostHashtag(Base):
    """Junction table linking posts to hashtags."""

    __tablename__ = "post_hashtags"

    post_id = Column(String, ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True)
    hashtag_id = Column(String, ForeignKey("hashtags.id", ondelete="CASCADE"), primary_key=True)

    __table_args__ = (
        Index("idx_post_hashtags_hashtag_id", "hashtag_id"),
    )


class Post(Base):
    """A post. Content is an opaque rich-text document passed through untouched."""

    __tablename__ = "posts"

    id = Column(String, primary_key=True, default=_new_id)
    author_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(JSON)
    visibility_id = Column(String, nullable=False, default="public")
    shared_post_id = Column(String, ForeignKey("posts.id", ondelete="CASCADE"))
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, onupdate=utcnow)

    author = relationship("User", back_populates="posts")
    hashtags = relationship(
        "Hashtag",
        secondary="post_hashtags",
        order_by="Hashtag.tag",
        viewonly=True,
    )
    media = relationship(
        "PostMedia",
        order_by="PostMedia.order",
        cascade="all, delete-orphan",
    )
    link_preview = relationship("LinkPreview", uselist=False, cascade="all, delete-orphan")
    reactions = relationship("PostReaction", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_posts_author_id", "author_id"),
        Index("idx_posts_created_at", "created_at"),
        Index("idx_posts_shared_post_id", "shared_post_id"),
    )

    def __repr__(self):
        return f"<Post(id={self.id}, author={self.author_id})>"


class Hashtag(Base):
    """A normalized hashtag with a global usage counter."""

    __tablename__ = "hashtags"

    id = Column(String, primary_key=True, default=_new_id)
    tag = Column(String, unique=True, nullable=False)
    usage_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("idx_hashtags_usage_count", "usage_count"),
    )

    def __repr__(self):
        return f"<Hashtag(tag={self.tag}, uses={self.usage_count})>"


class PostReaction(Base):
    """One reaction per user per post."""

    __tablename__ = "post_reactions"

    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    post_id = Column(String, ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True)
    reaction_id = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("idx_post_reactions_post_id", "post_id"),
    )


class Comment(Base):
    """Comment on a post, optionally threaded under another comment."""

    __tablename__ = "comments"

    id = Column(String, primary_key=True, default=_new_id)
    post_id = Column(String, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False)
    author_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    parent_id = Column(String, ForeignKey("comments.id", ondelete="CASCADE"))
    content = Column(JSON)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("idx_comments_post_id", "post_id"),
        Index("idx_comments_author_id", "author_id"),
    )


class PostMedia(Base):
    """Media item (image, video) attached to a post."""

    __tablename__ = "post_media"

    id = Column(String, primary_key=True, default=_new_id)
    post_id = Column(String, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False)
    url = Column(Text, nullable=False)
    type = Column(String, nullable=False)
    alt_text = Column(Text)
    order = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_post_media_post_id", "post_id"),
    )


class LinkPreview(Base):
    """Scraped metadata for a URL shared in a post."""

    __tablename__ = "link_previews"

    id = Column(String, primary_key=True, default=_new_id)
    post_id = Column(String, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, unique=True)
    url = Column(Text, nullable=False)
    title = Column(Text)
    description = Column(Text)
    image_url = Column(Text)
    position = Column(String, nullable=False, default="last")


class UserAffinity(Base):
    """Viewer -> author affinity. Maintained by an external engagement tracker."""

    __tablename__ = "user_affinity"

    source_user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    target_user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    score = Column(Integer, nullable=False, default=0)


class UserHashtagAffinity(Base):
    """Viewer -> hashtag affinity."""

    __tablename__ = "user_hashtag_affinity"

    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    hashtag_id = Column(String, ForeignKey("hashtags.id", ondelete="CASCADE"), primary_key=True)
    score = Column(Integer, nullable=False, default=0)


def normalize_tag(tag: str) -> str:
    """Normalize hashtag text: strip a leading '#', whitespace and case."""
    return tag.strip().lstrip("#").lower()


class Database:
    """
    Async database manager for the feed engine.

    Provides methods for:
    - Initializing database schema
    - Seeding users, friendships, posts and engagement (tooling and tests)
    - Candidate ID queries for each sourcing pool
    - Batched hydration of posts into candidate dictionaries
    - Batched affinity lookups for scoring
    """

    def __init__(self, db_path: str = "data/feed.db"):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

        # Ensure data directory exists
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        # Create async engine
        self.engine = create_async_engine(
            f"sqlite+aiosqlite:///{db_path}",
            echo=False,  # Set to True for SQL debugging
        )

        # Enable foreign keys and optimize SQLite for each connection
        @event.listens_for(self.engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")  # Readers don't block the writer
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA cache_size=-64000")  # 64MB cache
            cursor.execute("PRAGMA temp_store=MEMORY")
            cursor.close()

        # Create session factory
        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        logger.info(f"Database initialized at {db_path}")

    async def initialize(self):
        """Create all database tables and indexes."""
        async with self.engine.begin() as conn:
            await conn.execute(text("PRAGMA foreign_keys = ON"))
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema created")

    async def close(self):
        """Close database connection."""
        await self.engine.dispose()
        logger.info("Database connection closed")

    # ------------------------------------------------------------------
    # Seeding helpers
    # ------------------------------------------------------------------

    async def add_user(
        self,
        username: str,
        name: Optional[str] = None,
        user_id: Optional[str] = None,
        image: Optional[str] = None,
        last_active_at: Optional[datetime] = None,
    ) -> str:
        """
        Add a user.

        Returns:
            The user ID
        """
        user = User(
            id=user_id or _new_id(),
            name=name or username,
            username=username,
            image=image,
            last_active_at=last_active_at or utcnow(),
        )
        async with self.async_session() as session:
            session.add(user)
            await session.commit()
        logger.debug(f"Added user {user.id} ({username})")
        return user.id

    async def add_friendship(
        self,
        user_id: str,
        friend_id: str,
        status: str = "accepted",
        action_user_id: Optional[str] = None,
    ) -> bool:
        """
        Add a friendship edge.

        Returns:
            True if added, False if the pair already exists

        Raises:
            ValueError: If status is not a known friendship status
        """
        if status not in FRIENDSHIP_STATUSES:
            raise ValueError(f"Unknown friendship status: {status}")

        async with self.async_session() as session:
            try:
                session.add(Friendship(
                    user_id=user_id,
                    friend_id=friend_id,
                    status=status,
                    action_user_id=action_user_id or user_id,
                ))
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()
                logger.debug(f"Friendship {user_id} <-> {friend_id} already exists")
                return False

    async def add_post(
        self,
        author_id: str,
        content: Optional[Any] = None,
        hashtags: Optional[Iterable[str]] = None,
        created_at: Optional[datetime] = None,
        post_id: Optional[str] = None,
        visibility_id: str = "public",
        shared_post_id: Optional[str] = None,
    ) -> str:
        """
        Add a post and link its hashtags.

        Hashtags are created on first use; every use increments the
        hashtag's usage counter.

        Args:
            author_id: ID of the posting user
            content: Opaque content document
            hashtags: Tag strings (normalized before storage)
            created_at: Post creation timestamp (defaults to now)
            post_id: Explicit post ID (generated when omitted)
            visibility_id: Visibility rule reference
            shared_post_id: ID of the post being shared, if any

        Returns:
            The post ID
        """
        post = Post(
            id=post_id or _new_id(),
            author_id=author_id,
            content=content,
            visibility_id=visibility_id,
            shared_post_id=shared_post_id,
            created_at=created_at or utcnow(),
        )

        async with self.async_session() as session:
            try:
                session.add(post)
                await session.flush()

                seen = set()
                for tag in hashtags or []:
                    normalized = normalize_tag(tag)
                    if not normalized or normalized in seen:
                        continue
                    seen.add(normalized)
                    hashtag = await self._get_or_create_hashtag(session, normalized)
                    session.add(PostHashtag(post_id=post.id, hashtag_id=hashtag.id))

                await session.commit()
                logger.debug(f"Added post {post.id} by {author_id}")
                return post.id
            except Exception as e:
                await session.rollback()
                logger.error(f"Error adding post by {author_id}: {e}")
                raise

    async def _get_or_create_hashtag(self, session: AsyncSession, tag: str) -> Hashtag:
        """
        Get existing hashtag or create a new one, incrementing its usage count.

        Args:
            session: Active database session
            tag: Normalized tag text

        Returns:
            Hashtag record (existing or newly created)
        """
        result = await session.execute(select(Hashtag).where(Hashtag.tag == tag))
        hashtag = result.scalar_one_or_none()

        if hashtag:
            hashtag.usage_count += 1
        else:
            hashtag = Hashtag(tag=tag, usage_count=1)
            session.add(hashtag)

        await session.flush()  # Ensure ID is generated
        return hashtag

    async def add_reaction(self, user_id: str, post_id: str, reaction_id: str = "like") -> bool:
        """
        Record a user's reaction to a post.

        Returns:
            True if added, False if the user already reacted to this post
        """
        async with self.async_session() as session:
            try:
                session.add(PostReaction(user_id=user_id, post_id=post_id, reaction_id=reaction_id))
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()
                return False

    async def add_comment(
        self,
        author_id: str,
        post_id: str,
        content: Optional[Any] = None,
        parent_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> str:
        """Add a comment and return its ID."""
        comment = Comment(
            id=_new_id(),
            post_id=post_id,
            author_id=author_id,
            parent_id=parent_id,
            content=content,
            created_at=created_at or utcnow(),
        )
        async with self.async_session() as session:
            session.add(comment)
            await session.commit()
        return comment.id

    async def add_media(
        self,
        post_id: str,
        url: str,
        media_type: str = "image",
        alt_text: Optional[str] = None,
        order: int = 0,
    ) -> str:
        """Attach a media item to a post and return its ID."""
        media = PostMedia(
            id=_new_id(),
            post_id=post_id,
            url=url,
            type=media_type,
            alt_text=alt_text,
            order=order,
        )
        async with self.async_session() as session:
            session.add(media)
            await session.commit()
        return media.id

    async def add_link_preview(
        self,
        post_id: str,
        url: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
        position: str = "last",
    ) -> str:
        """Attach a link preview to a post and return its ID."""
        preview = LinkPreview(
            id=_new_id(),
            post_id=post_id,
            url=url,
            title=title,
            description=description,
            image_url=image_url,
            position=position,
        )
        async with self.async_session() as session:
            session.add(preview)
            await session.commit()
        return preview.id

    async def set_user_affinity(self, source_user_id: str, target_user_id: str, score: int):
        """Insert or overwrite a viewer -> author affinity score."""
        async with self.async_session() as session:
            row = await session.get(UserAffinity, (source_user_id, target_user_id))
            if row:
                row.score = score
            else:
                session.add(UserAffinity(
                    source_user_id=source_user_id,
                    target_user_id=target_user_id,
                    score=score,
                ))
            await session.commit()

    async def set_hashtag_affinity(self, user_id: str, hashtag_id: str, score: int):
        """Insert or overwrite a viewer -> hashtag affinity score."""
        async with self.async_session() as session:
            row = await session.get(UserHashtagAffinity, (user_id, hashtag_id))
            if row:
                row.score = score
            else:
                session.add(UserHashtagAffinity(user_id=user_id, hashtag_id=hashtag_id, score=score))
            await session.commit()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a user by ID.

        Returns:
            Dictionary with user data, or None if not found
        """
        async with self.async_session() as session:
            user = await session.get(User, user_id)
            if user:
                return {
                    "id": user.id,
                    "name": user.name,
                    "username": user.username,
                    "image": user.image,
                    "last_active_at": user.last_active_at,
                    "created_at": user.created_at,
                }
            return None

    async def get_hashtag(self, tag: str) -> Optional[Dict[str, Any]]:
        """Get a hashtag by its (unnormalized) tag text."""
        async with self.async_session() as session:
            result = await session.execute(
                select(Hashtag).where(Hashtag.tag == normalize_tag(tag))
            )
            hashtag = result.scalar_one_or_none()
            if hashtag:
                return {
                    "id": hashtag.id,
                    "tag": hashtag.tag,
                    "usage_count": hashtag.usage_count,
                }
            return None

    @staticmethod
    def _friend_ids_query(user_id: str):
        """Select the IDs of users holding an accepted friendship with user_id."""
        return select(
            case(
                (Friendship.user_id == user_id, Friendship.friend_id),
                else_=Friendship.user_id,
            )
        ).where(
            Friendship.status == "accepted",
            or_(Friendship.user_id == user_id, Friendship.friend_id == user_id),
        )

    async def get_accepted_friend_ids(self, user_id: str) -> Set[str]:
        """Get the IDs of all accepted friends of a user."""
        async with self.async_session() as session:
            result = await session.execute(self._friend_ids_query(user_id))
            return {row[0] for row in result.all()}

    async def get_author_affinity_scores(
        self,
        user_id: str,
        author_ids: Optional[Iterable[str]] = None,
    ) -> Dict[str, int]:
        """
        Get the viewer's affinity scores towards authors.

        Args:
            user_id: The viewer
            author_ids: Restrict to these authors (all rows when None)

        Returns:
            Mapping of target author ID to score; authors without a row are absent
        """
        query = select(UserAffinity.target_user_id, UserAffinity.score).where(
            UserAffinity.source_user_id == user_id
        )
        if author_ids is not None:
            author_ids = list(author_ids)
            if not author_ids:
                return {}
            query = query.where(UserAffinity.target_user_id.in_(author_ids))

        async with self.async_session() as session:
            result = await session.execute(query)
            return {target: score for target, score in result.all()}

    async def get_hashtag_affinity_scores(
        self,
        user_id: str,
        hashtag_ids: Iterable[str],
    ) -> Dict[str, int]:
        """Get the viewer's affinity scores for the given hashtags."""
        hashtag_ids = list(hashtag_ids)
        if not hashtag_ids:
            return {}

        async with self.async_session() as session:
            result = await session.execute(
                select(UserHashtagAffinity.hashtag_id, UserHashtagAffinity.score).where(
                    UserHashtagAffinity.user_id == user_id,
                    UserHashtagAffinity.hashtag_id.in_(hashtag_ids),
                )
            )
            return {hashtag_id: score for hashtag_id, score in result.all()}

    # ------------------------------------------------------------------
    # Candidate ID queries
    # ------------------------------------------------------------------

    async def get_friend_post_ids(self, user_id: str, limit: int) -> List[str]:
        """Newest posts authored by the viewer's accepted friends."""
        if limit <= 0:
            return []

        async with self.async_session() as session:
            result = await session.execute(
                select(Post.id)
                .where(Post.author_id.in_(self._friend_ids_query(user_id)))
                .order_by(Post.created_at.desc())
                .limit(limit)
            )
            return [row[0] for row in result.all()]

    async def get_interest_hashtag_ids(self, user_id: str, limit: int = 10) -> List[str]:
        """
        Hashtags on posts the viewer has reacted to or commented on.

        Ordered by how many of those posts carry the hashtag.
        """
        reacted = select(PostReaction.post_id).where(PostReaction.user_id == user_id)
        commented = select(Comment.post_id).where(Comment.author_id == user_id)

        async with self.async_session() as session:
            result = await session.execute(
                select(PostHashtag.hashtag_id)
                .where(
                    or_(
                        PostHashtag.post_id.in_(reacted),
                        PostHashtag.post_id.in_(commented),
                    )
                )
                .group_by(PostHashtag.hashtag_id)
                .order_by(func.count().desc(), PostHashtag.hashtag_id)
                .limit(limit)
            )
            return [row[0] for row in result.all()]

    async def get_topic_post_ids(
        self,
        user_id: str,
        limit: int,
        hashtag_limit: int = 10,
    ) -> List[str]:
        """Newest posts (not the viewer's) tagged with the viewer's interest hashtags."""
        if limit <= 0:
            return []

        hashtag_ids = await self.get_interest_hashtag_ids(user_id, limit=hashtag_limit)
        if not hashtag_ids:
            return []

        async with self.async_session() as session:
            result = await session.execute(
                select(Post.id, Post.created_at)
                .join(PostHashtag, PostHashtag.post_id == Post.id)
                .where(
                    PostHashtag.hashtag_id.in_(hashtag_ids),
                    Post.author_id != user_id,
                )
                .distinct()
                .order_by(Post.created_at.desc())
                .limit(limit)
            )
            return [row[0] for row in result.all()]

    @staticmethod
    def _engagement_columns(reaction_weight: float, comment_weight: float):
        """
        Build per-post reaction/comment count subqueries and a weighted score.

        Returns:
            Tuple of (reaction_counts, comment_counts, score_expression)
        """
        reaction_counts = (
            select(PostReaction.post_id.label("post_id"), func.count().label("n"))
            .group_by(PostReaction.post_id)
            .subquery()
        )
        comment_counts = (
            select(Comment.post_id.label("post_id"), func.count().label("n"))
            .group_by(Comment.post_id)
            .subquery()
        )
        score = (
            func.coalesce(reaction_counts.c.n, 0) * reaction_weight
            + func.coalesce(comment_counts.c.n, 0) * comment_weight
        )
        return reaction_counts, comment_counts, score

    async def get_trending_post_ids(
        self,
        user_id: str,
        limit: int,
        since: datetime,
        reaction_weight: float = 1.0,
        comment_weight: float = 3.0,
    ) -> List[str]:
        """
        Posts (not the viewer's) created since `since`, ordered by weighted
        engagement. Posts without engagement are excluded.
        """
        if limit <= 0:
            return []

        reaction_counts, comment_counts, score = self._engagement_columns(
            reaction_weight, comment_weight
        )

        async with self.async_session() as session:
            result = await session.execute(
                select(Post.id)
                .outerjoin(reaction_counts, reaction_counts.c.post_id == Post.id)
                .outerjoin(comment_counts, comment_counts.c.post_id == Post.id)
                .where(
                    Post.created_at >= since,
                    Post.author_id != user_id,
                    score > 0,
                )
                .order_by(score.desc(), Post.created_at.desc())
                .limit(limit)
            )
            return [row[0] for row in result.all()]

    async def get_random_post_ids(self, user_id: str, limit: int) -> List[str]:
        """Uniformly random posts not authored by the viewer."""
        if limit <= 0:
            return []

        async with self.async_session() as session:
            result = await session.execute(
                select(Post.id)
                .where(Post.author_id != user_id)
                .order_by(func.random())
                .limit(limit)
            )
            return [row[0] for row in result.all()]

    async def get_reengagement_post_ids(
        self,
        user_id: str,
        since: datetime,
        limit: int,
        reaction_weight: float = 1.0,
        comment_weight: float = 3.0,
    ) -> List[Tuple[str, float]]:
        """
        Friend posts created since `since`, best engagement first.

        Returns:
            List of (post_id, engagement_score) tuples
        """
        if limit <= 0:
            return []

        reaction_counts, comment_counts, score = self._engagement_columns(
            reaction_weight, comment_weight
        )

        async with self.async_session() as session:
            result = await session.execute(
                select(Post.id, score.label("engagement"))
                .outerjoin(reaction_counts, reaction_counts.c.post_id == Post.id)
                .outerjoin(comment_counts, comment_counts.c.post_id == Post.id)
                .where(
                    Post.created_at >= since,
                    Post.author_id.in_(self._friend_ids_query(user_id)),
                )
                .order_by(score.desc(), Post.created_at.desc())
                .limit(limit)
            )
            return [(post_id, float(engagement)) for post_id, engagement in result.all()]

    async def get_author_post_ids(
        self,
        author_id: str,
        limit: int,
        cursor_time: Optional[datetime] = None,
        direction: str = "newest",
    ) -> List[str]:
        """
        Post IDs of one author in chronological order.

        Args:
            author_id: Author whose posts to list
            limit: Maximum number of IDs to return
            cursor_time: Only posts strictly before (newest) or after (oldest) this time
            direction: "newest" for reverse-chronological, "oldest" for chronological
        """
        conditions = [Post.author_id == author_id]
        if direction == "newest":
            order = Post.created_at.desc()
            if cursor_time is not None:
                conditions.append(Post.created_at < cursor_time)
        else:
            order = Post.created_at.asc()
            if cursor_time is not None:
                conditions.append(Post.created_at > cursor_time)

        async with self.async_session() as session:
            result = await session.execute(
                select(Post.id).where(and_(*conditions)).order_by(order).limit(limit)
            )
            return [row[0] for row in result.all()]

    # ------------------------------------------------------------------
    # Hydration
    # ------------------------------------------------------------------

    async def get_posts_by_ids(
        self,
        post_ids: Iterable[str],
        user_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Hydrate posts into candidate dictionaries in one batched call.

        Order of the result is not guaranteed to match `post_ids`. IDs with
        no matching post are silently dropped.

        Args:
            post_ids: Post IDs to fetch
            user_id: Viewer, used to fill `current_user_reaction_id`

        Returns:
            List of candidate dictionaries containing:
                - id, content, visibility_id, shared_post_id, created_at, updated_at
                - author: {id, name, image, username}
                - media: list of {id, url, type, alt_text, order}
                - hashtags: list of {id, tag}
                - link_preview: dict or None
                - reactions: list of {user_id, reaction_id}
                - reaction_count, comment_count, share_count
                - current_user_reaction_id
        """
        post_ids = list(dict.fromkeys(post_ids))
        if not post_ids:
            return []

        async with self.async_session() as session:
            result = await session.execute(
                select(Post)
                .where(Post.id.in_(post_ids))
                .options(
                    selectinload(Post.author),
                    selectinload(Post.media),
                    selectinload(Post.hashtags),
                    selectinload(Post.link_preview),
                    selectinload(Post.reactions),
                )
            )
            posts = result.scalars().all()

            comment_counts = await session.execute(
                select(Comment.post_id, func.count())
                .where(Comment.post_id.in_(post_ids))
                .group_by(Comment.post_id)
            )
            comments_by_post = dict(comment_counts.all())

            shared = Post.__table__.alias("shared")
            share_counts = await session.execute(
                select(shared.c.shared_post_id, func.count())
                .where(shared.c.shared_post_id.in_(post_ids))
                .group_by(shared.c.shared_post_id)
            )
            shares_by_post = dict(share_counts.all())

            return [
                self._candidate_from_post(
                    post,
                    comment_count=comments_by_post.get(post.id, 0),
                    share_count=shares_by_post.get(post.id, 0),
                    user_id=user_id,
                )
                for post in posts
            ]

    @staticmethod
    def _candidate_from_post(
        post: Post,
        comment_count: int,
        share_count: int,
        user_id: Optional[str],
    ) -> Dict[str, Any]:
        """Project a loaded Post onto the candidate dictionary shape."""
        reactions = [
            {"user_id": r.user_id, "reaction_id": r.reaction_id}
            for r in post.reactions
        ]
        current_user_reaction_id = None
        if user_id:
            current_user_reaction_id = next(
                (r["reaction_id"] for r in reactions if r["user_id"] == user_id),
                None,
            )

        link_preview = None
        if post.link_preview is not None:
            lp = post.link_preview
            link_preview = {
                "id": lp.id,
                "url": lp.url,
                "title": lp.title,
                "description": lp.description,
                "image_url": lp.image_url,
                "position": lp.position,
            }

        return {
            "id": post.id,
            "content": post.content,
            "visibility_id": post.visibility_id,
            "shared_post_id": post.shared_post_id,
            "created_at": post.created_at,
            "updated_at": post.updated_at,
            "author": {
                "id": post.author.id,
                "name": post.author.name,
                "image": post.author.image,
                "username": post.author.username,
            },
            "media": [
                {
                    "id": m.id,
                    "url": m.url,
                    "type": m.type,
                    "alt_text": m.alt_text,
                    "order": m.order,
                }
                for m in post.media
            ],
            "hashtags": [{"id": h.id, "tag": h.tag} for h in post.hashtags],
            "link_preview": link_preview,
            "reactions": reactions,
            "reaction_count": len(reactions),
            "comment_count": comment_count,
            "share_count": share_count,
            "current_user_reaction_id": current_user_reaction_id,
        }

    async def get_stats(self) -> Dict[str, int]:
        """
        Get database statistics.

        Returns:
            Dictionary with counts of users, posts, hashtags, reactions and comments
        """
        async with self.async_session() as session:
            stats = {}
            for key, column in (
                ("total_users", User.id),
                ("total_posts", Post.id),
                ("total_hashtags", Hashtag.id),
                ("total_reactions", PostReaction.post_id),
                ("total_comments", Comment.id),
            ):
                result = await session.execute(select(func.count(column)))
                stats[key] = result.scalar() or 0
            return stats


# Convenience function for creating database instance
def create_database(db_path: str = "data/feed.db") -> Database:
    """
    Create and return a Database instance.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Database instance
    """
    return Database(db_path)
