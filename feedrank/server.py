"""
FastAPI server exposing the feed engine.

A thin layer over `FeedService.get_feed`: it validates query parameters,
checks that the viewer exists and serializes the ranked posts.
"""

import logging
import os
from typing import Any, Optional
from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from dotenv import load_dotenv

from feedrank.config import FeedConfig
from feedrank.database import Database, utcnow
from feedrank.feed import FeedService


# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Configuration
DATABASE_PATH = os.getenv("DATABASE_PATH", "./data/feed.db")
FEED_CONFIG_PATH = os.getenv("FEED_CONFIG_PATH", "config/feed.json")
MAX_PAGE_SIZE = 50


# Pydantic models for response validation
class AuthorSummary(BaseModel):
    """Display projection of a post author."""
    id: str
    name: str
    image: Optional[str] = None
    username: str


class MediaItem(BaseModel):
    id: str
    url: str
    type: str
    alt_text: Optional[str] = None
    order: int = 0


class HashtagRef(BaseModel):
    id: str
    tag: str


class LinkPreviewItem(BaseModel):
    id: str
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    position: str = "last"


class ReactionRef(BaseModel):
    user_id: str
    reaction_id: str


class FeedPost(BaseModel):
    """A ranked post as returned to clients."""
    id: str
    content: Optional[Any] = None
    visibility_id: str
    shared_post_id: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    author: AuthorSummary
    media: list[MediaItem] = Field(default_factory=list)
    hashtags: list[HashtagRef] = Field(default_factory=list)
    link_preview: Optional[LinkPreviewItem] = None
    reactions: list[ReactionRef] = Field(default_factory=list)
    reaction_count: int = 0
    comment_count: int = 0
    share_count: int = 0
    current_user_reaction_id: Optional[str] = None
    score: float = Field(..., description="Ranking score")


class FeedResponse(BaseModel):
    """Response for the feed endpoint."""
    posts: list[FeedPost] = Field(default_factory=list, description="Posts for this page")
    next_cursor: Optional[str] = Field(None, description="Cursor for the next page, null at the end")


# Global database and feed service instances
db: Optional[Database] = None
feed_service: Optional[FeedService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Code before yield runs at startup, code after yield runs at shutdown.
    """
    global db, feed_service

    db = Database(DATABASE_PATH)
    await db.initialize()

    config = FeedConfig.from_file(FEED_CONFIG_PATH)
    feed_service = FeedService(db, config)

    logger.info(f"Feed server started (database: {DATABASE_PATH}, config: {FEED_CONFIG_PATH})")

    yield

    if db:
        await db.close()
    logger.info("Feed server stopped")


app = FastAPI(
    title="Personalized Feed Engine",
    description="Ranked home feeds from friend, topic, trending and discovery posts with cursor pagination",
    version="1.0.0",
    lifespan=lifespan
)


@app.get("/")
async def root():
    """Root endpoint with basic information."""
    return {
        "name": "Personalized Feed Engine",
        "description": "Ranked, diversified and paginated personalized feeds",
        "feed_types": ["home", "profile"],
        "version": "1.0.0"
    }


@app.get("/feed", response_model=FeedResponse)
async def get_feed(
    viewer_id: str = Query(..., description="ID of the requesting user"),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE, description="Posts per page"),
    feed_for: str = Query("home", pattern="^(home|profile)$", description="Feed type"),
    cursor: Optional[str] = Query(None, description="Cursor from the previous page"),
    profile_user_id: Optional[str] = Query(None, description="Author for profile feeds (defaults to viewer)"),
):
    """
    Get one page of a feed.

    Returns:
        FeedResponse: Posts for this page and the cursor for the next one

    Raises:
        HTTPException: 503 if the service is not initialized, 404 for an
            unknown viewer, 400 for invalid parameters
    """
    if not feed_service or not db:
        raise HTTPException(
            status_code=503,
            detail="Feed service not initialized"
        )

    try:
        viewer = await db.get_user(viewer_id)
    except Exception as e:
        logger.error(f"Error checking viewer {viewer_id}, serving without the check: {e}", exc_info=True)
    else:
        if viewer is None:
            raise HTTPException(status_code=404, detail=f"Unknown viewer: {viewer_id}")

    try:
        result = await feed_service.get_feed(
            viewer_id,
            limit=limit,
            feed_for=feed_for,
            cursor=cursor,
            profile_user_id=profile_user_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return FeedResponse(**result)


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns the health status of the server and its dependencies.
    """
    health = {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "components": {
            "database": "unknown",
            "feed_service": "unknown"
        }
    }

    if db:
        try:
            stats = await db.get_stats()
            health["components"]["database"] = "healthy"
            health["database_stats"] = stats
        except Exception as e:
            health["status"] = "degraded"
            health["components"]["database"] = f"unhealthy: {str(e)}"
    else:
        health["status"] = "degraded"
        health["components"]["database"] = "not initialized"

    if feed_service:
        health["components"]["feed_service"] = "healthy"
    else:
        health["status"] = "degraded"
        health["components"]["feed_service"] = "not initialized"

    status_code = 200 if health["status"] == "healthy" else 503
    return JSONResponse(content=health, status_code=status_code)


@app.get("/stats")
async def get_stats():
    """
    Get store statistics and the active feed configuration.
    """
    if not db or not feed_service:
        raise HTTPException(
            status_code=503,
            detail="Server not fully initialized"
        )

    try:
        return {
            "database": await db.get_stats(),
            "config": feed_service.config.to_dict(),
        }
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Error retrieving stats: {str(e)}"
        )


# For running with uvicorn directly
if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(
        "feedrank.server:app",
        host="0.0.0.0",
        port=port,
        reload=True,
        log_level="info"
    )
