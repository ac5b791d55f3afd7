#!/usr/bin/env python3
"""
Main entry point for the personalized feed engine.

Operational modes:
- server: Run the HTTP feed server
- feed: Print one feed page for a user (handy for inspecting rankings)
- stats: Print store statistics and the active configuration
"""

import asyncio
import argparse
import json
import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv

from feedrank.config import FeedConfig
from feedrank.database import Database
from feedrank.feed import FeedService


# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('feed_engine.log')
    ]
)

logger = logging.getLogger(__name__)


class FeedApp:
    """
    Application wrapper that wires the database, configuration and feed service.
    """

    def __init__(
        self,
        db_path: str = "data/feed.db",
        feed_config: str = "config/feed.json",
    ):
        """
        Initialize the application.

        Args:
            db_path: Path to SQLite database
            feed_config: Path to feed configuration file
        """
        self.db_path = db_path
        self.feed_config = feed_config

        self.db: Optional[Database] = None
        self.feed_service: Optional[FeedService] = None

        self._shutdown = False

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing feed engine components...")

        self.db = Database(self.db_path)
        await self.db.initialize()

        config = FeedConfig.from_file(self.feed_config)
        self.feed_service = FeedService(self.db, config)

        logger.info("All components initialized successfully")

    async def run_server(self):
        """Run the feed server."""
        logger.info("Starting feed server...")

        import uvicorn

        os.environ["DATABASE_PATH"] = self.db_path
        os.environ["FEED_CONFIG_PATH"] = self.feed_config
        port = int(os.getenv("PORT", "8000"))

        config = uvicorn.Config(
            "feedrank.server:app",
            host="0.0.0.0",
            port=port,
            log_level="info",
        )
        server = uvicorn.Server(config)

        try:
            await server.serve()
        except KeyboardInterrupt:
            logger.info("Received interrupt signal")
        except Exception as e:
            logger.error(f"Error in feed server: {e}", exc_info=True)
            raise
        finally:
            await self.cleanup()

    async def run_feed(
        self,
        user_id: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        feed_for: str = "home",
    ):
        """Print one feed page for a user."""
        result = await self.feed_service.get_feed(
            user_id,
            limit=limit,
            feed_for=feed_for,
            cursor=cursor,
        )

        for i, post in enumerate(result["posts"], 1):
            print(
                f"{i:3d}. {post['id']}  score={post['score']:.2f}  "
                f"author={post['author']['username']}  "
                f"reactions={post['reaction_count']} comments={post['comment_count']} "
                f"shares={post['share_count']}  created={post['created_at'].isoformat()}"
            )

        if not result["posts"]:
            print("(empty feed)")
        print(f"\nnext_cursor: {result['next_cursor']}")

    async def run_stats(self):
        """Print store statistics and the active configuration."""
        stats = await self.db.get_stats()
        print(json.dumps({
            "database": stats,
            "config": self.feed_service.config.to_dict(),
        }, indent=2))

    async def cleanup(self):
        """Cleanup resources on shutdown."""
        if self._shutdown:
            return

        self._shutdown = True

        if self.db:
            await self.db.close()

        logger.info("Cleanup complete")


async def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Personalized Feed Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the feed server
  python main.py server

  # Print the first home feed page for a user
  python main.py feed --user 3f2c...

  # Print the next page
  python main.py feed --user 3f2c... --cursor WyJhYmMiLCJkZWYiXQ

  # Print a user's own posts, newest first
  python main.py feed --user 3f2c... --feed-for profile

  # Use custom configuration
  python main.py stats --db data/custom.db --config config/custom_feed.json
        """
    )

    parser.add_argument(
        "mode",
        choices=["server", "feed", "stats"],
        help="Operation mode: server (serve feeds), feed (print a page), or stats"
    )

    parser.add_argument(
        "--db",
        default=os.getenv("DATABASE_PATH", "data/feed.db"),
        help="Path to SQLite database (default: data/feed.db)"
    )

    parser.add_argument(
        "--config",
        default=os.getenv("FEED_CONFIG_PATH", "config/feed.json"),
        help="Path to feed configuration file (default: config/feed.json)"
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)"
    )

    # Arguments for feed mode
    parser.add_argument("--user", help="Viewer ID for feed mode")
    parser.add_argument("--limit", type=int, help="Page size for feed mode")
    parser.add_argument("--cursor", help="Cursor from a previous page")
    parser.add_argument(
        "--feed-for",
        choices=["home", "profile"],
        default="home",
        help="Feed type for feed mode (default: home)"
    )

    args = parser.parse_args()

    logging.getLogger().setLevel(getattr(logging, args.log_level))

    if args.mode == "feed" and not args.user:
        parser.error("feed mode requires --user")

    app = FeedApp(db_path=args.db, feed_config=args.config)
    await app.initialize()

    try:
        if args.mode == "server":
            await app.run_server()
        elif args.mode == "feed":
            await app.run_feed(
                args.user,
                limit=args.limit,
                cursor=args.cursor,
                feed_for=args.feed_for,
            )
        elif args.mode == "stats":
            await app.run_stats()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
    except ValueError as e:
        logger.error(f"Invalid request: {e}")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
    finally:
        await app.cleanup()


if __name__ == "__main__":
    asyncio.run(main())
