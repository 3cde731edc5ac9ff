"""
Main entry point for jamsync.

Initializes all components and starts the server.
"""

import argparse
import logging
from typing import Optional

import uvicorn

from .config_manager import ConfigManager
from .database import Database
from .game import GameOverlayMachine
from .loop import EventLoop
from .queue import BandQueueManager
from .session import LiveSession
from .state import StateStore
from .store import MemoryRowStore, RowStore, SqliteRowStore
from .sync import SyncEngine
from .timer import LiveTimerMachine
from .user import UserManager
from .web.server import create_app

logger = logging.getLogger(__name__)


class JamServer:
    """Main server class that orchestrates all components."""

    def __init__(self, db_path: Optional[str] = None, memory: bool = False):
        """
        Initialize all components.

        Args:
            db_path: SQLite file holding config and the shared rows
            memory: Keep the shared rows in memory (single station, nothing shared)
        """
        logger.info("Initializing jamsync server...")

        # Initialize database
        self.database = Database(db_path)

        # Initialize configuration manager
        self.config_manager = ConfigManager(self.database)

        # Shared row store: the SQLite file is what the stations have in common
        if memory:
            self.row_store: RowStore = MemoryRowStore()
        else:
            poll_ms = self.config_manager.get_int("sync_poll_interval_ms", 500)
            self.row_store = SqliteRowStore(self.database, poll_interval=poll_ms / 1000.0)

        self.loop = EventLoop()
        self.state_store = StateStore()
        self.sync_engine = SyncEngine(self.state_store, self.row_store, self.loop)

        self.queue_manager = BandQueueManager(self.state_store, self.config_manager)
        self.user_manager = UserManager(self.state_store)

        self.timer = LiveTimerMachine(
            self.loop,
            self.queue_manager,
            urgent_threshold=self.config_manager.get_int("urgent_threshold_seconds", 30),
        )
        self.game = GameOverlayMachine(
            self.loop,
            self.timer,
            duration_options=self.config_manager.get_int_list(
                "game_duration_options", [30, 60, 120, 180]
            ),
            default_duration=self.config_manager.get_int("game_default_duration_seconds", 60),
            add_time_step=self.config_manager.get_int("game_add_time_seconds", 30),
        )
        self.session: Optional[LiveSession] = None
        self.web_app = None
        self.uvicorn_server = None

        logger.info("jamsync server initialized")

    def start(self):
        """Start the loop, load shared state and build the web app."""
        self.loop.start()
        # Created on the loop so its store listener only ever runs there
        self.session = self.loop.run_sync(
            LiveSession,
            self.state_store,
            self.queue_manager,
            self.user_manager,
            self.timer,
            self.game,
        )
        if not self.loop.run_sync(self.sync_engine.bootstrap, timeout=30.0):
            logger.warning("Running unsynchronized on a demo roster")

        self.web_app = create_app(
            self.loop,
            self.state_store,
            self.queue_manager,
            self.user_manager,
            self.session,
            self.config_manager,
            sync_engine=self.sync_engine,
        )

    def run(self, host: str = "0.0.0.0", port: int = 8000, log_level: str = "info"):
        """Start the server."""
        logger.info("Starting jamsync server...")
        self.start()

        logger.info("=" * 60)
        logger.info("jamsync is running!")
        logger.info("API: http://%s:%s/api", host, port)
        logger.info("=" * 60)

        config = uvicorn.Config(self.web_app, host=host, port=port, log_level=log_level)
        self.uvicorn_server = uvicorn.Server(config)
        self.uvicorn_server.run()

    def stop(self):
        """Stop all components."""
        logger.info("Stopping jamsync server...")

        if self.uvicorn_server:
            self.uvicorn_server.should_exit = True

        if self.session:
            self.loop.run_sync(self.session.close)
        self.sync_engine.close()
        self.row_store.close()
        self.loop.stop()
        self.database.close()

        logger.info("jamsync server stopped")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="jamsync - Live jam session engine")
    parser.add_argument("--db", default=None, help="SQLite database path (default: ~/.jamsync/jamsync.db)")
    parser.add_argument("--host", default="0.0.0.0", help="Address to bind")
    parser.add_argument("--port", type=int, default=8000, help="Port to listen on")
    parser.add_argument(
        "--memory", action="store_true", help="Keep shared state in memory (single station)"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    server = JamServer(db_path=args.db, memory=args.memory)
    try:
        server.run(host=args.host, port=args.port, log_level=args.log_level.lower())
    except KeyboardInterrupt:
        pass
    finally:
        server.stop()


if __name__ == "__main__":
    main()
