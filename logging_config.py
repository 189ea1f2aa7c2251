# logging_config.py

import logging
import sqlite3
import sys
from datetime import datetime, timezone
import os

LOG_DB_PATH = os.getenv("LOG_DB_PATH", "logs.db")
MAX_LOG_ENTRIES = 10000  # Maximum number of log entries to keep
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SQLiteHandler(logging.Handler):
    def __init__(self, db_path=LOG_DB_PATH, max_entries=MAX_LOG_ENTRIES):
        super().__init__()
        self.db_path = db_path
        self.max_entries = max_entries
        self.create_table()

    def create_table(self):
        """Creates the logs table if it doesn't exist."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    level TEXT NOT NULL,
                    message TEXT NOT NULL,
                    module TEXT,
                    exception TEXT
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_logs_id ON logs (id DESC)")
            conn.commit()
        finally:
            conn.close()

    def emit(self, record):
        """Inserts a log record into the SQLite database and enforces max log entries."""
        conn = None
        try:
            exception = None
            if record.exc_info:
                exception = logging.Formatter().formatException(record.exc_info)

            log_entry = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "level": record.levelname,
                "message": record.getMessage(),
                "module": record.module,
                "exception": exception,
            }

            conn = sqlite3.connect(self.db_path)
            conn.execute("""
                INSERT INTO logs (timestamp, level, message, module, exception)
                VALUES (:timestamp, :level, :message, :module, :exception)
            """, log_entry)

            count = conn.execute("SELECT COUNT(*) FROM logs").fetchone()[0]
            if count > self.max_entries:
                # Delete the oldest rows beyond the cap
                conn.execute("""
                    DELETE FROM logs
                    WHERE id IN (
                        SELECT id FROM logs
                        ORDER BY id ASC
                        LIMIT ?
                    )
                """, (count - self.max_entries,))

            conn.commit()
        except Exception:
            self.handleError(record)
        finally:
            if conn is not None:
                conn.close()


def setup_logging(debug: bool = False, db_path: str = LOG_DB_PATH, max_entries: int = MAX_LOG_ENTRIES):
    """
    Configure the root logger with a console handler and, when db_path is set,
    a capped SQLite handler. Safe to call more than once.
    """
    level = logging.DEBUG if debug else logging.INFO
    logger = logging.getLogger()
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, "_deploy_hook_handler", False):
            logger.removeHandler(handler)
            handler.close()

    # Console handler for real-time logs
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    console_handler._deploy_hook_handler = True
    logger.addHandler(console_handler)

    # SQLite handler for persistent logs
    if db_path:
        sqlite_handler = SQLiteHandler(db_path=db_path, max_entries=max_entries)
        sqlite_handler.setLevel(level)
        sqlite_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        sqlite_handler._deploy_hook_handler = True
        logger.addHandler(sqlite_handler)

    return logger
