"""Database layer for analytics events. SQLite by default; set DATABASE_URL for MySQL or another server.
Startup ensures the events table exists; on connection failure logs verbosely and falls back to in-memory SQLite."""
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from compresslimit import config as app_config

logger = logging.getLogger("compresslimit.db")

_engine: Optional[Engine] = None
_ready = False

REQUIRED_TABLES = ("analytics_events",)


def _is_sqlite() -> bool:
    return "sqlite" in app_config.DATABASE_URL


def _is_mysql() -> bool:
    return "mysql" in app_config.DATABASE_URL


def _db_kind() -> str:
    if _is_mysql():
        return "MySQL"
    if _is_sqlite():
        return "SQLite"
    return "SQL Server"


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        kwargs = {}
        if _is_sqlite():
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in app_config.DATABASE_URL:
                # every connection must see the same in-memory database
                kwargs["poolclass"] = StaticPool
        _engine = create_engine(app_config.DATABASE_URL, **kwargs)
        logger.info("Database engine created (%s)", _db_kind())
    return _engine


def reset_engine() -> None:
    """Forget the current engine so the next call picks up DATABASE_URL again."""
    global _engine, _ready
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _ready = False


def _create_sqlite_tables(conn) -> None:
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS analytics_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            event TEXT NOT NULL,
            file_type TEXT,
            params_json TEXT,
            created_at TEXT NOT NULL
        )
    """))
    conn.commit()


def _create_mysql_tables(conn) -> None:
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS analytics_events (
            id BIGINT AUTO_INCREMENT PRIMARY KEY,
            session_id VARCHAR(255) NOT NULL,
            event VARCHAR(64) NOT NULL,
            file_type VARCHAR(64),
            params_json TEXT,
            created_at VARCHAR(50) NOT NULL
        )
    """))
    conn.commit()


def _create_sqlserver_tables(conn) -> None:
    conn.execute(text("""
        IF NOT EXISTS (SELECT * FROM sys.tables WHERE name = 'analytics_events')
        CREATE TABLE analytics_events (
            id BIGINT IDENTITY(1,1) PRIMARY KEY,
            session_id NVARCHAR(255) NOT NULL,
            event NVARCHAR(64) NOT NULL,
            file_type NVARCHAR(64),
            params_json NVARCHAR(MAX),
            created_at NVARCHAR(50) NOT NULL
        )
    """))
    conn.commit()


def _ensure_tables(engine: Engine) -> None:
    """Create required tables if they do not exist."""
    with engine.connect() as conn:
        if _is_sqlite():
            _create_sqlite_tables(conn)
        elif _is_mysql():
            _create_mysql_tables(conn)
        else:
            _create_sqlserver_tables(conn)
    logger.info("Required tables ensured: %s", ", ".join(REQUIRED_TABLES))


def init_db() -> bool:
    """Prepare database at startup. On failure fall back to in-memory SQLite; returns whether events can be stored."""
    global _engine, _ready
    kind = _db_kind()
    logger.info("Database init: preparing %s (tables: %s)", kind, ", ".join(REQUIRED_TABLES))

    try:
        _ensure_tables(get_engine())
        logger.info("Database ready: %s", kind)
        _ready = True
        return True
    except OperationalError as e:
        logger.warning("Database connection failed (%s): %s. Trying in-memory SQLite.", kind, e.orig, exc_info=True)
    except Exception as e:
        logger.exception("Database init failed: %s. Trying in-memory SQLite.", e)

    # Last resort: in-memory SQLite so analytics keep working (events will not persist across restarts)
    reset_engine()
    app_config.DATABASE_URL = "sqlite:///:memory:"
    try:
        _ensure_tables(get_engine())
    except Exception:
        logger.exception("In-memory SQLite fallback failed. Analytics disabled.")
        _ready = False
        return False
    logger.warning("Database unavailable. Using in-memory SQLite. Analytics will not persist across restarts.")
    _ready = True
    return True


def is_ready() -> bool:
    return _ready


@contextmanager
def session():
    with get_engine().connect() as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def record_event(session_id: str, event: str, file_type: Optional[str] = None, params: Optional[dict] = None) -> None:
    with session() as conn:
        conn.execute(
            text("""
                INSERT INTO analytics_events (session_id, event, file_type, params_json, created_at)
                VALUES (:session_id, :event, :file_type, :params_json, :created_at)
            """),
            {
                "session_id": session_id,
                "event": event,
                "file_type": file_type,
                "params_json": json.dumps(params or {}),
                "created_at": _now_iso(),
            },
        )


def get_session_events(session_id: str, limit: int = 100) -> list[dict]:
    """Recent events for the session, newest first."""
    with get_engine().connect() as conn:
        rows = conn.execute(
            text("""
                SELECT event, file_type, params_json, created_at
                FROM analytics_events WHERE session_id = :sid ORDER BY id DESC LIMIT :lim
            """),
            {"sid": session_id, "lim": limit},
        ).fetchall()
    return [
        {
            "event": r[0],
            "file_type": r[1],
            "params": json.loads(r[2]) if r[2] else {},
            "created_at": r[3],
        }
        for r in rows
    ]


def get_event_counts(session_id: str) -> dict[str, int]:
    with get_engine().connect() as conn:
        rows = conn.execute(
            text("SELECT event, COUNT(*) FROM analytics_events WHERE session_id = :sid GROUP BY event"),
            {"sid": session_id},
        ).fetchall()
    return {r[0]: int(r[1]) for r in rows}


def delete_session_events(session_id: str) -> int:
    with session() as conn:
        result = conn.execute(text("DELETE FROM analytics_events WHERE session_id = :sid"), {"sid": session_id})
    return result.rowcount
