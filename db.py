import json
import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

from db_pool import SQLiteConnectionPool

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _exec(sql: str, params: Iterable = ()):
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        con.commit()
        return cur

def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS activity_results (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id     TEXT NOT NULL,
              child_id    TEXT NOT NULL,
              activity_id TEXT NOT NULL,
              subject     TEXT NOT NULL,
              score       REAL NOT NULL,
              time_taken  INTEGER NOT NULL DEFAULT 0,
              topic       TEXT,
              difficulty  TEXT,
              completed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_activity_results_child
              ON activity_results(child_id, completed_at DESC);

            CREATE TABLE IF NOT EXISTS stars (
              id               INTEGER PRIMARY KEY AUTOINCREMENT,
              child_id         TEXT NOT NULL,
              activity_id      TEXT NOT NULL,
              amount           INTEGER NOT NULL CHECK (amount >= 1),
              subject          TEXT NOT NULL,
              reason           TEXT NOT NULL,
              is_perfect_score INTEGER NOT NULL DEFAULT 0,
              created_at       TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_stars_child ON stars(child_id, created_at DESC);

            CREATE TABLE IF NOT EXISTS badge_types (
              id                   TEXT PRIMARY KEY,
              name                 TEXT NOT NULL,
              description          TEXT NOT NULL DEFAULT '',
              image_url            TEXT,
              subject              TEXT NOT NULL DEFAULT 'General',
              level                INTEGER NOT NULL DEFAULT 1 CHECK (level BETWEEN 1 AND 3),
              required_achievement TEXT NOT NULL,
              required_value       INTEGER NOT NULL,
              created_at           TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS earned_badges (
              id        INTEGER PRIMARY KEY AUTOINCREMENT,
              child_id  TEXT NOT NULL,
              badge_id  TEXT NOT NULL,
              earned_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              UNIQUE(child_id, badge_id),
              FOREIGN KEY(badge_id) REFERENCES badge_types(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS child_levels (
              child_id           TEXT PRIMARY KEY,
              current_level      INTEGER NOT NULL DEFAULT 1,
              current_title      TEXT NOT NULL DEFAULT 'Beginner',
              total_stars        INTEGER NOT NULL DEFAULT 0,
              total_badges       INTEGER NOT NULL DEFAULT 0,
              english_level      INTEGER NOT NULL DEFAULT 1,
              maths_level        INTEGER NOT NULL DEFAULT 1,
              streak_days        INTEGER NOT NULL DEFAULT 0,
              longest_streak     INTEGER NOT NULL DEFAULT 0,
              last_activity_date TEXT,
              updated_at         TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS notifications (
              id         INTEGER PRIMARY KEY AUTOINCREMENT,
              child_id   TEXT NOT NULL,
              kind       TEXT NOT NULL,
              title      TEXT NOT NULL,
              message    TEXT NOT NULL,
              data       TEXT,
              read       INTEGER NOT NULL DEFAULT 0,
              created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_notifications_child
              ON notifications(child_id, created_at DESC);

            CREATE TABLE IF NOT EXISTS tutor_messages (
              id         INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id    TEXT NOT NULL,
              subject_id TEXT,
              message    TEXT NOT NULL,
              response   TEXT NOT NULL,
              timestamp  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_tutor_messages_user
              ON tutor_messages(user_id, timestamp DESC);
            """
        )
        con.commit()


def _decode_json_field(value: Optional[str]) -> Any:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, json.JSONDecodeError):
        return value


# The aggregate totals are recomputed from the ledgers so they cannot drift
# from the sum of star amounts or the number of earned badges.
_REFRESH_TOTALS_SQL = """
    INSERT INTO child_levels (child_id, total_stars, total_badges, updated_at)
    VALUES (
      ?,
      (SELECT COALESCE(SUM(amount), 0) FROM stars WHERE child_id = ?),
      (SELECT COUNT(*) FROM earned_badges WHERE child_id = ?),
      CURRENT_TIMESTAMP
    )
    ON CONFLICT(child_id) DO UPDATE SET
      total_stars = excluded.total_stars,
      total_badges = excluded.total_badges,
      updated_at = CURRENT_TIMESTAMP
"""


# -------------- activity results --------------
def insert_activity_result(
    child_id: str,
    user_id: str,
    activity_id: str,
    subject: str,
    score: float,
    time_taken: int,
    topic: Optional[str],
    difficulty: Optional[str],
) -> int:
    cur = _exec(
        """
        INSERT INTO activity_results
          (user_id, child_id, activity_id, subject, score, time_taken, topic, difficulty)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (user_id, child_id, activity_id, subject, float(score), int(time_taken), topic, difficulty),
    )
    return int(cur.lastrowid)


def list_activity_results(child_id: str, limit: int = 20) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT id, user_id, child_id, activity_id, subject, score, time_taken, topic,
               difficulty, completed_at
        FROM activity_results
        WHERE child_id = ?
        ORDER BY completed_at DESC, id DESC
        LIMIT ?
        """,
        (child_id, int(limit)),
    )
    return [dict(row) for row in rows]


# -------------- stars --------------
def insert_star(
    child_id: str,
    activity_id: str,
    amount: int,
    subject: str,
    reason: str,
    is_perfect_score: bool = False,
) -> int:
    """Append a star record and refresh the child's totals in one transaction."""
    with _conn() as con:
        cur = con.execute(
            """
            INSERT INTO stars (child_id, activity_id, amount, subject, reason, is_perfect_score)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (child_id, activity_id, int(amount), subject, reason, 1 if is_perfect_score else 0),
        )
        star_id = int(cur.lastrowid)
        con.execute(_REFRESH_TOTALS_SQL, (child_id, child_id, child_id))
        con.commit()
    return star_id


def _star_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    star = dict(row)
    star["is_perfect_score"] = bool(star.get("is_perfect_score"))
    return star


def list_stars(child_id: str, limit: Optional[int] = None) -> list[Dict[str, Any]]:
    sql = """
        SELECT id, child_id, activity_id, amount, subject, reason, is_perfect_score, created_at
        FROM stars
        WHERE child_id = ?
        ORDER BY created_at DESC, id DESC
    """
    params: list[Any] = [child_id]
    if limit is not None:
        sql += " LIMIT ?"
        params.append(int(limit))
    return [_star_from_row(row) for row in _query(sql, params)]


def star_totals_by_subject(child_id: str) -> Dict[str, Dict[str, int]]:
    """Return ``{subject: {"amount": sum, "count": records}}`` for ``child_id``."""
    rows = _query(
        """
        SELECT subject, COALESCE(SUM(amount), 0) AS amount, COUNT(*) AS count
        FROM stars
        WHERE child_id = ?
        GROUP BY subject
        """,
        (child_id,),
    )
    return {row["subject"]: {"amount": int(row["amount"]), "count": int(row["count"])} for row in rows}


# -------------- badge definitions --------------
def upsert_badge_type(
    badge_id: str,
    name: str,
    required_achievement: str,
    required_value: int,
    *,
    description: str = "",
    subject: str = "General",
    level: int = 1,
    image_url: Optional[str] = None,
) -> None:
    _exec(
        """
        INSERT INTO badge_types
          (id, name, description, image_url, subject, level, required_achievement, required_value)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
          name = excluded.name,
          description = excluded.description,
          image_url = excluded.image_url,
          subject = excluded.subject,
          level = excluded.level,
          required_achievement = excluded.required_achievement,
          required_value = excluded.required_value
        """,
        (
            badge_id,
            name,
            description,
            image_url,
            subject,
            int(level),
            required_achievement,
            int(required_value),
        ),
    )


def list_badge_types() -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT id, name, description, image_url, subject, level, required_achievement, required_value
        FROM badge_types
        ORDER BY required_value ASC, id ASC
        """
    )
    return [dict(row) for row in rows]


def get_badge_type(badge_id: str) -> Optional[Dict[str, Any]]:
    rows = _query(
        """
        SELECT id, name, description, image_url, subject, level, required_achievement, required_value
        FROM badge_types
        WHERE id = ?
        """,
        (badge_id,),
    )
    return dict(rows[0]) if rows else None


def ensure_seed_badges(badges: Iterable[Mapping[str, Any]]) -> int:
    """Insert ``badges`` when the catalogue is empty; return how many were added."""
    existing = _query("SELECT COUNT(*) AS n FROM badge_types")
    if existing and existing[0]["n"]:
        return 0
    added = 0
    for badge in badges:
        upsert_badge_type(
            badge["id"],
            badge["name"],
            badge["required_achievement"],
            badge["required_value"],
            description=badge.get("description", ""),
            subject=badge.get("subject", "General"),
            level=badge.get("level", 1),
            image_url=badge.get("image_url"),
        )
        added += 1
    return added


# -------------- earned badges --------------
def insert_earned_badge(child_id: str, badge_id: str) -> bool:
    """Record ``badge_id`` for ``child_id``; return False if it was already earned."""
    with _conn() as con:
        cur = con.execute(
            "INSERT OR IGNORE INTO earned_badges (child_id, badge_id) VALUES (?, ?)",
            (child_id, badge_id),
        )
        inserted = cur.rowcount > 0
        if inserted:
            con.execute(_REFRESH_TOTALS_SQL, (child_id, child_id, child_id))
        con.commit()
    return inserted


def list_earned_badges(child_id: str) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT eb.id, eb.child_id, eb.badge_id, eb.earned_at,
               bt.name, bt.description, bt.image_url, bt.subject, bt.level
        FROM earned_badges eb
        JOIN badge_types bt ON bt.id = eb.badge_id
        WHERE eb.child_id = ?
        ORDER BY eb.earned_at DESC, eb.id DESC
        """,
        (child_id,),
    )
    earned = []
    for row in rows:
        earned.append(
            {
                "id": row["id"],
                "child_id": row["child_id"],
                "badge_id": row["badge_id"],
                "earned_at": row["earned_at"],
                "badge": {
                    "id": row["badge_id"],
                    "name": row["name"],
                    "description": row["description"],
                    "image_url": row["image_url"],
                    "subject": row["subject"],
                    "level": row["level"],
                },
            }
        )
    return earned


# -------------- child level aggregate --------------
def get_child_level(child_id: str) -> Optional[Dict[str, Any]]:
    rows = _query(
        """
        SELECT child_id, current_level, current_title, total_stars, total_badges,
               english_level, maths_level, streak_days, longest_streak,
               last_activity_date, updated_at
        FROM child_levels
        WHERE child_id = ?
        """,
        (child_id,),
    )
    return dict(rows[0]) if rows else None


def upsert_streak(child_id: str, streak_days: int, longest_streak: int, last_activity_date: str) -> None:
    _exec(
        """
        INSERT INTO child_levels (child_id, streak_days, longest_streak, last_activity_date, updated_at)
        VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
        ON CONFLICT(child_id) DO UPDATE SET
          streak_days = excluded.streak_days,
          longest_streak = excluded.longest_streak,
          last_activity_date = excluded.last_activity_date,
          updated_at = CURRENT_TIMESTAMP
        """,
        (child_id, int(streak_days), int(longest_streak), last_activity_date),
    )


def update_level_fields(
    child_id: str,
    current_level: int,
    current_title: str,
    english_level: int,
    maths_level: int,
) -> None:
    _exec(
        """
        INSERT INTO child_levels
          (child_id, current_level, current_title, english_level, maths_level, updated_at)
        VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
        ON CONFLICT(child_id) DO UPDATE SET
          current_level = excluded.current_level,
          current_title = excluded.current_title,
          english_level = excluded.english_level,
          maths_level = excluded.maths_level,
          updated_at = CURRENT_TIMESTAMP
        """,
        (child_id, int(current_level), current_title, int(english_level), int(maths_level)),
    )


def refresh_child_totals(child_id: str) -> None:
    """Recompute ``total_stars`` and ``total_badges`` from the ledgers."""
    _exec(_REFRESH_TOTALS_SQL, (child_id, child_id, child_id))


# -------------- notifications --------------
def add_notification(
    child_id: str,
    kind: str,
    title: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
) -> int:
    cur = _exec(
        """
        INSERT INTO notifications (child_id, kind, title, message, data)
        VALUES (?, ?, ?, ?, ?)
        """,
        (child_id, kind, title, message, json_dumps(data or {})),
    )
    return int(cur.lastrowid)


def list_notifications(child_id: str, unread_only: bool = False, limit: int = 50) -> list[Dict[str, Any]]:
    sql = """
        SELECT id, child_id, kind, title, message, data, read, created_at
        FROM notifications
        WHERE child_id = ?
    """
    params: list[Any] = [child_id]
    if unread_only:
        sql += " AND read = 0"
    sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
    params.append(int(limit))
    notifications = []
    for row in _query(sql, params):
        entry = dict(row)
        entry["data"] = _decode_json_field(entry.get("data")) or {}
        entry["read"] = bool(entry.get("read"))
        notifications.append(entry)
    return notifications


def mark_notification_read(notification_id: int) -> bool:
    cur = _exec("UPDATE notifications SET read = 1 WHERE id = ?", (int(notification_id),))
    return cur.rowcount > 0


# -------------- tutor messages --------------
def record_tutor_message(user_id: str, subject_id: Optional[str], message: str, response: str) -> int:
    cur = _exec(
        "INSERT INTO tutor_messages (user_id, subject_id, message, response) VALUES (?, ?, ?, ?)",
        (user_id, subject_id, message, response),
    )
    return int(cur.lastrowid)


def list_tutor_messages(user_id: str, limit: int = 10) -> list[Dict[str, Any]]:
    rows = _query(
        """
        SELECT message, response, timestamp
        FROM tutor_messages
        WHERE user_id = ?
        ORDER BY timestamp DESC, id DESC
        LIMIT ?
        """,
        (user_id, int(limit)),
    )
    return [dict(row) for row in rows]


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str)
