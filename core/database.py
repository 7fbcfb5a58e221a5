# core/database.py

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Iterable, Union

from core.exceptions import StoreError
from core.models import (
    DuplicateEvent, Fingerprint, FingerprintKind, FingerprintRecord, MediaKind,
    Origin, Poster, TextMessageRecord, UserStats, from_epoch, to_epoch, utc
)

logger = logging.getLogger(__name__)

# UserStats counter column per media kind
COUNTER_COLUMNS = {
    MediaKind.IMAGE: 'image_count',
    MediaKind.VIDEO: 'video_count',
    MediaKind.BINARY: 'binary_count',
    MediaKind.TEXT: 'text_count',
}


class MediaStore:
    """
    SQLite store for fingerprints, duplicate events, user statistics,
    text messages and reaction counts
    """

    def __init__(self, db_path: str = "data/repost_guard.db", timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout
        self.conn = None
        self._lock = threading.RLock()
        self._initialize_database()

    def _initialize_database(self):
        """Create database schema"""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn = sqlite3.connect(self.db_path, timeout=self.timeout,
                                        check_same_thread=False)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open store {self.db_path}: {e}") from e

        with self._cursor() as cursor:
            # Accepted media, one row per original post
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS fingerprints (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    fingerprint TEXT NOT NULL,
                    fingerprint_kind TEXT NOT NULL,
                    media_kind TEXT NOT NULL,
                    user_id INTEGER NOT NULL,
                    display_name TEXT,
                    conversation_id TEXT NOT NULL,
                    message_id TEXT NOT NULL,
                    posted_at REAL NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS duplicate_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    display_name TEXT,
                    original_id INTEGER,
                    media_kind TEXT,
                    distance INTEGER,
                    conversation_id TEXT,
                    timestamp REAL NOT NULL,
                    FOREIGN KEY (original_id) REFERENCES fingerprints(id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS user_stats (
                    user_id INTEGER PRIMARY KEY,
                    display_name TEXT,
                    image_count INTEGER NOT NULL DEFAULT 0,
                    video_count INTEGER NOT NULL DEFAULT 0,
                    binary_count INTEGER NOT NULL DEFAULT 0,
                    text_count INTEGER NOT NULL DEFAULT 0,
                    duplicates_posted INTEGER NOT NULL DEFAULT 0,
                    total_messages INTEGER NOT NULL DEFAULT 0,
                    first_seen REAL,
                    last_active REAL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS text_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    display_name TEXT,
                    conversation_id TEXT NOT NULL,
                    message_id TEXT NOT NULL,
                    timestamp REAL NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS message_reactions (
                    conversation_id TEXT NOT NULL,
                    message_id TEXT NOT NULL,
                    total_reactions INTEGER NOT NULL,
                    reactions TEXT,
                    last_updated REAL NOT NULL,
                    PRIMARY KEY (conversation_id, message_id)
                )
            """)

            # Indexing for faster queries
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_fingerprint ON fingerprints(fingerprint)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_fingerprint_kind ON fingerprints(fingerprint_kind)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_fingerprints_posted ON fingerprints(posted_at)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_duplicates_timestamp ON duplicate_events(timestamp)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_text_timestamp ON text_messages(timestamp)
            """)

    @contextmanager
    def _cursor(self):
        """Run statements under the store lock in one transaction"""
        with self._lock:
            if self.conn is None:
                raise StoreError("Store is closed")
            try:
                cursor = self.conn.cursor()
                yield cursor
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StoreError(str(e)) from e
            except Exception:
                self.conn.rollback()
                raise

    # Fingerprints

    def add_fingerprint(self, record: FingerprintRecord) -> FingerprintRecord:
        """Append a fingerprint record and return it with its id"""
        with self._cursor() as cursor:
            return self._insert_fingerprint(cursor, record)

    def record_accepted(self, record: FingerprintRecord) -> FingerprintRecord:
        """
        Append an accepted post and count it for its poster in one
        transaction; a failure leaves neither behind
        """
        with self._cursor() as cursor:
            stored = self._insert_fingerprint(cursor, record)
            self._bump_stats(cursor, record.poster, record.posted_at,
                             COUNTER_COLUMNS[record.media_kind])
        return stored

    def _insert_fingerprint(self, cursor, record: FingerprintRecord) -> FingerprintRecord:
        cursor.execute("""
            INSERT INTO fingerprints
            (fingerprint, fingerprint_kind, media_kind, user_id, display_name,
             conversation_id, message_id, posted_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record.fingerprint.value,
            record.fingerprint.kind.value,
            record.media_kind.value,
            record.poster.id,
            record.poster.display_name,
            record.origin.conversation_id,
            record.origin.message_id,
            to_epoch(record.posted_at)
        ))

        return FingerprintRecord(
            fingerprint=record.fingerprint,
            media_kind=record.media_kind,
            poster=record.poster,
            origin=record.origin,
            posted_at=utc(record.posted_at),
            id=cursor.lastrowid
        )

    def find_exact(self, fingerprint: str) -> Optional[FingerprintRecord]:
        """Earliest exact record with this digest"""
        with self._cursor() as cursor:
            cursor.execute("""
                SELECT * FROM fingerprints
                WHERE fingerprint = ? AND fingerprint_kind = ?
                ORDER BY posted_at, id
                LIMIT 1
            """, (fingerprint, FingerprintKind.EXACT.value))
            row = cursor.fetchone()
            columns = [desc[0] for desc in cursor.description]

        return self._to_record(dict(zip(columns, row))) if row else None

    def get_fingerprints(self, kind: Optional[FingerprintKind] = None,
                         since: Optional[datetime] = None,
                         until: Optional[datetime] = None,
                         conversation_id: Optional[str] = None) -> List[FingerprintRecord]:
        """Fingerprint records, oldest first, optionally filtered"""
        query = "SELECT * FROM fingerprints WHERE 1 = 1"
        params = []
        if kind is not None:
            query += " AND fingerprint_kind = ?"
            params.append(kind.value)
        if since is not None:
            query += " AND posted_at >= ?"
            params.append(to_epoch(since))
        if until is not None:
            query += " AND posted_at < ?"
            params.append(to_epoch(until))
        if conversation_id is not None:
            query += " AND conversation_id = ?"
            params.append(str(conversation_id))
        query += " ORDER BY posted_at, id"

        with self._cursor() as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()
            columns = [desc[0] for desc in cursor.description]

        return [self._to_record(dict(zip(columns, row))) for row in rows]

    def count_fingerprints(self) -> int:
        with self._cursor() as cursor:
            cursor.execute("SELECT COUNT(*) FROM fingerprints")
            return cursor.fetchone()[0]

    def conversation_ids(self) -> List[str]:
        """Distinct conversations that have media records"""
        with self._cursor() as cursor:
            cursor.execute("""
                SELECT conversation_id FROM fingerprints
                GROUP BY conversation_id
                ORDER BY MIN(posted_at)
            """)
            return [row[0] for row in cursor.fetchall()]

    # Duplicate events

    def record_duplicate(self, event: DuplicateEvent):
        """Append a duplicate event and charge it to the offender atomically"""
        with self._cursor() as cursor:
            cursor.execute("""
                INSERT INTO duplicate_events
                (user_id, display_name, original_id, media_kind, distance,
                 conversation_id, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                event.offender.id,
                event.offender.display_name,
                event.original_id,
                event.media_kind.value if event.media_kind else None,
                event.distance,
                str(event.conversation_id) if event.conversation_id is not None else None,
                to_epoch(event.timestamp)
            ))
            self._bump_stats(cursor, event.offender, event.timestamp)

    def get_duplicate_events(self, since: Optional[datetime] = None,
                             until: Optional[datetime] = None,
                             conversation_id: Optional[str] = None) -> List[DuplicateEvent]:
        query = "SELECT * FROM duplicate_events WHERE 1 = 1"
        params = []
        if since is not None:
            query += " AND timestamp >= ?"
            params.append(to_epoch(since))
        if until is not None:
            query += " AND timestamp < ?"
            params.append(to_epoch(until))
        if conversation_id is not None:
            query += " AND conversation_id = ?"
            params.append(str(conversation_id))
        query += " ORDER BY timestamp, id"

        with self._cursor() as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()
            columns = [desc[0] for desc in cursor.description]

        events = []
        for row in rows:
            data = dict(zip(columns, row))
            events.append(DuplicateEvent(
                offender=Poster(data['user_id'], data['display_name']),
                timestamp=from_epoch(data['timestamp']),
                original_id=data['original_id'],
                media_kind=MediaKind.parse(data['media_kind']) if data['media_kind'] else None,
                distance=data['distance'],
                conversation_id=data['conversation_id']
            ))
        return events

    # Text messages

    def record_text(self, message: TextMessageRecord):
        """Append a text message and count it for its author atomically"""
        with self._cursor() as cursor:
            cursor.execute("""
                INSERT INTO text_messages
                (user_id, display_name, conversation_id, message_id, timestamp)
                VALUES (?, ?, ?, ?, ?)
            """, (
                message.author.id,
                message.author.display_name,
                message.origin.conversation_id,
                message.origin.message_id,
                to_epoch(message.timestamp)
            ))
            self._bump_stats(cursor, message.author, message.timestamp,
                             COUNTER_COLUMNS[MediaKind.TEXT])

    def get_text_messages(self, since: Optional[datetime] = None,
                          until: Optional[datetime] = None,
                          conversation_id: Optional[str] = None) -> List[TextMessageRecord]:
        query = "SELECT * FROM text_messages WHERE 1 = 1"
        params = []
        if since is not None:
            query += " AND timestamp >= ?"
            params.append(to_epoch(since))
        if until is not None:
            query += " AND timestamp < ?"
            params.append(to_epoch(until))
        if conversation_id is not None:
            query += " AND conversation_id = ?"
            params.append(str(conversation_id))
        query += " ORDER BY timestamp, id"

        with self._cursor() as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()
            columns = [desc[0] for desc in cursor.description]

        messages = []
        for row in rows:
            data = dict(zip(columns, row))
            messages.append(TextMessageRecord(
                author=Poster(data['user_id'], data['display_name']),
                origin=Origin(data['conversation_id'], data['message_id']),
                timestamp=from_epoch(data['timestamp'])
            ))
        return messages

    # User statistics

    def _bump_stats(self, cursor, poster: Poster, timestamp: datetime,
                    column: Optional[str] = None):
        """
        Count one message for a user inside the caller's transaction.

        With a counter column the message is an accepted one and also adds to
        total_messages; without one it is a duplicate.
        """
        ts = to_epoch(timestamp)
        if column is None:
            counters = "duplicates_posted = duplicates_posted + 1"
        else:
            counters = f"{column} = {column} + 1, total_messages = total_messages + 1"

        cursor.execute("""
            INSERT INTO user_stats (user_id, display_name, first_seen, last_active)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO NOTHING
        """, (poster.id, poster.display_name, ts, ts))
        cursor.execute(f"""
            UPDATE user_stats
            SET {counters},
                display_name = COALESCE(?, display_name),
                first_seen = MIN(COALESCE(first_seen, ?), ?),
                last_active = MAX(COALESCE(last_active, ?), ?)
            WHERE user_id = ?
        """, (poster.display_name, ts, ts, ts, ts, poster.id))

    def get_user_stats(self, user_id: int) -> Optional[UserStats]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM user_stats WHERE user_id = ?", (user_id,))
            row = cursor.fetchone()
            columns = [desc[0] for desc in cursor.description]

        return self._to_user_stats(dict(zip(columns, row))) if row else None

    # Reactions

    def update_reactions(self, conversation_id, message_id,
                         reactions: Union[int, Iterable[Dict]],
                         timestamp: Optional[datetime] = None) -> int:
        """
        Store the reaction total for a message, replacing any previous value.

        ``reactions`` is either a ready total or a list of platform reaction
        objects; an object carrying ``total_count`` adds that many, any other
        object adds one.
        """
        if isinstance(reactions, int):
            total, raw = reactions, None
        else:
            raw = list(reactions or [])
            total = sum(r.get('total_count') or 1 if isinstance(r, dict) else 1 for r in raw)

        with self._cursor() as cursor:
            cursor.execute("""
                INSERT INTO message_reactions
                (conversation_id, message_id, total_reactions, reactions, last_updated)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(conversation_id, message_id) DO UPDATE SET
                    total_reactions = excluded.total_reactions,
                    reactions = excluded.reactions,
                    last_updated = excluded.last_updated
            """, (
                str(conversation_id),
                str(message_id),
                total,
                json.dumps(raw) if raw is not None else None,
                to_epoch(timestamp or utc())
            ))

        logger.debug("Reactions for %s/%s: %d", conversation_id, message_id, total)
        return total

    def get_reactions(self, conversation_id, message_id) -> int:
        with self._cursor() as cursor:
            cursor.execute("""
                SELECT total_reactions FROM message_reactions
                WHERE conversation_id = ? AND message_id = ?
            """, (str(conversation_id), str(message_id)))
            row = cursor.fetchone()

        return row[0] if row else 0

    def get_reaction_map(self) -> Dict[tuple, int]:
        """All stored totals keyed by (conversation_id, message_id)"""
        with self._cursor() as cursor:
            cursor.execute("""
                SELECT conversation_id, message_id, total_reactions FROM message_reactions
            """)
            return {(row[0], row[1]): row[2] for row in cursor.fetchall()}

    def recent_reactions(self, limit: int = 5) -> List[Dict]:
        with self._cursor() as cursor:
            cursor.execute("""
                SELECT conversation_id, message_id, total_reactions, last_updated
                FROM message_reactions
                ORDER BY last_updated DESC
                LIMIT ?
            """, (limit,))
            rows = cursor.fetchall()

        return [
            {
                'conversation_id': row[0],
                'message_id': row[1],
                'total_reactions': row[2],
                'last_updated': from_epoch(row[3])
            }
            for row in rows
        ]

    def reaction_count(self) -> int:
        with self._cursor() as cursor:
            cursor.execute("SELECT COUNT(*) FROM message_reactions")
            return cursor.fetchone()[0]

    # Row mapping

    @staticmethod
    def _to_record(data: Dict) -> FingerprintRecord:
        return FingerprintRecord(
            fingerprint=Fingerprint(data['fingerprint'],
                                    FingerprintKind(data['fingerprint_kind'])),
            media_kind=MediaKind(data['media_kind']),
            poster=Poster(data['user_id'], data['display_name']),
            origin=Origin(data['conversation_id'], data['message_id']),
            posted_at=from_epoch(data['posted_at']),
            id=data['id']
        )

    @staticmethod
    def _to_user_stats(data: Dict) -> UserStats:
        return UserStats(
            user_id=data['user_id'],
            display_name=data['display_name'],
            image_count=data['image_count'],
            video_count=data['video_count'],
            binary_count=data['binary_count'],
            text_count=data['text_count'],
            duplicates_posted=data['duplicates_posted'],
            total_messages=data['total_messages'],
            first_seen=from_epoch(data['first_seen']) if data['first_seen'] is not None else None,
            last_active=from_epoch(data['last_active']) if data['last_active'] is not None else None
        )

    def close(self):
        """Close database connection"""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
