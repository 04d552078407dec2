"""DuckDB-backed durable chat store.

Database Schema:
    users table:
        - id: UUID hex, stable identity reused by display name
        - username: Display name (unique)
        - avatar, is_online, status, last_seen, created_at
    messages table:
        - id: Sequence-assigned integer, exposed as a string
        - text, sender_id, sender_name, avatar, room, recipient_id
        - type, status, file_url, file_name, file_size, mime_type
        - reactions: JSON object emoji -> [{userId, displayName}]
        - read_by: JSON list of {userId, displayName, readAt}
        - created_at: Unix timestamp (seconds)

Thread Safety:
    A DuckDB connection is NOT safe for concurrent use. Every query runs on a
    single dedicated worker thread, which keeps the event loop free while
    serialising access to the connection.

Identity reuse by display name is a deliberate simplification: anyone who
types an existing name becomes that user. There is no authentication.
"""
import asyncio
import json
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, List, Optional

import duckdb

from huddle.chat.schemas import (
    Message,
    MessageStatus,
    MessageType,
    PresenceStatus,
    ReactionUser,
    ReadReceipt,
    UserRecord,
    default_avatar,
)

from .base import ChatStore, StorageQueryError, StorageUnavailable

logger = logging.getLogger(__name__)

_MESSAGE_COLUMNS = """
    id, text, sender_id, sender_name, avatar, room, recipient_id, type, status,
    file_url, file_name, file_size, mime_type, reactions, read_by, created_at
"""

_STATUS_RANK_SQL = (
    "CASE status WHEN 'sent' THEN 0 WHEN 'delivered' THEN 1 ELSE 2 END"
)

# Failures that mean the database itself is gone, not just one statement.
_CONNECTION_ERRORS = (duckdb.ConnectionException, duckdb.IOException, duckdb.FatalException)


class DuckDBStore(ChatStore):
    """Durable store keeping users and messages in a DuckDB file.

    Args:
        db_path: Path to the DuckDB file, or ":memory:".

    Raises:
        StorageUnavailable: If the database cannot be opened or initialised.
    """

    kind = "duckdb"
    durable = True

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="duckdb")
        try:
            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self._connection: Optional[duckdb.DuckDBPyConnection] = duckdb.connect(db_path)
            self._initialize_db()
        except (duckdb.Error, OSError) as exc:
            self._executor.shutdown(wait=False)
            raise StorageUnavailable(f"Cannot open DuckDB at {db_path}: {exc}") from exc
        logger.info(f"[Store] DuckDB store ready at {db_path}")

    def _initialize_db(self) -> None:
        conn = self._connection
        conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id VARCHAR PRIMARY KEY,
                username VARCHAR NOT NULL UNIQUE,
                avatar VARCHAR,
                is_online BOOLEAN NOT NULL,
                status VARCHAR NOT NULL,
                last_seen DOUBLE NOT NULL,
                created_at DOUBLE NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id BIGINT DEFAULT nextval('messages_seq') PRIMARY KEY,
                text VARCHAR,
                sender_id VARCHAR NOT NULL,
                sender_name VARCHAR NOT NULL,
                avatar VARCHAR,
                room VARCHAR,
                recipient_id VARCHAR,
                type VARCHAR NOT NULL,
                status VARCHAR NOT NULL,
                file_url VARCHAR,
                file_name VARCHAR,
                file_size BIGINT,
                mime_type VARCHAR,
                reactions VARCHAR NOT NULL,
                read_by VARCHAR NOT NULL,
                created_at DOUBLE NOT NULL
            )
        """)

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        if self._connection is None:
            raise StorageUnavailable("DuckDB store is closed")
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(self._executor, fn, *args)
        except _CONNECTION_ERRORS as exc:
            raise StorageUnavailable(str(exc)) from exc
        except duckdb.Error as exc:
            raise StorageQueryError(str(exc)) from exc

    # -------------------------------------------------------------------
    # Row mapping
    # -------------------------------------------------------------------

    @staticmethod
    def _row_to_message(row: tuple) -> Message:
        reactions = {
            emoji: [ReactionUser(**u) for u in users]
            for emoji, users in json.loads(row[13]).items()
        }
        return Message(
            id=str(row[0]),
            text=row[1],
            senderId=row[2],
            senderName=row[3],
            avatarUrl=row[4] or "",
            room=row[5],
            recipientId=row[6],
            type=MessageType(row[7]),
            status=MessageStatus(row[8]),
            fileUrl=row[9],
            fileName=row[10],
            fileSize=row[11],
            mimeType=row[12],
            reactions=reactions,
            readBy=[ReadReceipt(**r) for r in json.loads(row[14])],
            createdAt=row[15],
        )

    @staticmethod
    def _row_to_user(row: tuple, created: bool = False) -> UserRecord:
        return UserRecord(
            userId=row[0],
            displayName=row[1],
            avatarUrl=row[2] or "",
            isOnline=row[3],
            status=PresenceStatus(row[4]),
            lastSeen=row[5],
            created=created,
        )

    # -------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------

    def _find_or_create_user(self, display_name: str, avatar_url: Optional[str]) -> UserRecord:
        conn = self._connection
        now = time.time()
        row = conn.execute(
            "SELECT id FROM users WHERE username = ?", [display_name]
        ).fetchone()
        if row is None:
            user_id = uuid.uuid4().hex
            conn.execute(
                """
                INSERT INTO users (id, username, avatar, is_online, status, last_seen, created_at)
                VALUES (?, ?, ?, TRUE, 'online', ?, ?)
                """,
                [user_id, display_name, avatar_url or default_avatar(display_name), now, now],
            )
            created = True
        else:
            user_id = row[0]
            conn.execute(
                "UPDATE users SET is_online = TRUE, status = 'online', last_seen = ? WHERE id = ?",
                [now, user_id],
            )
            created = False
        user = conn.execute(
            "SELECT id, username, avatar, is_online, status, last_seen FROM users WHERE id = ?",
            [user_id],
        ).fetchone()
        return self._row_to_user(user, created=created)

    async def find_or_create_user(
        self, connection_id: str, display_name: str, avatar_url: Optional[str]
    ) -> UserRecord:
        return await self._run(self._find_or_create_user, display_name, avatar_url)

    def _mark_user_offline(self, user_id: str, last_seen: float) -> None:
        self._connection.execute(
            "UPDATE users SET is_online = FALSE, status = 'offline', last_seen = ? WHERE id = ?",
            [last_seen, user_id],
        )

    async def mark_user_offline(self, user_id: str, last_seen: float) -> None:
        await self._run(self._mark_user_offline, user_id, last_seen)

    def _list_users(self) -> List[UserRecord]:
        rows = self._connection.execute(
            """
            SELECT id, username, avatar, is_online, status, last_seen
            FROM users
            ORDER BY last_seen DESC
            """
        ).fetchall()
        return [self._row_to_user(r) for r in rows]

    async def list_users(self) -> List[UserRecord]:
        return await self._run(self._list_users)

    # -------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------

    def _append_message(self, message: Message) -> Message:
        row = self._connection.execute(
            """
            INSERT INTO messages
            (text, sender_id, sender_name, avatar, room, recipient_id, type, status,
             file_url, file_name, file_size, mime_type, reactions, read_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            [
                message.text,
                message.senderId,
                message.senderName,
                message.avatarUrl,
                message.room,
                message.recipientId,
                message.type.value,
                message.status.value,
                message.fileUrl,
                message.fileName,
                message.fileSize,
                message.mimeType,
                json.dumps(message.reactions_payload()),
                json.dumps([r.model_dump() for r in message.readBy]),
                message.createdAt,
            ],
        ).fetchone()
        return message.model_copy(update={"id": str(row[0])})

    async def append_message(self, message: Message) -> Message:
        return await self._run(self._append_message, message)

    def _get_message(self, message_id: str) -> Optional[Message]:
        try:
            numeric_id = int(message_id)
        except (TypeError, ValueError):
            return None
        row = self._connection.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", [numeric_id]
        ).fetchone()
        return self._row_to_message(row) if row else None

    async def get_message(self, message_id: str) -> Optional[Message]:
        return await self._run(self._get_message, message_id)

    def _set_reaction(self, message_id: str, user: ReactionUser, emoji: str) -> Optional[Message]:
        # Read and write in one job so concurrent reactions are applied in turn.
        message = self._get_message(message_id)
        if message is None:
            return None
        message.set_reaction(user, emoji)
        self._connection.execute(
            "UPDATE messages SET reactions = ? WHERE id = ?",
            [json.dumps(message.reactions_payload()), int(message.id)],
        )
        return message

    async def set_reaction(
        self, message_id: str, user: ReactionUser, emoji: str
    ) -> Optional[Message]:
        return await self._run(self._set_reaction, message_id, user, emoji)

    def _mark_read(self, message: Message, receipt: ReadReceipt) -> None:
        conn = self._connection
        row = conn.execute(
            "SELECT read_by FROM messages WHERE id = ?", [int(message.id)]
        ).fetchone()
        if row is None:
            return
        read_by = json.loads(row[0])
        if not any(r["userId"] == receipt.userId for r in read_by):
            read_by.append(receipt.model_dump())
        conn.execute(
            "UPDATE messages SET read_by = ? WHERE id = ?",
            [json.dumps(read_by), int(message.id)],
        )
        self._update_status(message.id, message.status)

    async def mark_read(self, message: Message, receipt: ReadReceipt) -> None:
        await self._run(self._mark_read, message, receipt)

    def _update_status(self, message_id: str, status: MessageStatus) -> None:
        self._connection.execute(
            f"UPDATE messages SET status = ? WHERE id = ? AND {_STATUS_RANK_SQL} < ?",
            [status.value, int(message_id), status.rank],
        )

    async def update_status(self, message_id: str, status: MessageStatus) -> None:
        await self._run(self._update_status, message_id, status)

    def _recent_messages(self, room: str, limit: int) -> List[Message]:
        rows = self._connection.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE room = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            [room, limit],
        ).fetchall()
        return [self._row_to_message(r) for r in reversed(rows)]

    async def recent_messages(self, room: str, limit: int) -> List[Message]:
        return await self._run(self._recent_messages, room, limit)

    def _room_history(self, room: str, page: int, limit: int) -> List[Message]:
        rows = self._connection.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE room = ?
            ORDER BY id DESC
            LIMIT ? OFFSET ?
            """,
            [room, limit, (page - 1) * limit],
        ).fetchall()
        return [self._row_to_message(r) for r in reversed(rows)]

    async def room_history(self, room: str, page: int, limit: int) -> List[Message]:
        return await self._run(self._room_history, room, page, limit)

    def _stats(self) -> dict:
        conn = self._connection
        total_users, online_users = conn.execute(
            "SELECT COUNT(*), COUNT(*) FILTER (WHERE is_online) FROM users"
        ).fetchone()
        total_messages, rooms = conn.execute(
            "SELECT COUNT(*), COUNT(DISTINCT room) FROM messages"
        ).fetchone()
        return {
            "totalUsers": total_users,
            "onlineUsers": online_users,
            "totalMessages": total_messages,
            "rooms": rooms,
        }

    async def stats(self) -> dict:
        return await self._run(self._stats)

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None
        self._executor.shutdown(wait=False)
