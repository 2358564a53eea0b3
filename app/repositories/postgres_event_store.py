"""
PostgreSQL-backed EventStore.

The unique index on recycle_events.video_hash is the authoritative replay
defense; inserts use ON CONFLICT DO NOTHING and surface a conflict as
DuplicateEventError.
"""

from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query, fetch_all, fetch_one
from app.infrastructure.observability.logging import get_logger
from app.models.domain.recycle_domain import DisposalEvent, RecycleEvent, UserAccount
from app.repositories.event_store import DuplicateEventError, default_name_for

logger = get_logger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS recycle_users (
        id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT NOT NULL UNIQUE,
        points INTEGER NOT NULL DEFAULT 0 CHECK (points >= 0),
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS recycle_events (
        id BIGSERIAL PRIMARY KEY,
        user_id BIGINT NOT NULL REFERENCES recycle_users(id),
        product_barcode TEXT NOT NULL,
        bin_barcode TEXT NOT NULL,
        video_url TEXT NOT NULL,
        video_hash TEXT NOT NULL UNIQUE,
        verified BOOLEAN NOT NULL DEFAULT false,
        ai_confidence DOUBLE PRECISION NOT NULL DEFAULT 0,
        ai_verdict JSONB,
        points_awarded INTEGER NOT NULL DEFAULT 0,
        timestamp TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_recycle_events_user_product
        ON recycle_events (user_id, product_barcode, timestamp DESC)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_recycle_events_bin
        ON recycle_events (bin_barcode, timestamp DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS disposal_events (
        id BIGSERIAL PRIMARY KEY,
        user_id BIGINT NOT NULL REFERENCES recycle_users(id),
        item_type TEXT NOT NULL,
        image_url TEXT NOT NULL,
        image_hash TEXT NOT NULL UNIQUE,
        verified BOOLEAN NOT NULL DEFAULT false,
        points_awarded INTEGER NOT NULL DEFAULT 0,
        timestamp TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
]

USER_COLUMNS = "id, name, email, points, created_at"
RECYCLE_COLUMNS = """
    id, user_id, product_barcode, bin_barcode, video_url, video_hash,
    verified, ai_confidence, ai_verdict, points_awarded, timestamp
"""
DISPOSAL_COLUMNS = """
    id, user_id, item_type, image_url, image_hash, verified, points_awarded, timestamp
"""


class PostgresEventStore:
    """EventStore implementation over the shared psycopg pool."""

    async def ensure_schema(self) -> None:
        for statement in SCHEMA_STATEMENTS:
            await execute_query(statement)
        logger.info("Event store schema ensured", tables=3)

    @staticmethod
    def _row_to_user(row: dict[str, Any] | None) -> UserAccount | None:
        if not row:
            return None
        return UserAccount(
            id=str(row["id"]),
            name=row["name"],
            email=row["email"],
            points=row["points"],
            created_at=row.get("created_at"),
        )

    @staticmethod
    def _row_to_recycle_event(row: dict[str, Any] | None) -> RecycleEvent | None:
        if not row:
            return None
        return RecycleEvent(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            product_barcode=row["product_barcode"],
            bin_barcode=row["bin_barcode"],
            video_url=row["video_url"],
            video_hash=row["video_hash"],
            verified=row["verified"],
            ai_confidence=row["ai_confidence"],
            ai_verdict=row.get("ai_verdict"),
            points_awarded=row["points_awarded"],
            timestamp=row["timestamp"],
        )

    @staticmethod
    def _row_to_disposal_event(row: dict[str, Any] | None) -> DisposalEvent | None:
        if not row:
            return None
        return DisposalEvent(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            item_type=row["item_type"],
            image_url=row["image_url"],
            image_hash=row["image_hash"],
            verified=row["verified"],
            points_awarded=row["points_awarded"],
            timestamp=row["timestamp"],
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def find_user_by_identity(self, email: str) -> UserAccount | None:
        row = await fetch_one(
            f"SELECT {USER_COLUMNS} FROM recycle_users WHERE email = %s", (email,)
        )
        return self._row_to_user(row)

    async def get_user(self, user_id: str) -> UserAccount | None:
        row = await fetch_one(
            f"SELECT {USER_COLUMNS} FROM recycle_users WHERE id = %s", (int(user_id),)
        )
        return self._row_to_user(row)

    async def create_user(self, email: str, name: str | None = None) -> UserAccount:
        # The no-op update makes RETURNING yield the existing row on conflict.
        row = await fetch_one(
            f"""
            INSERT INTO recycle_users (name, email, points)
            VALUES (%s, %s, 0)
            ON CONFLICT (email) DO UPDATE SET email = EXCLUDED.email
            RETURNING {USER_COLUMNS}
            """,
            (name or default_name_for(email), email),
        )
        return self._row_to_user(row)

    async def add_points(self, user_id: str, amount: int) -> int | None:
        row = await fetch_one(
            "UPDATE recycle_users SET points = points + %s WHERE id = %s RETURNING points",
            (amount, int(user_id)),
        )
        return row["points"] if row else None

    async def deduct_points(self, user_id: str, amount: int) -> int | None:
        row = await fetch_one(
            """
            UPDATE recycle_users SET points = points - %s
            WHERE id = %s AND points >= %s
            RETURNING points
            """,
            (amount, int(user_id), amount),
        )
        return row["points"] if row else None

    # ------------------------------------------------------------------
    # Recycle events
    # ------------------------------------------------------------------

    async def record_recycle_event(self, event: RecycleEvent) -> RecycleEvent:
        row = await fetch_one(
            f"""
            INSERT INTO recycle_events (
                user_id, product_barcode, bin_barcode, video_url, video_hash,
                verified, ai_confidence, ai_verdict, points_awarded, timestamp
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (video_hash) DO NOTHING
            RETURNING {RECYCLE_COLUMNS}
            """,
            (
                int(event.user_id),
                event.product_barcode,
                event.bin_barcode,
                event.video_url,
                event.video_hash,
                event.verified,
                event.ai_confidence,
                Jsonb(event.ai_verdict) if event.ai_verdict is not None else None,
                event.points_awarded,
                event.timestamp,
            ),
        )
        if row is None:
            logger.warning("Recycle event rejected by unique index", hash_preview=event.video_hash[:12])
            raise DuplicateEventError(event.video_hash)
        return self._row_to_recycle_event(row)

    async def find_recycle_event_by_hash(self, video_hash: str) -> RecycleEvent | None:
        row = await fetch_one(
            f"SELECT {RECYCLE_COLUMNS} FROM recycle_events WHERE video_hash = %s", (video_hash,)
        )
        return self._row_to_recycle_event(row)

    async def find_latest_verified_event(
        self,
        *,
        user_id: str | None = None,
        bin_barcode: str | None = None,
        product_barcode: str | None = None,
    ) -> RecycleEvent | None:
        clauses = ["verified = true"]
        params: list[Any] = []
        if user_id is not None:
            clauses.append("user_id = %s")
            params.append(int(user_id))
        if bin_barcode is not None:
            clauses.append("bin_barcode = %s")
            params.append(bin_barcode)
        if product_barcode is not None:
            clauses.append("product_barcode = %s")
            params.append(product_barcode)

        row = await fetch_one(
            f"""
            SELECT {RECYCLE_COLUMNS} FROM recycle_events
            WHERE {' AND '.join(clauses)}
            ORDER BY timestamp DESC
            LIMIT 1
            """,
            tuple(params),
        )
        return self._row_to_recycle_event(row)

    async def list_recycle_events(self, user_id: str) -> list[RecycleEvent]:
        rows = await fetch_all(
            f"""
            SELECT {RECYCLE_COLUMNS} FROM recycle_events
            WHERE user_id = %s ORDER BY timestamp DESC
            """,
            (int(user_id),),
        )
        return [self._row_to_recycle_event(row) for row in rows]

    # ------------------------------------------------------------------
    # Disposal events
    # ------------------------------------------------------------------

    async def record_disposal_event(self, event: DisposalEvent) -> DisposalEvent:
        row = await fetch_one(
            f"""
            INSERT INTO disposal_events (
                user_id, item_type, image_url, image_hash, verified, points_awarded, timestamp
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (image_hash) DO NOTHING
            RETURNING {DISPOSAL_COLUMNS}
            """,
            (
                int(event.user_id),
                event.item_type,
                event.image_url,
                event.image_hash,
                event.verified,
                event.points_awarded,
                event.timestamp,
            ),
        )
        if row is None:
            raise DuplicateEventError(event.image_hash)
        return self._row_to_disposal_event(row)

    async def find_disposal_event_by_hash(self, image_hash: str) -> DisposalEvent | None:
        row = await fetch_one(
            f"SELECT {DISPOSAL_COLUMNS} FROM disposal_events WHERE image_hash = %s", (image_hash,)
        )
        return self._row_to_disposal_event(row)

    async def list_disposal_events(self, user_id: str) -> list[DisposalEvent]:
        rows = await fetch_all(
            f"""
            SELECT {DISPOSAL_COLUMNS} FROM disposal_events
            WHERE user_id = %s ORDER BY timestamp DESC
            """,
            (int(user_id),),
        )
        return [self._row_to_disposal_event(row) for row in rows]
