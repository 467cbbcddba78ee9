"""
Database Manager for StoreForge.

SQLite-backed draft store, production catalog, generated-assets ledger,
agent action log and conversation archive.

Every draft query is scoped by merchant (and store where the caller has
one). A draft id owned by another merchant simply matches zero rows.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from storeforge.agents.schemas import DRAFT_EDITABLE_FIELDS, DraftStatus, ProductDraft, StoreProduct
from storeforge.utils.ids import generate_asset_id, generate_id
from storeforge.utils.logging import get_logger

logger = get_logger("storage.database")

_JSON_FIELDS = {"tags": "tags_json"}


def _now() -> str:
    return datetime.now(UTC).isoformat()


# ============================================================================
# Database Manager
# ============================================================================


class DatabaseManager:
    """Manages the StoreForge SQLite database.

    Usage:
        db = DatabaseManager(data_dir / "storeforge.db")
        db.initialize()

        draft = db.insert_draft(draft)
        drafts = db.list_drafts(merchant_id="m1", store_id="s1", status=DraftStatus.DRAFT)

    ``":memory:"`` keeps a single shared connection so the schema and rows
    survive between calls.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self._shared_conn: sqlite3.Connection | None = None

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection; commit on success, roll back on error."""
        if self.db_path == ":memory:":
            if self._shared_conn is None:
                self._shared_conn = sqlite3.connect(":memory:")
                self._shared_conn.row_factory = sqlite3.Row
            conn = self._shared_conn
        else:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row

        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if conn is not self._shared_conn:
                conn.close()

    def close(self) -> None:
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None

    def initialize(self) -> None:
        """Create all tables and indexes if they don't exist."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS product_drafts (
                    id TEXT PRIMARY KEY,
                    batch_id TEXT,
                    store_id TEXT NOT NULL,
                    merchant_id TEXT NOT NULL,
                    group_index INTEGER,
                    name TEXT NOT NULL,
                    name_ar TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    description_ar TEXT DEFAULT '',
                    category TEXT DEFAULT '',
                    category_ar TEXT DEFAULT '',
                    tags_json TEXT DEFAULT '[]',
                    suggested_price REAL,
                    image_urls_json TEXT NOT NULL,
                    primary_image_url TEXT NOT NULL,
                    ai_confidence TEXT NOT NULL DEFAULT 'medium',
                    status TEXT NOT NULL DEFAULT 'draft',
                    metadata_json TEXT DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS store_products (
                    id TEXT PRIMARY KEY,
                    store_id TEXT NOT NULL,
                    merchant_id TEXT NOT NULL,
                    slug TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    name_ar TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    description_ar TEXT DEFAULT '',
                    category TEXT DEFAULT '',
                    category_ar TEXT DEFAULT '',
                    tags_json TEXT DEFAULT '[]',
                    price REAL NOT NULL DEFAULT 0,
                    image_urls_json TEXT DEFAULT '[]',
                    primary_image_url TEXT,
                    status TEXT NOT NULL DEFAULT 'draft',
                    ai_generated INTEGER NOT NULL DEFAULT 0,
                    ai_confidence TEXT,
                    source_draft_id TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS generated_assets (
                    id TEXT PRIMARY KEY,
                    merchant_id TEXT NOT NULL,
                    draft_id TEXT,
                    task TEXT NOT NULL,
                    source_url TEXT NOT NULL,
                    result_url TEXT,
                    status TEXT NOT NULL,
                    metadata_json TEXT DEFAULT '{}',
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS ai_actions_log (
                    id TEXT PRIMARY KEY,
                    merchant_id TEXT,
                    store_id TEXT,
                    agent_name TEXT NOT NULL,
                    tool_name TEXT NOT NULL,
                    input_json TEXT DEFAULT '{}',
                    output_json TEXT DEFAULT '{}',
                    success INTEGER NOT NULL,
                    duration_ms INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS conversations (
                    id TEXT PRIMARY KEY,
                    merchant_id TEXT NOT NULL,
                    store_id TEXT NOT NULL,
                    messages_json TEXT NOT NULL,
                    message_count INTEGER NOT NULL,
                    started_at TEXT,
                    archived_at TEXT NOT NULL
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_drafts_scope ON product_drafts(merchant_id, store_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_drafts_batch ON product_drafts(batch_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_drafts_status ON product_drafts(status)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_products_scope ON store_products(merchant_id, store_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_products_category ON store_products(category)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_assets_merchant ON generated_assets(merchant_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_actions_merchant ON ai_actions_log(merchant_id)")

        logger.info(f"Database initialized at {self.db_path}")

    # ========== Draft Operations ==========

    def insert_draft(self, draft: ProductDraft) -> ProductDraft:
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO product_drafts (
                    id, batch_id, store_id, merchant_id, group_index,
                    name, name_ar, description, description_ar,
                    category, category_ar, tags_json, suggested_price,
                    image_urls_json, primary_image_url, ai_confidence,
                    status, metadata_json, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                draft.id,
                draft.batch_id,
                draft.store_id,
                draft.merchant_id,
                draft.group_index,
                draft.name,
                draft.name_ar,
                draft.description,
                draft.description_ar,
                draft.category,
                draft.category_ar,
                json.dumps(draft.tags, ensure_ascii=False),
                draft.suggested_price,
                json.dumps(draft.image_urls),
                draft.primary_image_url,
                draft.ai_confidence,
                draft.status.value,
                json.dumps(draft.metadata, ensure_ascii=False),
                draft.created_at.isoformat(),
                draft.updated_at.isoformat(),
            ))
        return draft

    def get_draft(
        self,
        draft_id: str,
        merchant_id: str,
        store_id: str | None = None,
    ) -> ProductDraft | None:
        """Get a draft by id within the caller's scope."""
        query = "SELECT * FROM product_drafts WHERE id = ? AND merchant_id = ?"
        params: list[Any] = [draft_id, merchant_id]
        if store_id is not None:
            query += " AND store_id = ?"
            params.append(store_id)

        with self._connection() as conn:
            row = conn.execute(query, params).fetchone()

        return self._row_to_draft(row) if row else None

    def list_drafts(
        self,
        merchant_id: str,
        store_id: str | None = None,
        batch_id: str | None = None,
        status: DraftStatus | None = None,
        draft_ids: Sequence[str] | None = None,
    ) -> list[ProductDraft]:
        """List drafts in scope, optionally filtered by batch, status or ids."""
        query = "SELECT * FROM product_drafts WHERE merchant_id = ?"
        params: list[Any] = [merchant_id]

        if store_id is not None:
            query += " AND store_id = ?"
            params.append(store_id)
        if batch_id is not None:
            query += " AND batch_id = ?"
            params.append(batch_id)
        if status is not None:
            query += " AND status = ?"
            params.append(DraftStatus(status).value)
        if draft_ids is not None:
            if not draft_ids:
                return []
            query += f" AND id IN ({', '.join('?' for _ in draft_ids)})"
            params.extend(draft_ids)

        query += " ORDER BY COALESCE(group_index, 0), created_at"

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return [self._row_to_draft(row) for row in rows]

    def update_draft_field(
        self,
        draft_id: str,
        merchant_id: str,
        field: str,
        value: Any,
    ) -> bool:
        """Set one editable field on a draft that is still in ``draft`` status.

        Returns:
            True if a row changed. Persisted, discarded or foreign drafts
            match nothing and return False.
        """
        if field not in DRAFT_EDITABLE_FIELDS:
            raise ValueError(f"Field is not editable: {field}")

        column = _JSON_FIELDS.get(field, field)
        if column.endswith("_json"):
            value = json.dumps(value, ensure_ascii=False)

        with self._connection() as conn:
            cursor = conn.execute(
                f"UPDATE product_drafts SET {column} = ?, updated_at = ? "
                "WHERE id = ? AND merchant_id = ? AND status = ?",
                (value, _now(), draft_id, merchant_id, DraftStatus.DRAFT.value),
            )
            return cursor.rowcount > 0

    def discard_drafts(
        self,
        draft_ids: Sequence[str],
        merchant_id: str,
        store_id: str | None = None,
    ) -> int:
        """Flip in-scope ``draft`` rows to ``discarded``. Returns rows affected."""
        if not draft_ids:
            return 0

        query = (
            "UPDATE product_drafts SET status = ?, updated_at = ? "
            f"WHERE id IN ({', '.join('?' for _ in draft_ids)}) "
            "AND merchant_id = ? AND status = ?"
        )
        params: list[Any] = [DraftStatus.DISCARDED.value, _now(), *draft_ids, merchant_id, DraftStatus.DRAFT.value]
        if store_id is not None:
            query += " AND store_id = ?"
            params.append(store_id)

        with self._connection() as conn:
            return conn.execute(query, params).rowcount

    def _row_to_draft(self, row: sqlite3.Row) -> ProductDraft:
        return ProductDraft(
            id=row["id"],
            batch_id=row["batch_id"],
            store_id=row["store_id"],
            merchant_id=row["merchant_id"],
            group_index=row["group_index"],
            name=row["name"],
            name_ar=row["name_ar"],
            description=row["description"],
            description_ar=row["description_ar"],
            category=row["category"],
            category_ar=row["category_ar"],
            tags=json.loads(row["tags_json"] or "[]"),
            suggested_price=row["suggested_price"],
            image_urls=json.loads(row["image_urls_json"]),
            primary_image_url=row["primary_image_url"],
            ai_confidence=row["ai_confidence"],
            status=DraftStatus(row["status"]),
            metadata=json.loads(row["metadata_json"] or "{}"),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # ========== Catalog Operations ==========

    def persist_draft(self, product: StoreProduct, draft_id: str, merchant_id: str, store_id: str) -> bool:
        """Insert a catalog row and mark its source draft persisted.

        Both statements share one transaction per draft. If the draft is no
        longer in ``draft`` status within scope, nothing is written.

        Raises:
            sqlite3.Error: On insert failure (e.g. slug collision)
        """
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE product_drafts SET status = ?, updated_at = ? "
                "WHERE id = ? AND merchant_id = ? AND store_id = ? AND status = ?",
                (DraftStatus.PERSISTED.value, _now(), draft_id, merchant_id, store_id, DraftStatus.DRAFT.value),
            )
            if cursor.rowcount == 0:
                return False

            conn.execute("""
                INSERT INTO store_products (
                    id, store_id, merchant_id, slug, name, name_ar,
                    description, description_ar, category, category_ar,
                    tags_json, price, image_urls_json, primary_image_url,
                    status, ai_generated, ai_confidence, source_draft_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                product.id,
                product.store_id,
                product.merchant_id,
                product.slug,
                product.name,
                product.name_ar,
                product.description,
                product.description_ar,
                product.category,
                product.category_ar,
                json.dumps(product.tags, ensure_ascii=False),
                product.price,
                json.dumps(product.image_urls),
                product.primary_image_url,
                product.status,
                int(product.ai_generated),
                product.ai_confidence,
                product.source_draft_id,
                product.created_at.isoformat(),
            ))
        return True

    def list_products(self, merchant_id: str, store_id: str | None = None) -> list[StoreProduct]:
        query = "SELECT * FROM store_products WHERE merchant_id = ?"
        params: list[Any] = [merchant_id]
        if store_id is not None:
            query += " AND store_id = ?"
            params.append(store_id)

        with self._connection() as conn:
            rows = conn.execute(query + " ORDER BY created_at, rowid", params).fetchall()

        return [self._row_to_product(row) for row in rows]

    def average_price(self, merchant_id: str, category: str) -> float | None:
        """Average positive catalog price for a merchant's category, or None."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT AVG(price) AS avg_price, COUNT(*) AS n FROM store_products "
                "WHERE merchant_id = ? AND LOWER(category) = LOWER(?) AND price > 0",
                (merchant_id, category),
            ).fetchone()

        if row is None or not row["n"]:
            return None
        return round(float(row["avg_price"]), 2)

    def _row_to_product(self, row: sqlite3.Row) -> StoreProduct:
        return StoreProduct(
            id=row["id"],
            store_id=row["store_id"],
            merchant_id=row["merchant_id"],
            slug=row["slug"],
            name=row["name"],
            name_ar=row["name_ar"],
            description=row["description"],
            description_ar=row["description_ar"],
            category=row["category"],
            category_ar=row["category_ar"],
            tags=json.loads(row["tags_json"] or "[]"),
            price=row["price"],
            image_urls=json.loads(row["image_urls_json"] or "[]"),
            primary_image_url=row["primary_image_url"],
            status=row["status"],
            ai_generated=bool(row["ai_generated"]),
            ai_confidence=row["ai_confidence"] or "medium",
            source_draft_id=row["source_draft_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # ========== Generated Assets Ledger ==========

    def log_asset(
        self,
        merchant_id: str,
        task: str,
        source_url: str,
        result_url: str | None,
        status: str,
        draft_id: str | None = None,
        metadata: dict | None = None,
    ) -> str:
        """Append a derived-asset record. Rows are never updated or deleted."""
        asset_id = generate_asset_id()
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO generated_assets (
                    id, merchant_id, draft_id, task, source_url,
                    result_url, status, metadata_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                asset_id,
                merchant_id,
                draft_id,
                task,
                source_url,
                result_url,
                status,
                json.dumps(metadata or {}, ensure_ascii=False),
                _now(),
            ))
        return asset_id

    def list_assets(self, merchant_id: str, draft_id: str | None = None) -> list[dict[str, Any]]:
        query = "SELECT * FROM generated_assets WHERE merchant_id = ?"
        params: list[Any] = [merchant_id]
        if draft_id is not None:
            query += " AND draft_id = ?"
            params.append(draft_id)

        with self._connection() as conn:
            rows = conn.execute(query + " ORDER BY created_at, rowid", params).fetchall()

        return [
            {**dict(row), "metadata": json.loads(row["metadata_json"] or "{}")}
            for row in rows
        ]

    # ========== Action Log ==========

    def log_action(
        self,
        agent_name: str,
        tool_name: str,
        args: dict[str, Any],
        output: Any,
        success: bool,
        duration_ms: int,
        merchant_id: str | None = None,
        store_id: str | None = None,
    ) -> None:
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO ai_actions_log (
                    id, merchant_id, store_id, agent_name, tool_name,
                    input_json, output_json, success, duration_ms, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                generate_id("ACT"),
                merchant_id,
                store_id,
                agent_name,
                tool_name,
                json.dumps(args, ensure_ascii=False, default=str),
                json.dumps(output, ensure_ascii=False, default=str),
                int(success),
                duration_ms,
                _now(),
            ))

    def list_actions(self, merchant_id: str) -> list[dict[str, Any]]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM ai_actions_log WHERE merchant_id = ? ORDER BY created_at",
                (merchant_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    # ========== Conversation Archive ==========

    def archive_conversation(
        self,
        merchant_id: str,
        store_id: str,
        messages: Sequence[dict[str, Any]],
        started_at: datetime | None = None,
    ) -> str:
        conversation_id = generate_id("CONV")
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO conversations (
                    id, merchant_id, store_id, messages_json,
                    message_count, started_at, archived_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                conversation_id,
                merchant_id,
                store_id,
                json.dumps(list(messages), ensure_ascii=False, default=str),
                len(messages),
                started_at.isoformat() if started_at else None,
                _now(),
            ))
        return conversation_id

    def list_conversations(self, merchant_id: str, store_id: str) -> list[dict[str, Any]]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM conversations WHERE merchant_id = ? AND store_id = ? ORDER BY archived_at",
                (merchant_id, store_id),
            ).fetchall()
        return [
            {**dict(row), "messages": json.loads(row["messages_json"])}
            for row in rows
        ]


class ScopedActionLogger:
    """Adapts DatabaseManager.log_action to the runtime's ActionLogger protocol."""

    def __init__(self, db: DatabaseManager, merchant_id: str, store_id: str):
        self.db = db
        self.merchant_id = merchant_id
        self.store_id = store_id

    def record_action(
        self,
        agent_name: str,
        tool_name: str,
        args: dict[str, Any],
        output: Any,
        success: bool,
        duration_ms: int,
    ) -> None:
        self.db.log_action(
            agent_name=agent_name,
            tool_name=tool_name,
            args=args,
            output=output,
            success=success,
            duration_ms=duration_ms,
            merchant_id=self.merchant_id,
            store_id=self.store_id,
        )
