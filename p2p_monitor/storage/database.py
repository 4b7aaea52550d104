# p2p_monitor/storage/database.py
import asyncio
import logging
import sqlite3
import time
from dataclasses import astuple
from typing import Any

import aiosqlite

from p2p_monitor.errors import DuplicateKeyError, StoreUnavailableError

from .models import (
    Asset,
    ExternalUser,
    LatestOffer,
    NormalizedOffer,
    OfferSnapshot,
    PaymentMethod,
    PricePoint,
    SymbolInfo,
    TradingPreferences,
)

logger = logging.getLogger(__name__)

DAY_MS = 24 * 3600 * 1000

OFFER_COLUMNS = (
    "snapshot_time, offer_id, account_id, user_id, token_id, currency_id, side, "
    "price_type, price, premium, last_quantity, total_quantity, frozen_quantity, "
    "executed_quantity, min_amount, max_amount, status, is_online, remark, last_logout, "
    "version, auth_status, user_type, payment_period, user_mask_id"
)

SYMBOL_INFO_COLUMNS = (
    "symbol_id, exchange_id, org_id, token_id, currency_id, status, lower_limit_alarm, "
    "upper_limit_alarm, item_down_range, item_up_range, currency_min_quote, "
    "currency_max_quote, token_min_quote, token_max_quote, currency_lower_max, "
    "buy_fee_rate, sell_fee_rate, order_auto_cancel, order_finish_minute"
)

PREFERENCES_COLUMNS = (
    "snapshot_time, offer_id, has_unposted_ad, is_kyc, is_email_verified, "
    "is_mobile_verified, register_time_threshold, order_finish_30d, complete_rate_30d, "
    "national_limit"
)


def _placeholders(columns: str) -> str:
    return ", ".join("?" for _ in columns.split(","))


def _offer_from_row(row: Any) -> OfferSnapshot:
    offer = OfferSnapshot(*row)
    offer.is_online = bool(offer.is_online)
    return offer


def _preferences_from_row(row: Any) -> TradingPreferences:
    prefs = TradingPreferences(*row)
    prefs.has_unposted_ad = bool(prefs.has_unposted_ad)
    prefs.is_kyc = bool(prefs.is_kyc)
    prefs.is_email_verified = bool(prefs.is_email_verified)
    prefs.is_mobile_verified = bool(prefs.is_mobile_verified)
    return prefs


class Database:
    def __init__(self, path: str):
        self.path = path
        self.conn: aiosqlite.Connection | None = None
        # 单连接共享事务，写事务与读查询必须串行
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        try:
            self.conn = await aiosqlite.connect(self.path)
            # WAL: 读不阻塞写
            await self.conn.execute("PRAGMA journal_mode=WAL")
            await self._create_tables()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open database {self.path}: {e}") from e
        logger.info(f"Database ready at {self.path}")

    async def close(self) -> None:
        if self.conn:
            await self.conn.close()
            self.conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self.conn is None:
            raise StoreUnavailableError("Database connection is not open")
        return self.conn

    async def _create_tables(self) -> None:
        conn = self._require_conn()
        await conn.executescript("""
            CREATE TABLE IF NOT EXISTS p2p_offers (
                snapshot_time INTEGER NOT NULL,
                offer_id INTEGER NOT NULL,
                account_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                token_id TEXT NOT NULL,
                currency_id TEXT NOT NULL,
                side INTEGER NOT NULL CHECK (side IN (0, 1)),
                price_type INTEGER NOT NULL,
                price REAL NOT NULL,
                premium REAL NOT NULL,
                last_quantity REAL NOT NULL,
                total_quantity REAL NOT NULL,
                frozen_quantity REAL NOT NULL,
                executed_quantity REAL NOT NULL,
                min_amount REAL NOT NULL,
                max_amount REAL NOT NULL,
                status INTEGER NOT NULL,
                is_online INTEGER NOT NULL,
                remark TEXT,
                last_logout INTEGER,
                version INTEGER NOT NULL,
                auth_status INTEGER NOT NULL,
                user_type TEXT NOT NULL,
                payment_period INTEGER NOT NULL,
                user_mask_id TEXT NOT NULL,
                PRIMARY KEY (snapshot_time, offer_id)
            );
            CREATE INDEX IF NOT EXISTS idx_p2p_offers_time ON p2p_offers(snapshot_time);
            CREATE INDEX IF NOT EXISTS idx_p2p_offers_pair_side
                ON p2p_offers(token_id, currency_id, side, snapshot_time);

            CREATE TABLE IF NOT EXISTS symbol_info (
                symbol_id INTEGER PRIMARY KEY,
                exchange_id INTEGER,
                org_id INTEGER,
                token_id TEXT,
                currency_id TEXT,
                status INTEGER,
                lower_limit_alarm REAL,
                upper_limit_alarm REAL,
                item_down_range REAL,
                item_up_range REAL,
                currency_min_quote REAL,
                currency_max_quote REAL,
                token_min_quote REAL,
                token_max_quote REAL,
                currency_lower_max REAL,
                buy_fee_rate REAL,
                sell_fee_rate REAL,
                order_auto_cancel INTEGER,
                order_finish_minute INTEGER
            );
            CREATE INDEX IF NOT EXISTS idx_symbol_info_pair ON symbol_info(token_id, currency_id);

            CREATE TABLE IF NOT EXISTS p2p_users (
                user_id INTEGER PRIMARY KEY,
                account_id INTEGER,
                nick_name TEXT,
                blocked INTEGER,
                maker_contact INTEGER
            );

            CREATE TABLE IF NOT EXISTS payment_methods (
                method_id INTEGER PRIMARY KEY,
                name TEXT
            );

            CREATE TABLE IF NOT EXISTS offer_payments (
                snapshot_time INTEGER NOT NULL,
                offer_id INTEGER NOT NULL,
                method_id INTEGER NOT NULL,
                PRIMARY KEY (snapshot_time, offer_id, method_id)
            );
            CREATE INDEX IF NOT EXISTS idx_offer_payments_method
                ON offer_payments(method_id, snapshot_time);

            CREATE TABLE IF NOT EXISTS trading_preferences (
                snapshot_time INTEGER NOT NULL,
                offer_id INTEGER NOT NULL,
                has_unposted_ad INTEGER,
                is_kyc INTEGER,
                is_email_verified INTEGER,
                is_mobile_verified INTEGER,
                register_time_threshold INTEGER,
                order_finish_30d INTEGER,
                complete_rate_30d REAL,
                national_limit TEXT,
                PRIMARY KEY (snapshot_time, offer_id)
            );

            CREATE TABLE IF NOT EXISTS assets (
                asset_id TEXT PRIMARY KEY,
                scale INTEGER,
                sequence INTEGER
            );
        """)
        await conn.commit()

    async def _fetchall(self, query: str, params: tuple[Any, ...] = ()) -> list[Any]:
        conn = self._require_conn()
        async with self._lock:
            try:
                cursor = await conn.execute(query, params)
                return list(await cursor.fetchall())
            except sqlite3.DatabaseError as e:
                raise StoreUnavailableError(f"Query failed: {e}") from e

    async def _fetchone(self, query: str, params: tuple[Any, ...] = ()) -> Any:
        rows = await self._fetchall(query, params)
        return rows[0] if rows else None

    # ---- 写入 ----

    async def store_offer(self, record: NormalizedOffer) -> None:
        """
        单条挂单的全部写入，在一个事务内完成

        顺序: 维度 (symbol / user / payment / asset) -> 事实 -> 桥表 -> 偏好
        """
        conn = self._require_conn()
        offer = record.offer
        async with self._lock:
            try:
                await self._insert_offer(conn, record)
                await conn.commit()
            except sqlite3.IntegrityError:
                await self._rollback()
                raise
            except sqlite3.DatabaseError as e:
                await self._rollback()
                raise StoreUnavailableError(
                    f"Write failed for offer {offer.offer_id}: {e}"
                ) from e
            except Exception:
                await self._rollback()
                raise

    @staticmethod
    async def _insert_offer(conn: aiosqlite.Connection, record: NormalizedOffer) -> None:
        offer = record.offer
        if record.symbol_info:
            await conn.execute(
                f"INSERT OR REPLACE INTO symbol_info ({SYMBOL_INFO_COLUMNS}) "
                f"VALUES ({_placeholders(SYMBOL_INFO_COLUMNS)})",
                astuple(record.symbol_info),
            )
        await conn.execute(
            """INSERT OR REPLACE INTO p2p_users
               (user_id, account_id, nick_name, blocked, maker_contact)
               VALUES (?, ?, ?, ?, ?)""",
            astuple(record.user),
        )
        for method in record.payment_methods:
            await conn.execute(
                "INSERT OR REPLACE INTO payment_methods (method_id, name) VALUES (?, ?)",
                (method.method_id, method.name),
            )
        for asset in record.assets:
            await conn.execute(
                "INSERT OR REPLACE INTO assets (asset_id, scale, sequence) VALUES (?, ?, ?)",
                (asset.asset_id, asset.scale, asset.sequence),
            )
        try:
            await conn.execute(
                f"INSERT INTO p2p_offers ({OFFER_COLUMNS}) "
                f"VALUES ({_placeholders(OFFER_COLUMNS)})",
                astuple(offer),
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" not in str(e) and "PRIMARY KEY" not in str(e):
                raise
            raise DuplicateKeyError(offer.snapshot_time, offer.offer_id) from e
        for link in record.offer_payments:
            await conn.execute(
                """INSERT OR IGNORE INTO offer_payments (snapshot_time, offer_id, method_id)
                   VALUES (?, ?, ?)""",
                (link.snapshot_time, link.offer_id, link.method_id),
            )
        if record.trading_preferences:
            await conn.execute(
                f"INSERT OR REPLACE INTO trading_preferences ({PREFERENCES_COLUMNS}) "
                f"VALUES ({_placeholders(PREFERENCES_COLUMNS)})",
                astuple(record.trading_preferences),
            )

    async def _rollback(self) -> None:
        if self.conn is None:
            return
        try:
            await self.conn.rollback()
        except sqlite3.Error as e:
            logger.error(f"Rollback failed: {e}")

    async def cleanup_old_data(self, retention_days: int, now_ms: int | None = None) -> dict[str, int]:
        """删除早于保留期的事实表、桥表与偏好表数据，三张表共用同一个截止时间"""
        if retention_days < 1:
            raise ValueError(f"retention_days must be at least 1, got {retention_days}")
        conn = self._require_conn()
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        cutoff = now_ms - retention_days * DAY_MS

        deleted: dict[str, int] = {}
        for table in ("p2p_offers", "offer_payments", "trading_preferences"):
            # 每张表单独提交，锁保证不会夹在某条挂单的写事务中间
            async with self._lock:
                try:
                    cursor = await conn.execute(
                        f"DELETE FROM {table} WHERE snapshot_time < ?", (cutoff,)
                    )
                    await conn.commit()
                except sqlite3.DatabaseError as e:
                    await self._rollback()
                    raise StoreUnavailableError(f"Cleanup failed on {table}: {e}") from e
            deleted[table] = cursor.rowcount
        return deleted

    # ---- 事实表查询 ----

    async def get_offer(self, snapshot_time: int, offer_id: int) -> OfferSnapshot | None:
        row = await self._fetchone(
            f"SELECT {OFFER_COLUMNS} FROM p2p_offers WHERE snapshot_time = ? AND offer_id = ?",
            (snapshot_time, offer_id),
        )
        return _offer_from_row(row) if row else None

    async def get_latest_by_pair(
        self, token_id: str, currency_id: str, limit: int = 100
    ) -> list[OfferSnapshot]:
        rows = await self._fetchall(
            f"""SELECT {OFFER_COLUMNS} FROM p2p_offers
                WHERE token_id = ? AND currency_id = ?
                ORDER BY snapshot_time DESC LIMIT ?""",
            (token_id, currency_id, limit),
        )
        return [_offer_from_row(row) for row in rows]

    async def get_price_points(
        self,
        token_id: str,
        currency_id: str,
        start_ms: int,
        end_ms: int,
        side: int | None = None,
        payment_method_id: int | None = None,
    ) -> list[PricePoint]:
        """按交易对、时间窗口 (闭区间) 以及可选的方向、支付方式读取价格"""
        query = "SELECT o.snapshot_time, o.side, o.price, o.premium FROM p2p_offers o"
        params: list[Any] = []
        if payment_method_id is not None:
            query += (
                " JOIN offer_payments op"
                " ON o.snapshot_time = op.snapshot_time AND o.offer_id = op.offer_id"
                " AND op.method_id = ?"
            )
            params.append(payment_method_id)
        query += (
            " WHERE o.token_id = ? AND o.currency_id = ?"
            " AND o.snapshot_time >= ? AND o.snapshot_time <= ?"
        )
        params.extend([token_id, currency_id, start_ms, end_ms])
        if side is not None:
            query += " AND o.side = ?"
            params.append(side)
        query += " ORDER BY o.snapshot_time ASC"
        rows = await self._fetchall(query, tuple(params))
        return [PricePoint(*row) for row in rows]

    async def get_latest_offers(
        self, payment_method_id: int | None = None, limit: int = 50
    ) -> list[LatestOffer]:
        """
        最新挂单列表

        同一 (user, token, currency, side, offer) 分组内的多次快照取均价与平均数量，
        下游依赖这种平滑，不要改成只取最新一行。
        """
        query = """SELECT MAX(o.snapshot_time), o.offer_id, o.account_id, o.user_id,
                          o.token_id, o.currency_id, o.side,
                          AVG(o.price), AVG(o.total_quantity)
                   FROM p2p_offers o"""
        params: list[Any] = []
        if payment_method_id is not None:
            query += """ JOIN offer_payments op
                         ON o.snapshot_time = op.snapshot_time AND o.offer_id = op.offer_id
                         WHERE op.method_id = ?"""
            params.append(payment_method_id)
        query += """ GROUP BY o.user_id, o.token_id, o.currency_id, o.side, o.offer_id,
                              o.account_id
                     ORDER BY MAX(o.snapshot_time) DESC
                     LIMIT ?"""
        params.append(limit)
        rows = await self._fetchall(query, tuple(params))
        return [LatestOffer(*row) for row in rows]

    # ---- 桥表 / 偏好 ----

    async def get_offer_payments(self, snapshot_time: int, offer_id: int) -> list[PaymentMethod]:
        rows = await self._fetchall(
            """SELECT pm.method_id, pm.name
               FROM payment_methods pm
               JOIN offer_payments op ON pm.method_id = op.method_id
               WHERE op.snapshot_time = ? AND op.offer_id = ?
               ORDER BY pm.method_id""",
            (snapshot_time, offer_id),
        )
        return [PaymentMethod(*row) for row in rows]

    async def count_offer_payments(self, snapshot_time: int, offer_id: int) -> int:
        row = await self._fetchone(
            "SELECT COUNT(*) FROM offer_payments WHERE snapshot_time = ? AND offer_id = ?",
            (snapshot_time, offer_id),
        )
        return int(row[0])

    async def get_trading_preferences(
        self, snapshot_time: int, offer_id: int
    ) -> TradingPreferences | None:
        row = await self._fetchone(
            f"""SELECT {PREFERENCES_COLUMNS} FROM trading_preferences
                WHERE snapshot_time = ? AND offer_id = ?""",
            (snapshot_time, offer_id),
        )
        return _preferences_from_row(row) if row else None

    async def get_latest_trading_preferences(self, offer_id: int) -> TradingPreferences | None:
        row = await self._fetchone(
            f"""SELECT {PREFERENCES_COLUMNS} FROM trading_preferences
                WHERE offer_id = ? ORDER BY snapshot_time DESC LIMIT 1""",
            (offer_id,),
        )
        return _preferences_from_row(row) if row else None

    async def get_payment_method_stats(self) -> list[dict[str, Any]]:
        """每种支付方式关联的挂单数与快照数"""
        rows = await self._fetchall(
            """SELECT pm.method_id, pm.name,
                      COUNT(DISTINCT op.offer_id) AS offer_count,
                      COUNT(op.offer_id) AS total_snapshots
               FROM payment_methods pm
               LEFT JOIN offer_payments op ON pm.method_id = op.method_id
               GROUP BY pm.method_id, pm.name
               ORDER BY offer_count DESC, pm.method_id"""
        )
        columns = ["method_id", "name", "offer_count", "total_snapshots"]
        return [dict(zip(columns, row)) for row in rows]

    async def get_completion_rate_stats(self) -> list[dict[str, Any]]:
        """按 30 日完成率分档统计"""
        rows = await self._fetchall(
            """SELECT CASE
                        WHEN complete_rate_30d >= 0.95 THEN '95%+'
                        WHEN complete_rate_30d >= 0.90 THEN '90-95%'
                        WHEN complete_rate_30d >= 0.80 THEN '80-90%'
                        WHEN complete_rate_30d >= 0.70 THEN '70-80%'
                        ELSE 'Below 70%'
                      END AS completion_rate_range,
                      COUNT(*) AS offer_count,
                      AVG(complete_rate_30d) AS avg_completion_rate
               FROM trading_preferences
               WHERE complete_rate_30d IS NOT NULL
               GROUP BY completion_rate_range
               ORDER BY avg_completion_rate DESC"""
        )
        columns = ["completion_rate_range", "offer_count", "avg_completion_rate"]
        return [dict(zip(columns, row)) for row in rows]

    # ---- 维度表 ----

    async def get_user(self, user_id: int) -> ExternalUser | None:
        row = await self._fetchone(
            """SELECT user_id, account_id, nick_name, blocked, maker_contact
               FROM p2p_users WHERE user_id = ?""",
            (user_id,),
        )
        if not row:
            return None
        return ExternalUser(row[0], row[1], row[2], bool(row[3]), bool(row[4]))

    async def get_symbol_info(self, symbol_id: int) -> SymbolInfo | None:
        row = await self._fetchone(
            f"SELECT {SYMBOL_INFO_COLUMNS} FROM symbol_info WHERE symbol_id = ?",
            (symbol_id,),
        )
        return SymbolInfo(*row) if row else None

    async def get_symbol_info_by_pair(self, token_id: str, currency_id: str) -> SymbolInfo | None:
        row = await self._fetchone(
            f"SELECT {SYMBOL_INFO_COLUMNS} FROM symbol_info WHERE token_id = ? AND currency_id = ?",
            (token_id, currency_id),
        )
        return SymbolInfo(*row) if row else None

    async def get_payment_method(self, method_id: int) -> PaymentMethod | None:
        row = await self._fetchone(
            "SELECT method_id, name FROM payment_methods WHERE method_id = ?", (method_id,)
        )
        return PaymentMethod(*row) if row else None

    async def get_asset(self, asset_id: str) -> Asset | None:
        row = await self._fetchone(
            "SELECT asset_id, scale, sequence FROM assets WHERE asset_id = ?", (asset_id,)
        )
        return Asset(*row) if row else None
