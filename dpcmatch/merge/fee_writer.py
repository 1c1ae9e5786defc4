"""
Fee propagation writers for DPCMatch.

Persists accepted fee updates. The SQLite writer updates a ``providers``
table and keeps a log of every propagation; the dry-run writer only logs
what would have been written.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

from ..models import FeeUpdate, ProviderIdentity

logger = logging.getLogger(__name__)


class FeeWriter(Protocol):
    def apply(self, updates: Iterable[FeeUpdate]) -> int:
        ...


class DryRunFeeWriter:
    """Records fee updates without persisting them."""

    def __init__(self):
        self.updates: List[FeeUpdate] = []

    def apply(self, updates: Iterable[FeeUpdate]) -> int:
        updates = list(updates)
        for update in updates:
            logger.info(f"[dry run] Would set {update.provider_id} fee to ${update.monthly_fee:.2f}/month "
                        f"from {update.donor_id} ({update.confidence}% {update.tier.value})")
        self.updates.extend(updates)
        return 0


class SQLiteFeeWriter:
    """
    Writes propagated fees to a SQLite database.

    A fee is written only while the stored fee is still unknown (NULL, or 0
    when ``zero_fee_means_unknown`` is set), so re-running a reconciliation
    never overwrites a fee that arrived in the meantime.
    """

    def __init__(self, db_path: str = "data/dpcmatch.db", zero_fee_means_unknown: bool = True):
        """
        Initialize SQLite fee writer.

        Args:
            db_path: Path to the SQLite database
            zero_fee_means_unknown: Treat a stored fee of 0 as unknown
        """
        self.db_path = db_path
        self.zero_fee_means_unknown = zero_fee_means_unknown

        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

        logger.info(f"Initialized SQLiteFeeWriter ({self.db_path})")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_database(self):
        """Create the providers and propagation log tables."""
        conn = self._connect()
        try:
            cursor = conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS providers (
                    id TEXT PRIMARY KEY,
                    monthly_fee REAL
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS fee_propagation_log (
                    log_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    provider_id TEXT NOT NULL,
                    donor_id TEXT NOT NULL,
                    monthly_fee REAL NOT NULL,
                    tier TEXT NOT NULL,
                    confidence INTEGER NOT NULL,
                    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            conn.commit()
        finally:
            conn.close()

    def register_providers(self, providers: Iterable[ProviderIdentity]) -> int:
        """
        Insert provider rows that are not in the database yet.

        Args:
            providers: Provider records

        Returns:
            Number of rows inserted
        """
        rows = [(p.provider_id, p.monthly_fee) for p in providers]

        conn = self._connect()
        try:
            before = conn.total_changes
            conn.executemany("INSERT OR IGNORE INTO providers (id, monthly_fee) VALUES (?, ?)", rows)
            conn.commit()
            inserted = conn.total_changes - before
        finally:
            conn.close()

        logger.info(f"Registered {inserted} new providers")
        return inserted

    def apply(self, updates: Iterable[FeeUpdate]) -> int:
        """
        Write fee updates in a single transaction.

        Args:
            updates: Accepted fee propagations

        Returns:
            Number of providers whose fee was written
        """
        unknown_clause = "monthly_fee IS NULL"
        if self.zero_fee_means_unknown:
            unknown_clause = "(monthly_fee IS NULL OR monthly_fee = 0)"

        written = 0
        conn = self._connect()
        try:
            cursor = conn.cursor()
            for update in updates:
                cursor.execute(
                    f"UPDATE providers SET monthly_fee = ? WHERE id = ? AND {unknown_clause}",
                    (update.monthly_fee, update.provider_id),
                )
                if cursor.rowcount == 0:
                    logger.debug(f"Skipped fee for {update.provider_id}: missing row or fee already known")
                    continue

                cursor.execute('''
                    INSERT INTO fee_propagation_log (provider_id, donor_id, monthly_fee, tier, confidence)
                    VALUES (?, ?, ?, ?, ?)
                ''', (update.provider_id, update.donor_id, update.monthly_fee,
                      update.tier.value, update.confidence))
                written += 1
                logger.info(f"Inherited fee for {update.provider_id}: ${update.monthly_fee:.2f}/month")

            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Failed to write fee updates: {e}")
            raise
        finally:
            conn.close()

        return written

    def get_fee(self, provider_id: str) -> Optional[float]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT monthly_fee FROM providers WHERE id = ?", (provider_id,)).fetchone()
        finally:
            conn.close()
        return row[0] if row else None

    def propagation_log(self) -> List[Dict]:
        conn = self._connect()
        try:
            conn.row_factory = sqlite3.Row
            rows = conn.execute("SELECT * FROM fee_propagation_log ORDER BY log_id").fetchall()
        finally:
            conn.close()
        return [dict(row) for row in rows]
