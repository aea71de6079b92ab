"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from parkbot.domain.models import (
    FixedSpotRelease,
    Reservation,
    Spot,
    WaitlistEntry,
    sort_spot_ids,
)
from parkbot.utils.config import Settings, get_settings
from parkbot.utils.logger import get_logger


logger = get_logger(__name__)


class ReservationConflictError(Exception):
    """Raised when a reservation insert violates a uniqueness constraint."""


class SpotAlreadyReservedError(ReservationConflictError):
    """The (date, spot) pair is already taken."""


class UserAlreadyBookedError(ReservationConflictError):
    """The user already holds a reservation for the date."""


class AlreadyWaitlistedError(Exception):
    """The user already has a waitlist entry for the date."""

    def __init__(self, position: int) -> None:
        super().__init__(f"already waitlisted at position {position}")
        self.position = position


def _iso(value: date) -> str:
    return value.isoformat()


def _to_date(value: str) -> date:
    return date.fromisoformat(str(value))


def _reservation_from_row(row: sqlite3.Row) -> Reservation:
    return Reservation(
        user_id=str(row["user_id"]),
        date=_to_date(row["date"]),
        spot_id=str(row["spot_id"]),
        display_name=row["display_name"],
    )


def _waitlist_from_row(row: sqlite3.Row) -> WaitlistEntry:
    return WaitlistEntry(
        user_id=str(row["user_id"]),
        date=_to_date(row["date"]),
        position=int(row["position"]),
        display_name=row["display_name"],
    )


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path, timeout=10.0)
        connection.row_factory = sqlite3.Row
        return connection

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction that takes the database write lock up front."""
        connection = sqlite3.connect(self._db_path, timeout=10.0, isolation_level=None)
        connection.row_factory = sqlite3.Row
        try:
            connection.execute("BEGIN IMMEDIATE;")
            try:
                yield connection
            except BaseException:
                connection.execute("ROLLBACK;")
                raise
            connection.execute("COMMIT;")
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("PRAGMA journal_mode = WAL;")

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Spots (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        spot_id TEXT UNIQUE NOT NULL,
                        active INTEGER NOT NULL DEFAULT 1 CHECK (active IN (0,1)),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS FixedSpots (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        spot_id TEXT UNIQUE NOT NULL,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Reservations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        date TEXT NOT NULL,
                        spot_id TEXT NOT NULL,
                        display_name TEXT,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        UNIQUE (user_id, date),
                        UNIQUE (date, spot_id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Waitlist (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        date TEXT NOT NULL,
                        position INTEGER NOT NULL CHECK (position > 0),
                        display_name TEXT,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        UNIQUE (user_id, date)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS FixedSpotReleases (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        spot_id TEXT NOT NULL,
                        start_date TEXT NOT NULL,
                        end_date TEXT NOT NULL,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        CHECK (start_date <= end_date)
                    );
                    """
                )

                cursor.execute(
                    "CREATE INDEX IF NOT EXISTS idx_reservations_user ON Reservations(user_id);"
                )
                cursor.execute(
                    "CREATE INDEX IF NOT EXISTS idx_waitlist_date_position ON Waitlist(date, position);"
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_fixed_releases_dates
                    ON FixedSpotReleases(start_date, end_date);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_spots_if_empty(
        self,
        flex_spot_ids: Sequence[str],
        fixed_spot_ids: Sequence[str],
    ) -> None:
        """Load configured inventory on first start only."""
        if flex_spot_ids and not self.list_flex_spots(include_inactive=True):
            self.replace_flex_spots(flex_spot_ids)
            logger.info("Seeded %s flex spots", len(flex_spot_ids))
        if fixed_spot_ids and not self.list_fixed_spots():
            self.replace_fixed_spots(fixed_spot_ids)
            logger.info("Seeded %s fixed spots", len(fixed_spot_ids))

    # --- Inventory -----------------------------------------------------

    def replace_flex_spots(self, spot_ids: Sequence[str]) -> None:
        """Swap the flex pool wholesale; reservations are left untouched."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM Spots;")
            conn.executemany(
                "INSERT INTO Spots (spot_id, active) VALUES (?, 1);",
                [(spot_id,) for spot_id in dict.fromkeys(spot_ids)],
            )

    def set_spot_active(self, spot_id: str, active: bool) -> bool:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "UPDATE Spots SET active = ? WHERE spot_id = ?;",
                (1 if active else 0, spot_id),
            )
            conn.commit()
            return cursor.rowcount > 0

    def list_flex_spots(self, include_inactive: bool = False) -> list[Spot]:
        with self._connect() as conn:
            cursor = conn.cursor()
            if include_inactive:
                cursor.execute("SELECT spot_id, active FROM Spots;")
            else:
                cursor.execute("SELECT spot_id, active FROM Spots WHERE active = 1;")
            spots = {
                str(row["spot_id"]): Spot(spot_id=str(row["spot_id"]), active=bool(row["active"]))
                for row in cursor.fetchall()
            }
        return [spots[spot_id] for spot_id in sort_spot_ids(spots)]

    def replace_fixed_spots(self, spot_ids: Sequence[str]) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM FixedSpots;")
            conn.executemany(
                "INSERT INTO FixedSpots (spot_id) VALUES (?);",
                [(spot_id,) for spot_id in dict.fromkeys(spot_ids)],
            )

    def list_fixed_spots(self) -> list[str]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT spot_id FROM FixedSpots;")
            return sort_spot_ids(str(row["spot_id"]) for row in cursor.fetchall())

    def is_fixed_spot(self, spot_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT 1 FROM FixedSpots WHERE spot_id = ?;", (spot_id,))
            return cursor.fetchone() is not None

    # --- Reservations --------------------------------------------------

    def create_reservation(
        self,
        user_id: str,
        target_date: date,
        spot_id: str,
        display_name: Optional[str],
    ) -> Reservation:
        """Insert a reservation; the unique constraints decide races."""
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO Reservations (user_id, date, spot_id, display_name)
                    VALUES (?, ?, ?, ?);
                    """,
                    (user_id, _iso(target_date), spot_id, display_name),
                )
                conn.commit()
        except sqlite3.IntegrityError as exc:
            message = str(exc)
            if "spot_id" in message:
                raise SpotAlreadyReservedError(
                    f"spot {spot_id} is already reserved for {target_date}"
                ) from exc
            raise UserAlreadyBookedError(
                f"user {user_id} already holds a reservation for {target_date}"
            ) from exc
        return Reservation(user_id, target_date, spot_id, display_name)

    def get_reservation(self, user_id: str, target_date: date) -> Optional[Reservation]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT user_id, date, spot_id, display_name
                FROM Reservations
                WHERE user_id = ? AND date = ?;
                """,
                (user_id, _iso(target_date)),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return _reservation_from_row(row)

    def delete_reservation(self, user_id: str, target_date: date) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM Reservations WHERE user_id = ? AND date = ?;",
                (user_id, _iso(target_date)),
            )
            conn.commit()
            return cursor.rowcount

    def list_reservations_for_date(self, target_date: date) -> List[Reservation]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT user_id, date, spot_id, display_name
                FROM Reservations
                WHERE date = ?;
                """,
                (_iso(target_date),),
            )
            rows = [_reservation_from_row(row) for row in cursor.fetchall()]
        order = {spot_id: index for index, spot_id in enumerate(sort_spot_ids(r.spot_id for r in rows))}
        return sorted(rows, key=lambda item: order[item.spot_id])

    def list_reserved_spot_ids(self, target_date: date) -> set[str]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT spot_id FROM Reservations WHERE date = ?;",
                (_iso(target_date),),
            )
            return {str(row["spot_id"]) for row in cursor.fetchall()}

    def list_user_reservations(
        self,
        user_id: str,
        from_date: Optional[date] = None,
    ) -> List[Reservation]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT user_id, date, spot_id, display_name
                FROM Reservations
                WHERE user_id = ? AND date >= ?
                ORDER BY date ASC;
                """,
                (user_id, _iso(from_date) if from_date else ""),
            )
            return [_reservation_from_row(row) for row in cursor.fetchall()]

    def count_reservations(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Reservations;")
            return int(cursor.fetchone()["count"])

    # --- Waitlist ------------------------------------------------------

    def enqueue_waitlist(
        self,
        user_id: str,
        target_date: date,
        display_name: Optional[str],
    ) -> WaitlistEntry:
        """Append at max(position) + 1 inside one write transaction."""
        with self._transaction() as conn:
            existing = conn.execute(
                "SELECT position FROM Waitlist WHERE user_id = ? AND date = ?;",
                (user_id, _iso(target_date)),
            ).fetchone()
            if existing is not None:
                raise AlreadyWaitlistedError(int(existing["position"]))
            row = conn.execute(
                "SELECT COALESCE(MAX(position), 0) + 1 AS next_position FROM Waitlist WHERE date = ?;",
                (_iso(target_date),),
            ).fetchone()
            position = int(row["next_position"])
            conn.execute(
                """
                INSERT INTO Waitlist (user_id, date, position, display_name)
                VALUES (?, ?, ?, ?);
                """,
                (user_id, _iso(target_date), position, display_name),
            )
        return WaitlistEntry(user_id, target_date, position, display_name)

    def peek_waitlist_head(self, target_date: date) -> Optional[WaitlistEntry]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT user_id, date, position, display_name
                FROM Waitlist
                WHERE date = ?
                ORDER BY position ASC
                LIMIT 1;
                """,
                (_iso(target_date),),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return _waitlist_from_row(row)

    def pop_waitlist_head(self, target_date: date) -> Optional[WaitlistEntry]:
        """Remove position 1 and shift the rest up, atomically."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT user_id, date, position, display_name
                FROM Waitlist
                WHERE date = ?
                ORDER BY position ASC
                LIMIT 1;
                """,
                (_iso(target_date),),
            ).fetchone()
            if row is None:
                return None
            head = _waitlist_from_row(row)
            self._delete_and_compact(conn, head.user_id, target_date, head.position)
        return head

    def remove_waitlist_entry(self, user_id: str, target_date: date) -> Optional[int]:
        """Remove one user's entry; returns the position it held."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT position FROM Waitlist WHERE user_id = ? AND date = ?;",
                (user_id, _iso(target_date)),
            ).fetchone()
            if row is None:
                return None
            position = int(row["position"])
            self._delete_and_compact(conn, user_id, target_date, position)
        return position

    @staticmethod
    def _delete_and_compact(
        conn: sqlite3.Connection,
        user_id: str,
        target_date: date,
        position: int,
    ) -> None:
        # O(n) renumbering of the date's tail; positions stay 1..N.
        conn.execute(
            "DELETE FROM Waitlist WHERE user_id = ? AND date = ?;",
            (user_id, _iso(target_date)),
        )
        conn.execute(
            "UPDATE Waitlist SET position = position - 1 WHERE date = ? AND position > ?;",
            (_iso(target_date), position),
        )

    def list_waitlist(self, target_date: date) -> List[WaitlistEntry]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT user_id, date, position, display_name
                FROM Waitlist
                WHERE date = ?
                ORDER BY position ASC;
                """,
                (_iso(target_date),),
            )
            return [_waitlist_from_row(row) for row in cursor.fetchall()]

    def list_waitlisted_dates(self, start: date, end: date) -> list[date]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT DISTINCT date
                FROM Waitlist
                WHERE date >= ? AND date <= ?
                ORDER BY date ASC;
                """,
                (_iso(start), _iso(end)),
            )
            return [_to_date(row["date"]) for row in cursor.fetchall()]

    def count_waitlist(self, target_date: Optional[date] = None) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            if target_date is None:
                cursor.execute("SELECT COUNT(*) AS count FROM Waitlist;")
            else:
                cursor.execute(
                    "SELECT COUNT(*) AS count FROM Waitlist WHERE date = ?;",
                    (_iso(target_date),),
                )
            return int(cursor.fetchone()["count"])

    # --- Fixed spot releases -------------------------------------------

    def create_fixed_spot_release(
        self,
        spot_id: str,
        start_date: date,
        end_date: date,
    ) -> FixedSpotRelease:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO FixedSpotReleases (spot_id, start_date, end_date)
                VALUES (?, ?, ?);
                """,
                (spot_id, _iso(start_date), _iso(end_date)),
            )
            conn.commit()
        return FixedSpotRelease(spot_id, start_date, end_date)

    def delete_fixed_spot_releases(self, spot_id: str, ending_on_or_after: date) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM FixedSpotReleases WHERE spot_id = ? AND end_date >= ?;",
                (spot_id, _iso(ending_on_or_after)),
            )
            conn.commit()
            return cursor.rowcount

    def list_released_fixed_spot_ids(self, target_date: date) -> list[str]:
        """Fixed spots whose release covers ``target_date`` (still in the fixed pool)."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT DISTINCT r.spot_id
                FROM FixedSpotReleases AS r
                INNER JOIN FixedSpots AS f ON f.spot_id = r.spot_id
                WHERE ? BETWEEN r.start_date AND r.end_date;
                """,
                (_iso(target_date),),
            )
            return sort_spot_ids(str(row["spot_id"]) for row in cursor.fetchall())

    def list_fixed_spot_releases(self, spot_id: Optional[str] = None) -> list[FixedSpotRelease]:
        with self._connect() as conn:
            cursor = conn.cursor()
            if spot_id is None:
                cursor.execute(
                    "SELECT spot_id, start_date, end_date FROM FixedSpotReleases ORDER BY start_date ASC;"
                )
            else:
                cursor.execute(
                    """
                    SELECT spot_id, start_date, end_date
                    FROM FixedSpotReleases
                    WHERE spot_id = ?
                    ORDER BY start_date ASC;
                    """,
                    (spot_id,),
                )
            return [
                FixedSpotRelease(
                    spot_id=str(row["spot_id"]),
                    start_date=_to_date(row["start_date"]),
                    end_date=_to_date(row["end_date"]),
                )
                for row in cursor.fetchall()
            ]

    # --- Bulk deletion -------------------------------------------------

    def delete_between(self, start: date, end: date) -> tuple[int, int]:
        """Delete reservations and waitlist rows dated within [start, end]."""
        with self._transaction() as conn:
            reservations = conn.execute(
                "DELETE FROM Reservations WHERE date >= ? AND date <= ?;",
                (_iso(start), _iso(end)),
            ).rowcount
            waitlist = conn.execute(
                "DELETE FROM Waitlist WHERE date >= ? AND date <= ?;",
                (_iso(start), _iso(end)),
            ).rowcount
        return reservations, waitlist

    def delete_before(self, cutoff: date) -> tuple[int, int]:
        """Delete reservations and waitlist rows dated strictly before ``cutoff``."""
        with self._transaction() as conn:
            reservations = conn.execute(
                "DELETE FROM Reservations WHERE date < ?;",
                (_iso(cutoff),),
            ).rowcount
            waitlist = conn.execute(
                "DELETE FROM Waitlist WHERE date < ?;",
                (_iso(cutoff),),
            ).rowcount
        return reservations, waitlist

    def list_dates_before(self, cutoff: date) -> list[date]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT date FROM Reservations WHERE date < ?
                UNION
                SELECT date FROM Waitlist WHERE date < ?
                ORDER BY date ASC;
                """,
                (_iso(cutoff), _iso(cutoff)),
            )
            return [_to_date(row["date"]) for row in cursor.fetchall()]

    def clear_all(self) -> tuple[int, int]:
        """Administrative wipe of every reservation and waitlist entry."""
        with self._transaction() as conn:
            reservations = conn.execute("DELETE FROM Reservations;").rowcount
            waitlist = conn.execute("DELETE FROM Waitlist;").rowcount
        return reservations, waitlist
