"""
Points ledger for contributors
Applies the point grants produced by report lifecycle operations
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from accessmap.core.constants import LEVELS, POINTS
from accessmap.core.exceptions import NotFound, StorageUnavailable
from accessmap.crowdsource.locks import KeyedLock
from accessmap.database.connection import DatabaseConnection
from accessmap.database.models import User, utcnow

logger = logging.getLogger(__name__)


class PointKind(Enum):
    """Actions that earn points."""
    REPORT_CREATED = "REPORT_CREATED"
    CONFIRMATION_GIVEN = "CONFIRMATION_GIVEN"
    CONFIRMATION_RECEIVED = "CONFIRMATION_RECEIVED"
    PHOTO_ADDED = "PHOTO_ADDED"


# (breakdown column, stats column or None) per kind
_LEDGER_COLUMNS = {
    PointKind.REPORT_CREATED: ("reports_created_points", "total_reports"),
    PointKind.CONFIRMATION_GIVEN: ("confirmations_given_points", "total_confirmations"),
    PointKind.CONFIRMATION_RECEIVED: ("confirmations_received_points", None),
    PointKind.PHOTO_ADDED: ("photos_added_points", "total_photos"),
}


@dataclass(frozen=True)
class PointGrant:
    """Instruction to credit an actor with points for an action."""
    actor_id: str
    kind: PointKind
    amount: int

    @classmethod
    def of(cls, actor_id: str, kind: PointKind) -> "PointGrant":
        """Grant the standard amount for a kind of action."""
        return cls(actor_id=actor_id, kind=kind, amount=POINTS[kind.value])

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "actor_id": self.actor_id,
            "kind": self.kind.value,
            "amount": self.amount,
        }


def level_for_points(points: int) -> str:
    """
    Level name for a point total.

    Args:
        points: Total points

    Returns:
        Name of the highest level whose threshold is reached
    """
    level = LEVELS[0][1]
    for threshold, name in LEVELS:
        if points >= threshold:
            level = name
    return level


def points_for(grants: Iterable[PointGrant], actor_id: str) -> int:
    """Sum of the grants credited to one actor."""
    return sum(g.amount for g in grants if g.actor_id == actor_id)


class PointsLedger:
    """
    Per-actor point totals, breakdown, stats and level.

    Ledger rows are created on an actor's first grant, so anonymous
    device ids accumulate points the same way as user ids.
    """

    def __init__(self, db: DatabaseConnection, locks: Optional[KeyedLock] = None):
        self.db = db
        self.locks = locks or KeyedLock()

    def apply(self, grants: Iterable[PointGrant]) -> List[User]:
        """
        Apply grants in a single transaction.

        Args:
            grants: Grants returned by a lifecycle operation

        Returns:
            Updated ledger rows, one per distinct actor
        """
        grants = list(grants)
        if not grants:
            return []

        actor_ids = sorted({g.actor_id for g in grants})
        with self.locks.hold(*(("user", a) for a in actor_ids)):
            try:
                try:
                    return self._apply(grants, actor_ids)
                except IntegrityError:
                    # Another process created a first-time row concurrently
                    logger.warning(f"Ledger row race for {actor_ids}, retrying once")
                    return self._apply(grants, actor_ids)
            except SQLAlchemyError as e:
                logger.error(f"Failed to apply point grants for {actor_ids}: {e}")
                raise StorageUnavailable("Points ledger is unavailable") from e

    def _apply(self, grants: List[PointGrant], actor_ids: List[str]) -> List[User]:
        now = utcnow()
        with self.db.get_session() as session:
            users: Dict[str, User] = {}
            for actor_id in actor_ids:
                user = session.get(User, actor_id, with_for_update=True)
                if user is None:
                    user = User(
                        id=actor_id,
                        points=0,
                        level=level_for_points(0),
                        reports_created_points=0,
                        confirmations_given_points=0,
                        confirmations_received_points=0,
                        photos_added_points=0,
                        total_reports=0,
                        total_confirmations=0,
                        total_photos=0,
                        created_at=now,
                        last_active=now,
                    )
                    session.add(user)
                users[actor_id] = user

            for grant in grants:
                user = users[grant.actor_id]
                breakdown_column, stats_column = _LEDGER_COLUMNS[grant.kind]

                user.points += grant.amount
                setattr(user, breakdown_column, getattr(user, breakdown_column) + grant.amount)
                if stats_column:
                    setattr(user, stats_column, getattr(user, stats_column) + 1)

            for user in users.values():
                new_level = level_for_points(user.points)
                if new_level != user.level:
                    logger.info(f"User {user.id} reached level {new_level} ({user.points} points)")
                user.level = new_level
                user.last_active = now

            session.flush()
            return list(users.values())

    def get(self, user_id: str) -> User:
        """
        Get an actor's ledger row.

        Raises:
            NotFound: the actor has never earned points
        """
        with self.db.get_session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFound("User not found")
            return user

    def leaderboard(self, limit: int = 10) -> List[User]:
        """Top actors by points (ties by id)."""
        with self.db.get_session() as session:
            return (
                session.query(User)
                .order_by(User.points.desc(), User.id.asc())
                .limit(limit)
                .all()
            )
