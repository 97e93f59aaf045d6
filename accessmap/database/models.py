"""
SQLAlchemy models for AccessMap
Reports, their photos, confirmations and removal reports, and the points ledger
"""

from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    Column, Integer, Float, String, Text, Boolean,
    DateTime, ForeignKey, Index, UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import declarative_base, relationship

import enum

Base = declarative_base()


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the store keeps naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_report_id() -> str:
    return uuid.uuid4().hex


class ReportStatus(enum.Enum):
    """Lifecycle status of an accessibility report."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PERMANENT = "permanent"
    REMOVED = "removed"


class Report(Base):
    """
    Accessibility feature reported at a geographic point.

    Status, permanence and expiry are derived by the lifecycle engine;
    nothing else should write them.
    """
    __tablename__ = "reports"

    id = Column(String(32), primary_key=True, default=new_report_id)
    type = Column(String(40), nullable=False)

    # Location (WGS84)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    creator_id = Column(String(128), nullable=False)

    # Lifecycle
    status = Column(SQLEnum(ReportStatus), nullable=False, default=ReportStatus.PENDING)
    is_permanent = Column(Boolean, nullable=False, default=False)
    expires_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    # Optimistic concurrency
    version = Column(Integer, nullable=False)

    photos = relationship(
        "Photo",
        back_populates="report",
        order_by="Photo.position",
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    confirmations = relationship(
        "Confirmation",
        back_populates="report",
        order_by="Confirmation.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    removal_reports = relationship(
        "RemovalReport",
        back_populates="report",
        order_by="RemovalReport.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_report_type_lat", type, latitude),
        Index("idx_report_lat_lon", latitude, longitude),
        Index("idx_report_status", status),
        Index("idx_report_expires_at", expires_at),
        Index("idx_report_updated_at", updated_at),
    )

    def __repr__(self):
        return f"<Report({self.id}, type={self.type}, status={self.status.value if self.status else None})>"

    @property
    def confirmation_count(self) -> int:
        return len(self.confirmations)

    @property
    def removal_report_count(self) -> int:
        return len(self.removal_reports)

    def has_confirmed(self, user_id: str) -> bool:
        return any(c.user_id == user_id for c in self.confirmations)

    def has_reported_removal(self, user_id: str) -> bool:
        return any(r.user_id == user_id for r in self.removal_reports)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "type": self.type,
            "location": {
                "longitude": self.longitude,
                "latitude": self.latitude,
            },
            "creator_id": self.creator_id,
            "status": self.status.value,
            "is_permanent": self.is_permanent,
            "confirmation_count": self.confirmation_count,
            "removal_report_count": self.removal_report_count,
            "photos": [p.to_dict() for p in self.photos],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


class Photo(Base):
    """
    Photo evidence attached to a report.

    Moderation hides photos; they are only deleted together with their report.
    """
    __tablename__ = "report_photos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(
        String(32), ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False)

    url = Column(String(500), nullable=False)
    reporter_id = Column(String(128), nullable=False)
    is_hidden = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    report = relationship("Report", back_populates="photos")
    bad_photo_reports = relationship(
        "PhotoFlag",
        back_populates="photo",
        order_by="PhotoFlag.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Photo({self.id}, report={self.report_id}, hidden={self.is_hidden})>"

    @property
    def report_count(self) -> int:
        return len(self.bad_photo_reports)

    def has_been_reported_by(self, reporter_id: str) -> bool:
        return any(f.reporter_id == reporter_id for f in self.bad_photo_reports)

    def public_url(self, base_url: str = "") -> str:
        """Photo URL, with relative upload paths prefixed by base_url."""
        if base_url and self.url.startswith("/"):
            return f"{base_url.rstrip('/')}{self.url}"
        return self.url

    def to_dict(self, base_url: str = "") -> dict:
        """Convert to dictionary."""
        return {
            "url": self.public_url(base_url),
            "reporter_id": self.reporter_id,
            "is_hidden": self.is_hidden,
            "report_count": self.report_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class PhotoFlag(Base):
    """Abuse report filed against a photo."""
    __tablename__ = "photo_flags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    photo_id = Column(
        Integer, ForeignKey("report_photos.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reporter_id = Column(String(128), nullable=False)
    reason = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    photo = relationship("Photo", back_populates="bad_photo_reports")

    __table_args__ = (
        UniqueConstraint("photo_id", "reporter_id", name="uq_photo_flag_reporter"),
    )


class Confirmation(Base):
    """A user stating the feature is there."""
    __tablename__ = "report_confirmations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(
        String(32), ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(128), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    report = relationship("Report", back_populates="confirmations")

    __table_args__ = (
        UniqueConstraint("report_id", "user_id", name="uq_confirmation_user"),
    )


class RemovalReport(Base):
    """A user stating the feature is gone."""
    __tablename__ = "report_removals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(
        String(32), ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(128), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    report = relationship("Report", back_populates="removal_reports")

    __table_args__ = (
        UniqueConstraint("report_id", "user_id", name="uq_removal_user"),
    )


class SubmitCell(Base):
    """
    Claim row for one cell of the submission lock grid.

    A submission writes the rows of every cell around its location before
    looking for duplicates, so writers from any process that could merge
    into each other wait on the same rows until the first one commits.
    """
    __tablename__ = "submit_cells"

    feature_type = Column(String(50), primary_key=True)
    band = Column(Integer, primary_key=True, autoincrement=False)
    col = Column(Integer, primary_key=True, autoincrement=False)
    claimed_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<SubmitCell({self.feature_type}, band={self.band}, col={self.col})>"


class User(Base):
    """
    Points ledger entry for an actor (user id or anonymous device id).

    Level is always derived from total points.
    """
    __tablename__ = "users"

    id = Column(String(128), primary_key=True)

    points = Column(Integer, nullable=False, default=0)
    level = Column(String(20), nullable=False, default="Explorer")

    # Points breakdown
    reports_created_points = Column(Integer, nullable=False, default=0)
    confirmations_given_points = Column(Integer, nullable=False, default=0)
    confirmations_received_points = Column(Integer, nullable=False, default=0)
    photos_added_points = Column(Integer, nullable=False, default=0)

    # Stats
    total_reports = Column(Integer, nullable=False, default=0)
    total_confirmations = Column(Integer, nullable=False, default=0)
    total_photos = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    last_active = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_user_points", points),
    )

    def __repr__(self):
        return f"<User({self.id}, points={self.points}, level={self.level})>"

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "points": self.points,
            "level": self.level,
            "points_breakdown": {
                "reports_created": self.reports_created_points,
                "confirmations_given": self.confirmations_given_points,
                "confirmations_received": self.confirmations_received_points,
                "photos_added": self.photos_added_points,
            },
            "stats": {
                "total_reports": self.total_reports,
                "total_confirmations": self.total_confirmations,
                "total_photos": self.total_photos,
            },
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_active": self.last_active.isoformat() if self.last_active else None,
        }
