"""SQLAlchemy model for monitored GitHub repositories."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class RepositoryConfig(Base):
    """
    A repository the orchestrator monitors.

    Rows are created and edited by administrators; the review core only
    reads them. A repository without an access token never triggers an
    API call.
    """

    __tablename__ = "github_repositories"
    __table_args__ = (
        UniqueConstraint("owner", "name", name="uq_github_repositories_owner_name"),
    )

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # GitHub identity
    owner: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Credentials
    access_token: Mapped[str | None] = mapped_column(
        String(255), nullable=True, comment="Token used for GitHub API calls"
    )
    webhook_secret: Mapped[str | None] = mapped_column(
        String(255), nullable=True, comment="Shared secret for webhook signatures"
    )

    # Flags
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_auto_review: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<RepositoryConfig(id={self.id}, "
            f"repo={self.full_name}, "
            f"active={self.is_active}, "
            f"auto_review={self.allow_auto_review})>"
        )

    @property
    def full_name(self) -> str:
        """Return the repository as 'owner/name'."""
        return f"{self.owner}/{self.name}"

    @property
    def has_credentials(self) -> bool:
        """Check whether a usable access token is configured."""
        return bool(self.access_token and self.access_token.strip())

    @property
    def is_eligible(self) -> bool:
        """Check whether automatic reviews may run for this repository."""
        return bool(self.is_active and self.allow_auto_review and self.has_credentials)
