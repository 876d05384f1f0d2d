"""Read access to the monitored repository configuration."""

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.models.repository import RepositoryConfig

logger = logging.getLogger(__name__)


class RepositoryRegistry:
    """Look up repository configuration rows.

    Rows are maintained by administrators; the orchestrator only reads them.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, repository_id: int) -> RepositoryConfig | None:
        """Return a repository by primary key."""
        return self.session.get(RepositoryConfig, repository_id)

    def find(self, owner: str, name: str) -> RepositoryConfig | None:
        """Return a repository by owner and name (case-insensitive)."""
        stmt = select(RepositoryConfig).where(
            func.lower(RepositoryConfig.owner) == owner.lower(),
            func.lower(RepositoryConfig.name) == name.lower(),
        )
        return self.session.scalars(stmt).first()

    def list_pollable(self) -> list[RepositoryConfig]:
        """Return active, auto-review enabled repositories holding a token."""
        stmt = (
            select(RepositoryConfig)
            .where(
                RepositoryConfig.is_active.is_(True),
                RepositoryConfig.allow_auto_review.is_(True),
                RepositoryConfig.access_token.is_not(None),
            )
            .order_by(RepositoryConfig.id)
        )
        return [repo for repo in self.session.scalars(stmt) if repo.has_credentials]

    def get_webhook_secret(self, owner: str, name: str) -> str | None:
        """Return the webhook secret configured for a repository, if any."""
        repository = self.find(owner, name)
        if repository is None:
            logger.warning(f"Webhook for unknown repository {owner}/{name}")
            return None
        return repository.webhook_secret or None
