"""Metricsync: Entity Repository.

Read access to the advertising hierarchy, connected ad accounts and stored
OAuth tokens. Owned by the dashboard's CRUD layer; the pipeline only reads.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlmodel import select

from metricsync.database import SessionFactory
from metricsync.models.entity_models import (
    Ad,
    AdAccount,
    AdSet,
    Campaign,
    FacebookToken,
)
from metricsync.models.metric_models import EntityLevel


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EntityRepository:
    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def list_campaigns(self, ad_account_id: str) -> List[Campaign]:
        with self.session_factory() as session:
            return list(
                session.exec(
                    select(Campaign).where(Campaign.ad_account_id == ad_account_id)
                ).all()
            )

    def list_adsets(self, campaign_id: str) -> List[AdSet]:
        with self.session_factory() as session:
            return list(
                session.exec(select(AdSet).where(AdSet.campaign_id == campaign_id)).all()
            )

    def list_ads(self, adset_id: str) -> List[Ad]:
        with self.session_factory() as session:
            return list(session.exec(select(Ad).where(Ad.ad_set_id == adset_id)).all())

    def list_children(self, level: EntityLevel, parent_id: str) -> list:
        """Entities of ``level`` under ``parent_id`` (account, campaign, or ad set)."""
        if level == EntityLevel.CAMPAIGN:
            return self.list_campaigns(parent_id)
        if level == EntityLevel.ADSET:
            return self.list_adsets(parent_id)
        return self.list_ads(parent_id)

    def get_ad_account(self, user_id: str, ad_account_id: str) -> Optional[AdAccount]:
        with self.session_factory() as session:
            return session.exec(
                select(AdAccount).where(
                    AdAccount.id == ad_account_id, AdAccount.user_id == user_id
                )
            ).first()

    def list_ad_accounts(self, user_id: str) -> List[AdAccount]:
        with self.session_factory() as session:
            return list(
                session.exec(select(AdAccount).where(AdAccount.user_id == user_id)).all()
            )

    def get_token(self, user_id: str) -> Optional[FacebookToken]:
        """Newest stored token for a user."""
        with self.session_factory() as session:
            return session.exec(
                select(FacebookToken)
                .where(FacebookToken.user_id == user_id)
                .order_by(FacebookToken.created_at.desc())  # type: ignore
            ).first()

    def has_ad_permissions(self, user_id: str) -> bool:
        token = self.get_token(user_id)
        return bool(token and token.has_ad_permissions)

    def latest_valid_tokens(self, now: Optional[datetime] = None) -> List[FacebookToken]:
        """Newest unexpired token per user."""
        now = now or datetime.now(timezone.utc)
        with self.session_factory() as session:
            tokens = session.exec(
                select(FacebookToken).order_by(FacebookToken.created_at.desc())  # type: ignore
            ).all()

        latest: dict[str, FacebookToken] = {}
        for token in tokens:
            if token.user_id in latest:
                continue
            if _aware(token.expires_at) > now:
                latest[token.user_id] = token
        return list(latest.values())
