"""Metricsync: Advertising Hierarchy Models.

Account 1-* Campaign 1-* AdSet 1-* Ad. These rows are owned by the entity
repository; the sync pipeline only reads them and stamps ``last_synced_at``.
"""

from datetime import datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field


class AdAccount(SQLModel, table=True):
    """Ad account connected by a user."""

    __tablename__ = "ad_accounts"

    id: str = Field(primary_key=True, description="Platform id, e.g. act_123")
    user_id: str = Field(index=True)
    name: str = Field(default="")


class Campaign(SQLModel, table=True):
    __tablename__ = "campaigns"

    id: str = Field(primary_key=True, description="Platform campaign id")
    ad_account_id: str = Field(index=True, foreign_key="ad_accounts.id")
    name: str = Field(default="")
    status: str = Field(default="")
    last_synced_at: Optional[datetime] = Field(default=None)


class AdSet(SQLModel, table=True):
    __tablename__ = "ad_sets"

    id: str = Field(primary_key=True, description="Platform ad set id")
    campaign_id: str = Field(index=True, foreign_key="campaigns.id")
    name: str = Field(default="")
    status: str = Field(default="")
    last_synced_at: Optional[datetime] = Field(default=None)


class Ad(SQLModel, table=True):
    __tablename__ = "ads"

    id: str = Field(primary_key=True, description="Platform ad id")
    ad_set_id: str = Field(index=True, foreign_key="ad_sets.id")
    name: str = Field(default="")
    status: str = Field(default="")
    last_synced_at: Optional[datetime] = Field(default=None)


class FacebookToken(SQLModel, table=True):
    """OAuth token stored after the user connects their Facebook account."""

    __tablename__ = "facebook_tokens"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    access_token: str
    expires_at: datetime
    has_ad_permissions: bool = Field(default=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
