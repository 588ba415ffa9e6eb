"""Metricsync: Batch Sync Across Users.

Runs a metrics sync for every ad account of every user holding a valid token.
Used by the daily scheduler job and the cron endpoint. A failing account or
user is recorded in the summary and the batch moves on.
"""

from typing import List, Optional

from pydantic import BaseModel

from metricsync.sync.orchestrator import SyncOrchestrator
from metricsync.sync.repository import EntityRepository
from metricsync.core.logging import get_logger

logger = get_logger("sync.batch")


class AccountSyncResult(BaseModel):
    ad_account_id: str
    ad_account_name: str = ""
    success: bool
    job_id: Optional[str] = None
    error: Optional[str] = None


class UserSyncResult(BaseModel):
    user_id: str
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    ad_accounts_synced: int = 0
    ad_accounts_failed: int = 0
    ad_account_results: List[AccountSyncResult] = []


class BatchSyncSummary(BaseModel):
    total_users: int = 0
    successful_users: int = 0
    failed_users: int = 0
    total_ad_accounts_synced: int = 0
    total_ad_accounts_failed: int = 0
    results: List[UserSyncResult] = []


async def _sync_user(
    repository: EntityRepository,
    orchestrator: SyncOrchestrator,
    user_id: str,
    access_token: str,
) -> UserSyncResult:
    accounts = repository.list_ad_accounts(user_id)
    if not accounts:
        logger.info(f"No ad accounts found for user {user_id}")
        return UserSyncResult(
            user_id=user_id, success=True, message="No ad accounts to sync"
        )

    account_results: List[AccountSyncResult] = []
    for account in accounts:
        try:
            job_id = await orchestrator.sync_all_metrics(
                user_id, account.id, access_token
            )
            account_results.append(
                AccountSyncResult(
                    ad_account_id=account.id,
                    ad_account_name=account.name,
                    success=True,
                    job_id=job_id,
                )
            )
        except Exception as e:
            logger.error(f"Error syncing ad account {account.id}: {e}")
            account_results.append(
                AccountSyncResult(
                    ad_account_id=account.id,
                    ad_account_name=account.name,
                    success=False,
                    error=str(e),
                )
            )

    synced = sum(1 for r in account_results if r.success)
    return UserSyncResult(
        user_id=user_id,
        success=True,
        ad_accounts_synced=synced,
        ad_accounts_failed=len(account_results) - synced,
        ad_account_results=account_results,
    )


async def sync_all_users(
    repository: EntityRepository,
    orchestrator: SyncOrchestrator,
) -> BatchSyncSummary:
    """Sync every connected ad account, one user at a time."""
    tokens = repository.latest_valid_tokens()
    logger.info(f"Processing {len(tokens)} users with valid tokens")

    results: List[UserSyncResult] = []
    for token in tokens:
        try:
            result = await _sync_user(
                repository, orchestrator, token.user_id, token.access_token
            )
        except Exception as e:
            logger.error(f"Error processing user {token.user_id}: {e}")
            result = UserSyncResult(user_id=token.user_id, success=False, error=str(e))
        results.append(result)

    successful = sum(1 for r in results if r.success)
    summary = BatchSyncSummary(
        total_users=len(results),
        successful_users=successful,
        failed_users=len(results) - successful,
        total_ad_accounts_synced=sum(r.ad_accounts_synced for r in results),
        total_ad_accounts_failed=sum(r.ad_accounts_failed for r in results),
        results=results,
    )
    logger.info(
        f"Batch sync done: {summary.successful_users}/{summary.total_users} users, "
        f"{summary.total_ad_accounts_synced} accounts synced, "
        f"{summary.total_ad_accounts_failed} failed"
    )
    return summary
