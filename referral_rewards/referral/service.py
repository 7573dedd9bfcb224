"""
ReferralService — registration, first top-up reward distribution, referral info/history, settings.
"""
from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from decimal import Decimal
from functools import partial

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction, sessionmaker

from referral_rewards.core.config import settings as app_settings
from referral_rewards.core.errors import SettingNotFound, UserNotFound
from referral_rewards.db.session import SessionLocal
from referral_rewards.referral.config import (
    REFERRAL_SETTING_KEYS,
    SETTING_KEY_MAX_PER_USER,
    SETTING_KEY_REFERRAL_ENABLED,
    SETTING_KEY_SITE_BASE_URL,
    ReferralSettings,
    parse_max_per_user,
)
from referral_rewards.referral.errors import (
    InvalidReferralCode,
    ReferralAlreadyExists,
    ReferralCodeConflict,
    ReferralCodeGenerationFailed,
    ReferralDisabled,
    ReferralMaxReached,
    ReferralNotFound,
    RewardDistributionAborted,
    SelfReferral,
)
from referral_rewards.referral.lock import RewardLock, build_reward_lock
from referral_rewards.referral.models import (
    STATUS_REWARDED,
    ReferralInfo,
    ReferralRecord,
    ReferralStats,
    RewardSnapshot,
)
from referral_rewards.referral.policy import handle_failure
from referral_rewards.referral.repository import ReferralRepository
from referral_rewards.services.adjustments.service import ADJUSTMENT_TYPE_REFERRAL_REWARD, AdjustmentRepository
from referral_rewards.services.settings.service import SettingRepository
from referral_rewards.services.subscriptions.service import SubscriptionService
from referral_rewards.services.users.service import UserRecord, UserRepository
from referral_rewards.utils.metrics import (
    referral_lock_release_failures_total,
    referral_registrations_total,
    referral_reward_attempts_total,
    referral_subscription_grant_failures_total,
)
from referral_rewards.utils.pagination import PaginationParams, PaginationResult

logger = logging.getLogger(__name__)

REFERRER_REWARD_NOTE = "Referral reward: first top-up by referred user {referee_id}"
REFEREE_REWARD_NOTE = "Referral reward: first top-up after signing up with a referral link"
REFERRER_SUBSCRIPTION_NOTE = "Referral reward: referred user {referee_id} signed up and topped up"
REFEREE_SUBSCRIPTION_NOTE = "Referral reward: signed up with a referral link and topped up"

# Expected reasons for a signup to carry no referral; logged at info level
REGISTRATION_SKIP_ERRORS = (
    ReferralDisabled,
    InvalidReferralCode,
    SelfReferral,
    ReferralAlreadyExists,
    ReferralMaxReached,
)


PENDING_RELEASES_KEY = "referral_reward_lock_releases"


def _run_pending_releases(session: Session, transaction: SessionTransaction) -> None:
    if transaction.parent is not None:
        return
    pending = session.info.get(PENDING_RELEASES_KEY, [])
    while pending:
        pending.pop(0)()


def mask_email(email: str) -> str:
    """'alice@example.com' -> 'al***@example.com'; '***' when there is no local part."""
    at = email.find("@")
    if at <= 0:
        return "***"
    if at <= 2:
        return email[:1] + "***" + email[at:]
    return email[:2] + "***" + email[at:]


class ReferralService:
    def __init__(
        self,
        referral_repo: ReferralRepository,
        reward_lock: RewardLock,
        user_repo: UserRepository,
        setting_repo: SettingRepository,
        adjustment_repo: AdjustmentRepository | None = None,
        subscription_service: SubscriptionService | None = None,
    ) -> None:
        self.referral_repo = referral_repo
        self.reward_lock = reward_lock
        self.user_repo = user_repo
        self.setting_repo = setting_repo
        self.adjustment_repo = adjustment_repo
        self.subscription_service = subscription_service
        self._settings_callbacks: list[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def is_referral_enabled(self, scope: Session | None = None) -> bool:
        try:
            return self.setting_repo.get_value(SETTING_KEY_REFERRAL_ENABLED, scope=scope) == "true"
        except SettingNotFound:
            return False
        except Exception as exc:
            handle_failure("settings.read", exc, logger)
            return False

    def get_referral_settings(self, scope: Session | None = None, strict: bool = False) -> ReferralSettings:
        """
        Current settings. A store failure yields all-zero defaults unless strict, in
        which case it raises (reward distribution must not persist a zero snapshot).
        """
        try:
            values = self.setting_repo.get_multiple(REFERRAL_SETTING_KEYS, scope=scope)
        except Exception as exc:
            if strict:
                raise
            handle_failure("settings.read", exc, logger)
            return ReferralSettings()
        return ReferralSettings.from_values(values)

    def update_referral_settings(self, new_settings: ReferralSettings, scope: Session | None = None) -> None:
        """Validate and store all referral settings. Errors propagate; callbacks run only on success."""
        new_settings.validate_non_negative()
        self.setting_repo.set_multiple(new_settings.to_values(), scope=scope)
        logger.info("referral_settings_updated")
        for callback in self._settings_callbacks:
            callback()

    def add_settings_update_callback(self, callback: Callable[[], None]) -> None:
        self._settings_callbacks.append(callback)

    def _get_max_per_user(self, scope: Session | None) -> int:
        try:
            return parse_max_per_user(self.setting_repo.get_value(SETTING_KEY_MAX_PER_USER, scope=scope))
        except SettingNotFound:
            return 0

    # ------------------------------------------------------------------
    # Referral code
    # ------------------------------------------------------------------

    def generate_referral_code(self, user_id: int, scope: Session | None = None) -> str:
        """Return the user's code, creating one (6 random bytes, URL-safe) on first use."""
        user = self.user_repo.get_by_id(user_id, scope=scope)
        if user.referral_code:
            return user.referral_code

        for _ in range(app_settings.referral_code_max_attempts):
            code = secrets.token_urlsafe(6)
            try:
                self.user_repo.update_referral_code(user_id, code, scope=scope)
            except ReferralCodeConflict:
                continue
            logger.info("referral_code_generated", extra={"user_id": user_id, "code": code})
            return code

        raise ReferralCodeGenerationFailed()

    def _find_referrer(self, code: str, scope: Session | None) -> UserRecord:
        try:
            return self.user_repo.get_by_referral_code(code, scope=scope)
        except UserNotFound as exc:
            raise InvalidReferralCode() from exc

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_referral(self, code: str | None, referee_id: int, scope: Session | None = None) -> bool:
        """
        Record a pending referral at signup. Never raises: a bad code or a broken
        referral subsystem must not block account creation. True if a relationship was created.
        """
        if not code:
            return False
        try:
            ref = self._register(code, referee_id, scope)
        except REGISTRATION_SKIP_ERRORS as exc:
            referral_registrations_total.labels(outcome=exc.code).inc()
            logger.info(
                "referral_registration_skipped",
                extra={"code": code, "referee_id": referee_id, "error": exc.code},
            )
            return False
        except Exception as exc:
            referral_registrations_total.labels(outcome="error").inc()
            handle_failure("register", exc, logger, code=code, referee_id=referee_id)
            return False

        referral_registrations_total.labels(outcome="created").inc()
        logger.info(
            "referral_registered",
            extra={"referral_id": ref.id, "referrer_id": ref.referrer_id, "referee_id": referee_id},
        )
        return True

    def _register(self, code: str, referee_id: int, scope: Session | None) -> ReferralRecord:
        if not self.is_referral_enabled(scope):
            raise ReferralDisabled()

        referrer = self._find_referrer(code, scope)
        if referrer.id == referee_id:
            raise SelfReferral()

        # First referral wins
        try:
            self.referral_repo.get_by_referee(referee_id, scope=scope)
        except ReferralNotFound:
            pass
        else:
            raise ReferralAlreadyExists()

        max_per_user = self._get_max_per_user(scope)
        if max_per_user > 0 and self.referral_repo.count_by_referrer(referrer.id, scope=scope) >= max_per_user:
            raise ReferralMaxReached()

        return self.referral_repo.create(referrer.id, referee_id, scope=scope)

    # ------------------------------------------------------------------
    # Reward distribution
    # ------------------------------------------------------------------

    def trigger_referral_reward(self, referee_id: int, scope: Session | None = None) -> None:
        """
        Reward referrer and referee once, after the referee's first top-up.

        Safe to call repeatedly and concurrently: a rewarded relationship short-circuits,
        the per-referee lock admits one attempt at a time and the status is re-read under it.
        Returns nothing; every failure is logged according to the policy table.
        """
        if not self.is_referral_enabled(scope):
            referral_reward_attempts_total.labels(outcome="disabled").inc()
            return

        try:
            ref = self.referral_repo.get_by_referee(referee_id, scope=scope)
        except ReferralNotFound:
            referral_reward_attempts_total.labels(outcome="no_relationship").inc()
            return
        except Exception as exc:
            handle_failure("trigger.lookup", exc, logger, referee_id=referee_id)
            referral_reward_attempts_total.labels(outcome="aborted").inc()
            return

        if ref.is_rewarded:
            referral_reward_attempts_total.labels(outcome="already_rewarded").inc()
            return

        try:
            locked = self.reward_lock.acquire(referee_id)
        except Exception as exc:
            handle_failure("trigger.acquire_lock", exc, logger, referee_id=referee_id, referral_id=ref.id)
            referral_reward_attempts_total.labels(outcome="aborted").inc()
            return
        if not locked:
            logger.info("referral_reward_lock_contended", extra={"referee_id": referee_id, "referral_id": ref.id})
            referral_reward_attempts_total.labels(outcome="lock_contended").inc()
            return

        try:
            outcome = self._reward_under_lock(referee_id, scope)
        finally:
            if scope is not None and scope.in_transaction():
                # Uncommitted rewards: hold the lock until the caller's transaction ends
                self._release_lock_after_transaction(scope, referee_id)
            else:
                self._release_lock(referee_id)
        referral_reward_attempts_total.labels(outcome=outcome).inc()

    def _reward_under_lock(self, referee_id: int, scope: Session | None) -> str:
        # Double-check: another attempt may have finished between the first read and the lock
        try:
            ref = self.referral_repo.get_by_referee(referee_id, scope=scope)
        except Exception as exc:
            handle_failure("trigger.recheck", exc, logger, referee_id=referee_id)
            return "aborted"
        if ref.is_rewarded:
            return "already_rewarded"

        try:
            snapshot = RewardSnapshot.from_settings(self.get_referral_settings(scope, strict=True))
        except Exception as exc:
            handle_failure("trigger.read_settings", exc, logger, referee_id=referee_id, referral_id=ref.id)
            return "aborted"

        try:
            with self._savepoint(scope) as tx:
                self.distribute_rewards(ref, snapshot, tx)
                try:
                    self.referral_repo.update_status_and_snapshot(ref.id, STATUS_REWARDED, snapshot, scope=tx)
                except Exception as exc:
                    handle_failure(
                        "trigger.persist_status", exc, logger, referral_id=ref.id, referee_id=referee_id
                    )
                    raise RewardDistributionAborted() from exc
        except RewardDistributionAborted:
            return "aborted"

        logger.info(
            "referral_reward_distributed",
            extra={"referral_id": ref.id, "referrer_id": ref.referrer_id, "referee_id": ref.referee_id},
        )
        return "rewarded"

    def distribute_rewards(self, ref: ReferralRecord, snapshot: RewardSnapshot, scope: Session | None = None) -> None:
        """
        Apply the snapshot: referrer balance, referrer subscription, referee balance,
        referee subscription. A failed balance credit raises RewardDistributionAborted;
        a failed subscription grant is logged and skipped.
        """
        self._credit_balance(
            ref,
            ref.referrer_id,
            snapshot.referrer_balance_reward,
            REFERRER_REWARD_NOTE.format(referee_id=ref.referee_id),
            scope,
        )
        self._grant_subscription(
            ref,
            "referrer",
            ref.referrer_id,
            snapshot.referrer_group_id,
            snapshot.referrer_subscription_days,
            REFERRER_SUBSCRIPTION_NOTE.format(referee_id=ref.referee_id),
            scope,
        )
        self._credit_balance(ref, ref.referee_id, snapshot.referee_balance_reward, REFEREE_REWARD_NOTE, scope)
        self._grant_subscription(
            ref,
            "referee",
            ref.referee_id,
            snapshot.referee_group_id,
            snapshot.referee_subscription_days,
            REFEREE_SUBSCRIPTION_NOTE,
            scope,
        )

    def _credit_balance(
        self, ref: ReferralRecord, user_id: int, amount: Decimal, notes: str, scope: Session | None
    ) -> None:
        if amount <= 0:
            return
        try:
            self.user_repo.update_balance(user_id, amount, scope=scope)
        except Exception as exc:
            handle_failure(
                "trigger.balance_credit", exc, logger, referral_id=ref.id, user_id=user_id, amount=amount
            )
            raise RewardDistributionAborted() from exc

        if self.adjustment_repo is None:
            return
        try:
            with self._savepoint(scope) as tx:
                self.adjustment_repo.record(ADJUSTMENT_TYPE_REFERRAL_REWARD, amount, user_id, notes, scope=tx)
        except Exception as exc:
            handle_failure("trigger.reward_record", exc, logger, referral_id=ref.id, user_id=user_id, amount=amount)

    def _grant_subscription(
        self,
        ref: ReferralRecord,
        beneficiary: str,
        user_id: int,
        group_id: int | None,
        days: int,
        notes: str,
        scope: Session | None,
    ) -> None:
        if group_id is None or days <= 0 or self.subscription_service is None:
            return
        try:
            with self._savepoint(scope) as tx:
                self.subscription_service.assign_or_extend(
                    user_id, group_id, days, assigned_by=None, notes=notes, scope=tx
                )
        except Exception as exc:
            referral_subscription_grant_failures_total.labels(beneficiary=beneficiary).inc()
            handle_failure(
                "trigger.subscription_grant", exc, logger, referral_id=ref.id, user_id=user_id, group_id=group_id
            )

    def _release_lock(self, referee_id: int) -> None:
        try:
            self.reward_lock.release(referee_id)
        except Exception as exc:
            referral_lock_release_failures_total.inc()
            handle_failure("trigger.release_lock", exc, logger, referee_id=referee_id)

    def _release_lock_after_transaction(self, scope: Session, referee_id: int) -> None:
        """Release on commit or rollback of the outermost transaction of `scope`."""
        if PENDING_RELEASES_KEY not in scope.info:
            scope.info[PENDING_RELEASES_KEY] = []
            event.listen(scope, "after_transaction_end", _run_pending_releases)
        scope.info[PENDING_RELEASES_KEY].append(partial(self._release_lock, referee_id))

    @staticmethod
    @contextmanager
    def _savepoint(scope: Session | None) -> Iterator[Session | None]:
        """Inside an outer transaction, isolate a step in a SAVEPOINT; otherwise each store call commits alone."""
        if scope is None:
            yield None
            return
        with scope.begin_nested():
            yield scope

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_referral_info(self, user_id: int, scope: Session | None = None) -> ReferralInfo:
        code = self.generate_referral_code(user_id, scope=scope)

        total = self.referral_repo.count_by_referrer(user_id, scope=scope)
        rewarded = self.referral_repo.count_by_referrer_and_status(user_id, STATUS_REWARDED, scope=scope)
        earned = self.referral_repo.sum_referrer_balance_reward(user_id, scope=scope)

        try:
            base_url = self.setting_repo.get_value(SETTING_KEY_SITE_BASE_URL, scope=scope).strip()
        except SettingNotFound:
            base_url = ""
        link = f"{base_url.rstrip('/')}{app_settings.referral_register_path}{code}" if base_url else ""

        return ReferralInfo(
            referral_code=code,
            referral_link=link,
            stats=ReferralStats(
                total_count=total,
                rewarded_count=rewarded,
                pending_count=total - rewarded,
                total_balance_earn=earned,
            ),
            rewards=self.get_referral_settings(scope),
        )

    def get_referral_history(
        self, user_id: int, params: PaginationParams, scope: Session | None = None
    ) -> tuple[list[ReferralRecord], PaginationResult]:
        """Self-service listing: referee emails masked, referrer (the caller) omitted."""
        items, page = self.referral_repo.list_by_referrer(user_id, params, scope=scope)
        masked = [
            item.model_copy(
                update={
                    "referrer_email": "",
                    "referee_email": mask_email(item.referee_email) if item.referee_email else "",
                }
            )
            for item in items
        ]
        return masked, page

    def get_all_referrals(
        self, params: PaginationParams, scope: Session | None = None
    ) -> tuple[list[ReferralRecord], PaginationResult]:
        """Admin listing with both emails unmasked."""
        return self.referral_repo.list_all(params, scope=scope)


def build_referral_service(session_factory: sessionmaker = SessionLocal) -> ReferralService:
    return ReferralService(
        referral_repo=ReferralRepository(session_factory),
        reward_lock=build_reward_lock(),
        user_repo=UserRepository(session_factory),
        setting_repo=SettingRepository(session_factory),
        adjustment_repo=AdjustmentRepository(session_factory),
        subscription_service=SubscriptionService(session_factory),
    )
