"""Tests for ReferralService.trigger_referral_reward — gating, locking, crediting, failure policy."""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, call

import pytest

from referral_rewards.core.errors import GroupNotFound, SettingNotFound, UserNotFound
from referral_rewards.referral.errors import ReferralNotFound
from referral_rewards.referral.lock import MemoryRewardLock
from referral_rewards.referral.models import ReferralRecord, RewardSnapshot
from referral_rewards.referral.service import (
    REFEREE_REWARD_NOTE,
    REFERRER_REWARD_NOTE,
    ReferralService,
)
from referral_rewards.services.adjustments.service import ADJUSTMENT_TYPE_REFERRAL_REWARD

REFERRER_ID = 10
REFEREE_ID = 20

ENABLED = {
    "referral_enabled": "true",
    "referral_referrer_balance_reward": "12.50000000",
    "referral_referrer_group_id": "0",
    "referral_referrer_subscription_days": "0",
    "referral_referee_balance_reward": "7.75000000",
    "referral_referee_group_id": "0",
    "referral_referee_subscription_days": "0",
    "referral_max_per_user": "0",
}


def _make_record(**kwargs):
    now = datetime.now(timezone.utc)
    return ReferralRecord(
        id=kwargs.get("id", 1),
        referrer_id=kwargs.get("referrer_id", REFERRER_ID),
        referee_id=kwargs.get("referee_id", REFEREE_ID),
        status=kwargs.get("status", "pending"),
        created_at=now,
        updated_at=now,
    )


def _make_setting_repo(values):
    repo = MagicMock()

    def get_value(key, scope=None):
        if key not in values:
            raise SettingNotFound()
        return values[key]

    repo.get_value.side_effect = get_value
    repo.get_multiple.side_effect = lambda keys, scope=None: {k: values[k] for k in keys if k in values}
    return repo


def _make_service(values=None, record=None, lock=None, parent=None):
    parent = parent or MagicMock()
    parent.referral_repo.get_by_referee.return_value = record or _make_record()
    svc = ReferralService(
        referral_repo=parent.referral_repo,
        reward_lock=lock or MemoryRewardLock(ttl_seconds=30),
        user_repo=parent.user_repo,
        setting_repo=_make_setting_repo(ENABLED if values is None else values),
        adjustment_repo=parent.adjustment_repo,
        subscription_service=parent.subscription_service,
    )
    return svc, parent


class TestTriggerGating:
    def test_disabled_is_noop(self):
        lock = MagicMock()
        svc, parent = _make_service(values={**ENABLED, "referral_enabled": "false"}, lock=lock)

        svc.trigger_referral_reward(REFEREE_ID)

        parent.referral_repo.get_by_referee.assert_not_called()
        lock.acquire.assert_not_called()
        parent.user_repo.update_balance.assert_not_called()

    def test_missing_enabled_flag_means_disabled(self):
        values = {k: v for k, v in ENABLED.items() if k != "referral_enabled"}
        svc, parent = _make_service(values=values)

        svc.trigger_referral_reward(REFEREE_ID)

        parent.referral_repo.get_by_referee.assert_not_called()

    def test_no_relationship_is_noop(self):
        lock = MagicMock()
        svc, parent = _make_service(lock=lock)
        parent.referral_repo.get_by_referee.side_effect = ReferralNotFound()

        svc.trigger_referral_reward(REFEREE_ID)

        lock.acquire.assert_not_called()
        parent.user_repo.update_balance.assert_not_called()

    def test_already_rewarded_skips_lock(self):
        lock = MagicMock()
        svc, parent = _make_service(record=_make_record(status="rewarded"), lock=lock)

        svc.trigger_referral_reward(REFEREE_ID)

        lock.acquire.assert_not_called()
        parent.user_repo.update_balance.assert_not_called()
        parent.referral_repo.update_status_and_snapshot.assert_not_called()

    def test_lookup_failure_aborts(self, caplog):
        svc, parent = _make_service()
        parent.referral_repo.get_by_referee.side_effect = RuntimeError("db down")

        with caplog.at_level(logging.ERROR):
            svc.trigger_referral_reward(REFEREE_ID)

        parent.user_repo.update_balance.assert_not_called()
        aborted = [r for r in caplog.records if r.getMessage() == "referral_operation_aborted"]
        assert aborted and aborted[0].operation == "trigger.lookup"


class TestTriggerLocking:
    def test_lock_contended_does_nothing(self):
        lock = MagicMock()
        lock.acquire.return_value = False
        svc, parent = _make_service(lock=lock)

        svc.trigger_referral_reward(REFEREE_ID)

        parent.user_repo.update_balance.assert_not_called()
        lock.release.assert_not_called()

    def test_lock_acquire_error_aborts(self):
        lock = MagicMock()
        lock.acquire.side_effect = ConnectionError("redis down")
        svc, parent = _make_service(lock=lock)

        svc.trigger_referral_reward(REFEREE_ID)

        parent.user_repo.update_balance.assert_not_called()
        lock.release.assert_not_called()

    def test_double_check_under_lock(self):
        lock = MemoryRewardLock(ttl_seconds=30)
        svc, parent = _make_service(lock=lock)
        parent.referral_repo.get_by_referee.side_effect = [
            _make_record(status="pending"),
            _make_record(status="rewarded"),
        ]

        svc.trigger_referral_reward(REFEREE_ID)

        parent.user_repo.update_balance.assert_not_called()
        parent.referral_repo.update_status_and_snapshot.assert_not_called()
        assert not lock.is_held(REFEREE_ID)

    def test_lock_released_after_success(self):
        lock = MemoryRewardLock(ttl_seconds=30)
        svc, _ = _make_service(lock=lock)

        svc.trigger_referral_reward(REFEREE_ID)

        assert not lock.is_held(REFEREE_ID)

    def test_release_failure_is_swallowed(self, caplog):
        lock = MagicMock()
        lock.acquire.return_value = True
        lock.release.side_effect = ConnectionError("redis down")
        svc, parent = _make_service(lock=lock)

        with caplog.at_level(logging.WARNING):
            svc.trigger_referral_reward(REFEREE_ID)

        parent.referral_repo.update_status_and_snapshot.assert_called_once()
        failed = [r for r in caplog.records if r.getMessage() == "referral_operation_failed"]
        assert failed and failed[0].operation == "trigger.release_lock"


class TestDistribution:
    def test_balance_rewards_and_records(self):
        """12.50 to the referrer, 7.75 to the referee, one reward record each."""
        svc, parent = _make_service()

        svc.trigger_referral_reward(REFEREE_ID)

        parent.user_repo.update_balance.assert_has_calls([
            call(REFERRER_ID, Decimal("12.50000000"), scope=None),
            call(REFEREE_ID, Decimal("7.75000000"), scope=None),
        ])
        assert parent.adjustment_repo.record.call_count == 2
        referrer_call, referee_call = parent.adjustment_repo.record.call_args_list
        assert referrer_call.args == (
            ADJUSTMENT_TYPE_REFERRAL_REWARD,
            Decimal("12.50000000"),
            REFERRER_ID,
            REFERRER_REWARD_NOTE.format(referee_id=REFEREE_ID),
        )
        assert referee_call.args == (
            ADJUSTMENT_TYPE_REFERRAL_REWARD,
            Decimal("7.75000000"),
            REFEREE_ID,
            REFEREE_REWARD_NOTE,
        )
        assert "first top-up" in referee_call.args[3]

    def test_status_persisted_with_snapshot(self):
        svc, parent = _make_service()

        svc.trigger_referral_reward(REFEREE_ID)

        args, kwargs = parent.referral_repo.update_status_and_snapshot.call_args
        assert args[0] == 1
        assert args[1] == "rewarded"
        snapshot = args[2]
        assert isinstance(snapshot, RewardSnapshot)
        assert snapshot.referrer_balance_reward == Decimal("12.5")
        assert snapshot.referee_balance_reward == Decimal("7.75")
        assert snapshot.referrer_group_id is None
        assert snapshot.referee_group_id is None

    def test_credit_order(self):
        values = {
            **ENABLED,
            "referral_referrer_group_id": "3",
            "referral_referrer_subscription_days": "30",
            "referral_referee_group_id": "4",
            "referral_referee_subscription_days": "7",
        }
        svc, parent = _make_service(values=values)

        svc.trigger_referral_reward(REFEREE_ID)

        steps = [
            (c[0], c.args[0])
            for c in parent.mock_calls
            if c[0] in ("user_repo.update_balance", "subscription_service.assign_or_extend")
        ]
        assert steps == [
            ("user_repo.update_balance", REFERRER_ID),
            ("subscription_service.assign_or_extend", REFERRER_ID),
            ("user_repo.update_balance", REFEREE_ID),
            ("subscription_service.assign_or_extend", REFEREE_ID),
        ]
        referrer_grant = parent.subscription_service.assign_or_extend.call_args_list[0]
        assert referrer_grant.args == (REFERRER_ID, 3, 30)
        assert referrer_grant.kwargs["assigned_by"] is None

    def test_zero_amounts_and_no_group_credit_nothing(self):
        values = {
            **ENABLED,
            "referral_referrer_balance_reward": "0",
            "referral_referee_balance_reward": "0",
            "referral_referrer_subscription_days": "30",
        }
        svc, parent = _make_service(values=values)

        svc.trigger_referral_reward(REFEREE_ID)

        parent.user_repo.update_balance.assert_not_called()
        parent.subscription_service.assign_or_extend.assert_not_called()
        parent.adjustment_repo.record.assert_not_called()
        # still marked rewarded, so it cannot fire again
        parent.referral_repo.update_status_and_snapshot.assert_called_once()

    def test_group_without_days_grants_nothing(self):
        svc, parent = _make_service(values={**ENABLED, "referral_referrer_group_id": "3"})

        svc.trigger_referral_reward(REFEREE_ID)

        parent.subscription_service.assign_or_extend.assert_not_called()
        snapshot = parent.referral_repo.update_status_and_snapshot.call_args.args[2]
        assert snapshot.referrer_group_id == 3
        assert snapshot.referrer_subscription_days == 0


class TestFailurePolicy:
    def test_referrer_balance_failure_aborts_before_anything_else(self):
        lock = MemoryRewardLock(ttl_seconds=30)
        svc, parent = _make_service(lock=lock)
        parent.user_repo.update_balance.side_effect = UserNotFound()

        svc.trigger_referral_reward(REFEREE_ID)

        assert parent.user_repo.update_balance.call_count == 1
        parent.adjustment_repo.record.assert_not_called()
        parent.referral_repo.update_status_and_snapshot.assert_not_called()
        assert not lock.is_held(REFEREE_ID)

    def test_referee_balance_failure_leaves_pending(self):
        svc, parent = _make_service()
        parent.user_repo.update_balance.side_effect = [None, RuntimeError("db down")]

        svc.trigger_referral_reward(REFEREE_ID)

        assert parent.user_repo.update_balance.call_count == 2
        parent.referral_repo.update_status_and_snapshot.assert_not_called()

    def test_subscription_failure_continues(self, caplog):
        values = {
            **ENABLED,
            "referral_referrer_group_id": "3",
            "referral_referrer_subscription_days": "30",
        }
        svc, parent = _make_service(values=values)
        parent.subscription_service.assign_or_extend.side_effect = GroupNotFound()

        with caplog.at_level(logging.WARNING):
            svc.trigger_referral_reward(REFEREE_ID)

        parent.user_repo.update_balance.assert_any_call(REFEREE_ID, Decimal("7.75000000"), scope=None)
        parent.referral_repo.update_status_and_snapshot.assert_called_once()
        failed = [r for r in caplog.records if r.getMessage() == "referral_operation_failed"]
        assert [r.operation for r in failed] == ["trigger.subscription_grant"]

    def test_reward_record_failure_continues(self):
        svc, parent = _make_service()
        parent.adjustment_repo.record.side_effect = RuntimeError("insert failed")

        svc.trigger_referral_reward(REFEREE_ID)

        assert parent.user_repo.update_balance.call_count == 2
        parent.referral_repo.update_status_and_snapshot.assert_called_once()

    def test_settings_read_failure_aborts(self):
        svc, parent = _make_service()
        svc.setting_repo.get_multiple.side_effect = RuntimeError("db down")

        svc.trigger_referral_reward(REFEREE_ID)

        parent.user_repo.update_balance.assert_not_called()
        parent.referral_repo.update_status_and_snapshot.assert_not_called()

    def test_persist_failure_is_logged_not_raised(self, caplog):
        svc, parent = _make_service()
        parent.referral_repo.update_status_and_snapshot.side_effect = RuntimeError("db down")

        with caplog.at_level(logging.ERROR):
            svc.trigger_referral_reward(REFEREE_ID)

        aborted = [r for r in caplog.records if r.getMessage() == "referral_operation_aborted"]
        assert aborted[-1].operation == "trigger.persist_status"

    def test_missing_adjustment_repo_is_fine(self):
        svc, parent = _make_service()
        svc.adjustment_repo = None

        svc.trigger_referral_reward(REFEREE_ID)

        parent.referral_repo.update_status_and_snapshot.assert_called_once()


@pytest.mark.parametrize("raw, expected", [("true", True), ("false", False), ("TRUE", False), ("", False)])
def test_is_referral_enabled(raw, expected):
    svc, _ = _make_service(values={"referral_enabled": raw})
    assert svc.is_referral_enabled() is expected
