"""ReferralRepository against a real (SQLite) database."""
from decimal import Decimal

import pytest

from referral_rewards.referral.errors import (
    InvalidStatusTransition,
    ReferralAlreadyExists,
    ReferralNotFound,
    SelfReferral,
)
from referral_rewards.referral.models import RewardSnapshot
from referral_rewards.referral.repository import ReferralRepository
from referral_rewards.utils.pagination import PaginationParams

SNAPSHOT = RewardSnapshot(
    referrer_balance_reward=Decimal("12.5"),
    referrer_group_id=3,
    referrer_subscription_days=30,
    referee_balance_reward=Decimal("7.75"),
)


@pytest.fixture
def repo(session_factory):
    return ReferralRepository(session_factory)


@pytest.fixture
def users(make_user):
    return {
        "alice": make_user("alice@example.com"),
        "bob": make_user("bob@example.com"),
        "carol": make_user("carol@example.com"),
    }


class TestCreate:
    def test_create_and_fetch(self, repo, users):
        created = repo.create(users["alice"], users["bob"])

        assert created.status == "pending"
        fetched = repo.get_by_referee(users["bob"])
        assert fetched.id == created.id
        assert fetched.referrer_id == users["alice"]
        assert fetched.referrer_balance_reward == Decimal("0")
        assert fetched.referrer_rewarded_at is None
        assert repo.get_by_id(created.id).referee_id == users["bob"]

    def test_self_referral_rejected(self, repo, users):
        with pytest.raises(SelfReferral):
            repo.create(users["alice"], users["alice"])

    def test_one_referrer_per_referee(self, repo, users):
        repo.create(users["alice"], users["bob"])

        with pytest.raises(ReferralAlreadyExists):
            repo.create(users["carol"], users["bob"])

    def test_duplicate_inside_scope_keeps_scope_usable(self, repo, users, session_factory):
        session = session_factory()
        try:
            repo.create(users["alice"], users["bob"], scope=session)
            with pytest.raises(ReferralAlreadyExists):
                repo.create(users["carol"], users["bob"], scope=session)
            repo.create(users["alice"], users["carol"], scope=session)
            session.commit()
        finally:
            session.close()

        assert repo.count_by_referrer(users["alice"]) == 2

    def test_missing_referee(self, repo):
        with pytest.raises(ReferralNotFound):
            repo.get_by_referee(404)


class TestStatus:
    def test_reward_writes_snapshot_and_timestamps(self, repo, users):
        ref = repo.create(users["alice"], users["bob"])

        repo.update_status_and_snapshot(ref.id, "rewarded", SNAPSHOT)

        row = repo.get_by_id(ref.id)
        assert row.status == "rewarded"
        assert row.referrer_balance_reward == Decimal("12.5")
        assert row.referrer_group_id == 3
        assert row.referrer_subscription_days == 30
        assert row.referee_balance_reward == Decimal("7.75")
        assert row.referee_group_id is None
        assert row.referrer_rewarded_at is not None
        assert row.referee_rewarded_at is not None

    def test_rewarded_is_terminal(self, repo, users):
        ref = repo.create(users["alice"], users["bob"])
        repo.update_status_and_snapshot(ref.id, "rewarded", SNAPSHOT)

        with pytest.raises(InvalidStatusTransition):
            repo.update_status_and_snapshot(ref.id, "rewarded", SNAPSHOT)
        with pytest.raises(InvalidStatusTransition):
            repo.update_status_and_snapshot(ref.id, "pending")

    def test_unknown_id(self, repo):
        with pytest.raises(ReferralNotFound):
            repo.update_status_and_snapshot(404, "rewarded", SNAPSHOT)

    def test_scope_rollback_discards_update(self, repo, users, session_factory):
        ref = repo.create(users["alice"], users["bob"])
        session = session_factory()
        try:
            repo.update_status_and_snapshot(ref.id, "rewarded", SNAPSHOT, scope=session)
            assert repo.get_by_referee(users["bob"], scope=session).is_rewarded
            session.rollback()
        finally:
            session.close()

        assert repo.get_by_referee(users["bob"]).status == "pending"

    def test_run_in_tx_reuses_scope(self, repo, session_factory):
        session = session_factory()
        try:
            assert repo.run_in_tx(lambda db: db, scope=session) is session
        finally:
            session.close()


class TestAggregates:
    def test_counts_and_earned_sum(self, repo, users, make_user):
        dave = make_user("dave@example.com")
        r1 = repo.create(users["alice"], users["bob"])
        repo.create(users["alice"], users["carol"])
        r3 = repo.create(users["alice"], dave)
        repo.update_status_and_snapshot(r1.id, "rewarded", SNAPSHOT)
        repo.update_status_and_snapshot(r3.id, "rewarded", SNAPSHOT)

        assert repo.count_by_referrer(users["alice"]) == 3
        assert repo.count_by_referrer_and_status(users["alice"], "rewarded") == 2
        assert repo.count_by_referrer_and_status(users["alice"], "pending") == 1
        assert repo.sum_referrer_balance_reward(users["alice"]) == Decimal("25")

    def test_sum_without_rows_is_zero(self, repo, users):
        assert repo.sum_referrer_balance_reward(users["alice"]) == Decimal("0")


class TestListing:
    def test_list_by_referrer_newest_first_with_emails(self, repo, users, make_user):
        dave = make_user("dave@example.com")
        repo.create(users["alice"], users["bob"])
        repo.create(users["alice"], users["carol"])
        repo.create(users["bob"], dave)

        items, page = repo.list_by_referrer(users["alice"], PaginationParams(page=1, page_size=20))

        assert [i.referee_email for i in items] == ["carol@example.com", "bob@example.com"]
        assert all(i.referrer_email == "alice@example.com" for i in items)
        assert page.total == 2
        assert page.pages == 1

    def test_list_all_paginates(self, repo, users, make_user):
        dave = make_user("dave@example.com")
        repo.create(users["alice"], users["bob"])
        repo.create(users["alice"], users["carol"])
        repo.create(users["bob"], dave)

        first, page = repo.list_all(PaginationParams(page=1, page_size=2))
        second, _ = repo.list_all(PaginationParams(page=2, page_size=2))

        assert page.total == 3
        assert page.pages == 2
        assert len(first) == 2
        assert len(second) == 1
        assert second[0].referee_email == "bob@example.com"
