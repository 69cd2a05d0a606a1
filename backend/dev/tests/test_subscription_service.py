"""Tests des balayages de droits, des purges et de la machine à états des abonnements."""

import datetime
from decimal import Decimal

import pytest

from constants import ENTITLEMENT_FIELDS
from enums import AccountSubscriptionStatus, SubscriptionPlan, SubscriptionStatus
from error_handlers import (
    ForeignKeyViolationError,
    InvalidTransitionError,
    NotFoundError,
    SubscriptionConflictError,
)
from models import Account, Subscription, SubscriptionPayment
from services.subscription_service import ALLOWED_TRANSITIONS, SubscriptionService, can_transition

from conftest import FIXED_NOW

PERIOD = datetime.timedelta(days=30)


@pytest.fixture
def service(db, clock) -> SubscriptionService:
    return SubscriptionService(db, clock=clock)


@pytest.fixture
def entitled_account(make_account):
    return make_account(
        "owner@inmodash.com",
        subscription_status=AccountSubscriptionStatus.active,
        subscription_plan=SubscriptionPlan.professional,
        subscription_start_date=FIXED_NOW,
        subscription_end_date=FIXED_NOW + PERIOD,
        trial_ends_at=FIXED_NOW + PERIOD,
        last_payment_date=FIXED_NOW,
        next_payment_date=FIXED_NOW + PERIOD,
    )


class TestResetAndPurge:

    def test_reset_all_entitlements(self, db, service, entitled_account, make_account) -> None:
        make_account("free@inmodash.com")

        report = service.reset_all_entitlements()

        assert report.accounts_reset == 2
        for account in db.query(Account).all():
            assert all(getattr(account, field) is None for field in ENTITLEMENT_FIELDS)
            assert account.entitlement_status == AccountSubscriptionStatus.none

    def test_purge_subscriptions(self, db, service, entitled_account, make_subscription, make_payment) -> None:
        active = make_subscription(entitled_account, SubscriptionStatus.active)
        make_payment(active)
        make_payment(active)
        make_subscription(entitled_account, SubscriptionStatus.cancelled)

        report = service.purge_subscriptions()

        assert report.payments_deleted == 2
        assert report.subscriptions_deleted == 2
        assert report.accounts_reset == 1
        assert db.query(SubscriptionPayment).count() == 0
        assert db.query(Subscription).count() == 0
        assert db.query(Account).one().subscription_status is None

    def test_parents_before_children_is_refused(self, db, service, entitled_account, make_subscription,
                                                make_payment) -> None:
        """Supprimer les abonnements avant leurs paiements viole les clés étrangères."""
        make_payment(make_subscription(entitled_account, SubscriptionStatus.active))

        with pytest.raises(ForeignKeyViolationError):
            service.subscriptions.delete_many()

        assert db.query(Subscription).count() == 1
        assert db.query(SubscriptionPayment).count() == 1


class TestPurgePending:

    def test_pending_subscription_and_payment_removed(self, db, service, entitled_account,
                                                      make_subscription, make_payment) -> None:
        pending = make_subscription(entitled_account, SubscriptionStatus.pending, id=10)
        make_subscription(entitled_account, SubscriptionStatus.active, id=11)
        make_payment(pending)

        report = service.purge_pending_subscriptions()

        assert report.processed == 1
        assert report.succeeded == [10]
        assert report.counters["payments_deleted"] == 1
        assert not report.has_failures
        assert db.query(SubscriptionPayment).count() == 0
        remaining = db.query(Subscription).all()
        assert [(s.id, s.status) for s in remaining] == [(11, SubscriptionStatus.active)]

    def test_entitlements_untouched(self, db, service, entitled_account, make_subscription) -> None:
        make_subscription(entitled_account, SubscriptionStatus.pending)

        service.purge_pending_subscriptions()

        account = db.query(Account).one()
        assert account.subscription_status == AccountSubscriptionStatus.active
        assert account.next_payment_date == FIXED_NOW + PERIOD

    def test_nothing_pending(self, service, entitled_account, make_subscription) -> None:
        make_subscription(entitled_account, SubscriptionStatus.active)
        report = service.purge_pending_subscriptions()
        assert report.processed == 0
        assert report.succeeded == []

    def test_failure_is_recorded_and_sweep_continues(self, db, service, entitled_account,
                                                     make_subscription, monkeypatch) -> None:
        first = make_subscription(entitled_account, SubscriptionStatus.pending)
        second = make_subscription(entitled_account, SubscriptionStatus.pending)
        first_id, second_id = first.id, second.id

        original_delete = service.subscriptions.delete

        def flaky_delete(record_id):
            if record_id == first_id:
                raise NotFoundError(details={"record_id": record_id})
            return original_delete(record_id)

        monkeypatch.setattr(service.subscriptions, "delete", flaky_delete)

        report = service.purge_pending_subscriptions()

        assert report.succeeded == [second_id]
        assert [f.record_id for f in report.failures] == [first_id]
        assert report.failures[0].error_code == "NOT_FOUND"
        assert [s.id for s in db.query(Subscription).all()] == [first_id]

    def test_failure_reports_payments_already_removed(self, db, service, entitled_account,
                                                      make_subscription, make_payment, monkeypatch) -> None:
        """Les paiements supprimés avant un échec du parent figurent dans le rapport."""
        pending = make_subscription(entitled_account, SubscriptionStatus.pending)
        make_payment(pending)
        pending_id = pending.id

        def failing_delete(record_id):
            raise ForeignKeyViolationError(details={"table": "subscriptions", "record_id": record_id})

        monkeypatch.setattr(service.subscriptions, "delete", failing_delete)

        report = service.purge_pending_subscriptions()

        assert report.succeeded == []
        failure = report.failures[0]
        assert failure.record_id == pending_id
        assert failure.error_code == "FOREIGN_KEY_VIOLATION"
        assert failure.details["payments_deleted"] == 1
        assert report.counters["payments_deleted"] == 1
        assert db.query(SubscriptionPayment).count() == 0
        assert [s.id for s in db.query(Subscription).all()] == [pending_id]


class TestStateMachine:

    @pytest.mark.parametrize("current, target, allowed", [
        (SubscriptionStatus.pending, SubscriptionStatus.active, True),
        (SubscriptionStatus.pending, SubscriptionStatus.cancelled, True),
        (SubscriptionStatus.active, SubscriptionStatus.expired, True),
        (SubscriptionStatus.active, SubscriptionStatus.cancelled, True),
        (SubscriptionStatus.active, SubscriptionStatus.pending, False),
        (SubscriptionStatus.pending, SubscriptionStatus.expired, False),
        (SubscriptionStatus.expired, SubscriptionStatus.active, False),
        (SubscriptionStatus.cancelled, SubscriptionStatus.pending, False),
    ])
    def test_can_transition(self, current, target, allowed) -> None:
        assert can_transition(current, target) is allowed

    def test_nothing_reenters_pending(self) -> None:
        assert all(SubscriptionStatus.pending not in targets for targets in ALLOWED_TRANSITIONS.values())

    def test_checkout_and_activation(self, db, service, make_account) -> None:
        account_id = make_account("buyer@inmodash.com").id

        subscription = service.open_checkout(account_id)
        assert subscription.status == SubscriptionStatus.pending
        assert subscription.plan == SubscriptionPlan.professional
        assert subscription.amount == Decimal("15")
        assert subscription.currency == "ARS"

        activated = service.activate(subscription.id)

        assert activated.status == SubscriptionStatus.active
        assert activated.start_date == FIXED_NOW
        assert activated.end_date == FIXED_NOW + PERIOD
        payment = db.query(SubscriptionPayment).one()
        assert payment.subscription_id == subscription.id
        assert payment.paid_at == FIXED_NOW

        account = db.get(Account, account_id)
        assert account.subscription_status == AccountSubscriptionStatus.active
        assert account.subscription_plan == SubscriptionPlan.professional
        assert account.next_payment_date == FIXED_NOW + PERIOD

    def test_checkout_conflict(self, service, make_account, make_subscription) -> None:
        account = make_account("buyer@inmodash.com")
        existing = make_subscription(account, SubscriptionStatus.active)

        with pytest.raises(SubscriptionConflictError) as exc_info:
            service.open_checkout(account.id)
        assert exc_info.value.details["subscription_ids"] == [existing.id]

    def test_checkout_after_terminal_subscription(self, service, make_account, make_subscription) -> None:
        account = make_account("buyer@inmodash.com")
        make_subscription(account, SubscriptionStatus.expired)
        assert service.open_checkout(account.id).status == SubscriptionStatus.pending

    def test_checkout_unknown_account(self, service) -> None:
        with pytest.raises(NotFoundError):
            service.open_checkout(404)

    def test_record_payment_extends_period(self, db, service, make_account) -> None:
        account_id = make_account("buyer@inmodash.com").id
        subscription_id = service.activate(service.open_checkout(account_id).id).id

        service.record_payment(subscription_id, amount=Decimal("20"))

        subscription = db.get(Subscription, subscription_id)
        assert subscription.end_date == FIXED_NOW + 2 * PERIOD
        amounts = sorted(p.amount for p in db.query(SubscriptionPayment).all())
        assert amounts == [Decimal("15"), Decimal("20")]
        assert db.get(Account, account_id).subscription_end_date == FIXED_NOW + 2 * PERIOD

    def test_record_payment_requires_active(self, service, make_account) -> None:
        subscription = service.open_checkout(make_account("buyer@inmodash.com").id)
        with pytest.raises(InvalidTransitionError):
            service.record_payment(subscription.id)

    def test_cancel_pending_leaves_account(self, db, service, entitled_account, make_subscription) -> None:
        pending = make_subscription(entitled_account, SubscriptionStatus.pending)

        cancelled = service.cancel(pending.id)

        assert cancelled.status == SubscriptionStatus.cancelled
        assert cancelled.cancelled_at == FIXED_NOW
        assert db.query(Account).one().subscription_status == AccountSubscriptionStatus.active

    def test_cancel_active_updates_account(self, db, service, entitled_account, make_subscription) -> None:
        active = make_subscription(entitled_account, SubscriptionStatus.active)

        service.cancel(active.id)

        account = db.query(Account).one()
        assert account.subscription_status == AccountSubscriptionStatus.cancelled
        assert account.next_payment_date is None

    def test_expire(self, db, service, entitled_account, make_subscription) -> None:
        active = make_subscription(entitled_account, SubscriptionStatus.active)

        service.expire(active.id)

        assert db.query(Account).one().subscription_status == AccountSubscriptionStatus.expired

    def test_terminal_states_are_final(self, db, service, entitled_account, make_subscription) -> None:
        expired = make_subscription(entitled_account, SubscriptionStatus.expired)
        expired_id = expired.id

        with pytest.raises(InvalidTransitionError) as exc_info:
            service.activate(expired_id)

        assert exc_info.value.details == {
            "subscription_id": expired_id, "current": "expired", "target": "active"
        }
        assert db.get(Subscription, expired_id).status == SubscriptionStatus.expired
        assert db.query(SubscriptionPayment).count() == 0

    def test_find_conflicting_subscriptions(self, service, make_account, make_subscription) -> None:
        clean = make_account("clean@inmodash.com")
        make_subscription(clean, SubscriptionStatus.active)
        make_subscription(clean, SubscriptionStatus.cancelled)

        broken = make_account("broken@inmodash.com")
        first = make_subscription(broken, SubscriptionStatus.active)
        second = make_subscription(broken, SubscriptionStatus.pending)

        conflicts = service.find_conflicting_subscriptions()

        assert len(conflicts) == 1
        assert conflicts[0].account_id == broken.id
        assert conflicts[0].subscription_ids == [first.id, second.id]
