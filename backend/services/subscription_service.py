"""
Service de gestion des abonnements
Balayages de remise à zéro des droits, purges et machine à états des abonnements
"""
import datetime
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from base_crud import ModelStore
from constants import (
    BILLING_PERIOD_DAYS, DEFAULT_CURRENCY, DEFAULT_SUBSCRIPTION_AMOUNT,
    DEFAULT_SUBSCRIPTION_PLAN, ENTITLEMENT_FIELDS
)
from enums import (
    AccountSubscriptionStatus, EntityType, PaymentStatus,
    SubscriptionPlan, SubscriptionStatus
)
from error_handlers import InvalidTransitionError, MaintenanceError, SubscriptionConflictError
from models import Account, Subscription, SubscriptionPayment
from schemas import (
    EntitlementResetReport, PurgeReport, SubscriptionConflict,
    SweepFailure, SweepReport
)

logger = logging.getLogger(__name__)

# Aucune transition ne revient vers pending; expired et cancelled sont terminaux
ALLOWED_TRANSITIONS = {
    SubscriptionStatus.pending: frozenset({SubscriptionStatus.active, SubscriptionStatus.cancelled}),
    SubscriptionStatus.active: frozenset({SubscriptionStatus.expired, SubscriptionStatus.cancelled}),
    SubscriptionStatus.expired: frozenset(),
    SubscriptionStatus.cancelled: frozenset(),
}

NON_TERMINAL_STATUSES = (SubscriptionStatus.pending, SubscriptionStatus.active)


def can_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[SubscriptionStatus(current)]


class SubscriptionService:
    """
    Service central pour les droits et abonnements
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Callable[[], datetime.datetime]] = None
    ):
        self.db = db
        self.accounts = ModelStore(db, Account, EntityType.USER, "Compte")
        self.subscriptions = ModelStore(db, Subscription, EntityType.SUBSCRIPTION, "Abonnement")
        self.payments = ModelStore(db, SubscriptionPayment, EntityType.PAYMENT, "Paiement d'abonnement")
        self._now = clock or datetime.datetime.utcnow

    # ==================== BALAYAGES ====================

    def reset_all_entitlements(self) -> EntitlementResetReport:
        """
        Remet à NULL les champs de droits de tous les comptes

        Une seule instruction UPDATE: elle s'applique entièrement ou pas du
        tout, et n'est jamais rejouée ligne par ligne.
        """
        affected = self.accounts.update_many({field: None for field in ENTITLEMENT_FIELDS})
        logger.info("Droits réinitialisés pour %s comptes", affected)
        return EntitlementResetReport(accounts_reset=affected)

    def purge_subscriptions(self) -> PurgeReport:
        """
        Supprime tous les paiements, puis tous les abonnements, puis remet les droits à zéro

        L'ordre enfants → parents est obligatoire. Toute erreur est relevée
        telle quelle, sans nouvelle tentative.
        """
        payments_deleted = self.payments.delete_many()
        logger.info("%s paiements d'abonnement supprimés", payments_deleted)

        subscriptions_deleted = self.subscriptions.delete_many()
        logger.info("%s abonnements supprimés", subscriptions_deleted)

        reset = self.reset_all_entitlements()
        return PurgeReport(
            payments_deleted=payments_deleted,
            subscriptions_deleted=subscriptions_deleted,
            accounts_reset=reset.accounts_reset
        )

    def purge_pending_subscriptions(self) -> SweepReport:
        """
        Supprime les abonnements en attente (checkouts abandonnés) et leurs paiements

        Chaque abonnement est traité et validé séparément; un échec est
        consigné dans le rapport et le balayage continue.
        """
        report = SweepReport(operation="purge_pending_subscriptions", counters={"payments_deleted": 0})

        pending_ids = [
            subscription.id
            for subscription in self.subscriptions.find_many(filters={"status": SubscriptionStatus.pending})
        ]
        report.processed = len(pending_ids)

        for subscription_id in pending_ids:
            payments_deleted = 0
            try:
                payments_deleted = self.payments.delete_many(filters={"subscription_id": subscription_id})
                self.subscriptions.delete(subscription_id)
            except MaintenanceError as e:
                # Les paiements déjà supprimés restent supprimés: le rapport le dit
                report.counters["payments_deleted"] += payments_deleted
                failure = SweepFailure.from_error(e, record_id=subscription_id)
                failure.details["payments_deleted"] = payments_deleted
                report.failures.append(failure)
                logger.warning(
                    "Abonnement %s non supprimé (%s paiements déjà supprimés): %s",
                    subscription_id, payments_deleted, e.error_code.value
                )
                continue

            report.counters["payments_deleted"] += payments_deleted
            report.succeeded.append(subscription_id)
            logger.info("Abonnement en attente %s supprimé (%s paiements)", subscription_id, payments_deleted)

        return report

    def find_conflicting_subscriptions(self) -> List[SubscriptionConflict]:
        """
        Comptes possédant plus d'un abonnement pending/active
        """
        open_subscriptions = self.subscriptions.find_many(
            filters={"status": list(NON_TERMINAL_STATUSES)}
        )

        by_account: Dict[int, List[int]] = defaultdict(list)
        for subscription in open_subscriptions:
            by_account[subscription.user_id].append(subscription.id)

        return [
            SubscriptionConflict(account_id=account_id, subscription_ids=subscription_ids)
            for account_id, subscription_ids in sorted(by_account.items())
            if len(subscription_ids) > 1
        ]

    # ==================== MACHINE À ÉTATS ====================

    def open_checkout(
        self,
        account_id: int,
        plan: Optional[SubscriptionPlan] = None,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None
    ) -> Subscription:
        """
        Crée un abonnement pending, sauf si le compte en a déjà un pending ou actif
        """
        self.accounts.get_or_raise(account_id)

        open_ids = [
            subscription.id
            for subscription in self.subscriptions.find_many(
                filters={"user_id": account_id, "status": list(NON_TERMINAL_STATUSES)}
            )
        ]
        if open_ids:
            raise SubscriptionConflictError(
                details={"account_id": account_id, "subscription_ids": open_ids}
            )

        return self.subscriptions.create({
            "user_id": account_id,
            "status": SubscriptionStatus.pending,
            "plan": plan or SubscriptionPlan(DEFAULT_SUBSCRIPTION_PLAN),
            "amount": Decimal(str(amount if amount is not None else DEFAULT_SUBSCRIPTION_AMOUNT)),
            "currency": currency or DEFAULT_CURRENCY,
        })

    def transition(self, subscription_id: int, target: SubscriptionStatus, extra: Dict = None) -> Subscription:
        """
        Applique une transition de statut autorisée par ALLOWED_TRANSITIONS
        """
        subscription = self.subscriptions.get_or_raise(subscription_id)
        current = SubscriptionStatus(subscription.status)

        if not can_transition(current, target):
            raise InvalidTransitionError(
                f"Transition interdite: {current.value} → {SubscriptionStatus(target).value}",
                details={
                    "subscription_id": subscription_id,
                    "current": current.value,
                    "target": SubscriptionStatus(target).value
                }
            )

        data = {"status": target}
        if extra:
            data.update(extra)
        return self.subscriptions.update(subscription_id, data)

    def activate(self, subscription_id: int, amount: Optional[Decimal] = None) -> Subscription:
        """
        pending → active: ouvre la période, enregistre le premier paiement
        et synchronise les droits du compte
        """
        now = self._now()
        period_end = now + datetime.timedelta(days=BILLING_PERIOD_DAYS)

        subscription = self.transition(
            subscription_id,
            SubscriptionStatus.active,
            {"start_date": now, "end_date": period_end}
        )
        self._record_payment_row(subscription, amount, now)

        self.accounts.update(subscription.user_id, {
            "subscription_status": AccountSubscriptionStatus.active,
            "subscription_plan": subscription.plan,
            "subscription_start_date": now,
            "subscription_end_date": period_end,
            "last_payment_date": now,
            "next_payment_date": period_end,
        })
        return subscription

    def record_payment(self, subscription_id: int, amount: Optional[Decimal] = None) -> SubscriptionPayment:
        """
        Enregistre le paiement d'un nouveau cycle et prolonge la période
        """
        subscription = self.subscriptions.get_or_raise(subscription_id)
        if SubscriptionStatus(subscription.status) != SubscriptionStatus.active:
            raise InvalidTransitionError(
                "Paiement refusé: l'abonnement n'est pas actif",
                details={"subscription_id": subscription_id, "current": SubscriptionStatus(subscription.status).value}
            )

        now = self._now()
        period_start = max(subscription.end_date or now, now)
        period_end = period_start + datetime.timedelta(days=BILLING_PERIOD_DAYS)

        payment = self._record_payment_row(subscription, amount, now)
        self.subscriptions.update(subscription_id, {"end_date": period_end})
        self.accounts.update(subscription.user_id, {
            "subscription_end_date": period_end,
            "last_payment_date": now,
            "next_payment_date": period_end,
        })
        return payment

    def cancel(self, subscription_id: int) -> Subscription:
        """pending|active → cancelled"""
        was_active = self._is_active(subscription_id)
        subscription = self.transition(
            subscription_id,
            SubscriptionStatus.cancelled,
            {"cancelled_at": self._now()}
        )
        if was_active:
            self.accounts.update(subscription.user_id, {
                "subscription_status": AccountSubscriptionStatus.cancelled,
                "next_payment_date": None,
            })
        return subscription

    def expire(self, subscription_id: int) -> Subscription:
        """active → expired"""
        subscription = self.transition(subscription_id, SubscriptionStatus.expired)
        self.accounts.update(subscription.user_id, {
            "subscription_status": AccountSubscriptionStatus.expired,
            "next_payment_date": None,
        })
        return subscription

    # ==================== INTERNE ====================

    def _is_active(self, subscription_id: int) -> bool:
        subscription = self.subscriptions.get_or_raise(subscription_id)
        return SubscriptionStatus(subscription.status) == SubscriptionStatus.active

    def _record_payment_row(self, subscription: Subscription, amount: Optional[Decimal], paid_at) -> SubscriptionPayment:
        return self.payments.create({
            "subscription_id": subscription.id,
            "amount": Decimal(str(amount)) if amount is not None else subscription.amount,
            "currency": subscription.currency,
            "status": PaymentStatus.SUCCEEDED,
            "paid_at": paid_at,
        })
