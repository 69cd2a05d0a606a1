from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Enum, DateTime, Text, Numeric, Index
from sqlalchemy.orm import relationship
from database import Base
import datetime

# Import centralisé des enums
from enums import (
    UserRole, AccountSubscriptionStatus, SubscriptionPlan,
    SubscriptionStatus, PaymentStatus, ActionType, EntityType
)


class Account(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)  # Toujours en minuscules
    password_hash = Column(String(255), nullable=False)
    name = Column(String(255))
    company_name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    company_address = Column(String(500), nullable=True)
    role = Column(Enum(UserRole), default=UserRole.standard, nullable=False)
    is_email_verified = Column(Boolean, default=False)

    # Droits (tous NULL tant qu'aucun abonnement n'a été accordé)
    subscription_status = Column(Enum(AccountSubscriptionStatus), nullable=True)
    subscription_plan = Column(Enum(SubscriptionPlan), nullable=True)
    subscription_start_date = Column(DateTime, nullable=True)
    subscription_end_date = Column(DateTime, nullable=True)
    trial_ends_at = Column(DateTime, nullable=True)
    last_payment_date = Column(DateTime, nullable=True)
    next_payment_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    # Pas de cascade: la suppression d'un compte abonné doit échouer
    subscriptions = relationship("Subscription", back_populates="account", passive_deletes="all")

    @property
    def entitlement_status(self) -> AccountSubscriptionStatus:
        return self.subscription_status or AccountSubscriptionStatus.none


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(Enum(SubscriptionStatus), default=SubscriptionStatus.pending, nullable=False)
    plan = Column(Enum(SubscriptionPlan), default=SubscriptionPlan.professional)

    amount = Column(Numeric(10, 2))
    currency = Column(String(3))

    # Bornes de la période de facturation courante
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)

    account = relationship("Account", back_populates="subscriptions")
    payments = relationship("SubscriptionPayment", back_populates="subscription", passive_deletes="all")

    __table_args__ = (
        Index('idx_subscription_user_status', 'user_id', 'status'),
    )


class SubscriptionPayment(Base):
    __tablename__ = "subscription_payments"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=False)
    amount = Column(Numeric(10, 2))
    currency = Column(String(3))
    status = Column(Enum(PaymentStatus), default=PaymentStatus.SUCCEEDED)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    subscription = relationship("Subscription", back_populates="payments")


class Apartment(Base):
    __tablename__ = "apartments"

    id = Column(Integer, primary_key=True, index=True)
    # Clé métier issue de l'annonce source; non unique en base (ingestions répétées)
    unique_id = Column(String(255), index=True)
    building_id = Column(Integer, nullable=True)
    floor = Column(Integer, nullable=True)
    apartment_letter = Column(String(10), nullable=True)
    nomenclature = Column(String(100), nullable=True)
    area = Column(Numeric(8, 2), nullable=True)
    rooms = Column(Integer, nullable=True)
    status = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    documents = relationship("Document", back_populates="apartment", passive_deletes="all")


class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255))
    file_url = Column(String(1000), nullable=False)
    file_type = Column(String(100), nullable=True)
    apartment_id = Column(Integer, ForeignKey("apartments.id"), nullable=True)
    uploaded_at = Column(DateTime, default=datetime.datetime.utcnow)

    apartment = relationship("Apartment", back_populates="documents")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(Enum(ActionType))  # Type d'action effectuée
    entity_type = Column(Enum(EntityType))  # Type d'entité concernée
    entity_id = Column(Integer, nullable=True)  # Sans clé étrangère: survit à l'entité
    description = Column(String(500))
    details = Column(Text, nullable=True)  # Détails JSON (jamais de secrets)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
