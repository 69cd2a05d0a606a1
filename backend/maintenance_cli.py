#!/usr/bin/env python3
"""
Outils de maintenance InmoDash en ligne de commande
Usage: inmodash-maintenance <commande> [options]

Toutes les connexions viennent de DATABASE_URL (et BACKEND_URL pour les URLs
de documents). Les mots de passe sont saisis avec getpass ou lus dans une
variable d'environnement nommée, jamais passés en argument.
"""
import argparse
import json
import logging
import os
import sys
from getpass import getpass
from typing import List, Optional

from pydantic import ValidationError

from app_config import MaintenanceSettings
from constants import APP_NAME, APP_VERSION, RELATIVE_UPLOAD_PREFIX
from database import create_db_engine, init_db, session_scope
from enums import AccountSubscriptionStatus, SubscriptionPlan, UserRole
from error_handlers import ConfigurationError, MaintenanceError
from services.account_service import AccountService
from services.reconciliation_service import RECONCILIATION_TARGETS, DuplicateReconciler, get_target
from services.reference_normalizer import ReferenceNormalizer
from services.subscription_service import SubscriptionService

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIGURATION = 2


# ==================== SAISIE ====================

def confirm(args, message: str) -> bool:
    """Demande confirmation (y/N), sauf avec --yes"""
    if getattr(args, "yes", False):
        return True
    response = input(f"{message} (y/N): ")
    return response.strip().lower() in ['y', 'yes', 'o', 'oui']


def read_password(args) -> Optional[str]:
    """
    Lit le mot de passe depuis la variable nommée par --password-env,
    sinon le demande deux fois sans écho
    """
    if args.password_env:
        password = os.getenv(args.password_env)
        if not password:
            raise ConfigurationError(
                f"La variable d'environnement {args.password_env} est vide ou absente",
                details={"variable": args.password_env}
            )
        return password

    password = getpass("   Mot de passe (8 caractères min): ")
    confirm_password = getpass("   Confirmer le mot de passe: ")
    if password != confirm_password:
        print("   [ERROR] Les mots de passe ne correspondent pas")
        return None
    return password


def print_validation_errors(error: ValidationError):
    # Jamais la valeur saisie: elle peut contenir le mot de passe
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"])
        print(f"   [ERROR] {location}: {detail['msg']}")


def print_failures(failures) -> None:
    if not failures:
        return
    print(f"\n[WARNING] {len(failures)} échec(s):")
    for index, failure in enumerate(failures, start=1):
        target = failure.record_id if failure.record_id is not None else failure.key
        print(f"   {index}. {target} - {failure.error_code}: {failure.message}")
        for table in failure.details.get("referencing_tables", []):
            print(f"      - référencé par: {table}")


def account_attributes(args, password: str) -> dict:
    status = None if args.status == AccountSubscriptionStatus.none.value else args.status
    return {
        "password": password,
        "name": args.name,
        "company_name": args.company,
        "phone": args.phone,
        "company_address": args.address,
        "role": args.role,
        "is_email_verified": args.verified,
        "subscription_status": status,
        "subscription_plan": args.plan,
    }


def print_account(account):
    print(f"   - ID: {account.id}")
    print(f"   - Email: {account.email}")
    print(f"   - Nom: {account.name}")
    print(f"   - Statut: {account.entitlement_status.value}")
    if account.trial_ends_at:
        print(f"   - Fin de la période: {account.trial_ends_at:%Y-%m-%d}")


# ==================== COMPTES ====================

def cmd_init_db(args, settings: MaintenanceSettings) -> int:
    print("=== CRÉATION DES TABLES ===")
    engine = create_db_engine(settings.database_url)
    try:
        init_db(engine)
    finally:
        engine.dispose()
    print("[OK] Tables créées")
    return EXIT_OK


def cmd_ensure_account(args, settings: MaintenanceSettings) -> int:
    print("=== CRÉATION DE COMPTE ===")
    password = read_password(args)
    if password is None:
        return EXIT_FAILURES

    with session_scope(settings) as db:
        service = AccountService(db, settings)
        existing = service.find_account(args.email)
        try:
            account = service.ensure_account(args.email, account_attributes(args, password))
        except ValidationError as e:
            print_validation_errors(e)
            return EXIT_FAILURES

        if existing:
            print("[INFO] Le compte existe déjà, aucune modification")
        else:
            print("[OK] Compte créé")
        print_account(account)
    return EXIT_OK


def cmd_recreate_account(args, settings: MaintenanceSettings) -> int:
    print("=== RECRÉATION DE COMPTE ===")
    if settings.is_production:
        print("[ERROR] Recréation de compte interdite en production")
        return EXIT_FAILURES
    if not confirm(args, f"Supprimer puis recréer le compte {args.email} ?"):
        print("[INFO] Opération annulée")
        return EXIT_OK

    password = read_password(args)
    if password is None:
        return EXIT_FAILURES

    with session_scope(settings) as db:
        try:
            result = AccountService(db, settings).recreate_account(
                args.email, account_attributes(args, password)
            )
        except ValidationError as e:
            print_validation_errors(e)
            return EXIT_FAILURES

        if result.replaced_existing:
            print(f"[INFO] Ancien compte supprimé (ID: {result.deleted_account_id})")
        print("[OK] Compte recréé")
        print_account(result.account)
    return EXIT_OK


def cmd_create_test_users(args, settings: MaintenanceSettings) -> int:
    print("=== CRÉATION DES COMPTES DE TEST ===")
    try:
        with open(args.file, encoding="utf-8") as f:
            entries = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"[ERROR] Lecture de {args.file} impossible: {e}")
        return EXIT_FAILURES
    if not isinstance(entries, list):
        print("[ERROR] Le fichier doit contenir une liste de comptes")
        return EXIT_FAILURES

    with session_scope(settings) as db:
        report = AccountService(db, settings).ensure_accounts(entries)

    for email in report.succeeded:
        print(f"   [OK] {email} créé")
    for email in report.skipped:
        print(f"   [INFO] {email} existe déjà")
    print(f"\nTotal: {report.processed} | créés: {len(report.succeeded)} | existants: {len(report.skipped)}")
    print_failures(report.failures)
    return EXIT_FAILURES if report.has_failures else EXIT_OK


def cmd_list_accounts(args, settings: MaintenanceSettings) -> int:
    print("=== COMPTES ===")
    with session_scope(settings) as db:
        accounts = AccountService(db, settings).list_accounts()

    if not accounts:
        print("Aucun compte")
        return EXIT_OK

    for account in accounts:
        plan = account.subscription_plan.value if account.subscription_plan else "-"
        print(f"   {account.id:>5}  {account.email:<40} {account.role.value:<9} "
              f"{account.entitlement_status.value:<10} {plan}")
    print(f"\nTotal: {len(accounts)} compte(s)")
    return EXIT_OK


def cmd_rotate_password(args, settings: MaintenanceSettings) -> int:
    print("=== CHANGEMENT DE MOT DE PASSE ===")
    password = read_password(args)
    if password is None:
        return EXIT_FAILURES

    with session_scope(settings) as db:
        try:
            account = AccountService(db, settings).rotate_credential(args.email, password)
        except ValidationError as e:
            print_validation_errors(e)
            return EXIT_FAILURES
        print(f"[OK] Mot de passe mis à jour pour {account.email}")
    return EXIT_OK


# ==================== ABONNEMENTS ====================

def cmd_reset_entitlements(args, settings: MaintenanceSettings) -> int:
    print("=== RÉINITIALISATION DES DROITS ===")
    if not confirm(args, "Remettre à zéro les droits de TOUS les comptes ?"):
        print("[INFO] Opération annulée")
        return EXIT_OK

    with session_scope(settings) as db:
        report = SubscriptionService(db).reset_all_entitlements()
    print(f"[OK] {report.accounts_reset} compte(s) réinitialisé(s)")
    return EXIT_OK


def cmd_purge_subscriptions(args, settings: MaintenanceSettings) -> int:
    print("=== SUPPRESSION DES ABONNEMENTS ===")
    if not confirm(args, "Supprimer TOUS les abonnements et paiements ?"):
        print("[INFO] Opération annulée")
        return EXIT_OK

    with session_scope(settings) as db:
        report = SubscriptionService(db).purge_subscriptions()
    print(f"   {report.payments_deleted} paiement(s) supprimé(s)")
    print(f"   {report.subscriptions_deleted} abonnement(s) supprimé(s)")
    print(f"   {report.accounts_reset} compte(s) réinitialisé(s)")
    print("[OK] Purge terminée")
    return EXIT_OK


def cmd_purge_pending(args, settings: MaintenanceSettings) -> int:
    print("=== SUPPRESSION DES ABONNEMENTS EN ATTENTE ===")
    if not confirm(args, "Supprimer les abonnements en attente ?"):
        print("[INFO] Opération annulée")
        return EXIT_OK

    with session_scope(settings) as db:
        report = SubscriptionService(db).purge_pending_subscriptions()

    if report.processed == 0:
        print("[INFO] Aucun abonnement en attente")
        return EXIT_OK
    print(f"[OK] {len(report.succeeded)}/{report.processed} abonnement(s) supprimé(s) "
          f"({report.counters.get('payments_deleted', 0)} paiement(s))")
    print_failures(report.failures)
    return EXIT_FAILURES if report.has_failures else EXIT_OK


def cmd_check_subscriptions(args, settings: MaintenanceSettings) -> int:
    print("=== VÉRIFICATION DES ABONNEMENTS ===")
    with session_scope(settings) as db:
        conflicts = SubscriptionService(db).find_conflicting_subscriptions()

    if not conflicts:
        print("[OK] Au plus un abonnement en attente ou actif par compte")
        return EXIT_OK

    print(f"[WARNING] {len(conflicts)} compte(s) en conflit:")
    for conflict in conflicts:
        ids = ", ".join(str(subscription_id) for subscription_id in conflict.subscription_ids)
        print(f"   - compte {conflict.account_id}: abonnements {ids}")
    return EXIT_FAILURES


# ==================== BIENS ET DOCUMENTS ====================

def cmd_clean_duplicates(args, settings: MaintenanceSettings) -> int:
    print(f"=== NETTOYAGE DES DOUBLONS ({args.entity}) ===")
    target = get_target(args.entity)

    with session_scope(settings) as db:
        reconciler = DuplicateReconciler(db, target)
        preview = reconciler.find_duplicate_groups()

        print(f"Enregistrements: {preview.total_records}")
        print(f"Groupes de doublons: {preview.duplicate_group_count}")
        for group in preview.groups:
            print(f"   - {group.business_key}: {group.duplicate_count} enregistrements, "
                  f"conservé {group.kept_id}, à supprimer {group.removed_ids}")

        if not preview.groups:
            print("[OK] Aucun doublon")
            return EXIT_OK
        if args.dry_run:
            print(f"[INFO] Simulation: {preview.removed_count} suppression(s) prévue(s)")
            return EXIT_OK
        if not confirm(args, f"Supprimer {preview.removed_count} doublon(s) ?"):
            print("[INFO] Opération annulée")
            return EXIT_OK

        report = reconciler.reconcile()

    print("\nRésultat par groupe:")
    for group in report.groups:
        removed = ", ".join(str(record_id) for record_id in group.removed_ids) or "aucun"
        print(f"   - {group.business_key}: conservé {group.kept_id}, supprimé(s) {removed}")
        for failure in group.failures:
            print(f"      [ERROR] {failure.record_id} non supprimé - {failure.error_code}")
    print(f"[OK] {report.removed_count} doublon(s) supprimé(s)")
    print_failures(report.failures)
    return EXIT_FAILURES if report.has_failures else EXIT_OK


def cmd_fix_document_urls(args, settings: MaintenanceSettings) -> int:
    print("=== CORRECTION DES URLS DE DOCUMENTS ===")
    base_origin = settings.require_backend_url()

    with session_scope(settings) as db:
        normalizer = ReferenceNormalizer(db, base_origin, prefix=args.prefix)
        pending = normalizer.pending_count()
        print(f"Origine: {normalizer.base_origin}")
        print(f"Documents à corriger: {pending}")

        if pending == 0:
            print("[OK] Aucune URL relative")
            return EXIT_OK
        if args.dry_run:
            print("[INFO] Simulation: aucune modification")
            return EXIT_OK
        if not confirm(args, f"Réécrire {pending} URL(s) ?"):
            print("[INFO] Opération annulée")
            return EXIT_OK

        report = normalizer.normalize()

    for record_id in report.updated_ids:
        print(f"   [OK] document {record_id} corrigé")
    print(f"[OK] {len(report.updated_ids)}/{report.processed} URL(s) corrigée(s)")
    print_failures(report.failures)
    return EXIT_FAILURES if report.has_failures else EXIT_OK


# ==================== PARSER ====================

def add_account_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("email", help="Email du compte")
    parser.add_argument("--name", required=True, help="Nom affiché")
    parser.add_argument("--company", help="Nom de l'agence")
    parser.add_argument("--phone", help="Téléphone")
    parser.add_argument("--address", help="Adresse de l'agence")
    parser.add_argument("--role", choices=[role.value for role in UserRole], default=UserRole.standard.value)
    parser.add_argument(
        "--status",
        choices=[AccountSubscriptionStatus.trialing.value, AccountSubscriptionStatus.active.value,
                 AccountSubscriptionStatus.none.value],
        default=AccountSubscriptionStatus.trialing.value,
        help="Droits initiaux (défaut: trialing)"
    )
    parser.add_argument("--plan", choices=[plan.value for plan in SubscriptionPlan])
    parser.add_argument("--verified", action="store_true", help="Marquer l'email comme vérifié")
    add_password_argument(parser)


def add_password_argument(parser: argparse.ArgumentParser):
    parser.add_argument(
        "--password-env",
        metavar="VAR",
        help="Variable d'environnement contenant le mot de passe (sinon saisie masquée)"
    )


def add_yes_argument(parser: argparse.ArgumentParser):
    parser.add_argument("--yes", "-y", action="store_true", help="Ne pas demander de confirmation")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inmodash-maintenance",
        description=f"{APP_NAME} {APP_VERSION}"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sub = subparsers.add_parser("init-db", help="Créer les tables manquantes")
    sub.set_defaults(handler=cmd_init_db)

    sub = subparsers.add_parser("ensure-account", help="Créer un compte s'il n'existe pas")
    add_account_arguments(sub)
    sub.set_defaults(handler=cmd_ensure_account)

    sub = subparsers.add_parser("recreate-account", help="Supprimer puis recréer un compte (hors production)")
    add_account_arguments(sub)
    add_yes_argument(sub)
    sub.set_defaults(handler=cmd_recreate_account)

    sub = subparsers.add_parser("create-test-users", help="Créer les comptes listés dans un fichier JSON")
    sub.add_argument("file", help="Fichier JSON: liste d'objets {email, name, password, ...}")
    sub.set_defaults(handler=cmd_create_test_users)

    sub = subparsers.add_parser("list-accounts", help="Lister les comptes et leurs droits")
    sub.set_defaults(handler=cmd_list_accounts)

    sub = subparsers.add_parser("rotate-password", help="Changer le mot de passe d'un compte")
    sub.add_argument("email", help="Email du compte")
    add_password_argument(sub)
    sub.set_defaults(handler=cmd_rotate_password)

    sub = subparsers.add_parser("reset-entitlements", help="Remettre à zéro les droits de tous les comptes")
    add_yes_argument(sub)
    sub.set_defaults(handler=cmd_reset_entitlements)

    sub = subparsers.add_parser("purge-subscriptions", help="Supprimer tous les abonnements et paiements")
    add_yes_argument(sub)
    sub.set_defaults(handler=cmd_purge_subscriptions)

    sub = subparsers.add_parser("purge-pending", help="Supprimer les abonnements en attente")
    add_yes_argument(sub)
    sub.set_defaults(handler=cmd_purge_pending)

    sub = subparsers.add_parser("check-subscriptions", help="Détecter les comptes avec plusieurs abonnements ouverts")
    sub.set_defaults(handler=cmd_check_subscriptions)

    sub = subparsers.add_parser("clean-duplicates", help="Supprimer les doublons d'une entité")
    sub.add_argument("--entity", choices=sorted(RECONCILIATION_TARGETS), default="apartments")
    sub.add_argument("--dry-run", action="store_true", help="Afficher les groupes sans rien supprimer")
    add_yes_argument(sub)
    sub.set_defaults(handler=cmd_clean_duplicates)

    sub = subparsers.add_parser("fix-document-urls", help="Rendre absolues les URLs relatives des documents")
    sub.add_argument("--prefix", default=RELATIVE_UPLOAD_PREFIX, help="Préfixe des URLs relatives (défaut: %(default)s)")
    sub.add_argument("--dry-run", action="store_true", help="Compter sans modifier")
    add_yes_argument(sub)
    sub.set_defaults(handler=cmd_fix_document_urls)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    # Progression enregistrement par enregistrement des services, sur stderr
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

    try:
        settings = MaintenanceSettings.from_env()
        return args.handler(args, settings)
    except ConfigurationError as e:
        print(f"[ERROR] {e.message}")
        return EXIT_CONFIGURATION
    except MaintenanceError as e:
        print(f"\n[ERROR] {e.error_code.value}: {e.message}")
        for table in e.details.get("referencing_tables", []):
            print(f"   - référencé par: {table}")
        return EXIT_FAILURES


if __name__ == "__main__":
    sys.exit(main())
