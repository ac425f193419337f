#!/usr/bin/env python
"""
Reconcile Checkouts

Re-runs the subscription upsert for completed checkouts that never produced a
Subscription row (for example when the database write after payment failed).
Safe to run repeatedly; the Stripe subscription id is the upsert key, or the
checkout id when Stripe returned no subscription.

Usage:
    python scripts/reconcile_checkouts.py [--dry-run]

Arguments:
    --dry-run    Only log what would happen, don't make changes
"""
import sys
import os
import logging
import argparse

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from db.init import SessionLocal
from models.subscription import CheckoutSession, CheckoutStatus, Subscription
from utils.checkout_logic import upsert_subscription_from_checkout

logger = logging.getLogger(__name__)


def find_unsynced_checkouts(db: Session):
    synced_stripe_ids = select(Subscription.stripe_subscription_id).where(
        Subscription.stripe_subscription_id.isnot(None)
    )
    synced_checkout_ids = select(Subscription.checkout_session_id).where(
        Subscription.checkout_session_id.isnot(None)
    )
    return db.query(CheckoutSession).filter(
        CheckoutSession.status == CheckoutStatus.COMPLETED,
        or_(
            and_(
                CheckoutSession.stripe_subscription_id.isnot(None),
                CheckoutSession.stripe_subscription_id.notin_(synced_stripe_ids),
            ),
            and_(
                CheckoutSession.stripe_subscription_id.is_(None),
                CheckoutSession.id.notin_(synced_checkout_ids),
            ),
        ),
    ).order_by(CheckoutSession.id).all()


def reconcile_checkouts(db: Session, dry_run: bool = False) -> dict:
    results = {"synced": [], "errors": []}
    for record in find_unsynced_checkouts(db):
        if dry_run:
            logger.info(f"[DRY RUN] Would sync checkout {record.id} -> {record.stripe_subscription_id or 'no Stripe subscription'}")
            results["synced"].append(record.id)
            continue
        try:
            subscription = upsert_subscription_from_checkout(db, record)
            logger.info(f"Synced checkout {record.id} into subscription {subscription.id}")
            results["synced"].append(record.id)
        except Exception as e:
            db.rollback()
            logger.exception(f"Failed to sync checkout {record.id}")
            results["errors"].append(f"Checkout {record.id}: {e}")
    return results


def main(argv=None):
    parser = argparse.ArgumentParser(description='Create missing subscriptions for completed checkouts')
    parser.add_argument('--dry-run', action='store_true', help='Only log changes, do not apply them')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger.info("=" * 60)
    logger.info("CHECKOUT RECONCILIATION")
    logger.info("=" * 60)

    if args.dry_run:
        logger.info("*** DRY RUN MODE - No changes will be made ***")

    db = SessionLocal()
    try:
        results = reconcile_checkouts(db, dry_run=args.dry_run)
    finally:
        db.close()

    logger.info("-" * 60)
    logger.info(f"Checkouts synced: {len(results['synced'])}")
    logger.info(f"Errors:           {len(results['errors'])}")
    for err in results['errors']:
        logger.error(f"  - {err}")
    logger.info("=" * 60)

    return 0 if not results['errors'] else 1


if __name__ == "__main__":
    sys.exit(main())
