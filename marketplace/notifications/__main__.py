"""
Worker de l'outbox des notifications.

Usage:
    python -m marketplace.notifications          # boucle (OUTBOX_POLL_SECONDS)
    python -m marketplace.notifications --once   # un seul lot puis sortie
"""
import argparse
import logging

from marketplace.config import LOG_LEVEL
from marketplace.infra.supabase_client import create_service_client
from marketplace.notifications.sender import build_sender
from marketplace.notifications.worker import dispatch_pending, run_forever

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Envoi des notifications en attente (notification_outbox)")
    parser.add_argument("--once", action="store_true", help="traite un seul lot puis s'arrête")
    args = parser.parse_args()

    logging.basicConfig(level=LOG_LEVEL.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")
    db = create_service_client()
    sender = build_sender()
    if args.once:
        dispatch_pending(db, sender)
    else:
        run_forever(db, sender)
