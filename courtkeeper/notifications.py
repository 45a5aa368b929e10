"""Best-effort notifications for match lifecycle events.

Nothing in this module raises: a failed notification is logged and the
calling workflow carries on.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Optional

from flask import has_app_context

from courtkeeper.core.constants import NOTIFICATIONS_COLLECTION, USERS_COLLECTION
from courtkeeper.core.transactions import utcnow
from courtkeeper.utils import EmailError, send_email

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client

logger = logging.getLogger(__name__)


def notify_users(
    db: Client,
    user_ids: Iterable[str],
    title: str,
    message: str,
    kind: str,
    match_id: Optional[str] = None,
) -> int:
    """Write an in-app notification for each user and return how many landed."""
    delivered = 0
    for user_id in {uid for uid in user_ids if uid}:
        try:
            db.collection(USERS_COLLECTION).document(user_id).collection(
                NOTIFICATIONS_COLLECTION
            ).add(
                {
                    "title": title,
                    "message": message,
                    "type": kind,
                    "matchId": match_id,
                    "read": False,
                    "createdAt": utcnow(),
                }
            )
            delivered += 1
        except Exception as e:
            logger.error(f"Notification to {user_id} failed ({kind}): {e}")
    return delivered


def email_organizer(
    db: Client, organizer_id: Optional[str], subject: str, body: str
) -> bool:
    """Email the tournament organizer if an address is on file."""
    if not organizer_id or not has_app_context():
        return False
    try:
        doc = db.collection(USERS_COLLECTION).document(organizer_id).get()
        email = (doc.to_dict() or {}).get("email") if doc.exists else None
        if not email:
            return False
        send_email(email, subject, body)
    except EmailError as e:
        logger.error(f"Email to organizer {organizer_id} failed: {e}")
        return False
    except Exception as e:
        logger.error(f"Could not look up organizer {organizer_id}: {e}")
        return False
    return True
