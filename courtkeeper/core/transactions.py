"""Helpers for running Firestore transactions."""

from __future__ import annotations

import datetime
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from firebase_admin import firestore

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client


def run_in_transaction(db: Client, func: Callable[..., Any], *args: Any) -> Any:
    """Run func(transaction, *args) in a Firestore transaction and return its result.

    Reads inside func must pass ``transaction=`` so Firestore retries the
    whole function when a document it read changes before commit.
    """
    transaction = db.transaction()
    return firestore.transactional(func)(transaction, *args)


def utcnow() -> datetime.datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)
