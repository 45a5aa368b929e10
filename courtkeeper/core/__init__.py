"""Core module for the courtkeeper application."""

from .types import FirestoreDocument

__all__ = ["FirestoreDocument"]
