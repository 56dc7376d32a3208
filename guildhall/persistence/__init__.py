"""Persistence layer for Guildhall."""

from guildhall.persistence.database import Database

__all__ = ["Database"]
