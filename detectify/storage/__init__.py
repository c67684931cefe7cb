"""Storage modules for Detectify."""

from .database import Database

__all__ = ["Database"]
