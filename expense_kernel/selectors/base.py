"""
Module: expense_kernel.selectors.base
Responsibility: Base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/ DTOs.  Selectors NEVER create, modify or delete data and never
    manage their own session; the caller owns the transaction.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from expense_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Selectors take a caller-owned Session and return DTOs, not ORM rows."""

    def __init__(self, session: Session):
        self.session = session
