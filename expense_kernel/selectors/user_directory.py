"""
SQL-backed ``UserDirectory`` for approver resolution.

Role lookups return active users oldest first (``created_at``, then id as
a string) so that "first user with role X" is reproducible.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select

from expense_kernel.domain.workflow import DirectoryUser
from expense_kernel.models.user import User
from expense_kernel.selectors.base import BaseSelector


class SqlUserDirectory(BaseSelector[User]):
    def get_user(self, user_id: UUID) -> DirectoryUser | None:
        user = self.session.get(User, user_id)
        return user.to_directory_user() if user is not None else None

    def find_active_by_role(self, company_id: UUID, role: str) -> Sequence[DirectoryUser]:
        users = self.session.execute(
            select(User)
            .where(
                User.company_id == company_id,
                User.role == role,
                User.is_active.is_(True),
            )
            .order_by(User.created_at, User.id)
        ).scalars().all()
        return tuple(user.to_directory_user() for user in users)
