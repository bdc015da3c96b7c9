import logging
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expenseflow.core.exceptions import ResolverError
from expenseflow.models.approval.approval_step import ApprovalStep
from expenseflow.models.auth.user import User
from expenseflow.models.shared.enums import ApproverType, UserRole

logger = logging.getLogger(__name__)


def no_approvers_warning(step: ApprovalStep) -> str:
    return (
        f"No approvers found for step {step.step_order} "
        f"({ApproverType(step.approver_type).value}:{step.approver_ref}); "
        f"the expense cannot advance until an admin escalates it"
    )


class ApproverResolver:
    """Turns a step's approver reference into concrete user ids of one company"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _active_users(self, company_id: int):
        return select(User.id).where(
            User.company_id == company_id,
            User.is_active == True,
            User.is_deleted == False
        )

    async def resolve(
        self,
        step: ApprovalStep,
        company_id: int,
        exclude_user_id: Optional[int] = None
    ) -> List[int]:
        """
        Resolve approvers for a step, sorted by user id.

        USER steps must point at an active user of the company, otherwise a
        ResolverError aborts the calling operation. ROLE steps may resolve to
        nothing; the caller decides how to surface that.
        """
        if step.approver_type == ApproverType.USER:
            try:
                user_id = int(step.approver_ref)
            except (TypeError, ValueError):
                raise ResolverError(f"Step {step.step_order} references invalid user id '{step.approver_ref}'")

            found = await self.session.scalar(
                self._active_users(company_id).where(User.id == user_id)
            )
            if found is None:
                logger.error(
                    f"Step {step.id} (flow {step.flow_id}) references user {user_id} "
                    f"who is not an active member of company {company_id}"
                )
                raise ResolverError(f"Step {step.step_order} references unknown user {user_id}")

            if exclude_user_id is not None and user_id == exclude_user_id:
                return []
            return [user_id]

        try:
            role = UserRole(step.approver_ref)
        except ValueError:
            raise ResolverError(f"Step {step.step_order} references unknown role '{step.approver_ref}'")

        query = self._active_users(company_id).where(User.role == role)
        if exclude_user_id is not None:
            query = query.where(User.id != exclude_user_id)

        result = await self.session.execute(query.order_by(User.id))
        return list(result.scalars().all())

    async def find_fallback_admin(self, company_id: int, exclude_user_ids: Iterable[int]) -> Optional[int]:
        """Lowest-id active ADMIN of the company outside exclude_user_ids"""
        excluded = [uid for uid in exclude_user_ids if uid is not None]

        query = self._active_users(company_id).where(User.role == UserRole.ADMIN)
        if excluded:
            query = query.where(User.id.notin_(excluded))

        return await self.session.scalar(query.order_by(User.id).limit(1))
