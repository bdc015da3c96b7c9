import logging
from typing import Optional, Dict, Any
from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, select, or_
from sqlalchemy.orm import selectinload
from expenseflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from expenseflow.models.approval.approval import Approval
from expenseflow.models.auth.user import User
from expenseflow.models.expense.expense import Expense
from expenseflow.models.shared.enums import UserRole
from expenseflow.schemas.auth.user_schema import UserCreate, UserResponse, UserUpdate

logger = logging.getLogger(__name__)

class UserService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user(self, user_id: int) -> Optional[User]:
        """Get user by ID"""
        result = await self.session.execute(
            select(User).where(
                User.id == user_id,
                User.is_deleted == False
            )
        )
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email"""
        result = await self.session.execute(
            select(User).where(
                User.email == email,
                User.is_deleted == False
            )
        )
        return result.scalar_one_or_none()

    async def _get_company_user(self, company_id: int, user_id: int) -> User:
        result = await self.session.execute(
            select(User)
            .options(selectinload(User.manager))
            .where(
                User.id == user_id,
                User.company_id == company_id,
                User.is_deleted == False
            )
            .execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if not user:
            raise NotFoundError("User not found")
        return user

    async def _validate_manager(self, company_id: int, manager_id: int, user_id: Optional[int] = None):
        if user_id is not None and manager_id == user_id:
            raise ValidationError("A user cannot be their own manager")

        manager = await self.session.scalar(
            select(User.id).where(
                User.id == manager_id,
                User.company_id == company_id,
                User.is_deleted == False
            )
        )
        if manager is None:
            raise ValidationError("Manager must be a user of the same company")

    async def get_user_response(self, company_id: int, user_id: int) -> UserResponse:
        user = await self._get_company_user(company_id, user_id)
        return UserResponse.model_validate(user, from_attributes=True)

    async def list_users(
        self,
        company_id: int,
        page_index: int = 1,
        page_size: int = 100,
        role: Optional[UserRole] = None,
        search: Optional[str] = None
    ) -> Dict[str, Any]:
        """Get paginated company users with filtering"""
        conditions = [User.company_id == company_id, User.is_deleted == False]
        if role:
            conditions.append(User.role == role)
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

        total_count = await self.session.scalar(
            select(func.count(User.id)).where(*conditions)
        )

        skip = (page_index - 1) * page_size
        result = await self.session.execute(
            select(User)
            .options(selectinload(User.manager))
            .where(*conditions)
            .order_by(User.created_at.desc(), User.id.desc())
            .offset(skip)
            .limit(page_size)
        )
        users = result.scalars().all()

        return {
            "page_index": page_index,
            "page_size": page_size,
            "count": total_count or 0,
            "data": [UserResponse.model_validate(u, from_attributes=True) for u in users]
        }

    async def create_user(self, company_id: int, user_create: UserCreate, created_by: Optional[int] = None) -> UserResponse:
        """Create a company user; MANAGER accounts approve for their reports unless told otherwise"""
        try:
            if await self.get_user_by_email(user_create.email):
                raise ConflictError("Email already registered")

            if user_create.manager_id is not None:
                await self._validate_manager(company_id, user_create.manager_id)

            is_manager_approver = user_create.is_manager_approver
            if is_manager_approver is None:
                is_manager_approver = user_create.role == UserRole.MANAGER

            user = User(
                email=user_create.email,
                name=user_create.name,
                role=user_create.role,
                company_id=company_id,
                manager_id=user_create.manager_id,
                is_manager_approver=is_manager_approver,
                is_active=True,
                created_by=created_by
            )
            self.session.add(user)
            await self.session.commit()

            logger.info(f"👤 User {user.email} ({user.role.value}) created in company {company_id} by {created_by}")
            return await self.get_user_response(company_id, user.id)

        except HTTPException:
            await self.session.rollback()
            raise
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Error creating user: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error creating user"
            )

    async def update_user(
        self,
        company_id: int,
        user_id: int,
        user_update: UserUpdate,
        updated_by: Optional[int] = None
    ) -> UserResponse:
        try:
            user = await self._get_company_user(company_id, user_id)

            if user_update.email is not None and user_update.email != user.email:
                if await self.get_user_by_email(user_update.email):
                    raise ConflictError("Email already registered")
                user.email = user_update.email

            if user_update.name is not None:
                user.name = user_update.name
            if user_update.role is not None:
                user.role = user_update.role
            if user_update.is_manager_approver is not None:
                user.is_manager_approver = user_update.is_manager_approver
            if user_update.is_active is not None:
                if not user_update.is_active and user.id == updated_by:
                    raise ValidationError("You cannot deactivate your own account")
                user.is_active = user_update.is_active

            if user_update.clear_manager:
                user.manager_id = None
            elif user_update.manager_id is not None:
                await self._validate_manager(company_id, user_update.manager_id, user.id)
                user.manager_id = user_update.manager_id

            user.updated_by = updated_by
            await self.session.commit()

            logger.info(f"User {user_id} updated by {updated_by}")
            return await self.get_user_response(company_id, user_id)

        except HTTPException:
            await self.session.rollback()
            raise
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Error updating user {user_id}: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error updating user"
            )

    async def delete_user(self, company_id: int, user_id: int, deleted_by: int) -> bool:
        """Soft-delete a user with no expense or approval history"""
        try:
            if user_id == deleted_by:
                raise ValidationError("You cannot delete your own account")

            user = await self._get_company_user(company_id, user_id)

            expense_count = await self.session.scalar(
                select(func.count(Expense.id)).where(Expense.employee_id == user_id)
            )
            approval_count = await self.session.scalar(
                select(func.count(Approval.id)).where(Approval.approver_id == user_id)
            )
            if expense_count or approval_count:
                raise ValidationError("Cannot delete a user with expenses or approvals; deactivate them instead")

            user.is_deleted = True
            user.is_active = False
            user.updated_by = deleted_by
            await self.session.commit()

            logger.info(f"🗑️ User {user_id} deleted by {deleted_by}")
            return True

        except HTTPException:
            await self.session.rollback()
            raise
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Error deleting user {user_id}: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error deleting user"
            )
