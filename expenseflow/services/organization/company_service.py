import logging
from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from expenseflow.core.exceptions import NotFoundError
from expenseflow.models.approval.approval_flow import ApprovalFlow
from expenseflow.models.auth.user import User
from expenseflow.models.organization.company import Company
from expenseflow.schemas.organization.company_schema import CompanyResponse, CompanyUpdate

logger = logging.getLogger(__name__)


class CompanyService:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ---------- Getters ----------
    async def _get_company_model(self, company_id: int) -> Company:
        result = await self.session.execute(
            select(Company).where(
                Company.id == company_id,
                Company.is_deleted == False
            )
        )
        company = result.scalar_one_or_none()
        if not company:
            raise NotFoundError("Company not found")
        return company

    async def get_company(self, company_id: int) -> CompanyResponse:
        company = await self._get_company_model(company_id)

        members = await self.session.scalar(
            select(func.count(User.id)).where(User.company_id == company_id, User.is_deleted == False)
        )
        flows = await self.session.scalar(
            select(func.count(ApprovalFlow.id)).where(
                ApprovalFlow.company_id == company_id,
                ApprovalFlow.is_deleted == False
            )
        )

        return CompanyResponse(
            id=company.id,
            name=company.name,
            country=company.country,
            currency=company.currency,
            created_at=company.created_at,
            members=members or 0,
            approval_flows=flows or 0
        )

    # ---------- Update ----------
    async def update_company(self, company_id: int, data: CompanyUpdate, updated_by: int) -> CompanyResponse:
        try:
            company = await self._get_company_model(company_id)

            for field, value in data.model_dump(exclude_unset=True).items():
                if value is not None:
                    setattr(company, field, value)
            company.updated_by = updated_by

            await self.session.commit()
            logger.info(f"Company {company_id} profile updated by user {updated_by}")
            return await self.get_company(company_id)

        except HTTPException:
            raise
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Error updating company {company_id}: {e}")
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error updating company")
