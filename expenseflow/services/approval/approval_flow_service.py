import logging
from typing import Any, Dict, List, Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from fastapi import HTTPException, status

from expenseflow.core.config import settings
from expenseflow.core.exceptions import NotFoundError, ValidationError
from expenseflow.models.approval.approval_flow import ApprovalFlow
from expenseflow.models.approval.approval_rule import ApprovalRule
from expenseflow.models.approval.approval_step import ApprovalStep
from expenseflow.models.auth.user import User
from expenseflow.models.shared.enums import ApproverType, RuleType
from expenseflow.schemas.approval.approval_flow_schema import (
    ApprovalFlowCreate, ApprovalFlowResponse, ApprovalFlowUpdate,
    ApprovalRuleCreate, ApprovalStepCreate
)

logger = logging.getLogger(__name__)

class ApprovalFlowService:
    def __init__(self, session: AsyncSession):
        self.session = session

    def _flow_query(self):
        return select(ApprovalFlow).options(
            selectinload(ApprovalFlow.steps),
            selectinload(ApprovalFlow.rules)
        )

    # region ========== Flow Lookup ==========

    async def get_active_flow(self, company_id: int) -> Optional[ApprovalFlow]:
        """
        The flow applied to new expenses of a company.

        Several flows may be active at once; the oldest one (by creation time,
        then id) wins unless FLOW_SELECTION_ORDER is 'newest'.
        """
        if settings.FLOW_SELECTION_ORDER == "newest":
            ordering = (ApprovalFlow.created_at.desc(), ApprovalFlow.id.desc())
        else:
            ordering = (ApprovalFlow.created_at.asc(), ApprovalFlow.id.asc())

        result = await self.session.execute(
            self._flow_query()
            .where(
                ApprovalFlow.company_id == company_id,
                ApprovalFlow.is_active == True,
                ApprovalFlow.is_deleted == False
            )
            .order_by(*ordering)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _get_flow_model(self, company_id: int, flow_id: int) -> ApprovalFlow:
        result = await self.session.execute(
            self._flow_query()
            .where(
                ApprovalFlow.id == flow_id,
                ApprovalFlow.company_id == company_id,
                ApprovalFlow.is_deleted == False
            )
            .execution_options(populate_existing=True)
        )
        flow = result.scalar_one_or_none()
        if not flow:
            raise NotFoundError("Approval flow not found")
        return flow

    async def get_flow(self, company_id: int, flow_id: int) -> ApprovalFlowResponse:
        flow = await self._get_flow_model(company_id, flow_id)
        return ApprovalFlowResponse.model_validate(flow, from_attributes=True)

    async def get_active_flow_response(self, company_id: int) -> Optional[ApprovalFlowResponse]:
        flow = await self.get_active_flow(company_id)
        if not flow:
            return None
        return ApprovalFlowResponse.model_validate(flow, from_attributes=True)

    async def list_flows(
        self,
        company_id: int,
        page_index: int = 1,
        page_size: int = 100,
        is_active: Optional[bool] = None
    ) -> Dict[str, Any]:
        """Get paginated flows, newest first"""
        conditions = [
            ApprovalFlow.company_id == company_id,
            ApprovalFlow.is_deleted == False
        ]
        if is_active is not None:
            conditions.append(ApprovalFlow.is_active == is_active)

        total_count = await self.session.scalar(
            select(func.count(ApprovalFlow.id)).where(*conditions)
        )

        skip = (page_index - 1) * page_size
        result = await self.session.execute(
            self._flow_query()
            .where(*conditions)
            .order_by(ApprovalFlow.created_at.desc(), ApprovalFlow.id.desc())
            .offset(skip)
            .limit(page_size)
        )
        flows = result.scalars().all()

        return {
            "page_index": page_index,
            "page_size": page_size,
            "count": total_count or 0,
            "data": [
                ApprovalFlowResponse.model_validate(flow, from_attributes=True)
                for flow in flows
            ]
        }

    # endregion

    # region ========== Definition Validation ==========

    async def _validate_company_users(self, company_id: int, user_ids: List[int], what: str):
        if not user_ids:
            return

        result = await self.session.execute(
            select(User.id).where(
                User.id.in_(user_ids),
                User.company_id == company_id,
                User.is_deleted == False
            )
        )
        found = set(result.scalars().all())
        missing = sorted(set(user_ids) - found)
        if missing:
            raise ValidationError(f"{what} references users outside this company: {missing}")

    async def _validate_definition(
        self,
        company_id: int,
        steps: List[ApprovalStepCreate],
        rules: List[ApprovalRuleCreate]
    ):
        step_users = [
            int(step.approver_ref) for step in steps
            if step.approver_type == ApproverType.USER
        ]
        await self._validate_company_users(company_id, step_users, "Approval step")

        rule_users = []
        for rule in rules:
            if rule.rule_type != RuleType.SPECIFIC_APPROVER:
                continue
            approver_id = rule.params.get("approver_id", rule.params.get("approverId"))
            try:
                rule_users.append(int(approver_id))
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid approver id in SPECIFIC_APPROVER rule: {approver_id!r}")
        await self._validate_company_users(company_id, rule_users, "Approval rule")

    def _build_children(
        self,
        flow: ApprovalFlow,
        steps: List[ApprovalStepCreate],
        rules: List[ApprovalRuleCreate],
        user_id: int
    ):
        for step in steps:
            flow.steps.append(ApprovalStep(
                step_order=step.step_order,
                approver_type=step.approver_type,
                approver_ref=step.approver_ref,
                can_escalate_in=step.can_escalate_in,
                created_by=user_id
            ))
        for rule in rules:
            flow.rules.append(ApprovalRule(
                rule_type=rule.rule_type,
                params=dict(rule.params),
                created_by=user_id
            ))

    # endregion

    # region ========== Flow Management ==========

    async def create_flow(
        self,
        company_id: int,
        data: ApprovalFlowCreate,
        user_id: int
    ) -> ApprovalFlowResponse:
        try:
            await self._validate_definition(company_id, data.steps, data.rules)

            flow = ApprovalFlow(
                company_id=company_id,
                name=data.name,
                is_active=True,
                sequence_type=data.sequence_type,
                min_approval_percentage=data.min_approval_percentage,
                version=1,
                created_by=user_id,
                steps=[],
                rules=[]
            )
            self._build_children(flow, data.steps, data.rules, user_id)
            self.session.add(flow)
            await self.session.commit()

            logger.info(
                f"✅ Approval flow '{flow.name}' ({flow.id}) created for company {company_id} "
                f"with {len(data.steps)} steps and {len(data.rules)} rules by user {user_id}"
            )
            return await self.get_flow(company_id, flow.id)

        except HTTPException:
            await self.session.rollback()
            raise
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Error creating approval flow: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error creating approval flow"
            )

    async def update_flow(
        self,
        company_id: int,
        flow_id: int,
        data: ApprovalFlowUpdate,
        user_id: int
    ) -> ApprovalFlowResponse:
        """
        Update a flow. Name and active flag change in place; any change to
        steps, rules or sequencing produces a new version and deactivates
        the current one, so expenses routed by it keep their step references.
        """
        try:
            flow = await self._get_flow_model(company_id, flow_id)

            if not data.changes_definition:
                if data.name is not None:
                    flow.name = data.name
                if data.is_active is not None:
                    flow.is_active = data.is_active
                flow.updated_by = user_id
                await self.session.commit()

                logger.info(f"Approval flow {flow_id} updated in place by user {user_id}")
                return await self.get_flow(company_id, flow_id)

            steps = data.steps if data.steps is not None else [
                ApprovalStepCreate(
                    step_order=s.step_order,
                    approver_type=s.approver_type,
                    approver_ref=s.approver_ref,
                    can_escalate_in=s.can_escalate_in
                )
                for s in flow.steps
            ]
            rules = data.rules if data.rules is not None else [
                ApprovalRuleCreate(rule_type=r.rule_type, params=dict(r.params or {}))
                for r in flow.rules
            ]
            await self._validate_definition(company_id, steps, rules)

            new_flow = ApprovalFlow(
                company_id=company_id,
                name=data.name if data.name is not None else flow.name,
                is_active=data.is_active if data.is_active is not None else flow.is_active,
                sequence_type=data.sequence_type or flow.sequence_type,
                min_approval_percentage=(
                    data.min_approval_percentage
                    if data.min_approval_percentage is not None
                    else flow.min_approval_percentage
                ),
                version=flow.version + 1,
                previous_version_id=flow.id,
                created_by=user_id,
                steps=[],
                rules=[]
            )
            self._build_children(new_flow, steps, rules, user_id)

            flow.is_active = False
            flow.updated_by = user_id
            self.session.add(new_flow)
            await self.session.commit()

            logger.info(
                f"🔁 Approval flow {flow_id} superseded by version {new_flow.version} "
                f"({new_flow.id}) by user {user_id}"
            )
            return await self.get_flow(company_id, new_flow.id)

        except HTTPException:
            await self.session.rollback()
            raise
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Error updating approval flow {flow_id}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error updating approval flow"
            )

    async def set_flow_active(
        self,
        company_id: int,
        flow_id: int,
        is_active: Optional[bool],
        user_id: int
    ) -> ApprovalFlowResponse:
        """Activate or deactivate a flow; None flips the current flag"""
        try:
            flow = await self._get_flow_model(company_id, flow_id)
            flow.is_active = (not flow.is_active) if is_active is None else is_active
            flow.updated_by = user_id
            await self.session.commit()

            logger.info(
                f"Approval flow {flow_id} {'activated' if flow.is_active else 'deactivated'} "
                f"by user {user_id}"
            )
            return await self.get_flow(company_id, flow_id)

        except HTTPException:
            raise
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Error changing approval flow {flow_id} state: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Error changing approval flow state"
            )

    async def deactivate_flow(self, company_id: int, flow_id: int, user_id: int) -> ApprovalFlowResponse:
        return await self.set_flow_active(company_id, flow_id, False, user_id)

    async def toggle_flow(self, company_id: int, flow_id: int, user_id: int) -> ApprovalFlowResponse:
        return await self.set_flow_active(company_id, flow_id, None, user_id)

    # endregion
