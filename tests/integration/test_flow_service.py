import pytest

from expenseflow.core.exceptions import NotFoundError, ValidationError
from expenseflow.models.auth.user import User
from expenseflow.models.organization.company import Company
from expenseflow.models.shared.enums import ApproverType, RuleType, SequenceType, UserRole
from expenseflow.schemas.approval.approval_flow_schema import (
    ApprovalFlowCreate, ApprovalFlowUpdate, ApprovalStepCreate
)
from expenseflow.services.approval.approval_flow_service import ApprovalFlowService

@pytest.mark.asyncio
class TestApprovalFlowService:
    """Test flow administration and versioning"""

    async def test_create_flow_orders_steps(self, make_flow, admin):
        """Test that steps come back sorted with their rules"""
        flow = await make_flow(
            [(2, ApproverType.USER, admin.id), (1, ApproverType.ROLE, "MANAGER")],
            rules=[(RuleType.PERCENTAGE, {"threshold": 250})]
        )

        assert flow.version == 1
        assert flow.is_active
        assert [s.step_order for s in flow.steps] == [1, 2]
        assert flow.rules[0].params == {"threshold": 250}

    async def test_user_steps_must_belong_to_company(self, session_maker, company, admin):
        """Test that a USER step naming another company's user is refused"""
        async with session_maker() as s:
            other = Company(name="Globex", country="Germany", currency="EUR")
            s.add(other)
            await s.commit()
            other_id = other.id

        async with session_maker() as s:
            outsider = User(email="outsider@globex-example.com", name="Outsider", role=UserRole.MANAGER, company_id=other_id)
            s.add(outsider)
            await s.commit()
            outsider_id = outsider.id

        data = ApprovalFlowCreate(
            name="Cross-tenant",
            steps=[ApprovalStepCreate(step_order=1, approver_type=ApproverType.USER, approver_ref=str(outsider_id))]
        )
        async with session_maker() as s:
            with pytest.raises(ValidationError):
                await ApprovalFlowService(s).create_flow(company.id, data, admin.id)

    async def test_specific_approver_rule_must_name_company_user(self, session_maker, company, admin):
        """Test that rules are validated like steps"""
        data = ApprovalFlowCreate(
            name="Bad rule",
            steps=[ApprovalStepCreate(step_order=1, approver_type=ApproverType.ROLE, approver_ref="ADMIN")],
            rules=[{"rule_type": RuleType.SPECIFIC_APPROVER, "params": {"approver_id": 4242, "skip_remaining": True}}]
        )
        async with session_maker() as s:
            with pytest.raises(ValidationError):
                await ApprovalFlowService(s).create_flow(company.id, data, admin.id)

    async def test_oldest_active_flow_is_applied(self, make_flow, session, company):
        """Test deterministic selection among several active flows"""
        first = await make_flow([(1, ApproverType.ROLE, "MANAGER")], name="First")
        await make_flow([(1, ApproverType.ROLE, "ADMIN")], name="Second")

        active = await ApprovalFlowService(session).get_active_flow(company.id)

        assert active.id == first.id

    async def test_rename_updates_in_place(self, make_flow, session, company, admin):
        """Test that name-only updates keep the version"""
        flow = await make_flow([(1, ApproverType.ROLE, "MANAGER")])

        updated = await ApprovalFlowService(session).update_flow(
            company.id, flow.id, ApprovalFlowUpdate(name="Renamed"), admin.id
        )

        assert updated.id == flow.id
        assert updated.name == "Renamed"
        assert updated.version == 1

    async def test_definition_change_creates_new_version(self, make_flow, session, company, admin):
        """Test that changing steps supersedes the flow and keeps the old one for routed expenses"""
        flow = await make_flow(
            [(1, ApproverType.ROLE, "MANAGER")],
            rules=[(RuleType.PERCENTAGE, {"threshold": 50})]
        )
        service = ApprovalFlowService(session)

        updated = await service.update_flow(
            company.id,
            flow.id,
            ApprovalFlowUpdate(sequence_type=SequenceType.PARALLEL, min_approval_percentage=60),
            admin.id
        )

        assert updated.id != flow.id
        assert updated.version == 2
        assert updated.previous_version_id == flow.id
        assert updated.sequence_type == SequenceType.PARALLEL
        assert [(s.step_order, s.approver_ref) for s in updated.steps] == [(1, "MANAGER")]
        assert updated.rules[0].params == {"threshold": 50}

        old = await service.get_flow(company.id, flow.id)
        assert not old.is_active
        assert (await service.get_active_flow(company.id)).id == updated.id

    async def test_toggle_and_deactivate(self, make_flow, session, company, admin):
        """Test flipping the active flag"""
        flow = await make_flow([(1, ApproverType.ROLE, "MANAGER")])
        service = ApprovalFlowService(session)

        toggled = await service.toggle_flow(company.id, flow.id, admin.id)
        assert not toggled.is_active
        assert await service.get_active_flow(company.id) is None

        toggled = await service.toggle_flow(company.id, flow.id, admin.id)
        assert toggled.is_active

        deactivated = await service.deactivate_flow(company.id, flow.id, admin.id)
        assert not deactivated.is_active

    async def test_list_flows_filters_by_state(self, make_flow, session, company, admin):
        """Test pagination and the is_active filter"""
        kept = await make_flow([(1, ApproverType.ROLE, "MANAGER")], name="Kept")
        dropped = await make_flow([(1, ApproverType.ROLE, "ADMIN")], name="Dropped")
        service = ApprovalFlowService(session)
        await service.deactivate_flow(company.id, dropped.id, admin.id)

        everything = await service.list_flows(company.id)
        active = await service.list_flows(company.id, is_active=True)

        assert everything["count"] == 2
        assert [f.id for f in active["data"]] == [kept.id]

    async def test_flows_of_other_companies_are_hidden(self, make_flow, session_maker, admin):
        """Test tenant isolation on flow lookups"""
        flow = await make_flow([(1, ApproverType.ROLE, "MANAGER")])

        async with session_maker() as s:
            with pytest.raises(NotFoundError):
                await ApprovalFlowService(s).get_flow(flow.company_id + 1, flow.id)
