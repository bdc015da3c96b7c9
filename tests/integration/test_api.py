import pytest
from decimal import Decimal
from httpx import ASGITransport, AsyncClient
from fastapi import status

from expenseflow.auth.jwt_handler import create_access_token
from expenseflow.core.database import get_async_session
from expenseflow.main import app
from expenseflow.models.shared.enums import ApproverType, UserRole

@pytest.fixture
async def client(session_maker):
    async def override_get_async_session():
        async with session_maker() as s:
            yield s

    app.dependency_overrides[get_async_session] = override_get_async_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()

def auth(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}

def expense_payload(amount: str = "250.00", currency: str = "USD") -> dict:
    return {
        "amount": amount,
        "currency": currency,
        "category": "Travel",
        "description": "Client visit"
    }

@pytest.mark.asyncio
class TestAuthentication:
    """Test bearer token handling"""

    async def test_health_is_public(self, client: AsyncClient):
        """Test the health endpoint"""
        response = await client.get("/health")
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "healthy"

    async def test_missing_token_is_rejected(self, client: AsyncClient):
        """Test requests without credentials"""
        response = await client.get("/api/v1/expenses/")
        assert response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)

    async def test_invalid_token_is_rejected(self, client: AsyncClient):
        """Test a token that does not decode"""
        response = await client.get("/api/v1/expenses/", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_inactive_user_is_rejected(self, client: AsyncClient, make_user, session):
        """Test that deactivated users lose access with a valid token"""
        user = await make_user()
        headers = auth(user)
        user.is_active = False
        await session.commit()

        response = await client.get("/api/v1/expenses/", headers=headers)
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_role_guard(self, client: AsyncClient, make_user):
        """Test that employees cannot reach manager and admin routes"""
        employee = await make_user()

        response = await client.get("/api/v1/approvals/pending", headers=auth(employee))
        assert response.status_code == status.HTTP_403_FORBIDDEN

        response = await client.get("/api/v1/admin/dashboard", headers=auth(employee))
        assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.asyncio
class TestExpenseApi:
    """Test the expense submission and approval endpoints end to end"""

    async def test_submit_and_approve(self, client: AsyncClient, make_user, admin):
        """Test flow creation, submission, queue and approval over HTTP"""
        manager = await make_user(UserRole.MANAGER)
        employee = await make_user(manager=manager)

        response = await client.post(
            "/api/v1/approval-flows/",
            json={
                "name": "Standard",
                "steps": [{"step_order": 1, "approver_type": "ROLE", "approver_ref": "MANAGER"}]
            },
            headers=auth(admin)
        )
        assert response.status_code == status.HTTP_201_CREATED
        step_id = response.json()["steps"][0]["id"]

        response = await client.post("/api/v1/expenses/", json=expense_payload(), headers=auth(employee))
        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        expense_id = body["expense"]["id"]
        assert body["message"] == "Expense submitted successfully"
        assert body["expense"]["current_step_id"] == step_id

        response = await client.get("/api/v1/approvals/pending", headers=auth(manager))
        assert response.status_code == status.HTTP_200_OK
        queue = response.json()
        assert queue["count"] == 1
        assert queue["data"][0]["expense_id"] == expense_id

        response = await client.post(
            f"/api/v1/approvals/{expense_id}/approve",
            json={"comments": "Fine", "step_id": step_id},
            headers=auth(manager)
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "APPROVED"
        assert response.json()["message"] == "Expense fully approved"

        response = await client.get(f"/api/v1/expenses/{expense_id}", headers=auth(employee))
        assert response.json()["status"] == "APPROVED"

        response = await client.get("/api/v1/expenses/stats", headers=auth(employee))
        stats = response.json()
        assert stats["approved"] == 1
        assert Decimal(str(stats["total_amount"])) == Decimal("250.00")

    async def test_invalid_amount_is_unprocessable(self, client: AsyncClient, make_user):
        """Test request validation on submission"""
        employee = await make_user()

        response = await client.post("/api/v1/expenses/", json=expense_payload(amount="-5"), headers=auth(employee))
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    async def test_wrong_approver_is_forbidden(self, client: AsyncClient, make_user, make_flow, submit):
        """Test NotAuthorized surfaces as 403"""
        manager = await make_user(UserRole.MANAGER)
        outsider = await make_user(UserRole.MANAGER)
        employee = await make_user()
        await make_flow([(1, ApproverType.USER, manager.id)])
        expense_id = (await submit(employee)).expense.id

        response = await client.post(f"/api/v1/approvals/{expense_id}/reject", headers=auth(outsider))
        assert response.status_code == status.HTTP_403_FORBIDDEN

    async def test_other_employees_cannot_read_expense(self, client: AsyncClient, make_user, submit):
        """Test that employees only see their own expenses"""
        owner = await make_user()
        colleague = await make_user()
        expense_id = (await submit(owner)).expense.id

        response = await client.get(f"/api/v1/expenses/{expense_id}", headers=auth(colleague))
        assert response.status_code == status.HTTP_403_FORBIDDEN

        response = await client.get(f"/api/v1/expenses/{expense_id}/approvals", headers=auth(colleague))
        assert response.status_code == status.HTTP_403_FORBIDDEN

    async def test_list_own_expenses_with_filters(self, client: AsyncClient, make_user, submit):
        """Test the employee's expense list and status filter"""
        employee = await make_user()
        await submit(employee, category="Meals")
        await submit(employee, category="Travel")

        response = await client.get("/api/v1/expenses/", params={"category": "Meals"}, headers=auth(employee))
        assert response.json()["count"] == 1

        response = await client.get("/api/v1/expenses/", params={"status": "APPROVED"}, headers=auth(employee))
        assert response.json()["count"] == 0

    async def test_escalation_without_next_step(self, client: AsyncClient, make_user, make_flow, submit, admin):
        """Test NoNextStep surfaces as 409 with the fallback details"""
        manager = await make_user(UserRole.MANAGER)
        backup = await make_user(UserRole.ADMIN)
        employee = await make_user()
        await make_flow([(1, ApproverType.USER, manager.id)])
        expense_id = (await submit(employee)).expense.id

        response = await client.post(f"/api/v1/approvals/{expense_id}/escalate", headers=auth(admin))

        assert response.status_code == status.HTTP_409_CONFLICT
        detail = response.json()["detail"]
        assert detail["message"] == "No next step available for escalation"
        assert detail["fallback_approver_id"] == backup.id
        assert detail["fallback_approval_id"] is not None


@pytest.mark.asyncio
class TestAdminApi:
    """Test admin-only endpoints"""

    async def test_active_flow_missing(self, client: AsyncClient, admin):
        """Test the 404 when no flow is active"""
        response = await client.get("/api/v1/approval-flows/active", headers=auth(admin))
        assert response.status_code == status.HTTP_404_NOT_FOUND

    async def test_user_management(self, client: AsyncClient, admin):
        """Test creating, listing and protecting users"""
        payload = {"email": "maria@example.com", "name": "Maria", "role": "MANAGER"}

        response = await client.post("/api/v1/admin/users", json=payload, headers=auth(admin))
        assert response.status_code == status.HTTP_201_CREATED
        created = response.json()
        assert created["is_manager_approver"] is True

        response = await client.post("/api/v1/admin/users", json=payload, headers=auth(admin))
        assert response.status_code == status.HTTP_409_CONFLICT

        response = await client.get("/api/v1/admin/users", params={"role": "MANAGER"}, headers=auth(admin))
        assert response.json()["count"] == 1

        response = await client.put(
            f"/api/v1/admin/users/{created['id']}",
            json={"manager_id": admin.id},
            headers=auth(admin)
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["manager_id"] == admin.id

        response = await client.delete(f"/api/v1/admin/users/{admin.id}", headers=auth(admin))
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

        response = await client.delete(f"/api/v1/admin/users/{created['id']}", headers=auth(admin))
        assert response.status_code == status.HTTP_200_OK

    async def test_company_profile(self, client: AsyncClient, admin):
        """Test reading and updating the company"""
        response = await client.put("/api/v1/admin/company", json={"currency": "eur"}, headers=auth(admin))
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["currency"] == "EUR"

        response = await client.get("/api/v1/admin/company", headers=auth(admin))
        assert response.json()["members"] == 1

    async def test_dashboard_counts_pending(self, client: AsyncClient, make_user, make_flow, submit, admin):
        """Test dashboard stats with one pending manager approval"""
        await make_user(UserRole.MANAGER)
        employee = await make_user()
        await make_flow([(1, ApproverType.ROLE, "MANAGER")])
        await submit(employee)

        response = await client.get("/api/v1/admin/dashboard", headers=auth(admin))

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["stats"]["pending_approvals"] == 1
        assert body["stats"]["manager_queue"] == 1
        assert body["onboarding"]["has_flows"] is True
        assert len(body["pending_approvals"]) == 1

    async def test_company_expenses_sorting(self, client: AsyncClient, make_user, submit, admin):
        """Test sorting and the unknown-field guard"""
        employee = await make_user()
        await submit(employee, amount="10.00")
        await submit(employee, amount="90.00")

        response = await client.get(
            "/api/v1/admin/expenses",
            params={"sort_by": "amount", "sort_order": "asc"},
            headers=auth(admin)
        )
        amounts = [Decimal(str(e["amount"])) for e in response.json()["data"]]
        assert amounts == [Decimal("10.00"), Decimal("90.00")]

        response = await client.get("/api/v1/admin/expenses", params={"sort_by": "password"}, headers=auth(admin))
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
