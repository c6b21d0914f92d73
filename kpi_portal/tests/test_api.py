"""
Contract tests for the KPI Portal HTTP API.

Runs the FastAPI application against the seeded InMemoryRepository with
a pinned clock and checks:
- Response shapes of the dashboard endpoints (camelCase keys, `range` echo)
- Error rendering: 400 VALIDATION_ERROR / INVALID_DATE, 404 NOT_FOUND,
  409 CONFLICT / ALREADY_PAID, 500 STORAGE_ERROR
- Assignment PATCH semantics (omitted key vs explicit null)
- Payment plan replacement and settlement over HTTP
- Student history reads and CSM outcome / weekly progress updates
"""

import pytest
from fastapi.testclient import TestClient

from kpi_portal.core.dependencies import get_clock, get_settings_dependency
from kpi_portal.core.config import Settings
from kpi_portal.main import create_app


@pytest.fixture
def client(repo, settings, clock) -> TestClient:
    """TestClient over the seeded repository; the lifespan keeps the attached repository."""
    app = create_app(settings)
    app.state.repository = repo
    app.dependency_overrides[get_settings_dependency] = lambda: settings
    app.dependency_overrides[get_clock] = lambda: clock
    return TestClient(app)


WEEK = {"from": "2026-03-02", "to": "2026-03-08"}


class TestServiceEndpoints:

    def test_health(self, client) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "storage": "memory"}

    def test_root(self, client) -> None:
        body = client.get("/").json()

        assert body["name"] == "KPI Portal API"
        assert body["docs"] == "/docs"

    def test_routes_use_the_settings_given_to_create_app(self, repo, settings, clock) -> None:
        custom = settings.model_copy(update={"unassigned_label": "No owner"})
        app = create_app(custom)
        app.state.repository = repo
        app.dependency_overrides[get_clock] = lambda: clock

        response = TestClient(app).patch("/api/payments/100/assignment", json={"assignedSetterId": None})

        assert response.json()["enrollment"]["setterName"] == "No owner"


class TestDashboards:

    def test_sales_top_cards(self, client) -> None:
        response = client.get("/api/sales/top-cards", params=WEEK)

        assert response.status_code == 200
        body = response.json()
        assert body["range"] == {"from": "2026-03-02", "to": "2026-03-08", "tz": "Europe/Bucharest"}
        assert body["totalBookedCalls"] == 9
        assert body["cashCollected"] == 6000

    def test_default_window_is_week_to_date(self, client) -> None:
        body = client.get("/api/sales/top-cards").json()

        assert (body["range"]["from"], body["range"]["to"]) == ("2026-03-16", "2026-03-18")

    def test_closers_member_filter(self, client) -> None:
        body = client.get("/api/sales/closers", params={**WEEK, "member": "Alice Closer"}).json()

        assert body["metrics"]["liveCalls"] == 10
        assert [row["id"] for row in body["payments"]] == [101, 100]

    def test_team_members_by_role(self, client) -> None:
        body = client.get("/api/team-members", params={"role": "SETTER"}).json()

        assert body == {"members": [{"id": 3, "name": "Sam Setter", "role": "SETTER"}]}

    def test_home_transactions_page(self, client) -> None:
        body = client.get("/api/home/transactions", params={**WEEK, "page": 2, "limit": 2}).json()

        assert body["total"] == 3
        assert [t["id"] for t in body["transactions"]] == [100]

    def test_marketing_endpoints(self, client) -> None:
        ads = client.get("/api/v1/ads/summary", params=WEEK).json()
        broadcasts = client.get("/api/v1/email/broadcasts", params={"limit": 2}).json()

        assert ads["totalSpend"] == 180
        assert [b["id"] for b in broadcasts["broadcasts"]] == [3, 2]

    def test_csm_lists(self, client) -> None:
        high_risk = client.get("/api/csm/high-risk").json()
        active = client.get("/api/csm/active").json()

        assert [c["enrollmentId"] for c in high_risk["clients"]] == [11, 14]
        assert [c["enrollmentId"] for c in active["clients"]] == [11, 10, 14]


class TestErrorRendering:

    def test_invalid_date(self, client) -> None:
        response = client.get("/api/home/summary", params={"from": "yesterday-ish"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "INVALID_DATE"
        assert body["details"]["field"] == "from"

    def test_inverted_window(self, client) -> None:
        response = client.get("/api/home/summary", params={"from": "2026-03-09", "to": "2026-03-08"})

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_query_validation_uses_same_shape(self, client) -> None:
        response = client.get("/api/home/transactions", params={"page": 0})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert body["details"]["field"] == "page"

    def test_limit_over_maximum(self, client, settings) -> None:
        response = client.get("/api/home/transactions", params={"limit": settings.max_page_size + 1})

        assert response.status_code == 400
        assert response.json()["details"]["field"] == "limit"

    def test_not_found(self, client) -> None:
        response = client.get("/api/csm/enrollments/999/payment-plan")

        assert response.status_code == 404
        assert response.json() == {
            "error": "NOT_FOUND",
            "message": "Enrollment 999 not found",
            "details": {"entity": "Enrollment", "id": 999},
        }

    def test_invalid_onboarding_field(self, client) -> None:
        response = client.patch("/api/csm/enrollments/10/onboarding", json={"field": "nope", "value": True})

        assert response.status_code == 400

    def test_missing_storage_is_a_storage_error(self) -> None:
        settings = Settings(_env_file=None, storage_backend="postgres", database_url=None)
        app = create_app(settings)
        app.dependency_overrides[get_settings_dependency] = lambda: settings

        # No lifespan has run, so neither a repository nor a pool exists
        response = TestClient(app).get("/api/csm/high-risk")

        assert response.status_code == 500
        assert response.json()["error"] == "STORAGE_ERROR"


class TestAssignment:

    def test_explicit_null_clears_only_that_slot(self, client) -> None:
        response = client.patch("/api/payments/100/assignment", json={"assignedSetterId": None})

        assert response.status_code == 200
        enrollment = response.json()["enrollment"]
        assert enrollment["assignedCloserId"] == 1
        assert enrollment["assignedSetterId"] is None
        assert enrollment["setterName"] == "Unassigned"
        assert enrollment["version"] == 2

    def test_omitted_keys_change_nothing(self, client) -> None:
        response = client.patch("/api/payments/100/assignment", json={})

        assert response.status_code == 200
        enrollment = response.json()["enrollment"]
        assert (enrollment["assignedCloserId"], enrollment["assignedSetterId"]) == (1, 3)
        assert enrollment["version"] == 1

    def test_reassign_closer(self, client) -> None:
        body = client.patch("/api/payments/101/assignment", json={"assignedCloserId": 1}).json()

        assert body["success"] is True
        assert body["enrollment"]["closerName"] == "Alice Closer"
        assert body["enrollment"]["setterName"] == "Dana DM"

    def test_unknown_member(self, client) -> None:
        response = client.patch("/api/payments/100/assignment", json={"assignedCloserId": 42})

        assert response.status_code == 404
        assert response.json()["details"]["entity"] == "TeamMember"

    def test_stale_version(self, client) -> None:
        client.patch("/api/payments/100/assignment", json={"assignedCloserId": 2})

        response = client.patch(
            "/api/payments/100/assignment",
            json={"assignedCloserId": 1, "expectedVersion": 1},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "CONFLICT"


class TestPaymentPlanEndpoints:

    def test_replace_plan_then_settle(self, client) -> None:
        plan = client.put(
            "/api/csm/enrollments/14/payment-plan",
            json={
                "planType": "Split Pay",
                "installments": [
                    {"dueDate": "2026-04-01", "amountOwed": 1500},
                    {"dueDate": "2026-05-01", "amountOwed": 1500},
                ],
            },
        )
        assert plan.status_code == 200
        first = plan.json()["schedule"][0]["id"]

        settled = client.post(f"/api/csm/installments/{first}/settle")
        again = client.post(f"/api/csm/installments/{first}/settle")

        assert settled.status_code == 200
        assert settled.json()["plan"]["totalPaid"] == 1500
        assert settled.json()["plan"]["remaining"] == 1500
        assert again.status_code == 409
        assert again.json()["error"] == "ALREADY_PAID"

    def test_split_without_installments(self, client) -> None:
        response = client.put("/api/csm/enrollments/14/payment-plan", json={"planType": "SPLIT"})

        assert response.status_code == 400

    def test_overdue_is_derived_on_read(self, client) -> None:
        schedule = client.get("/api/csm/enrollments/10/payment-plan").json()["schedule"]

        assert [row["status"] for row in schedule] == ["PAID", "OVERDUE", "PENDING"]

    def test_incomplete_rows_are_not_saved(self, client) -> None:
        plan = client.put(
            "/api/csm/enrollments/14/payment-plan",
            json={
                "planType": "SPLIT",
                "installments": [
                    {"dueDate": "2026-04-01", "amountOwed": 3000},
                    {"dueDate": "", "amountOwed": ""},
                    {"dueDate": "2026-05-01", "amountOwed": ""},
                ],
            },
        )

        assert plan.status_code == 200
        assert [row["dueDate"] for row in plan.json()["schedule"]] == ["2026-04-01"]

    def test_only_blank_rows_is_a_split_without_installments(self, client) -> None:
        response = client.put(
            "/api/csm/enrollments/14/payment-plan",
            json={"planType": "SPLIT", "installments": [{"dueDate": "", "amountOwed": ""}]},
        )

        assert response.status_code == 400
        assert response.json()["details"]["field"] == "installments"

    def test_sub_cent_amount_is_rejected_before_storage(self, client) -> None:
        response = client.put(
            "/api/csm/enrollments/14/payment-plan",
            json={"planType": "SPLIT", "installments": [{"dueDate": "2026-04-01", "amountOwed": 0.001}]},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_drafts_are_resized(self, client) -> None:
        body = client.get("/api/csm/enrollments/10/payment-plan/drafts", params={"count": 2}).json()

        assert body["installments"] == [
            {"dueDate": "2026-03-02", "amountOwed": 1000.0},
            {"dueDate": "2026-03-06", "amountOwed": 1000.0},
        ]


class TestStudentHistoryEndpoints:

    def test_enrollments(self, client) -> None:
        body = client.get("/api/csm/students/1/enrollments").json()

        assert [e["id"] for e in body["enrollments"]] == [10, 13]
        assert body["enrollments"][0]["startDate"] == "2026-03-02"

    def test_set_and_clear_check_in_outcome(self, client) -> None:
        response = client.patch("/api/csm/students/2/check-ins/3", json={"outcome": "Refund requested"})

        assert response.status_code == 200
        assert response.json()["selectedOutcome"] == "Refund requested"
        high_risk = client.get("/api/csm/high-risk").json()
        assert high_risk["clients"][0]["selectedOutcome"] == "Refund requested"

        client.patch("/api/csm/students/2/check-ins/3", json={"outcome": None})
        check_ins = client.get("/api/csm/students/2/check-ins").json()["checkIns"]
        assert [(c["id"], c["selectedOutcome"]) for c in check_ins] == [(3, None), (4, None)]

    def test_outcome_key_is_required(self, client) -> None:
        response = client.patch("/api/csm/students/2/check-ins/3", json={})

        assert response.status_code == 400
        assert response.json()["details"]["field"] == "outcome"

    def test_check_in_of_another_student(self, client) -> None:
        response = client.patch("/api/csm/students/1/check-ins/3", json={"outcome": "Happy"})

        assert response.status_code == 404
        assert response.json()["details"] == {"entity": "CheckIn", "id": 3}

    def test_weekly_progress_update(self, client) -> None:
        response = client.patch("/api/csm/students/1/weekly-progress/2", json={"notes": "Booked first call"})

        assert response.status_code == 200
        progress = client.get("/api/csm/students/1/weekly-progress").json()["progress"]
        assert [(w["weekNumber"], w["notes"]) for w in progress] == [(1, "Offer drafted"), (2, "Booked first call")]

    def test_empty_weekly_progress_update(self, client) -> None:
        response = client.patch("/api/csm/students/1/weekly-progress/2", json={})

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_unknown_student(self, client) -> None:
        response = client.get("/api/csm/students/999/weekly-progress")

        assert response.status_code == 404
        assert response.json()["details"] == {"entity": "Student", "id": 999}
