from unittest.mock import AsyncMock, patch

from tests.conftest import TENANT_ID
from yamoo.models import BillingKey, Payment, Subscription, SubscriptionHistory
from yamoo.services.idempotency import lock_payment
from yamoo.services.toss_client import TossPaymentError


def _pay(client, headers, **body):
    payload = {"tenant_id": TENANT_ID, "plan": "basic"}
    payload.update(body)
    return client.post("/api/billing/pay", json=payload, headers=headers)


class TestCardRegistration:
    def test_success_callback_stores_billing_key(self, client, db_session, tenant):
        issued = {"billingKey": "bk_issued", "card": {"issuerCode": "61", "number": "4330****1234"}}
        with patch("yamoo.services.toss_client.issue_billing_key", new=AsyncMock(return_value=issued)) as issue:
            resp = client.get(
                "/api/billing/success",
                params={"customerKey": f"tenant_{TENANT_ID}", "authKey": "auth_1"},
                follow_redirects=False,
            )

        assert resp.status_code == 302
        assert resp.headers["location"] == "/account?status=success"
        issue.assert_awaited_once_with("auth_1", f"tenant_{TENANT_ID}")
        bk = db_session.query(BillingKey).filter(BillingKey.tenant_id == TENANT_ID).one()
        assert bk.billing_key == "bk_issued"
        assert bk.is_active is True

    def test_new_card_replaces_previous(self, client, db_session, billing_key):
        issued = {"billingKey": "bk_second", "card": {}}
        with patch("yamoo.services.toss_client.issue_billing_key", new=AsyncMock(return_value=issued)):
            client.get(
                "/api/billing/success",
                params={"customerKey": f"tenant_{TENANT_ID}", "authKey": "auth_2"},
                follow_redirects=False,
            )

        active = db_session.query(BillingKey).filter(BillingKey.is_active == True).all()
        assert [bk.billing_key for bk in active] == ["bk_second"]

    def test_invalid_customer_key_redirects_to_fail(self, client, tenant):
        resp = client.get(
            "/api/billing/success",
            params={"customerKey": "company_1", "authKey": "auth_1"},
            follow_redirects=False,
        )
        assert resp.status_code == 302
        assert "status=fail" in resp.headers["location"]

    def test_toss_error_redirects_to_fail(self, client, db_session, tenant):
        error = TossPaymentError("INVALID_CARD", "카드 정보가 올바르지 않습니다.", 400)
        with patch("yamoo.services.toss_client.issue_billing_key", new=AsyncMock(side_effect=error)):
            resp = client.get(
                "/api/billing/success",
                params={"customerKey": f"tenant_{TENANT_ID}", "authKey": "auth_1"},
                follow_redirects=False,
            )
        assert "status=fail" in resp.headers["location"]
        assert db_session.query(BillingKey).count() == 0


class TestPay:
    def test_requires_login(self, client, tenant):
        assert _pay(client, {}).status_code == 401

    def test_other_users_tenant_forbidden(self, client, tenant, billing_key, other_headers):
        assert _pay(client, other_headers).status_code == 403

    def test_invalid_plan(self, client, tenant, billing_key, auth_headers):
        assert _pay(client, auth_headers, plan="trial").status_code == 400

    def test_without_card(self, client, tenant, auth_headers):
        data = _pay(client, auth_headers).json()
        assert data["success"] is False
        assert "카드" in data["message"]

    def test_other_tenants_key_is_not_reported_as_duplicate(self, client, db_session, tenant, auth_headers):
        db_session.add(Payment(
            id="BASIC_1_store002",
            tenant_id="store002",
            email="someone@example.com",
            order_id="BASIC_1_store002",
            plan="basic",
            type="first",
            amount=39000,
            status="done",
            idempotency_key="first_store002_1",
        ))
        db_session.commit()

        data = _pay(client, auth_headers, idempotency_key="first_store002_1").json()
        assert data["duplicate"] is False
        assert data["order_id"] is None

    def test_first_payment_activates_subscription(
        self, client, db_session, tenant, billing_key, auth_headers, toss_payment_done
    ):
        with patch(
            "yamoo.services.toss_client.pay_with_billing_key", new=AsyncMock(return_value=toss_payment_done)
        ) as pay:
            data = _pay(client, auth_headers, idempotency_key="first_store001_1").json()

        assert data["success"] is True
        assert data["amount"] == 39000
        assert pay.await_args.args[2] == 39000

        subscription = db_session.get(Subscription, TENANT_ID)
        assert subscription.status == "active"
        assert subscription.plan == "basic"
        assert subscription.next_billing_date is not None

        payments = db_session.query(Payment).all()
        assert len(payments) == 1
        assert payments[0].status == "done"
        assert payments[0].idempotency_key == "first_store001_1"
        assert payments[0].payment_key == "pk_new_001"
        assert db_session.query(SubscriptionHistory).filter_by(change_type="new").count() == 1

    def test_retried_request_is_not_charged_twice(
        self, client, db_session, tenant, billing_key, auth_headers, toss_payment_done
    ):
        with patch(
            "yamoo.services.toss_client.pay_with_billing_key", new=AsyncMock(return_value=toss_payment_done)
        ) as pay:
            first = _pay(client, auth_headers, idempotency_key="first_store001_1").json()
            second = _pay(client, auth_headers, idempotency_key="first_store001_1").json()

        assert pay.await_count == 1
        assert second["duplicate"] is True
        assert second["order_id"] == first["order_id"]
        assert db_session.query(Payment).count() == 1

    def test_in_flight_attempt_returns_conflict(self, client, db_session, tenant, billing_key, auth_headers):
        lock_payment(
            db_session, "first_store001_1",
            tenant_id=TENANT_ID, email=tenant.email, plan="basic", amount=39000, type="first",
        )
        with patch("yamoo.services.toss_client.pay_with_billing_key", new=AsyncMock()) as pay:
            resp = _pay(client, auth_headers, idempotency_key="first_store001_1")

        assert resp.status_code == 409
        pay.assert_not_awaited()

    def test_declined_card_releases_lock(self, client, db_session, tenant, billing_key, auth_headers):
        error = TossPaymentError("REJECT_CARD_COMPANY", "카드사에서 결제를 거절했습니다.", 400)
        with patch("yamoo.services.toss_client.pay_with_billing_key", new=AsyncMock(side_effect=error)):
            data = _pay(client, auth_headers, idempotency_key="first_store001_1").json()

        assert data["success"] is False
        assert data["message"] == "카드사에서 결제를 거절했습니다."
        assert db_session.query(Payment).filter(Payment.status == "pending").count() == 0
        failed = db_session.query(Payment).filter(Payment.status == "failed").one()
        assert failed.failure_reason == "카드사에서 결제를 거절했습니다."
        assert db_session.get(Subscription, TENANT_ID).status != "active"

    def test_active_subscription_cannot_pay_again(self, client, active_subscription, auth_headers):
        assert _pay(client, auth_headers).status_code == 400


class TestStatusAndHistory:
    def test_status(self, client, active_subscription, auth_headers):
        data = client.get("/api/billing/status", params={"tenant_id": TENANT_ID}, headers=auth_headers).json()
        assert data["has_billing_key"] is True
        assert data["card_number"] == "4330****1234"
        assert data["plan"] == "basic"
        assert data["status"] == "active"
        assert data["price_policy"] == "standard"
        assert data["price_policy_label"] == "일반 (최신 가격 적용)"

    def test_status_shows_grandfathered_policy(self, client, db_session, active_subscription, auth_headers):
        active_subscription.price_policy = "grandfathered"
        db_session.commit()
        data = client.get("/api/billing/status", params={"tenant_id": TENANT_ID}, headers=auth_headers).json()
        assert data["price_policy_label"] == "가격 보호 (영구)"

    def test_history_hides_pending_locks(self, client, db_session, active_subscription, auth_headers):
        lock_payment(
            db_session, "recurring_store001_20261018",
            tenant_id=TENANT_ID, email="owner@example.com", plan="basic", amount=39000, type="recurring",
        )
        data = client.get("/api/billing/history", params={"tenant_id": TENANT_ID}, headers=auth_headers).json()
        assert [p["status"] for p in data["payments"]] == ["done"]

    def test_cannot_remove_card_while_active(self, client, active_subscription, auth_headers):
        data = client.post("/api/billing/deactivate", params={"tenant_id": TENANT_ID}, headers=auth_headers).json()
        assert data["success"] is False

    def test_remove_card(self, client, db_session, billing_key, auth_headers):
        data = client.post("/api/billing/deactivate", params={"tenant_id": TENANT_ID}, headers=auth_headers).json()
        assert data["success"] is True
        assert db_session.query(BillingKey).filter(BillingKey.is_active == True).count() == 0


def test_health(client):
    assert client.get("/api/health").status_code == 200
