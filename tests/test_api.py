"""End-to-end API tests over ASGI with provider doubles."""

from decimal import Decimal

import pytest
from starlette.datastructures import UploadFile as StarletteUploadFile

from affiliate_hub.config import settings
from affiliate_hub.services.onboarding_state_machine import OnboardingStage


API = "/api/v1"


async def register(client, email, referral_code=None):
    response = await client.post(
        f"{API}/affiliates/register",
        json={
            "email": email,
            "first_name": "Pat",
            "last_name": "Jones",
            "phone": "5550123",
            "referral_code": referral_code,
        },
    )
    assert response.status_code == 201, response.text
    body = response.json()
    return body["affiliate"], {"Authorization": f"Bearer {body['access_token']}"}


class TestRegistrationAPI:
    @pytest.mark.asyncio
    async def test_register_and_profile(self, client):
        affiliate, headers = await register(client, "pat@example.com")

        response = await client.get(f"{API}/affiliates/me", headers=headers)

        assert response.status_code == 200
        assert response.json()["referral_code"] == affiliate["referral_code"]
        assert response.json()["onboarding_state"] == "WELCOME"

    @pytest.mark.asyncio
    async def test_register_under_referrer(self, client):
        parent, _ = await register(client, "parent@example.com")

        child, _ = await register(client, "child@example.com", parent["referral_code"])

        assert child["referrer_id"] == parent["id"]

    @pytest.mark.asyncio
    async def test_unknown_referral_code_error_shape(self, client):
        response = await client.post(
            f"{API}/affiliates/register",
            json={
                "email": "x@example.com",
                "first_name": "X",
                "last_name": "Y",
                "referral_code": "NOPE1234",
            },
        )

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert error["details"]["field"] == "referral_code"

    @pytest.mark.asyncio
    async def test_bad_token(self, client):
        response = await client.get(
            f"{API}/affiliates/me", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401


class TestOnboardingAPI:
    @pytest.mark.asyncio
    async def test_dashboard_gated_until_complete(self, client):
        _, headers = await register(client, "gate@example.com")

        response = await client.get(f"{API}/affiliates/me/dashboard", headers=headers)

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "permission_denied"
        assert error["details"]["onboarding"]["current_stage"] == "WELCOME"
        assert error["details"]["onboarding"]["next_action"] == "fill_personal_info"

    @pytest.mark.asyncio
    async def test_full_onboarding_flow(
        self, client, signature_provider, document_storage, make_affiliate, auth_headers
    ):
        admin = await make_affiliate(first_name="Admin", is_admin=True)
        affiliate, headers = await register(client, "flow@example.com")

        response = await client.post(f"{API}/onboarding/start", headers=headers)
        assert response.json()["current_stage"] == "PERSONAL_INFO"

        response = await client.post(
            f"{API}/onboarding/personal-info",
            headers=headers,
            json={"first_name": "Pat", "last_name": "Jones", "phone": "5550123"},
        )
        assert response.json()["current_stage"] == "SIGNATURE"

        response = await client.post(f"{API}/onboarding/signature", headers=headers)
        body = response.json()
        assert body["status"]["current_stage"] == "SIGNATURE"
        assert body["agreement_status"] == "sent"
        session_ref = body["session_ref"]

        signature_provider.complete(session_ref)
        response = await client.post(
            f"{API}/onboarding/signature/webhook",
            json={"session_id": session_ref, "event": "signed"},
        )
        assert response.status_code == 202
        assert response.json()["current_stage"] == "KYC_UPLOAD"

        response = await client.post(
            f"{API}/onboarding/kyc",
            headers=headers,
            data={"document_type": "drivers_license"},
            files={"file": ("license.png", b"\x89PNG fake image", "image/png")},
        )
        assert response.status_code == 200, response.text
        assert response.json()["status"]["current_stage"] == "REVIEW"
        assert len(document_storage.stored) == 1

        response = await client.post(
            f"{API}/admin/onboarding/{affiliate['id']}/review",
            headers=auth_headers(admin),
            json={"approved": True},
        )
        assert response.status_code == 200
        assert response.json()["kyc_status"] == "verified"

        response = await client.get(f"{API}/onboarding/status", headers=headers)
        assert response.json()["can_access_dashboard"] is True
        assert response.json()["progress_percentage"] == 100

        response = await client.get(f"{API}/affiliates/me/dashboard", headers=headers)
        assert response.status_code == 200
        assert response.json()["recent_leads"] == []
        assert Decimal(response.json()["last_month_earned"]) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_out_of_order_upload_is_conflict(self, client):
        _, headers = await register(client, "early@example.com")

        response = await client.post(
            f"{API}/onboarding/kyc",
            headers=headers,
            data={"document_type": "passport"},
            files={"file": ("id.pdf", b"%PDF", "application/pdf")},
        )

        assert response.status_code == 409
        assert response.json()["error"]["details"]["current_state"] == "WELCOME"

    @pytest.mark.asyncio
    async def test_oversized_upload_rejected_with_bounded_read(
        self, client, monkeypatch, document_storage, make_affiliate, set_stage, auth_headers
    ):
        affiliate = await make_affiliate()
        await set_stage(affiliate, OnboardingStage.KYC_UPLOAD)
        headers = auth_headers(affiliate)
        monkeypatch.setattr(settings, "KYC_MAX_DOCUMENT_SIZE", 16)
        read_sizes = []
        original_read = StarletteUploadFile.read

        async def recording_read(self, size=-1):
            read_sizes.append(size)
            return await original_read(self, size)

        monkeypatch.setattr(StarletteUploadFile, "read", recording_read)

        response = await client.post(
            f"{API}/onboarding/kyc",
            headers=headers,
            data={"document_type": "passport"},
            files={"file": ("id.pdf", b"%PDF" + b"x" * 1000, "application/pdf")},
        )

        assert response.status_code == 422
        assert response.json()["error"]["details"]["field"] == "file"
        assert read_sizes == [17]
        assert document_storage.stored == []
        response = await client.get(f"{API}/onboarding/status", headers=headers)
        assert response.json()["current_stage"] == "KYC_UPLOAD"

    @pytest.mark.asyncio
    async def test_blank_phone_rejected(self, client):
        _, headers = await register(client, "blank@example.com")

        response = await client.post(
            f"{API}/onboarding/personal-info",
            headers=headers,
            json={"first_name": "Pat", "last_name": "Jones", "phone": "   "},
        )

        assert response.status_code == 422
        assert response.json()["error"]["details"]["field"] == "phone"


class TestCommissionFlowAPI:
    @pytest.mark.asyncio
    async def test_lead_to_payout(
        self, client, dispatcher, make_affiliate, set_stage, auth_headers
    ):
        admin = await make_affiliate(first_name="Admin", is_admin=True)
        referrer = await make_affiliate(first_name="Ref")
        owner = await make_affiliate(first_name="Owner", referrer=referrer)
        for affiliate in (referrer, owner):
            await set_stage(affiliate, OnboardingStage.COMPLETE)
        headers = auth_headers(owner)

        response = await client.post(
            f"{API}/leads",
            headers=headers,
            json={
                "lead_type": "solar",
                "first_name": "Homer",
                "last_name": "Owner",
                "email": "homer@example.com",
                "phone": "5550777",
            },
        )
        assert response.status_code == 201, response.text
        lead_id = response.json()["id"]

        for status in ("qualified", "sold"):
            response = await client.put(
                f"{API}/admin/leads/{lead_id}/status",
                headers=auth_headers(admin),
                json={"status": status},
            )
            assert response.status_code == 200
        await dispatcher.drain()

        response = await client.get(f"{API}/commissions/summary", headers=headers)
        assert Decimal(response.json()["pending_amount"]) == Decimal("200.00")

        response = await client.get(f"{API}/referrals/stats", headers=auth_headers(referrer))
        stats = response.json()
        assert stats["levels"]["level_1"] == 1
        assert Decimal(stats["level_1_earnings"]) == Decimal("5.00")

        response = await client.post(f"{API}/commissions/request-payout", headers=headers, json={})
        assert response.status_code == 201
        payout = response.json()
        assert Decimal(payout["amount"]) == Decimal("200.00")

        response = await client.post(f"{API}/commissions/request-payout", headers=headers, json={})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "no_pending_funds"

        response = await client.get(f"{API}/admin/payouts/pending", headers=auth_headers(admin))
        assert [p["id"] for p in response.json()] == [payout["id"]]

        response = await client.post(
            f"{API}/admin/payouts/{payout['id']}/approve", headers=auth_headers(admin)
        )
        assert response.json()["status"] == "paid"

        response = await client.get(f"{API}/commissions", headers=headers, params={"status": "paid"})
        assert response.json()["total"] == 2

    @pytest.mark.asyncio
    async def test_admin_routes_require_admin(self, client, make_affiliate, auth_headers):
        affiliate = await make_affiliate()

        response = await client.get(f"{API}/admin/stats", headers=auth_headers(affiliate))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "permission_denied"
