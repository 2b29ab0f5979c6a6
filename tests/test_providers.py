"""Tests for the e-signature client, KYC storage and per-affiliate locks."""

import asyncio
import json
import uuid

import httpx
import pytest

from affiliate_hub.core.exceptions import ConcurrencyConflict, ExternalProviderError, ValidationError
from affiliate_hub.core.locks import AffiliateLockRegistry
from affiliate_hub.core.storage import StorageClient
from affiliate_hub.services.document_storage import SupabaseDocumentStorage, validate_kyc_document
from affiliate_hub.services.signature_provider import HttpSignatureProvider, SignatureSessionStatus


def provider_with(handler) -> HttpSignatureProvider:
    return HttpSignatureProvider(
        base_url="https://esign.test/v1",
        api_key="test-key",
        timeout=1,
        transport=httpx.MockTransport(handler),
    )


class TestHttpSignatureProvider:
    @pytest.mark.asyncio
    async def test_create_session_sends_idempotency_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["key"] = request.headers.get("Idempotency-Key")
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "sess_42", "signing_url": "https://sign.test/42"})

        affiliate_id = uuid.uuid4()
        session = await provider_with(handler).create_session(affiliate_id, idempotency_key="agreement-x-3")

        assert session.session_ref == "sess_42"
        assert session.signing_url == "https://sign.test/42"
        assert seen["path"] == "/v1/sessions"
        assert seen["key"] == "agreement-x-3"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"]["external_id"] == str(affiliate_id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("sent", SignatureSessionStatus.PENDING),
            ("signed", SignatureSessionStatus.COMPLETED),
            ("COMPLETED", SignatureSessionStatus.COMPLETED),
            ("declined", SignatureSessionStatus.EXPIRED),
        ],
    )
    async def test_status_mapping(self, raw, expected):
        def handler(request):
            return httpx.Response(200, json={"status": raw})

        assert await provider_with(handler).session_status("sess_1") == expected

    @pytest.mark.asyncio
    async def test_unknown_status(self):
        def handler(request):
            return httpx.Response(200, json={"status": "archived"})

        with pytest.raises(ExternalProviderError):
            await provider_with(handler).session_status("sess_1")

    @pytest.mark.asyncio
    async def test_http_error(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        with pytest.raises(ExternalProviderError) as exc_info:
            await provider_with(handler).create_session(uuid.uuid4())

        assert exc_info.value.details["upstream_status"] == 500
        assert exc_info.value.details["retryable"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ["<html>maintenance</html>", "[1, 2]"])
    async def test_non_object_body_is_provider_error(self, body):
        def handler(request):
            return httpx.Response(200, text=body)

        with pytest.raises(ExternalProviderError) as exc_info:
            await provider_with(handler).session_status("sess_1")

        assert "malformed response" in exc_info.value.message
        assert exc_info.value.details["retryable"] is True

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ExternalProviderError) as exc_info:
            await provider_with(handler).session_status("sess_1")

        assert exc_info.value.timed_out is True
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_not_configured(self):
        provider = HttpSignatureProvider(base_url="", api_key="")

        with pytest.raises(ExternalProviderError):
            await provider.session_status("sess_1")


class TestKYCValidation:
    def test_accepts_pdf(self):
        validate_kyc_document("passport", "application/pdf", 1024)

    @pytest.mark.parametrize(
        "document_type,content_type,size,field",
        [
            ("passport", "image/gif", 1024, "mime_type"),
            ("passport", None, 1024, "mime_type"),
            ("selfie", "image/png", 1024, "document_type"),
            ("passport", "image/png", 0, "file"),
            ("passport", "image/png", 10 * 1024 * 1024 + 1, "file"),
        ],
    )
    def test_rejects(self, document_type, content_type, size, field):
        with pytest.raises(ValidationError) as exc_info:
            validate_kyc_document(document_type, content_type, size)

        assert exc_info.value.field == field


class TestSupabaseDocumentStorage:
    @pytest.mark.asyncio
    async def test_store_returns_path(self, monkeypatch):
        uploads = []

        def fake_upload(content, path, content_type):
            uploads.append((path, content_type))
            return path

        monkeypatch.setattr(StorageClient, "upload", staticmethod(fake_upload))

        ref = await SupabaseDocumentStorage().store(b"%PDF", "application/pdf")

        assert ref.startswith("kyc/")
        assert ref.endswith(".pdf")
        assert uploads == [(ref, "application/pdf")]

    @pytest.mark.asyncio
    async def test_store_failure_is_provider_error(self, monkeypatch):
        def failing_upload(content, path, content_type):
            raise RuntimeError("bucket not found")

        monkeypatch.setattr(StorageClient, "upload", staticmethod(failing_upload))

        with pytest.raises(ExternalProviderError) as exc_info:
            await SupabaseDocumentStorage().store(b"%PDF", "application/pdf")

        assert "bucket not found" in exc_info.value.message


class TestAffiliateLocks:
    @pytest.mark.asyncio
    async def test_same_affiliate_serialized(self):
        locks = AffiliateLockRegistry(timeout=1)
        affiliate_id = uuid.uuid4()
        order = []

        async def op(name):
            async with locks.hold(affiliate_id, name):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(op("a"), op("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_different_affiliates_independent(self):
        locks = AffiliateLockRegistry(timeout=1)
        first, second = uuid.uuid4(), uuid.uuid4()

        async with locks.hold(first, "outer"):
            async with locks.hold(second, "inner"):
                assert locks.is_locked(first)
                assert locks.is_locked(second)

    @pytest.mark.asyncio
    async def test_timeout_is_conflict(self):
        locks = AffiliateLockRegistry(timeout=0.05)
        affiliate_id = uuid.uuid4()

        async with locks.hold(affiliate_id, "slow"):
            with pytest.raises(ConcurrencyConflict) as exc_info:
                async with locks.hold(affiliate_id, "request_payout"):
                    pass

        assert exc_info.value.details["operation"] == "request_payout"
        assert not locks.is_locked(affiliate_id)

    @pytest.mark.asyncio
    async def test_release_racing_timeout_leaves_lock_free(self):
        locks = AffiliateLockRegistry(timeout=0.01)
        affiliate_id = uuid.uuid4()
        seen = []

        async def holder():
            async with locks.hold(affiliate_id, "holder"):
                seen.append(locks._locks[affiliate_id])
                await asyncio.sleep(0.01)

        async def contender():
            try:
                async with locks.hold(affiliate_id, "contender"):
                    pass
            except ConcurrencyConflict:
                pass

        for _ in range(25):
            await asyncio.gather(holder(), contender())

        assert not any(lock.locked() for lock in seen)
        assert not locks.is_locked(affiliate_id)
        async with locks.hold(affiliate_id, "after"):
            assert locks.is_locked(affiliate_id)

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_keep_lock(self):
        locks = AffiliateLockRegistry(timeout=1)
        affiliate_id = uuid.uuid4()

        async def waiter():
            async with locks.hold(affiliate_id, "waiter"):
                await asyncio.sleep(10)

        async with locks.hold(affiliate_id, "holder"):
            task = asyncio.create_task(waiter())
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert not locks.is_locked(affiliate_id)
