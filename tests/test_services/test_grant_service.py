"""Tests for the Grant Issuer and the service registry."""

from __future__ import annotations

import pytest

from doauth.crypto.keys import private_key_to_public_key, sign_message
from doauth.engine.models import AccessKind
from doauth.engine.services.access_decision import DenyReason
from doauth.engine.services.grant_service import GrantStatus, grant_status
from doauth.errors.doauth_errors import (
    InvalidCredentialError,
    NoCapabilityForVaultError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from doauth.session.credential import SessionCredential

MINUTE_MS = 60_000


class TestServiceRegistry:
    async def test_register(self, engine, service_addr, clock) -> None:
        svc, cap = await engine.service_registry.register_service(
            service_addr, " client-app ", "https://app.example/cb", [1, 0, 0]
        )
        assert svc.client_id == "client-app"
        assert svc.owner == service_addr
        assert svc.resource_kinds == [0, 1]
        assert svc.created_at == clock.now_ms()
        assert cap.holder == service_addr
        assert cap.authorizes(svc.id)

    @pytest.mark.parametrize(
        ("client_id", "redirect_url", "kinds"),
        [
            ("", "https://app.example/cb", [0]),
            ("app", "ftp://app.example/cb", [0]),
            ("app", "not a url", [0]),
            ("app", "https://app.example/cb", []),
            ("app", "https://app.example/cb", [4]),
        ],
    )
    async def test_register_validation(
        self, engine, service_addr, client_id, redirect_url, kinds
    ) -> None:
        with pytest.raises(ValidationError):
            await engine.service_registry.register_service(
                service_addr, client_id, redirect_url, kinds
            )

    async def test_client_id_not_unique(self, engine, service_addr, stranger) -> None:
        first, _ = await engine.service_registry.register_service(
            service_addr, "shared", "https://a.example/cb", [0]
        )
        second, _ = await engine.service_registry.register_service(
            stranger, "shared", "https://b.example/cb", [0]
        )
        found = await engine.service_registry.find_services("shared")
        assert {s.id for s in found} == {first.id, second.id}
        mine = await engine.service_registry.list_services_for(service_addr)
        assert [s.id for s in mine] == [first.id]

    async def test_update_requires_capability(self, engine, service_addr, stranger) -> None:
        svc, cap = await engine.service_registry.register_service(
            service_addr, "app", "https://app.example/cb", [0]
        )
        with pytest.raises(UnauthorizedError):
            await engine.service_registry.update_service(
                stranger, cap.id, svc.id, redirect_url="https://evil.example"
            )
        with pytest.raises(UnauthorizedError):
            await engine.service_registry.update_service(
                service_addr, "0xnocap", svc.id, redirect_url="https://evil.example"
            )

        updated = await engine.service_registry.update_service(
            service_addr, cap.id, svc.id, redirect_url="https://new.example/cb", resource_kinds=[2]
        )
        assert updated.redirect_url == "https://new.example/cb"
        assert updated.resource_kinds == [2]

    async def test_unknown_service(self, engine) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            await engine.service_registry.get_service("0xmissing")
        assert exc_info.value.code == "service-not-found"


class TestIssueGrant:
    async def test_issue_writes_entries_and_grant(
        self, engine, stocked, service, owner, service_addr, clock
    ) -> None:
        grant = await engine.grant_service.issue_grant(owner, service.id, [stocked.item.id])

        assert grant.user_address == owner
        assert grant.owner_address == service_addr
        assert grant.client_id == "client-app"
        assert grant.resource_ids == [stocked.item.id]
        assert grant.access_kinds == {stocked.item.id: int(AccessKind.VIEW)}
        assert grant.expires_at == clock.now_ms() + engine.config.grant.default_ttl_ms
        assert len(grant.bearer_token) == 64
        assert grant.revoked_at is None

        entries = await engine.allow_list_service.list_access(stocked.vault.id)
        assert [(e.address, e.access_kind, e.expires_at) for e in entries] == [
            (service_addr, int(AccessKind.VIEW), grant.expires_at)
        ]
        assert engine.metrics.registry.get_sample_value("doauth_grants_issued_total") == 1.0

    async def test_grant_access_ends_with_grant(
        self, engine, stocked, service, owner, service_addr, clock
    ) -> None:
        await engine.allow_list_service.grant_access(
            owner,
            stocked.cap.id,
            stocked.vault.id,
            service_addr,
            AccessKind.VIEW,
            clock.now_ms() + 30 * MINUTE_MS,
        )
        grant = await engine.grant_service.issue_grant(
            owner, service.id, [stocked.item.id], ttl_ms=30 * MINUTE_MS
        )

        decide = engine.decision_engine.decide_by_id
        assert (await decide(stocked.item.id, service_addr, AccessKind.VIEW)).allowed
        assert await engine.grant_service.status(grant.id) is GrantStatus.ACTIVE

        clock.advance(minutes=31)
        decision = await decide(stocked.item.id, service_addr, AccessKind.VIEW)
        assert decision.reason == DenyReason.NO_MATCHING_GRANT
        assert await engine.grant_service.status(grant.id) is GrantStatus.EXPIRED

    async def test_missing_capability_rolls_back_everything(
        self, engine, stock, service, owner, stranger, all_entries
    ) -> None:
        mine = await stock(owner, group_name="mine")
        theirs = await stock(stranger, group_name="theirs")

        with pytest.raises(NoCapabilityForVaultError) as exc_info:
            await engine.grant_service.issue_grant(
                owner, service.id, [mine.item.id, theirs.item.id]
            )
        assert exc_info.value.vault_id == theirs.vault.id

        assert await all_entries() == []
        assert await engine.grant_service.list_grants_for_user(owner) == []

    async def test_selection_with_kinds(
        self, engine, stock, owner, service_addr
    ) -> None:
        svc, _ = await engine.service_registry.register_service(
            service_addr, "editor", "https://edit.example/cb", [0, 1]
        )
        stocked = await stock(owner)
        grant = await engine.grant_service.issue_grant(
            owner, svc.id, {stocked.item.id: AccessKind.EDIT}
        )
        assert grant.access_kinds == {stocked.item.id: int(AccessKind.EDIT)}
        entries = await engine.allow_list_service.list_access(stocked.vault.id)
        assert [e.access_kind for e in entries] == [int(AccessKind.EDIT)]

    async def test_undeclared_kind_rejected(self, engine, stocked, service, owner) -> None:
        with pytest.raises(ValidationError, match="EDIT"):
            await engine.grant_service.issue_grant(
                owner, service.id, {stocked.item.id: AccessKind.EDIT}
            )
        assert await engine.grant_service.list_grants_for_user(owner) == []

    @pytest.mark.parametrize("ttl_ms", [0, -5, 30 * 24 * 60 * MINUTE_MS + 1])
    async def test_ttl_bounds(self, engine, stocked, service, owner, ttl_ms: int) -> None:
        with pytest.raises(ValidationError, match="ttl"):
            await engine.grant_service.issue_grant(
                owner, service.id, [stocked.item.id], ttl_ms=ttl_ms
            )

    async def test_empty_selection(self, engine, service, owner) -> None:
        with pytest.raises(ValidationError, match="selected"):
            await engine.grant_service.issue_grant(owner, service.id, [])

    async def test_unknown_service_or_item(self, engine, stocked, service, owner) -> None:
        with pytest.raises(NotFoundError):
            await engine.grant_service.issue_grant(owner, "0xmissing", [stocked.item.id])
        with pytest.raises(NotFoundError):
            await engine.grant_service.issue_grant(owner, service.id, ["0xmissing"])


class TestAuthorizationFlow:
    async def test_begin_authorization_lists_selectable_items(
        self, engine, stock, service, owner
    ) -> None:
        viewable = await stock(owner, group_name="a", name="viewable")
        editable = await stock(owner, group_name="b", name="editable", access_kind=AccessKind.EDIT)

        request = await engine.grant_service.begin_authorization(service.id, owner)
        assert request.status is GrantStatus.PENDING_SELECTION
        assert request.user_address == owner
        assert {i.id for i in request.items} == {viewable.item.id, editable.item.id}
        assert [i.id for i in request.selectable()] == [viewable.item.id]


class TestRevokeAndList:
    async def test_revoke(self, engine, stocked, service, owner, clock) -> None:
        grant = await engine.grant_service.issue_grant(owner, service.id, [stocked.item.id])
        clock.advance(seconds=5)
        revoked = await engine.grant_service.revoke_grant(owner, grant.id)
        assert revoked.revoked_at == clock.now_ms()
        assert await engine.grant_service.status(grant.id) is GrantStatus.REVOKED

        clock.advance(seconds=5)
        again = await engine.grant_service.revoke_grant(owner, grant.id)
        assert again.revoked_at == revoked.revoked_at

        # the entry issuance wrote goes with the grant
        assert await engine.allow_list_service.list_access(stocked.vault.id) == []

    async def test_revoke_keeps_entry_for_other_active_grant(
        self, engine, stocked, service, owner, service_addr
    ) -> None:
        short = await engine.grant_service.issue_grant(
            owner, service.id, [stocked.item.id], ttl_ms=10 * MINUTE_MS
        )
        long = await engine.grant_service.issue_grant(
            owner, service.id, [stocked.item.id], ttl_ms=60 * MINUTE_MS
        )
        entries = await engine.allow_list_service.list_access(stocked.vault.id)
        assert [e.expires_at for e in entries] == [long.expires_at]

        await engine.grant_service.revoke_grant(owner, long.id)
        entries = await engine.allow_list_service.list_access(stocked.vault.id)
        assert [(e.address, e.expires_at) for e in entries] == [(service_addr, short.expires_at)]

        await engine.grant_service.revoke_grant(owner, short.id)
        assert await engine.allow_list_service.list_access(stocked.vault.id) == []

    async def test_revoke_leaves_entry_outliving_it(
        self, engine, stocked, service, owner
    ) -> None:
        short = await engine.grant_service.issue_grant(
            owner, service.id, [stocked.item.id], ttl_ms=10 * MINUTE_MS
        )
        long = await engine.grant_service.issue_grant(
            owner, service.id, [stocked.item.id], ttl_ms=60 * MINUTE_MS
        )
        await engine.grant_service.revoke_grant(owner, short.id)
        entries = await engine.allow_list_service.list_access(stocked.vault.id)
        assert [e.expires_at for e in entries] == [long.expires_at]

    async def test_revoke_leaves_other_vaults_alone(
        self, engine, stock, service, owner
    ) -> None:
        first = await stock(owner, group_name="first")
        second = await stock(owner, group_name="second")
        revoked = await engine.grant_service.issue_grant(owner, service.id, [first.item.id])
        await engine.grant_service.issue_grant(owner, service.id, [second.item.id])

        await engine.grant_service.revoke_grant(owner, revoked.id)
        assert await engine.allow_list_service.list_access(first.vault.id) == []
        assert len(await engine.allow_list_service.list_access(second.vault.id)) == 1

    async def test_only_authorizer_may_revoke(
        self, engine, stocked, service, owner, service_addr
    ) -> None:
        grant = await engine.grant_service.issue_grant(owner, service.id, [stocked.item.id])
        with pytest.raises(UnauthorizedError):
            await engine.grant_service.revoke_grant(service_addr, grant.id)

    async def test_unknown_grant(self, engine, owner) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            await engine.grant_service.revoke_grant(owner, "0xmissing")
        assert exc_info.value.code == "grant-not-found"

    async def test_listing(self, engine, stocked, service, owner, service_addr, clock) -> None:
        first = await engine.grant_service.issue_grant(owner, service.id, [stocked.item.id])
        clock.advance(seconds=1)
        second = await engine.grant_service.issue_grant(owner, service.id, [stocked.item.id])

        by_user = await engine.grant_service.list_grants_for_user(owner)
        assert [g.id for g in by_user] == [second.id, first.id]
        received = await engine.grant_service.list_grants_for_recipient(service_addr)
        assert [g.id for g in received] == [second.id, first.id]
        assert await engine.grant_service.list_grants_for_recipient(owner) == []

    def test_grant_status_evaluation(self) -> None:
        class _Grant:
            expires_at = 100
            revoked_at = None

        grant = _Grant()
        assert grant_status(grant, 99) is GrantStatus.ACTIVE
        assert grant_status(grant, 100) is GrantStatus.EXPIRED
        grant.revoked_at = 50
        assert grant_status(grant, 60) is GrantStatus.REVOKED


class TestExchange:
    async def _issue(self, engine, stocked, service, owner):
        return await engine.grant_service.issue_grant(owner, service.id, [stocked.item.id])

    async def test_exchange_returns_access_token(
        self, engine, stocked, service, owner, service_key, signed_credential
    ) -> None:
        grant = await self._issue(engine, stocked, service, owner)
        credential = signed_credential(service_key, grant_id=grant.id)

        token = await engine.grant_service.exchange_for_session_credential(
            grant.id, grant.bearer_token, credential
        )
        assert SessionCredential.import_(token) == credential

    async def test_exchange_attaches_signature(
        self, engine, stocked, service, owner, service_key, service_addr
    ) -> None:
        grant = await self._issue(engine, stocked, service, owner)
        credential = engine.new_session_credential(service_addr, grant_id=grant.id)

        token = await engine.grant_service.exchange_for_session_credential(
            grant.id,
            grant.bearer_token,
            credential,
            public_key=private_key_to_public_key(service_key),
            signature=sign_message(service_key, credential.personal_message()),
        )
        assert SessionCredential.import_(token).is_signed

    async def test_wrong_bearer_token(
        self, engine, stocked, service, owner, service_key, signed_credential
    ) -> None:
        grant = await self._issue(engine, stocked, service, owner)
        credential = signed_credential(service_key, grant_id=grant.id)
        with pytest.raises(UnauthorizedError) as exc_info:
            await engine.grant_service.exchange_for_session_credential(
                grant.id, "00" * 32, credential
            )
        assert exc_info.value.status_code == 401

    async def test_credential_must_be_bound_to_grant(
        self, engine, stocked, service, owner, service_key, signed_credential
    ) -> None:
        grant = await self._issue(engine, stocked, service, owner)
        with pytest.raises(InvalidCredentialError, match="grant"):
            await engine.grant_service.exchange_for_session_credential(
                grant.id, grant.bearer_token, signed_credential(service_key)
            )

    async def test_credential_must_belong_to_recipient(
        self, engine, stocked, service, owner, stranger_key, signed_credential
    ) -> None:
        grant = await self._issue(engine, stocked, service, owner)
        credential = signed_credential(stranger_key, grant_id=grant.id)
        with pytest.raises(InvalidCredentialError, match="recipient"):
            await engine.grant_service.exchange_for_session_credential(
                grant.id, grant.bearer_token, credential
            )

    async def test_revoked_grant(
        self, engine, stocked, service, owner, service_key, signed_credential
    ) -> None:
        grant = await self._issue(engine, stocked, service, owner)
        await engine.grant_service.revoke_grant(owner, grant.id)
        credential = signed_credential(service_key, grant_id=grant.id)
        with pytest.raises(InvalidCredentialError, match="revoked"):
            await engine.grant_service.exchange_for_session_credential(
                grant.id, grant.bearer_token, credential
            )

    async def test_unsigned_credential(
        self, engine, stocked, service, owner, service_addr
    ) -> None:
        grant = await self._issue(engine, stocked, service, owner)
        credential = engine.new_session_credential(service_addr, grant_id=grant.id)
        with pytest.raises(InvalidCredentialError, match="not signed"):
            await engine.grant_service.exchange_for_session_credential(
                grant.id, grant.bearer_token, credential
            )
