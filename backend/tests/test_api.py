"""
End-to-end tests through the HTTP surface.

Covers:
1. Registration, login and wallet linkage
2. Admin vetting decisions with ledger sync and partial approval
3. Corrupt vetting requests hidden from the admin list and purged afterwards
4. Document approval: submit, issue, verify, revoke, cancel
5. Workflow errors rendered with their status and error kind
"""
import pytest

from dhruva.models.db_models import AccountDB, AccountRole, RequestStatus, VettingRequestDB

from .conftest import ADMIN_WALLET, DOC_HASH, HOLDER_WALLET, ORG_WALLET, OTHER_ORG_WALLET, OWNER


@pytest.fixture
def admin(make_account):
    return make_account("root", role=AccountRole.ADMIN, wallet_address=OWNER)


@pytest.fixture
def walletless_admin(make_account):
    return make_account("ops", role=AccountRole.ADMIN)


@pytest.fixture
def holder(make_account):
    return make_account("alice", wallet_address=HOLDER_WALLET)


@pytest.fixture
def issuing_organization(db, ledger, approved_organization):
    ledger.authorize_issuer(approved_organization.wallet_address, OWNER)
    return approved_organization


def _submit_document(client, headers, **overrides):
    body = {
        "organization": ORG_WALLET,
        "document_hash": DOC_HASH,
        "document_name": "Transcript.pdf",
        "metadata": {"term": "2026"},
    }
    body.update(overrides)
    return client.post("/approval-requests", json=body, headers=headers)


# =============================================================================
# TEST: SERVICE INFO
# =============================================================================

class TestServiceInfo:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, client):
        assert client.get("/").json()["name"] == "Dhruva"


# =============================================================================
# TEST: ACCOUNTS
# =============================================================================

class TestAccounts:

    def test_register_organization_opens_vetting(self, client, db):
        response = client.post("/auth/register", json={
            "username": "acme",
            "password": "correct-horse",
            "role": "organization",
            "wallet_address": ORG_WALLET.upper().replace("0X", "0x"),
            "organization_name": "Acme University",
        })

        assert response.status_code == 201
        account = response.json()["account"]
        assert account["wallet_address"] == ORG_WALLET
        assert account["is_approved"] is False

        requests = db.query(VettingRequestDB).all()
        assert len(requests) == 1
        assert requests[0].organization_name == "Acme University"

    def test_register_holder_is_approved(self, client):
        response = client.post("/auth/register", json={
            "username": "alice", "password": "correct-horse", "role": "holder",
        })
        assert response.status_code == 201
        assert response.json()["account"]["is_approved"] is True

    def test_admin_cannot_self_register(self, client):
        response = client.post("/auth/register", json={
            "username": "mallory", "password": "correct-horse", "role": "admin",
        })
        assert response.status_code == 422

    def test_duplicate_wallet_conflicts(self, client, organization):
        response = client.post("/auth/register", json={
            "username": "copycat", "password": "correct-horse", "role": "holder",
            "wallet_address": ORG_WALLET,
        })
        assert response.status_code == 409
        assert response.json()["error"] == "wallet_conflict"

    def test_login_and_me(self, client):
        client.post("/auth/register", json={
            "username": "alice", "password": "correct-horse", "role": "holder",
        })

        bad = client.post("/auth/login", json={"username": "alice", "password": "wrong-horse"})
        assert bad.status_code == 401

        token = client.post("/auth/login", json={
            "username": "alice", "password": "correct-horse",
        }).json()["access_token"]
        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["username"] == "alice"

    def test_me_requires_token(self, client):
        assert client.get("/auth/me").status_code in (401, 403)

    def test_link_wallet_opens_vetting(self, client, db, make_account, auth_headers):
        account = make_account("late", role=AccountRole.ORGANIZATION)

        response = client.post(
            "/auth/link-wallet", json={"wallet_address": OTHER_ORG_WALLET}, headers=auth_headers(account)
        )

        assert response.status_code == 200
        assert response.json()["wallet_address"] == OTHER_ORG_WALLET
        assert db.query(VettingRequestDB).filter(VettingRequestDB.account_id == account.id).count() == 1

    def test_unlink_wallet_flags_ledger_revocation(self, client, approved_organization, auth_headers):
        response = client.post(
            "/auth/unlink-wallet", json={"wallet_address": ORG_WALLET},
            headers=auth_headers(approved_organization),
        )

        assert response.status_code == 200
        assert response.json()["old_wallet_address"] == ORG_WALLET
        assert response.json()["requires_ledger_revocation"] is True


# =============================================================================
# TEST: ADMIN VETTING
# =============================================================================

class TestAdminVetting:

    def test_requires_admin(self, client, organization, auth_headers):
        response = client.get("/admin/vetting-requests", headers=auth_headers(organization))
        assert response.status_code == 403

    def test_list_hides_and_purges_corrupt(self, client, db, admin, pending_vetting, corrupt_vetting, auth_headers):
        response = client.get("/admin/vetting-requests", headers=auth_headers(admin))

        assert response.status_code == 200
        assert [r["id"] for r in response.json()] == [pending_vetting.id]
        assert response.json()[0]["account"]["username"] == "acme"

        db.expire_all()
        assert db.get(VettingRequestDB, corrupt_vetting.id) is None

    def test_approve_authorizes_on_ledger(self, client, db, ledger, admin, organization, pending_vetting, auth_headers):
        response = client.post(
            f"/admin/vetting-requests/{pending_vetting.id}/approve", headers=auth_headers(admin)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["request"]["status"] == "approved"
        assert body["request"]["reviewed_by"] == "root"
        assert body["ledger_sync"]["result"] == "authorized"
        assert body["warning"] is None
        assert ledger.is_authorized_issuer(ORG_WALLET)

        db.expire_all()
        assert db.get(AccountDB, organization.id).is_approved is True

    def test_partial_approval_warns(self, client, db, ledger, walletless_admin, organization, pending_vetting, auth_headers):
        response = client.post(
            f"/admin/vetting-requests/{pending_vetting.id}/approve", headers=auth_headers(walletless_admin)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["request"]["status"] == "approved"
        assert body["ledger_sync"]["result"] == "skipped"
        assert body["warning"]
        assert not ledger.is_authorized_issuer(ORG_WALLET)

        drift = client.get("/admin/drift", headers=auth_headers(walletless_admin)).json()
        assert drift[0]["status"] == "unauthorized_caller"

    def test_second_approval_conflicts(self, client, admin, pending_vetting, auth_headers):
        url = f"/admin/vetting-requests/{pending_vetting.id}/approve"
        client.post(url, headers=auth_headers(admin))

        response = client.post(url, headers=auth_headers(admin))

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"
        assert response.json()["current_status"] == "approved"

    def test_reject_with_reason(self, client, db, admin, organization, pending_vetting, auth_headers):
        response = client.post(
            f"/admin/vetting-requests/{pending_vetting.id}/reject",
            json={"reason": "Unverifiable address"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 200
        assert response.json()["request"]["rejection_reason"] == "Unverifiable address"
        db.expire_all()
        assert db.get(AccountDB, organization.id).is_approved is False

    def test_unknown_request_404(self, client, admin, auth_headers):
        response = client.post("/admin/vetting-requests/missing/approve", headers=auth_headers(admin))
        assert response.status_code == 404
        assert response.json()["detail"] == "Request not found"

    def test_drift_then_sync(self, client, ledger, admin, approved_vetting, auth_headers):
        drift_url = f"/admin/vetting-requests/{approved_vetting.id}/drift"

        assert client.get(drift_url, headers=auth_headers(admin)).json()["status"] == "missing_on_chain"
        assert client.get(drift_url, headers=auth_headers(admin)).json()["status"] == "missing_on_chain"
        assert ledger.transactions == []

        sync = client.post(
            f"/admin/vetting-requests/{approved_vetting.id}/sync-authorization", headers=auth_headers(admin)
        )
        assert sync.status_code == 200
        assert sync.json()["result"] == "authorized"
        assert client.get(drift_url, headers=auth_headers(admin)).json()["status"] == "in_sync"

    def test_drift_of_pending_request_conflicts(self, client, ledger, admin, pending_vetting, auth_headers):
        response = client.get(
            f"/admin/vetting-requests/{pending_vetting.id}/drift", headers=auth_headers(admin)
        )

        assert response.status_code == 409
        assert response.json()["status"] == "pending"
        assert ledger.transactions == []

    def test_sync_without_privilege_is_403(self, client, make_account, approved_vetting, auth_headers):
        stranger = make_account("ops", role=AccountRole.ADMIN, wallet_address=ADMIN_WALLET)

        response = client.post(
            f"/admin/vetting-requests/{approved_vetting.id}/sync-authorization",
            headers=auth_headers(stranger),
        )

        assert response.status_code == 403
        assert response.json()["result"] == "unauthorized_caller"
        assert response.json()["ledger_owner"] == OWNER

    def test_repair_approvals(self, client, db, admin, organization, approved_vetting, auth_headers):
        organization.is_approved = False
        db.commit()

        response = client.post("/admin/repair-approvals", headers=auth_headers(admin))

        assert response.json()["repaired"] == 1
        db.expire_all()
        assert db.get(AccountDB, organization.id).is_approved is True


class TestOrganizationVetting:

    def test_submit_uses_linked_wallet(self, client, organization, auth_headers):
        response = client.post(
            "/vetting-requests", json={"website": "https://acme.example/about"},
            headers=auth_headers(organization),
        )

        assert response.status_code == 201
        assert response.json()["wallet_address"] == ORG_WALLET
        assert response.json()["website"] == "https://acme.example/about"

    def test_submit_without_wallet(self, client, make_account, auth_headers):
        account = make_account("late", role=AccountRole.ORGANIZATION)

        response = client.post("/vetting-requests", json={}, headers=auth_headers(account))

        assert response.status_code == 400
        assert response.json()["error"] == "missing_wallet"

    def test_list_mine(self, client, organization, pending_vetting, auth_headers):
        response = client.get("/vetting-requests/mine", headers=auth_headers(organization))
        assert [r["id"] for r in response.json()] == [pending_vetting.id]


# =============================================================================
# TEST: DOCUMENT APPROVAL
# =============================================================================

class TestDocumentApproval:

    def test_submit_and_list(self, client, holder, auth_headers):
        response = _submit_document(client, auth_headers(holder))

        assert response.status_code == 201
        request = response.json()["request"]
        assert request["requester"] == HOLDER_WALLET
        assert request["status"] == "pending"
        assert request["metadata"] == {"term": "2026"}

        listed = client.get(
            f"/approval-requests/organization/{ORG_WALLET}?status=pending", headers=auth_headers(holder)
        ).json()
        assert [r["id"] for r in listed] == [request["id"]]

        mine = client.get(f"/approval-requests/requester/{HOLDER_WALLET}", headers=auth_headers(holder)).json()
        assert len(mine) == 1

    def test_duplicate_pending_conflicts(self, client, holder, auth_headers):
        _submit_document(client, auth_headers(holder))
        response = _submit_document(client, auth_headers(holder))

        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_pending"

    def test_cannot_submit_for_another_wallet(self, client, holder, auth_headers):
        response = _submit_document(client, auth_headers(holder), requester=OTHER_ORG_WALLET)
        assert response.status_code == 403

    def test_walletless_account_cannot_submit_for_others(self, client, db, make_account, auth_headers):
        mallory = make_account("mallory")

        response = _submit_document(client, auth_headers(mallory), requester=HOLDER_WALLET)

        assert response.status_code == 403
        assert response.json()["error"] == "unauthorized"
        assert client.get(
            f"/approval-requests/requester/{HOLDER_WALLET}", headers=auth_headers(mallory)
        ).json() == []

    def test_issue_verify_revoke(self, client, holder, issuing_organization, auth_headers):
        request_id = _submit_document(client, auth_headers(holder)).json()["request"]["id"]

        issued = client.post(
            f"/approval-requests/{request_id}/issue", json={"response_message": "Verified"},
            headers=auth_headers(issuing_organization),
        )
        assert issued.status_code == 200
        credential_hash = issued.json()["credential_hash"]
        assert issued.json()["request"]["status"] == "approved"
        assert issued.json()["request"]["issued_credential_hash"] == credential_hash

        verified = client.get(f"/credentials/{credential_hash}/verify", headers=auth_headers(holder)).json()
        assert verified["valid"] is True
        assert verified["holder"] == HOLDER_WALLET

        revoked = client.post(
            f"/credentials/{credential_hash}/revoke", headers=auth_headers(issuing_organization)
        )
        assert revoked.status_code == 200
        verified = client.get(f"/credentials/{credential_hash}/verify", headers=auth_headers(holder)).json()
        assert verified["revoked"] is True

    def test_issue_without_ledger_authorization_stays_pending(
        self, client, db, holder, approved_organization, auth_headers
    ):
        request_id = _submit_document(client, auth_headers(holder)).json()["request"]["id"]

        response = client.post(
            f"/approval-requests/{request_id}/issue", json={}, headers=auth_headers(approved_organization)
        )

        assert response.status_code == 502
        assert response.json()["reason"] == "unauthorized"
        status = client.get(f"/approval-requests/{request_id}", headers=auth_headers(holder)).json()["status"]
        assert status == "pending"

    def test_patch_decision_with_reference(self, client, holder, approved_organization, auth_headers):
        request_id = _submit_document(client, auth_headers(holder)).json()["request"]["id"]

        response = client.patch(
            f"/approval-requests/{request_id}",
            json={"status": "approved", "issued_credential_hash": "0xCAFE"},
            headers=auth_headers(approved_organization),
        )

        assert response.status_code == 200
        assert response.json()["request"]["issued_credential_hash"] == "0xCAFE"
        assert response.json()["credential_mirror_updated"] is False

        again = client.patch(
            f"/approval-requests/{request_id}", json={"status": "rejected"},
            headers=auth_headers(approved_organization),
        )
        assert again.status_code == 409

    def test_unapproved_organization_cannot_decide(self, client, holder, organization, auth_headers):
        request_id = _submit_document(client, auth_headers(holder)).json()["request"]["id"]

        response = client.patch(
            f"/approval-requests/{request_id}", json={"status": "approved"},
            headers=auth_headers(organization),
        )
        assert response.status_code == 403

    def test_cancel_by_requester_only(self, client, holder, make_account, auth_headers):
        request_id = _submit_document(client, auth_headers(holder)).json()["request"]["id"]
        bob = make_account("bob", wallet_address=OTHER_ORG_WALLET)

        denied = client.delete(f"/approval-requests/{request_id}", headers=auth_headers(bob))
        assert denied.status_code == 403
        assert client.get(f"/approval-requests/{request_id}", headers=auth_headers(holder)).status_code == 200

        spoofed = client.delete(
            f"/approval-requests/{request_id}?requester={HOLDER_WALLET}", headers=auth_headers(bob)
        )
        assert spoofed.status_code == 403

        allowed = client.delete(f"/approval-requests/{request_id}", headers=auth_headers(holder))
        assert allowed.status_code == 200
        assert client.get(f"/approval-requests/{request_id}", headers=auth_headers(holder)).status_code == 404

    def test_cancel_unknown_request_is_404_before_requester_check(self, client, holder, auth_headers):
        response = client.delete(
            f"/approval-requests/missing?requester={OTHER_ORG_WALLET}", headers=auth_headers(holder)
        )

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_issue_retry_resumes_after_partial_failure(self, client, db, holder, issuing_organization, auth_headers):
        from unittest.mock import patch
        from sqlalchemy.exc import SQLAlchemyError
        from dhruva.services.workflow.approval import ApprovalService

        request_id = _submit_document(client, auth_headers(holder)).json()["request"]["id"]
        url = f"/approval-requests/{request_id}/issue"

        with patch.object(ApprovalService, "decide", side_effect=SQLAlchemyError("connection lost")):
            with pytest.raises(SQLAlchemyError):
                client.post(url, json={}, headers=auth_headers(issuing_organization))

        retried = client.post(url, json={}, headers=auth_headers(issuing_organization))

        assert retried.status_code == 200
        assert retried.json()["resumed"] is True
        assert retried.json()["tx_hash"]
        assert retried.json()["request"]["status"] == "approved"
