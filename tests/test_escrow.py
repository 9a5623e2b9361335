"""HTTP tests for escrow creation, status moves and the provider webhook."""

import pytest
from sqlalchemy import select

from trustbridge.domain.models import Notification
from trustbridge.services.escrow_service import compute_fees


class TestFees:

    @pytest.mark.parametrize(
        "amount,percent,expected",
        [
            (900_000, 5.0, (45_000, 945_000, 900_000)),
            (1_000, 2.5, (25, 1_025, 1_000)),
            (333, 5.0, (17, 350, 333)),
            (50, 5.0, (3, 53, 50)),
            (10, 5.0, (1, 11, 10)),
            (30, 5.0, (2, 32, 30)),
        ],
    )
    def test_compute_fees(self, amount, percent, expected):
        assert compute_fees(amount, percent) == expected

    async def test_fee_endpoint(self, client, auth_header, make_user, make_listing, make_escrow):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        escrow = await make_escrow(listing, buyer)

        resp = await client.get(f"/api/escrow/{escrow.id}/fees", headers=auth_header(seller))

        assert resp.status_code == 200
        assert resp.json() == {
            "escrowAmount": 900_000,
            "platformFeePercent": 5.0,
            "platformFeeAmount": 45_000,
            "buyerTotalAmount": 945_000,
            "sellerNetAmount": 900_000,
        }


class TestCreate:

    async def test_from_accepted_loi(
        self, client, auth_header, make_user, make_listing, make_loi, db_session
    ):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer, status="accepted")

        resp = await client.post(
            "/api/escrow",
            json={"listingId": listing.id, "loiId": loi.id, "escrowAmount": 900_000},
            headers=auth_header(seller),
        )

        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "initiated"
        assert data["buyerId"] == buyer.id
        assert data["sellerId"] == seller.id
        assert data["buyerTotalAmount"] == 945_000
        assert "webhookSecret" not in data

        notes = (await db_session.execute(
            select(Notification).where(Notification.user_id == buyer.id)
        )).scalars().all()
        assert [n.type for n in notes] == ["escrow"]

    async def test_loi_must_be_accepted(self, client, auth_header, make_user, make_listing, make_loi):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer, status="sent")

        resp = await client.post(
            "/api/escrow",
            json={"listingId": listing.id, "loiId": loi.id, "escrowAmount": 900_000},
            headers=auth_header(buyer),
        )

        assert resp.status_code == 409
        assert resp.json()["code"] == "LOI_NOT_ACCEPTED"

    async def test_one_escrow_per_loi(self, client, auth_header, make_user, make_listing, make_loi, make_escrow):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer, status="accepted")
        await make_escrow(listing, buyer, loi=loi)

        resp = await client.post(
            "/api/escrow",
            json={"listingId": listing.id, "loiId": loi.id, "escrowAmount": 900_000},
            headers=auth_header(buyer),
        )

        assert resp.status_code == 409
        assert resp.json()["code"] == "ESCROW_ALREADY_EXISTS"

    async def test_direct_escrow_by_buyer(self, client, auth_header, make_user, make_listing):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)

        resp = await client.post(
            "/api/escrow",
            json={"listingId": listing.id, "sellerId": seller.id, "escrowAmount": 50_000},
            headers=auth_header(buyer),
        )

        assert resp.status_code == 201
        assert resp.json()["loiId"] is None
        assert resp.json()["platformFeeAmount"] == 2_500

    @pytest.mark.parametrize(
        "body,code",
        [
            ({"escrowAmount": 10}, "MISSING_LISTING_ID"),
            ({"listingId": "x", "escrowAmount": 0}, "INVALID_ESCROW_AMOUNT"),
            ({"listingId": "x", "escrowAmount": 10, "buyerId": "someone"}, "USER_ID_NOT_ALLOWED"),
        ],
    )
    async def test_body_validation(self, client, auth_header, make_user, body, code):
        buyer = await make_user()
        resp = await client.post("/api/escrow", json=body, headers=auth_header(buyer))
        assert resp.status_code == 400
        assert resp.json()["code"] == code


class TestStatus:

    async def test_one_step_forward_only(self, client, auth_header, make_user, make_listing, make_escrow):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        escrow = await make_escrow(listing, buyer)

        resp = await client.put(
            f"/api/escrow/{escrow.id}/status", json={"status": "in_migration"}, headers=auth_header(buyer)
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_STATUS_TRANSITION"

        resp = await client.put(
            f"/api/escrow/{escrow.id}/status", json={"status": "funded"}, headers=auth_header(buyer)
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "funded"
        assert resp.json()["fundedAt"] is not None

    async def test_seller_cannot_mark_funded(self, client, auth_header, make_user, make_listing, make_escrow):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        escrow = await make_escrow(listing, buyer)
        resp = await client.put(
            f"/api/escrow/{escrow.id}/status", json={"status": "funded"}, headers=auth_header(seller)
        )
        assert resp.json()["code"] == "INVALID_STATUS_TRANSITION"

    async def test_unknown_status(self, client, auth_header, make_user, make_listing, make_escrow):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        escrow = await make_escrow(listing, buyer)
        resp = await client.put(
            f"/api/escrow/{escrow.id}/status", json={"status": "paid"}, headers=auth_header(buyer)
        )
        assert resp.json()["code"] == "INVALID_STATUS"

    async def test_outsider_denied(self, client, auth_header, make_user, make_listing, make_escrow):
        seller, buyer, outsider = await make_user(), await make_user(), await make_user()
        listing = await make_listing(seller)
        escrow = await make_escrow(listing, buyer)

        resp = await client.get(f"/api/escrow/{escrow.id}", headers=auth_header(outsider))
        assert resp.status_code == 403
        assert resp.json()["code"] == "ACCESS_DENIED"

        resp = await client.get(f"/api/escrow/{escrow.id}", headers=auth_header(buyer))
        assert resp.json()["userRole"] == "buyer"

    async def test_list_is_scoped_to_parties(self, client, auth_header, make_user, make_listing, make_escrow):
        seller, buyer, outsider = await make_user(), await make_user(), await make_user()
        listing = await make_listing(seller)
        escrow = await make_escrow(listing, buyer)

        resp = await client.get("/api/escrow", headers=auth_header(seller))
        assert [item["id"] for item in resp.json()] == [escrow.id]

        resp = await client.get("/api/escrow", headers=auth_header(outsider))
        assert resp.json() == []


class TestWebhook:

    async def test_advances_with_per_escrow_secret(self, client, make_user, make_listing, make_escrow):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        escrow = await make_escrow(listing, buyer, reference_id="prov-123")

        resp = await client.post(
            "/api/escrow/webhook",
            json={"escrowReferenceId": "prov-123", "status": "funded", "webhookSecret": "escrow-secret"},
        )

        assert resp.status_code == 200
        assert resp.json() == {"received": True, "escrowId": escrow.id, "status": "funded"}

    async def test_bad_secret_rejected(self, client, make_user, make_listing, make_escrow, db_session):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        escrow = await make_escrow(listing, buyer, reference_id="prov-456")

        resp = await client.post(
            "/api/escrow/webhook",
            json={"escrowReferenceId": "prov-456", "status": "funded", "webhookSecret": "guess"},
        )

        assert resp.status_code == 401
        assert resp.json()["code"] == "INVALID_WEBHOOK_SECRET"
        await db_session.refresh(escrow)
        assert escrow.status == "initiated"

    async def test_webhook_cannot_skip(self, client, make_user, make_listing, make_escrow):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        await make_escrow(listing, buyer, reference_id="prov-789")

        resp = await client.post(
            "/api/escrow/webhook",
            json={"escrowReferenceId": "prov-789", "status": "released", "webhookSecret": "escrow-secret"},
        )

        assert resp.json()["code"] == "INVALID_STATUS_TRANSITION"

    async def test_missing_fields(self, client):
        resp = await client.post("/api/escrow/webhook", json={"status": "funded"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "MISSING_FIELDS"

    async def test_unknown_reference(self, client):
        resp = await client.post(
            "/api/escrow/webhook",
            json={"escrowReferenceId": "nope", "status": "funded", "webhookSecret": "x"},
        )
        assert resp.status_code == 404
