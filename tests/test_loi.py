"""HTTP tests for the letter-of-intent workflow."""

from datetime import timedelta

from sqlalchemy import select

from trustbridge.domain.models import Listing, LOIOffer, Notification
from trustbridge.services.transitions import utcnow


def _create_body(listing, **overrides):
    body = {
        "listingId": listing.id,
        "sellerId": listing.seller_id,
        "offerPrice": 900_000,
        "cashAmount": 700_000,
        "earnoutAmount": 200_000,
        "dueDiligenceDays": 30,
        "exclusivityDays": 45,
        "conditions": ["Financial review"],
        "expirationDate": (utcnow() + timedelta(days=14)).isoformat(),
    }
    body.update(overrides)
    return body


class TestCreate:

    async def test_buyer_drafts_offer(self, client, auth_header, make_user, make_listing):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)

        resp = await client.post("/api/loi", json=_create_body(listing), headers=auth_header(buyer))

        assert resp.status_code == 201
        data = resp.json()
        assert data["status"] == "draft"
        assert data["buyerId"] == buyer.id
        assert data["conditions"] == ["Financial review"]

    async def test_price_must_add_up(self, client, auth_header, make_user, make_listing):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)

        resp = await client.post(
            "/api/loi", json=_create_body(listing, offerPrice=950_000), headers=auth_header(buyer)
        )

        assert resp.status_code == 400
        assert resp.json()["code"] == "OFFER_PRICE_MISMATCH"

    async def test_missing_fields_reported_in_order(self, client, auth_header, make_user, make_listing):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        body = _create_body(listing)
        del body["cashAmount"]
        del body["exclusivityDays"]

        resp = await client.post("/api/loi", json=body, headers=auth_header(buyer))

        assert resp.json()["code"] == "MISSING_CASH_AMOUNT"

    async def test_buyer_id_in_body_rejected(self, client, auth_header, make_user, make_listing):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        resp = await client.post(
            "/api/loi", json=_create_body(listing, buyerId=seller.id), headers=auth_header(buyer)
        )
        assert resp.json()["code"] == "BUYER_ID_NOT_ALLOWED"

    async def test_past_expiration_rejected(self, client, auth_header, make_user, make_listing):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        body = _create_body(listing, expirationDate=(utcnow() - timedelta(hours=1)).isoformat())
        resp = await client.post("/api/loi", json=body, headers=auth_header(buyer))
        assert resp.json()["code"] == "EXPIRATION_DATE_NOT_FUTURE"

    async def test_cannot_offer_on_own_listing(self, client, auth_header, make_user, make_listing):
        seller = await make_user()
        listing = await make_listing(seller)
        resp = await client.post("/api/loi", json=_create_body(listing), headers=auth_header(seller))
        assert resp.status_code == 403
        assert resp.json()["code"] == "CANNOT_MAKE_OFFER_ON_OWN_LISTING"

    async def test_seller_id_must_match_listing(self, client, auth_header, make_user, make_listing):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        resp = await client.post(
            "/api/loi", json=_create_body(listing, sellerId=buyer.id), headers=auth_header(buyer)
        )
        assert resp.json()["code"] == "SELLER_ID_MISMATCH"


class TestDraftEdits:

    async def test_price_patch_checked_against_stored_values(
        self, client, auth_header, make_user, make_listing, make_loi
    ):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer)

        resp = await client.patch(f"/api/loi/{loi.id}", json={"cashAmount": 90}, headers=auth_header(buyer))
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_PRICE_CALCULATION"

        resp = await client.patch(
            f"/api/loi/{loi.id}",
            json={"offerPrice": 1_000_000, "cashAmount": 800_000},
            headers=auth_header(buyer),
        )
        assert resp.status_code == 200
        assert resp.json()["offerPrice"] == 1_000_000

    async def test_structural_fields_forbidden(self, client, auth_header, make_user, make_listing, make_loi):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer)

        resp = await client.patch(
            f"/api/loi/{loi.id}", json={"status": "accepted"}, headers=auth_header(buyer)
        )

        assert resp.status_code == 400
        assert resp.json()["code"] == "FORBIDDEN_FIELD"

    async def test_empty_patch(self, client, auth_header, make_user, make_listing, make_loi):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer)
        resp = await client.patch(f"/api/loi/{loi.id}", json={}, headers=auth_header(buyer))
        assert resp.json()["code"] == "NO_UPDATES"

    async def test_sent_offer_is_frozen(self, client, auth_header, make_user, make_listing, make_loi):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer, status="sent")

        resp = await client.patch(
            f"/api/loi/{loi.id}", json={"exclusivityDays": 60}, headers=auth_header(buyer)
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "INVALID_STATUS"

        resp = await client.delete(f"/api/loi/{loi.id}", headers=auth_header(buyer))
        assert resp.status_code == 403
        assert resp.json()["code"] == "INVALID_STATUS"

    async def test_seller_cannot_edit(self, client, auth_header, make_user, make_listing, make_loi):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer)
        resp = await client.patch(
            f"/api/loi/{loi.id}", json={"exclusivityDays": 60}, headers=auth_header(seller)
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "FORBIDDEN"

    async def test_delete_draft(self, client, auth_header, make_user, make_listing, make_loi, db_session):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer)

        resp = await client.delete(f"/api/loi/{loi.id}", headers=auth_header(buyer))

        assert resp.status_code == 200
        assert resp.json() == {"message": "LOI deleted", "id": loi.id}
        remaining = (await db_session.execute(select(LOIOffer.id))).scalars().all()
        assert remaining == []


class TestSend:

    async def test_buyer_sends_draft(self, client, auth_header, make_user, make_listing, make_loi, db_session):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer)

        resp = await client.post(f"/api/loi/{loi.id}/send", headers=auth_header(buyer))

        assert resp.status_code == 200
        assert resp.json()["status"] == "sent"
        assert resp.json()["sentAt"] is not None
        await db_session.refresh(listing)
        assert listing.under_loi is True

        notes = (await db_session.execute(
            select(Notification).where(Notification.user_id == seller.id)
        )).scalars().all()
        assert [n.type for n in notes] == ["loi"]

    async def test_seller_cannot_send(self, client, auth_header, make_user, make_listing, make_loi):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer)
        resp = await client.post(f"/api/loi/{loi.id}/send", headers=auth_header(seller))
        assert resp.status_code == 403
        assert resp.json()["code"] == "NOT_BUYER"

    async def test_only_drafts_can_be_sent(self, client, auth_header, make_user, make_listing, make_loi):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        for status in ("sent", "accepted", "rejected"):
            loi = await make_loi(listing, buyer, status=status)
            resp = await client.post(f"/api/loi/{loi.id}/send", headers=auth_header(buyer))
            assert resp.status_code == 400
            assert resp.json()["code"] == "INVALID_STATUS"

    async def test_unknown_offer(self, client, auth_header, make_user):
        buyer = await make_user()
        resp = await client.post("/api/loi/nope/send", headers=auth_header(buyer))
        assert resp.status_code == 404
        assert resp.json()["code"] == "LOI_NOT_FOUND"


class TestRespond:

    async def test_seller_accepts(self, client, auth_header, make_user, make_listing, make_loi, db_session):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer, status="sent")

        resp = await client.post(
            f"/api/loi/{loi.id}/respond",
            json={"action": "accept", "responseNotes": "Looking forward"},
            headers=auth_header(seller),
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "accepted"
        assert data["responseNotes"] == "Looking forward"
        assert data["respondedAt"] is not None
        listing_row = await db_session.get(Listing, listing.id)
        await db_session.refresh(listing_row)
        assert listing_row.under_loi is True

    async def test_reject_clears_under_loi_when_nothing_else_open(
        self, client, auth_header, make_user, make_listing, make_loi, db_session
    ):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller, under_loi=True)
        loi = await make_loi(listing, buyer, status="sent")

        resp = await client.post(
            f"/api/loi/{loi.id}/respond", json={"action": "reject"}, headers=auth_header(seller)
        )

        assert resp.json()["status"] == "rejected"
        await db_session.refresh(listing)
        assert listing.under_loi is False

    async def test_reject_keeps_under_loi_with_other_open_offer(
        self, client, auth_header, make_user, make_listing, make_loi, db_session
    ):
        seller, buyer, rival = await make_user(), await make_user(), await make_user()
        listing = await make_listing(seller, under_loi=True)
        loi = await make_loi(listing, buyer, status="sent")
        await make_loi(listing, rival, status="sent")

        await client.post(f"/api/loi/{loi.id}/respond", json={"action": "reject"}, headers=auth_header(seller))

        await db_session.refresh(listing)
        assert listing.under_loi is True

    async def test_expired_offer_cannot_be_answered(self, client, auth_header, make_user, make_listing, make_loi):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer, status="sent", expires_in=timedelta(days=-1))

        resp = await client.get(f"/api/loi/{loi.id}", headers=auth_header(seller))
        assert resp.json()["status"] == "expired"
        assert resp.json()["userRole"] == "seller"

        resp = await client.post(
            f"/api/loi/{loi.id}/respond", json={"action": "accept"}, headers=auth_header(seller)
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "LOI_EXPIRED"

    async def test_second_response_fails(self, client, auth_header, make_user, make_listing, make_loi):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer, status="sent")

        first = await client.post(
            f"/api/loi/{loi.id}/respond", json={"action": "accept"}, headers=auth_header(seller)
        )
        second = await client.post(
            f"/api/loi/{loi.id}/respond", json={"action": "reject"}, headers=auth_header(seller)
        )

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json()["code"] == "INVALID_STATUS"

    async def test_buyer_cannot_respond(self, client, auth_header, make_user, make_listing, make_loi):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer, status="sent")
        resp = await client.post(
            f"/api/loi/{loi.id}/respond", json={"action": "accept"}, headers=auth_header(buyer)
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "NOT_SELLER"

    async def test_action_validation(self, client, auth_header, make_user, make_listing, make_loi):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer, status="sent")

        resp = await client.post(f"/api/loi/{loi.id}/respond", json={}, headers=auth_header(seller))
        assert resp.json()["code"] == "MISSING_ACTION"

        resp = await client.post(
            f"/api/loi/{loi.id}/respond", json={"action": "counter"}, headers=auth_header(seller)
        )
        assert resp.json()["code"] == "INVALID_ACTION"


class TestListAndRead:

    async def test_outsider_cannot_read(self, client, auth_header, make_user, make_listing, make_loi):
        seller, buyer, outsider = await make_user(), await make_user(), await make_user()
        listing = await make_listing(seller)
        loi = await make_loi(listing, buyer)
        resp = await client.get(f"/api/loi/{loi.id}", headers=auth_header(outsider))
        assert resp.status_code == 403

    async def test_role_and_status_filters(self, client, auth_header, make_user, make_listing, make_loi):
        seller, buyer = await make_user(), await make_user()
        listing = await make_listing(seller)
        fresh = await make_loi(listing, buyer, status="sent")
        stale = await make_loi(listing, buyer, status="sent", expires_in=timedelta(days=-2))

        resp = await client.get("/api/loi", params={"role": "seller"}, headers=auth_header(seller))
        assert {item["id"] for item in resp.json()} == {fresh.id, stale.id}

        resp = await client.get("/api/loi", params={"role": "seller"}, headers=auth_header(buyer))
        assert resp.json() == []

        resp = await client.get("/api/loi", params={"status": "expired"}, headers=auth_header(buyer))
        assert [item["id"] for item in resp.json()] == [stale.id]

        resp = await client.get("/api/loi", params={"status": "sent"}, headers=auth_header(buyer))
        assert [item["id"] for item in resp.json()] == [fresh.id]

    async def test_bad_filters(self, client, auth_header, make_user):
        user = await make_user()
        resp = await client.get("/api/loi", params={"role": "broker"}, headers=auth_header(user))
        assert resp.json()["code"] == "INVALID_ROLE_FILTER"
        resp = await client.get("/api/loi", params={"status": "pending"}, headers=auth_header(user))
        assert resp.json()["code"] == "INVALID_STATUS_FILTER"
