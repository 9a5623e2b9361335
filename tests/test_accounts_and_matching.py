"""HTTP tests for signup/login, admin account flags and match recommendations."""

import pytest


class TestSignupAndLogin:

    async def test_signup_then_login(self, client):
        resp = await client.post(
            "/api/auth/signup",
            json={"email": "New.Buyer@Example.com", "password": "long-enough", "name": "New Buyer"},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["tokenType"] == "bearer"
        assert body["user"]["email"] == "new.buyer@example.com"
        assert body["user"]["role"] == "user"

        resp = await client.post(
            "/api/auth/login", json={"email": "new.buyer@example.com", "password": "long-enough"}
        )
        assert resp.status_code == 200
        token = resp.json()["accessToken"]

        resp = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        me = resp.json()
        assert me["name"] == "New Buyer"
        assert me["profile"]["isTeacherVerified"] is False
        assert me["membership"] is None

    @pytest.mark.parametrize(
        "body,code",
        [
            ({"email": "no-at-sign", "password": "long-enough", "name": "A"}, "INVALID_EMAIL"),
            ({"email": "a@b.test", "password": "short", "name": "A"}, "INVALID_PASSWORD"),
            ({"email": "a@b.test", "password": "long-enough", "name": "  "}, "INVALID_NAME"),
        ],
    )
    async def test_signup_validation(self, client, body, code):
        resp = await client.post("/api/auth/signup", json=body)
        assert resp.status_code == 400
        assert resp.json()["code"] == code

    async def test_duplicate_email(self, client, make_user):
        await make_user(email="taken@example.com")
        resp = await client.post(
            "/api/auth/signup",
            json={"email": "Taken@example.com", "password": "long-enough", "name": "Dup"},
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "EMAIL_ALREADY_REGISTERED"

    async def test_wrong_password(self, client):
        await client.post(
            "/api/auth/signup", json={"email": "x@example.com", "password": "long-enough", "name": "X"}
        )
        resp = await client.post("/api/auth/login", json={"email": "x@example.com", "password": "nope-nope"})
        assert resp.status_code == 401
        assert resp.json()["code"] == "INVALID_CREDENTIALS"

    async def test_garbage_token(self, client):
        resp = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401
        assert resp.json()["code"] == "INVALID_TOKEN"

    async def test_missing_body_field_maps_to_field_code(self, client):
        resp = await client.post("/api/auth/signup", json={"email": "a@b.test", "name": "A"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_PASSWORD"


class TestAdminAccountFlags:

    async def test_grant_membership_unlocks_listing_creation(self, client, auth_header, make_user):
        admin = await make_user(role="admin")
        seller = await make_user()

        resp = await client.put(
            f"/api/admin/users/{seller.id}/membership",
            json={"plan": "pro", "status": "active", "maxListings": 1},
            headers=auth_header(admin),
        )
        assert resp.status_code == 200
        assert resp.json()["maxListings"] == 1

        resp = await client.post("/api/listings", json={"title": "First"}, headers=auth_header(seller))
        assert resp.status_code == 201

        resp = await client.post("/api/listings", json={"title": "Second"}, headers=auth_header(seller))
        assert resp.status_code == 403
        assert resp.json()["code"] == "LISTING_LIMIT_REACHED"

    async def test_cancel_sets_canceled_at(self, client, auth_header, make_user, make_membership):
        admin, seller = await make_user(role="admin"), await make_user()
        await make_membership(seller)

        resp = await client.put(
            f"/api/admin/users/{seller.id}/membership",
            json={"status": "canceled"},
            headers=auth_header(admin),
        )

        assert resp.json()["status"] == "canceled"
        assert resp.json()["canceledAt"] is not None

    async def test_bad_membership_status(self, client, auth_header, make_user):
        admin, seller = await make_user(role="admin"), await make_user()
        resp = await client.put(
            f"/api/admin/users/{seller.id}/membership", json={"status": "frozen"}, headers=auth_header(admin)
        )
        assert resp.json()["code"] == "INVALID_STATUS"

    async def test_teacher_verification(self, client, auth_header, make_user):
        admin, user = await make_user(role="admin"), await make_user()

        resp = await client.put(
            f"/api/admin/users/{user.id}/teacher-verification",
            json={"isTeacherVerified": True},
            headers=auth_header(admin),
        )

        assert resp.status_code == 200
        assert resp.json()["isTeacherVerified"] is True
        assert resp.json()["teacherVerifiedAt"] is not None

    async def test_unknown_user(self, client, auth_header, make_user):
        admin = await make_user(role="admin")
        resp = await client.put(
            "/api/admin/users/nobody/membership", json={"plan": "pro"}, headers=auth_header(admin)
        )
        assert resp.status_code == 404
        assert resp.json()["code"] == "USER_NOT_FOUND"


class TestRecommendations:

    async def test_ranked_by_score(self, client, auth_header, make_user, make_listing, make_buyer_profile):
        seller, buyer = await make_user(), await make_user()
        await make_listing(seller, title="Weak", business_type="Ecommerce", asking_price=2_000_000)
        await make_listing(seller, title="Perfect")
        await make_listing(seller, title="Draft", status="draft")
        await make_buyer_profile(buyer)

        resp = await client.get("/api/matching/recommendations", headers=auth_header(buyer))

        assert resp.status_code == 200
        items = resp.json()
        assert [item["listing"]["title"] for item in items] == ["Perfect", "Weak"]
        assert items[0]["matchScore"] == 100
        assert items[1]["matchScore"] == 30
        assert items[0]["listing"]["businessUrl"] is None

    async def test_own_listings_excluded(self, client, auth_header, make_user, make_listing, make_buyer_profile):
        user = await make_user()
        await make_listing(user)
        await make_buyer_profile(user)
        resp = await client.get("/api/matching/recommendations", headers=auth_header(user))
        assert resp.json() == []

    async def test_requires_onboarding(self, client, auth_header, make_user, make_buyer_profile):
        buyer = await make_user()
        await make_buyer_profile(buyer, onboarding_completed=False)
        resp = await client.get("/api/matching/recommendations", headers=auth_header(buyer))
        assert resp.status_code == 400
        assert resp.json()["code"] == "ONBOARDING_NOT_COMPLETED"

    async def test_requires_profile(self, client, auth_header, make_user):
        buyer = await make_user()
        resp = await client.get("/api/matching/recommendations", headers=auth_header(buyer))
        assert resp.status_code == 404


class TestPotentialBuyers:

    async def test_owner_sees_scored_buyers(self, client, auth_header, make_user, make_listing, make_buyer_profile):
        seller = await make_user()
        good, poor = await make_user(name="Good Fit"), await make_user(name="Poor Fit")
        listing = await make_listing(seller)
        await make_buyer_profile(good)
        await make_buyer_profile(poor, budget_min=10_000, budget_max=20_000, industries=("Fintech",), regions=("Asia",))

        resp = await client.get(f"/api/matching/potential-buyers/{listing.id}", headers=auth_header(seller))

        assert resp.status_code == 200
        assert resp.json() == [{
            "buyerId": good.id,
            "buyerName": "Good Fit",
            "matchScore": 100,
            "matchReasons": [
                "Perfect budget match",
                "Industry match: SaaS",
                "Location match: United States",
            ],
            "budgetMin": 800_000,
            "budgetMax": 1_200_000,
        }]

    async def test_non_owner_forbidden(self, client, auth_header, make_user, make_listing):
        seller, other = await make_user(), await make_user()
        listing = await make_listing(seller)
        resp = await client.get(f"/api/matching/potential-buyers/{listing.id}", headers=auth_header(other))
        assert resp.status_code == 403
