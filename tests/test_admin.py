"""
Tests for admin moderation and user management.
"""
from socialnet.models import DeviceToken, Notification, User


class TestModeration:
    """Test the review queue."""

    def test_queue_lists_posts_in_review(self, client, admin_headers, test_user, make_post):
        pending = make_post(test_user, status="inReview")
        make_post(test_user)
        data = client.get("/api/v1/admin/posts", headers=admin_headers).json()["data"]
        assert [p["id"] for p in data["posts"]] == [pending.id]

    def test_queue_status_filters(self, client, admin_headers, test_user, make_post):
        make_post(test_user, status="inReview")
        make_post(test_user, status="rejected")
        make_post(test_user)
        both = client.get("/api/v1/admin/posts?status=inReview&status=rejected", headers=admin_headers)
        assert both.json()["data"]["pagination"]["total"] == 2
        every = client.get("/api/v1/admin/posts?status=all", headers=admin_headers)
        assert every.json()["data"]["pagination"]["total"] == 3
        assert client.get("/api/v1/admin/posts?status=bogus", headers=admin_headers).status_code == 400

    def test_approve_publishes_and_notifies(self, client, admin_headers, admin_user, test_user, make_post, db,
                                            push_gateway):
        db.add(DeviceToken(user_id=test_user.id, token="author-device", device_type="android"))
        db.commit()
        post = make_post(test_user, status="inReview")

        response = client.put(f"/api/v1/admin/posts/{post.id}/approve", headers=admin_headers)
        assert response.status_code == 200
        data = response.json()["data"]["post"]
        assert data["status"] == "live"
        assert data["reviewed_by"] == admin_user.id

        assert client.get(f"/api/v1/posts/{post.id}").status_code == 200
        notification = db.query(Notification).filter(Notification.recipient_id == test_user.id).one()
        assert notification.title == "Post approved"

    def test_approved_post_reaches_anonymous_feed(self, client, auth_headers, admin_headers):
        post_id = client.post("/api/v1/posts", json={"text": "Pending"}, headers=auth_headers).json()["data"]["post"]["id"]

        def feed_ids():
            return [p["id"] for p in client.get("/api/v1/posts").json()["data"]["posts"]]

        assert post_id not in feed_ids()
        client.put(f"/api/v1/admin/posts/{post_id}/approve", headers=admin_headers)
        assert post_id in feed_ids()

    def test_reject_hides_post(self, client, admin_headers, test_user, make_post):
        post = make_post(test_user)
        response = client.put(f"/api/v1/admin/posts/{post.id}/reject", headers=admin_headers)
        assert response.json()["data"]["post"]["status"] == "rejected"
        assert client.get(f"/api/v1/posts/{post.id}").status_code == 404

    def test_queue_requires_admin(self, client, auth_headers):
        assert client.get("/api/v1/admin/posts", headers=auth_headers).status_code == 403

    def test_stats(self, client, admin_headers, test_user, make_post):
        make_post(test_user, status="inReview")
        make_post(test_user)
        stats = client.get("/api/v1/admin/stats", headers=admin_headers).json()["data"]["stats"]
        assert stats["posts"] == {"total": 2, "pending": 1, "live": 1, "rejected": 0}
        assert stats["users"]["admins"] == 1


class TestUserManagement:
    """Test admin user routes."""

    def test_list_and_search(self, client, admin_headers, test_user, other_user):
        data = client.get("/api/v1/admin/users?search=other", headers=admin_headers).json()["data"]
        assert [u["id"] for u in data["users"]] == [other_user.id]

        admins = client.get("/api/v1/admin/users?role=ADMIN", headers=admin_headers).json()["data"]
        assert admins["pagination"]["total"] == 1

    def test_user_detail(self, client, admin_headers, test_user):
        user = client.get(f"/api/v1/admin/users/{test_user.id}", headers=admin_headers).json()["data"]["user"]
        assert "registered_from" in user
        assert user["posts_count"] == 0

    def test_deactivate_user(self, client, admin_headers, test_user, auth_headers, db):
        response = client.put(f"/api/v1/admin/users/{test_user.id}/status", json={"is_active": False},
                              headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["message"] == "User deactivated successfully"
        assert client.get("/api/v1/auth/me", headers=auth_headers).status_code == 401

    def test_status_requires_flag(self, client, admin_headers, test_user):
        response = client.put(f"/api/v1/admin/users/{test_user.id}/status", json={}, headers=admin_headers)
        assert response.status_code == 400

    def test_cannot_deactivate_self(self, client, admin_headers, admin_user):
        response = client.put(f"/api/v1/admin/users/{admin_user.id}/status", json={"is_active": False},
                              headers=admin_headers)
        assert response.status_code == 403

    def test_change_role(self, client, admin_headers, test_user, admin_user):
        response = client.put(f"/api/v1/admin/users/{test_user.id}/role", json={"role": "ADMIN"},
                              headers=admin_headers)
        assert response.json()["data"]["user"]["role"] == "ADMIN"

        own = client.put(f"/api/v1/admin/users/{admin_user.id}/role", json={"role": "USER"},
                         headers=admin_headers)
        assert own.status_code == 403

    def test_delete_is_soft(self, client, admin_headers, test_user, db):
        response = client.delete(f"/api/v1/admin/users/{test_user.id}", headers=admin_headers)
        assert response.status_code == 200
        user = db.get(User, test_user.id)
        db.refresh(user)
        assert user.is_active is False

    def test_unknown_user(self, client, admin_headers):
        assert client.get("/api/v1/admin/users/9999", headers=admin_headers).status_code == 404


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["scheduler"] == {"running": False}

    def test_request_id_header(self, client):
        generated = client.get("/api/health")
        assert len(generated.headers["X-Request-ID"]) == 32
        assert generated.headers["X-Content-Type-Options"] == "nosniff"

        echoed = client.get("/api/health", headers={"X-Request-ID": "trace-123"})
        assert echoed.headers["X-Request-ID"] == "trace-123"
