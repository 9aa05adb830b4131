"""
Tests for the follow graph and user profiles.
"""
from socialnet.models import DeviceToken, Follow, Notification


class TestFollow:
    """Test follow and unfollow."""

    def test_follow_user(self, client, auth_headers, test_user, other_user, db):
        response = client.post(f"/api/v1/follow/{other_user.id}", headers=auth_headers)
        assert response.status_code == 201
        assert response.json()["data"]["following"]["id"] == other_user.id
        assert db.query(Follow).filter(
            Follow.follower_id == test_user.id, Follow.following_id == other_user.id,
        ).count() == 1

    def test_cannot_follow_self(self, client, auth_headers, test_user):
        response = client.post(f"/api/v1/follow/{test_user.id}", headers=auth_headers)
        assert response.status_code == 400

    def test_follow_twice_conflicts(self, client, auth_headers, other_user):
        client.post(f"/api/v1/follow/{other_user.id}", headers=auth_headers)
        response = client.post(f"/api/v1/follow/{other_user.id}", headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error_code"] == "CONFLICT"
        assert response.json()["message"] == "Already following this user"

    def test_follow_unknown_user(self, client, auth_headers):
        response = client.post("/api/v1/follow/9999", headers=auth_headers)
        assert response.status_code == 404

    def test_follow_notifies_target(self, client, auth_headers, other_user, db, push_gateway):
        """The followed user's devices get a push."""
        db.add(DeviceToken(user_id=other_user.id, token="other-device", device_type="android"))
        db.commit()

        client.post(f"/api/v1/follow/{other_user.id}", headers=auth_headers)

        assert len(push_gateway.calls) == 1
        tokens, message = push_gateway.calls[0]
        assert tokens == ["other-device"]
        assert "started following you" in message.body
        notification = db.query(Notification).filter(Notification.recipient_id == other_user.id).one()
        assert notification.type == "follow"
        assert notification.delivery_status == "sent"

    def test_unfollow(self, client, auth_headers, other_user, db):
        client.post(f"/api/v1/follow/{other_user.id}", headers=auth_headers)
        response = client.delete(f"/api/v1/follow/{other_user.id}", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"]["removed"] is True
        assert db.query(Follow).count() == 0

    def test_unfollow_not_following_is_noop(self, client, auth_headers, other_user):
        response = client.delete(f"/api/v1/follow/{other_user.id}", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"]["removed"] is False


class TestFollowLists:
    """Test follower and following lists."""

    def test_lists_and_status(self, client, auth_headers, other_headers, test_user, other_user):
        client.post(f"/api/v1/follow/{other_user.id}", headers=auth_headers)

        followers = client.get(f"/api/v1/follow/followers/{other_user.id}").json()["data"]
        assert [u["id"] for u in followers["followers"]] == [test_user.id]
        assert followers["pagination"]["total"] == 1

        following = client.get("/api/v1/follow/following", headers=auth_headers).json()["data"]
        assert [u["id"] for u in following["following"]] == [other_user.id]

        status = client.get(f"/api/v1/follow/status/{test_user.id}", headers=other_headers).json()["data"]
        assert status == {"is_following": False, "is_followed_by": True}

    def test_own_list_requires_auth(self, client):
        response = client.get("/api/v1/follow/followers")
        assert response.status_code == 401


class TestProfiles:
    """Test user profile endpoints."""

    def test_my_profile_has_counts(self, client, auth_headers, other_headers, test_user):
        client.post(f"/api/v1/follow/{test_user.id}", headers=other_headers)
        response = client.get("/api/v1/users/me", headers=auth_headers)
        assert response.status_code == 200
        user = response.json()["data"]["user"]
        assert user["followers_count"] == 1
        assert user["following_count"] == 0

    def test_public_profile(self, client, auth_headers, other_user, make_post):
        make_post(other_user)
        client.post(f"/api/v1/follow/{other_user.id}", headers=auth_headers)
        response = client.get(f"/api/v1/users/profile/{other_user.id}", headers=auth_headers)
        user = response.json()["data"]["user"]
        assert user["posts_count"] == 1
        assert user["is_following"] is True
        assert "email" not in user

    def test_login_history(self, client, test_user):
        client.post("/api/v1/auth/login", json={"email": "test@example.com", "password": "testpassword123"})
        login = client.post("/api/v1/auth/login", json={"email": "test@example.com", "password": "testpassword123"})
        headers = {"Authorization": f"Bearer {login.json()['data']['token']}"}
        response = client.get("/api/v1/users/login-history", headers=headers)
        assert response.json()["data"]["pagination"]["total"] == 2
