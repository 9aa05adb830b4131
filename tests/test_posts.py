"""
Tests for post endpoints: creation, visibility, likes, polls and shares.
"""
from datetime import timedelta

from socialnet.database import utcnow
from socialnet.models import PollOption, PollVote, Post, PostLike


def make_poll(db, post, options=("Yes", "No"), allow_multiple=False, ends_at=None):
    post.poll_question = "Do you agree?"
    post.poll_allow_multiple = allow_multiple
    post.poll_ends_at = ends_at or utcnow() + timedelta(days=1)
    for position, text in enumerate(options):
        post.poll_options.append(PollOption(position=position, text=text))
    db.commit()
    db.refresh(post)
    return post


class TestCreatePost:
    """Test post creation."""

    def test_create_text_post_goes_to_review(self, client, auth_headers):
        response = client.post("/api/v1/posts", json={"text": "My first post"}, headers=auth_headers)
        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Post submitted for review"
        post = body["data"]["post"]
        assert post["status"] == "inReview"
        assert post["likes_count"] == 0
        assert post["liked"] is False

    def test_create_post_with_media_and_poll(self, client, auth_headers):
        response = client.post(
            "/api/v1/posts",
            json={
                "text": "Which one?",
                "post_type": "mixed",
                "media": [{"type": "image", "url": "https://cdn.example.com/1.jpg"}],
                "poll": {"question": "Pick", "options": ["A", "B", "C"]},
            },
            headers=auth_headers,
        )
        assert response.status_code == 201
        post = response.json()["data"]["post"]
        assert post["media"][0]["type"] == "image"
        assert [o["text"] for o in post["poll"]["options"]] == ["A", "B", "C"]
        assert post["poll"]["total_votes"] == 0

    def test_empty_post_rejected(self, client, auth_headers):
        response = client.post("/api/v1/posts", json={"text": "   "}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_poll_needs_two_options(self, client, auth_headers):
        response = client.post(
            "/api/v1/posts",
            json={"post_type": "poll", "poll": {"question": "Pick", "options": ["Only"]}},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_poll_end_in_past_rejected(self, client, auth_headers):
        past = (utcnow() - timedelta(hours=1)).isoformat()
        response = client.post(
            "/api/v1/posts",
            json={"poll": {"question": "Pick", "options": ["A", "B"], "ends_at": past}},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_create_requires_auth(self, client):
        response = client.post("/api/v1/posts", json={"text": "anon"})
        assert response.status_code == 401

    def test_upload_media(self, client, auth_headers):
        response = client.post(
            "/api/v1/posts/media",
            files={"file": ("photo.png", b"\x89PNG fake", "image/png")},
            headers=auth_headers,
        )
        assert response.status_code == 201
        media = response.json()["data"]["media"]
        assert media["type"] == "image"
        assert media["storage_id"].startswith("posts/")

    def test_upload_rejects_other_types(self, client, auth_headers):
        response = client.post(
            "/api/v1/posts/media",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            headers=auth_headers,
        )
        assert response.status_code == 400


class TestPostVisibility:
    """Test who can see a single post."""

    def test_public_live_post(self, client, test_user, make_post):
        post = make_post(test_user)
        response = client.get(f"/api/v1/posts/{post.id}")
        assert response.status_code == 200
        assert response.json()["data"]["post"]["author"]["id"] == test_user.id

    def test_post_in_review_hidden(self, client, test_user, other_headers, make_post):
        post = make_post(test_user, status="inReview")
        response = client.get(f"/api/v1/posts/{post.id}", headers=other_headers)
        assert response.status_code == 404

    def test_followers_only(self, client, test_user, other_headers, other_user, make_post):
        post = make_post(test_user, visibility="followers")
        assert client.get(f"/api/v1/posts/{post.id}", headers=other_headers).status_code == 404

        client.post(f"/api/v1/follow/{test_user.id}", headers=other_headers)
        assert client.get(f"/api/v1/posts/{post.id}", headers=other_headers).status_code == 200

    def test_private_visible_to_author_only(self, client, test_user, auth_headers, other_headers, make_post):
        post = make_post(test_user, visibility="private")
        assert client.get(f"/api/v1/posts/{post.id}", headers=auth_headers).status_code == 200
        assert client.get(f"/api/v1/posts/{post.id}", headers=other_headers).status_code == 404
        assert client.get(f"/api/v1/posts/{post.id}").status_code == 404

    def test_my_posts_include_all_statuses(self, client, test_user, auth_headers, make_post):
        make_post(test_user, status="inReview")
        make_post(test_user, status="rejected")
        make_post(test_user)
        data = client.get("/api/v1/posts/my-posts", headers=auth_headers).json()["data"]
        assert data["pagination"]["total"] == 3

        data = client.get("/api/v1/posts/my-posts?status=rejected", headers=auth_headers).json()["data"]
        assert data["pagination"]["total"] == 1

    def test_user_posts_only_live_public(self, client, test_user, make_post):
        make_post(test_user)
        make_post(test_user, visibility="private")
        make_post(test_user, status="inReview")
        data = client.get(f"/api/v1/posts/user/{test_user.id}").json()["data"]
        assert data["pagination"]["total"] == 1


class TestEditPost:
    """Test updates and deletion."""

    def test_owner_can_update(self, client, test_user, auth_headers, make_post):
        post = make_post(test_user)
        response = client.put(f"/api/v1/posts/{post.id}", json={"text": "Edited"}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"]["post"]["text"] == "Edited"

    def test_other_user_cannot_update(self, client, test_user, other_headers, make_post):
        post = make_post(test_user)
        response = client.put(f"/api/v1/posts/{post.id}", json={"text": "Hijack"}, headers=other_headers)
        assert response.status_code == 403

    def test_delete_cascades(self, client, test_user, other_user, auth_headers, make_post, db):
        post = make_post(test_user)
        make_poll(db, post)
        db.add(PostLike(post_id=post.id, user_id=other_user.id))
        db.add(PollVote(option_id=post.poll_options[0].id, post_id=post.id, user_id=other_user.id,
                        single_vote_post_id=post.id))
        db.commit()

        response = client.delete(f"/api/v1/posts/{post.id}", headers=auth_headers)
        assert response.status_code == 200
        assert db.query(Post).count() == 0
        assert db.query(PostLike).count() == 0
        assert db.query(PollOption).count() == 0
        assert db.query(PollVote).count() == 0


class TestLikes:
    """Test the like toggle."""

    def test_like_and_unlike(self, client, test_user, other_headers, make_post, db):
        post = make_post(test_user)

        first = client.post(f"/api/v1/posts/{post.id}/like", headers=other_headers).json()["data"]
        assert first == {"liked": True, "likes_count": 1}

        second = client.post(f"/api/v1/posts/{post.id}/like", headers=other_headers).json()["data"]
        assert second == {"liked": False, "likes_count": 0}
        assert db.query(PostLike).count() == 0

    def test_counter_matches_rows(self, client, test_user, auth_headers, other_headers, make_post, db):
        post = make_post(test_user)
        client.post(f"/api/v1/posts/{post.id}/like", headers=auth_headers)
        client.post(f"/api/v1/posts/{post.id}/like", headers=other_headers)

        db.refresh(post)
        assert post.like_count == 2 == db.query(PostLike).filter(PostLike.post_id == post.id).count()

        data = client.get(f"/api/v1/posts/{post.id}", headers=other_headers).json()["data"]["post"]
        assert data["liked"] is True

    def test_cannot_like_post_in_review(self, client, test_user, other_headers, make_post):
        post = make_post(test_user, status="inReview")
        response = client.post(f"/api/v1/posts/{post.id}/like", headers=other_headers)
        assert response.status_code == 404


class TestHiddenPostInteractions:
    """Posts the caller cannot see cannot be liked, voted on or shared."""

    def test_private_post_rejects_interactions(self, client, test_user, other_headers, make_post, db,
                                               push_gateway):
        post = make_poll(db, make_post(test_user, visibility="private"))

        assert client.post(f"/api/v1/posts/{post.id}/like", headers=other_headers).status_code == 404
        vote = client.post(f"/api/v1/posts/{post.id}/vote", json={"option_index": 0}, headers=other_headers)
        assert vote.status_code == 404
        assert client.post(f"/api/v1/posts/{post.id}/share", headers=other_headers).status_code == 404

        db.refresh(post)
        assert post.like_count == 0
        assert post.shares_count == 0
        assert db.query(PostLike).count() == 0
        assert db.query(PollVote).count() == 0
        assert push_gateway.calls == []

    def test_followers_only_post_needs_follow(self, client, test_user, other_headers, make_post):
        post = make_post(test_user, visibility="followers")
        assert client.post(f"/api/v1/posts/{post.id}/like", headers=other_headers).status_code == 404

        client.post(f"/api/v1/follow/{test_user.id}", headers=other_headers)
        liked = client.post(f"/api/v1/posts/{post.id}/like", headers=other_headers)
        assert liked.status_code == 200
        assert liked.json()["data"]["liked"] is True

    def test_author_can_like_own_private_post(self, client, test_user, auth_headers, make_post):
        post = make_post(test_user, visibility="private")
        response = client.post(f"/api/v1/posts/{post.id}/like", headers=auth_headers)
        assert response.status_code == 200


class TestPolls:
    """Test poll voting."""

    def test_vote(self, client, test_user, other_headers, make_post, db):
        post = make_poll(db, make_post(test_user))
        response = client.post(f"/api/v1/posts/{post.id}/vote", json={"option_index": 1}, headers=other_headers)
        assert response.status_code == 200
        poll = response.json()["data"]["poll"]
        assert poll["options"][1]["votes_count"] == 1
        assert poll["options"][1]["voted"] is True
        assert poll["total_votes"] == 1

    def test_single_vote_poll_allows_one_vote(self, client, test_user, other_headers, make_post, db):
        post = make_poll(db, make_post(test_user))
        client.post(f"/api/v1/posts/{post.id}/vote", json={"option_index": 0}, headers=other_headers)
        response = client.post(f"/api/v1/posts/{post.id}/vote", json={"option_index": 1}, headers=other_headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Already voted"
        assert db.query(PollVote).count() == 1

    def test_multiple_vote_poll(self, client, test_user, other_headers, make_post, db):
        post = make_poll(db, make_post(test_user), allow_multiple=True)
        assert client.post(f"/api/v1/posts/{post.id}/vote", json={"option_index": 0},
                           headers=other_headers).status_code == 200
        assert client.post(f"/api/v1/posts/{post.id}/vote", json={"option_index": 1},
                           headers=other_headers).status_code == 200

        response = client.post(f"/api/v1/posts/{post.id}/vote", json={"option_index": 1}, headers=other_headers)
        assert response.status_code == 400
        assert response.json()["message"] == "You have already voted for this option"

    def test_invalid_option(self, client, test_user, other_headers, make_post, db):
        post = make_poll(db, make_post(test_user))
        response = client.post(f"/api/v1/posts/{post.id}/vote", json={"option_index": 5}, headers=other_headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid option index"

    def test_ended_poll(self, client, test_user, other_headers, make_post, db):
        post = make_poll(db, make_post(test_user), ends_at=utcnow() - timedelta(minutes=1))
        response = client.post(f"/api/v1/posts/{post.id}/vote", json={"option_index": 0}, headers=other_headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Poll has ended"

    def test_post_without_poll(self, client, test_user, other_headers, make_post):
        post = make_post(test_user)
        response = client.post(f"/api/v1/posts/{post.id}/vote", json={"option_index": 0}, headers=other_headers)
        assert response.status_code == 400


class TestShares:
    def test_share_increments(self, client, test_user, other_headers, make_post):
        post = make_post(test_user)
        client.post(f"/api/v1/posts/{post.id}/share", headers=other_headers)
        response = client.post(f"/api/v1/posts/{post.id}/share", headers=other_headers)
        assert response.json()["data"]["shares_count"] == 2
