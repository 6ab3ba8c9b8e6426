"""
tests/test_api_routes.py -- Integration tests for the article, comment and
like routes.

These tests exercise the full stack: FastAPI routing -> guard chain via
Depends() -> ContentStore/UserStore operations -> Envelope serialization.
Unit tests of the guards alone would miss the ordering each route declares.

Coverage:
  - Auth failures: 401 on every mutating route without a credential
  - Articles: create 201, list, read, edit by author, delete by author
  - Ownership: edit/delete by another user -> 403 and nothing changes
  - Existence: unknown slug or comment -> 404, before any ownership check
  - Comments: start a thread, reply, reply to a missing or foreign parent,
    read the flattened forest with like counts, hundreds of replies deep
  - Likes: first like 200, repeat like 200 with the count unchanged

Fixtures used (from conftest.py):
  - api: ApiHarness -- TestClient plus the stores behind it
"""

from __future__ import annotations

import pytest

from content.threads import create_comment, create_threaded_comment

ARTICLES = "/api/v1/articles"


def _create_article(api, headers: dict[str, str], **overrides) -> dict:
    body = {"title": "A Tale of Two Guards", "description": "On ordering", "body": "It was the best of chains."}
    body.update(overrides)
    resp = api.client.post(ARTICLES, json=body, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"][0]


def _comment(api, slug: str, headers: dict[str, str], text: str = "Nice read") -> dict:
    resp = api.client.post(f"{ARTICLES}/{slug}/comment", json={"text": text}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"][0]


class TestAuthFailure:
    """Unauthenticated requests to protected routes must return 401."""

    @pytest.mark.parametrize(
        "method, path",
        [
            ("post", ARTICLES),
            ("put", f"{ARTICLES}/some-slug"),
            ("delete", f"{ARTICLES}/some-slug"),
            ("post", f"{ARTICLES}/some-slug/comment"),
            ("post", f"{ARTICLES}/comment/1/like"),
        ],
    )
    def test_requires_credential(self, api, method: str, path: str) -> None:
        resp = api.client.request(method.upper(), path, json={"title": "t", "body": "b", "text": "t"})
        assert resp.status_code == 401, resp.text
        body = resp.json()
        assert body["status"] == 401
        assert body["data"] == []

    def test_malformed_body_still_answers_unauthorized(self, api) -> None:
        """Routes without a body guard never parse the body; the missing credential wins."""
        resp = api.client.post(
            f"{ARTICLES}/comment/1/like", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 401

    def test_invalid_credential(self, api) -> None:
        resp = api.client.post(ARTICLES, json={"title": "t", "body": "b"}, headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401


class TestArticles:
    def test_create_article(self, api) -> None:
        identity, headers = api.user()
        data = _create_article(api, headers, image="https://img.example.com/cover.jpg")
        assert data["title"] == "A Tale of Two Guards"
        assert data["author_id"] == identity.id
        assert data["slug"].startswith("a-tale-of-two-guards-")
        assert data["image"] == "https://img.example.com/cover.jpg"

    def test_create_rejects_bad_image(self, api) -> None:
        _, headers = api.user()
        resp = api.client.post(
            ARTICLES,
            json={"title": "t", "body": "b", "image": "javascript:alert(1)"},
            headers=headers,
        )
        assert resp.status_code == 400

    def test_create_rejects_missing_fields(self, api) -> None:
        _, headers = api.user()
        resp = api.client.post(ARTICLES, json={"title": "no body"}, headers=headers)
        assert resp.status_code == 400
        assert "body" in resp.json()["message"]

    def test_create_rejects_malformed_json(self, api) -> None:
        _, headers = api.user()
        resp = api.client.post(ARTICLES, content=b"{not json", headers={**headers, "Content-Type": "application/json"})
        assert resp.status_code == 400

    def test_read_and_list(self, api) -> None:
        _, headers = api.user()
        created = _create_article(api, headers, title="Listed")

        resp = api.client.get(f"{ARTICLES}/{created['slug']}")
        assert resp.status_code == 200
        assert resp.json()["data"][0]["id"] == created["id"]

        listed = api.client.get(ARTICLES, params={"limit": 100}).json()["data"]
        assert created["id"] in [a["id"] for a in listed]

    def test_list_rejects_bad_paging(self, api) -> None:
        assert api.client.get(ARTICLES, params={"limit": 0}).status_code == 400

    def test_unknown_slug(self, api) -> None:
        resp = api.client.get(f"{ARTICLES}/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["status"] == 404

    def test_author_can_edit(self, api) -> None:
        _, headers = api.user()
        created = _create_article(api, headers)
        resp = api.client.put(f"{ARTICLES}/{created['slug']}", json={"title": "Edited"}, headers=headers)
        assert resp.status_code == 200
        data = resp.json()["data"][0]
        assert data["title"] == "Edited"
        assert data["slug"] == created["slug"]

    def test_edit_without_changes(self, api) -> None:
        _, headers = api.user()
        created = _create_article(api, headers)
        resp = api.client.put(f"{ARTICLES}/{created['slug']}", json={}, headers=headers)
        assert resp.status_code == 400

    def test_other_user_cannot_edit(self, api) -> None:
        _, author_headers = api.user()
        _, other_headers = api.user()
        created = _create_article(api, author_headers)

        resp = api.client.put(f"{ARTICLES}/{created['slug']}", json={"title": "Hijacked"}, headers=other_headers)

        assert resp.status_code == 403
        assert api.content.get_article(created["id"]).title == created["title"]

    def test_other_user_cannot_delete(self, api) -> None:
        _, author_headers = api.user()
        _, other_headers = api.user()
        created = _create_article(api, author_headers)

        resp = api.client.delete(f"{ARTICLES}/{created['slug']}", headers=other_headers)

        assert resp.status_code == 403
        assert api.content.get_article(created["id"]) is not None

    def test_missing_article_is_404_not_403(self, api) -> None:
        _, headers = api.user()
        resp = api.client.put(f"{ARTICLES}/never-existed", json={"title": "x"}, headers=headers)
        assert resp.status_code == 404

    def test_author_can_delete(self, api) -> None:
        _, headers = api.user()
        image = "https://img.example.com/delete-me.png"
        created = _create_article(api, headers, image=image)
        _comment(api, created["slug"], headers)

        resp = api.client.delete(f"{ARTICLES}/{created['slug']}", headers=headers)

        assert resp.status_code == 200
        assert resp.json()["message"] == "Article deleted successfully"
        assert api.client.get(f"{ARTICLES}/{created['slug']}").status_code == 404
        assert api.content.count_comments(created["id"]) == 0
        api.client.app.state.images.delete.assert_any_call(image)


class TestComments:
    def test_start_thread(self, api) -> None:
        identity, headers = api.user()
        article = _create_article(api, headers)
        comment = _comment(api, article["slug"], headers, text="First!")
        assert comment["article_id"] == article["id"]
        assert comment["author_id"] == identity.id
        assert comment["parent_comment_id"] is None

    def test_comment_on_missing_article(self, api) -> None:
        _, headers = api.user()
        resp = api.client.post(f"{ARTICLES}/nowhere/comment", json={"text": "hello"}, headers=headers)
        assert resp.status_code == 404

    def test_empty_comment(self, api) -> None:
        _, headers = api.user()
        article = _create_article(api, headers)
        resp = api.client.post(f"{ARTICLES}/{article['slug']}/comment", json={"text": ""}, headers=headers)
        assert resp.status_code == 400

    def test_reply(self, api) -> None:
        _, headers = api.user()
        article = _create_article(api, headers)
        root = _comment(api, article["slug"], headers)

        resp = api.client.post(
            f"{ARTICLES}/{article['slug']}/comment/{root['id']}/thread", json={"text": "Agreed"}, headers=headers
        )

        assert resp.status_code == 201
        reply = resp.json()["data"][0]
        assert reply["parent_comment_id"] == root["id"]
        assert reply["article_id"] == article["id"]

    def test_reply_to_missing_parent_persists_nothing(self, api) -> None:
        _, headers = api.user()
        article = _create_article(api, headers)
        before = api.content.count_comments()

        resp = api.client.post(
            f"{ARTICLES}/{article['slug']}/comment/999999/thread", json={"text": "orphan"}, headers=headers
        )

        assert resp.status_code == 404
        assert api.content.count_comments() == before

    def test_reply_to_parent_on_another_article(self, api) -> None:
        _, headers = api.user()
        here = _create_article(api, headers, title="Here")
        there = _create_article(api, headers, title="There")
        foreign = _comment(api, there["slug"], headers)
        before = api.content.count_comments()

        resp = api.client.post(
            f"{ARTICLES}/{here['slug']}/comment/{foreign['id']}/thread", json={"text": "cross"}, headers=headers
        )

        assert resp.status_code == 404
        assert api.content.count_comments() == before

    def test_comment_forest(self, api) -> None:
        _, headers = api.user()
        _, liker_headers = api.user()
        article = _create_article(api, headers)
        root = _comment(api, article["slug"], headers, text="root")
        reply = api.client.post(
            f"{ARTICLES}/{article['slug']}/comment/{root['id']}/thread", json={"text": "reply"}, headers=headers
        ).json()["data"][0]
        second_root = _comment(api, article["slug"], headers, text="second root")
        api.client.post(f"{ARTICLES}/comment/{reply['id']}/like", headers=liker_headers)

        resp = api.client.get(f"{ARTICLES}/{article['slug']}/comments")

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert [c["id"] for c in data] == [root["id"], reply["id"], second_root["id"]]
        assert [c["depth"] for c in data] == [0, 1, 0]
        assert [c["reply_count"] for c in data] == [1, 0, 0]
        assert [c["like_count"] for c in data] == [0, 1, 0]
        assert data[1]["parent_comment_id"] == root["id"]

    def test_deep_reply_chain(self, api) -> None:
        """Listing stays flat, so a thread hundreds of replies deep still renders."""
        identity, headers = api.user()
        article = _create_article(api, headers)
        parent = create_comment(api.content, article["id"], identity.id, "root")
        chain = [parent.id]
        for n in range(400):
            parent = create_threaded_comment(api.content, parent.id, identity.id, f"reply {n}")
            chain.append(parent.id)

        resp = api.client.get(f"{ARTICLES}/{article['slug']}/comments")

        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        assert [c["id"] for c in data] == chain
        assert [c["depth"] for c in data] == list(range(401))


class TestLikes:
    def test_like_is_idempotent(self, api) -> None:
        _, headers = api.user()
        _, liker_headers = api.user()
        article = _create_article(api, headers)
        comment = _comment(api, article["slug"], headers)
        path = f"{ARTICLES}/comment/{comment['id']}/like"

        first = api.client.post(path, headers=liker_headers)
        second = api.client.post(path, headers=liker_headers)

        assert first.status_code == 200
        assert first.json()["message"] == "Comment liked"
        assert first.json()["data"][0] == {"comment_id": comment["id"], "liked": True, "like_count": 1}
        assert second.status_code == 200
        assert second.json()["message"] == "You have already liked this comment"
        assert second.json()["data"][0]["like_count"] == 1
        assert api.content.count_likes(comment["id"]) == 1

    @pytest.mark.parametrize("comment_id", ["999999", "not-a-number", "99999999999999999999999"])
    def test_like_missing_comment(self, api, comment_id: str) -> None:
        _, headers = api.user()
        resp = api.client.post(f"{ARTICLES}/comment/{comment_id}/like", headers=headers)
        assert resp.status_code == 404
