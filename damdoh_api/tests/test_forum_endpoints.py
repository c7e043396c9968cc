# SPDX-License-Identifier: Apache-2.0

"""
Tests for community forum endpoints.
"""

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING

from damdoh_api.services.mongodb import DuplicateDocumentError

from conftest import created_collections, created_documents


class TestTopics:
    def test_list_topics(self, client, token_for, mongodb_service):
        mongodb_service.find_many.return_value = [
            {"id": str(ObjectId()), "name": "Soil health", "postCount": 3}
        ]

        response = client.get('/api/forums/topics', headers=token_for())

        assert response.status_code == 200
        assert response.get_json()["_embedded"]["items"][0]["name"] == "Soil health"
        assert mongodb_service.find_many.call_args.kwargs["sort"] == [("lastActivityAt", DESCENDING)]

    def test_create_topic(self, client, token_for, mongodb_service):
        response = client.post('/api/forums/topics', json={
            "name": "Soil Health",
            "description": "Compost, cover crops and soil testing"
        }, headers=token_for())

        assert response.status_code == 201
        data = response.get_json()
        assert data["postCount"] == 0
        document = created_documents(mongodb_service, "forum_topics")[0]
        assert document["nameLower"] == "soil health"

    def test_duplicate_topic_name(self, client, token_for, mongodb_service):
        """Test that topic names are unique regardless of case."""
        mongodb_service.find_one_by.return_value = {"id": str(ObjectId()), "nameLower": "soil health"}

        response = client.post('/api/forums/topics', json={
            "name": "SOIL HEALTH", "description": "Again"
        }, headers=token_for())

        assert response.status_code == 409
        assert mongodb_service.find_one_by.call_args.args == ("forum_topics", {"nameLower": "soil health"})

    def test_duplicate_topic_race(self, client, token_for, mongodb_service):
        mongodb_service.create.side_effect = DuplicateDocumentError("duplicate")

        response = client.post('/api/forums/topics', json={
            "name": "Soil Health", "description": "Compost"
        }, headers=token_for())

        assert response.status_code == 409


class TestPosts:
    """Test posts and their cursor pagination."""

    def test_list_posts(self, client, token_for, mongodb_service, store_document):
        topic = store_document("forum_topics", {"name": "Soil health"})
        post_id = str(ObjectId())
        mongodb_service.find_after_cursor.return_value = (
            [{"id": post_id, "topicId": topic["id"], "title": "Biochar?"}], post_id
        )

        response = client.get(f"/api/forums/topics/{topic['id']}/posts", headers=token_for())

        assert response.status_code == 200
        data = response.get_json()
        assert data["nextCursor"] == post_id
        assert data["_embedded"]["items"][0]["_links"]["reply"]["method"] == "POST"
        args = mongodb_service.find_after_cursor.call_args.args
        assert args == ("forum_posts", {"topicId": topic["id"]}, None, 10, DESCENDING)

    def test_list_posts_of_missing_topic(self, client, token_for):
        assert client.get(f"/api/forums/topics/{ObjectId()}/posts", headers=token_for()).status_code == 404

    def test_create_post(self, client, token_for, mongodb_service, store_document, farmer_id):
        topic = store_document("forum_topics", {"name": "Soil health"})
        store_document("profiles", {"id": farmer_id, "displayName": "Amina W.", "avatarUrl": "https://cdn/a.png"})

        response = client.post(f"/api/forums/topics/{topic['id']}/posts", json={
            "title": "Biochar?", "content": "Has anyone tried biochar on clay soils?"
        }, headers=token_for(farmer_id))

        assert response.status_code == 201
        data = response.get_json()
        assert data["authorName"] == "Amina W."
        assert data["authorAvatar"] == "https://cdn/a.png"
        assert data["topicId"] == topic["id"]

        collection, doc_id, increments, extra = mongodb_service.increment.call_args.args
        assert (collection, doc_id, increments) == ("forum_topics", topic["id"], {"postCount": 1})
        assert "lastActivityAt" in extra


class TestReplies:
    """Test replies and reply notifications."""

    def test_list_replies_oldest_first(self, client, token_for, mongodb_service, store_document):
        post = store_document("forum_posts", {"topicId": str(ObjectId()), "authorRef": "a"})
        after = str(ObjectId())

        response = client.get(f"/api/forums/posts/{post['id']}/replies?after={after}", headers=token_for())

        assert response.status_code == 200
        args = mongodb_service.find_after_cursor.call_args.args
        assert args == ("forum_replies", {"postId": post["id"]}, after, 15, ASCENDING)

    def test_reply_notifies_author(self, client, token_for, mongodb_service, store_document, farmer_id):
        author_id = str(ObjectId())
        post = store_document("forum_posts", {
            "topicId": str(ObjectId()), "authorRef": author_id, "title": "Biochar?"
        })

        response = client.post(f"/api/forums/posts/{post['id']}/replies", json={
            "content": "Yes, works well with compost."
        }, headers=token_for(farmer_id, name="Juma"))

        assert response.status_code == 201
        assert created_collections(mongodb_service) == ["forum_replies", "notifications"]
        mongodb_service.increment.assert_called_once_with("forum_posts", post["id"], {"replyCount": 1})

        notification = created_documents(mongodb_service, "notifications")[0]
        assert notification["userId"] == author_id
        assert notification["type"] == "FORUM_REPLY"
        assert notification["body"] == 'Juma replied to "Biochar?"'

    def test_reply_to_own_post(self, client, token_for, mongodb_service, store_document, farmer_id):
        """Test that replying to your own post creates no notification."""
        post = store_document("forum_posts", {"topicId": str(ObjectId()), "authorRef": farmer_id})

        response = client.post(f"/api/forums/posts/{post['id']}/replies", json={
            "content": "Update: it worked."
        }, headers=token_for(farmer_id))

        assert response.status_code == 201
        assert created_collections(mongodb_service) == ["forum_replies"]

    def test_empty_reply(self, client, token_for, store_document):
        post = store_document("forum_posts", {"topicId": str(ObjectId()), "authorRef": "a"})

        response = client.post(f"/api/forums/posts/{post['id']}/replies", json={"content": ""}, headers=token_for())

        assert response.status_code == 400
