# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Forum endpoints: topics, posts and replies.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pymongo import ASCENDING, DESCENDING
import logging
from datetime import datetime

from ..domain.authorization import FORUM_PARTICIPATE
from ..middleware.auth import require_jwt, require_permission
from ..middleware.error_handler import ConflictException
from ..middleware.validation import validated_body, validated_query
from ..models.entities import UserContext, ForumTopic, ForumPost, ForumReply, LinkedEntity
from ..models.enums import NotificationType
from ..models.requests import (
    CreateTopicRequest, CreatePostRequest, CreateReplyRequest, CursorParams, TopicPath, PostPath
)
from ..services.mongodb import DuplicateDocumentError
from ..services.notifications import create_notification
from ..utils.documents import present, get_or_404

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

forums_tag = Tag(name="Forums", description="Community discussion topics, posts and replies")
forums_bp = APIBlueprint(
    'forums',
    __name__,
    url_prefix='/api/forums',
    abp_tags=[forums_tag]
)

TOPICS = "forum_topics"
POSTS = "forum_posts"
REPLIES = "forum_replies"
PROFILES = "profiles"

POSTS_PAGE_SIZE = 10
REPLIES_PAGE_SIZE = 15


def _author_fields(user_context: UserContext):
    """Author name and avatar, denormalized from the caller's profile."""
    profile = current_app.mongodb_service.find_one(PROFILES, user_context.user_id) or {}
    return {
        "author_name": profile.get("displayName") or user_context.display_name,
        "author_avatar": profile.get("avatarUrl"),
    }


@forums_bp.get('/topics')
@require_jwt
def list_topics(user_context: UserContext):
    """List topics, most recently active first."""
    with tracer.start_as_current_span("forums.list_topics") as span:
        topics = current_app.mongodb_service.find_many(TOPICS, sort=[("lastActivityAt", DESCENDING)])
        span.set_attribute("topics.count", len(topics))

        items = [
            current_app.hal_formatter.format_resource(present(topic), f"/api/forums/topics/{topic['id']}/posts")
            for topic in topics
        ]
        return jsonify(current_app.hal_formatter.format_list(items, "/api/forums/topics")), 200


@forums_bp.post('/topics')
@require_jwt
@require_permission(FORUM_PARTICIPATE)
@validated_body(CreateTopicRequest)
def create_topic(user_context: UserContext, payload: CreateTopicRequest):
    """Create a topic. Names are unique regardless of case."""
    with tracer.start_as_current_span("forums.create_topic", attributes={"topic.name": payload.name}) as span:
        mongodb_service = current_app.mongodb_service
        name_lower = payload.name.lower()

        if mongodb_service.find_one_by(TOPICS, {"nameLower": name_lower}) is not None:
            span.set_status(Status(StatusCode.ERROR, "Duplicate topic"))
            raise ConflictException(f"A topic named '{payload.name}' already exists")

        topic = ForumTopic(
            name=payload.name,
            description=payload.description,
            created_by=user_context.user_id,
            updated_by=user_context.user_id
        )
        document = topic.to_document()
        document["nameLower"] = name_lower

        try:
            mongodb_service.create(TOPICS, document, user_context.user_id)
        except DuplicateDocumentError:
            span.set_status(Status(StatusCode.ERROR, "Duplicate topic"))
            raise ConflictException(f"A topic named '{payload.name}' already exists")

        span.set_attribute("topic.id", topic.id)
        span.set_status(Status(StatusCode.OK))
        logger.info("Forum topic created", extra={"topic_id": topic.id, "user_id": user_context.user_id})

        return jsonify(current_app.hal_formatter.format_resource(
            topic.to_api(), f"/api/forums/topics/{topic.id}/posts"
        )), 201


@forums_bp.get('/topics/<topic_id>/posts')
@require_jwt
@validated_query(CursorParams)
def list_posts(user_context: UserContext, path: TopicPath, params: CursorParams):
    """Posts of a topic, newest first, ten per page."""
    with tracer.start_as_current_span("forums.list_posts", attributes={"topic.id": path.topic_id}):
        mongodb_service = current_app.mongodb_service
        get_or_404(mongodb_service, TOPICS, path.topic_id, "Topic")

        posts, next_cursor = mongodb_service.find_after_cursor(
            POSTS, {"topicId": path.topic_id}, params.after, POSTS_PAGE_SIZE, DESCENDING
        )

        items = [current_app.hal_formatter.format_post(present(post)) for post in posts]
        return jsonify(current_app.hal_formatter.format_cursor_collection(
            items, f"/api/forums/topics/{path.topic_id}/posts", params.after, next_cursor
        )), 200


@forums_bp.post('/topics/<topic_id>/posts')
@require_jwt
@require_permission(FORUM_PARTICIPATE)
@validated_body(CreatePostRequest)
def create_post(user_context: UserContext, path: TopicPath, payload: CreatePostRequest):
    with tracer.start_as_current_span("forums.create_post", attributes={"topic.id": path.topic_id}) as span:
        mongodb_service = current_app.mongodb_service
        get_or_404(mongodb_service, TOPICS, path.topic_id, "Topic")

        post = ForumPost(
            topic_id=path.topic_id,
            author_ref=user_context.user_id,
            title=payload.title,
            content=payload.content,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **_author_fields(user_context)
        )
        mongodb_service.create(POSTS, post.to_document(), user_context.user_id)
        mongodb_service.increment(
            TOPICS, path.topic_id, {"postCount": 1}, {"lastActivityAt": post.created_at}
        )

        span.set_attribute("post.id", post.id)
        span.set_status(Status(StatusCode.OK))
        logger.info("Forum post created", extra={"post_id": post.id, "topic_id": path.topic_id})

        return jsonify(current_app.hal_formatter.format_post(post.to_api())), 201


@forums_bp.get('/posts/<post_id>/replies')
@require_jwt
@validated_query(CursorParams)
def list_replies(user_context: UserContext, path: PostPath, params: CursorParams):
    """Replies to a post, oldest first, fifteen per page."""
    with tracer.start_as_current_span("forums.list_replies", attributes={"post.id": path.post_id}):
        mongodb_service = current_app.mongodb_service
        get_or_404(mongodb_service, POSTS, path.post_id, "Post")

        replies, next_cursor = mongodb_service.find_after_cursor(
            REPLIES, {"postId": path.post_id}, params.after, REPLIES_PAGE_SIZE, ASCENDING
        )

        return jsonify(current_app.hal_formatter.format_cursor_collection(
            [present(reply) for reply in replies],
            f"/api/forums/posts/{path.post_id}/replies", params.after, next_cursor
        )), 200


@forums_bp.post('/posts/<post_id>/replies')
@require_jwt
@require_permission(FORUM_PARTICIPATE)
@validated_body(CreateReplyRequest)
def create_reply(user_context: UserContext, path: PostPath, payload: CreateReplyRequest):
    """
    Reply to a post.

    The post author is notified unless they are replying to themselves.
    """
    with tracer.start_as_current_span("forums.create_reply", attributes={"post.id": path.post_id}) as span:
        mongodb_service = current_app.mongodb_service
        post = get_or_404(mongodb_service, POSTS, path.post_id, "Post")

        reply = ForumReply(
            post_id=path.post_id,
            topic_id=post["topicId"],
            author_ref=user_context.user_id,
            content=payload.content,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **_author_fields(user_context)
        )
        mongodb_service.create(REPLIES, reply.to_document(), user_context.user_id)
        mongodb_service.increment(POSTS, path.post_id, {"replyCount": 1})
        mongodb_service.update(
            TOPICS, post["topicId"], {"lastActivityAt": datetime.utcnow()}, user_context.user_id
        )

        create_notification(
            mongodb_service,
            current_app.amqp_service,
            post["authorRef"],
            NotificationType.FORUM_REPLY.value,
            "New reply to your post",
            f"{reply.author_name or 'Someone'} replied to \"{post.get('title', 'your post')}\"",
            actor_id=user_context.user_id,
            linked_entity=LinkedEntity(collection=POSTS, document_id=path.post_id),
            data={"postId": path.post_id, "replyId": reply.id, "topicId": post["topicId"]}
        )

        span.set_attribute("reply.id", reply.id)
        span.set_status(Status(StatusCode.OK))
        logger.info("Forum reply created", extra={"reply_id": reply.id, "post_id": path.post_id})

        return jsonify(current_app.hal_formatter.format_resource(
            reply.to_api(), f"/api/forums/posts/{path.post_id}/replies"
        )), 201
