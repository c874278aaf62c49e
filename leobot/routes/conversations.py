"""Conversation and message endpoints. Every route is scoped to the logged-in user."""

from flask import Blueprint, g, jsonify

from leobot.app import get_services, json_body
from leobot.auth import login_required
from leobot.conversations import ROLES
from leobot.database import serialize_document

bp = Blueprint("conversations", __name__, url_prefix="/api/conversations")


def _optional_strings(data, *fields) -> bool:
    return all(data.get(f) is None or isinstance(data.get(f), str) for f in fields)


@bp.route("", methods=["GET"])
@login_required
def list_conversations():
    conversations = get_services().conversations.list_for_user(g.user["userId"])
    return jsonify({"conversations": [serialize_document(c) for c in conversations]})


@bp.route("", methods=["POST"])
@login_required
def create_conversation():
    data = json_body()
    if not _optional_strings(data, "title", "firstMessage"):
        return jsonify({"error": "title and firstMessage must be strings"}), 400

    conversation = get_services().conversations.create(
        g.user["userId"],
        title=data.get("title"),
        first_message=data.get("firstMessage"),
    )
    return jsonify({"conversation": serialize_document(conversation)})


@bp.route("/<conversation_id>", methods=["PUT"])
@login_required
def update_conversation(conversation_id):
    data = json_body()
    if not _optional_strings(data, "title", "preview"):
        return jsonify({"error": "title and preview must be strings"}), 400
    message_count = data.get("messageCount")
    if message_count is not None and (
        isinstance(message_count, bool)
        or not isinstance(message_count, int)
        or message_count < 0
    ):
        return jsonify({"error": "messageCount must be a non-negative integer"}), 400

    updated = get_services().conversations.update(
        conversation_id,
        g.user["userId"],
        title=data.get("title"),
        messageCount=message_count,
        preview=data.get("preview"),
    )
    if not updated:
        return jsonify({"error": "Conversation not found"}), 404
    return jsonify({"success": True})


@bp.route("/<conversation_id>", methods=["DELETE"])
@login_required
def delete_conversation(conversation_id):
    if not get_services().conversations.delete(conversation_id, g.user["userId"]):
        return jsonify({"error": "Conversation not found"}), 404
    return jsonify({"success": True})


@bp.route("/<conversation_id>/messages", methods=["GET"])
@login_required
def list_messages(conversation_id):
    store = get_services().conversations
    conversation = store.get(conversation_id, g.user["userId"])
    if conversation is None:
        return jsonify({"error": "Conversation not found"}), 404
    messages = store.list_messages(str(conversation["_id"]))
    return jsonify({"messages": [serialize_document(m) for m in messages]})


@bp.route("/<conversation_id>/messages", methods=["POST"])
@login_required
def save_message(conversation_id):
    data = json_body()
    role = data.get("role")
    content = data.get("content") or ""
    books = data.get("books") or []

    valid = (
        isinstance(role, str)
        and role in ROLES
        and isinstance(content, str)
        and isinstance(books, list)
        and bool(content or books)
    )
    if not valid:
        return jsonify({"error": "role and (content or books) are required"}), 400

    store = get_services().conversations
    conversation = store.get(conversation_id, g.user["userId"])
    if conversation is None:
        return jsonify({"error": "Conversation not found"}), 404

    message, _ = store.save_message(conversation, role, content, books)
    return jsonify({"message": serialize_document(message)})
