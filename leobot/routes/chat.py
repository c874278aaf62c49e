"""
Chat endpoint. Runs the agent and, for stored conversations, persists both sides of
the exchange.

Streams Server-Sent Events when the client asks for ``text/event-stream``; answers
with plain JSON otherwise. Streamed ``text`` deltas are a preview: the ``done`` event
carries the final, cleaned message.
"""

import json
from typing import Any, Dict, Optional

from flask import Blueprint, Response, g, jsonify, request, stream_with_context
from loguru import logger

from leobot.app import get_services, json_body
from leobot.auth import current_session
from leobot.conversations import DEFAULT_TITLE
from leobot.llm_agent import llm_error_status, sanitize_text

bp = Blueprint("chat", __name__, url_prefix="/api")

CHAT_ERROR = "Error processing your message"


def sse(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event)}\n\n"


def _load_conversation(conversation_id: str):
    """Resolve the conversation for the current user, or an error response."""
    user = current_session()
    if user is None:
        return None, (jsonify({"error": "Not authenticated"}), 401)
    conversation = get_services().conversations.get(conversation_id, user["userId"])
    if conversation is None:
        return None, (jsonify({"error": "Conversation not found"}), 404)
    g.user = user
    return conversation, None


def _persist_reply(
    conversation: Optional[Dict[str, Any]], result: Dict[str, Any]
) -> Optional[str]:
    if conversation is None:
        return None
    saved, _ = get_services().conversations.save_message(
        conversation, "assistant", result["message"], result.get("books")
    )
    return str(saved["_id"])


@bp.route("/chat", methods=["POST"])
def chat():
    data = json_body()
    message = data.get("message")
    if not message or not isinstance(message, str):
        return jsonify({"error": "Invalid message"}), 400

    sanitized = sanitize_text(message)
    if not sanitized:
        return jsonify({"error": "Message cannot be empty"}), 400

    services = get_services()
    agent = services.agent
    conversation = None
    conversation_id = data.get("conversationId")
    if conversation_id is not None and not isinstance(conversation_id, str):
        return jsonify({"error": "conversationId must be a string"}), 400

    if conversation_id:
        conversation, error = _load_conversation(conversation_id)
        if error:
            return error
        stored_id = str(conversation["_id"])
        history = agent.prepare_history(
            services.conversations.recent_messages(stored_id, agent.HISTORY_LIMIT)
        )
        services.conversations.save_message(conversation, "user", message.strip())
        if conversation.get("title") in (None, "", DEFAULT_TITLE):
            services.conversations.update(
                stored_id, conversation["userId"], title=message.strip()[:60]
            )
        user_id = conversation["userId"]
    else:
        raw_history = data.get("conversationHistory") or []
        if not isinstance(raw_history, list):
            raw_history = []
        history = agent.prepare_history(raw_history)
        session = current_session()
        user_id = session["userId"] if session else None

    if request.headers.get("Accept") == "text/event-stream":

        def generate():
            try:
                for event in agent.stream(sanitized, history, user_id=user_id):
                    if event["type"] != "result":
                        yield sse(event)
                        continue
                    result = event["result"]
                    message_id = _persist_reply(conversation, result)
                    if result["books"]:
                        yield sse({"type": "books", "books": result["books"]})
                    yield sse(
                        {
                            "type": "done",
                            "message": result["message"],
                            "messageId": message_id,
                            "conversationId": conversation_id,
                        }
                    )
            except Exception as e:
                status, details = llm_error_status(e)
                logger.exception(f"Chat stream failed: {e}")
                yield sse(
                    {
                        "type": "error",
                        "status": status,
                        "error": CHAT_ERROR,
                        "details": details,
                    }
                )

        return Response(stream_with_context(generate()), mimetype="text/event-stream")

    try:
        result = agent.run(sanitized, history, user_id=user_id)
    except Exception as e:
        status, details = llm_error_status(e)
        logger.exception(f"Chat request failed: {e}")
        return jsonify({"error": CHAT_ERROR, "details": details}), status

    message_id = _persist_reply(conversation, result)
    body = {
        "success": True,
        "message": result["message"],
        "books": result["books"],
        "toolCalls": result["toolCalls"],
    }
    if conversation is not None:
        body["conversationId"] = conversation_id
        body["messageId"] = message_id
    return jsonify(body)
