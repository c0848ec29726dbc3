#!/usr/bin/env python3
"""
Validate an API key against the chat service.

Usage:
    python scripts/validate_connection.py [api_key] [prod|dev] [--start]

Prints one JSON line: {"success": ..., "message": ..., "conversation_id": ...}
"""

import os
import sys
import json
import logging

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import config
from config import Config
from conversation import Session, ChatClientError


def validate(api_key, mode, start_conversation=False, profile=None):
    """
    Connect and optionally start a conversation.

    Returns:
        dict: {success, message[, conversation_id]}
    """
    if not api_key:
        return {"success": False, "message": "Missing API key."}

    profile = profile or {}
    try:
        session = Session(api_key, mode=mode)
    except ValueError as e:
        return {"success": False, "message": str(e)}

    with session:
        try:
            session.connect()
        except ChatClientError as e:
            return {"success": False, "message": f"Connection failed: {e}"}

        if not start_conversation:
            return {"success": True, "message": f"Connected to {mode}."}

        try:
            conversation = session.create_conversation(
                profile.get('user_id', 'cli-user'),
                auto_conversation_start=profile.get('auto_conversation_start', 'bot-first')
            )
        except ChatClientError as e:
            return {"success": False, "message": f"Conversation start failed: {e}"}

        return {
            "success": True,
            "message": f"Connected to {mode} and started a conversation.",
            "conversation_id": conversation.get_conversation_id()
        }


def main(argv):
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        stream=sys.stderr
    )

    start_conversation = '--start' in argv
    args = [a for a in argv if a != '--start']

    profile = Config()
    api_key = args[0] if len(args) > 0 else (config.CAPTIVATE_API_KEY or profile.get('api_key', ''))
    mode = args[1] if len(args) > 1 else profile.get('mode', config.CAPTIVATE_MODE)

    result = validate(api_key, mode, start_conversation, profile=profile)
    print(json.dumps(result))
    return 0 if result["success"] else 1


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
