# Copyright (c) 2026 ln4cy
# This software is released under the MIT License.
# See LICENSE file in the project root for full license details.

"""Configuration management for the Captivate chat client."""

import os
import json
import logging

logger = logging.getLogger(__name__)

# Environment Variables
CAPTIVATE_API_KEY = os.getenv('CAPTIVATE_API_KEY', '')
CAPTIVATE_MODE = os.getenv('CAPTIVATE_MODE', 'prod')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

# Endpoint Configuration
PROD_HOST = 'channel.wss.captivatechat.ai'
DEV_HOST = 'channel-dev.wss.captivatechat.ai'
ENDPOINT_HOSTS = {
    'prod': PROD_HOST,
    'dev': DEV_HOST,
}

# Timeouts (seconds)
CONNECT_TIMEOUT = float(os.getenv('CONNECT_TIMEOUT', '10'))  # socket_connected handshake
REQUEST_TIMEOUT = float(os.getenv('REQUEST_TIMEOUT', '10'))  # conversation start / transcript
OPEN_TIMEOUT = float(os.getenv('OPEN_TIMEOUT', '10'))  # WebSocket opening handshake

# Conversation Configuration
START_MODES = ('bot-first', 'user-first')

CONFIG_FILE = os.getenv('CONFIG_FILE', os.path.expanduser('~/.captivate/config.json'))


def build_url(api_key, mode='prod'):
    """
    Build the WebSocket endpoint URL for a mode.

    Args:
        api_key: API key, embedded verbatim as the apiKey query parameter
        mode: 'prod' or 'dev'

    Returns:
        str: wss:// URL for the mode's host
    """
    host = ENDPOINT_HOSTS.get(mode)
    if host is None:
        raise ValueError(f"Unknown mode: {mode!r} (expected one of {sorted(ENDPOINT_HOSTS)})")
    return f"wss://{host}/dev?apiKey={api_key}"


# Profile defaults, overridden by the keys present in CONFIG_FILE
PROFILE_DEFAULTS = {
    'mode': CAPTIVATE_MODE,
    'user_id': 'cli-user',
    'auto_conversation_start': 'bot-first',
}


class Config:
    """Read-only client profile loaded from a JSON file."""

    def __init__(self, config_file=None):
        self.config_file = config_file or CONFIG_FILE
        self.data = self.load()

    def load(self):
        """Load the profile, filling missing keys from PROFILE_DEFAULTS."""
        profile = dict(PROFILE_DEFAULTS)
        if not os.path.exists(self.config_file):
            return profile
        try:
            with open(self.config_file, 'r') as f:
                stored = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load config: {e}")
            return profile
        if not isinstance(stored, dict):
            logger.error(f"Ignoring config file {self.config_file}: expected a JSON object")
            return profile
        profile.update(stored)
        return profile

    def get(self, key, default=None):
        return self.data.get(key, default)
