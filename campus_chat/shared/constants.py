"""
Application Constants

Defines constants used throughout the campus chat client.
"""

# Protocol constants
MESSAGE_ENCODING = "utf-8"
STREAMING_MESSAGE_ID = "streaming"
STREAMING_SOURCE = "gemini"

# Endpoint paths
DEFAULT_API_URL = "http://localhost:8000"
CHAT_WS_PATH = "/api/chatbot/ws/chat"
CHAT_STREAM_WS_PATH = "/api/chatbot/ws/chat/stream"
CHAT_REST_PATH = "/api/chatbot/message"

# Reconnection policy
MAX_RECONNECT_ATTEMPTS = 3
RECONNECT_BASE_DELAY = 3.0
RECONNECT_MAX_DELAY = 10.0

# Timing constants (seconds)
HEARTBEAT_INTERVAL = 30.0
CONNECT_SETTLE_DELAY = 0.1
DEFAULT_OPEN_TIMEOUT = 10.0
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_CLOSE_TIMEOUT = 2.0

# Auth-failure signature matched against server error text
AUTH_ERROR_SIGNATURE = "auth"

# User-facing error text
TRANSPORT_ERROR_MESSAGE = "Connection error - check if backend is running"
RETRIES_EXHAUSTED_MESSAGE = "Unable to connect to chat server. Please refresh the page."
UNKNOWN_ERROR_MESSAGE = "Unknown error"

# Conversation texts
WELCOME_MESSAGE = (
    "Welcome to Rajtech Technological Systems! I'm Raj, your AI assistant. "
    "How can I help you today?"
)
NOT_CONNECTED_NOTICE = "Not connected to chat server. Please wait a moment and try again."
SEND_FAILED_NOTICE = "Failed to send message. Please try again."
BACKEND_DOWN_NOTICE = "Unable to connect to chat server. Please ensure the backend is running."
GENERIC_ERROR_NOTICE = "I'm having trouble connecting right now. Please try again later."
MAX_CONVERSATION_HISTORY = 500

# Token storage
ACCESS_TOKEN_KEY = "access_token"
USER_KEY = "user"
DEFAULT_TOKEN_FILE = "~/.campus_chat/token.json"

# Command constants
QUIT_COMMAND = "/quit"
RECONNECT_COMMAND = "/reconnect"
REFRESH_COMMAND = "/refresh"
SUGGEST_COMMAND = "/suggest"
TOKEN_COMMAND = "/token"
HELP_COMMAND = "/help"

# Log format constants
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
