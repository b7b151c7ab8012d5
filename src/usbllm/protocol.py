"""Shared constants for launcher ↔ client ↔ llama-server communication."""

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 17872

# llama-server port scan
LLAMA_BASE_PORT = 8080
LLAMA_PORT_ATTEMPTS = 20

# REST endpoints
EP_INDEX = "/"
EP_HEALTH = "/healthz"
EP_MODELS = "/v1/models"
EP_STATS = "/stats"
EP_STREAM = "/api/stream"

# Upstream chat-completion endpoint
EP_CHAT_COMPLETIONS = "/v1/chat/completions"

# SSE event names
EV_META = "meta"
EV_TOKEN = "token"
EV_UPSTREAM = "upstream"
EV_PING = "ping"
EV_ERROR = "error"
EV_DONE = "done"

DONE_SENTINEL = "[DONE]"
