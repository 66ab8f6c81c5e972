"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Logging
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

# OpenAI (agent LLM). When set, the agent uses OpenAI with tool calling.
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)

# Hugging Face chat (fallback LLM, no tools). Router chat completions require a chat model.
HF_API_KEY: str = os.getenv("HF_API_KEY", "").strip()
HF_LLM_MODEL: str = (
    os.getenv("HF_LLM_MODEL", "meta-llama/Llama-3.2-3B-Instruct").strip()
    or "meta-llama/Llama-3.2-3B-Instruct"
)
HF_CHAT_URL: str = "https://router.huggingface.co/v1/chat/completions"

# API timeouts (seconds). The dispatcher imposes none of its own.
LLM_API_TIMEOUT: float = float(os.getenv("LLM_API_TIMEOUT", "120"))

# Agent graph
MAX_AGENTIC_ROUNDS: int = 6
AGENT_MAX_TOKENS: int = 1024
# History trimming: the model sees the first message + the last TRIM_KEEP_LAST
TRIM_KEEP_LAST: int = 4

# Conversation memory. Empty -> in-memory checkpointer (lost on restart).
CHECKPOINT_DB: str = os.getenv("CHECKPOINT_DB", "").strip()

# Transport
DEFAULT_THREAD_ID: str = os.getenv("DEFAULT_THREAD_ID", "chat-id-XXX").strip() or "chat-id-XXX"
SSE_KEEPALIVE_SECONDS: float = 15.0
CORS_ORIGINS: list[str] = [
    o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
] or ["*"]
