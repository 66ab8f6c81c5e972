"""
Conversation memory (LangGraph checkpointer).

CHECKPOINT_DB set -> SQLite file, conversations survive restarts.
Otherwise -> in-memory saver.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import MemorySaver
from langgraph.checkpoint.sqlite.aio import AsyncSqliteSaver

from agent_stream.core.config import CHECKPOINT_DB

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_checkpointer(db_path: str = CHECKPOINT_DB) -> AsyncIterator[BaseCheckpointSaver]:
    if not db_path:
        logger.info("[memory] using in-memory checkpointer")
        yield MemorySaver()
        return
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    logger.info("[memory] using sqlite checkpointer path=%s", db_path)
    async with AsyncSqliteSaver.from_conn_string(db_path) as saver:
        yield saver
