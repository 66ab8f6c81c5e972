# Run from project root: uvicorn agent_stream.main:app --reload

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agent_stream.agent.graph import ChatAgent, build_graph
from agent_stream.agent.memory import open_checkpointer
from agent_stream.api.routes import router
from agent_stream.core.config import CORS_ORIGINS, LOG_LEVEL
from agent_stream.services.dispatcher import SessionDispatcher

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Agent is ready before the first request arrives
    async with open_checkpointer() as checkpointer:
        agent = ChatAgent(build_graph(checkpointer))
        app.state.dispatcher = SessionDispatcher(agent)
        logger.info("Agent ready. Endpoints: GET / | POST /message | GET /stream | GET /stats")
        yield
        logger.info("Shutting down. Stats: %s", app.state.dispatcher.get_stats())


app = FastAPI(title="Agent Stream Server", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)
