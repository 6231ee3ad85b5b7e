"""FastAPI app with Strawberry GraphQL (query, mutation and subscription)."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from strawberry.fastapi import GraphQLRouter

from app import store as runtime
from app.feed import make_stream_publisher, run_feed
from app.redis_client import close_redis, get_redis
from app.schema import schema

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Bridge store events to Redis, start the simulated feed, close Redis on shutdown."""
    await get_redis()
    publisher = make_stream_publisher(asyncio.get_running_loop())
    runtime.store.subscribe(publisher)
    feed_task = asyncio.create_task(run_feed())
    try:
        yield
    finally:
        feed_task.cancel()
        try:
            await feed_task
        except asyncio.CancelledError:
            pass
        runtime.store.unsubscribe(publisher)
        runtime.store.close()
        await close_redis()


app = FastAPI(title="FX Marketdata API", version="0.1.0", lifespan=lifespan)
graphql_app = GraphQLRouter(schema)
app.include_router(graphql_app, prefix="/graphql")


@app.get("/health")
def health() -> dict[str, str]:
    """Health check for load balancers and Docker."""
    return {"status": "ok", "pair": runtime.store.current.pair6}
