import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from personachat.api.routes_chat import router as chat_router
from personachat.api.routes_conversation import router as conversation_router
from personachat.api.routes_personas import router as personas_router
from personachat.api.routes_settings import router as settings_router
from personachat.services import get_services

__version__ = "0.1.0"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app):
    services = get_services()
    yield
    # Let pending summaries and titles land before the final save
    await services.engine.background.drain(timeout=10.0)
    services.manager.persist()
    logger.info("Shutdown complete")


app = FastAPI(title="PersonaChat Backend", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",     # Vite dev server
        "http://127.0.0.1:5173",
    ],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(chat_router)
app.include_router(conversation_router)
app.include_router(personas_router)
app.include_router(settings_router)


@app.get("/api/health")
async def health_check():
    return {"status": "ok", "version": __version__}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8765)
