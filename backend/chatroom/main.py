import logging

from fastapi import FastAPI
from chatroom.db.init_db import init_db
from chatroom.api.routes.messages import router as messages_router
from chatroom.api.routes.presence import router as presence_router
from chatroom.api.routes.realtime import router as realtime_router
from chatroom.core.config import settings

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version="0.1.0")

app.include_router(messages_router)
app.include_router(presence_router)
app.include_router(realtime_router)

@app.on_event("startup")
def _startup() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()
    logger.info("%s started (%s)", settings.app_name, settings.app_env)

@app.get("/health")
def health():
    return {"status": "ok"}
