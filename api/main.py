from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.errors import register_exception_handlers
from api.routers import auth, chat, documents, health
from db.database import dispose_db, init_db
from rag_chat.logger import GLOBAL_LOGGER as log
from rag_chat.utils.config_loader import get_env
from rag_chat.utils.thread_pool import shutdown_pool


# Use lifespan instead of deprecated on_event
@asynccontextmanager
async def lifespan(app: FastAPI):
    env = get_env()
    log.info("Application startup initiated | env=%s", env.APP_ENV)
    await init_db()
    yield
    await dispose_db()
    shutdown_pool()
    log.info("Application shutdown complete")


def create_app(use_lifespan: bool = True) -> FastAPI:
    env = get_env()
    app = FastAPI(
        title="RAG Chat Backend",
        version="1.0",
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(
            dict.fromkeys([env.FRONTEND_URL, "http://localhost:3000", "http://localhost:3001"])
        ),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    register_exception_handlers(app)

    # Router Registration
    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
    app.include_router(chat.router, prefix="/api/chat", tags=["chat"])
    app.include_router(documents.router, prefix="/api/documents", tags=["documents"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=get_env().PORT, reload=False)
