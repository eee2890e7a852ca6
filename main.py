from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import uvicorn
from dotenv import load_dotenv
import logging
import os

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)

from mongo.accounts import AccountStore
from mongo.client import DirectMongoClient, direct_mongo_client
from mongo.create_indexes import create_indexes
from mongo.store import TrackerStore
from rbac.auth_endpoints import router as auth_router
from rbac.collection_endpoints import router as collections_router
from rbac.permissions import TrackerError

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


def create_app(mongo: DirectMongoClient = None) -> FastAPI:
    """Build the API application.

    Args:
        mongo: Client to use; when omitted the shared client connects on startup
    """
    mongo = mongo or direct_mongo_client

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage the lifespan of the FastAPI application"""
        if not mongo.connected:
            await mongo.connect()
            await create_indexes(mongo)
        logger.info("Task tracker API ready")
        yield
        await mongo.disconnect()
        logger.info("Task tracker API stopped")

    app = FastAPI(title="Task Tracker API", lifespan=lifespan)
    app.state.mongo = mongo
    app.state.store = TrackerStore(mongo)
    app.state.accounts = AccountStore(mongo)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TrackerError)
    async def tracker_error_handler(request: Request, exc: TrackerError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": {"code": exc.code, "message": exc.message}},
        )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(auth_router)
    app.include_router(collections_router)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=False,
    )
