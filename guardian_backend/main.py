from dotenv import load_dotenv

load_dotenv()  # load .env from guardian_backend/ (or current working directory)

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.logging_utils import setup_logging
from routers import settings, walk

logger = setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    walk.shutdown()


app = FastAPI(title="SafeWalk Guardian API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(walk.router)
app.include_router(settings.router)


@app.get("/health")
async def health_check() -> dict:
    return {"status": "ok"}
