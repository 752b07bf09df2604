from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from eventscout.api.routes import events
from eventscout.config import settings
from eventscout.tools import database_search


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await database_search.close_pool()


app = FastAPI(
    title="EventScout",
    description="Event discovery and extraction pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(events.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "eventscout"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("eventscout.main:app", host="0.0.0.0", port=8000)
