import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

from .config import settings
from .routers.preferences import router as preferences_router
from .routers.reader import router as reader_router
from .routers.tabs import router as tabs_router
from .services.preference_store import PreferenceStore
from .services.runtime import ReaderRuntime
from .services.storage_backend import make_backend

load_dotenv()
logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = ReaderRuntime(PreferenceStore(make_backend(settings)), settings)
    runtime.start()
    app.state.runtime = runtime
    try:
        yield
    finally:
        runtime.stop()


app = FastAPI(title="Bionic Reader API", lifespan=lifespan)

app.include_router(preferences_router)
app.include_router(reader_router)
app.include_router(tabs_router)


@app.get("/")
def root():
    return {"message": "API is running!"}
