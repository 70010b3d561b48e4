from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from steam_social.api.v1.analytics import router as analytics_router
from steam_social.api.v1.friendships import router as friendships_router
from steam_social.api.v1.games import router as games_router
from steam_social.api.v1.health import router as health_router
from steam_social.api.v1.library import router as library_router
from steam_social.api.v1.users import router as users_router
from steam_social.core.errors import register_exception_handlers
from steam_social.core.settings import settings
from steam_social.db.session import init_db


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if settings.CREATE_TABLES_ON_STARTUP:
        init_db()
    yield


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# Local dev: allow the dashboard frontend to call the API.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(
    health_router,
    prefix=settings.API_V1_STR,
    tags=["Health"],
)
app.include_router(
    users_router,
    prefix=settings.API_V1_STR,
    tags=["Users"],
)
# Registered before the library router so /games/steam/... wins over /games/{game_id}/...
app.include_router(
    games_router,
    prefix=settings.API_V1_STR,
    tags=["Games"],
)
app.include_router(
    library_router,
    prefix=settings.API_V1_STR,
    tags=["Library"],
)
app.include_router(
    friendships_router,
    prefix=settings.API_V1_STR,
    tags=["Friendships"],
)
app.include_router(
    analytics_router,
    prefix=settings.API_V1_STR,
    tags=["Analytics"],
)
