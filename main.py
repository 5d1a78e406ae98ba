import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from oracle_league.core.config import settings
from oracle_league.core.logging_config import setup_logging
from oracle_league.db.session import init_db

# Importar las rutas (los routers)
from oracle_league.api.admin import router as admin_router
from oracle_league.api.errors import register_error_handlers
from oracle_league.api.predictions import router as predictions_router
from oracle_league.api.standings import router as standings_router
from oracle_league.api.stats import router as stats_router

setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.API_VERSION,
)

# Creamos las tablas en la base de datos
init_db()

register_error_handlers(app)

# Conectamos las piezas (routers)
app.include_router(predictions_router)
app.include_router(admin_router)
app.include_router(standings_router)
app.include_router(stats_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger.info(f"{settings.APP_NAME} {settings.API_VERSION} arrancada")


@app.get("/")
def read_root():
    return {"message": "API Oracle League funcionando 🔮"}
