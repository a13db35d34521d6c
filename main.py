import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
import database
from errors import register_exception_handlers
from logging_config import LoggingMiddleware, setup_logging
from routers import auth, products, purchases, reviews, uploads, users

logger = logging.getLogger(__name__)

# App and CORS
app = FastAPI(title="Digital Goods Marketplace API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)

register_exception_handlers(app)

# Routes
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(products.router)
app.include_router(reviews.router)
app.include_router(purchases.router)
app.include_router(uploads.router)


@app.on_event("startup")
def on_startup():
    setup_logging(log_level=config.LOG_LEVEL, log_dir=config.LOG_DIR, use_json=config.LOG_JSON)
    if database.db is None:
        logger.warning("DATABASE_URL/DATABASE_NAME not set; database routes will fail")
        return
    database.ensure_indexes(database.db)
    logger.info("Marketplace API started (%s)", config.ENVIRONMENT)


@app.get("/")
def read_root():
    return {"message": "Digital Goods Marketplace API running", "environment": config.ENVIRONMENT}


@app.get("/health")
def health():
    return {"status": "ok", "database": "connected" if database.db is not None else "not configured"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
