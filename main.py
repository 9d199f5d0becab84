import logging
import os
import time
from contextlib import asynccontextmanager

from bson.errors import BSONError
from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
from auth import check_secret_key
from auth import router as auth_router
from database import get_db
from potions import router as potions_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("potions")
access_logger = logging.getLogger("potions.access")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: refuse an unset signing key in production, connect to MongoDB
    and create the unique username index.

    Shutdown: close the MongoClient.
    """
    check_secret_key()
    try:
        db = database.connect()
        database.ensure_indexes(db)
        logger.info("Connected to MongoDB database '%s'", db.name)
    except PyMongoError as e:
        logger.error("MongoDB connection failed: %s", e)
        raise
    yield
    database.close()


app = FastAPI(title="Potions API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    access_logger.info(
        "%s %s %d %.2fms", request.method, request.url.path, response.status_code, duration_ms
    )
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        # loc is ("body" | "query" | "path", field, ...)
        loc = [str(part) for part in err.get("loc", ())[1:]]
        errors.append({"field": ".".join(loc) or None, "message": err.get("msg")})
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Validation failed", "errors": errors},
    )


@app.exception_handler(PyMongoError)
@app.exception_handler(BSONError)
async def store_exception_handler(request: Request, exc: Exception):
    logger.exception("Store error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc)},
    )


app.include_router(auth_router)
app.include_router(potions_router)


# Routes
@app.get("/")
def root():
    return {"message": "Potions API is running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "Running",
        "database": "Connected",
        "database_name": db.name,
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
    except PyMongoError as e:
        response["database"] = f"Connected but Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 3000))
    uvicorn.run(app, host="0.0.0.0", port=port)
