import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from cycletrac.api.rides import router as rides_router
from cycletrac.api.users import router as users_router
from cycletrac.core.logging_config import configure_logging
from cycletrac.db import Base, engine
from cycletrac.models.ride import Ride  # noqa: F401  (import ensures table is registered)
from cycletrac.models.user import User  # noqa: F401

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="CycleTrac")

# Allow CORS for the browser client
origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Create DB tables (users, rides) on startup
Base.metadata.create_all(bind=engine)

app.include_router(rides_router)
app.include_router(users_router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request data", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unexpected_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/")
def root():
    return {"message": "CycleTrac backend is running"}
