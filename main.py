from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from db.init import init_db
from dotenv import load_dotenv
import logging
import os

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

from routers import auth, catalog, contact, addresses, checkout, subscriptions, custom_estimates, admin

app = FastAPI(title="Trash Panda Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=os.getenv("CORS_ORIGIN_REGEX", ".*"),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Every error leaves as {"error": message}
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Rejected payload for {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"error": "Invalid request payload."})

@app.on_event("startup")
def startup():
    if os.getenv("SKIP_DB_INIT", "").lower() not in ("1", "true"):
        init_db()

# Include Routers
app.include_router(auth.router, prefix="/auth", tags=["Auth"])
app.include_router(catalog.router)
app.include_router(contact.router, prefix="/contact", tags=["Contact"])
app.include_router(addresses.router, prefix="/addresses", tags=["Addresses"])
app.include_router(checkout.router, prefix="/checkout", tags=["Checkout"])
app.include_router(subscriptions.router, prefix="/subscriptions", tags=["Subscriptions"])
app.include_router(custom_estimates.router, prefix="/custom-estimates", tags=["Custom Estimates"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])

@app.get("/health")
def health_check():
    return {"status": "ok"}

@app.get("/")
def root():
    return {"message": "Trash Panda Backend running successfully"}
