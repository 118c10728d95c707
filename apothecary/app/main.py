import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from apothecary.app.api.v1.router import router as v1_router
from apothecary.app.core.config import FRONTEND_URL
from apothecary.app.core.logging import configure_logging
from apothecary.services.errors import DomainError

configure_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(title="Apothecary Shop", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error("request.failed", path=request.url.path, status=exc.status_code, detail=exc.message)
    else:
        logger.info("request.rejected", path=request.url.path, status=exc.status_code, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "errors": exc.errors})


# entrée mal formée : 400 avec la liste des champs, comme les erreurs métier
@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err["loc"] if p != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": errors})


app.include_router(v1_router, prefix="/v1")
