"""
Main FastAPI Application for the cost-control engine.
Serves the REST endpoints for synchronization, maintenance and edits.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from costcontrol.config import configure_logging, get_config
from costcontrol.models import init_db
from costcontrol.domain.exceptions import DomainError
from costcontrol.api.v1 import api_router as v1_router
from costcontrol.api.v1.cost_control import domain_error_response

logger = logging.getLogger(__name__)


# Initialize FastAPI app
app = FastAPI(
    title="Cost Control Engine",
    description="Keep project cost-control trees in sync with their estimates",
    version=get_config().version
)

app.include_router(v1_router)


# Initialize database on startup
@app.on_event("startup")
async def startup_event():
    configure_logging()
    init_db()
    logger.info("Cost control engine started")


@app.get("/health")
def health():
    return {"status": "ok"}


# ------------ Error Handlers ------------

@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError):
    return domain_error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": "Invalid request",
            "code": "VALIDATION_ERROR",
            "details": jsonable_encoder(exc.errors()),
        },
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
