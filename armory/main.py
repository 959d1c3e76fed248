import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from armory.api import assets, assignments, audit_logs, auth, bases, dashboard, expenditures, purchases, transfers, users
from armory.config import settings
from armory.database import Base, engine
from armory.exceptions import ArmoryError
from armory.utils.rate_limiter import limiter, rate_limit_exceeded_handler

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Military Asset Management API", version="1.0.0")

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(ArmoryError)
async def armory_error_handler(request: Request, exc: ArmoryError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected ({exc.code}): {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(bases.router, prefix="/api/bases", tags=["Bases"])
app.include_router(users.router, prefix="/api/users", tags=["Users"])
app.include_router(assets.router, prefix="/api/assets", tags=["Assets"])
app.include_router(purchases.router, prefix="/api/purchases", tags=["Purchases"])
app.include_router(transfers.router, prefix="/api/transfers", tags=["Transfers"])
app.include_router(assignments.router, prefix="/api/assignments", tags=["Assignments"])
app.include_router(expenditures.router, prefix="/api/expenditures", tags=["Expenditures"])
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["Dashboard"])
app.include_router(audit_logs.router, prefix="/api/audit-logs", tags=["Audit Logs"])


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "version": app.version}
