from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from portal import __version__
from portal.core.config import get_settings
from portal.core.logger import configure_from_settings
from portal.api.routers import approval_rules, approval_workflows, delegations

settings = get_settings()
logger = configure_from_settings(settings)

app = FastAPI(
    title=settings.app_name,
    description="Multi-level approval workflows for procurement documents",
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(approval_rules.router, prefix="/api")
app.include_router(approval_workflows.router, prefix="/api")
app.include_router(delegations.router, prefix="/api")


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": __version__}


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": __version__,
        "docs": "/docs" if settings.debug else None,
    }
