"""
Main application entry point for the adaptive assessment engine.

This module builds the FastAPI application, registering the assessment
router, the exception handlers and an engine whose lifetime follows the
application's.

Usage:
    - Direct: python -m assessment_engine.main
    - ASGI server: uvicorn assessment_engine.main:app
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assessment_engine.api import install_exception_handlers, main_router, register_module
from assessment_engine.common.config import AppConfig, get_config
from assessment_engine.common.logger import app_logger, configure_logger
from assessment_engine.assessments.controller import router as assessments_router
from assessment_engine.assessments.engine import AssessmentEngine

# Setup module logger
logger = app_logger.getChild("main")

register_module("assessments", assessments_router)


def create_app(engine: Optional[AssessmentEngine] = None, config: Optional[AppConfig] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        engine: Engine to serve; built from configuration when omitted
        config: Application configuration; loaded when omitted

    Returns:
        The application
    """
    config = config or get_config()
    configure_logger(
        level=config.logging.level,
        use_json=config.logging.json_output,
        log_file=config.logging.file
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.engine is None:
            app.state.engine = AssessmentEngine.from_config()
        await app.state.engine.start()
        logger.info("Application startup complete")
        try:
            yield
        finally:
            await app.state.engine.shutdown()
            logger.info("Application shutdown complete")

    app = FastAPI(
        title=config.app_name,
        description="API for adaptive assessments",
        version=config.version,
        lifespan=lifespan
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_exception_handlers(app)
    app.include_router(main_router, prefix=config.api.prefix)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": f"Welcome to the {config.app_name} API"}

    logger.info(f"Application initialized with {len(app.routes)} routes")
    return app


app = create_app()


# Entry point for running the application directly
if __name__ == "__main__":
    import uvicorn

    api_config = get_config().api
    logger.info(f"Starting server on {api_config.host}:{api_config.port}")

    uvicorn.run(
        "assessment_engine.main:app",
        host=api_config.host,
        port=api_config.port,
        log_level="info"
    )
