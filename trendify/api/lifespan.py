import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI
from trendify.pipeline.executor import RunOrchestrator
import logging

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events - startup and shutdown."""
    # Startup
    logger.info("🚀 Starting Trendify API...")

    try:
        logger.info("🔧 Initializing shared RunOrchestrator...")
        app.state.orchestrator = RunOrchestrator()

        summary = app.state.orchestrator.config.get_summary()
        logger.info(f"📊 Client configuration: {summary}")
    except Exception as e:
        logger.error(f"❌ Failed to initialize RunOrchestrator: {e}")
        raise  # Fail fast - don't start the app without an orchestrator

    # The cooldown counts down once per second for the life of the app
    ticker = asyncio.create_task(app.state.orchestrator.governor.run_ticker())
    logger.info("🎉 Application startup completed successfully")

    yield

    # Shutdown
    logger.info("🛑 Shutting down Trendify API...")
    ticker.cancel()
    try:
        await ticker
    except asyncio.CancelledError:
        pass
    logger.info("✅ Application shutdown completed")
