"""FastAPI application for the USB firmware flasher."""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
import uvicorn

from flasher.config import load_config
from flasher.utils.logging import setup_logger
from flasher.services.controller import FlasherController
from flasher.api.routes import router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown hooks.

    Startup:
    - Load configuration from FLASHER_* environment variables
    - Initialize logger
    - Create the firmware directory
    - Build the controller and start hot-plug monitoring

    Shutdown:
    - Cancel any running flash session
    - Stop monitoring and release the device
    """
    config = load_config()
    logger = setup_logger("flasher", config.log_file, level=config.log_level_value)
    logger.info("Flasher starting up...")

    Path(config.firmware_dir).mkdir(parents=True, exist_ok=True)
    logger.debug(f"Ensured directory exists: {config.firmware_dir}")

    controller = FlasherController(config)
    app.state.controller = controller
    await controller.startup()

    logger.info(f"Flasher ready on port {config.port}")

    yield

    logger.info("Flasher shutting down...")
    await controller.shutdown()


app = FastAPI(
    title="STM32 USB Flasher",
    description="Firmware update service for STM32F4 devices over USB",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "usb-flasher", "version": "1.0.0"}


def main():
    """Main entry point for running the server."""
    config = load_config()
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
