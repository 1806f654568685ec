# module backend.app
import logging
import os

from backend.app_setup.factory import create_app

# Les loggers backend.* héritent du root; uvicorn ne configure que ses propres loggers
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "info").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

# App globale
app = create_app()
