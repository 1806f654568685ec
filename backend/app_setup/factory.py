"""
Factory d’application utilisée par les entrypoints (backend.app, backend.asgi).
Ordonne les étapes d’initialisation de manière lisible et testable.
"""
from fastapi import FastAPI
from .lifespan import lifespan
from .middlewares import register_basic_middlewares, register_force_https_middleware
from .security import register_security_middleware
from .exceptions import register_exception_handlers
from .routers import register_routers

def create_app() -> FastAPI:
    """
    Construit l’app FastAPI avec le lifespan (rate limiter + sweeper) et enregistre:
      - middlewares de base (CORS, TrustedHost, proxy) et en-têtes de sécurité
      - gestionnaires d’exceptions (PassError, HTTPException, erreurs inattendues)
      - routers (passes, payments, validation, health)
      - redirection HTTPS en dernier pour s’exécuter en premier
    """
    app = FastAPI(title="Event Passes API", lifespan=lifespan)
    register_basic_middlewares(app)
    register_security_middleware(app)
    register_exception_handlers(app)
    register_routers(app)
    register_force_https_middleware(app)
    return app
