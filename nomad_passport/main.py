# nomad_passport/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nomad_passport.config import Settings, get_settings
from nomad_passport.exceptions import ConfigurationError, IssuerConfigurationError
from nomad_passport.routers import issuance, registry

logger = logging.getLogger("nomad_passport")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    configure_logging(settings.log_level)
    logger.info(
        "Starting Nomad Passport issuer (network=%s, chain_id=%s, contract=%s)",
        settings.did_network,
        settings.chain_id,
        settings.anchor_contract,
    )
    yield


async def configuration_error_handler(request: Request, exc: Exception):
    logger.error("Issuer configuration error: %s", exc)
    return JSONResponse(status_code=500, content={"error": "Issuer is not configured"})


def create_app(settings: Settings) -> FastAPI:
    app = FastAPI(
        title="Nomad Passport Issuer API",
        description=(
            "Issues Digital Nomad Passport credentials (did:ethr, JWT VC), pins them to IPFS "
            "and anchors their hash on the Anchor contract."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(issuance.router, prefix="/api", tags=["issuance"])
    app.include_router(registry.router, prefix="/api", tags=["registry"])

    # El servicio se construye en la primera petición: la config rota llega aquí
    app.add_exception_handler(ConfigurationError, configuration_error_handler)
    app.add_exception_handler(IssuerConfigurationError, configuration_error_handler)

    @app.get("/health")
    def health():
        return {"ok": True}

    return app


# Falla al importar si falta configuración obligatoria
app = create_app(get_settings())
