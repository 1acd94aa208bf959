# nomad_passport/config.py
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Mapping, Optional, Tuple

from nomad_passport.exceptions import ConfigurationError
from nomad_passport.services.did_ethr import is_valid_address

DEFAULT_DID_NETWORK = "sepolia"
DEFAULT_CHAIN_ID = 11155111
DEFAULT_PINATA_API_URL = "https://api.pinata.cloud"
DEFAULT_CREDENTIAL_NAME = "DigitalNomadPassportVC"
DEFAULT_CORS_ORIGINS = ("http://localhost:3000",)

REQUIRED_KEYS = ("PRIVATE_KEY", "RPC_URL", "ANCHOR_CONTRACT", "PINATA_GATEWAY_URL")


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once at startup and passed to each component."""

    private_key: str = field(repr=False)
    rpc_url: str
    anchor_contract: str
    pinata_gateway: str
    pinata_jwt: Optional[str] = field(default=None, repr=False)
    pinata_api_key: Optional[str] = field(default=None, repr=False)
    pinata_secret_api_key: Optional[str] = field(default=None, repr=False)
    pinata_api_url: str = DEFAULT_PINATA_API_URL
    did_network: str = DEFAULT_DID_NETWORK
    chain_id: int = DEFAULT_CHAIN_ID
    pin_timeout: float = 30.0
    rpc_timeout: float = 30.0
    receipt_timeout: float = 120.0
    from_block: int = 0
    credential_name: str = DEFAULT_CREDENTIAL_NAME
    log_level: str = "INFO"
    cors_origins: Tuple[str, ...] = DEFAULT_CORS_ORIGINS


def _get(env: Mapping[str, str], key: str, default: str = "") -> str:
    return (env.get(key) or default).strip()


def _number(env: Mapping[str, str], key: str, default, cast):
    raw = _get(env, key)
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive")
    return value


def _block(env: Mapping[str, str], key: str) -> int:
    raw = _get(env, key)
    if not raw:
        return 0
    if not raw.isdigit():
        raise ConfigurationError(f"{key} must be a block number, got {raw!r}")
    return int(raw)


def _origins(env: Mapping[str, str], key: str) -> Tuple[str, ...]:
    raw = _get(env, key)
    if not raw:
        return DEFAULT_CORS_ORIGINS
    return tuple(o.strip() for o in raw.split(",") if o.strip())


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Reads the service configuration from the environment.
    Raises ConfigurationError listing every missing required variable.
    """
    env = os.environ if env is None else env

    missing = [k for k in REQUIRED_KEYS if not _get(env, k)]
    pinata_jwt = _get(env, "PINATA_JWT") or None
    api_key = _get(env, "PINATA_API_KEY") or None
    api_secret = _get(env, "PINATA_SECRET_API_KEY") or None
    if not pinata_jwt and not (api_key and api_secret):
        missing.append("PINATA_JWT (or PINATA_API_KEY + PINATA_SECRET_API_KEY)")
    if missing:
        raise ConfigurationError("Missing required configuration: " + ", ".join(missing))

    anchor_contract = _get(env, "ANCHOR_CONTRACT")
    if not is_valid_address(anchor_contract):
        raise ConfigurationError(f"ANCHOR_CONTRACT is not a valid contract address: {anchor_contract!r}")

    # Accept "gateway.pinata.cloud" as well as a full URL
    gateway = _get(env, "PINATA_GATEWAY_URL")
    for prefix in ("https://", "http://"):
        if gateway.startswith(prefix):
            gateway = gateway[len(prefix):]
    gateway = gateway.rstrip("/")

    return Settings(
        private_key=_get(env, "PRIVATE_KEY"),
        rpc_url=_get(env, "RPC_URL"),
        anchor_contract=anchor_contract,
        pinata_gateway=gateway,
        pinata_jwt=pinata_jwt,
        pinata_api_key=api_key,
        pinata_secret_api_key=api_secret,
        pinata_api_url=_get(env, "PINATA_API_URL", DEFAULT_PINATA_API_URL).rstrip("/"),
        did_network=_get(env, "DID_NETWORK", DEFAULT_DID_NETWORK),
        chain_id=_number(env, "CHAIN_ID", DEFAULT_CHAIN_ID, int),
        pin_timeout=_number(env, "PIN_TIMEOUT_SECONDS", 30.0, float),
        rpc_timeout=_number(env, "RPC_TIMEOUT_SECONDS", 30.0, float),
        receipt_timeout=_number(env, "RECEIPT_TIMEOUT_SECONDS", 120.0, float),
        from_block=_block(env, "ANCHOR_DEPLOY_BLOCK"),
        credential_name=_get(env, "CREDENTIAL_NAME", DEFAULT_CREDENTIAL_NAME),
        log_level=_get(env, "LOG_LEVEL", "INFO").upper(),
        cors_origins=_origins(env, "CORS_ORIGINS"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
