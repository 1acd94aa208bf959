from functools import lru_cache

from nomad_passport.config import get_settings
from nomad_passport.services.anchor import AnchorContract
from nomad_passport.services.issuance import IssuanceService


@lru_cache(maxsize=1)
def get_issuance_service() -> IssuanceService:
    return IssuanceService.from_settings(get_settings())


def get_anchor_contract() -> AnchorContract:
    return get_issuance_service().contract
