from typing import Dict, Optional

from rfq_desk.models import Actor, Role
from rfq_desk.service.ports import AbstractIdentityProvider
from shared.logging import get_logger

logger = get_logger(__name__)


def parse_actor(spec: str) -> Actor:
    """Parses "userId:ROLE" (role defaults to BUYER when omitted)."""
    user_id, _, role = spec.partition(":")
    if not user_id:
        raise ValueError(f"Invalid actor spec '{spec}': missing user id")
    try:
        return Actor(userId=user_id, role=Role(role.upper()) if role else Role.BUYER)
    except ValueError as e:
        raise ValueError(f"Invalid actor spec '{spec}': unknown role '{role}'") from e


class StaticTokenIdentityProvider(AbstractIdentityProvider):
    """
    Maps opaque bearer tokens to actors from configuration.

    Stands in for the storefront's session/JWT verification; only the
    resolved userId and role matter to the RFQ core.
    """

    def __init__(self, tokens: Dict[str, str]):
        self._actors = {token: parse_actor(spec) for token, spec in tokens.items()}

    def resolve(self, token: str) -> Optional[Actor]:
        actor = self._actors.get(token)
        if actor is None:
            logger.warning("Unknown bearer token presented")
        return actor
