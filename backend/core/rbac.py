"""Capability checks for triggering runs and administering workflows.

Roles map to capability codes (``core.constants.ROLE_CAPABILITIES``).
``check_capability`` is a plain predicate usable from any service;
``requires`` wraps it as a FastAPI dependency.

Usage:
    require_capability(actor, Capability.TRIGGER_EXECUTE)

    @router.post("/triggers")
    async def fire(actor: Actor = Depends(requires(Capability.TRIGGER_EXECUTE))): ...
"""

import logging
from typing import Union

from fastapi import Depends

from core.constants import ROLE_CAPABILITIES, Capability
from core.exceptions import ForbiddenError
from core.security import Actor, get_current_actor

logger = logging.getLogger(__name__)


def actor_capabilities(actor: Actor) -> set[str]:
    """Collect every capability code granted by the actor's roles."""
    granted: set[str] = set()
    for role in actor.roles:
        granted.update(ROLE_CAPABILITIES.get(role, ()))
    return granted


def _check_permission(user_perms: set[str], required: str) -> bool:
    """Check if granted capabilities satisfy the required one.

    Supports wildcard: "runs.*" matches "runs.read", "runs.cancel", etc.
    """
    if required in user_perms:
        return True

    for perm in user_perms:
        if perm == "*":
            return True
        if perm.endswith(".*"):
            prefix = perm[:-2]
            if required.startswith(prefix + "."):
                return True

    return False


def check_capability(actor: Actor, capability: Union[Capability, str]) -> bool:
    required = capability.value if isinstance(capability, Capability) else capability
    return _check_permission(actor_capabilities(actor), required)


def require_capability(actor: Actor, capability: Union[Capability, str]) -> Actor:
    """Raise ForbiddenError unless the actor holds the capability."""
    required = capability.value if isinstance(capability, Capability) else capability
    if not check_capability(actor, required):
        logger.warning(
            "Capability denied: actor=%s roles=%s required=%s",
            actor.id,
            actor.roles,
            required,
        )
        raise ForbiddenError(f"Missing required capability: {required}")
    return actor


def requires(capability: Union[Capability, str]):
    """FastAPI dependency enforcing a single capability."""

    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        return require_capability(actor, capability)

    return _check
