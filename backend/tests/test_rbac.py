"""Tests for capability checks."""

import pytest

from core.constants import ActorRole, Capability
from core.exceptions import ForbiddenError
from core.rbac import actor_capabilities, check_capability, require_capability
from core.security import Actor

pytestmark = pytest.mark.unit


def actor(*roles: str) -> Actor:
    return Actor(id="a-1", roles=list(roles))


class TestCheckCapability:
    def test_trigger_operator(self):
        op = actor(ActorRole.TRIGGER_OPERATOR.value)
        assert check_capability(op, Capability.TRIGGER_EXECUTE)
        assert check_capability(op, Capability.RUNS_READ)
        assert not check_capability(op, Capability.RUNS_CANCEL)
        assert not check_capability(op, Capability.WORKFLOWS_MANAGE)

    def test_worker_service_only_executes_nodes(self):
        worker = actor(ActorRole.WORKER_SERVICE.value)
        assert check_capability(worker, Capability.NODES_EXECUTE)
        assert not check_capability(worker, Capability.TRIGGER_EXECUTE)

    def test_manager_wildcards(self):
        mgr = actor(ActorRole.WORKFLOW_MANAGER.value)
        assert check_capability(mgr, Capability.WORKFLOWS_MANAGE)
        assert check_capability(mgr, Capability.RUNS_CANCEL)
        assert check_capability(mgr, "runs.replay")
        assert check_capability(mgr, Capability.AUDIT_READ)
        assert not check_capability(mgr, Capability.TRIGGER_EXECUTE)

    def test_admin_has_everything(self):
        admin = actor(ActorRole.SYSTEM_ADMIN.value)
        for capability in Capability:
            assert check_capability(admin, capability)

    def test_unknown_role_grants_nothing(self):
        assert actor_capabilities(actor("intern")) == set()

    def test_roles_combine(self):
        both = actor(ActorRole.TRIGGER_OPERATOR.value, ActorRole.WORKER_SERVICE.value)
        assert check_capability(both, Capability.TRIGGER_EXECUTE)
        assert check_capability(both, Capability.NODES_EXECUTE)

    def test_prefix_wildcard_needs_dot(self):
        mgr = actor(ActorRole.WORKFLOW_MANAGER.value)
        assert not check_capability(mgr, "runsx.read")


class TestRequireCapability:
    def test_returns_actor(self):
        op = actor(ActorRole.TRIGGER_OPERATOR.value)
        assert require_capability(op, Capability.TRIGGER_EXECUTE) is op

    def test_raises_forbidden(self):
        with pytest.raises(ForbiddenError, match="audit.read"):
            require_capability(actor(ActorRole.TRIGGER_OPERATOR.value), Capability.AUDIT_READ)
