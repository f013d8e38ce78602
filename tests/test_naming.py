import itertools

import pytest

from stacks.errors import InvalidNameError
from stacks.naming import MAX_IDENTIFIER_LENGTH, ROLE_BACKUP, ResourceNamer
from stacks.service_config import ServiceContext


def _namer(service: str = "cf-user", stage: str = "pr-123") -> ResourceNamer:
    return ResourceNamer(ServiceContext(service_name=service, stage=stage))


def test_derive_formats_service_stage_role_and_name():
    namer = _namer()
    assert namer.derive("fn", "GetUser") == "cf-user-pr-123-fn-GetUser"
    assert namer.derive("alarm") == "cf-user-pr-123-alarm"


def test_derive_is_deterministic_across_instances():
    assert _namer().derive("errors", "ListUsers") == _namer().derive("errors", "ListUsers")


def test_derive_is_injective_across_role_and_name_pairs():
    namer = _namer()
    roles = ["fn", "errors", "deploy", "api", "apierrors", "table"]
    names = [None, "GetUser", "Get-User", "get_user", "User", "errors-GetUser"]
    pairs = list(itertools.product(roles, names))
    derived = [namer.derive(role, name) for role, name in pairs]
    assert len(set(derived)) == len(pairs)


@pytest.mark.parametrize("role", ["fn-x", "fn.x", "", "fn x", "fn/"])
def test_invalid_role_is_rejected(role):
    with pytest.raises(InvalidNameError, match="role"):
        _namer().derive(role, "GetUser")


@pytest.mark.parametrize("name", ["Get User", "users/{id}", "", "café", "a:b"])
def test_invalid_logical_name_is_rejected(name):
    with pytest.raises(InvalidNameError, match="logical name"):
        _namer().derive("fn", name)


def test_identifier_length_is_bounded():
    with pytest.raises(InvalidNameError, match="exceeds"):
        _namer().derive("fn", "X" * MAX_IDENTIFIER_LENGTH)


@pytest.mark.parametrize(
    "service,stage",
    [("", "production"), ("cf-user", ""), ("cf user", "production"), ("cf-user", "pr#1")],
)
def test_service_context_rejects_malformed_namespace(service, stage):
    with pytest.raises(InvalidNameError):
        ServiceContext(service_name=service, stage=stage)


def test_backup_names_use_the_tighter_backup_limit():
    # 33-character service: "-production-backup" pushes it to 51.
    namer = _namer(service="s" * 33, stage="production")
    assert len(namer.derive("fn", "GetUser")) <= MAX_IDENTIFIER_LENGTH
    with pytest.raises(InvalidNameError, match="exceeds 50 characters"):
        namer.derive(ROLE_BACKUP)
    assert _namer(service="s" * 32, stage="production").derive(ROLE_BACKUP) == (
        "s" * 32 + "-production-backup"
    )
