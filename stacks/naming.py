"""Resource identifiers of the form ``{service}-{stage}-{role}[-{logical_name}]``.

Roles never contain ``-`` so distinct ``(role, logical_name)`` pairs can never
derive the same identifier within one service context.
"""
from __future__ import annotations

import re
from typing import TYPE_CHECKING

from stacks.errors import InvalidNameError

if TYPE_CHECKING:
    from stacks.service_config import ServiceContext

ROLE_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

# Default cap, set by Lambda function names; ROLE_MAX_LENGTH tightens it per role.
MAX_IDENTIFIER_LENGTH = 64

ROLE_APP = "app"
ROLE_ALARM_TOPIC = "alarm"
ROLE_API = "api"
ROLE_API_ERRORS = "apierrors"
ROLE_BACKUP = "backup"
ROLE_DEPLOY = "deploy"
ROLE_ENDPOINT_ERRORS = "errors"
ROLE_FUNCTION = "fn"
ROLE_TABLE = "table"

# AWS Backup vault and plan names are capped at 50 characters.
ROLE_MAX_LENGTH = {ROLE_BACKUP: 50}


def validate_name_part(value: str, *, label: str) -> str:
    v = value or ""
    if not NAME_PATTERN.match(v):
        raise InvalidNameError(
            f"invalid {label} {value!r}: only letters, digits, '-' and '_' are allowed"
        )
    return v


class ResourceNamer:
    def __init__(self, ctx: ServiceContext) -> None:
        self._prefix = ctx.name_prefix

    @property
    def prefix(self) -> str:
        return self._prefix

    def derive(self, role: str, logical_name: str | None = None) -> str:
        if not ROLE_PATTERN.match(role or ""):
            raise InvalidNameError(
                f"invalid role {role!r}: only letters, digits and '_' are allowed"
            )
        parts = [self._prefix, role]
        if logical_name is not None:
            parts.append(validate_name_part(logical_name, label="logical name"))
        identifier = "-".join(parts)
        limit = ROLE_MAX_LENGTH.get(role, MAX_IDENTIFIER_LENGTH)
        if len(identifier) > limit:
            raise InvalidNameError(
                f"identifier {identifier!r} exceeds {limit} characters"
            )
        return identifier
