"""Process-wide enrichment of log event properties."""

import getpass
import socket
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from contextlog.core.models import PropertyBag

SERVICE_NAME = "ServiceName"
ENVIRONMENT = "Environment"
MACHINE_NAME = "MachineName"
ENVIRONMENT_USER_NAME = "EnvironmentUserName"

RESERVED_PROPERTIES = frozenset({SERVICE_NAME, ENVIRONMENT})


def _default_user_name() -> str | None:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return None


@dataclass(frozen=True)
class Enricher:
    """Adds service identity and host fields to every event.

    Pure: the output depends only on the configured attributes and the
    input snapshot. ``ServiceName`` and ``Environment`` are reserved and
    always come from the enricher, whatever the request context holds.

    Attributes:
        service_name: Logical service name (e.g. "OrderService").
        environment: Deployment environment label (e.g. "Production").
        host: Machine name; defaults to ``socket.gethostname()``.
        user_name: OS user running the process; ``None`` omits it.
        extra: Additional static properties.
    """

    service_name: str
    environment: str
    host: str = field(default_factory=socket.gethostname)
    user_name: str | None = field(default_factory=_default_user_name)
    extra: Mapping[str, Any] = field(default_factory=dict)

    def identity(self) -> PropertyBag:
        """The reserved service identity fields only."""
        return PropertyBag(
            {SERVICE_NAME: self.service_name, ENVIRONMENT: self.environment}
        )

    def properties(self) -> PropertyBag:
        fields: dict[str, Any] = {**self.extra, MACHINE_NAME: self.host}
        if self.user_name is not None:
            fields[ENVIRONMENT_USER_NAME] = self.user_name
        return PropertyBag(fields).merge(self.identity())

    def __call__(self, snapshot: Mapping[str, Any]) -> PropertyBag:
        """Merge enricher output under ``snapshot``, protecting reserved names."""
        overrides = {k: v for k, v in snapshot.items() if k not in RESERVED_PROPERTIES}
        return self.properties().merge(overrides)
