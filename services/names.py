"""Cluster name validation and ownership matching."""

from __future__ import annotations

import logging
import re
from typing import Optional

from ephfleet_core.errors import invalid_input

from services.base import LOCAL_CLUSTER
from services.registry import ProviderRegistry

logger = logging.getLogger(__name__)

CLUSTER_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9-]+$")


def verify_cluster_name(
    name: str,
    registry: ProviderRegistry,
    username: Optional[str] = None,
) -> str:
    """Return ``name`` if it is ``<account>-<suffix>`` for a known account.

    Candidate accounts are ``username`` when given, otherwise every distinct
    active provider account. The reserved local cluster name is always valid.
    """

    if not name:
        raise invalid_input("cluster name cannot be blank")
    if name == LOCAL_CLUSTER:
        return name
    if not CLUSTER_NAME_PATTERN.match(name):
        raise invalid_input(f"cluster name must match {CLUSTER_NAME_PATTERN.pattern}")

    accounts = [username] if username else registry.distinct_accounts()

    for account in accounts:
        prefix = f"{account}-"
        if name.startswith(prefix) and len(name) > len(prefix):
            return name

    # "joe-perf" for account "peter" becomes "peter-perf"; "perf" likewise.
    _, sep, rest = name.partition("-")
    suffix = rest if sep else name
    suggestions = [f"{account}-{suffix}" for account in accounts]
    raise invalid_input(
        f"malformed cluster name {name}, did you mean one of {suggestions}",
    )


def ownership_pattern(registry: ProviderRegistry) -> re.Pattern[str]:
    """Return a regex matching every cluster owned by an active account."""

    accounts = registry.distinct_accounts()
    if not accounts:
        raise invalid_input("unable to determine an active account on any provider")
    return re.compile("|".join(f"(^{re.escape(account)}-)" for account in accounts))


def cluster_owner(name: str) -> str:
    """Return the owner prefix of a cluster name."""

    owner, _, _ = name.partition("-")
    return owner
