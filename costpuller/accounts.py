import os
import logging
from collections import OrderedDict
from typing import Any, Dict, List, Mapping

import yaml
from pydantic import ValidationError

from .schemas import AccountConfig

LOG = logging.getLogger(__name__)

DEFAULT_ACCOUNTS_FILE = os.getenv("COSTPULLER_ACCOUNTS_FILE", "accounts.yaml")

AccountGroups = Dict[str, List[AccountConfig]]


def parse_account_groups(raw: Mapping[str, Any]) -> AccountGroups:
    """Validate a ``group -> [account entries]`` mapping, groups sorted by name.

    Accounts keep their listed order inside a group so rows come out the same
    way on every run.
    """
    if not isinstance(raw, Mapping):
        raise ValueError("accounts file must map group names to account lists")
    groups: AccountGroups = OrderedDict()
    for group in sorted(raw, key=str):
        entries = raw[group] or []
        if not isinstance(entries, list):
            raise ValueError(f"group {group!r} must hold a list of accounts")
        try:
            groups[str(group)] = [AccountConfig(category=str(group), **entry) for entry in entries]
        except (TypeError, ValidationError) as e:
            raise ValueError(f"invalid account entry in group {group!r}: {e}") from e
    return groups


def load_account_groups(path: str = DEFAULT_ACCOUNTS_FILE) -> AccountGroups:
    LOG.info("reading accounts from %s", path)
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    groups = parse_account_groups(raw)
    LOG.info("loaded %d accounts in %d groups", sum(len(a) for a in groups.values()), len(groups))
    return groups
