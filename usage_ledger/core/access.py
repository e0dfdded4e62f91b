"""
Access policies for ledger operations.

The ledger asks its policy before every read, upsert or delete. The default
policy allows everything, matching open read/insert/update access on the
usage table; stricter checks belong to whatever sits in front of the ledger.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional


class Action(Enum):
    """Operations a policy can allow or refuse."""
    READ = "read"
    UPSERT = "upsert"
    DELETE = "delete"


class AccessPolicy:
    """Base policy. Subclasses override allows()."""

    def allows(self, action: Action, provider: Optional[str]) -> bool:
        raise NotImplementedError


class AllowAll(AccessPolicy):
    """Policy that allows every operation."""

    def allows(self, action: Action, provider: Optional[str]) -> bool:
        return True


@dataclass(frozen=True)
class ActionPolicy(AccessPolicy):
    """Policy that allows a fixed set of actions, optionally per provider.

    An empty providers set means the action set applies to every provider.
    A scoped policy refuses provider-less operations (unfiltered queries,
    prunes), since those reach rows of every provider.
    """
    actions: FrozenSet[Action]
    providers: FrozenSet[str] = field(default_factory=frozenset)

    def allows(self, action: Action, provider: Optional[str]) -> bool:
        if action not in self.actions:
            return False
        if self.providers:
            return provider is not None and provider in self.providers
        return True


READ_ONLY = ActionPolicy(actions=frozenset({Action.READ}))
