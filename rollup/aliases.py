"""Identity and value alias resolution.

An identity owns zero or more aliases; every alias resolves to exactly one
canonical identity. Value aliases rename dimension values for a single user,
e.g. folding project ``wakapi-mobile`` into ``wakapi``.
"""

import logging
from typing import Dict, Iterable, Mapping, Optional, Tuple

from .errors import NotFoundError

logger = logging.getLogger(__name__)


class AliasResolver:
    """Pure lookup over an identity -> aliases relation.

    Attributes:
        identities: Canonical identities, each with its frozen alias set.
    """

    def __init__(
        self,
        identities: Mapping[str, Iterable[str]],
        value_aliases: Optional[Mapping[str, Mapping[Tuple[str, str], str]]] = None,
    ):
        """Build the resolver.

        Args:
            identities: ``{canonical_identity: aliases}``.
            value_aliases: ``{canonical_identity: {(dimension, alias): value}}``.

        Raises:
            ValueError: If an alias is claimed by two identities or shadows a
                canonical identity.
        """
        self.identities = {identity: frozenset(aliases) for identity, aliases in identities.items()}
        self._lookup: Dict[str, str] = {identity: identity for identity in self.identities}

        for identity, aliases in self.identities.items():
            for alias in aliases:
                if alias in self.identities and alias != identity:
                    raise ValueError(f"Alias {alias!r} of {identity!r} is itself an identity")
                owner = self._lookup.get(alias)
                if owner is not None and owner != identity:
                    raise ValueError(f"Alias {alias!r} is claimed by {owner!r} and {identity!r}")
                self._lookup[alias] = identity

        self._value_aliases = {
            identity: dict(mapping) for identity, mapping in (value_aliases or {}).items()
        }

    @classmethod
    def from_storage(cls, storage) -> "AliasResolver":
        resolver = cls(storage.get_identity_map(), storage.get_value_aliases())
        logger.info(f"Loaded {len(resolver.identities)} identities and their aliases")
        return resolver

    def canonicalize(self, requested_identity: str) -> str:
        """Resolve an identity or alias to its canonical identity.

        Raises:
            NotFoundError: If nothing is known under that name.
        """
        try:
            return self._lookup[requested_identity]
        except KeyError:
            raise NotFoundError(f"Unknown identity: {requested_identity}") from None

    def aliases_of(self, identity: str) -> frozenset:
        return self.identities.get(self.canonicalize(identity), frozenset())

    def resolve_value(self, identity: str, dimension: str, value: Optional[str]) -> Optional[str]:
        """Map a dimension value through the identity's value aliases."""
        if value is None:
            return None
        return self._value_aliases.get(identity, {}).get((dimension, value), value)
