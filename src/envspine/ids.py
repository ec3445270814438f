"""
Identifier codec - logical entity IDs ⇄ provider resource names.

Every entity lives in two coordinate systems: the logical ID used in tags
and client-facing APIs, and the provider name used only to address the
cloud API. The mapping is a pure function of the logical ID plus the
configured namespace prefix, and every secondary resource name (security
group, scaling group, launch configuration) is derived from the provider
name rather than stored.

Manifesto:
    - **Reversible:** ``decode(encode(id)) == id`` for every logical ID
    - **Stateless:** no lookups; the prefix is the only input besides the ID
    - **Reconstructible:** given a logical ID alone, all provider-side names
      can be rebuilt, so teardown works after tags are gone

Architecture:
    ::

        generate_entity_id("Prod API")  →  "prodapi" + sha256[:8]
                     │
                     ▼
        IdCodec("es-dev-").encode("prodapi1a2b3c4d")
                     │
                     ▼
        ProviderName("es-dev-prodapi1a2b3c4d")
          ├── cluster_name              es-dev-prodapi1a2b3c4d
          ├── security_group_name       es-dev-prodapi1a2b3c4d-env
          ├── auto_scaling_group_name   es-dev-prodapi1a2b3c4d
          └── launch_configuration_name es-dev-prodapi1a2b3c4d

Examples:
    >>> codec = IdCodec("es-dev-")
    >>> name = codec.encode("prod1a2b3c4d")
    >>> name.security_group_name
    'es-dev-prod1a2b3c4d-env'
    >>> codec.decode(name)
    'prod1a2b3c4d'

Tags:
    identifiers, naming, codec, env-spine
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from envspine.core.errors import ValidationError
from envspine.core.hashing import compute_hash

MAX_NAME_CHARS = 15
HASH_CHARS = 8

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]")


def generate_entity_id(name: str, *scope: str) -> str:
    """
    Derive a logical entity ID from a human-supplied name.

    The ID is the sanitized name (lowercase alphanumerics, first 15
    characters) followed by 8 hex characters of SHA-256 over the raw name.
    The same name always yields the same ID. Distinct names may collide
    with negligible probability, so callers treat the result as
    advisory-unique.

    Optional *scope* values (e.g. the owning environment ID) are mixed
    into the hash only, so the same name under different scopes yields
    different IDs while the readable part stays the same.

    Raises:
        ValidationError: If *name* is empty or blank.
    """
    if not name or not name.strip():
        raise ValidationError("Entity name is required")

    readable = _NON_ALPHANUMERIC.sub("", name.lower())[:MAX_NAME_CHARS]
    return readable + compute_hash(name, *scope, length=HASH_CHARS)


@dataclass(frozen=True)
class ProviderName:
    """A provider-namespaced name and its deterministic derivations."""

    value: str

    def __str__(self) -> str:
        return self.value

    @property
    def cluster_name(self) -> str:
        return self.value

    @property
    def security_group_name(self) -> str:
        return f"{self.value}-env"

    @property
    def auto_scaling_group_name(self) -> str:
        return self.value

    @property
    def launch_configuration_name(self) -> str:
        return self.value

    @property
    def service_name(self) -> str:
        return self.value

    @property
    def task_definition_family(self) -> str:
        # deploy IDs carry their revision as "<id>.<revision>"
        family, _, _ = self.value.rpartition(".")
        return family or self.value

    @property
    def task_definition(self) -> str:
        family, sep, revision = self.value.rpartition(".")
        if not sep:
            return self.value
        return f"{family}:{revision}"


class IdCodec:
    """Maps logical IDs to provider names and back for one namespace prefix."""

    def __init__(self, prefix: str):
        if not prefix:
            raise ValidationError("Resource prefix is required")
        self.prefix = prefix

    def encode(self, logical_id: str) -> ProviderName:
        if not logical_id:
            raise ValidationError("Logical ID is required")
        return ProviderName(f"{self.prefix}{logical_id}")

    def decode(self, provider_name: ProviderName | str) -> str:
        """Strip the namespace prefix from a provider name.

        Raises:
            ValidationError: If the name is not in this codec's namespace.
        """
        value = str(provider_name)
        if not self.is_managed(value):
            raise ValidationError(f"'{value}' is not a resource name under prefix '{self.prefix}'")
        return value[len(self.prefix):]

    def is_managed(self, provider_name: ProviderName | str) -> bool:
        value = str(provider_name)
        return value.startswith(self.prefix) and len(value) > len(self.prefix)

    def deploy_id(self, family: str, revision: int | str) -> str:
        """Logical deploy ID for a registered task definition family/revision."""
        return f"{self.decode(family)}.{revision}"

    @staticmethod
    def generate(name: str, *scope: str) -> str:
        return generate_entity_id(name, *scope)
