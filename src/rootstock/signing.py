"""Key-pair generation collaborator interface for image signing.

Signing is a separate stage from the build pipeline; only the options struct
and the generator protocol live here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from rootstock.errors import ConfigError


@dataclass(frozen=True, slots=True)
class KeyPairOptions:
    name: str
    email: str
    comment: str = ""
    password: str = ""
    push_to_keystore: bool = False

    def validate(self) -> None:
        for field_name in ("name", "email", "password"):
            if not getattr(self, field_name).strip():
                raise ConfigError(
                    f"Key pair option `{field_name}` must not be empty.",
                    context={"key": field_name},
                )
        if "@" not in self.email:
            raise ConfigError(
                "Key pair email address is invalid.",
                context={"key": "email", "value": self.email},
            )


@dataclass(frozen=True, slots=True)
class KeyPair:
    fingerprint: str
    public_key: bytes
    private_key: bytes


class KeyPairGenerator(Protocol):
    def generate(self, options: KeyPairOptions) -> KeyPair:
        """Return a passphrase-protected key pair or raise a descriptive error."""


def generate_keypair(generator: KeyPairGenerator, options: KeyPairOptions) -> KeyPair:
    options.validate()
    return generator.generate(options)


__all__ = ["KeyPair", "KeyPairGenerator", "KeyPairOptions", "generate_keypair"]
