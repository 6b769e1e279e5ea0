"""
Canonical contact identities (URNs) and contact language codes.

A URN is written ``scheme:path``, e.g. ``whatsapp:5511999999999`` or
``ext:user-42``. The path rules depend on the scheme; unknown schemes are
rejected.
"""

import re
from dataclasses import dataclass

import langcodes


EXTERNAL_SCHEME = "ext"
TEL_SCHEME = "tel"
TELEGRAM_SCHEME = "telegram"
WHATSAPP_SCHEME = "whatsapp"

_PATH_PATTERNS = {
    EXTERNAL_SCHEME: re.compile(r"^.+$"),
    TEL_SCHEME: re.compile(r"^\+?[a-zA-Z0-9]{1,64}$"),
    TELEGRAM_SCHEME: re.compile(r"^[0-9]+$"),
    WHATSAPP_SCHEME: re.compile(r"^[0-9]+$"),
}


class URNError(ValueError):
    """Raised when a scheme/path pair does not form a valid URN."""


@dataclass(frozen=True)
class URN:
    scheme: str
    path: str

    @classmethod
    def from_parts(cls, scheme: str, path: str) -> "URN":
        """Build a URN, validating the path against the scheme's rules."""
        scheme = scheme.strip().lower()
        path = path.strip()

        pattern = _PATH_PATTERNS.get(scheme)
        if pattern is None:
            raise URNError(f"unknown URN scheme: {scheme!r}")
        if not path:
            raise URNError(f"empty path for {scheme} URN")
        if not pattern.match(path):
            raise URNError(f"invalid path for {scheme} URN: {path!r}")

        return cls(scheme=scheme, path=path)

    @classmethod
    def whatsapp(cls, path: str) -> "URN":
        return cls.from_parts(WHATSAPP_SCHEME, path)

    @classmethod
    def parse(cls, identity: str) -> "URN":
        """Parse a stored ``scheme:path`` identity."""
        scheme, sep, path = identity.partition(":")
        if not sep:
            raise URNError(f"URN has no scheme: {identity!r}")
        return cls.from_parts(scheme, path)

    @property
    def identity(self) -> str:
        return f"{self.scheme}:{self.path}"

    def __str__(self) -> str:
        return self.identity


def iso3_language(tag: str) -> str:
    """
    Convert a BCP-47 language tag to the ISO 639-3 code of its base language.

    Examples: ``en-US`` -> ``eng``, ``pt-BR`` -> ``por``.

    Raises:
        ValueError: if the tag is empty, malformed or has no ISO 639-3 code
    """
    if not tag or not tag.strip():
        raise ValueError("empty language tag")

    try:
        # to_alpha3 only looks at the base language subtag
        return langcodes.Language.get(tag.strip()).to_alpha3()
    except LookupError as e:
        raise ValueError(f"no ISO 639-3 code for language tag {tag!r}") from e
