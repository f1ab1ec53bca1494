"""
Package directory used to label appointments at booking time.

Packages come from the studio's package configuration. The category is
looked up by id once, when an appointment is created, and stored on the
appointment as its ``type``.
"""

import logging
from typing import Iterable, Optional

from agenda.schemas.package_schema import Package

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = "Outros"

# Prefixes some booking sources put in front of a package id
PACKAGE_ID_PREFIXES = ("orcamento-", "pacote-", "agenda-")


def strip_package_prefix(package_id: str) -> str:
    """Remove a source prefix from a package id.

    Examples:
        >>> strip_package_prefix("orcamento-42")
        '42'
        >>> strip_package_prefix("42")
        '42'
    """
    for prefix in PACKAGE_ID_PREFIXES:
        if package_id.startswith(prefix):
            return package_id[len(prefix):]
    return package_id


class PackageDirectory:
    """Typed package lookup keyed by id."""

    def __init__(self, packages: Iterable[Package] = ()) -> None:
        self._packages: dict[str, Package] = {p.id: p for p in packages}

    def __len__(self) -> int:
        return len(self._packages)

    def register(self, package: Package) -> None:
        self._packages[package.id] = package

    def get(self, package_id: Optional[str]) -> Optional[Package]:
        if not package_id:
            return None
        return self._packages.get(package_id) or self._packages.get(strip_package_prefix(package_id))

    def category_for(self, package_id: Optional[str]) -> Optional[str]:
        """Category of a package, or None if the id is unknown."""
        package = self.get(package_id)
        if package is None:
            if package_id:
                logger.debug("Unknown package id %r", package_id)
            return None
        return package.category
