"""Service package data used to label appointments."""

from pydantic import BaseModel


class Package(BaseModel):
    """A sellable session package."""
    id: str
    name: str
    category: str
