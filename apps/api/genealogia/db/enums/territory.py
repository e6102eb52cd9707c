"""Territorial enums."""

from enum import Enum


class ClosureAncestorType(str, Enum):
    """Ancestor kinds stored in the territorial closure table."""

    MUNICIPI = "municipi"
    NIVELL = "nivell"
    PAIS = "pais"
