"""
WEBCORE - Application Modules

Static list of the modules mounted by the API.
"""
from typing import List

from core.module import Module
from modules.status import StatusModule


def default_modules() -> List[Module]:
    """Return fresh instances of every bundled module."""
    return [
        StatusModule(),
        # Add your modules here
    ]


__all__ = ["default_modules"]
