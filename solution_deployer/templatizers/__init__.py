"""
Templatizer modules for different ArcGIS item kinds.
"""

from typing import Dict, Optional

from ..base.base_templatizer import BaseTemplatizer
from .generic_templatizer import GenericTemplatizer
from .web_app_templatizer import WebAppTemplatizer
from .web_map_templatizer import WebMapTemplatizer


class TemplatizerRegistry:
    """Maps item kinds to templatizers, falling back to the generic one."""

    def __init__(self, fallback: Optional[BaseTemplatizer] = None):
        self._templatizers: Dict[str, BaseTemplatizer] = {}
        self.fallback = fallback or GenericTemplatizer()

    def register(self, templatizer: BaseTemplatizer):
        for kind in templatizer.item_kinds:
            self._templatizers[kind] = templatizer

    def get(self, item_kind: str) -> BaseTemplatizer:
        return self._templatizers.get(item_kind, self.fallback)

    def __contains__(self, item_kind: str) -> bool:
        return item_kind in self._templatizers


def default_registry() -> TemplatizerRegistry:
    """Registry with every built-in templatizer."""
    registry = TemplatizerRegistry()
    registry.register(WebMapTemplatizer())
    registry.register(WebAppTemplatizer())
    return registry


__all__ = [
    'GenericTemplatizer',
    'TemplatizerRegistry',
    'WebAppTemplatizer',
    'WebMapTemplatizer',
    'default_registry'
]
