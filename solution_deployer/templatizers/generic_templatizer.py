"""
Generic Templatizer - fallback for item kinds without reference extraction.
"""

from typing import Any, Dict

from ..base.base_templatizer import BaseTemplatizer
from ..base.portal_client import PortalClient
from ..utils.templates import DependencyResolution


class GenericTemplatizer(BaseTemplatizer):
    """Create items as-is; dependencies come only from the template itself."""

    def extract(self, content: Dict[str, Any], client: PortalClient) -> DependencyResolution:
        return DependencyResolution()

    def rewrite(self, content: Dict[str, Any], resolution: DependencyResolution):
        pass

    def convert_item_to_template(self, template, client):
        # Keep whatever dependencies the template already lists
        return template
