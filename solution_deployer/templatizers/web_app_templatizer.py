"""
Web App Templatizer - Web Mapping Applications and Instant Apps that point at web maps.
"""

from typing import Any, Dict, List

from ..base.base_templatizer import BaseTemplatizer
from ..base.portal_client import PortalClient
from ..config.deploy_config import ItemKind
from ..utils.templates import DependencyResolution


class WebAppTemplatizer(BaseTemplatizer):
    """Templatize the web map references of configurable apps."""

    item_kinds = [ItemKind.WEB_MAPPING_APPLICATION, ItemKind.INSTANT_APP]

    def extract(self, content: Dict[str, Any], client: PortalClient) -> DependencyResolution:
        """Collect web map IDs from values.webmap and values.mapItemCollection."""
        resolution = DependencyResolution()
        for map_id in self._map_ids(content):
            if map_id not in resolution.dependencies:
                resolution.dependencies.append(map_id)
        self.logger.debug(f"App references web maps: {resolution.dependencies}")
        return resolution

    def rewrite(self, content: Dict[str, Any], resolution: DependencyResolution):
        values = (content.get('data') or {}).get('values')
        if not isinstance(values, dict):
            return

        if isinstance(values.get('webmap'), str) and values['webmap'] in resolution.dependencies:
            values['webmap'] = self.templatize_item_id(values['webmap'])

        collection = values.get('mapItemCollection')
        if isinstance(collection, list):
            for i, map_ref in enumerate(collection):
                if isinstance(map_ref, str) and map_ref in resolution.dependencies:
                    collection[i] = self.templatize_item_id(map_ref)
                elif isinstance(map_ref, dict) and map_ref.get('id') in resolution.dependencies:
                    map_ref['id'] = self.templatize_item_id(map_ref['id'])

    @staticmethod
    def _map_ids(content: Dict[str, Any]) -> List[str]:
        values = (content.get('data') or {}).get('values')
        if not isinstance(values, dict):
            return []

        ids = []
        if isinstance(values.get('webmap'), str) and values['webmap']:
            ids.append(values['webmap'])

        # Instant Apps
        for map_ref in values.get('mapItemCollection') or []:
            if isinstance(map_ref, str):
                ids.append(map_ref)
            elif isinstance(map_ref, dict) and map_ref.get('id'):
                ids.append(map_ref['id'])
        return ids
