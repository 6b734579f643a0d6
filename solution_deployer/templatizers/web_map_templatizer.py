"""
Web Map Templatizer - Extract layer dependencies from ArcGIS Web Maps and templatize them.
"""

import logging
from typing import Any, Dict, List

from ..base.base_templatizer import BaseTemplatizer
from ..base.portal_client import PortalClient
from ..config.deploy_config import ItemKind, WEBMAP_APP_URL_PART
from ..utils.template_dictionary import templatize_term
from ..utils.templates import DependencyResolution, ItemTemplate, UrlInfo

# Configure logger
logger = logging.getLogger(__name__)

# Placeholder for the target portal's base URL
PLACEHOLDER_SERVER_NAME = "{{portalBaseUrl}}"


class WebMapTemplatizer(BaseTemplatizer):
    """Templatize Web Maps: operational layers and tables become references to solution items."""

    item_kinds = [ItemKind.WEB_MAP]

    def extract(self, content: Dict[str, Any], client: PortalClient) -> DependencyResolution:
        """
        Get the IDs of the services a web map's layers and tables come from.

        Args:
            content: Template content; layers are read from content['data']
            client: Portal client for service and permission lookups

        Returns:
            DependencyResolution with owning item IDs and a URL lookup table
        """
        data = content.get('data')
        if not data:
            return DependencyResolution()

        layers = data.get('operationalLayers') or []
        tables = data.get('tables') or []
        return self._get_layer_ids(layers + tables, client)

    def _get_layer_ids(self, layer_list: List[Dict[str, Any]], client: PortalClient) -> DependencyResolution:
        """
        Look up the owning item of each layer or table that has a URL.

        Args:
            layer_list: Map layers followed by tables
            client: Portal client

        Returns:
            DependencyResolution
        """
        resolution = DependencyResolution()
        id_checks: Dict[str, bool] = {}  # owning item ID -> can templatize

        for layer in layer_list:
            url = layer.get('url')
            if not url:
                continue

            service_info = client.lookup_service_info(url) or {}
            item_id = service_info.get('serviceItemId')
            if not item_id:
                self.logger.debug(f"No owning item for layer URL: {url}")
                resolution.url_hash[url] = UrlInfo(id=None, can_templatize=False)
                continue

            # Layers with sublayers in the same map share one owning item
            if item_id not in id_checks:
                id_checks[item_id] = bool(client.check_is_administrator(item_id))
                self.logger.debug(f"Templatize check for {item_id}: {id_checks[item_id]}")

            if item_id not in resolution.dependencies:
                resolution.dependencies.append(item_id)
            resolution.url_hash[url] = UrlInfo(id=item_id, can_templatize=id_checks[item_id])

        self.logger.info(f"Web map references {len(resolution.dependencies)} service item(s)")
        return resolution

    def rewrite(self, content: Dict[str, Any], resolution: DependencyResolution):
        """Templatize the layer and table URLs and item IDs of a web map."""
        data = content.get('data')
        if not data:
            return
        self.templatize_layer_ids_and_urls(data.get('operationalLayers'), resolution.url_hash)
        self.templatize_layer_ids_and_urls(data.get('tables'), resolution.url_hash)

    @staticmethod
    def templatize_layer_ids_and_urls(layer_list, url_hash: Dict[str, UrlInfo]):
        """
        Templatize the url and itemId of layers whose owning item may be templatized.

        Layers the user cannot administer keep their literal values.

        Args:
            layer_list: Map layers or tables (modified in place)
            url_hash: URL lookup table from extract()
        """
        for layer in layer_list or []:
            url = layer.get('url')
            if not url:
                continue
            hash_layer = url_hash.get(url)
            if not hash_layer or not hash_layer.can_templatize:
                continue

            layer_id = url[url.rfind('/') + 1:]
            item_id = hash_layer.id
            layer['url'] = templatize_term(item_id, item_id, f".layer{layer_id}.url")
            layer['itemId'] = templatize_term(item_id, item_id, f".layer{layer_id}.itemId")
            logger.debug(f"Templatized layer {layer.get('title', layer_id)} of {item_id}")

    def convert_item_to_template(self, template: ItemTemplate, client: PortalClient) -> ItemTemplate:
        """Templatize the web map's viewer URL, then its layer references."""
        item = template.content.setdefault('item', {})
        item['url'] = PLACEHOLDER_SERVER_NAME + WEBMAP_APP_URL_PART + self.templatize_item_id(template.item_id)
        return super().convert_item_to_template(template, client)
