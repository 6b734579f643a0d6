"""
Base Templatizer Abstract Class
===============================
Defines the common interface for all item kind templatizers.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
import logging

from ..base.portal_client import PortalClient
from ..utils.template_dictionary import TemplateDictionary, templatize_term
from ..utils.templates import DependencyResolution, ItemTemplate


class BaseTemplatizer(ABC):
    """Abstract base class for item kind templatizers."""

    # Item types handled by this templatizer
    item_kinds: List[str] = []

    def __init__(self):
        """Initialize the base templatizer."""
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def extract(self, content: Dict[str, Any], client: PortalClient) -> DependencyResolution:
        """
        Find the items an item template references.

        Args:
            content: Template content ('item', 'data', ...)
            client: Portal client for service lookups

        Returns:
            DependencyResolution with dependency IDs and URL lookup table
        """

    @abstractmethod
    def rewrite(self, content: Dict[str, Any], resolution: DependencyResolution):
        """
        Replace references in template content with placeholders, in place.

        Args:
            content: Template content
            resolution: Result of extract() for the same content
        """

    def convert_item_to_template(self, template: ItemTemplate, client: PortalClient) -> ItemTemplate:
        """
        Extract dependencies and templatize references of an item template.

        Args:
            template: Template holding the source item's content
            client: Portal client for service lookups

        Returns:
            The same template, updated
        """
        resolution = self.extract(template.content, client)
        template.dependencies = list(resolution.dependencies)
        self.rewrite(template.content, resolution)
        return template

    def build_item(
        self,
        template: ItemTemplate,
        resolved_content: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], Optional[Any]]:
        """
        Build item properties and data for creating the item.

        Args:
            template: Item template
            resolved_content: Template content with placeholders resolved

        Returns:
            Tuple of (item_properties, data)
        """
        item_properties = dict(resolved_content.get('item') or {})
        # System properties are assigned by the portal
        for key in ('id', 'owner', 'created', 'modified'):
            item_properties.pop(key, None)
        item_properties['type'] = template.item_kind
        return item_properties, resolved_content.get('data')

    def register_created_item(
        self,
        template: ItemTemplate,
        created: Dict[str, Any],
        dictionary: TemplateDictionary
    ):
        """
        Record a newly created item's values in the template dictionary.

        Args:
            template: Template the item was created from
            created: Response of PortalClient.create_item
            dictionary: Template dictionary of the run
        """
        source_id = template.item_id
        new_id = created['id']
        dictionary.set(f"{source_id}.itemId", new_id)

        if created.get('url'):
            dictionary.set(f"{source_id}.url", created['url'])

        # Sublayer entries referenced by templatized map layers
        for layer in (created.get('layers') or []) + (created.get('tables') or []):
            if layer.get('id') is None:
                continue
            prefix = f"{source_id}.layer{layer['id']}"
            if layer.get('url'):
                dictionary.set(f"{prefix}.url", layer['url'])
            dictionary.set(f"{prefix}.itemId", new_id)

        self.logger.debug(f"Registered {source_id} as {new_id}")

    def templatize_item_id(self, item_id: str) -> str:
        """Placeholder for an item's destination ID."""
        return templatize_term(item_id, item_id, ".itemId")
