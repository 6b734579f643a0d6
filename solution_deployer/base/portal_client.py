"""
Portal Client Abstract Class
============================
Defines the remote operations the deployer needs from a target portal.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class PortalClient(ABC):
    """Abstract base class for portal access used by the deployer."""

    @property
    @abstractmethod
    def portal_url(self) -> str:
        """Base URL of the portal the session is connected to."""

    @abstractmethod
    def fetch_item_base(self, item_id: str) -> Dict[str, Any]:
        """
        Get an item's metadata.

        Args:
            item_id: Item ID

        Returns:
            Item properties dictionary
        """

    @abstractmethod
    def fetch_item_data(self, item_id: str) -> Dict[str, Any]:
        """Get an item's data as JSON."""

    @abstractmethod
    def fetch_portal(self) -> Dict[str, Any]:
        """Get the portal self description (isPortal, defaultExtent, helperServices, urlKey...)."""

    @abstractmethod
    def fetch_user(self) -> Dict[str, Any]:
        """Get the signed-in user."""

    @abstractmethod
    def fetch_user_folders(self) -> List[Dict[str, Any]]:
        """Get the signed-in user's folders as dictionaries with 'id' and 'title'."""

    @abstractmethod
    def create_folder(self, title: str) -> Dict[str, Any]:
        """
        Create a folder for the signed-in user.

        Args:
            title: Folder title

        Returns:
            Folder dictionary with 'id' and 'title'

        Raises:
            FolderExistsError: The title is already in use
        """

    @abstractmethod
    def reproject_extent(
        self,
        extent: Dict[str, Any],
        out_spatial_reference: Dict[str, Any],
        geometry_service_url: str
    ) -> Dict[str, Any]:
        """Project an extent into another spatial reference via a geometry service."""

    @abstractmethod
    def create_item(
        self,
        item_properties: Dict[str, Any],
        data: Optional[Any],
        folder_id: Optional[str]
    ) -> Dict[str, Any]:
        """
        Create an item.

        Args:
            item_properties: Item properties (type, title, tags...)
            data: Item data JSON
            folder_id: Destination folder ID (None for root)

        Returns:
            Dictionary with at least 'id'; may include 'url', 'layers' and 'tables'
        """

    @abstractmethod
    def update_item(
        self,
        item_id: str,
        item_properties: Dict[str, Any],
        data: Optional[Any],
        folder_id: Optional[str]
    ) -> None:
        """Update an existing item's properties and data."""

    @abstractmethod
    def lookup_service_info(self, url: str) -> Dict[str, Any]:
        """Get the JSON description of a service or layer URL (includes 'serviceItemId')."""

    @abstractmethod
    def check_is_administrator(self, item_id: str) -> bool:
        """Check whether the signed-in user may administer an item."""

    def search_solution_templates(self) -> List[Dict[str, Any]]:
        """List deployable Solution templates visible to the user."""
        return []
