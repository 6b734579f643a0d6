"""
ArcGIS Portal Client
====================
PortalClient implementation backed by the ArcGIS API for Python, with raw
REST calls (service descriptions, geometry projection) made through requests.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import requests
from arcgis.gis import GIS

from ..base.portal_client import PortalClient
from ..config.deploy_config import ErrorMessages, ItemKind, SolutionKeywords
from .exceptions import FolderExistsError, PortalRequestError


logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 60  # seconds


class ArcGISPortalClient(PortalClient):
    """Portal operations for one signed-in GIS connection."""

    def __init__(self, gis: GIS):
        """
        Initialize the client.

        Args:
            gis: Authenticated GIS connection to the target organization
        """
        self.gis = gis
        self._folder_titles: Dict[str, str] = {}  # folder id -> title

    @property
    def portal_url(self) -> str:
        return self.gis.url.rstrip('/')

    def _token(self) -> Optional[str]:
        con = getattr(self.gis, '_con', None)
        return getattr(con, 'token', None) if con else None

    def _get_item(self, item_id: str):
        item = self.gis.content.get(item_id)
        if not item:
            raise PortalRequestError(ErrorMessages.ITEM_NOT_FOUND.format(item_id=item_id))
        return item

    def fetch_item_base(self, item_id: str) -> Dict[str, Any]:
        return dict(self._get_item(item_id))

    def fetch_item_data(self, item_id: str) -> Dict[str, Any]:
        data = self._get_item(item_id).get_data()
        if isinstance(data, (bytes, str)):
            data = json.loads(data)
        return data or {}

    def fetch_portal(self) -> Dict[str, Any]:
        return json.loads(json.dumps(dict(self.gis.properties)))

    def fetch_user(self) -> Dict[str, Any]:
        user = self.gis.users.me
        if not user:
            raise PortalRequestError("No signed-in user")
        return {k: v for k, v in dict(user).items() if k != 'folders'}

    def fetch_user_folders(self) -> List[Dict[str, Any]]:
        """Get the signed-in user's folders, handling both folder object styles."""
        folders = []
        for f in self.gis.users.me.folders:
            if isinstance(f, dict):
                folder = {'id': f.get('id'), 'title': f.get('title')}
            else:
                props = getattr(f, 'properties', None) or {}
                folder = {
                    'id': props.get('id', getattr(f, 'id', None)),
                    'title': props.get('title', getattr(f, 'name', str(f)))
                }
            self._folder_titles[folder['id']] = folder['title']
            folders.append(folder)
        return folders

    def create_folder(self, title: str) -> Dict[str, Any]:
        """Create a folder, raising FolderExistsError when the title is taken."""
        owner = self.gis.users.me.username
        try:
            try:
                # Newer API (2.3+)
                result = self.gis.content.folders.create(title, owner=owner)
            except AttributeError:
                # Older API (<2.3)
                result = self.gis.content.create_folder(title, owner=owner)
        except Exception as e:
            error_msg = str(e).lower()
            if 'not available' in error_msg or 'already exists' in error_msg:
                raise FolderExistsError(title) from e
            raise

        if not result:
            raise FolderExistsError(title)

        if isinstance(result, dict):
            folder = {'id': result.get('id'), 'title': result.get('title', title)}
        else:
            props = getattr(result, 'properties', None) or {}
            folder = {'id': props.get('id', getattr(result, 'id', None)), 'title': props.get('title', title)}

        self._folder_titles[folder['id']] = folder['title']
        logger.info(f"Created folder: {folder['title']} ({folder['id']})")
        return folder

    def reproject_extent(
        self,
        extent: Dict[str, Any],
        out_spatial_reference: Dict[str, Any],
        geometry_service_url: str
    ) -> Dict[str, Any]:
        """Project an extent through the geometry service's project operation."""
        envelope = {k: extent[k] for k in ('xmin', 'ymin', 'xmax', 'ymax')}
        params = {
            'f': 'json',
            'geometries': json.dumps({'geometryType': 'esriGeometryEnvelope', 'geometries': [envelope]}),
            'inSR': json.dumps(extent.get('spatialReference') or {}),
            'outSR': json.dumps(out_spatial_reference)
        }
        token = self._token()
        if token:
            params['token'] = token

        payload = self._request('post', geometry_service_url.rstrip('/') + '/project', params)
        geometries = payload.get('geometries') or []
        if not geometries:
            raise PortalRequestError(f"Geometry service returned no geometries: {payload}")
        projected = dict(geometries[0])
        projected['spatialReference'] = out_spatial_reference
        return projected

    def create_item(
        self,
        item_properties: Dict[str, Any],
        data: Optional[Any],
        folder_id: Optional[str]
    ) -> Dict[str, Any]:
        properties = dict(item_properties)
        if data is not None:
            properties['text'] = json.dumps(data)

        new_item = self.gis.content.add(
            item_properties=properties,
            folder=self._folder_titles.get(folder_id, folder_id)
        )
        if not new_item:
            raise PortalRequestError(f"Failed to create item: {item_properties.get('title')}")

        logger.info(f"Created item: {new_item.title} ({new_item.id})")
        created = {'id': new_item.id, 'url': getattr(new_item, 'url', None)}

        # Sublayer URLs are needed to resolve map layers that point at this service
        if created['url'] and item_properties.get('type') == ItemKind.FEATURE_SERVICE:
            service = self.lookup_service_info(created['url'])
            for key in ('layers', 'tables'):
                created[key] = [
                    {'id': layer['id'], 'url': f"{created['url'].rstrip('/')}/{layer['id']}"}
                    for layer in service.get(key) or []
                ]
        return created

    def update_item(
        self,
        item_id: str,
        item_properties: Dict[str, Any],
        data: Optional[Any],
        folder_id: Optional[str]
    ) -> None:
        item = self._get_item(item_id)
        properties = {k: v for k, v in item_properties.items() if k not in ('id', 'data')}
        if data is not None:
            properties['text'] = json.dumps(data)
        if not item.update(item_properties=properties):
            raise PortalRequestError(f"Failed to update item {item_id}")
        logger.debug(f"Updated item {item_id}")

    def lookup_service_info(self, url: str) -> Dict[str, Any]:
        params = {'f': 'json'}
        token = self._token()
        if token:
            params['token'] = token
        return self._request('get', url, params)

    def check_is_administrator(self, item_id: str) -> bool:
        item = self.gis.content.get(item_id)
        return bool(item) and item.get('itemControl') == 'admin'

    def search_solution_templates(self) -> List[Dict[str, Any]]:
        """Find items with type Solution and the Solution,Template keywords."""
        query = f"type:Solution typekeywords:{SolutionKeywords.SOLUTION},{SolutionKeywords.TEMPLATE}"
        org_id = getattr(self.gis.users.me, 'orgId', None)
        if org_id:
            query += f" orgid:{org_id}"
        results = self.gis.content.search(query=query, max_items=100)
        return [{'id': item.id, 'title': item.title, 'snippet': item.snippet} for item in results]

    def _request(self, method: str, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if method == 'post':
            r = requests.post(url, data=params, timeout=REQUEST_TIMEOUT)
        else:
            r = requests.get(url, params=params, timeout=REQUEST_TIMEOUT)
        r.raise_for_status()
        payload = r.json()
        if isinstance(payload, dict) and 'error' in payload:
            error = payload['error'] or {}
            raise PortalRequestError(error.get('message', str(error)), error.get('code'))
        return payload
