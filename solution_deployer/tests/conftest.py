"""
Shared fixtures: an in-memory portal client and a small Solution template.
"""

import copy
import threading
import time
from typing import Any, Dict, List, Optional

import pytest

from solution_deployer.base.portal_client import PortalClient
from solution_deployer.utils.exceptions import FolderExistsError


SOLUTION_ID = "sol0000"

SOLUTION_ITEM = {
    'id': SOLUTION_ID,
    'title': 'Foo',
    'type': 'Solution',
    'typeKeywords': ['Solution', 'Template'],
    'owner': 'template_owner',
    'created': 1600000000000,
    'tags': ['parcels'],
    'snippet': 'Parcel viewer',
    'thumbnailUrl': f'https://www.arcgis.com/sharing/rest/content/items/{SOLUTION_ID}/info/thumbnail.png'
}

SOLUTION_DATA = {
    'metadata': {'version': 1},
    'params': {'appName': 'Parcel Viewer'},
    'templates': [
        {
            'itemId': 'fs1',
            'type': 'Feature Service',
            'dependencies': [],
            'estimatedDeploymentCostFactor': 3,
            'item': {'title': 'Parcels', 'extent': '{{solutionItemExtent}}'},
            'data': None
        },
        {
            'itemId': 'wm1',
            'type': 'Web Map',
            'dependencies': ['fs1'],
            'item': {
                'title': 'Parcel Map',
                'url': '{{portalBaseUrl}}/home/webmap/viewer.html?webmap={{wm1.itemId}}'
            },
            'data': {
                'operationalLayers': [
                    {'title': 'Parcels', 'url': '{{fs1.layer0.url}}', 'itemId': '{{fs1.layer0.itemId}}'}
                ]
            }
        },
        {
            'itemId': 'app1',
            'type': 'Web Mapping Application',
            'dependencies': ['wm1'],
            'item': {'title': '{{params.appName}}'},
            'data': {'values': {'webmap': '{{wm1.itemId}}', 'folder': '{{folderId}}'}}
        }
    ]
}

PORTAL = {
    'isPortal': False,
    'urlKey': 'myorg',
    'customBaseUrl': 'maps.arcgis.com',
    'defaultExtent': {
        'xmin': -13000000, 'ymin': 4000000, 'xmax': -12000000, 'ymax': 5000000,
        'spatialReference': {'wkid': 102100}
    },
    'helperServices': {'geometry': {'url': 'https://utility.arcgisonline.com/arcgis/rest/services/Geometry/GeometryServer'}}
}

PROJECTED_EXTENT = {'xmin': -116.8, 'ymin': 33.7, 'xmax': -107.8, 'ymax': 40.9, 'spatialReference': {'wkid': 4326}}


class FakePortalClient(PortalClient):
    """In-memory portal that records every call."""

    def __init__(
        self,
        item_base: Optional[Dict[str, Any]] = None,
        item_data: Optional[Dict[str, Any]] = None,
        portal: Optional[Dict[str, Any]] = None,
        folders: Optional[List[Dict[str, Any]]] = None,
        services: Optional[Dict[str, Dict[str, Any]]] = None,
        admin_ids=None,
        create_delay: float = 0
    ):
        self.item_base = copy.deepcopy(SOLUTION_ITEM if item_base is None else item_base)
        self.item_data = copy.deepcopy(SOLUTION_DATA if item_data is None else item_data)
        self.portal = copy.deepcopy(PORTAL if portal is None else portal)
        self.folders = copy.deepcopy(folders or [])
        self.services = services or {}
        self.admin_ids = set(admin_ids or [])
        self.create_delay = create_delay

        self.calls: List[tuple] = []
        self.created: Dict[str, Dict[str, Any]] = {}  # new id -> {'properties', 'data', 'folder_id'}
        self.updated: List[tuple] = []
        self.failures: Dict[str, Exception] = {}  # method name -> exception to raise
        self.fail_titles: Dict[str, Exception] = {}  # item title -> exception raised by create_item
        self.title_delays: Dict[str, float] = {}  # item title -> seconds create_item takes
        self.taken_folder_titles = set()  # titles create_folder rejects though not listed
        self.active = 0
        self.max_active = 0
        self._counter = 0
        self._lock = threading.Lock()

    def _record(self, name, *args):
        with self._lock:
            self.calls.append((name,) + args)
        if name in self.failures:
            raise self.failures[name]

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    @property
    def portal_url(self) -> str:
        return "https://myorg.maps.arcgis.com"

    def fetch_item_base(self, item_id):
        self._record('fetch_item_base', item_id)
        return copy.deepcopy(self.item_base)

    def fetch_item_data(self, item_id):
        self._record('fetch_item_data', item_id)
        return copy.deepcopy(self.item_data)

    def fetch_portal(self):
        self._record('fetch_portal')
        return copy.deepcopy(self.portal)

    def fetch_user(self):
        self._record('fetch_user')
        return {'username': 'deployer', 'orgId': 'org1'}

    def fetch_user_folders(self):
        self._record('fetch_user_folders')
        return copy.deepcopy(self.folders)

    def create_folder(self, title):
        self._record('create_folder', title)
        if title in self.taken_folder_titles or any(f['title'] == title for f in self.folders):
            raise FolderExistsError(title)
        folder = {'id': f"folder{len(self.folders) + 1}", 'title': title}
        self.folders.append(folder)
        return folder

    def reproject_extent(self, extent, out_spatial_reference, geometry_service_url):
        self._record('reproject_extent', extent, out_spatial_reference, geometry_service_url)
        return copy.deepcopy(PROJECTED_EXTENT)

    def create_item(self, item_properties, data, folder_id):
        self._record('create_item', item_properties.get('title'))
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self._counter += 1
            new_id = f"new{self._counter}"
        try:
            delay = self.title_delays.get(item_properties.get('title'), self.create_delay)
            if delay:
                time.sleep(delay)
            if item_properties.get('title') in self.fail_titles:
                raise self.fail_titles[item_properties['title']]

            created = {'id': new_id}
            with self._lock:
                self.created[new_id] = {
                    'properties': copy.deepcopy(item_properties),
                    'data': copy.deepcopy(data),
                    'folder_id': folder_id
                }
            if item_properties.get('type') == 'Feature Service':
                url = f"https://services.arcgis.com/org1/arcgis/rest/services/{new_id}/FeatureServer"
                created['url'] = url
                created['layers'] = [{'id': 0, 'url': f"{url}/0"}]
                created['tables'] = []
            return created
        finally:
            with self._lock:
                self.active -= 1

    def update_item(self, item_id, item_properties, data, folder_id):
        self._record('update_item', item_id)
        with self._lock:
            self.updated.append((item_id, copy.deepcopy(item_properties), copy.deepcopy(data)))

    def lookup_service_info(self, url):
        self._record('lookup_service_info', url)
        return copy.deepcopy(self.services.get(url, {}))

    def check_is_administrator(self, item_id):
        self._record('check_is_administrator', item_id)
        return item_id in self.admin_ids

    def search_solution_templates(self):
        self._record('search_solution_templates')
        return [{'id': SOLUTION_ID, 'title': self.item_base.get('title'), 'snippet': None}]


@pytest.fixture
def fake_client():
    return FakePortalClient()


@pytest.fixture
def make_client():
    """Factory for FakePortalClient with custom data."""
    return FakePortalClient


@pytest.fixture
def solution_id():
    return SOLUTION_ID
