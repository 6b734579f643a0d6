"""
Authentication Utility
======================
Signs in to the organization a solution is deployed into.
"""

from typing import Any, Dict, Optional
from arcgis.gis import GIS
import logging

from ..config.deploy_config import ErrorMessages


logger = logging.getLogger(__name__)

DEFAULT_PORTAL_URL = "https://www.arcgis.com"


def connect_to_gis(
    url: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None
) -> GIS:
    """
    Sign in to an ArcGIS organization.

    Deployments create folders and items, so an anonymous session is never used.

    Args:
        url: ArcGIS Online or Enterprise portal URL
        username: Username of the user the solution is deployed for
        password: Password for authentication

    Returns:
        Authenticated GIS connection

    Raises:
        ValueError: Username or password missing
    """
    if not (username and password):
        raise ValueError(ErrorMessages.MISSING_CREDENTIALS)

    url = url or DEFAULT_PORTAL_URL
    try:
        gis = GIS(url, username, password)
    except Exception as e:
        logger.error(f"Failed to sign in to {url} as {username}: {str(e)}")
        raise

    logger.info(f"Signed in to {url} as {username}")
    return gis


def get_org_info(gis: GIS) -> Dict[str, Any]:
    """Summarize the signed-in organization and user for the run banner."""
    org = gis.properties.get('organization', {}) or {}
    user = gis.users.me

    return {
        'org_id': org.get('id') or gis.properties.get('id'),
        'org_name': org.get('name') or gis.properties.get('name'),
        'org_url': gis.url,
        'username': user.username if user else None,
        'is_portal': bool(gis.properties.get('isPortal', False))
    }
