"""
Deployment Configuration
========================
Configuration structures and constants for the solution deployer.
Runtime settings come from the environment; everything else is a constant here.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional


class DeploymentStage(Enum):
    """States of a single deployment run."""
    FETCHING = "Fetching"
    FOLDER_READY = "FolderReady"
    EXTENT_RESOLVED = "ExtentResolved"
    SOLUTION_ITEM_CREATED = "SolutionItemCreated"
    DEPLOYING_ITEMS = "DeployingItems"
    RESOLVING_CIRCULAR_DEPENDENCIES = "ResolvingCircularDependencies"
    FINALIZING = "Finalizing"
    DONE = "Done"
    FAILED = "Failed"


class ItemKind:
    """Item type names used by the templatizers."""
    SOLUTION = "Solution"
    WEB_MAP = "Web Map"
    WEB_MAPPING_APPLICATION = "Web Mapping Application"
    INSTANT_APP = "Instant App"
    FEATURE_SERVICE = "Feature Service"


class SolutionKeywords:
    """Type keywords stamped on the deployed Solution item."""
    SOLUTION = "Solution"
    TEMPLATE = "Template"
    DEPLOYED = "Deployed"


class Progress:
    """Fixed progress checkpoints (percent)."""
    STARTED = 1
    FOLDER_AND_EXTENT = 2  # data fetch and folder creation
    SOLUTION_ITEM = 1
    ITEMS_SHARE = 95  # less than 100 because of the solution's own setup steps
    DONE = 100


# Template properties retained in the deployed Solution's manifest
TEMPLATE_RETAINED_PROPERTIES = [
    "itemId",
    "type",
    "dependencies",
    "circularDependencies"
]

# Spatial reference the Solution item extent is stored in
GEOGRAPHIC_SPATIAL_REFERENCE = {"wkid": 4326}

# Portal app path used for templatized web map URLs
WEBMAP_APP_URL_PART = "/home/webmap/viewer.html?webmap="

# Only HTTPS is used when building the portal base URL
PORTAL_SCHEME = "https"


class ErrorMessages:
    """Standard error messages."""

    MISSING_CREDENTIALS = "No credentials provided for the target portal"
    ITEM_NOT_FOUND = "Item '{item_id}' not found"
    MISSING_SUBSTITUTION = "No value for placeholder '{path}'"
    SUBSTITUTION_CONFLICT = "Value at '{path}' already set to {old!r}; refusing {new!r}"
    UNKNOWN_TRANSFORM = "Unknown placeholder transform '{name}'"
    DEPENDENCY_CYCLE = "Dependency cycle among items: {item_ids}"
    DUPLICATE_TEMPLATE_IDS = "Solution lists these item IDs more than once: {item_ids}"
    DEPLOYMENT_CANCELLED = "Deployment cancelled before stage {stage}"
    NO_GEOMETRY_SERVICE = "Portal does not define a geometry helper service"


@dataclass
class DeployOptions:
    """Options accepted by a deployment run."""
    progress_callback: Optional[Callable[[float], None]] = None
    template_dictionary: Dict[str, Any] = field(default_factory=dict)  # seed values
    title: Optional[str] = None
    snippet: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    max_concurrency: int = 1
    cancellation_token: Optional[Any] = None  # utils.progress.CancellationToken


def _optional_path(value: Optional[str]) -> Optional[Path]:
    return Path(value) if value else None


@dataclass
class DeploySettings:
    """Settings for the command line entry point, loaded from the environment."""
    portal_url: str = "https://www.arcgis.com"
    username: Optional[str] = None
    password: Optional[str] = None
    solution_id: Optional[str] = None
    title: Optional[str] = None
    max_concurrency: int = 1
    log_level: str = "INFO"
    json_output_dir: Path = Path("json_files")
    template_dictionary_file: Optional[Path] = None  # JSON seed values for placeholders

    @classmethod
    def from_env(cls) -> "DeploySettings":
        """Build settings from environment variables."""
        return cls(
            portal_url=os.getenv('PORTAL_URL', 'https://www.arcgis.com'),
            username=os.getenv('PORTAL_USERNAME'),
            password=os.getenv('PORTAL_PASSWORD'),
            solution_id=os.getenv('SOLUTION_ID') or None,
            title=os.getenv('DEPLOY_TITLE') or None,
            max_concurrency=int(os.getenv('DEPLOY_MAX_CONCURRENCY', '1')),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
            json_output_dir=Path(os.getenv('JSON_OUTPUT_DIR', 'json_files')),
            template_dictionary_file=_optional_path(os.getenv('DEPLOY_TEMPLATE_DICTIONARY'))
        )

    def validate(self) -> List[str]:
        """Return a list of configuration errors (empty when valid)."""
        errors = []
        if not self.username:
            errors.append("PORTAL_USERNAME is required in .env file")
        if not self.password:
            errors.append("PORTAL_PASSWORD is required in .env file")
        if self.max_concurrency < 1:
            errors.append("DEPLOY_MAX_CONCURRENCY must be at least 1")
        if self.template_dictionary_file and not self.template_dictionary_file.is_file():
            errors.append(f"DEPLOY_TEMPLATE_DICTIONARY file not found: {self.template_dictionary_file}")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for the auth module."""
        return {
            'username': self.username,
            'password': self.password,
            'url': self.portal_url
        }
