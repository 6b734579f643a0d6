#!/usr/bin/env python3
"""
Solution Deployer Orchestrator
==============================
Deploys a Solution template item into the signed-in user's organization:
creates a folder and a new Solution item, then creates every item the
solution describes in dependency order, substituting placeholders as it goes.

Usage:
    1. Create a .env file based on .env.template
    2. Run: python -m solution_deployer
"""

import sys
import copy
import logging
import datetime
import os
import json
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Tuple, Type
from pathlib import Path
from dotenv import load_dotenv

from .base.portal_client import PortalClient
from .config.deploy_config import (
    DeployOptions, DeploySettings, DeploymentStage, ErrorMessages, GEOGRAPHIC_SPATIAL_REFERENCE,
    ItemKind, PORTAL_SCHEME, Progress, SolutionKeywords
)
from .templatizers import TemplatizerRegistry, default_registry
from .utils.exceptions import (
    CircularResolutionFailure, DeploymentError, ExtentResolutionFailure, FetchFailure,
    FinalizationFailure, FolderCreationFailure, FolderExistsError, ItemCreationFailure,
    SolutionItemCreationFailure
)
from .utils.json_handler import clean_item_properties, load_json, save_json
from .utils.progress import CancellationToken, ProgressTracker
from .utils.template_dictionary import TemplateDictionary, placeholder_roots
from .utils.templates import (
    ItemTemplate, checked_replace_all, dependency_levels, estimate_deployment_cost, normalize_template
)


logger = logging.getLogger(__name__)

# Server rejections tolerated before giving up on a folder name
MAX_FOLDER_ATTEMPTS = 100

# Item properties that may embed the template Solution's ID
SOLUTION_ID_PROPERTIES = ['thumbnailUrl', 'tryitUrl', 'url']


class SolutionDeployer:
    """Orchestrates the deployment of one Solution template."""

    def __init__(
        self,
        client: PortalClient,
        options: Optional[DeployOptions] = None,
        registry: Optional[TemplatizerRegistry] = None
    ):
        """
        Initialize the deployer.

        Args:
            client: Portal client for the destination organization
            options: Deployment options
            registry: Templatizers by item kind (defaults to the built-in set)
        """
        self.client = client
        self.options = options or DeployOptions()
        self.registry = registry or default_registry()
        self.dictionary = TemplateDictionary(self.options.template_dictionary)
        self.progress = ProgressTracker(self.options.progress_callback)
        self.token = self.options.cancellation_token or CancellationToken()

        self.stage: Optional[DeploymentStage] = None
        self.error: Optional[DeploymentError] = None
        self.source_id: Optional[str] = None
        self.item_base: Dict[str, Any] = {}
        self.item_data: Dict[str, Any] = {}
        self.templates: List[ItemTemplate] = []
        self.levels: List[List[ItemTemplate]] = []
        self.folder_id: Optional[str] = None
        self.solution_item_id: Optional[str] = None
        self.progress_step = 0.0

    @contextmanager
    def _stage(self, stage: DeploymentStage, failure: Type[DeploymentError]):
        """Enter a stage, wrapping unexpected errors in the stage's failure type."""
        self.token.raise_if_cancelled(stage)
        self.stage = stage
        logger.info(f"Stage: {stage.value}")
        try:
            yield
        except DeploymentError:
            raise
        except Exception as e:
            raise failure(e) from e

    def deploy(self, template_solution_id: str) -> Dict[str, Any]:
        """
        Run the whole deployment.

        Args:
            template_solution_id: ID of the Solution template item

        Returns:
            Dict with the deployed Solution's item properties ('item') and data ('data')

        Raises:
            DeploymentError: Any stage failed or the run was cancelled
        """
        self.source_id = template_solution_id
        logger.info(f"Deploying solution template {template_solution_id}")

        try:
            self.progress.report(Progress.STARTED)

            with self._stage(DeploymentStage.FETCHING, FetchFailure):
                folders = self.fetch_solution(template_solution_id)

            with self._stage(DeploymentStage.FOLDER_READY, FolderCreationFailure):
                folder = self.create_unique_folder(self.item_base.get('title') or template_solution_id, folders)
                self.folder_id = folder['id']
                self.dictionary.set('folderId', self.folder_id)
                self.dictionary.set('user', {'folders': folders + [folder]})

            with self._stage(DeploymentStage.EXTENT_RESOLVED, ExtentResolutionFailure):
                self.resolve_solution_extent()
                self.progress.advance(Progress.FOLDER_AND_EXTENT)

            with self._stage(DeploymentStage.SOLUTION_ITEM_CREATED, SolutionItemCreationFailure):
                self.create_solution_item()
                self.progress.advance(Progress.SOLUTION_ITEM)

            with self._stage(DeploymentStage.DEPLOYING_ITEMS, ItemCreationFailure):
                self.deploy_items()

            with self._stage(DeploymentStage.RESOLVING_CIRCULAR_DEPENDENCIES, CircularResolutionFailure):
                self.resolve_circular_dependencies()

            with self._stage(DeploymentStage.FINALIZING, FinalizationFailure):
                result = self.finalize()

        except DeploymentError as e:
            self.stage = DeploymentStage.FAILED
            self.error = e
            logger.error(f"Deployment of {template_solution_id} failed in {e.stage.value}: {e}")
            raise

        self.stage = DeploymentStage.DONE
        logger.info(f"Solution deployed: {self.solution_item_id}")
        return result

    # ------------------------------------------------------------------ Fetching

    def fetch_solution(self, solution_id: str) -> List[Dict[str, Any]]:
        """
        Fetch the template and the destination's portal and user, then seed the dictionary.

        Args:
            solution_id: ID of the Solution template item

        Returns:
            The user's existing folders
        """
        requests_ = {
            'item_base': (self.client.fetch_item_base, (solution_id,)),
            'item_data': (self.client.fetch_item_data, (solution_id,)),
            'portal': (self.client.fetch_portal, ()),
            'user': (self.client.fetch_user, ()),
            'folders': (self.client.fetch_user_folders, ())
        }
        results = self._fetch_all(requests_)

        self.item_base = clean_item_properties(results['item_base'] or {})
        self.item_data = copy.deepcopy(results['item_data'] or {})
        portal = results['portal'] or {}
        user = results['user'] or {}
        folders = list(results['folders'] or [])

        params = self.item_data.get('params')
        if params:
            self.dictionary.set('params', params)
            self.item_data['templates'] = [
                self.dictionary.resolve(template, strict=False)
                for template in self.item_data.get('templates') or []
            ]

        # Caller overrides for the new Solution item
        for key in ('title', 'snippet', 'description', 'tags'):
            value = getattr(self.options, key)
            if value is not None:
                self.item_base[key] = value

        self.dictionary.set('isPortal', bool(portal.get('isPortal', False)))
        self.dictionary.set('organization', portal)
        self.dictionary.set('portalBaseUrl', self._portal_base_url(portal))
        self.dictionary.set('user', dict(user, folders=folders))
        self.dictionary.set('deploymentDate', datetime.datetime.now(datetime.timezone.utc).isoformat())

        self.templates = [ItemTemplate.from_json(t) for t in self.item_data.get('templates') or []]
        # Ordering problems surface before anything is created
        self.levels = dependency_levels(self.templates)
        logger.info(f"Fetched solution '{self.item_base.get('title')}' with {len(self.templates)} item templates")
        return folders

    def _fetch_all(self, requests_: Dict[str, Tuple[Callable, tuple]]) -> Dict[str, Any]:
        executor = ThreadPoolExecutor(max_workers=len(requests_))
        try:
            futures = {executor.submit(fn, *args): name for name, (fn, args) in requests_.items()}
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
            # Report the earliest-submitted failure
            for future in futures:
                if future in done and future.exception() is not None:
                    logger.error(f"Fetching {futures[future]} failed: {future.exception()}")
                    raise future.exception()
            return {name: future.result() for future, name in futures.items()}
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _portal_base_url(self, portal: Dict[str, Any]) -> str:
        url_key = portal.get('urlKey')
        custom_base_url = portal.get('customBaseUrl')
        if url_key and custom_base_url:
            return f"{PORTAL_SCHEME}://{url_key}.{custom_base_url}"
        return self.client.portal_url

    # ------------------------------------------------------------------ Folder and extent

    def create_unique_folder(self, title: str, folders: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Create a folder named after the solution, adding the smallest free numeric suffix.

        Args:
            title: Base folder name
            folders: The user's existing folders

        Returns:
            Created folder {'id', 'title'}
        """
        taken = {f.get('title') for f in folders}
        suffix = 0
        attempts = 0
        while True:
            name = title if suffix == 0 else f"{title} {suffix}"
            suffix += 1
            if name in taken:
                continue
            try:
                folder = self.client.create_folder(name)
            except FolderExistsError:
                attempts += 1
                if attempts >= MAX_FOLDER_ATTEMPTS:
                    raise
                logger.info(f"Folder '{name}' already exists, trying next name")
                taken.add(name)
                continue
            logger.info(f"Deployment folder: {name} ({folder['id']})")
            return folder

    def resolve_solution_extent(self):
        """Store the portal's default extent in WGS84 as 'xmin,ymin,xmax,ymax'."""
        portal = self.dictionary.get('organization') or {}
        extent = portal.get('defaultExtent')
        if not extent:
            raise ValueError("Portal does not define a default extent")

        wkid = (extent.get('spatialReference') or {}).get('wkid')
        if wkid != GEOGRAPHIC_SPATIAL_REFERENCE['wkid']:
            geometry_url = ((portal.get('helperServices') or {}).get('geometry') or {}).get('url')
            if not geometry_url:
                raise ValueError(ErrorMessages.NO_GEOMETRY_SERVICE)
            extent = self.client.reproject_extent(extent, GEOGRAPHIC_SPATIAL_REFERENCE, geometry_url)

        value = ",".join(str(extent[k]) for k in ('xmin', 'ymin', 'xmax', 'ymax'))
        self.dictionary.set('solutionItemExtent', value)
        logger.debug(f"Solution item extent: {value}")

    # ------------------------------------------------------------------ Solution item

    def create_solution_item(self):
        """Create the new, still empty, Solution item."""
        self.item_base['type'] = ItemKind.SOLUTION
        self.item_base['typeKeywords'] = [SolutionKeywords.SOLUTION]

        created = self.client.create_item(self.item_base, {}, self.folder_id)
        self.solution_item_id = created['id']
        self.dictionary.set('solutionItemId', self.solution_item_id)

        for key in SOLUTION_ID_PROPERTIES:
            if key in self.item_base:
                self.item_base[key] = checked_replace_all(self.item_base[key], self.source_id, self.solution_item_id)
        self.item_base['id'] = self.solution_item_id
        logger.info(f"Created Solution item {self.solution_item_id}")

    # ------------------------------------------------------------------ Items

    def deploy_items(self):
        """Create every template's item, level by level."""
        levels = self.levels
        self.progress_step = Progress.ITEMS_SHARE / max(1, estimate_deployment_cost(self.templates))
        logger.info(f"Deploying {len(self.templates)} items in {len(levels)} levels")

        max_workers = max(1, int(self.options.max_concurrency or 1))
        executor = ThreadPoolExecutor(max_workers=max_workers) if max_workers > 1 else None
        try:
            for level, templates in enumerate(levels):
                logger.info(f"Deploying level {level}: {len(templates)} items")
                if executor is None:
                    for template in templates:
                        self.deploy_item(template)
                else:
                    self._deploy_level_concurrently(executor, templates)
        finally:
            if executor is not None:
                # Items already running finish before a failure is reported
                executor.shutdown(wait=True, cancel_futures=True)

    def _deploy_level_concurrently(self, executor: ThreadPoolExecutor, templates: List[ItemTemplate]):
        futures = [executor.submit(self.deploy_item, template) for template in templates]
        done, not_done = wait(futures, return_when=FIRST_EXCEPTION)
        for future in futures:
            if future in done and future.exception() is not None:
                for pending in not_done:
                    pending.cancel()
                raise future.exception()

    def deploy_item(self, template: ItemTemplate) -> str:
        """
        Create one item from its template.

        Args:
            template: Item template

        Returns:
            ID of the new item
        """
        self.token.raise_if_cancelled(DeploymentStage.DEPLOYING_ITEMS, template.item_id)
        templatizer = self.registry.get(template.item_kind)
        self_referencing = template.item_id in placeholder_roots(template.content)

        try:
            deferred = list(template.circular_dependencies) + [template.item_id]
            resolved = self.dictionary.resolve(template.content, deferred=deferred)
            item_properties, data = templatizer.build_item(template, resolved)
            created = self.client.create_item(item_properties, data, self.folder_id)
            templatizer.register_created_item(template, created, self.dictionary)

            if self_referencing:
                resolved = self.dictionary.resolve(template.content, deferred=template.circular_dependencies)
                item_properties, data = templatizer.build_item(template, resolved)
                self.client.update_item(created['id'], item_properties, data, self.folder_id)
        except DeploymentError:
            raise
        except Exception as e:
            logger.error(f"Error deploying {template.item_kind} {template.item_id}: {e}")
            raise ItemCreationFailure(e, item_id=template.item_id) from e

        logger.info(f"Deployed {template.item_kind}: {template.item_id} -> {created['id']}")
        self.progress.advance(self.progress_step * template.estimated_creation_cost)
        return created['id']

    def resolve_circular_dependencies(self):
        """Patch items whose circular partners did not exist when they were created."""
        for template in self.templates:
            if not template.circular_dependencies:
                continue
            self.token.raise_if_cancelled(DeploymentStage.RESOLVING_CIRCULAR_DEPENDENCIES, template.item_id)
            try:
                new_id = self.dictionary.get(f"{template.item_id}.itemId")
                resolved = self.dictionary.resolve(template.content)
                item_properties, data = self.registry.get(template.item_kind).build_item(template, resolved)
                self.client.update_item(new_id, item_properties, data, self.folder_id)
            except Exception as e:
                logger.error(f"Error resolving circular references of {template.item_id}: {e}")
                raise CircularResolutionFailure(e, item_id=template.item_id) from e
            logger.info(f"Resolved circular references of {template.item_id}")

    # ------------------------------------------------------------------ Finalizing

    def finalize(self) -> Dict[str, Any]:
        """
        Write the deployed manifest to the new Solution item.

        Returns:
            Dict with the Solution's item properties ('item') and data ('data')
        """
        data = self.dictionary.resolve(self.item_data, strict=False)
        data['templates'] = [self._deployed_template(t.to_json()) for t in self.templates]

        self.item_base['typeKeywords'] = [SolutionKeywords.SOLUTION, SolutionKeywords.DEPLOYED]
        self.client.update_item(self.solution_item_id, self.item_base, data, self.folder_id)
        self.progress.report(Progress.DONE)

        return {'item': copy.deepcopy(self.item_base), 'data': data}

    def _deployed_template(self, template: Dict[str, Any]) -> Dict[str, Any]:
        template = dict(template)
        template['itemId'] = self._destination_id(template.get('itemId'))
        for key in ('dependencies', 'circularDependencies'):
            if key in template:
                template[key] = [self._destination_id(dep) for dep in template[key] or []]
        return normalize_template(template)

    def _destination_id(self, source_id: Optional[str]) -> Optional[str]:
        if not source_id:
            return source_id
        path = f"{source_id}.itemId"
        return self.dictionary.get(path) if self.dictionary.contains(path) else source_id


def deploy_solution(
    template_solution_id: str,
    client: PortalClient,
    options: Optional[DeployOptions] = None,
    registry: Optional[TemplatizerRegistry] = None
) -> Dict[str, Any]:
    """
    Deploy a Solution template into the client's organization.

    Args:
        template_solution_id: ID of the Solution template item
        client: Portal client for the destination organization
        options: Deployment options
        registry: Templatizers by item kind

    Returns:
        Dict with the deployed Solution's item properties ('item') and data ('data')
    """
    return SolutionDeployer(client, options, registry).deploy(template_solution_id)


def setup_logging(level: str = "INFO"):
    """Configure logging for a command line run."""
    log_file = f"solution_deploy_{datetime.datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )


def load_settings() -> DeploySettings:
    """Load settings from the environment and the project's .env file."""
    # override=False keeps variables already set (e.g. by the web interface)
    env_path = Path(os.getcwd()) / '.env'
    if env_path.exists():
        load_dotenv(env_path, override=False)
    else:
        print(f"Warning: No .env file found at {env_path}")
        print("Please create a .env file based on .env.template")
    return DeploySettings.from_env()


def build_options(settings: DeploySettings) -> DeployOptions:
    """
    Build deployment options for a command line run.

    Args:
        settings: Loaded settings

    Returns:
        DeployOptions seeded from DEPLOY_TEMPLATE_DICTIONARY when it is set
    """
    seed = {}
    if settings.template_dictionary_file:
        seed = load_json(settings.template_dictionary_file)
        if not isinstance(seed, dict):
            raise ValueError(f"{settings.template_dictionary_file} must hold a JSON object")
        logger.info(f"Seeding {len(seed)} placeholder values from {settings.template_dictionary_file}")

    return DeployOptions(
        progress_callback=lambda percent: logger.info(f"Progress: {percent:.1f}%"),
        template_dictionary=seed,
        title=settings.title,
        max_concurrency=settings.max_concurrency
    )


def main():
    """Main entry point."""
    settings = load_settings()
    errors = settings.validate()
    if errors:
        print("Configuration errors:")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)

    setup_logging(settings.log_level)

    # Only the command line needs a live ArcGIS connection
    from .utils.arcgis_client import ArcGISPortalClient
    from .utils.auth import connect_to_gis, get_org_info

    gis = connect_to_gis(**settings.to_dict())
    client = ArcGISPortalClient(gis)
    org = get_org_info(gis)

    print("\nArcGIS Solution Deployer")
    print("=" * 50)
    print(f"Organization: {org['org_name']} ({org['org_url']})")
    print(f"User: {org['username']}")
    print("=" * 50)

    if not settings.solution_id:
        templates = client.search_solution_templates()
        print(f"\nNo SOLUTION_ID set. {len(templates)} Solution templates available:")
        for template in templates:
            print(f"  {template['id']}  {template['title']}")
        return

    options = build_options(settings)
    try:
        result = deploy_solution(settings.solution_id, client, options)
    except DeploymentError as e:
        logger.error(json.dumps(e.to_dict()))
        sys.exit(1)

    save_json(result, settings.json_output_dir / f"deployed_solution_{result['item']['id']}.json")
    print(f"\nDeployed Solution item: {result['item']['id']}")


if __name__ == "__main__":
    main()
