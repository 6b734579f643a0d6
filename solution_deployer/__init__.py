"""
ArcGIS Solution deployer.

Deploys a Solution template item, and every item it describes, into an organization.
"""

from .config.deploy_config import DeployOptions, DeploymentStage
from .deployer import SolutionDeployer, deploy_solution
from .utils.exceptions import (
    CircularResolutionFailure,
    DependencyCycleError,
    DeploymentCancelled,
    DeploymentError,
    ExtentResolutionFailure,
    FetchFailure,
    FinalizationFailure,
    FolderCreationFailure,
    ItemCreationFailure,
    MissingSubstitutionError,
    SolutionItemCreationFailure,
)
from .utils.progress import CancellationToken
from .utils.template_dictionary import TemplateDictionary

__all__ = [
    'CancellationToken',
    'CircularResolutionFailure',
    'DependencyCycleError',
    'DeployOptions',
    'DeploymentCancelled',
    'DeploymentError',
    'DeploymentStage',
    'ExtentResolutionFailure',
    'FetchFailure',
    'FinalizationFailure',
    'FolderCreationFailure',
    'ItemCreationFailure',
    'MissingSubstitutionError',
    'SolutionDeployer',
    'SolutionItemCreationFailure',
    'TemplateDictionary',
    'deploy_solution'
]
