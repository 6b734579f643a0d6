"""
Deployment Errors
=================
Every failure of a deployment run surfaces as a DeploymentError carrying the
stage it happened in and the underlying cause.
"""

from typing import Any, Dict, Optional

from ..config.deploy_config import DeploymentStage, ErrorMessages


class MissingSubstitutionError(KeyError):
    """A placeholder path has no value in the template dictionary."""

    def __init__(self, path: str):
        super().__init__(path)
        self.path = path

    def __str__(self) -> str:
        return ErrorMessages.MISSING_SUBSTITUTION.format(path=self.path)


class SubstitutionConflictError(ValueError):
    """A write-once dictionary value was about to change."""

    def __init__(self, path: str, old: Any, new: Any):
        super().__init__(ErrorMessages.SUBSTITUTION_CONFLICT.format(path=path, old=old, new=new))
        self.path = path


class FolderExistsError(Exception):
    """The portal refused a folder name because it is already taken."""


class PortalRequestError(Exception):
    """A portal or service REST call returned an error payload."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class DeploymentError(Exception):
    """Uniform failure envelope for a deployment run."""

    stage: DeploymentStage = DeploymentStage.FAILED

    def __init__(self, cause: Optional[BaseException] = None, item_id: Optional[str] = None,
                 message: Optional[str] = None):
        self.cause = cause
        self.item_id = item_id
        if message is None:
            message = f"{self.stage.value} failed"
            if item_id:
                message += f" for item {item_id}"
            if cause is not None:
                message += f": {cause}"
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the failure for JSON responses."""
        return {
            'success': False,
            'stage': self.stage.value,
            'itemId': self.item_id,
            'error': str(self)
        }


class FetchFailure(DeploymentError):
    stage = DeploymentStage.FETCHING


class FolderCreationFailure(DeploymentError):
    stage = DeploymentStage.FOLDER_READY


class ExtentResolutionFailure(DeploymentError):
    stage = DeploymentStage.EXTENT_RESOLVED


class SolutionItemCreationFailure(DeploymentError):
    stage = DeploymentStage.SOLUTION_ITEM_CREATED


class ItemCreationFailure(DeploymentError):
    stage = DeploymentStage.DEPLOYING_ITEMS


class DependencyCycleError(DeploymentError):
    """Non-circular dependencies do not form a DAG; detected right after fetching."""

    stage = DeploymentStage.FETCHING

    def __init__(self, item_ids):
        self.item_ids = list(item_ids)
        super().__init__(message=ErrorMessages.DEPENDENCY_CYCLE.format(item_ids=", ".join(self.item_ids)))


class CircularResolutionFailure(DeploymentError):
    stage = DeploymentStage.RESOLVING_CIRCULAR_DEPENDENCIES


class FinalizationFailure(DeploymentError):
    stage = DeploymentStage.FINALIZING


class DeploymentCancelled(DeploymentError):
    """The caller cancelled the run; raised at the next stage boundary."""

    def __init__(self, stage: DeploymentStage, item_id: Optional[str] = None):
        self.stage = stage
        super().__init__(item_id=item_id, message=ErrorMessages.DEPLOYMENT_CANCELLED.format(stage=stage.value))
