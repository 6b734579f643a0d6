"""
Item Templates
==============
Item template model, manifest normalization, cost estimates and the
dependency ordering used when deploying a solution.
"""

import copy
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config.deploy_config import ErrorMessages, TEMPLATE_RETAINED_PROPERTIES
from .exceptions import DependencyCycleError


logger = logging.getLogger(__name__)

# Wire names that are not part of a template's content
_TEMPLATE_KEYS = {
    'itemId', 'type', 'itemKind', 'dependencies', 'circularDependencies',
    'estimatedDeploymentCostFactor', 'estimatedCreationCost'
}


@dataclass
class UrlInfo:
    """Owning item of a service URL and whether it may be templatized."""
    id: Optional[str]
    can_templatize: bool


@dataclass
class DependencyResolution:
    """Output of a templatizer's dependency extraction."""
    dependencies: List[str] = field(default_factory=list)
    url_hash: Dict[str, UrlInfo] = field(default_factory=dict)


@dataclass
class ItemTemplate:
    """One deployable item of a solution."""
    item_id: str
    item_kind: str
    dependencies: List[str] = field(default_factory=list)
    circular_dependencies: List[str] = field(default_factory=list)
    estimated_creation_cost: float = 1
    content: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, template: Dict[str, Any]) -> "ItemTemplate":
        """
        Build a template from its solution JSON form.

        Args:
            template: Template dictionary as stored in a Solution item's data

        Returns:
            ItemTemplate
        """
        cost = template.get('estimatedDeploymentCostFactor', template.get('estimatedCreationCost'))
        if not isinstance(cost, (int, float)) or isinstance(cost, bool) or cost <= 0:
            cost = 1
        return cls(
            item_id=template['itemId'],
            item_kind=template.get('type', template.get('itemKind', '')),
            dependencies=_unique(template.get('dependencies') or []),
            circular_dependencies=_unique(template.get('circularDependencies') or []),
            estimated_creation_cost=cost,
            content={k: copy.deepcopy(v) for k, v in template.items() if k not in _TEMPLATE_KEYS}
        )

    def to_json(self) -> Dict[str, Any]:
        """Serialize back to solution JSON form."""
        result = {
            'itemId': self.item_id,
            'type': self.item_kind,
            'dependencies': list(self.dependencies),
            'circularDependencies': list(self.circular_dependencies),
            'estimatedDeploymentCostFactor': self.estimated_creation_cost
        }
        result.update(copy.deepcopy(self.content))
        return result

    @property
    def hard_dependencies(self) -> List[str]:
        """Dependencies that must exist before this item is created."""
        return [dep for dep in self.dependencies if dep not in self.circular_dependencies]


def _unique(values: List[str]) -> List[str]:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def normalize_template(template: Dict[str, Any]) -> Dict[str, Any]:
    """
    Strip a template down to its identity and dependency manifest.

    Args:
        template: Template in solution JSON form

    Returns:
        New dict with only itemId, type, dependencies and circularDependencies
    """
    return {
        key: copy.deepcopy(template[key])
        for key in TEMPLATE_RETAINED_PROPERTIES
        if key in template
    }


def estimate_deployment_cost(templates: List[ItemTemplate]) -> float:
    """Sum of the estimated creation costs of a set of templates."""
    return sum(template.estimated_creation_cost for template in templates)


def checked_replace_all(template: Optional[str], old_value: str, new_value: str) -> Optional[str]:
    """
    Replace every occurrence of old_value in a string.

    Args:
        template: String to update; empty or None values are returned unchanged
        old_value: Substring to replace
        new_value: Replacement

    Returns:
        Updated string
    """
    if template and old_value and old_value in template:
        return template.replace(old_value, new_value)
    return template


def dependency_levels(templates: List[ItemTemplate]) -> List[List[ItemTemplate]]:
    """
    Group templates into creation levels over their non-circular dependencies.

    Every template in a level depends only on templates in earlier levels.
    Dependencies outside the template list count as already satisfied.
    Within a level the original list order is kept.

    Args:
        templates: Templates of the solution

    Returns:
        List of levels, each a list of templates

    Raises:
        ValueError: An item ID appears in more than one template
        DependencyCycleError: Non-circular dependencies contain a cycle
    """
    counts = Counter(template.item_id for template in templates)
    duplicates = [item_id for item_id, count in counts.items() if count > 1]
    if duplicates:
        raise ValueError(ErrorMessages.DUPLICATE_TEMPLATE_IDS.format(item_ids=", ".join(duplicates)))

    known_ids = set(counts)
    remaining = {
        template.item_id: {dep for dep in template.hard_dependencies if dep in known_ids}
        for template in templates
    }
    for template in templates:
        external = [dep for dep in template.hard_dependencies if dep not in known_ids]
        if external:
            logger.warning(f"Item {template.item_id} depends on items outside the solution: {external}")

    levels = []
    processed = set()

    while len(processed) < len(templates):
        # Find items with no remaining dependencies
        current_level = [
            template for template in templates
            if template.item_id not in processed and not (remaining[template.item_id] - processed)
        ]

        if not current_level:
            blocked = [t.item_id for t in templates if t.item_id not in processed]
            raise DependencyCycleError(blocked)

        levels.append(current_level)
        processed.update(template.item_id for template in current_level)

    logger.debug(f"Determined {len(levels)} dependency levels")
    return levels
