"""
JSON Handler Utility
====================
Handles JSON saving, loading and item property scrubbing for the solution deployer.
"""

import json
from pathlib import Path
from datetime import datetime
from typing import Any, Dict, Union
import logging
import os


logger = logging.getLogger(__name__)

# Check if JSON output is enabled
JSON_OUTPUT_ENABLED = os.getenv('JSON_OUTPUT_ENABLED', 'True').lower() == 'true'

# Item properties assigned by the portal; never copied onto a new item
SYSTEM_ITEM_PROPERTIES = [
    'id', 'owner', 'created', 'modified', 'guid', 'name',
    'isOrgItem', 'lastModified', 'uploaded', 'username',
    'orgId', 'ownerFolder', 'protected', 'size', 'numViews',
    'numComments', 'numRatings', 'avgRating', 'itemControl',
    'scoreCompleteness', 'groupDesignations', 'contentOrigin'
]


def save_json(
    data: Any,
    filepath: Union[str, Path],
    add_timestamp: bool = True,
    indent: int = 2,
    ensure_ascii: bool = False
) -> Path:
    """
    Save data to JSON file with optional timestamp.

    Args:
        data: Data to save
        filepath: Path to save file
        add_timestamp: Whether to add timestamp to filename
        indent: JSON indentation level
        ensure_ascii: Whether to escape non-ASCII characters

    Returns:
        Path to saved file (not written when JSON output is disabled)
    """
    filepath = Path(filepath)

    # Add timestamp if requested
    if add_timestamp:
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        if filepath.suffix == '.json':
            final_path = filepath.parent / f"{filepath.stem}_{timestamp}{filepath.suffix}"
        else:
            final_path = filepath.parent / f"{filepath.name}_{timestamp}.json"
    else:
        final_path = filepath

    if not JSON_OUTPUT_ENABLED:
        return final_path

    # Ensure directory exists
    final_path.parent.mkdir(parents=True, exist_ok=True)

    with open(final_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent, ensure_ascii=ensure_ascii)

    logger.info(f"Saved JSON to: {final_path}")
    return final_path


def load_json(filepath: Union[str, Path]) -> Any:
    """
    Load data from JSON file.

    Args:
        filepath: Path to JSON file

    Returns:
        Loaded data
    """
    filepath = Path(filepath)

    with open(filepath, 'r', encoding='utf-8') as f:
        data = json.load(f)

    logger.debug(f"Loaded JSON from: {filepath}")
    return data


def clean_item_properties(item_json: Dict) -> Dict:
    """
    Clean item JSON for creating a new item.

    Args:
        item_json: Raw item JSON

    Returns:
        Copy without the properties the portal assigns itself
    """
    cleaned = {k: v for k, v in item_json.items() if k not in SYSTEM_ITEM_PROPERTIES}

    if 'extent' in cleaned and cleaned['extent'] == []:
        cleaned['extent'] = None

    if 'title' not in cleaned:
        logger.warning("Missing 'title' field in item JSON")

    return cleaned
