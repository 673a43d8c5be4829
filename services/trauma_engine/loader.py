import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError

from services.trauma_engine.definitions import VECTOR_WEIGHTS
from services.trauma_engine.models import CatalogConfig, ItemKind, VectorCatalog

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent / "assets" / "trauma_vectors.yml"

WEIGHT_TOLERANCE = 1e-9


class CatalogValidationError(ValueError):
    """Custom exception for item catalog errors not covered by Pydantic."""
    pass


def validate_vector_catalog(catalog: VectorCatalog) -> VectorCatalog:
    """
    Semantic checks for a single vector's items. Runs when a module is
    registered, so scoring never has to second-guess option payloads.
    """
    expected_weight = VECTOR_WEIGHTS[catalog.vector]
    if abs(catalog.weight - expected_weight) > WEIGHT_TOLERANCE:
        raise CatalogValidationError(
            f"Vector '{catalog.vector.value}' declares weight {catalog.weight}, expected {expected_weight}"
        )
    if not catalog.items:
        raise CatalogValidationError(f"Vector '{catalog.vector.value}' has no assessment items")

    item_ids = set()
    for item in catalog.items:
        if item.id in item_ids:
            raise CatalogValidationError(f"Duplicate item ID '{item.id}' in vector '{catalog.vector.value}'")
        item_ids.add(item.id)

        if item.kind == ItemKind.SLIDER:
            if not item.trauma_mappings:
                raise CatalogValidationError(f"Slider item '{item.id}' has no trauma mappings")
        elif not item.options:
            raise CatalogValidationError(f"Item '{item.id}' has no options")

        option_ids = set()
        for option in item.options:
            if option.id in option_ids:
                raise CatalogValidationError(f"Duplicate option ID '{option.id}' in item '{item.id}'")
            option_ids.add(option.id)
            if option.affinities and option.trauma_type is not None:
                raise CatalogValidationError(
                    f"Option '{option.id}' in item '{item.id}' declares both affinities and a trauma type"
                )

    return catalog


def load_catalog_data(data: Dict[str, Any]) -> CatalogConfig:
    """
    Validates raw catalog data against the CatalogConfig model and then
    performs the semantic checks Pydantic does not cover.
    """
    try:
        config = CatalogConfig.model_validate(data)
    except ValidationError as e:
        # Re-raise Pydantic's validation error for schema issues
        raise e

    seen_vectors = set()
    for catalog in config.vectors:
        if catalog.vector in seen_vectors:
            raise CatalogValidationError(f"Duplicate vector catalog: {catalog.vector.value}")
        seen_vectors.add(catalog.vector)
        validate_vector_catalog(catalog)

    logger.debug(f"Loaded item catalog version {config.version} with vectors {sorted(v.value for v in seen_vectors)}")
    return config


def load_catalog_from_file(file_path: Optional[Union[str, Path]] = None) -> CatalogConfig:
    """
    Loads an item catalog from a YAML file (the packaged catalog by default),
    validates it and returns a CatalogConfig.
    """
    path = Path(file_path) if file_path else DEFAULT_CATALOG_PATH
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise CatalogValidationError(f"File not found: {path}")
    except yaml.YAMLError as e:
        raise CatalogValidationError(f"Error parsing YAML file {path}: {e}")

    if data is None:
        raise CatalogValidationError(f"YAML file is empty or invalid: {path}")

    return load_catalog_data(data)


@lru_cache(maxsize=1)
def default_catalog() -> CatalogConfig:
    """The packaged catalog, parsed once per process."""
    return load_catalog_from_file(DEFAULT_CATALOG_PATH)
