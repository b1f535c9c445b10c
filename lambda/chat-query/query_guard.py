"""
Checks applied to model-generated store queries before they run.

The model's filter is otherwise used verbatim. The guard rejects operators
that run server-side JavaScript, write to the database, read from other
collections, or report on server state.
"""

import logging
from typing import Any, Dict, List, Optional

from errors import UnsafeQueryError

logger = logging.getLogger()

FORBIDDEN_OPERATORS = frozenset({
    # Server-side JavaScript
    "$where",
    "$function",
    "$accumulator",
    # Writes
    "$out",
    "$merge",
    # Reads outside the configured collection
    "$lookup",
    "$unionWith",
    "$graphLookup",
    # Server and session state
    "$currentOp",
    "$listSessions",
    "$listLocalSessions",
    "$collStats",
    "$indexStats",
    "$planCacheStats",
})


def find_forbidden_operators(value: Any, path: str = "") -> List[str]:
    """
    Walk a filter or pipeline and collect forbidden operator paths.

    Args:
        value: Filter, pipeline, or any nested fragment of one
        path: Dotted location of value (used in error messages)

    Returns:
        List of locations such as "query.$or[1].$where"
    """
    found = []
    if isinstance(value, dict):
        for key, child in value.items():
            child_path = f"{path}.{key}" if path else str(key)
            if isinstance(key, str) and key in FORBIDDEN_OPERATORS:
                found.append(child_path)
            found.extend(find_forbidden_operators(child, child_path))
    elif isinstance(value, list):
        for index, child in enumerate(value):
            found.extend(find_forbidden_operators(child, f"{path}[{index}]"))
    return found


def check_filter(query: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate a find() filter.

    Args:
        query: Filter object from the query plan (None matches everything)

    Returns:
        dict: The filter to run

    Raises:
        UnsafeQueryError: If the filter uses a forbidden operator
    """
    if query is None:
        return {}

    violations = find_forbidden_operators(query, "query")
    if violations:
        logger.warning(f"[query-guard] Rejected filter, forbidden operators at: {violations}")
        raise UnsafeQueryError(
            f"Generated query uses forbidden operators: {', '.join(violations)}"
        )
    return query


def check_pipeline(pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Validate an aggregation pipeline.

    Raises:
        UnsafeQueryError: If a stage is malformed or uses a forbidden operator
    """
    for index, stage in enumerate(pipeline):
        if not isinstance(stage, dict) or len(stage) != 1:
            raise UnsafeQueryError(
                f"Pipeline stage {index} must be an object with exactly one operator"
            )

    violations = find_forbidden_operators(pipeline, "pipeline")
    if violations:
        logger.warning(f"[query-guard] Rejected pipeline, forbidden operators at: {violations}")
        raise UnsafeQueryError(
            f"Generated pipeline uses forbidden operators: {', '.join(violations)}"
        )
    return pipeline
