"""Validation of model artifact names."""

from __future__ import annotations

import re
from typing import Annotated

from pydantic import AfterValidator, Field

ARTIFACT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def validate_artifact_name(value: str) -> str:
    """Validate that a model artifact name is safe to use as a file name.

    Names start with a letter or digit, contain only letters, digits, `.`, `_`
    and `-`, and are at most 128 characters long. Path separators are never
    accepted, so a name always resolves inside the model store directory.

    Args:
        value (str): The candidate artifact name.

    Returns:
        str: The validated artifact name.

    Raises:
        ValueError: If the value does not match the artifact name pattern.

    Examples:
        >>> validate_artifact_name("decision-tree-regression-model")
        'decision-tree-regression-model'
    """
    if not ARTIFACT_NAME_PATTERN.match(value) or value.endswith(".tmp"):
        msg = (
            f"Artifact name must match pattern {ARTIFACT_NAME_PATTERN.pattern} and not end with '.tmp', got: {value!r}"
        )
        raise ValueError(msg)
    return value


ArtifactName = Annotated[
    str,
    AfterValidator(validate_artifact_name),
    Field(
        description="Name of a persisted model artifact.",
        examples=["decision-tree-regression-model", "flight_delays.v2"],
    ),
]
