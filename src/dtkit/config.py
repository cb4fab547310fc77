"""Configuration of training and prediction runs, and environment settings.

Run configurations accept the property names used by pipeline definitions
(`fileSetName`, `featureFieldsToInclude`, `cardinalityMapping`, ...) as well as
the snake_case field names. List-valued properties may be given either as
lists or as comma-separated strings, e.g. `"dofM,dofW,carrier"` or
`"dofW:7,carrier:20"`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from dtkit.decision_tree.fitting import (
    DEFAULT_MIN_INFO_GAIN,
    DEFAULT_MIN_INSTANCES_PER_NODE,
    DEFAULT_NUM_PARTITIONS,
    MAX_SUPPORTED_DEPTH,
)
from dtkit.decision_tree.models import DecisionTreeTask, Impurity
from dtkit.identifier import ArtifactName

type MissingFieldPolicy = Literal["fail", "skip"]

_CLASSIFICATION_IMPURITIES: frozenset[str] = frozenset({"gini", "entropy"})

# ---------------------------------------------------------------------------
# Public models -- Environment settings
# ---------------------------------------------------------------------------


class DtkitSettings(BaseSettings, env_prefix="DTKIT_", env_file=".env", env_file_encoding="utf-8", extra="ignore"):
    """Environment-driven settings.

    Attributes:
        model_dir (Path): Directory holding model artifacts. Read from
            `DTKIT_MODEL_DIR`; defaults to `./models`.
    """

    model_dir: Path = Field(default=Path("models"), description="Directory holding model artifacts.")


# ---------------------------------------------------------------------------
# Public models -- Run configuration
# ---------------------------------------------------------------------------


class _FieldSelection(BaseModel):
    """Shared inclusion/exclusion list handling."""

    model_config = ConfigDict(extra="forbid")

    include: list[str] | None = Field(
        default=None,
        validation_alias=AliasChoices("include", "featureFieldsToInclude"),
        description="Explicit feature fields. Mutually exclusive with `exclude`.",
    )
    exclude: list[str] | None = Field(
        default=None,
        validation_alias=AliasChoices("exclude", "featureFieldsToExclude"),
        description="Fields that are not features. Mutually exclusive with `include`.",
    )

    @field_validator("include", "exclude", mode="before")
    @classmethod
    def _split_field_list(cls, value: Any) -> Any:
        """Accept a comma-separated string in place of a list.

        Args:
            value (Any): The raw value.

        Returns:
            Any: A list of stripped, non-empty names for string input, or the
                value unchanged. An empty string becomes `None`.
        """
        if isinstance(value, str):
            names = [name.strip() for name in value.split(",") if name.strip()]
            return names or None
        return value

    @model_validator(mode="after")
    def _validate_selection(self) -> _FieldSelection:
        """Validate that at most one of the inclusion and exclusion lists is given.

        Returns:
            _FieldSelection: The validated model instance.

        Raises:
            ValueError: If both lists are given or a list repeats a name.
        """
        if self.include and self.exclude:
            raise ValueError("featureFieldsToInclude and featureFieldsToExclude are mutually exclusive")
        for names in (self.include, self.exclude):
            if names and len(set(names)) != len(names):
                raise ValueError(f"Duplicate field names in {names}")
        return self


class TrainerConfig(_FieldSelection):
    """Configuration of a training run.

    Attributes:
        model_name (ArtifactName): Name the trained model is stored under
            (`fileSetName`).
        include (list[str] | None): Feature fields (`featureFieldsToInclude`).
        exclude (list[str] | None): Fields excluded from the features
            (`featureFieldsToExclude`).
        cardinality_mapping (dict[str, int]): Declared cardinality of each
            categorical feature (`cardinalityMapping`).
        label_field (str): Field holding the label (`labelField`).
        max_bins (int): Maximum number of bins per continuous feature; must be
            at least the largest declared cardinality (`maxBins`).
        max_depth (int): Maximum tree depth (`maxDepth`).
        task_type (DecisionTreeTask): `"regression"` (default) or
            `"classification"` (`taskType`).
        impurity (Impurity): Impurity measure; defaults to `"variance"` for
            regression and `"gini"` for classification.
        min_instances_per_node (int): Minimum rows in each child of a split.
        min_info_gain (float): Minimum gain a split must exceed.
        num_partitions (int): Number of row partitions statistics are
            computed over.
        n_jobs (int): Number of threads evaluating partitions.

    Examples:
        >>> config = TrainerConfig.model_validate({
        ...     "fileSetName": "decision-tree-regression-model",
        ...     "featureFieldsToInclude": "dofM,dofW,carrier",
        ...     "cardinalityMapping": "dofW:7",
        ...     "labelField": "delayed",
        ...     "maxBins": 100,
        ...     "maxDepth": 9,
        ... })
        >>> config.cardinality_mapping
        {'dofW': 7}
        >>> config.impurity
        'variance'
    """

    model_name: ArtifactName = Field(validation_alias=AliasChoices("model_name", "modelName", "fileSetName"))
    cardinality_mapping: dict[str, int] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("cardinality_mapping", "cardinalityMapping"),
        description="Declared cardinality of each categorical feature.",
    )
    label_field: str = Field(
        min_length=1,
        validation_alias=AliasChoices("label_field", "labelField"),
        description="Field holding the label.",
    )
    max_bins: int = Field(ge=2, validation_alias=AliasChoices("max_bins", "maxBins"))
    max_depth: int = Field(ge=1, le=MAX_SUPPORTED_DEPTH, validation_alias=AliasChoices("max_depth", "maxDepth"))
    task_type: DecisionTreeTask = Field(
        default="regression",
        validation_alias=AliasChoices("task_type", "taskType"),
    )
    impurity: Impurity | None = Field(
        default=None,
        description="Impurity measure; derived from the task type when omitted.",
    )
    min_instances_per_node: int = Field(
        default=DEFAULT_MIN_INSTANCES_PER_NODE,
        ge=1,
        validation_alias=AliasChoices("min_instances_per_node", "minInstancesPerNode"),
    )
    min_info_gain: float = Field(
        default=DEFAULT_MIN_INFO_GAIN,
        ge=0.0,
        validation_alias=AliasChoices("min_info_gain", "minInfoGain"),
    )
    num_partitions: int = Field(
        default=DEFAULT_NUM_PARTITIONS,
        ge=1,
        validation_alias=AliasChoices("num_partitions", "numPartitions"),
    )
    n_jobs: int = Field(
        default=1,
        validation_alias=AliasChoices("n_jobs", "nJobs"),
        description="Threads evaluating partitions; negative values count back from the number of CPUs.",
    )

    @field_validator("cardinality_mapping", mode="before")
    @classmethod
    def _parse_cardinality_mapping(cls, value: Any) -> Any:
        """Accept a `"field:n,field:n"` string in place of a mapping.

        Args:
            value (Any): The raw value.

        Returns:
            Any: A `{field: cardinality}` dict for string input, or the value unchanged.

        Raises:
            ValueError: If an entry is not of the form `field:n`.
        """
        if not isinstance(value, str):
            return value
        mapping: dict[str, str] = {}
        for entry in (item.strip() for item in value.split(",")):
            if not entry:
                continue
            name, separator, cardinality = entry.partition(":")
            if not separator or not name.strip() or not cardinality.strip():
                raise ValueError(f"Cardinality mapping entry must look like 'field:n', got {entry!r}")
            mapping[name.strip()] = cardinality.strip()
        return mapping

    @field_validator("cardinality_mapping", mode="after")
    @classmethod
    def _validate_cardinalities(cls, value: dict[str, int]) -> dict[str, int]:
        """Validate that every declared cardinality is positive.

        Args:
            value (dict[str, int]): The parsed mapping.

        Returns:
            dict[str, int]: The validated mapping.

        Raises:
            ValueError: If a cardinality is below 1.
        """
        invalid = {name: cardinality for name, cardinality in value.items() if cardinality < 1}
        if invalid:
            raise ValueError(f"Cardinalities must be at least 1, got {invalid}")
        return value

    @model_validator(mode="after")
    def _validate_training_options(self) -> TrainerConfig:
        """Cross-check the label, the categorical fields, max_bins and the impurity.

        Returns:
            TrainerConfig: The validated model instance, with `impurity`
                filled in from the task type when omitted.

        Raises:
            ValueError: If the label is also a feature, a categorical field is
                not an included feature, `max_bins` is below a declared
                cardinality, the impurity does not fit the task type, or
                `n_jobs` is zero.
        """
        if self.n_jobs == 0:
            raise ValueError("n_jobs must be non-zero")
        if self.include and self.label_field in self.include:
            raise ValueError(f"Label field '{self.label_field}' cannot also be a feature")
        if self.include:
            unknown = sorted(set(self.cardinality_mapping) - set(self.include))
            if unknown:
                raise ValueError(f"Cardinality mapping names fields that are not features: {unknown}")
        if self.cardinality_mapping and max(self.cardinality_mapping.values()) > self.max_bins:
            raise ValueError(
                f"max_bins={self.max_bins} must be at least the largest declared cardinality "
                f"({max(self.cardinality_mapping.values())})"
            )

        if self.impurity is None:
            self.impurity = "variance" if self.task_type == "regression" else "gini"
        elif self.task_type == "regression" and self.impurity != "variance":
            raise ValueError(f"Regression requires the 'variance' impurity, got '{self.impurity}'")
        elif self.task_type == "classification" and self.impurity not in _CLASSIFICATION_IMPURITIES:
            raise ValueError(f"Classification requires 'gini' or 'entropy' impurity, got '{self.impurity}'")
        return self


class PredictorConfig(_FieldSelection):
    """Configuration of a prediction run.

    The inclusion or exclusion list is checked against the model's stored
    feature spec when the run starts: every feature the model needs must be
    selected. Fields outside the list are still passed through to the output.

    Attributes:
        model_name (ArtifactName): Name of the stored model (`fileSetName`).
        include (list[str] | None): Feature fields (`featureFieldsToInclude`).
        exclude (list[str] | None): Fields excluded from the features
            (`featureFieldsToExclude`).
        prediction_field (str): Output field holding the prediction
            (`predictionField`).
        on_missing_field (MissingFieldPolicy): `"fail"` (default) aborts the
            run on a record lacking a feature field; `"skip"` drops such
            records and counts them (`onMissingField`).
    """

    model_name: ArtifactName = Field(validation_alias=AliasChoices("model_name", "modelName", "fileSetName"))
    prediction_field: str = Field(
        min_length=1,
        validation_alias=AliasChoices("prediction_field", "predictionField"),
        description="Output field holding the prediction.",
    )
    on_missing_field: MissingFieldPolicy = Field(
        default="fail",
        validation_alias=AliasChoices("on_missing_field", "onMissingField"),
        description="What to do with records lacking a feature field.",
    )
