"""Training and prediction runs.

`train_model` and `predict_records` raise on failure. `run_training` and
`run_prediction` wrap them for hosts that want a run status instead: any
failure is logged and reported as a `FAILED` result carrying a `RunError`.
A failed training run never leaves an artifact behind and a failed
prediction run never returns partial output.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, Field, JsonValue, ValidationError

from dtkit.config import MissingFieldPolicy, PredictorConfig, TrainerConfig
from dtkit.decision_tree.fitting import fit_model
from dtkit.decision_tree.models import DecisionTreeModel, TrainingSummary
from dtkit.decision_tree.prediction import Predictor
from dtkit.decision_tree.preprocessing import Record, records_to_frame, select_feature_names
from dtkit.exceptions import DecisionTreeError, InvalidTrainingData, MissingFeatureField
from dtkit.logging import RUN_LEVEL
from dtkit.persistence import ModelStore

type RunStatus = Literal["COMPLETED", "FAILED"]

_RUN_STARTED_MSG = "{run_kind} run started"
_RUN_COMPLETED_MSG = "{run_kind} run completed"
_RUN_FAILED_MSG = "{run_kind} run failed"

# Exception attributes copied into `RunError.details` when present.
_DETAIL_ATTRIBUTES: tuple[str, ...] = (
    "field",
    "cardinality",
    "observed_count",
    "missing_fields",
    "available_fields",
    "name",
    "path",
    "reason",
    "value",
)

# ---------------------------------------------------------------------------
# Public models -- Run results
# ---------------------------------------------------------------------------


class RunError(BaseModel):
    """Structured description of why a run failed.

    Attributes:
        error_type (str): Category of error, e.g. `"FeatureCardinalityExceeded"`.
            Must be at least 1 character.
        message (str): Human-readable error description. Must be at least 1 character.
        details (dict[str, JsonValue]): Additional context-specific information (JSON-serializable).

    Examples:
        >>> error = RunError(
        ...     error_type="FeatureCardinalityExceeded",
        ...     message="Invalid training data for field 'dofW': 7 distinct values observed but cardinality is 2",
        ...     details={"field": "dofW", "cardinality": 2, "observed_count": 7},
        ... )
    """

    error_type: str = Field(description="Category of the error.", min_length=1)
    message: str = Field(description="Human-readable error description.", min_length=1)
    details: dict[str, JsonValue] = Field(
        default_factory=dict,
        description="Additional error context (JSON-serializable).",
    )

    @classmethod
    def from_exception(cls, exc: Exception) -> RunError:
        """Describe an exception raised by a run.

        Args:
            exc (Exception): The exception.

        Returns:
            RunError: The error type is the exception class name; details
                hold the exception's public attributes, or the individual
                errors of a `ValidationError`.
        """
        if isinstance(exc, ValidationError):
            details: dict[str, JsonValue] = {
                "errors": [
                    {"location": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                    for error in exc.errors(include_url=False)
                ],
            }
            return cls(
                error_type="ConfigValidationError",
                message=f"Invalid {exc.title} configuration",
                details=details,
            )

        details = {}
        for attribute in _DETAIL_ATTRIBUTES:
            value = getattr(exc, attribute, None)
            if value is not None:
                details[attribute] = value if isinstance(value, (str, int, float, bool, list)) else repr(value)
        return cls(error_type=type(exc).__name__, message=str(exc) or type(exc).__name__, details=details)


class TrainingRunResult(BaseModel):
    """Outcome of a training run.

    Attributes:
        status (RunStatus): `"COMPLETED"` or `"FAILED"`.
        model_name (str | None): Name the model was stored under; `None` when
            the configuration itself was invalid.
        summary (TrainingSummary | None): Training statistics of a completed run.
        error (RunError | None): Failure description of a failed run.
    """

    status: RunStatus = Field(description='Either "COMPLETED" or "FAILED".')
    model_name: str | None = Field(default=None, description="Name the model was stored under.")
    summary: TrainingSummary | None = Field(default=None, description="Training statistics.")
    error: RunError | None = Field(default=None, description="Failure description.")


class PredictionRunResult(BaseModel):
    """Outcome of a prediction run.

    Attributes:
        status (RunStatus): `"COMPLETED"` or `"FAILED"`.
        model_name (str | None): Name of the model used.
        records (list[dict[str, Any]]): Scored records of a completed run;
            empty for a failed run.
        skipped_count (int): Records dropped because they lacked a feature
            field (only with `on_missing_field="skip"`).
        error (RunError | None): Failure description of a failed run.
    """

    status: RunStatus = Field(description='Either "COMPLETED" or "FAILED".')
    model_name: str | None = Field(default=None, description="Name of the model used.")
    records: list[dict[str, Any]] = Field(default_factory=list, description="Scored records.")
    skipped_count: int = Field(default=0, ge=0, description="Records dropped for missing feature fields.")
    error: RunError | None = Field(default=None, description="Failure description.")


# ---------------------------------------------------------------------------
# Public interface -- Training
# ---------------------------------------------------------------------------


def train_model(config: TrainerConfig, records: Iterable[Record], *, store: ModelStore) -> DecisionTreeModel:
    """Train a decision tree on labeled records and store it under `config.model_name`.

    With an exclusion list (or no list) the features are every field of the
    records except the excluded ones and the label, in first-seen order.

    Args:
        config (TrainerConfig): The training configuration.
        records (Iterable[Record]): Labeled training records.
        store (ModelStore): Where the trained model is saved.

    Returns:
        DecisionTreeModel: The trained and stored model.

    Raises:
        InvalidTrainingData: If there are no records, the label is missing or
            unusable, or no usable feature is selected.
        FeatureCardinalityExceeded: If a categorical feature has more distinct
            values than declared.
    """
    frame = records_to_frame(records)
    if frame.height == 0:
        raise InvalidTrainingData("no training records were provided")

    feature_names = select_feature_names(
        frame.columns,
        include=config.include,
        exclude=config.exclude,
        reserved=[config.label_field],
    )
    model = fit_model(
        frame,
        label_field=config.label_field,
        feature_names=feature_names,
        cardinality_mapping=config.cardinality_mapping,
        task_type=config.task_type,
        impurity=config.impurity,
        max_depth=config.max_depth,
        max_bins=config.max_bins,
        min_instances_per_node=config.min_instances_per_node,
        min_info_gain=config.min_info_gain,
        num_partitions=config.num_partitions,
        n_jobs=config.n_jobs,
    )
    store.save(config.model_name, model)
    return model


def run_training(
    config: TrainerConfig | Mapping[str, Any],
    records: Iterable[Record],
    *,
    store: ModelStore,
) -> TrainingRunResult:
    """Run `train_model` and report the outcome as a run status.

    Args:
        config (TrainerConfig | Mapping[str, Any]): The training configuration,
            or its raw properties.
        records (Iterable[Record]): Labeled training records.
        store (ModelStore): Where the trained model is saved.

    Returns:
        TrainingRunResult: `COMPLETED` with the training summary, or `FAILED`
            with the error. No artifact is written for a failed run.

    Examples:
        >>> result = run_training(  # doctest: +SKIP
        ...     {"fileSetName": "flights", "cardinalityMapping": "dofW:2", "labelField": "delayed",
        ...      "maxBins": 100, "maxDepth": 9},
        ...     records,
        ...     store=store,
        ... )
        >>> result.status, result.error.error_type  # doctest: +SKIP
        ('FAILED', 'FeatureCardinalityExceeded')
    """
    run_kind = "Training"
    model_name: str | None = None
    try:
        trainer_config = config if isinstance(config, TrainerConfig) else TrainerConfig.model_validate(config)
        model_name = trainer_config.model_name
        logger.log(RUN_LEVEL, _RUN_STARTED_MSG.format(run_kind=run_kind), model_name=model_name)
        model = train_model(trainer_config, records, store=store)
    except (DecisionTreeError, ValidationError, OSError) as exc:
        error = RunError.from_exception(exc)
        logger.warning(
            _RUN_FAILED_MSG.format(run_kind=run_kind),
            model_name=model_name,
            error_type=error.error_type,
            message=error.message,
        )
        return TrainingRunResult(status="FAILED", model_name=model_name, error=error)

    logger.log(
        RUN_LEVEL,
        _RUN_COMPLETED_MSG.format(run_kind=run_kind),
        model_name=model_name,
        samples=model.summary.sample_count,
        depth=model.summary.depth,
    )
    return TrainingRunResult(status="COMPLETED", model_name=model_name, summary=model.summary)


# ---------------------------------------------------------------------------
# Public interface -- Prediction
# ---------------------------------------------------------------------------


def predict_records(config: PredictorConfig, records: Iterable[Record], *, store: ModelStore) -> list[dict[str, Any]]:
    """Score records with the model stored under `config.model_name`.

    The output holds one record per scored input record, in input order,
    each with every input field plus `config.prediction_field`. With
    `on_missing_field="skip"` records lacking a feature field are dropped.

    Args:
        config (PredictorConfig): The prediction configuration.
        records (Iterable[Record]): Records to score.
        store (ModelStore): Where the model is loaded from.

    Returns:
        list[dict[str, Any]]: The scored records.

    Raises:
        ModelNotFound: If the model cannot be loaded.
        MissingFeatureField: If the configured feature selection leaves out a
            model feature, or a record lacks a feature field under the
            `"fail"` policy.
        InvalidFeatureValue: If a continuous feature holds a non-numeric value.
    """
    scored, _ = _score_records(config, records, store=store)
    return scored


def run_prediction(
    config: PredictorConfig | Mapping[str, Any],
    records: Iterable[Record],
    *,
    store: ModelStore,
) -> PredictionRunResult:
    """Run `predict_records` and report the outcome as a run status.

    Args:
        config (PredictorConfig | Mapping[str, Any]): The prediction
            configuration, or its raw properties.
        records (Iterable[Record]): Records to score.
        store (ModelStore): Where the model is loaded from.

    Returns:
        PredictionRunResult: `COMPLETED` with the scored records, or `FAILED`
            with the error and no records.
    """
    run_kind = "Prediction"
    model_name: str | None = None
    try:
        predictor_config = config if isinstance(config, PredictorConfig) else PredictorConfig.model_validate(config)
        model_name = predictor_config.model_name
        logger.log(RUN_LEVEL, _RUN_STARTED_MSG.format(run_kind=run_kind), model_name=model_name)
        scored, skipped_count = _score_records(predictor_config, records, store=store)
    except (DecisionTreeError, ValidationError) as exc:
        error = RunError.from_exception(exc)
        logger.warning(
            _RUN_FAILED_MSG.format(run_kind=run_kind),
            model_name=model_name,
            error_type=error.error_type,
            message=error.message,
        )
        return PredictionRunResult(status="FAILED", model_name=model_name, error=error)

    logger.log(
        RUN_LEVEL,
        _RUN_COMPLETED_MSG.format(run_kind=run_kind),
        model_name=model_name,
        scored=len(scored),
        skipped=skipped_count,
    )
    return PredictionRunResult(
        status="COMPLETED",
        model_name=model_name,
        records=scored,
        skipped_count=skipped_count,
    )


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _score_records(
    config: PredictorConfig,
    records: Iterable[Record],
    *,
    store: ModelStore,
) -> tuple[list[dict[str, Any]], int]:
    """Load the model, check the feature selection, and score every record.

    Args:
        config (PredictorConfig): The prediction configuration.
        records (Iterable[Record]): Records to score.
        store (ModelStore): Where the model is loaded from.

    Returns:
        tuple[list[dict[str, Any]], int]: The scored records and the number
            of skipped records.
    """
    model = store.load(config.model_name)
    _check_feature_selection(config, model)
    predictor = Predictor(model, config.prediction_field)
    return _apply_policy(predictor, records, config.on_missing_field)


def _check_feature_selection(config: PredictorConfig, model: DecisionTreeModel) -> None:
    """Raise if the configured inclusion or exclusion list leaves out a model feature.

    Args:
        config (PredictorConfig): The prediction configuration.
        model (DecisionTreeModel): The loaded model.

    Raises:
        MissingFeatureField: If a feature the model needs is not selected.
    """
    if config.include:
        selected = list(config.include)
        included = set(selected)
        unselected = [name for name in model.feature_names if name not in included]
    elif config.exclude:
        excluded = set(config.exclude)
        selected = [name for name in model.feature_names if name not in excluded]
        unselected = [name for name in model.feature_names if name in excluded]
    else:
        return
    if unselected:
        raise MissingFeatureField(missing_fields=unselected, available_fields=selected)


def _apply_policy(
    predictor: Predictor,
    records: Iterable[Record],
    policy: MissingFieldPolicy,
) -> tuple[list[dict[str, Any]], int]:
    """Score records, failing on or skipping records that lack a feature field.

    Args:
        predictor (Predictor): The predictor.
        records (Iterable[Record]): Records to score.
        policy (MissingFieldPolicy): `"fail"` or `"skip"`.

    Returns:
        tuple[list[dict[str, Any]], int]: The scored records and the number
            of skipped records.
    """
    if policy == "fail":
        return list(predictor.transform(records)), 0

    scored: list[dict[str, Any]] = []
    skipped_count = 0
    for record in records:
        try:
            prediction = predictor.predict(record)
        except MissingFeatureField as exc:
            skipped_count += 1
            logger.debug("Record skipped", missing_fields=exc.missing_fields)
            continue
        scored.append({**record, predictor.prediction_field: prediction})
    return scored, skipped_count
