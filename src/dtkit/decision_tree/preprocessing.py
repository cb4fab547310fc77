"""Preprocessing: record batching, feature selection, feature encoding and label encoding."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

import numpy as np
import polars as pl
from loguru import logger

from dtkit.decision_tree.models import CategoryValue, DecisionTreeTask, FeatureField
from dtkit.exceptions import FeatureCardinalityExceeded, InvalidFeatureValue, InvalidTrainingData

type Record = Mapping[str, Any]

type ColumnType = Literal["numeric", "string", "null", "unsupported"]

# ---------------------------------------------------------------------------
# Public interface -- Record batching and feature selection
# ---------------------------------------------------------------------------


def records_to_frame(records: Iterable[Record]) -> pl.DataFrame:
    """Collect records into a Polars DataFrame, inferring the schema from every row.

    Fields absent from some records become nulls in those rows.

    Args:
        records (Iterable[Record]): The records to collect.

    Returns:
        pl.DataFrame: One row per record, columns in first-seen field order.

    Raises:
        InvalidTrainingData: If the field types of the records cannot be
            reconciled into a single schema (e.g. a field mixing numbers and
            strings).
    """
    rows = [dict(record) for record in records]
    if not rows:
        return pl.DataFrame()
    try:
        return pl.from_dicts(rows, infer_schema_length=None)
    except (pl.exceptions.PolarsError, TypeError, ValueError) as exc:
        raise InvalidTrainingData(f"records do not share a consistent schema ({exc})") from exc


def select_feature_names(
    available_fields: Sequence[str],
    *,
    include: Sequence[str] | None,
    exclude: Sequence[str] | None,
    reserved: Iterable[str] = (),
) -> list[str]:
    """Resolve the ordered feature field names from an inclusion or exclusion list.

    With an inclusion list the result is that list, in declared order. With an
    exclusion list (or neither) the result is every available field that is
    neither excluded nor reserved, in available-field order.

    Args:
        available_fields (Sequence[str]): Field names present in the data, in order.
        include (Sequence[str] | None): Explicit feature fields.
        exclude (Sequence[str] | None): Fields to leave out.
        reserved (Iterable[str]): Fields that are never features (label or
            prediction field).

    Returns:
        list[str]: The selected feature names.

    Raises:
        ValueError: If both `include` and `exclude` are given.

    Examples:
        >>> select_feature_names(["a", "b", "label"], include=None, exclude=["b"], reserved=["label"])
        ['a']
    """
    if include and exclude:
        raise ValueError("Only one of include and exclude may be given")
    if include:
        return list(include)
    excluded = set(exclude or ()) | set(reserved)
    return [name for name in available_fields if name not in excluded]


# ---------------------------------------------------------------------------
# Public interface -- Feature encoding
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeatureEncoder:
    """Maps records to fixed-width float64 feature vectors according to a feature spec.

    Continuous values are passed through as floats and nulls become `NaN`.
    Categorical values are mapped to codes through each field's stored
    categories; nulls and values never seen during training become `NaN`.
    The same encoder instance (or one rebuilt from a persisted model's
    features) yields identical vectors for a record at training and at
    prediction time.

    Attributes:
        features (tuple[FeatureField, ...]): The fitted feature spec.
    """

    features: tuple[FeatureField, ...]

    @classmethod
    def fit(
        cls,
        frame: pl.DataFrame,
        feature_names: Sequence[str],
        cardinality_mapping: Mapping[str, int] | None = None,
    ) -> FeatureEncoder:
        """Learn the feature spec for `feature_names` from a training frame.

        Fields named in `cardinality_mapping` are categorical; their category
        codes are assigned in sorted order of the distinct non-null values, so
        the assignment does not depend on record order or partitioning. All
        other fields must be numeric (or boolean) and are continuous.

        Args:
            frame (pl.DataFrame): The training records.
            feature_names (Sequence[str]): Ordered feature fields.
            cardinality_mapping (Mapping[str, int] | None): Declared
                cardinality per categorical field.

        Returns:
            FeatureEncoder: The fitted encoder.

        Raises:
            InvalidTrainingData: If no features are selected, a feature field
                is absent, or a field has an unsupported type.
            FeatureCardinalityExceeded: If a categorical field has more
                distinct values than its declared cardinality.
        """
        if not feature_names:
            raise InvalidTrainingData("no feature fields were selected")
        cardinality_mapping = cardinality_mapping or {}

        missing = [name for name in feature_names if name not in frame.columns]
        if missing:
            raise InvalidTrainingData(f"feature fields not present in the training records: {missing}")

        features: list[FeatureField] = []
        for name in feature_names:
            series = frame[name]
            cardinality = cardinality_mapping.get(name)
            if cardinality is not None:
                features.append(_fit_categorical_field(series, cardinality))
            else:
                features.append(_fit_continuous_field(series))

        logger.debug(
            "Feature spec fitted",
            continuous=[f.name for f in features if f.kind == "continuous"],
            categorical={f.name: len(f.categories or []) for f in features if f.kind == "categorical"},
        )
        return cls(features=tuple(features))

    @property
    def feature_names(self) -> list[str]:
        """Ordered feature field names."""
        return [feature.name for feature in self.features]

    @property
    def width(self) -> int:
        """Length of the encoded feature vectors."""
        return len(self.features)

    def encode_frame(self, frame: pl.DataFrame) -> np.ndarray:
        """Encode every row of a frame into a 2-D float64 feature matrix.

        Args:
            frame (pl.DataFrame): Records containing every feature column.

        Returns:
            np.ndarray: Matrix of shape `(n_rows, width)`.

        Raises:
            InvalidFeatureValue: If a continuous feature column is not numeric.
        """
        columns = [_encode_series(frame[feature.name], feature) for feature in self.features]
        if not columns:
            return np.empty((len(frame), 0), dtype=np.float64)
        return np.column_stack(columns)

    def encode_record(self, record: Record) -> np.ndarray:
        """Encode a single record into a 1-D float64 feature vector.

        The caller is responsible for checking that every feature field is
        present; absent fields are treated like nulls here.

        Args:
            record (Record): The record to encode.

        Returns:
            np.ndarray: Vector of length `width`.

        Raises:
            InvalidFeatureValue: If a continuous feature holds a non-numeric value.
        """
        vector = np.empty(self.width, dtype=np.float64)
        for index, feature in enumerate(self.features):
            value = record.get(feature.name)
            if feature.kind == "categorical":
                vector[index] = _category_code(value, feature.category_codes())
            else:
                vector[index] = _continuous_value(value, feature.name)
        return vector


# ---------------------------------------------------------------------------
# Public interface -- Label encoding
# ---------------------------------------------------------------------------


def encode_labels(
    series: pl.Series,
    task_type: DecisionTreeTask,
) -> tuple[np.ndarray, list[float] | list[str] | None]:
    """Encode the label column for the tree builder.

    Regression labels are returned as float64. Classification labels are
    returned as int64 indices into the sorted list of distinct classes; numeric
    classes are stored as floats.

    Args:
        series (pl.Series): The label column.
        task_type (DecisionTreeTask): Determines the encoding strategy.

    Returns:
        tuple[np.ndarray, list[float] | list[str] | None]: The encoded labels
            and the class list (`None` for regression).

    Raises:
        InvalidTrainingData: If the labels contain nulls or regression labels
            are not numeric.
    """
    if series.null_count() > 0:
        raise InvalidTrainingData(
            f"label contains {series.null_count()} null values; remove or impute them before training",
            field=series.name,
        )
    column_type = _classify_column(series.dtype)

    if task_type == "regression":
        if column_type != "numeric":
            raise InvalidTrainingData(f"regression labels must be numeric, got {series.dtype}", field=series.name)
        labels = series.cast(pl.Float64).to_numpy()
        if np.isnan(labels).any():
            raise InvalidTrainingData("label contains NaN values", field=series.name)
        return labels, None

    if column_type == "numeric":
        values: list[Any] = [float(v) for v in series.cast(pl.Float64).to_list()]
        if any(math.isnan(v) for v in values):
            raise InvalidTrainingData("label contains NaN values", field=series.name)
    elif column_type == "string":
        values = series.cast(pl.String).to_list()
    else:
        raise InvalidTrainingData(f"unsupported label type {series.dtype}", field=series.name)

    classes = sorted(set(values))
    class_index = {label: index for index, label in enumerate(classes)}
    encoded = np.fromiter((class_index[v] for v in values), dtype=np.int64, count=len(values))
    return encoded, classes


# ---------------------------------------------------------------------------
# Private helpers -- Column type classification
# ---------------------------------------------------------------------------

_NUMERIC_DTYPES: frozenset[type[pl.DataType]] = frozenset({
    pl.Int8,
    pl.Int16,
    pl.Int32,
    pl.Int64,
    pl.UInt8,
    pl.UInt16,
    pl.UInt32,
    pl.UInt64,
    pl.Float32,
    pl.Float64,
    pl.Boolean,
})


def _classify_column(dtype: pl.DataType) -> ColumnType:
    """Classify a Polars dtype into the broad categories the encoder understands.

    Set membership covers singleton dtypes; parameterized instances such as
    `Categorical("lexical")` hash differently and fall back to `isinstance`.

    Args:
        dtype (pl.DataType): The Polars data type of the column.

    Returns:
        ColumnType: `"numeric"` (booleans included), `"string"`, `"null"` for
            an all-null column, or `"unsupported"`.
    """
    if dtype in _NUMERIC_DTYPES:
        return "numeric"
    if dtype in {pl.String, pl.Categorical} or isinstance(dtype, (pl.Categorical, pl.Enum)):
        return "string"
    if dtype == pl.Null:
        return "null"
    return "unsupported"


# ---------------------------------------------------------------------------
# Private helpers -- Fitting
# ---------------------------------------------------------------------------


def _fit_continuous_field(series: pl.Series) -> FeatureField:
    """Validate that a column can be used as a continuous feature.

    Args:
        series (pl.Series): The feature column.

    Returns:
        FeatureField: A continuous feature field.

    Raises:
        InvalidTrainingData: If the column is not numeric.
    """
    column_type = _classify_column(series.dtype)
    if column_type == "string":
        raise InvalidTrainingData(
            "string fields must be declared categorical with a cardinality mapping",
            field=series.name,
        )
    if column_type == "unsupported":
        raise InvalidTrainingData(f"unsupported feature type {series.dtype}", field=series.name)
    return FeatureField(name=series.name, kind="continuous")


def _fit_categorical_field(series: pl.Series, cardinality: int) -> FeatureField:
    """Assign category codes for a categorical column and enforce its cardinality.

    Args:
        series (pl.Series): The feature column.
        cardinality (int): The declared cardinality.

    Returns:
        FeatureField: A categorical feature field with its observed categories.

    Raises:
        InvalidTrainingData: If the column type cannot hold categories.
        FeatureCardinalityExceeded: If more distinct values are observed than declared.
    """
    column_type = _classify_column(series.dtype)
    if column_type == "unsupported":
        raise InvalidTrainingData(f"unsupported feature type {series.dtype}", field=series.name)

    distinct = [value for value in series.drop_nulls().unique().to_list() if not _is_nan(value)]
    if len(distinct) > cardinality:
        raise FeatureCardinalityExceeded(field=series.name, cardinality=cardinality, observed_count=len(distinct))

    categories: list[CategoryValue] = sorted(distinct)
    return FeatureField(name=series.name, kind="categorical", cardinality=cardinality, categories=categories)


# ---------------------------------------------------------------------------
# Private helpers -- Encoding
# ---------------------------------------------------------------------------


def _encode_series(series: pl.Series, feature: FeatureField) -> np.ndarray:
    """Encode one column according to its feature field.

    Args:
        series (pl.Series): The feature column.
        feature (FeatureField): The fitted feature field.

    Returns:
        np.ndarray: 1-D float64 array.

    Raises:
        InvalidFeatureValue: If a continuous feature column is not numeric.
    """
    if feature.kind == "categorical":
        codes = feature.category_codes()
        return np.fromiter((_category_code(v, codes) for v in series.to_list()), dtype=np.float64, count=len(series))

    column_type = _classify_column(series.dtype)
    if column_type not in {"numeric", "null"}:
        first_value = series.drop_nulls().head(1).to_list()
        raise InvalidFeatureValue(field=feature.name, value=first_value[0] if first_value else None)
    return series.cast(pl.Float64).to_numpy()


def _category_code(value: Any, codes: Mapping[CategoryValue, int]) -> float:
    """Look up the code of a category value; nulls and unseen values map to NaN.

    Args:
        value (Any): The raw category value.
        codes (Mapping[CategoryValue, int]): Category value to code lookup.

    Returns:
        float: The code as a float, or `NaN`.
    """
    if value is None or _is_nan(value):
        return math.nan
    code = codes.get(value)
    return math.nan if code is None else float(code)


def _continuous_value(value: Any, field: str) -> float:
    """Convert a raw continuous value to float; nulls map to NaN.

    Args:
        value (Any): The raw value.
        field (str): Field name, for error reporting.

    Returns:
        float: The numeric value, or `NaN` for nulls.

    Raises:
        InvalidFeatureValue: If the value is text or cannot be converted to a float.
    """
    if value is None:
        return math.nan
    if isinstance(value, (str, bytes)):
        raise InvalidFeatureValue(field=field, value=value)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidFeatureValue(field=field, value=value) from exc


def _is_nan(value: Any) -> bool:
    """Return `True` for float NaN values.

    Args:
        value (Any): Any raw value.

    Returns:
        bool: Whether `value` is a float NaN.
    """
    return isinstance(value, float) and math.isnan(value)
