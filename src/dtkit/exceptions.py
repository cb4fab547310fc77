"""Custom exceptions for decision tree training and prediction.

This module defines the failures a training or prediction run can report:

- DecisionTreeError: Base class for all dtkit failures. Catch this to handle
  any training or prediction failure.
- InvalidTrainingData: Raised when training input is empty or structurally
  unusable (subclass of ValueError).
- FeatureCardinalityExceeded: Raised when a categorical field has more distinct
  values than its declared cardinality (subclass of InvalidTrainingData).
- MissingFeatureField: Raised when a record to be scored lacks a field the
  model requires (subclass of LookupError).
- ModelNotFound: Raised when a model artifact does not exist or cannot be read
  (subclass of LookupError).
- InvalidFeatureValue: Raised when a record value cannot be encoded for its
  feature (subclass of ValueError).
"""

from __future__ import annotations

from collections.abc import Iterable


class DecisionTreeError(Exception):
    """Base exception for all dtkit training and prediction failures.

    Catching this exception will catch every failure that the training and
    prediction runners report as a failed run.
    """


class InvalidTrainingData(DecisionTreeError, ValueError):  # noqa: N818 - public name
    """Raised when training input is empty or structurally unusable.

    Attributes:
        reason (str): Human-readable explanation of what is wrong with the input.
        field (str | None): The offending field, when the problem is tied to one.

    Examples:
        >>> err = InvalidTrainingData("no training records were provided")
        >>> err.reason
        'no training records were provided'
        >>> err.field is None
        True
    """

    reason: str
    field: str | None

    def __init__(self, reason: str, *, field: str | None = None) -> None:
        """Initialize InvalidTrainingData.

        Args:
            reason (str): Human-readable explanation of the problem.
            field (str | None): The offending field name, if any.
        """
        prefix = f"Invalid training data for field '{field}'" if field else "Invalid training data"
        super().__init__(f"{prefix}: {reason}")
        self.reason = reason
        self.field = field

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including reason and field.
        """
        return f"{self.__class__.__name__}(reason={self.reason!r}, field={self.field!r})"


class FeatureCardinalityExceeded(InvalidTrainingData):
    """Raised when a categorical field has more distinct values than declared.

    Attributes:
        field (str): The categorical field whose cardinality was exceeded.
        cardinality (int): The declared cardinality of the field.
        observed_count (int): The number of distinct non-null values observed.

    Examples:
        >>> err = FeatureCardinalityExceeded(field="dofW", cardinality=2, observed_count=7)
        >>> str(err)
        "Invalid training data for field 'dofW': 7 distinct values observed but cardinality is 2"
    """

    field: str
    cardinality: int
    observed_count: int

    def __init__(self, *, field: str, cardinality: int, observed_count: int) -> None:
        """Initialize FeatureCardinalityExceeded.

        Args:
            field (str): The categorical field name.
            cardinality (int): The declared cardinality.
            observed_count (int): The number of distinct values observed.
        """
        super().__init__(
            f"{observed_count} distinct values observed but cardinality is {cardinality}",
            field=field,
        )
        self.cardinality = cardinality
        self.observed_count = observed_count

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including field and counts.
        """
        return (
            f"{self.__class__.__name__}("
            f"field={self.field!r}, cardinality={self.cardinality!r}, "
            f"observed_count={self.observed_count!r})"
        )


class MissingFeatureField(DecisionTreeError, LookupError):  # noqa: N818 - public name
    """Raised when a record lacks one or more fields required by a model.

    A field that is present with a null value is not missing; only absent keys
    trigger this error.

    Attributes:
        missing_fields (list[str]): Required fields absent from the record.
        available_fields (list[str]): Fields that the record does contain.

    Examples:
        >>> err = MissingFeatureField(missing_fields=["dofW"], available_fields=["dofM", "carrier"])
        >>> err.missing_fields
        ['dofW']
    """

    missing_fields: list[str]
    available_fields: list[str]

    def __init__(self, *, missing_fields: Iterable[str], available_fields: Iterable[str]) -> None:
        """Initialize MissingFeatureField.

        Args:
            missing_fields (Iterable[str]): Required fields absent from the record.
            available_fields (Iterable[str]): Fields present in the record.
        """
        self.missing_fields = list(missing_fields)
        self.available_fields = list(available_fields)
        super().__init__(f"Record is missing required feature fields: {self.missing_fields}")

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including missing and available fields.
        """
        return (
            f"{self.__class__.__name__}("
            f"missing_fields={self.missing_fields!r}, available_fields={self.available_fields!r})"
        )


class ModelNotFound(DecisionTreeError, LookupError):  # noqa: N818 - public name
    """Raised when a model artifact does not exist or cannot be read.

    Attributes:
        name (str): The artifact name that was requested.
        path (str | None): The resolved artifact path, when known.
        reason (str): Why the artifact could not be loaded.
    """

    name: str
    path: str | None
    reason: str

    def __init__(self, name: str, *, path: str | None = None, reason: str = "artifact does not exist") -> None:
        """Initialize ModelNotFound.

        Args:
            name (str): The artifact name that was requested.
            path (str | None): The resolved artifact path, when known.
            reason (str): Why the artifact could not be loaded.
        """
        super().__init__(f"Model '{name}' could not be loaded: {reason}")
        self.name = name
        self.path = path
        self.reason = reason

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including name, path and reason.
        """
        return f"{self.__class__.__name__}(name={self.name!r}, path={self.path!r}, reason={self.reason!r})"


class InvalidFeatureValue(DecisionTreeError, ValueError):  # noqa: N818 - public name
    """Raised when a record holds a value that cannot be encoded for its feature.

    A continuous feature only accepts numbers, never text, whether a record
    is scored on its own or as part of a frame; anything else is reported instead of being replaced by an arbitrary default.

    Attributes:
        field (str): The feature field holding the value.
        value (object): The offending value.

    Examples:
        >>> err = InvalidFeatureValue(field="carrier", value="AA")
        >>> str(err)
        "Value 'AA' of feature field 'carrier' cannot be encoded as a number"
    """

    field: str
    value: object

    def __init__(self, *, field: str, value: object) -> None:
        """Initialize InvalidFeatureValue.

        Args:
            field (str): The feature field holding the value.
            value (object): The offending value.
        """
        super().__init__(f"Value {value!r} of feature field '{field}' cannot be encoded as a number")
        self.field = field
        self.value = value

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including field and value.
        """
        return f"{self.__class__.__name__}(field={self.field!r}, value={self.value!r})"
