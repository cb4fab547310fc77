"""Pydantic models for the decision tree: feature spec, tree nodes, the trained model and rules."""

from __future__ import annotations

import math
import operator
from collections.abc import Callable
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

type PredicateOp = Literal[">", ">=", "!=", "==", "<", "<=", "in", "not in"]

type FeatureKind = Literal["continuous", "categorical"]

type DecisionTreeTask = Literal["classification", "regression"]

type Impurity = Literal["variance", "gini", "entropy"]

type CategoryValue = int | float | str

MODEL_FORMAT_VERSION: int = 1

# ---------------------------------------------------------------------------
# Public models -- Feature spec
# ---------------------------------------------------------------------------


class FeatureField(BaseModel):
    """How one record field becomes one entry of a feature vector.

    Continuous fields are passed through as floats. Categorical fields are
    mapped to integer codes in `[0, cardinality)`; after training,
    `categories[code]` holds the original value for every observed code, in
    sorted value order, so prediction reproduces the training-time encoding.

    Attributes:
        name (str): Record field name.
        kind (FeatureKind): `"continuous"` or `"categorical"`.
        cardinality (int | None): Declared number of categories. Required for
            categorical fields, `None` for continuous ones.
        categories (list[CategoryValue] | None): Observed category values
            ordered by code. `None` until the field has been fitted and for
            continuous fields.

    Examples:
        >>> FeatureField(name="dofW", kind="categorical", cardinality=7, categories=[0, 1, 2])
        FeatureField(name='dofW', kind='categorical', cardinality=7, categories=[0, 1, 2])
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Record field name.", min_length=1)
    kind: FeatureKind = Field(description='Either "continuous" or "categorical".')
    cardinality: int | None = Field(default=None, ge=1, description="Declared cardinality of a categorical field.")
    categories: list[CategoryValue] | None = Field(
        default=None,
        description="Observed category values; the list index is the category code.",
    )

    @model_validator(mode="after")
    def _validate_kind_consistency(self) -> FeatureField:
        """Validate that cardinality and categories are only set for categorical fields.

        Returns:
            FeatureField: The validated model instance.

        Raises:
            ValueError: If a categorical field lacks a cardinality, a continuous
                field carries one, or more categories are stored than declared.
        """
        if self.kind == "categorical":
            if self.cardinality is None:
                raise ValueError(f"Categorical field '{self.name}' requires a cardinality")
            if self.categories is not None and len(self.categories) > self.cardinality:
                raise ValueError(
                    f"Categorical field '{self.name}' stores {len(self.categories)} categories "
                    f"but cardinality is {self.cardinality}"
                )
        elif self.cardinality is not None or self.categories is not None:
            raise ValueError(f"Continuous field '{self.name}' cannot declare a cardinality or categories")
        return self

    def category_codes(self) -> dict[CategoryValue, int]:
        """Return the `{value: code}` lookup for a fitted categorical field.

        Returns:
            dict[CategoryValue, int]: Mapping of category value to code. Empty
                for continuous or unfitted fields.
        """
        return {value: code for code, value in enumerate(self.categories or [])}


# ---------------------------------------------------------------------------
# Public models -- Tree structure
# ---------------------------------------------------------------------------


class LeafNode(BaseModel):
    """A terminal node holding the prediction for the rows that reach it.

    Attributes:
        kind (Literal["leaf"]): Discriminator field; always `"leaf"`.
        prediction (float | str): Mean label (regression) or majority class
            (classification).
        samples (int): Number of training rows that reached this leaf.
        impurity (float): Impurity of the training labels at this leaf.
        class_counts (list[int] | None): Per-class row counts, parallel to
            `DecisionTreeModel.classes`. `None` for regression.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["leaf"] = "leaf"
    prediction: float | str = Field(description="Value predicted for rows reaching this leaf.")
    samples: int = Field(ge=1, description="Number of training rows that reached this leaf.")
    impurity: float = Field(ge=0.0, description="Impurity of the training labels at this leaf.")
    class_counts: list[int] | None = Field(default=None, description="Per-class counts for classification.")


class SplitNode(BaseModel):
    """A decision node routing rows to its left or right child.

    Continuous splits send a row left when `value <= threshold`; categorical
    splits send it left when its category code is in `categories`. Missing
    values (`NaN`) and unseen categories never satisfy the predicate and
    always go right.

    Attributes:
        kind (Literal["split"]): Discriminator field; always `"split"`.
        feature_index (int): Position of the split feature in the feature vector.
        feature (str): Name of the split feature.
        threshold (float | None): Upper bound of the left branch for continuous splits.
        categories (list[int] | None): Category codes of the left branch for
            categorical splits, sorted ascending.
        left (TreeNode): Child for rows satisfying the predicate.
        right (TreeNode): Child for all other rows.
        samples (int): Number of training rows that reached this node.
        impurity (float): Impurity of the training labels at this node.
        gain (float): Impurity reduction achieved by the split.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["split"] = "split"
    feature_index: int = Field(ge=0, description="Position of the split feature in the feature vector.")
    feature: str = Field(description="Name of the split feature.")
    threshold: float | None = Field(default=None, description="Left branch takes values <= threshold.")
    categories: list[int] | None = Field(default=None, description="Left branch takes these category codes.")
    left: TreeNode
    right: TreeNode
    samples: int = Field(ge=2, description="Number of training rows that reached this node.")
    impurity: float = Field(ge=0.0, description="Impurity of the training labels at this node.")
    gain: float = Field(description="Impurity reduction achieved by the split.")

    @model_validator(mode="after")
    def _validate_single_predicate(self) -> SplitNode:
        """Validate that exactly one of threshold and categories is set.

        Returns:
            SplitNode: The validated model instance.

        Raises:
            ValueError: If both or neither of `threshold` and `categories` are set.
        """
        if (self.threshold is None) == (self.categories is None):
            raise ValueError("A split needs exactly one of 'threshold' or 'categories'")
        return self

    def goes_left(self, value: float) -> bool:
        """Evaluate this split's predicate against one encoded feature value.

        Args:
            value (float): Encoded feature value (category code for categorical
                splits). `NaN` marks a missing or unseen value.

        Returns:
            bool: `True` if the row descends to the left child.
        """
        if math.isnan(value):
            return False
        if self.categories is not None:
            return int(value) in self.categories
        return value <= self.threshold  # type: ignore[operator]


TreeNode = Annotated[LeafNode | SplitNode, Field(discriminator="kind")]

SplitNode.model_rebuild()


# ---------------------------------------------------------------------------
# Public models -- Trained model
# ---------------------------------------------------------------------------


class TrainingSummary(BaseModel):
    """Statistics collected while training a decision tree.

    Attributes:
        sample_count (int): Number of training rows.
        depth (int): Depth of the tree (a single leaf has depth 0).
        leaf_count (int): Number of leaves.
        node_count (int): Number of nodes, leaves included.
        feature_importance (dict[str, float]): Gain-weighted importance per
            feature that appears in at least one split, summing to 1.0.
        metrics (dict[str, float]): Training-set metrics: `accuracy` for
            classification, `r_squared` and `rmse` for regression.
    """

    model_config = ConfigDict(frozen=True)

    sample_count: int = Field(ge=1, description="Number of training rows.")
    depth: int = Field(ge=0, description="Depth of the tree.")
    leaf_count: int = Field(ge=1, description="Number of leaves.")
    node_count: int = Field(ge=1, description="Number of nodes, leaves included.")
    feature_importance: dict[str, float] = Field(description="Gain-weighted importance per split feature.")
    metrics: dict[str, float] = Field(description="Training-set evaluation metrics.")


class DecisionTreeModel(BaseModel):
    """An immutable trained decision tree together with everything needed to score records.

    The model owns the feature spec used during training, so prediction
    encodes records exactly as training did. It is persisted as a JSON
    artifact and shared read-only by any number of predictors.

    Attributes:
        format_version (int): Artifact format version.
        label_field (str): Name of the label field used for training.
        task_type (DecisionTreeTask): `"classification"` or `"regression"`.
        impurity (Impurity): Impurity measure the tree was grown with.
        features (list[FeatureField]): Ordered feature spec.
        classes (list[float] | list[str] | None): Sorted class labels for
            classification; `None` for regression.
        max_depth (int): Depth limit used for training.
        max_bins (int): Bin limit used for training.
        min_instances_per_node (int): Minimum rows per child used for training.
        min_info_gain (float): Minimum gain required to split.
        root (TreeNode): Root of the tree.
        summary (TrainingSummary): Training statistics.
    """

    model_config = ConfigDict(frozen=True)

    format_version: int = Field(default=MODEL_FORMAT_VERSION, description="Artifact format version.")
    label_field: str = Field(description="Name of the label field used for training.")
    task_type: DecisionTreeTask = Field(description='Either "classification" or "regression".')
    impurity: Impurity = Field(description="Impurity measure the tree was grown with.")
    features: list[FeatureField] = Field(min_length=1, description="Ordered feature spec.")
    classes: list[float] | list[str] | None = Field(default=None, description="Sorted class labels.")
    max_depth: int = Field(ge=1, description="Depth limit used for training.")
    max_bins: int = Field(ge=2, description="Bin limit used for training.")
    min_instances_per_node: int = Field(ge=1, description="Minimum rows per child used for training.")
    min_info_gain: float = Field(ge=0.0, description="Minimum gain required to split.")
    root: TreeNode
    summary: TrainingSummary

    @model_validator(mode="after")
    def _validate_tree_against_spec(self) -> DecisionTreeModel:
        """Validate that every split references a feature of the spec and the depth limit holds.

        Returns:
            DecisionTreeModel: The validated model instance.

        Raises:
            ValueError: If a split references an unknown feature, uses a
                predicate that does not match the feature kind, or the tree is
                deeper than `max_depth`.
        """
        stack: list[tuple[LeafNode | SplitNode, int]] = [(self.root, 0)]
        while stack:
            node, depth = stack.pop()
            if depth > self.max_depth:
                raise ValueError(f"Tree depth exceeds max_depth={self.max_depth}")
            if isinstance(node, LeafNode):
                continue
            if node.feature_index >= len(self.features) or self.features[node.feature_index].name != node.feature:
                raise ValueError(f"Split references unknown feature '{node.feature}' at index {node.feature_index}")
            if (self.features[node.feature_index].kind == "categorical") != (node.categories is not None):
                raise ValueError(f"Split predicate on '{node.feature}' does not match the feature kind")
            stack.extend([(node.left, depth + 1), (node.right, depth + 1)])
        return self

    @property
    def feature_names(self) -> list[str]:
        """Ordered names of the features the model consumes."""
        return [feature.name for feature in self.features]

    def to_debug_string(self) -> str:
        """Render the tree as indented if/else text.

        Returns:
            str: A multi-line description with one line per predicate and leaf.

        Examples:
            >>> print(model.to_debug_string())  # doctest: +SKIP
            DecisionTreeModel regressor of depth 1 with 3 nodes
              If (dofW in {5.0})
               Predict: 1.0
              Else (dofW not in {5.0})
               Predict: 0.0
        """
        kind = "classifier" if self.task_type == "classification" else "regressor"
        lines = [
            f"DecisionTreeModel {kind} of depth {self.summary.depth} with {self.summary.node_count} nodes",
        ]
        self._append_debug_lines(self.root, indent=1, lines=lines)
        return "\n".join(lines)

    def _append_debug_lines(self, node: LeafNode | SplitNode, *, indent: int, lines: list[str]) -> None:
        """Append the debug lines of `node` and its descendants.

        Args:
            node (LeafNode | SplitNode): The node to render.
            indent (int): Current indentation depth.
            lines (list[str]): Accumulator; lines are appended in place.
        """
        pad = " " * indent
        if isinstance(node, LeafNode):
            lines.append(f"{pad} Predict: {node.prediction}")
            return
        left_predicate, right_predicate = split_predicates(node, self.features[node.feature_index])
        lines.append(f"{pad}If ({left_predicate})")
        self._append_debug_lines(node.left, indent=indent + 1, lines=lines)
        lines.append(f"{pad}Else ({right_predicate})")
        self._append_debug_lines(node.right, indent=indent + 1, lines=lines)


# ---------------------------------------------------------------------------
# Public models -- Rules
# ---------------------------------------------------------------------------


class Predicate(BaseModel):
    """A single boolean condition on one feature variable.

    Represents a comparison such as `scheduleDepTime <= 1337.5` or
    `dofW in {4, 5}`. Each rule contains an ordered list of predicates
    describing the path from the tree root to a leaf node.

    Attributes:
        variable (str): Feature name the condition applies to.
        operator (PredicateOp): Comparison operator. `"in"` and `"not in"`
            test membership in a set of category values.
        value (float | str | set[float] | set[str]): Threshold for scalar
            comparisons, or a set of category values for membership tests.

    Examples:
        >>> p = Predicate(variable="elapsedTime", operator=">", value=100.0)
        >>> str(p)
        'elapsedTime > 100.0'
        >>> p.eval(120.0)
        True
        >>> p2 = Predicate(variable="origin", operator="in", value={"ATL", "ORD"})
        >>> p2.eval("JFK")
        False
    """

    variable: str = Field(description="Feature name the condition applies to.")
    operator: PredicateOp = Field(description="Comparison operator.")
    value: float | str | set[float] | set[str] = Field(
        description="Scalar threshold, or a set of category values for membership tests.",
    )

    @model_validator(mode="after")
    def _validate_operator_value_compatibility(self) -> Predicate:
        """Validate that the operator and value type are compatible.

        Returns:
            Predicate: The validated model instance.

        Raises:
            ValueError: If a membership operator is used with a non-set value,
                or if a scalar operator is used with a set value.
        """
        try:
            _validate_operator_threshold_types(self.operator, self.value)
        except TypeError as exc:
            raise ValueError(str(exc)) from exc
        return self

    def __str__(self) -> str:
        """Return a human-readable representation of this predicate.

        Returns:
            str: The predicate as `"<variable> <operator> <value>"`.
        """
        if self.operator in {"in", "not in"}:
            # Always a homogeneous set here (enforced by the model validator).
            sorted_values = ", ".join(str(v) for v in sorted(self.value))  # type: ignore[arg-type]
            return f"{self.variable} {self.operator} {{{sorted_values}}}"
        return f"{self.variable} {self.operator} {self.value}"

    def eval(self, x: float | str) -> bool:
        """Evaluate this predicate against a feature value.

        Args:
            x (float | str): The feature value to test.

        Returns:
            bool: `True` if the predicate holds for `x`, `False` otherwise.
        """
        return _apply_operator(self.operator, x, self.value)


class ClassificationRule(BaseModel):
    """A decision rule for one leaf of a classification tree.

    Attributes:
        task_type (Literal["classification"]): Discriminator field.
        predicates (list[Predicate]): Predicates from the root to this leaf.
            Empty for a single-leaf tree.
        prediction (str | float): Predicted class.
        samples (int): Number of training rows that reached this leaf.
        confidence (float): Fraction of the leaf's rows in the predicted class.
    """

    task_type: Literal["classification"] = Field(description='Discriminator field. Always "classification".')
    predicates: list[Predicate] = Field(description="Predicates along the path from root to this leaf.")
    prediction: str | float = Field(description="Predicted class label for rows reaching this leaf.")
    samples: int = Field(ge=1, description="Number of training rows that reached this leaf.")
    confidence: float = Field(ge=0.0, le=1.0, description="Fraction of rows at this leaf in the predicted class.")


class RegressionRule(BaseModel):
    """A decision rule for one leaf of a regression tree.

    Attributes:
        task_type (Literal["regression"]): Discriminator field.
        predicates (list[Predicate]): Predicates from the root to this leaf.
            Empty for a single-leaf tree.
        prediction (float): Mean label of the leaf.
        samples (int): Number of training rows that reached this leaf.
        std (float): Standard deviation of the labels at this leaf.
    """

    task_type: Literal["regression"] = Field(description='Discriminator field. Always "regression".')
    predicates: list[Predicate] = Field(description="Predicates along the path from root to this leaf.")
    prediction: float = Field(description="Mean label of rows reaching this leaf.")
    samples: int = Field(ge=1, description="Number of training rows that reached this leaf.")
    std: float = Field(ge=0.0, description="Standard deviation of labels at this leaf.")


# Use this alias when accepting a rule of either task type; Pydantic will select the correct model automatically.
type DecisionTreeRule = Annotated[
    ClassificationRule | RegressionRule,
    Field(discriminator="task_type"),
]


def split_predicates(node: SplitNode, feature: FeatureField) -> tuple[Predicate, Predicate]:
    """Build the left and right branch predicates of a split in raw-value terms.

    Categorical codes are decoded back to the original category values through
    the feature's stored categories.

    Args:
        node (SplitNode): The split to describe.
        feature (FeatureField): The fitted feature the split applies to.

    Returns:
        tuple[Predicate, Predicate]: A 2-tuple of `(left_predicate, right_predicate)`.
    """
    if node.categories is not None:
        categories = feature.categories or []
        left_values = {categories[code] for code in node.categories}
        return (
            Predicate(variable=node.feature, operator="in", value=left_values),
            Predicate(variable=node.feature, operator="not in", value=left_values),
        )
    threshold = float(node.threshold)  # type: ignore[arg-type]
    return (
        Predicate(variable=node.feature, operator="<=", value=threshold),
        Predicate(variable=node.feature, operator=">", value=threshold),
    )


# ---------------------------------------------------------------------------
# Private helpers -- Predicate operator evaluation
# ---------------------------------------------------------------------------

_SCALAR_OPS: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}


def _apply_operator(
    op: PredicateOp,
    x: float | str,
    threshold: float | str | set[float] | set[str],
) -> bool:
    """Apply a comparison operator between a feature value and a threshold.

    Args:
        op (PredicateOp): The comparison operator to apply.
        x (float | str): The feature value to compare.
        threshold (float | str | set[float] | set[str]): The threshold or
            set of candidate values to compare against.

    Returns:
        bool: Result of applying `op` between `x` and `threshold`.

    Raises:
        ValueError: If `op` is not a recognized `PredicateOp` value.
    """
    _validate_operator_threshold_types(op, threshold)
    if op in _SCALAR_OPS:
        return _SCALAR_OPS[op](x, threshold)
    if op == "in" and isinstance(threshold, set):
        return x in threshold
    if op == "not in" and isinstance(threshold, set):
        return x not in threshold
    raise ValueError(f"Unexpected operator: {op!r}")


def _validate_operator_threshold_types(
    op: PredicateOp,
    threshold: float | str | set[float] | set[str],
) -> None:
    """Raise TypeError when operator and threshold types are incompatible.

    Args:
        op (PredicateOp): The comparison operator to validate.
        threshold (float | str | set[float] | set[str]): The threshold value
            to validate against the operator.

    Raises:
        TypeError: If a scalar operator is paired with a set threshold, or a
            membership operator is paired with a non-set threshold.
    """
    if op in _SCALAR_OPS and isinstance(threshold, set):
        raise TypeError(f"Scalar operator '{op}' cannot compare against a set")
    if op in {"in", "not in"} and not isinstance(threshold, set):
        raise TypeError(f"Membership operator '{op}' requires a set threshold")
