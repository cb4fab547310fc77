"""Decision tree fitting, rule extraction, metrics computation, and model assembly.

The tree is grown top-down on binned features. Continuous features are cut
into at most `max_bins` bins once over the whole training set; categorical
features bin by category code. At every node the sufficient statistics of the
labels are gathered per bin for each data partition and summed before the
best split is chosen, so the result does not depend on how rows are spread
over partitions beyond floating point summation order.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Final

import numpy as np
import polars as pl
from joblib import Parallel, delayed
from loguru import logger
from sklearn.metrics import accuracy_score, mean_squared_error, r2_score

from dtkit.decision_tree.models import (
    ClassificationRule,
    DecisionTreeModel,
    DecisionTreeTask,
    FeatureField,
    Impurity,
    LeafNode,
    Predicate,
    RegressionRule,
    SplitNode,
    TrainingSummary,
    TreeNode,
    split_predicates,
)
from dtkit.decision_tree.prediction import predict_matrix
from dtkit.decision_tree.preprocessing import FeatureEncoder, encode_labels
from dtkit.exceptions import InvalidTrainingData

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

DEFAULT_MIN_INSTANCES_PER_NODE: Final[int] = 1
DEFAULT_MIN_INFO_GAIN: Final[float] = 0.0
DEFAULT_NUM_PARTITIONS: Final[int] = 1
MAX_SUPPORTED_DEPTH: Final[int] = 30

_IMPORTANCE_DECIMAL_PLACES: int = 4


# ---------------------------------------------------------------------------
# Public interface -- Binning
# ---------------------------------------------------------------------------


def compute_thresholds(values: np.ndarray, max_bins: int) -> np.ndarray:
    """Compute the candidate split thresholds of a continuous feature.

    With at most `max_bins` distinct values every midpoint between consecutive
    distinct values is a candidate. Otherwise the `i / max_bins` quantiles
    (lower interpolation) are used as cut values, deduplicated, and each
    threshold is the midpoint between a cut value and the next distinct
    value. `NaN` values are ignored.

    Args:
        values (np.ndarray): 1-D float64 feature column.
        max_bins (int): Maximum number of bins; at most `max_bins - 1`
            thresholds are returned.

    Returns:
        np.ndarray: Strictly increasing thresholds; empty when the feature has
            fewer than two distinct values.

    Examples:
        >>> compute_thresholds(np.array([1.0, 3.0, 3.0, 7.0]), max_bins=32)
        array([2., 5.])
    """
    finite = values[~np.isnan(values)]
    distinct = np.unique(finite)
    if len(distinct) < 2:
        return np.empty(0, dtype=np.float64)
    if len(distinct) <= max_bins:
        return (distinct[:-1] + distinct[1:]) / 2.0

    cuts = np.unique(np.quantile(finite, np.arange(1, max_bins) / max_bins, method="lower"))
    cuts = cuts[cuts < distinct[-1]]
    following = distinct[np.searchsorted(distinct, cuts, side="right")]
    return (cuts + following) / 2.0


@dataclass(frozen=True)
class BinnedFeatures:
    """Feature matrix discretized into per-feature bin indices.

    Continuous feature values fall into bin `j` when they lie in
    `(thresholds[j - 1], thresholds[j]]`; `NaN` falls into the last bin.
    Categorical features use the category code as bin and put `NaN` in the
    extra bin `len(categories)`.

    Attributes:
        bins (np.ndarray): int64 matrix of shape `(n_rows, n_features)`.
        n_bins (tuple[int, ...]): Number of bins per feature.
        thresholds (tuple[np.ndarray | None, ...]): Thresholds per continuous
            feature; `None` for categorical features.
    """

    bins: np.ndarray
    n_bins: tuple[int, ...]
    thresholds: tuple[np.ndarray | None, ...]

    @classmethod
    def from_matrix(
        cls,
        matrix: np.ndarray,
        features: Sequence[FeatureField],
        max_bins: int,
    ) -> BinnedFeatures:
        """Bin an encoded feature matrix.

        Args:
            matrix (np.ndarray): 2-D float64 encoded feature matrix.
            features (Sequence[FeatureField]): The fitted feature spec,
                parallel to the matrix columns.
            max_bins (int): Maximum number of bins per continuous feature.

        Returns:
            BinnedFeatures: The binned representation.
        """
        columns: list[np.ndarray] = []
        n_bins: list[int] = []
        thresholds: list[np.ndarray | None] = []
        for index, feature in enumerate(features):
            values = matrix[:, index]
            if feature.kind == "categorical":
                n_categories = len(feature.categories or [])
                columns.append(np.where(np.isnan(values), n_categories, np.nan_to_num(values)).astype(np.int64))
                n_bins.append(n_categories + 1)
                thresholds.append(None)
            else:
                cuts = compute_thresholds(values, max_bins)
                columns.append(np.searchsorted(cuts, values, side="left").astype(np.int64))
                n_bins.append(len(cuts) + 1)
                thresholds.append(cuts)
        bins = np.column_stack(columns) if columns else np.empty((len(matrix), 0), dtype=np.int64)
        return cls(bins=bins, n_bins=tuple(n_bins), thresholds=tuple(thresholds))


# ---------------------------------------------------------------------------
# Public interface -- Impurity
# ---------------------------------------------------------------------------


def impurity_from_statistics(statistics: np.ndarray, impurity: Impurity) -> np.ndarray:
    """Compute impurity from sufficient statistics along the last axis.

    For `"variance"` the statistics are `(count, sum, sum_of_squares)`; for
    `"gini"` and `"entropy"` they are per-class counts. Empty groups have
    impurity 0.

    Args:
        statistics (np.ndarray): Array of shape `(..., n_statistics)`.
        impurity (Impurity): The impurity measure.

    Returns:
        np.ndarray: Non-negative impurity with shape `statistics.shape[:-1]`.
    """
    if impurity == "variance":
        count = statistics[..., 0]
        with np.errstate(divide="ignore", invalid="ignore"):
            mean = statistics[..., 1] / count
            variance = statistics[..., 2] / count - mean * mean
        return np.where(count > 0, np.maximum(variance, 0.0), 0.0)

    total = statistics.sum(axis=-1)
    with np.errstate(divide="ignore", invalid="ignore"):
        proportions = np.where(total[..., None] > 0, statistics / total[..., None], 0.0)
    if impurity == "gini":
        values = 1.0 - (proportions * proportions).sum(axis=-1)
    else:
        logs = np.log2(np.where(proportions > 0, proportions, 1.0))
        values = -(proportions * logs).sum(axis=-1)
    return np.where(total > 0, np.maximum(values, 0.0), 0.0)


# ---------------------------------------------------------------------------
# Public interface -- Tree building
# ---------------------------------------------------------------------------


def build_tree(
    matrix: np.ndarray,
    labels: np.ndarray,
    *,
    features: Sequence[FeatureField],
    task_type: DecisionTreeTask,
    impurity: Impurity,
    max_depth: int,
    max_bins: int,
    classes: Sequence[float] | Sequence[str] | None = None,
    min_instances_per_node: int = DEFAULT_MIN_INSTANCES_PER_NODE,
    min_info_gain: float = DEFAULT_MIN_INFO_GAIN,
    num_partitions: int = DEFAULT_NUM_PARTITIONS,
    n_jobs: int = 1,
) -> TreeNode:
    """Grow a decision tree on an encoded feature matrix.

    A node becomes a leaf when it reaches `max_depth`, its labels are all
    equal, it holds fewer than `2 * min_instances_per_node` rows, no split
    keeps `min_instances_per_node` rows on both sides, or the best gain does
    not exceed `min_info_gain`. Among equally good splits the lowest feature
    index wins, then the first candidate in enumeration order.

    Args:
        matrix (np.ndarray): 2-D float64 encoded feature matrix.
        labels (np.ndarray): float64 labels (regression) or int64 class
            indices into `classes` (classification).
        features (Sequence[FeatureField]): Fitted feature spec parallel to
            the matrix columns.
        task_type (DecisionTreeTask): `"classification"` or `"regression"`.
        impurity (Impurity): `"variance"` for regression, `"gini"` or
            `"entropy"` for classification.
        max_depth (int): Maximum depth; the root has depth 0.
        max_bins (int): Maximum number of bins per continuous feature.
        classes (Sequence[float] | Sequence[str] | None): Class labels,
            required for classification.
        min_instances_per_node (int): Minimum rows in each child of a split.
        min_info_gain (float): A split must achieve a strictly larger gain.
        num_partitions (int): Number of row partitions the statistics are
            computed over before being summed.
        n_jobs (int): Number of threads evaluating partitions; `1` runs
            sequentially.

    Returns:
        TreeNode: The root of the grown tree.

    Raises:
        InvalidTrainingData: If there are no rows or no features.
        ValueError: If a hyperparameter is out of range or does not match the
            task type.
    """
    _validate_build_arguments(
        matrix,
        labels,
        features=features,
        task_type=task_type,
        impurity=impurity,
        max_depth=max_depth,
        max_bins=max_bins,
        classes=classes,
        min_instances_per_node=min_instances_per_node,
        min_info_gain=min_info_gain,
        num_partitions=num_partitions,
    )
    binned = BinnedFeatures.from_matrix(matrix, features, max_bins)
    with Parallel(n_jobs=n_jobs, backend="threading") as parallel:
        builder = _TreeBuilder(
            binned=binned,
            labels=labels,
            features=features,
            task_type=task_type,
            impurity=impurity,
            max_depth=max_depth,
            max_bins=max_bins,
            classes=list(classes) if classes is not None else None,
            min_instances_per_node=min_instances_per_node,
            min_info_gain=min_info_gain,
            num_partitions=num_partitions,
            parallel=parallel,
        )
        return builder.grow(np.arange(len(labels), dtype=np.int64), depth=0)


# ---------------------------------------------------------------------------
# Public interface -- Rule extraction
# ---------------------------------------------------------------------------


def extract_rules(model: DecisionTreeModel) -> list[ClassificationRule] | list[RegressionRule]:
    """Extract one human-readable rule per leaf of a trained model.

    Predicates are expressed in raw-value terms: categorical codes are decoded
    back to the original category values through the model's feature spec.

    Args:
        model (DecisionTreeModel): The trained model.

    Returns:
        list[ClassificationRule] | list[RegressionRule]: One rule per leaf,
            ordered left to right.
    """
    rules: list[ClassificationRule] | list[RegressionRule] = []
    _walk_tree(model, model.root, path_predicates=[], rules=rules)
    return rules


# ---------------------------------------------------------------------------
# Public interface -- Metrics and feature importance
# ---------------------------------------------------------------------------


def compute_metrics(
    actual: Sequence[float | str],
    predicted: Sequence[float | str],
    *,
    task_type: DecisionTreeTask,
) -> dict[str, float]:
    """Compute training-set evaluation metrics.

    Args:
        actual (Sequence[float | str]): True labels.
        predicted (Sequence[float | str]): Predicted labels, parallel to `actual`.
        task_type (DecisionTreeTask): Whether the labels are classes or values.

    Returns:
        dict[str, float]: For classification: `{"accuracy": <float>}`.
            For regression: `{"rmse": <float>}` plus `"r_squared"` when there
            are at least two samples.
    """
    if task_type == "classification":
        return {"accuracy": float(accuracy_score(actual, predicted))}
    metrics = {"rmse": float(np.sqrt(mean_squared_error(actual, predicted)))}
    if len(actual) >= 2:
        metrics["r_squared"] = float(r2_score(actual, predicted))
    return metrics


def compute_feature_importance(root: TreeNode, feature_names: Sequence[str]) -> dict[str, float]:
    """Compute gain-weighted feature importance from a tree.

    Each split contributes `gain * samples` to its feature. Only features used
    in at least one split with positive gain are included, and importances
    are normalized to sum to 1.0.

    Args:
        root (TreeNode): The root of the tree.
        feature_names (Sequence[str]): Ordered feature names.

    Returns:
        dict[str, float]: Mapping of feature name to rounded importance,
            sorted in descending order of importance.
    """
    totals = dict.fromkeys(feature_names, 0.0)
    stack: list[TreeNode] = [root]
    while stack:
        node = stack.pop()
        if isinstance(node, SplitNode):
            totals[node.feature] += node.gain * node.samples
            stack.extend([node.left, node.right])

    grand_total = sum(totals.values())
    if grand_total <= 0.0:
        return {}
    paired = [
        (name, round(total / grand_total, _IMPORTANCE_DECIMAL_PLACES)) for name, total in totals.items() if total > 0.0
    ]
    paired.sort(key=lambda item: item[1], reverse=True)
    # Absorb rounding error in the last entry so the values sum to exactly 1.0.
    others_sum = sum(importance for _, importance in paired[:-1])
    paired[-1] = (paired[-1][0], round(1.0 - others_sum, _IMPORTANCE_DECIMAL_PLACES))
    return dict(paired)


# ---------------------------------------------------------------------------
# Public interface -- Model assembly
# ---------------------------------------------------------------------------


def fit_model(
    frame: pl.DataFrame,
    *,
    label_field: str,
    feature_names: Sequence[str],
    cardinality_mapping: Mapping[str, int] | None = None,
    task_type: DecisionTreeTask = "regression",
    impurity: Impurity | None = None,
    max_depth: int,
    max_bins: int,
    min_instances_per_node: int = DEFAULT_MIN_INSTANCES_PER_NODE,
    min_info_gain: float = DEFAULT_MIN_INFO_GAIN,
    num_partitions: int = DEFAULT_NUM_PARTITIONS,
    n_jobs: int = 1,
) -> DecisionTreeModel:
    """Encode labeled records, grow a tree, and assemble the trained model.

    Args:
        frame (pl.DataFrame): Training records, one per row.
        label_field (str): Name of the label column.
        feature_names (Sequence[str]): Ordered feature fields.
        cardinality_mapping (Mapping[str, int] | None): Declared cardinality
            of each categorical feature. Entries for fields that are not
            features are ignored.
        task_type (DecisionTreeTask): `"regression"` (default) or `"classification"`.
        impurity (Impurity | None): Impurity measure; defaults to
            `"variance"` for regression and `"gini"` for classification.
        max_depth (int): Maximum tree depth.
        max_bins (int): Maximum number of bins per continuous feature.
        min_instances_per_node (int): Minimum rows in each child of a split.
        min_info_gain (float): Minimum gain a split must exceed.
        num_partitions (int): Number of row partitions for statistics.
        n_jobs (int): Number of threads evaluating partitions.

    Returns:
        DecisionTreeModel: The trained model with its training summary.

    Raises:
        InvalidTrainingData: If there are no records, the label field is
            absent or unusable, or no usable feature is selected.
        FeatureCardinalityExceeded: If a categorical feature has more distinct
            values than declared.
    """
    if frame.height == 0:
        raise InvalidTrainingData("no training records were provided")
    if label_field not in frame.columns:
        raise InvalidTrainingData("label field is absent from the training records", field=label_field)
    if label_field in feature_names:
        raise InvalidTrainingData("label field cannot also be a feature", field=label_field)

    resolved_impurity = impurity or _default_impurity(task_type)
    mapping = {name: card for name, card in (cardinality_mapping or {}).items() if name in feature_names}
    for name, cardinality in mapping.items():
        if cardinality > max_bins:
            raise InvalidTrainingData(f"cardinality {cardinality} exceeds max_bins={max_bins}", field=name)

    encoder = FeatureEncoder.fit(frame, feature_names, mapping)
    matrix = encoder.encode_frame(frame)
    labels, classes = encode_labels(frame[label_field], task_type)
    logger.info(
        "Training data encoded",
        rows=frame.height,
        features=encoder.width,
        label_field=label_field,
        task_type=task_type,
    )

    root = build_tree(
        matrix,
        labels,
        features=encoder.features,
        task_type=task_type,
        impurity=resolved_impurity,
        max_depth=max_depth,
        max_bins=max_bins,
        classes=classes,
        min_instances_per_node=min_instances_per_node,
        min_info_gain=min_info_gain,
        num_partitions=num_partitions,
        n_jobs=n_jobs,
    )

    actual: list[float | str] = [classes[i] for i in labels] if classes is not None else labels.tolist()
    depth, leaf_count, node_count = _tree_shape(root)
    summary = TrainingSummary(
        sample_count=frame.height,
        depth=depth,
        leaf_count=leaf_count,
        node_count=node_count,
        feature_importance=compute_feature_importance(root, encoder.feature_names),
        metrics=compute_metrics(actual, predict_matrix(root, matrix), task_type=task_type),
    )
    logger.info("Decision tree grown", depth=depth, leaves=leaf_count, metrics=summary.metrics)

    return DecisionTreeModel(
        label_field=label_field,
        task_type=task_type,
        impurity=resolved_impurity,
        features=list(encoder.features),
        classes=classes,
        max_depth=max_depth,
        max_bins=max_bins,
        min_instances_per_node=min_instances_per_node,
        min_info_gain=min_info_gain,
        root=root,
        summary=summary,
    )


# ---------------------------------------------------------------------------
# Private helpers -- Tree builder
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _SplitCandidate:
    """The best split found for a node."""

    feature_index: int
    gain: float
    threshold: float | None
    categories: list[int] | None
    left_bins: np.ndarray


class _TreeBuilder:
    """Grows a tree recursively from binned features and encoded labels."""

    def __init__(
        self,
        *,
        binned: BinnedFeatures,
        labels: np.ndarray,
        features: Sequence[FeatureField],
        task_type: DecisionTreeTask,
        impurity: Impurity,
        max_depth: int,
        max_bins: int,
        classes: list[float] | list[str] | None,
        min_instances_per_node: int,
        min_info_gain: float,
        num_partitions: int,
        parallel: Parallel,
    ) -> None:
        self.binned = binned
        self.labels = labels
        # Variance statistics use labels shifted by the first label; raw sums of
        # squares lose all precision once labels reach about 1e8.
        self.offset = float(labels[0]) if task_type == "regression" else 0.0
        self.shifted = labels - self.offset if task_type == "regression" else labels
        self.features = features
        self.task_type = task_type
        self.impurity = impurity
        self.max_depth = max_depth
        self.max_bins = max_bins
        self.classes = classes
        self.n_classes = len(classes) if classes is not None else 0
        self.min_instances_per_node = min_instances_per_node
        self.min_info_gain = min_info_gain
        self.num_partitions = num_partitions
        self.parallel = parallel

    def grow(self, rows: np.ndarray, *, depth: int) -> TreeNode:
        """Grow the subtree for `rows` at `depth`.

        Args:
            rows (np.ndarray): Indices of the training rows reaching this node.
            depth (int): Depth of this node.

        Returns:
            TreeNode: The subtree root.
        """
        statistics = self._node_statistics(rows)
        # Every row lands in exactly one bin of each feature.
        totals = statistics[0].sum(axis=0)
        node_impurity = float(impurity_from_statistics(totals, self.impurity))
        n_rows = len(rows)

        if depth >= self.max_depth or self._is_pure(rows) or n_rows < 2 * self.min_instances_per_node:
            return self._leaf(totals, n_rows, node_impurity)

        best = self._best_split(statistics, totals, node_impurity)
        if best is None or best.gain <= self.min_info_gain:
            return self._leaf(totals, n_rows, node_impurity)

        goes_left = np.isin(self.binned.bins[rows, best.feature_index], best.left_bins)
        feature = self.features[best.feature_index]
        logger.debug(
            "Split selected",
            depth=depth,
            feature=feature.name,
            gain=best.gain,
            left_rows=int(goes_left.sum()),
            right_rows=int((~goes_left).sum()),
        )
        return SplitNode(
            feature_index=best.feature_index,
            feature=feature.name,
            threshold=best.threshold,
            categories=best.categories,
            left=self.grow(rows[goes_left], depth=depth + 1),
            right=self.grow(rows[~goes_left], depth=depth + 1),
            samples=n_rows,
            impurity=node_impurity,
            gain=best.gain,
        )

    # -- Statistics ---------------------------------------------------------

    def _node_statistics(self, rows: np.ndarray) -> list[np.ndarray]:
        """Sum per-partition bin statistics of every feature for `rows`.

        Args:
            rows (np.ndarray): Row indices of the node.

        Returns:
            list[np.ndarray]: One `(n_bins, n_statistics)` array per feature.
        """
        partitions = np.array_split(rows, self.num_partitions)
        partials = self.parallel(delayed(self._partition_statistics)(part) for part in partitions)
        return [np.sum(per_feature, axis=0) for per_feature in zip(*partials, strict=True)]

    def _partition_statistics(self, rows: np.ndarray) -> list[np.ndarray]:
        """Compute bin statistics of every feature for one partition.

        Args:
            rows (np.ndarray): Row indices of the partition.

        Returns:
            list[np.ndarray]: One `(n_bins, n_statistics)` array per feature.
        """
        bins = self.binned.bins[rows]
        labels = self.shifted[rows]
        return [
            self._bin_statistics(bins[:, index], labels, n_bins) for index, n_bins in enumerate(self.binned.n_bins)
        ]

    def _bin_statistics(self, bins: np.ndarray, labels: np.ndarray, n_bins: int) -> np.ndarray:
        """Compute the sufficient statistics of `labels` grouped by `bins`.

        Args:
            bins (np.ndarray): Bin index per row.
            labels (np.ndarray): Encoded label per row.
            n_bins (int): Number of bins.

        Returns:
            np.ndarray: `(count, sum, sum_of_squares)` rows for regression or
                class-count rows for classification, shape `(n_bins, n_statistics)`.
        """
        if self.task_type == "regression":
            return np.column_stack([
                np.bincount(bins, minlength=n_bins).astype(np.float64),
                np.bincount(bins, weights=labels, minlength=n_bins),
                np.bincount(bins, weights=labels * labels, minlength=n_bins),
            ])
        flat = np.bincount(bins * self.n_classes + labels, minlength=n_bins * self.n_classes)
        return flat.reshape(n_bins, self.n_classes).astype(np.float64)

    def _counts(self, statistics: np.ndarray) -> np.ndarray:
        """Return row counts from statistics along the last axis."""
        return statistics[..., 0] if self.task_type == "regression" else statistics.sum(axis=-1)

    def _is_pure(self, rows: np.ndarray) -> bool:
        """Return `True` when every label at the node is equal."""
        node_labels = self.labels[rows]
        return bool(np.all(node_labels == node_labels[0]))

    # -- Leaves -------------------------------------------------------------

    def _leaf(self, totals: np.ndarray, n_rows: int, node_impurity: float) -> LeafNode:
        """Build a leaf predicting the mean label or the majority class.

        Args:
            totals (np.ndarray): Sufficient statistics of the node.
            n_rows (int): Number of rows at the node.
            node_impurity (float): Impurity of the node.

        Returns:
            LeafNode: The leaf.
        """
        if self.task_type == "regression":
            mean = self.offset + float(totals[1] / totals[0])
            return LeafNode(prediction=mean, samples=n_rows, impurity=node_impurity)
        # argmax returns the first maximum, so ties go to the smallest class.
        class_index = int(np.argmax(totals))
        return LeafNode(
            prediction=self.classes[class_index],  # type: ignore[index]
            samples=n_rows,
            impurity=node_impurity,
            class_counts=[int(count) for count in totals],
        )

    # -- Split search -------------------------------------------------------

    def _best_split(
        self,
        statistics: list[np.ndarray],
        totals: np.ndarray,
        node_impurity: float,
    ) -> _SplitCandidate | None:
        """Find the split with the largest gain over all features.

        Args:
            statistics (list[np.ndarray]): Per-feature bin statistics of the node.
            totals (np.ndarray): Sufficient statistics of the node.
            node_impurity (float): Impurity of the node.

        Returns:
            _SplitCandidate | None: The best valid split, or `None` if no
                candidate keeps enough rows on both sides.
        """
        best: _SplitCandidate | None = None
        for index, feature in enumerate(self.features):
            if feature.kind == "categorical":
                candidate = self._best_categorical_split(index, statistics[index], totals, node_impurity)
            else:
                candidate = self._best_continuous_split(index, statistics[index], totals, node_impurity)
            if candidate is not None and (best is None or candidate.gain > best.gain):
                best = candidate
        return best

    def _best_continuous_split(
        self,
        index: int,
        statistics: np.ndarray,
        totals: np.ndarray,
        node_impurity: float,
    ) -> _SplitCandidate | None:
        """Evaluate `x <= threshold` for every threshold of a continuous feature.

        Args:
            index (int): Feature index.
            statistics (np.ndarray): Bin statistics of the feature at the node.
            totals (np.ndarray): Sufficient statistics of the node.
            node_impurity (float): Impurity of the node.

        Returns:
            _SplitCandidate | None: The best threshold split of the feature.
        """
        thresholds = self.binned.thresholds[index]
        if thresholds is None or len(thresholds) == 0:
            return None
        left = np.cumsum(statistics, axis=0)[: len(thresholds)]
        gains = self._candidate_gains(left, totals, node_impurity)
        position = int(np.argmax(gains))
        if not np.isfinite(gains[position]):
            return None
        return _SplitCandidate(
            feature_index=index,
            gain=float(gains[position]),
            threshold=float(thresholds[position]),
            categories=None,
            left_bins=np.arange(position + 1),
        )

    def _best_categorical_split(
        self,
        index: int,
        statistics: np.ndarray,
        totals: np.ndarray,
        node_impurity: float,
    ) -> _SplitCandidate | None:
        """Evaluate `code in subset` splits of a categorical feature.

        Multiclass nodes enumerate every subset containing the lowest present
        code when there are few enough of them; otherwise the present
        categories are ordered by centroid and every prefix is a candidate.
        Rows with a missing category always go right.

        Args:
            index (int): Feature index.
            statistics (np.ndarray): Bin statistics of the feature at the node;
                the last bin holds missing values.
            totals (np.ndarray): Sufficient statistics of the node.
            node_impurity (float): Impurity of the node.

        Returns:
            _SplitCandidate | None: The best subset split of the feature.
        """
        category_statistics = statistics[:-1]
        present = np.flatnonzero(self._counts(category_statistics) > 0)
        has_missing = bool(self._counts(statistics[-1]) > 0)
        if len(present) == 0 or (len(present) == 1 and not has_missing):
            return None

        if self.n_classes > 2 and 2 ** (len(present) - 1) - 1 <= self.max_bins:
            subsets = _subsets_with_first(present.tolist(), include_full=has_missing)
        else:
            order = self._order_by_centroid(present, category_statistics)
            prefix_count = len(order) if has_missing else len(order) - 1
            subsets = [sorted(order[: size + 1]) for size in range(prefix_count)]

        left = np.stack([category_statistics[subset].sum(axis=0) for subset in subsets])
        gains = self._candidate_gains(left, totals, node_impurity)
        position = int(np.argmax(gains))
        if not np.isfinite(gains[position]):
            return None
        return _SplitCandidate(
            feature_index=index,
            gain=float(gains[position]),
            threshold=None,
            categories=subsets[position],
            left_bins=np.asarray(subsets[position], dtype=np.int64),
        )

    def _order_by_centroid(self, present: np.ndarray, statistics: np.ndarray) -> list[int]:
        """Order category codes by mean label, positive-class rate, or impurity.

        Args:
            present (np.ndarray): Codes observed at the node.
            statistics (np.ndarray): Per-category statistics.

        Returns:
            list[int]: Codes in ascending centroid order, ties by code.
        """
        selected = statistics[present]
        counts = self._counts(selected)
        if self.task_type == "regression" or self.n_classes == 2:
            centroids = selected[:, 1] / counts
        else:
            centroids = impurity_from_statistics(selected, self.impurity)
        return [int(code) for _, code in sorted(zip(centroids.tolist(), present.tolist(), strict=True))]

    def _candidate_gains(self, left: np.ndarray, totals: np.ndarray, node_impurity: float) -> np.ndarray:
        """Compute the gain of each candidate; invalid candidates get `-inf`.

        Args:
            left (np.ndarray): Left-child statistics per candidate, shape
                `(n_candidates, n_statistics)`.
            totals (np.ndarray): Sufficient statistics of the node.
            node_impurity (float): Impurity of the node.

        Returns:
            np.ndarray: Gain per candidate.
        """
        right = totals - left
        n_left = self._counts(left)
        n_right = self._counts(right)
        n_total = n_left + n_right
        weighted_children = (
            n_left / n_total * impurity_from_statistics(left, self.impurity)
            + n_right / n_total * impurity_from_statistics(right, self.impurity)
        )
        valid = (n_left >= self.min_instances_per_node) & (n_right >= self.min_instances_per_node)
        return np.where(valid, node_impurity - weighted_children, -np.inf)


# ---------------------------------------------------------------------------
# Private helpers -- Validation and tree inspection
# ---------------------------------------------------------------------------


def _default_impurity(task_type: DecisionTreeTask) -> Impurity:
    """Return the default impurity for a task type."""
    return "variance" if task_type == "regression" else "gini"


def _validate_build_arguments(
    matrix: np.ndarray,
    labels: np.ndarray,
    *,
    features: Sequence[FeatureField],
    task_type: DecisionTreeTask,
    impurity: Impurity,
    max_depth: int,
    max_bins: int,
    classes: Sequence[float] | Sequence[str] | None,
    min_instances_per_node: int,
    min_info_gain: float,
    num_partitions: int,
) -> None:
    """Raise if the inputs or hyperparameters of `build_tree` are unusable.

    Raises:
        InvalidTrainingData: If there are no rows or no features.
        ValueError: If a hyperparameter is out of range or does not match the
            task type.
    """
    if len(labels) == 0:
        raise InvalidTrainingData("no training records were provided")
    if matrix.ndim != 2 or matrix.shape[1] == 0 or len(features) != matrix.shape[1]:
        raise InvalidTrainingData("the feature matrix has no feature columns")
    if matrix.shape[0] != len(labels):
        raise ValueError(f"matrix has {matrix.shape[0]} rows but {len(labels)} labels were given")
    if not 1 <= max_depth <= MAX_SUPPORTED_DEPTH:
        raise ValueError(f"max_depth must be between 1 and {MAX_SUPPORTED_DEPTH}, got {max_depth}")
    if max_bins < 2:
        raise ValueError(f"max_bins must be at least 2, got {max_bins}")
    if min_instances_per_node < 1:
        raise ValueError(f"min_instances_per_node must be at least 1, got {min_instances_per_node}")
    if min_info_gain < 0.0:
        raise ValueError(f"min_info_gain must be non-negative, got {min_info_gain}")
    if num_partitions < 1:
        raise ValueError(f"num_partitions must be at least 1, got {num_partitions}")
    if (task_type == "regression") != (impurity == "variance"):
        raise ValueError(f"impurity '{impurity}' cannot be used for {task_type}")
    if task_type == "classification" and not classes:
        raise ValueError("classification requires the list of classes")


def _tree_shape(root: TreeNode) -> tuple[int, int, int]:
    """Return `(depth, leaf_count, node_count)` of a tree."""
    depth = leaf_count = node_count = 0
    stack: list[tuple[TreeNode, int]] = [(root, 0)]
    while stack:
        node, node_depth = stack.pop()
        node_count += 1
        depth = max(depth, node_depth)
        if isinstance(node, LeafNode):
            leaf_count += 1
        else:
            stack.extend([(node.left, node_depth + 1), (node.right, node_depth + 1)])
    return depth, leaf_count, node_count


def _subsets_with_first(codes: list[int], *, include_full: bool) -> list[list[int]]:
    """Enumerate subsets of `codes` that contain `codes[0]`.

    Args:
        codes (list[int]): Sorted category codes.
        include_full (bool): Whether the subset of all codes is a candidate.

    Returns:
        list[list[int]]: Sorted subsets, in increasing bitmask order of the
            remaining codes.
    """
    first, rest = codes[0], codes[1:]
    subsets: list[list[int]] = []
    for mask in range(2 ** len(rest)):
        subset = [first, *(code for bit, code in enumerate(rest) if mask >> bit & 1)]
        if len(subset) < len(codes) or include_full:
            subsets.append(subset)
    return subsets


# ---------------------------------------------------------------------------
# Private helpers -- Rule extraction
# ---------------------------------------------------------------------------


def _walk_tree(
    model: DecisionTreeModel,
    node: TreeNode,
    *,
    path_predicates: list[Predicate],
    rules: list[ClassificationRule] | list[RegressionRule],
) -> None:
    """Recursively walk a tree node and accumulate leaf rules.

    Args:
        model (DecisionTreeModel): The model owning the tree.
        node (TreeNode): The current node.
        path_predicates (list[Predicate]): Predicates from the root to `node`.
        rules (list[ClassificationRule] | list[RegressionRule]): Accumulator
            list; leaf rules are appended in place.
    """
    if isinstance(node, LeafNode):
        rules.append(_build_leaf_rule(model, node, path_predicates))  # type: ignore[arg-type]
        return
    left_predicate, right_predicate = split_predicates(node, model.features[node.feature_index])
    _walk_tree(model, node.left, path_predicates=[*path_predicates, left_predicate], rules=rules)
    _walk_tree(model, node.right, path_predicates=[*path_predicates, right_predicate], rules=rules)


def _build_leaf_rule(
    model: DecisionTreeModel,
    leaf: LeafNode,
    path_predicates: list[Predicate],
) -> ClassificationRule | RegressionRule:
    """Construct the rule describing one leaf.

    Args:
        model (DecisionTreeModel): The model owning the tree.
        leaf (LeafNode): The leaf.
        path_predicates (list[Predicate]): Predicates along the root-to-leaf path.

    Returns:
        ClassificationRule | RegressionRule: The rule of the leaf.
    """
    if model.task_type == "classification":
        class_counts = leaf.class_counts or [leaf.samples]
        return ClassificationRule(
            task_type="classification",
            predicates=path_predicates,
            prediction=leaf.prediction,
            samples=leaf.samples,
            confidence=round(max(class_counts) / leaf.samples, 4),
        )
    return RegressionRule(
        task_type="regression",
        predicates=path_predicates,
        prediction=round(float(leaf.prediction), 4),
        samples=leaf.samples,
        std=round(float(np.sqrt(leaf.impurity)), 4),
    )
