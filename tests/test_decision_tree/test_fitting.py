"""Tests for decision tree fitting: binning, impurity, tree growth, rules, metrics and model assembly."""

from __future__ import annotations

import math

import numpy as np
import polars as pl
import pytest
from joblib import Parallel
from pytest_check import check

from dtkit.decision_tree.fitting import (
    BinnedFeatures,
    _tree_shape,
    _TreeBuilder,
    build_tree,
    compute_feature_importance,
    compute_metrics,
    compute_thresholds,
    extract_rules,
    fit_model,
    impurity_from_statistics,
)
from dtkit.decision_tree.models import (
    DecisionTreeModel,
    DecisionTreeTask,
    FeatureField,
    Impurity,
    LeafNode,
    RegressionRule,
    SplitNode,
    TreeNode,
)
from dtkit.exceptions import FeatureCardinalityExceeded, InvalidTrainingData

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _continuous(*names: str) -> list[FeatureField]:
    return [FeatureField(name=name, kind="continuous") for name in names]


def _categorical(name: str, n_categories: int) -> FeatureField:
    return FeatureField(
        name=name,
        kind="categorical",
        cardinality=n_categories,
        categories=[f"c{code}" for code in range(n_categories)],
    )


def _column(*values: float) -> np.ndarray:
    return np.array(values, dtype=np.float64).reshape(-1, 1)


def _random_problem(seed: int = 0) -> tuple[np.ndarray, np.ndarray]:
    """Integer-valued features and labels, so statistic sums are exact in any order."""
    rng = np.random.default_rng(seed)
    matrix = rng.integers(0, 20, size=(200, 3)).astype(np.float64)
    labels = rng.integers(0, 5, size=200).astype(np.float64)
    return matrix, labels


def _leaf_rows(node: TreeNode, matrix: np.ndarray, rows: np.ndarray, depth: int = 0) -> list[tuple[int, np.ndarray]]:
    """Route training rows through the tree and collect `(depth, rows)` per leaf."""
    if isinstance(node, LeafNode):
        return [(depth, rows)]
    goes_left = np.array([node.goes_left(value) for value in matrix[rows, node.feature_index]], dtype=bool)
    return [
        *_leaf_rows(node.left, matrix, rows[goes_left], depth + 1),
        *_leaf_rows(node.right, matrix, rows[~goes_left], depth + 1),
    ]


# ---------------------------------------------------------------------------
# Binning
# ---------------------------------------------------------------------------


class TestComputeThresholds:
    """Tests for compute_thresholds."""

    def test_midpoints_when_few_distinct_values(self) -> None:
        """With few distinct values every midpoint is a threshold."""
        result = compute_thresholds(np.array([1.0, 3.0, 3.0, 7.0]), max_bins=32)
        assert result.tolist() == [2.0, 5.0]

    def test_nan_is_ignored(self) -> None:
        """Missing values do not produce thresholds."""
        result = compute_thresholds(np.array([np.nan, 1.0, 2.0]), max_bins=32)
        assert result.tolist() == [1.5]

    def test_constant_column_has_no_thresholds(self) -> None:
        """A feature with a single distinct value cannot be split."""
        result = compute_thresholds(np.array([4.0, 4.0, np.nan]), max_bins=32)
        assert len(result) == 0

    def test_quantile_cuts_when_many_distinct_values(self) -> None:
        """With more distinct values than bins, lower quantiles become cut points."""
        # Arrange
        values = np.arange(10, dtype=np.float64)

        # Act
        result = compute_thresholds(values, max_bins=4)

        # Assert
        assert result.tolist() == [2.5, 4.5, 6.5]

    def test_at_most_max_bins_minus_one_thresholds(self) -> None:
        """The number of thresholds is bounded by max_bins - 1."""
        # Arrange
        values = np.random.default_rng(1).normal(size=1_000)

        # Act
        result = compute_thresholds(values, max_bins=16)

        # Assert
        with check:
            assert len(result) <= 15
        with check:
            assert np.all(np.diff(result) > 0)


class TestBinnedFeatures:
    """Tests for BinnedFeatures.from_matrix."""

    def test_continuous_and_categorical_bins(self) -> None:
        """Values fall in threshold bins and categories bin by code; NaN uses the last bin."""
        # Arrange
        matrix = np.array([[1.0, 0.0], [3.0, np.nan], [np.nan, 2.0], [7.0, 1.0]])
        features = [*_continuous("elapsedTime"), _categorical("origin", 3)]

        # Act
        binned = BinnedFeatures.from_matrix(matrix, features, max_bins=32)

        # Assert
        with check:
            assert binned.bins[:, 0].tolist() == [0, 1, 2, 2]
        with check:
            assert binned.bins[:, 1].tolist() == [0, 3, 2, 1]
        with check:
            assert binned.n_bins == (3, 4)
        with check:
            assert binned.thresholds[1] is None


# ---------------------------------------------------------------------------
# Impurity
# ---------------------------------------------------------------------------


class TestImpurityFromStatistics:
    """Tests for impurity_from_statistics."""

    @pytest.mark.parametrize(
        ("statistics", "impurity", "expected"),
        [
            ([2.0, 1.0, 1.0], "variance", 0.25),
            ([4.0, 8.0, 16.0], "variance", 0.0),
            ([0.0, 0.0, 0.0], "variance", 0.0),
            ([1.0, 1.0], "gini", 0.5),
            ([3.0, 0.0], "gini", 0.0),
            ([1.0, 1.0], "entropy", 1.0),
            ([0.0, 0.0], "entropy", 0.0),
        ],
    )
    def test_known_values(self, statistics: list[float], impurity: str, expected: float) -> None:
        """Impurity of simple statistics should match hand-computed values.

        Args:
            statistics (list[float]): Sufficient statistics.
            impurity (str): The impurity measure.
            expected (float): Expected impurity.
        """
        result = impurity_from_statistics(np.array(statistics), impurity)  # type: ignore[arg-type]
        assert float(result) == pytest.approx(expected)

    def test_never_negative(self) -> None:
        """Rounding in the variance formula must not produce a negative impurity."""
        # Arrange - three equal labels of 0.1 can give a tiny negative variance
        statistics = np.array([3.0, 0.1 + 0.1 + 0.1, 0.01 + 0.01 + 0.01])

        # Act
        result = impurity_from_statistics(statistics, "variance")

        # Assert
        assert float(result) >= 0.0


# ---------------------------------------------------------------------------
# Tree building
# ---------------------------------------------------------------------------


class TestBuildTreeRegression:
    """Tests for build_tree on regression problems."""

    def test_single_split_separates_labels(self) -> None:
        """Two groups of labels should be separated at the midpoint."""
        # Act
        root = build_tree(
            _column(1, 2, 3, 4),
            np.array([0.0, 0.0, 1.0, 1.0]),
            features=_continuous("elapsedTime"),
            task_type="regression",
            impurity="variance",
            max_depth=3,
            max_bins=32,
        )

        # Assert
        assert isinstance(root, SplitNode)
        with check:
            assert root.threshold == 2.5
        with check:
            assert root.gain == pytest.approx(0.25)
        with check:
            assert root.left == LeafNode(prediction=0.0, samples=2, impurity=0.0)
        with check:
            assert root.right == LeafNode(prediction=1.0, samples=2, impurity=0.0)

    def test_pure_node_is_a_leaf(self) -> None:
        """Equal labels should never be split."""
        # Act
        root = build_tree(
            _column(1, 2, 3),
            np.array([1.0, 1.0, 1.0]),
            features=_continuous("elapsedTime"),
            task_type="regression",
            impurity="variance",
            max_depth=5,
            max_bins=32,
        )

        # Assert
        assert root == LeafNode(prediction=1.0, samples=3, impurity=0.0)

    def test_min_instances_per_node_limits_children(self) -> None:
        """Each child must keep at least `min_instances_per_node` rows."""
        # Act
        root = build_tree(
            _column(1, 2, 3, 4),
            np.array([0.0, 0.0, 0.0, 1.0]),
            features=_continuous("elapsedTime"),
            task_type="regression",
            impurity="variance",
            max_depth=5,
            max_bins=32,
            min_instances_per_node=2,
        )

        # Assert
        assert isinstance(root, SplitNode)
        with check:
            assert root.threshold == 2.5
        with check:
            assert isinstance(root.right, LeafNode) and root.right.prediction == 0.5

    def test_min_info_gain_prevents_split(self) -> None:
        """A split whose gain does not exceed the minimum should not happen."""
        # Act
        root = build_tree(
            _column(1, 2, 3, 4),
            np.array([0.0, 0.0, 0.0, 1.0]),
            features=_continuous("elapsedTime"),
            task_type="regression",
            impurity="variance",
            max_depth=5,
            max_bins=32,
            min_info_gain=1.0,
        )

        # Assert
        with check:
            assert isinstance(root, LeafNode)
        with check:
            assert root.prediction == 0.25

    def test_depth_never_exceeds_max_depth(self) -> None:
        """The grown tree should respect the depth limit."""
        # Arrange
        matrix, labels = _random_problem()

        # Act
        root = build_tree(
            matrix,
            labels,
            features=_continuous("a", "b", "c"),
            task_type="regression",
            impurity="variance",
            max_depth=2,
            max_bins=8,
        )

        # Assert
        depth, leaves, nodes = _tree_shape(root)
        with check:
            assert depth == 2
        with check:
            assert nodes == 2 * leaves - 1

    def test_ties_go_to_lowest_feature_index(self) -> None:
        """When two features split equally well the first one wins."""
        # Arrange
        matrix = np.column_stack([_column(1, 2, 3, 4), _column(1, 2, 3, 4)])

        # Act
        root = build_tree(
            matrix,
            np.array([0.0, 0.0, 1.0, 1.0]),
            features=_continuous("first", "second"),
            task_type="regression",
            impurity="variance",
            max_depth=1,
            max_bins=32,
        )

        # Assert
        assert isinstance(root, SplitNode)
        with check:
            assert root.feature_index == 0
        with check:
            assert root.feature == "first"

    def test_missing_values_go_right(self) -> None:
        """Rows with a missing value should end up right of every split."""
        # Act
        root = build_tree(
            _column(1, 2, np.nan),
            np.array([0.0, 0.0, 1.0]),
            features=_continuous("elapsedTime"),
            task_type="regression",
            impurity="variance",
            max_depth=3,
            max_bins=32,
        )

        # Assert
        assert isinstance(root, SplitNode)
        with check:
            assert root.threshold == 1.5
        with check:
            assert isinstance(root.right, LeafNode) and root.right.prediction == 0.5

    def test_partitions_and_threads_do_not_change_the_tree(self) -> None:
        """Statistics summed over partitions should grow the same tree."""
        # Arrange
        matrix, labels = _random_problem()
        kwargs = {
            "features": _continuous("a", "b", "c"),
            "task_type": "regression",
            "impurity": "variance",
            "max_depth": 5,
            "max_bins": 8,
        }

        # Act
        single = build_tree(matrix, labels, **kwargs)  # type: ignore[arg-type]
        partitioned = build_tree(matrix, labels, num_partitions=4, n_jobs=2, **kwargs)  # type: ignore[arg-type]

        # Assert
        assert partitioned == single

    def test_large_labels_still_split(self) -> None:
        """Labels around 1e9 should split as cleanly as small ones."""
        # Act
        root = build_tree(
            _column(0, 1),
            np.array([1e9, 1e9 + 1]),
            features=_continuous("departureEpoch"),
            task_type="regression",
            impurity="variance",
            max_depth=3,
            max_bins=32,
        )

        # Assert
        assert isinstance(root, SplitNode)
        with check:
            assert root.threshold == 0.5
        with check:
            assert root.gain == pytest.approx(0.25)
        with check:
            assert root.left == LeafNode(prediction=1e9, samples=1, impurity=0.0)
        with check:
            assert root.right == LeafNode(prediction=1e9 + 1, samples=1, impurity=0.0)


class TestBuildTreeCategorical:
    """Tests for subset splits on categorical features."""

    def test_regression_orders_categories_by_mean(self) -> None:
        """The category with the lowest mean label should be split from the others."""
        # Act
        root = build_tree(
            _column(0, 1, 2, 0, 1, 2),
            np.array([1.0, 0.0, 1.0, 1.0, 0.0, 1.0]),
            features=[_categorical("origin", 3)],
            task_type="regression",
            impurity="variance",
            max_depth=3,
            max_bins=32,
        )

        # Assert
        assert isinstance(root, SplitNode)
        with check:
            assert root.categories == [1]
        with check:
            assert root.threshold is None
        with check:
            assert isinstance(root.left, LeafNode) and root.left.prediction == 0.0

    def test_missing_category_goes_right(self) -> None:
        """With missing values every present category may go left."""
        # Act
        root = build_tree(
            _column(0, 0, np.nan),
            np.array([0.0, 0.0, 1.0]),
            features=[_categorical("origin", 1)],
            task_type="regression",
            impurity="variance",
            max_depth=3,
            max_bins=32,
        )

        # Assert
        assert isinstance(root, SplitNode)
        with check:
            assert root.categories == [0]
        with check:
            assert isinstance(root.right, LeafNode) and root.right.prediction == 1.0

    def test_multiclass_enumerates_subsets_in_order(self) -> None:
        """Among equally good subsets the first enumerated one wins."""
        # Act
        root = build_tree(
            _column(0, 1, 2, 0, 1, 2),
            np.array([0, 1, 2, 0, 1, 2]),
            features=[_categorical("origin", 3)],
            task_type="classification",
            impurity="gini",
            max_depth=3,
            max_bins=32,
            classes=["a", "b", "c"],
        )

        # Assert
        assert isinstance(root, SplitNode)
        with check:
            assert root.categories == [0]
        with check:
            assert root.gain == pytest.approx(1 / 3)


class TestBuildTreeClassification:
    """Tests for build_tree on classification problems."""

    def test_leaves_predict_majority_class(self) -> None:
        """Leaves should predict their class and record class counts."""
        # Act
        root = build_tree(
            _column(1, 2, 3, 4),
            np.array([0, 0, 1, 1]),
            features=_continuous("elapsedTime"),
            task_type="classification",
            impurity="gini",
            max_depth=3,
            max_bins=32,
            classes=["late", "on_time"],
        )

        # Assert
        assert isinstance(root, SplitNode)
        with check:
            assert root.gain == pytest.approx(0.5)
        with check:
            assert root.left == LeafNode(prediction="late", samples=2, impurity=0.0, class_counts=[2, 0])
        with check:
            assert root.right == LeafNode(prediction="on_time", samples=2, impurity=0.0, class_counts=[0, 2])

    def test_tied_leaf_predicts_first_class(self) -> None:
        """A leaf with equal class counts predicts the smallest class."""
        # Act
        root = build_tree(
            _column(1, 1),
            np.array([1, 0]),
            features=_continuous("elapsedTime"),
            task_type="classification",
            impurity="entropy",
            max_depth=3,
            max_bins=32,
            classes=["late", "on_time"],
        )

        # Assert
        with check:
            assert isinstance(root, LeafNode) and root.prediction == "late"
        with check:
            assert root.impurity == pytest.approx(1.0)


class TestLeafStopping:
    """Leaves above the depth limit admit no split worth taking."""

    @pytest.mark.parametrize(
        ("task_type", "impurity", "classes"),
        [("regression", "variance", None), ("classification", "gini", ["a", "b", "c"])],
        ids=["regression", "classification"],
    )
    def test_no_leaf_has_a_better_split(
        self,
        task_type: DecisionTreeTask,
        impurity: Impurity,
        classes: list[str] | None,
    ) -> None:
        """Recomputing the split search at every shallow leaf finds nothing above `min_info_gain`.

        Args:
            task_type (DecisionTreeTask): The task type.
            impurity (Impurity): The impurity measure.
            classes (list[str] | None): Class labels for classification.
        """
        # Arrange
        rng = np.random.default_rng(7)
        matrix = np.column_stack([
            rng.integers(0, 20, size=(120, 2)).astype(np.float64),
            rng.integers(0, 4, size=120).astype(np.float64),
        ])
        labels = rng.integers(0, 3, size=120)
        if task_type == "regression":
            labels = labels.astype(np.float64)
        features = [*_continuous("a", "b"), _categorical("c", 4)]
        settings = {
            "task_type": task_type,
            "impurity": impurity,
            "max_depth": 30,
            "max_bins": 8,
            "min_instances_per_node": 2,
            "min_info_gain": 0.01,
        }

        # Act
        root = build_tree(matrix, labels, features=features, classes=classes, **settings)  # type: ignore[arg-type]

        # Assert
        leaves = _leaf_rows(root, matrix, np.arange(len(labels)))
        with check:
            assert sum(len(rows) for _, rows in leaves) == len(labels)
        with Parallel(n_jobs=1, backend="threading") as parallel:
            builder = _TreeBuilder(
                binned=BinnedFeatures.from_matrix(matrix, features, max_bins=8),
                labels=labels,
                features=features,
                classes=classes,
                num_partitions=1,
                parallel=parallel,
                **settings,  # type: ignore[arg-type]
            )
            for depth, rows in leaves:
                if depth >= 30:
                    continue
                statistics = builder._node_statistics(rows)
                totals = statistics[0].sum(axis=0)
                best = builder._best_split(statistics, totals, float(impurity_from_statistics(totals, impurity)))
                with check:
                    assert best is None or best.gain <= 0.01


class TestBuildTreeValidation:
    """Tests for rejected build_tree arguments."""

    @pytest.mark.parametrize(
        ("overrides", "error"),
        [
            ({"max_depth": 31}, ValueError),
            ({"max_depth": 0}, ValueError),
            ({"max_bins": 1}, ValueError),
            ({"min_instances_per_node": 0}, ValueError),
            ({"min_info_gain": -1.0}, ValueError),
            ({"num_partitions": 0}, ValueError),
            ({"impurity": "gini"}, ValueError),
        ],
    )
    def test_invalid_arguments_raise(self, overrides: dict[str, object], error: type[Exception]) -> None:
        """Out-of-range hyperparameters should raise before any work is done.

        Args:
            overrides (dict[str, object]): Arguments replacing the defaults.
            error (type[Exception]): Expected exception type.
        """
        # Arrange
        kwargs: dict[str, object] = {
            "features": _continuous("elapsedTime"),
            "task_type": "regression",
            "impurity": "variance",
            "max_depth": 3,
            "max_bins": 32,
            **overrides,
        }

        # Act & Assert
        with pytest.raises(error):
            build_tree(_column(1, 2), np.array([0.0, 1.0]), **kwargs)  # type: ignore[arg-type]

    def test_empty_input_raises_invalid_training_data(self) -> None:
        """No rows should be reported as invalid training data."""
        with pytest.raises(InvalidTrainingData):
            build_tree(
                np.empty((0, 1)),
                np.empty(0),
                features=_continuous("elapsedTime"),
                task_type="regression",
                impurity="variance",
                max_depth=3,
                max_bins=32,
            )


# ---------------------------------------------------------------------------
# Metrics and feature importance
# ---------------------------------------------------------------------------


class TestComputeMetrics:
    """Tests for compute_metrics."""

    def test_classification_accuracy(self) -> None:
        """Accuracy is the share of matching labels."""
        result = compute_metrics(["a", "b", "a", "a"], ["a", "b", "b", "a"], task_type="classification")
        assert result == {"accuracy": 0.75}

    def test_regression_metrics(self) -> None:
        """Perfect predictions have zero error and an R-squared of one."""
        result = compute_metrics([0.0, 1.0, 1.0], [0.0, 1.0, 1.0], task_type="regression")
        assert result == {"rmse": 0.0, "r_squared": 1.0}

    def test_single_sample_has_no_r_squared(self) -> None:
        """R-squared is undefined for one sample and is omitted."""
        result = compute_metrics([2.0], [1.0], task_type="regression")
        assert result == {"rmse": 1.0}


class TestComputeFeatureImportance:
    """Tests for compute_feature_importance."""

    def test_weighted_by_gain_and_samples(self) -> None:
        """Importance is proportional to gain times samples."""
        # Arrange
        inner = SplitNode(
            feature_index=1,
            feature="b",
            threshold=1.0,
            left=LeafNode(prediction=0.0, samples=2, impurity=0.0),
            right=LeafNode(prediction=1.0, samples=2, impurity=0.0),
            samples=4,
            impurity=0.25,
            gain=0.25,
        )
        root = SplitNode(
            feature_index=0,
            feature="a",
            threshold=1.0,
            left=inner,
            right=LeafNode(prediction=2.0, samples=6, impurity=0.0),
            samples=10,
            impurity=0.5,
            gain=0.3,
        )

        # Act
        result = compute_feature_importance(root, ["a", "b", "c"])

        # Assert
        with check:
            assert result == {"a": 0.75, "b": 0.25}
        with check:
            assert list(result) == ["a", "b"]

    def test_single_leaf_has_no_importance(self) -> None:
        """A tree without splits has no important features."""
        result = compute_feature_importance(LeafNode(prediction=1.0, samples=3, impurity=0.0), ["a"])
        assert result == {}


# ---------------------------------------------------------------------------
# Model assembly and rules
# ---------------------------------------------------------------------------


class TestFitModel:
    """Tests for fit_model."""

    def test_flight_model_summary(self, flight_model: DecisionTreeModel) -> None:
        """The flight model should fit its six training records exactly.

        Args:
            flight_model (DecisionTreeModel): Trained model.
        """
        with check:
            assert flight_model.summary.sample_count == 6
        with check:
            assert flight_model.summary.metrics == {"rmse": 0.0, "r_squared": 1.0}
        with check:
            assert math.isclose(sum(flight_model.summary.feature_importance.values()), 1.0)
        with check:
            assert flight_model.features[1] == FeatureField(
                name="dofW",
                kind="categorical",
                cardinality=7,
                categories=[2, 3, 5],
            )

    def test_classification_with_string_labels(self) -> None:
        """String labels should become sorted classes and be predicted back."""
        # Arrange
        frame = pl.DataFrame({
            "elapsedTime": [50.0, 60.0, 300.0, 320.0],
            "status": ["on_time", "on_time", "late", "late"],
        })

        # Act
        model = fit_model(
            frame,
            label_field="status",
            feature_names=["elapsedTime"],
            task_type="classification",
            max_depth=3,
            max_bins=32,
        )

        # Assert
        with check:
            assert model.classes == ["late", "on_time"]
        with check:
            assert model.impurity == "gini"
        with check:
            assert model.summary.metrics == {"accuracy": 1.0}

    def test_mapping_for_non_feature_is_ignored(self) -> None:
        """Cardinality entries for fields that are not features should be ignored."""
        # Arrange
        frame = pl.DataFrame({"elapsedTime": [50.0, 300.0], "delayed": [0.0, 1.0]})

        # Act
        model = fit_model(
            frame,
            label_field="delayed",
            feature_names=["elapsedTime"],
            cardinality_mapping={"dofW": 7},
            max_depth=3,
            max_bins=32,
        )

        # Assert
        assert [feature.kind for feature in model.features] == ["continuous"]

    @pytest.mark.parametrize(
        ("kwargs", "match"),
        [
            ({"label_field": "missing"}, "label field is absent"),
            ({"feature_names": ["dofW", "delayed"]}, "cannot also be a feature"),
            ({"max_bins": 4}, "exceeds max_bins=4"),
            ({"feature_names": ["origin"]}, "must be declared categorical"),
            ({"feature_names": ["unknown"]}, "not present"),
        ],
        ids=["missing_label", "label_is_feature", "cardinality_above_bins", "undeclared_string", "unknown_feature"],
    )
    def test_invalid_training_data_raises(self, kwargs: dict[str, object], match: str) -> None:
        """Unusable training inputs should raise InvalidTrainingData.

        Args:
            kwargs (dict[str, object]): Arguments replacing the defaults.
            match (str): Expected fragment of the message.
        """
        # Arrange
        frame = pl.DataFrame({"dofW": [5, 2, 3], "origin": ["JFK", "LAX", "ORD"], "delayed": [1.0, 0.0, 1.0]})
        arguments: dict[str, object] = {
            "label_field": "delayed",
            "feature_names": ["dofW"],
            "cardinality_mapping": {"dofW": 7},
            "max_depth": 3,
            "max_bins": 32,
            **kwargs,
        }

        # Act & Assert
        with pytest.raises(InvalidTrainingData, match=match):
            fit_model(frame, **arguments)  # type: ignore[arg-type]

    def test_cardinality_exceeded(self) -> None:
        """More distinct values than declared should raise FeatureCardinalityExceeded."""
        # Arrange
        frame = pl.DataFrame({"dofW": [5, 2, 3], "delayed": [1.0, 0.0, 1.0]})

        # Act & Assert
        with pytest.raises(FeatureCardinalityExceeded) as exc_info:
            fit_model(
                frame,
                label_field="delayed",
                feature_names=["dofW"],
                cardinality_mapping={"dofW": 2},
                max_depth=3,
                max_bins=32,
            )

        assert exc_info.value.observed_count == 3

    def test_empty_frame_raises(self) -> None:
        """A frame without rows should be rejected."""
        with pytest.raises(InvalidTrainingData, match="no training records"):
            fit_model(pl.DataFrame(), label_field="delayed", feature_names=["dofW"], max_depth=3, max_bins=32)


class TestExtractRules:
    """Tests for extract_rules."""

    def test_one_rule_per_leaf(self, flight_model: DecisionTreeModel) -> None:
        """Every leaf of the flight model should yield a regression rule.

        Args:
            flight_model (DecisionTreeModel): Trained model.
        """
        # Act
        rules = extract_rules(flight_model)

        # Assert
        with check:
            assert len(rules) == flight_model.summary.leaf_count
        with check:
            assert all(isinstance(rule, RegressionRule) for rule in rules)
        with check:
            assert sum(rule.samples for rule in rules) == 6
        with check:
            assert {p.variable for rule in rules for p in rule.predicates} <= set(flight_model.feature_names)

    def test_single_leaf_rule_has_no_predicates(self) -> None:
        """A single-leaf model yields one rule without predicates."""
        # Arrange
        frame = pl.DataFrame({"elapsedTime": [50.0, 300.0], "delayed": [1.0, 1.0]})
        model = fit_model(frame, label_field="delayed", feature_names=["elapsedTime"], max_depth=3, max_bins=32)

        # Act
        rules = extract_rules(model)

        # Assert
        assert rules == [RegressionRule(task_type="regression", predicates=[], prediction=1.0, samples=2, std=0.0)]
