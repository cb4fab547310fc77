"""Decision tree sub-package: models, preprocessing, fitting, and prediction."""

from __future__ import annotations

from dtkit.decision_tree.fitting import (
    DEFAULT_MIN_INFO_GAIN,
    DEFAULT_MIN_INSTANCES_PER_NODE,
    build_tree,
    compute_feature_importance,
    compute_metrics,
    extract_rules,
    fit_model,
)
from dtkit.decision_tree.models import (
    ClassificationRule,
    DecisionTreeModel,
    DecisionTreeRule,
    DecisionTreeTask,
    FeatureField,
    Impurity,
    LeafNode,
    Predicate,
    PredicateOp,
    RegressionRule,
    SplitNode,
    TrainingSummary,
    TreeNode,
)
from dtkit.decision_tree.prediction import Predictor
from dtkit.decision_tree.preprocessing import FeatureEncoder

__all__ = [
    "DEFAULT_MIN_INFO_GAIN",
    "DEFAULT_MIN_INSTANCES_PER_NODE",
    "ClassificationRule",
    "DecisionTreeModel",
    "DecisionTreeRule",
    "DecisionTreeTask",
    "FeatureEncoder",
    "FeatureField",
    "Impurity",
    "LeafNode",
    "Predicate",
    "PredicateOp",
    "Predictor",
    "RegressionRule",
    "SplitNode",
    "TrainingSummary",
    "TreeNode",
    "build_tree",
    "compute_feature_importance",
    "compute_metrics",
    "extract_rules",
    "fit_model",
]
