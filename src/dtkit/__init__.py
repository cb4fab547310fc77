"""dtkit: Decision tree training and prediction over tabular records."""

from loguru import logger

from dtkit.config import PredictorConfig, TrainerConfig
from dtkit.decision_tree import DecisionTreeModel, Predictor
from dtkit.logging import PACKAGE_NAME, enable_logging
from dtkit.persistence import ModelStore
from dtkit.runner import predict_records, run_prediction, run_training, train_model

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the dtkit module by default

__all__ = [
    "DecisionTreeModel",
    "ModelStore",
    "PredictorConfig",
    "Predictor",
    "TrainerConfig",
    "enable_logging",
    "predict_records",
    "run_prediction",
    "run_training",
    "train_model",
]
