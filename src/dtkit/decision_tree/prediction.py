"""Scoring records against a trained decision tree."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

import numpy as np
import polars as pl

from dtkit.decision_tree.models import DecisionTreeModel, LeafNode, SplitNode, TreeNode
from dtkit.decision_tree.preprocessing import FeatureEncoder, Record
from dtkit.exceptions import MissingFeatureField

# ---------------------------------------------------------------------------
# Public interface -- Tree traversal
# ---------------------------------------------------------------------------


def find_leaf(root: TreeNode, vector: np.ndarray) -> LeafNode:
    """Descend from `root` to the leaf that `vector` reaches.

    Args:
        root (TreeNode): The root of the tree.
        vector (np.ndarray): Encoded feature vector.

    Returns:
        LeafNode: The reached leaf.
    """
    node: LeafNode | SplitNode = root
    while isinstance(node, SplitNode):
        node = node.left if node.goes_left(float(vector[node.feature_index])) else node.right
    return node


def predict_matrix(root: TreeNode, matrix: np.ndarray) -> list[float | str]:
    """Predict every row of an encoded feature matrix.

    Args:
        root (TreeNode): The root of the tree.
        matrix (np.ndarray): 2-D encoded feature matrix.

    Returns:
        list[float | str]: One leaf prediction per row.
    """
    return [find_leaf(root, row).prediction for row in matrix]


# ---------------------------------------------------------------------------
# Public interface -- Predictor
# ---------------------------------------------------------------------------


class Predictor:
    """Applies a trained model to unlabeled records.

    Records are encoded with the feature spec stored in the model, never with
    one rebuilt from the records being scored. Every output record keeps all
    of its input fields and gains `prediction_field`; if the input already
    holds a field of that name, the prediction replaces it.

    A predictor holds no mutable state, so one instance may score records from
    several threads at once.

    Examples:
        >>> predictor = Predictor(model, prediction_field="delayed")  # doctest: +SKIP
        >>> predictor.predict({"dofM": 3, "dofW": 5, "carrier": 1.0, ...})  # doctest: +SKIP
        1.0
    """

    def __init__(self, model: DecisionTreeModel, prediction_field: str) -> None:
        """Initialize the predictor.

        Args:
            model (DecisionTreeModel): The trained model.
            prediction_field (str): Name of the output field holding the prediction.

        Raises:
            ValueError: If `prediction_field` is empty.
        """
        if not prediction_field:
            raise ValueError("prediction_field must be a non-empty string")
        self.model = model
        self.prediction_field = prediction_field
        self._encoder = FeatureEncoder(features=tuple(model.features))

    @property
    def feature_names(self) -> list[str]:
        """Fields every scored record must contain."""
        return self._encoder.feature_names

    def predict(self, record: Record) -> float | str:
        """Predict the label of a single record.

        Args:
            record (Record): The record to score. Fields beyond the model's
                features are ignored.

        Returns:
            float | str: The prediction of the leaf the record reaches.

        Raises:
            MissingFeatureField: If a feature field is absent from the record.
                A field that is present with a null value is not missing.
            InvalidFeatureValue: If a continuous feature holds a non-numeric value.
        """
        self._check_fields(record.keys())
        return find_leaf(self.model.root, self._encoder.encode_record(record)).prediction

    def transform(self, records: Iterable[Record]) -> Iterator[dict[str, Any]]:
        """Lazily score records, yielding each input record extended with its prediction.

        Args:
            records (Iterable[Record]): The records to score.

        Yields:
            dict[str, Any]: A new record with every input field plus `prediction_field`.

        Raises:
            MissingFeatureField: When a record lacks a feature field; records
                yielded before it are unaffected.
        """
        for record in records:
            yield {**record, self.prediction_field: self.predict(record)}

    def transform_frame(self, frame: pl.DataFrame) -> pl.DataFrame:
        """Score every row of a Polars DataFrame.

        Args:
            frame (pl.DataFrame): Records to score, one per row.

        Returns:
            pl.DataFrame: `frame` with the prediction column added or replaced.

        Raises:
            MissingFeatureField: If a feature column is absent from `frame`.
            InvalidFeatureValue: If a continuous feature column is not numeric.
        """
        self._check_fields(frame.columns)
        predictions = predict_matrix(self.model.root, self._encoder.encode_frame(frame))
        return frame.with_columns(pl.Series(self.prediction_field, predictions))

    def _check_fields(self, available: Iterable[str]) -> None:
        """Raise `MissingFeatureField` if any model feature is absent.

        Args:
            available (Iterable[str]): Field names present in the input.

        Raises:
            MissingFeatureField: If one or more feature fields are absent.
        """
        available_fields = list(available)
        present = set(available_fields)
        missing = [name for name in self.feature_names if name not in present]
        if missing:
            raise MissingFeatureField(missing_fields=missing, available_fields=available_fields)
