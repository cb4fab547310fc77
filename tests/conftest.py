"""Shared fixtures: flight records, run properties, a trained flight model and a temporary model store."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from dtkit.decision_tree.fitting import fit_model
from dtkit.decision_tree.models import DecisionTreeModel
from dtkit.decision_tree.preprocessing import records_to_frame
from dtkit.persistence import ModelStore

FLIGHT_FIELDS: list[str] = [
    "dofM",
    "dofW",
    "carrier",
    "tailNum",
    "flightNum",
    "originId",
    "origin",
    "destId",
    "dest",
    "scheduleDepTime",
    "deptime",
    "depDelayMins",
    "scheduledArrTime",
    "arrTime",
    "arrDelay",
    "elapsedTime",
    "distance",
]

# Each row is followed by its expected `delayed` label.
FLIGHT_ROWS: list[tuple[Any, ...]] = [
    (3, 5, 1.0, "N327AA", 1, 12478, "JFK", 12892, "LAX", 900, 1005.0, 65.0, 1225.0, 1324.0, 59.0, 385.0, 2475, 1.0),
    (24, 5, 2.0, "N0EGMQ", 3419, 10397, "ATL", 12953, "LGA", 1150, 1229.0, 39.0, 1359.0, 1448.0, 49.0, 129.0, 762, 0.0),
    (3, 5, 3.0, "N14991", 6159, 13930, "ORD", 13198, "MCI", 2030, 2118.0, 48.0, 2205.0, 2321.0, 76.0, 95.0, 403, 1.0),
    (28, 2, 1.0, "N355AA", 2407, 12892, "LAX", 11298, "DFW", 1025, 1023.0, 0.0, 1530.0, 1523.0, 0.0, 185.0, 1235, 0.0),
    (1, 3, 4.0, "N919DE", 1908, 13930, "ORD", 11433, "DTW", 1641, 1902.0, 141.0, 1905.0, 2117.0, 132.0, 84.0, 235, 1.0),
    (1, 3, 4.0, "N933DN", 1791, 10397, "ATL", 15376, "TUS", 1855, 2014.0, 79.0, 2108.0, 2159.0, 51.0, 253.0, 1541, 1.0),
]

FEATURES_TO_INCLUDE = "dofM,dofW,carrier,originId,destId,scheduleDepTime,scheduledArrTime,elapsedTime"
FEATURES_TO_EXCLUDE = "tailNum,flightNum,origin,dest,deptime,depDelayMins,arrTime,arrDelay,distance"


def delay_label(flight: dict[str, Any]) -> float:
    """Return 1.0 when a flight departed more than 40 minutes late, else 0.0."""
    return 1.0 if flight["depDelayMins"] > 40 else 0.0


@pytest.fixture
def flights() -> list[dict[str, Any]]:
    """Six unlabeled flight records.

    Returns:
        list[dict[str, Any]]: Records with every flight field.
    """
    return [dict(zip(FLIGHT_FIELDS, row[:-1], strict=True)) for row in FLIGHT_ROWS]


@pytest.fixture
def expected_delays() -> list[float]:
    """Expected `delayed` label of each flight, parallel to `flights`.

    Returns:
        list[float]: The expected labels.
    """
    return [row[-1] for row in FLIGHT_ROWS]


@pytest.fixture
def labeled_flights(flights: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Flight records with the derived `delayed` label.

    Args:
        flights (list[dict[str, Any]]): Unlabeled flight records.

    Returns:
        list[dict[str, Any]]: Records with an added `delayed` field.
    """
    return [{**flight, "delayed": delay_label(flight)} for flight in flights]


@pytest.fixture
def trainer_properties() -> dict[str, Any]:
    """Trainer properties of the flight delay pipeline.

    Returns:
        dict[str, Any]: Raw trainer properties.
    """
    return {
        "fileSetName": "decision-tree-regression-model",
        "featureFieldsToInclude": FEATURES_TO_INCLUDE,
        "cardinalityMapping": "dofW:7",
        "labelField": "delayed",
        "maxBins": 100,
        "maxDepth": 9,
    }


@pytest.fixture
def predictor_properties() -> dict[str, Any]:
    """Predictor properties of the flight delay pipeline.

    Returns:
        dict[str, Any]: Raw predictor properties.
    """
    return {
        "fileSetName": "decision-tree-regression-model",
        "featureFieldsToExclude": FEATURES_TO_EXCLUDE,
        "predictionField": "delayed",
    }


@pytest.fixture
def store(tmp_path: Path) -> ModelStore:
    """Model store rooted in a temporary directory.

    Args:
        tmp_path (Path): pytest temporary directory.

    Returns:
        ModelStore: An empty store.
    """
    return ModelStore(tmp_path / "models")


@pytest.fixture
def flight_model(labeled_flights: list[dict[str, Any]]) -> DecisionTreeModel:
    """Regression tree trained on the labeled flights with the pipeline settings.

    Args:
        labeled_flights (list[dict[str, Any]]): Training records.

    Returns:
        DecisionTreeModel: The trained model.
    """
    return fit_model(
        records_to_frame(labeled_flights),
        label_field="delayed",
        feature_names=FEATURES_TO_INCLUDE.split(","),
        cardinality_mapping={"dofW": 7},
        max_depth=9,
        max_bins=100,
    )
