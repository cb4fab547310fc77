"""Demonstrates how to enable and configure logging in dtkit.

dtkit logging is disabled by default. Users opt in by calling ``enable_logging()``,
which returns a ``LoggingHandle``. The handle can be used as a context manager
(``with enable_logging(): ...``) or disabled manually via ``handle.disable()``.
When the last active handle is disabled, dtkit logging is automatically turned off.

Key concepts shown here:

- ``level``: controls the minimum log level. The custom ``RUN`` level
  (numeric value 25, between INFO and WARNING) marks the start and end of
  training and prediction runs and is the default. ``"DEBUG"`` also shows
  every split the tree builder selects.
- ``log_format``: ``"short"`` shows ``timestamp | level | function - message``;
  ``"full"`` adds the module and line number.
- Error logging: a failed run (here a cardinality mapping that is too small)
  is logged as a warning and reported as a ``FAILED`` result without raising.
- Automatic cleanup: logging is re-disabled when the context manager exits.
"""

import tempfile

from dtkit import ModelStore, enable_logging, run_prediction, run_training

FLIGHT_FIELDS = [
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

FLIGHT_ROWS = [
    (3, 5, 1.0, "N327AA", 1, 12478, "JFK", 12892, "LAX", 900, 1005.0, 65.0, 1225.0, 1324.0, 59.0, 385.0, 2475),
    (24, 5, 2.0, "N0EGMQ", 3419, 10397, "ATL", 12953, "LGA", 1150, 1229.0, 39.0, 1359.0, 1448.0, 49.0, 129.0, 762),
    (3, 5, 3.0, "N14991", 6159, 13930, "ORD", 13198, "MCI", 2030, 2118.0, 48.0, 2205.0, 2321.0, 76.0, 95.0, 403),
    (28, 2, 1.0, "N355AA", 2407, 12892, "LAX", 11298, "DFW", 1025, 1023.0, 0.0, 1530.0, 1523.0, 0.0, 185.0, 1235),
    (1, 3, 4.0, "N919DE", 1908, 13930, "ORD", 11433, "DTW", 1641, 1902.0, 141.0, 1905.0, 2117.0, 132.0, 84.0, 235),
    (1, 3, 4.0, "N933DN", 1791, 10397, "ATL", 15376, "TUS", 1855, 2014.0, 79.0, 2108.0, 2159.0, 51.0, 253.0, 1541),
]

flights = [dict(zip(FLIGHT_FIELDS, row, strict=True)) for row in FLIGHT_ROWS]
# A flight counts as delayed when it left more than 40 minutes late
training_records = [{**flight, "delayed": 1.0 if flight["depDelayMins"] > 40 else 0.0} for flight in flights]

trainer_properties = {
    "fileSetName": "decision-tree-regression-model",
    "featureFieldsToInclude": "dofM,dofW,carrier,originId,destId,scheduleDepTime,scheduledArrTime,elapsedTime",
    "cardinalityMapping": "dofW:7",
    "labelField": "delayed",
    "maxBins": 100,
    "maxDepth": 9,
}
predictor_properties = {
    "fileSetName": "decision-tree-regression-model",
    "featureFieldsToExclude": "tailNum,flightNum,origin,dest,deptime,depDelayMins,arrTime,arrDelay,distance",
    "predictionField": "delayed",
}

# Enable logging at DEBUG level with full log format to follow the tree builder
with tempfile.TemporaryDirectory() as model_dir, enable_logging(level="DEBUG", log_format="full"):
    store = ModelStore(model_dir)

    training = run_training(trainer_properties, training_records, store=store)
    print(f"\nTraining: {training.status}, depth {training.summary.depth if training.summary else '-'}\n")

    prediction = run_prediction(predictor_properties, flights, store=store)
    for record in prediction.records:
        print(f"{record['origin']} -> {record['dest']}: delayed={record['delayed']}")

    # Try a failing run to show error logging: three weekdays but cardinality 2
    failed = run_training({**trainer_properties, "cardinalityMapping": "dofW:2"}, training_records, store=store)
    print(f"\nTraining with dofW:2: {failed.status} ({failed.error.error_type if failed.error else '-'})\n")

# Logging automatically disabled here
