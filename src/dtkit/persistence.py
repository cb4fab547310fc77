"""Persistence of trained models as JSON artifacts.

A `ModelStore` keeps one artifact per model name under a root directory:

    <root>/<name>.json

Artifacts are written to a temporary file in the same directory and then
atomically renamed into place, so a reader never observes a partially written
model. Concurrent writers of the same name are not coordinated; the last
rename wins.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Final

from loguru import logger
from pydantic import ValidationError

from dtkit.config import DtkitSettings
from dtkit.decision_tree.models import DecisionTreeModel
from dtkit.exceptions import ModelNotFound
from dtkit.identifier import validate_artifact_name

__all__ = ["ARTIFACT_SUFFIX", "ModelStore"]

ARTIFACT_SUFFIX: Final[str] = ".json"


class ModelStore:
    """Saves and loads `DecisionTreeModel` artifacts in a directory.

    Examples:
        >>> store = ModelStore("models")  # doctest: +SKIP
        >>> store.save("decision-tree-regression-model", model)  # doctest: +SKIP
        >>> store.load("decision-tree-regression-model").max_depth  # doctest: +SKIP
        9
    """

    def __init__(self, root: str | Path) -> None:
        """Initialize the store.

        The directory is created on the first save.

        Args:
            root (str | Path): Directory holding the artifacts.
        """
        self.root = Path(root)

    @classmethod
    def from_settings(cls, settings: DtkitSettings | None = None) -> ModelStore:
        """Create a store rooted at the configured model directory.

        Args:
            settings (DtkitSettings | None): Settings to use; read from the
                environment when `None`.

        Returns:
            ModelStore: A store rooted at `settings.model_dir`.
        """
        settings = settings or DtkitSettings()
        return cls(settings.model_dir)

    def path_for(self, name: str) -> Path:
        """Return the artifact path of a model name.

        Args:
            name (str): The model name.

        Returns:
            Path: `<root>/<name>.json`.

        Raises:
            ValueError: If `name` is not a valid artifact name.
        """
        return self.root / f"{validate_artifact_name(name)}{ARTIFACT_SUFFIX}"

    def save(self, name: str, model: DecisionTreeModel) -> Path:
        """Atomically write a model artifact, replacing any previous one.

        Args:
            name (str): The model name.
            model (DecisionTreeModel): The model to persist.

        Returns:
            Path: The artifact path.

        Raises:
            ValueError: If `name` is not a valid artifact name.
            OSError: If the artifact cannot be written.
        """
        path = self.path_for(name)
        self.root.mkdir(parents=True, exist_ok=True)
        payload = model.model_dump_json(indent=2)

        fd, temp_name = tempfile.mkstemp(dir=self.root, prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(temp_name, path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise

        logger.info("Model saved", name=name, path=str(path), nodes=model.summary.node_count)
        return path

    def load(self, name: str) -> DecisionTreeModel:
        """Load a model artifact.

        Args:
            name (str): The model name.

        Returns:
            DecisionTreeModel: The stored model.

        Raises:
            ValueError: If `name` is not a valid artifact name.
            ModelNotFound: If the artifact does not exist, cannot be read, or
                does not contain a valid model.
        """
        path = self.path_for(name)
        try:
            payload = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise ModelNotFound(name, path=str(path)) from exc
        except OSError as exc:
            raise ModelNotFound(name, path=str(path), reason=f"artifact could not be read ({exc})") from exc

        try:
            model = DecisionTreeModel.model_validate_json(payload)
        except ValidationError as exc:
            raise ModelNotFound(
                name,
                path=str(path),
                reason=f"artifact is not a valid model ({exc.error_count()} validation errors)",
            ) from exc

        logger.debug("Model loaded", name=name, path=str(path))
        return model

    def exists(self, name: str) -> bool:
        """Return whether an artifact is stored under `name`.

        Args:
            name (str): The model name.

        Returns:
            bool: `True` if the artifact file exists.
        """
        return self.path_for(name).is_file()

    def delete(self, name: str) -> None:
        """Delete a model artifact.

        Args:
            name (str): The model name.

        Raises:
            ModelNotFound: If no artifact is stored under `name`.
        """
        path = self.path_for(name)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise ModelNotFound(name, path=str(path)) from exc
        logger.info("Model deleted", name=name, path=str(path))

    def list_models(self) -> list[str]:
        """List the names of all stored models.

        Returns:
            list[str]: Sorted model names; empty if the root does not exist.
        """
        if not self.root.is_dir():
            return []
        return sorted(
            path.name.removesuffix(ARTIFACT_SUFFIX)
            for path in self.root.glob(f"*{ARTIFACT_SUFFIX}")
            if path.is_file() and not path.name.startswith(".")
        )
