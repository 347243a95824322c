"""
RoutineRegistry - Load routine and queue definitions from storage.

The registry provides:
- Loading definitions from YAML or JSON files in a definitions directory
- Resolving "module:attribute" references to actions and evaluators
- Building fresh Routine / CompositionQueue objects from definitions
- Caching parsed definitions

Routine definition:
    routine_id: fetch_report
    config: {max_retries: 2, retry_delay_ms: 100, timeout_ms: 5000}
    subroutines:
      - name: fetch
        action: reports.steps:fetch
        evaluator: reports.steps:has_rows

Queue definition:
    queue_id: nightly
    mode: pipeline
    routines: [fetch_report, publish_report]
"""

import importlib
import json
from pathlib import Path
from typing import Any, Callable, Optional

import yaml

from routinekit.config import RoutineConfig
from routinekit.errors import ConfigurationError
from routinekit.queue import CompositionQueue
from routinekit.routine import Routine


class DefinitionNotFoundError(ConfigurationError):
    """Raised when a routine or queue definition is not found."""
    pass


def resolve_callable(ref: str) -> Callable[..., Any]:
    """
    Import a callable from a "module:attribute" reference.

    Dotted attributes are followed ("pkg.mod:Class.method").

    Raises:
        ConfigurationError: If the reference is malformed, cannot be
            imported, or does not name a callable
    """
    if not isinstance(ref, str) or ref.count(":") != 1:
        raise ConfigurationError(f"Invalid callable reference {ref!r} (expected 'module:attribute')")

    module_name, attr_path = ref.split(":")
    if not module_name or not attr_path:
        raise ConfigurationError(f"Invalid callable reference {ref!r} (expected 'module:attribute')")

    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import module for {ref}: {e}") from e

    for part in attr_path.split("."):
        try:
            target = getattr(target, part)
        except AttributeError:
            raise ConfigurationError(f"Callable reference not found: {ref} (missing '{part}')") from None

    if not callable(target):
        raise ConfigurationError(f"Callable reference {ref} is not callable")
    return target


class RoutineRegistry:
    """
    Registry for loading routine and queue definitions.

    Example directory structure:
        definitions/
            reports/
                fetch_report.yaml
                publish_report.yaml
            nightly.yaml
    """

    def __init__(self, definitions_dir: Path | str):
        self._definitions_dir = Path(definitions_dir)
        self._cache: dict[str, dict[str, Any]] = {}

    @property
    def definitions_dir(self) -> Path:
        """Get the definitions directory path."""
        return self._definitions_dir

    # ------------------------------------------------------------------
    # Raw definitions
    # ------------------------------------------------------------------

    def load_definition(self, definition_id: str) -> dict[str, Any]:
        """
        Load and validate a raw definition by ID.

        Raises:
            DefinitionNotFoundError: If no file defines this ID
            ConfigurationError: If the file is invalid
        """
        if definition_id in self._cache:
            return self._cache[definition_id]

        def_path = self._find_definition(definition_id)
        if def_path is None:
            raise DefinitionNotFoundError(f"Definition not found: {definition_id}")

        try:
            data = self._load_file(def_path)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load {def_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Definition {def_path} must contain a mapping")

        kind = self._kind_of_data(data, def_path)
        declared_id = data[f"{kind}_id"]
        if declared_id != definition_id:
            raise ConfigurationError(
                f"ID mismatch: file is '{definition_id}' but {kind}_id is '{declared_id}'"
            )
        if kind == "routine":
            self._validate_routine(data, def_path)
        else:
            self._validate_queue(data, def_path)

        self._cache[definition_id] = data
        return data

    def kind_of(self, definition_id: str) -> str:
        """Return "routine" or "queue" for a definition ID."""
        data = self.load_definition(definition_id)
        return "routine" if "routine_id" in data else "queue"

    @staticmethod
    def _kind_of_data(data: dict[str, Any], def_path: Path) -> str:
        if "routine_id" in data and "queue_id" in data:
            raise ConfigurationError(f"{def_path} defines both routine_id and queue_id")
        if "routine_id" in data:
            return "routine"
        if "queue_id" in data:
            return "queue"
        raise ConfigurationError(f"{def_path} has neither routine_id nor queue_id")

    @staticmethod
    def _validate_routine(data: dict[str, Any], def_path: Path) -> None:
        subroutines = data.get("subroutines")
        if not isinstance(subroutines, list):
            raise ConfigurationError(f"{def_path}: 'subroutines' must be a list")
        for i, sub in enumerate(subroutines):
            if not isinstance(sub, dict) or "name" not in sub or "action" not in sub:
                raise ConfigurationError(f"{def_path}: subroutine #{i + 1} needs 'name' and 'action'")
        config = data.get("config")
        if config is not None and not isinstance(config, dict):
            raise ConfigurationError(f"{def_path}: 'config' must be a mapping")

    @staticmethod
    def _validate_queue(data: dict[str, Any], def_path: Path) -> None:
        routines = data.get("routines")
        if not isinstance(routines, list) or not all(isinstance(r, str) for r in routines):
            raise ConfigurationError(f"{def_path}: 'routines' must be a list of routine IDs")

    def _load_file(self, path: Path) -> Any:
        """Load a definition file (YAML or JSON)."""
        suffix = path.suffix.lower()

        with open(path) as f:
            if suffix in (".yaml", ".yml"):
                try:
                    return yaml.safe_load(f)
                except yaml.YAMLError as e:
                    raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
            elif suffix == ".json":
                return json.load(f)
            else:
                raise ConfigurationError(f"Unsupported file format: {suffix}")

    def _find_definition(self, definition_id: str) -> Optional[Path]:
        """Find the definition file for an ID. YAML is preferred over JSON."""
        for ext in [".yaml", ".yml", ".json"]:
            filename = f"{definition_id}{ext}"

            root_path = self._definitions_dir / filename
            if root_path.exists():
                return root_path

            matches = [
                p for p in sorted(self._definitions_dir.glob(f"**/{filename}"))
                if "_deprecated" not in str(p)
            ]
            if matches:
                return matches[0]

        return None

    def list_definitions(self) -> list[str]:
        """Sorted IDs of all definition files in the directory tree."""
        if not self._definitions_dir.exists():
            return []

        ids = set()
        for ext in ["*.yaml", "*.yml", "*.json"]:
            for f in self._definitions_dir.glob(f"**/{ext}"):
                if "_deprecated" not in str(f):
                    ids.add(f.stem)

        return sorted(ids)

    def clear_cache(self) -> None:
        """Clear the definition cache."""
        self._cache.clear()

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def load_routine(self, routine_id: str, defaults: Optional[RoutineConfig] = None) -> Routine:
        """
        Build a new Routine from its definition.

        Args:
            routine_id: The routine identifier
            defaults: Base config that the definition's `config` overrides

        Raises:
            DefinitionNotFoundError: If the definition doesn't exist
            ConfigurationError: If it is a queue, or invalid
        """
        data = self.load_definition(routine_id)
        if "routine_id" not in data:
            raise ConfigurationError(f"{routine_id} is a queue, not a routine")

        config = RoutineConfig.from_dict(data.get("config"), base=defaults)
        routine = Routine(routine_id, config)
        for sub in data["subroutines"]:
            evaluator_ref = sub.get("evaluator")
            routine.add_subroutine(
                sub["name"],
                resolve_callable(sub["action"]),
                resolve_callable(evaluator_ref) if evaluator_ref else None,
            )
        return routine

    def load_queue(self, queue_id: str, defaults: Optional[RoutineConfig] = None) -> CompositionQueue:
        """Build a new CompositionQueue and its routines from their definitions."""
        data = self.load_definition(queue_id)
        if "queue_id" not in data:
            raise ConfigurationError(f"{queue_id} is a routine, not a queue")

        routines = [self.load_routine(routine_id, defaults) for routine_id in data["routines"]]
        return CompositionQueue(queue_id, data.get("mode", "concurrent"), routines)
