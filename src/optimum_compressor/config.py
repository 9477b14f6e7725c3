"""
Configuration loading and validation for optimization sessions.

An optimization config describes what a session applies to a model:
- quantization: approach (dynamic/static), bit width, targets and ignores
- pruning: target sparsity and the epoch schedule that reaches it
- tuning: accuracy criterion and budget of the accuracy-driven search

Configuration files are YAML rooted at an ``optimization`` key. They are
resolved from a local file, a saved model directory, a bundled preset or a
Hugging Face Hub repository.
"""

import dataclasses
import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml
from huggingface_hub import hf_hub_download
from huggingface_hub.errors import EntryNotFoundError, HfHubHTTPError, HFValidationError, LocalEntryNotFoundError

from .errors import ConfigNotFoundError, ConfigValidationError

logger = logging.getLogger(__name__)

CONFIG_NAME = "optimization_config.yaml"
ROOT_KEY = "optimization"
PRESETS_DIR = Path(__file__).parent / "presets"


class QuantizationMode(str, enum.Enum):
    """How activations are quantized."""

    DYNAMIC = "dynamic"
    STATIC = "static"


class PruningMode(str, enum.Enum):
    """How magnitudes are ranked when pruning."""

    MAGNITUDE = "magnitude"  # global ranking across all targeted modules
    LAYER_MAGNITUDE = "layer_magnitude"  # each module pruned to the same ratio


class AccuracyCriterion(str, enum.Enum):
    RELATIVE = "relative"
    ABSOLUTE = "absolute"


def _as_tuple(value: Any, name: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value)
    raise ConfigValidationError(f"{name} must be a string or a list, got {type(value).__name__}")


def _as_enum(enum_cls, value: Any, name: str):
    try:
        return enum_cls(value)
    except ValueError:
        valid = [m.value for m in enum_cls]
        raise ConfigValidationError(f"Invalid {name}: {value!r}. Valid values: {valid}") from None


def _as_number(value: Any, name: str, kind=float):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigValidationError(f"{name} must be a number, got {value!r}")
    if kind is int and not isinstance(value, int):
        raise ConfigValidationError(f"{name} must be an integer, got {value!r}")
    return kind(value)


def _as_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigValidationError(f"{name} must be true or false, got {value!r}")
    return value


def _section(data: Dict[str, Any], key: str) -> Optional[Dict[str, Any]]:
    section = data.get(key)
    if section is None:
        return None
    if not isinstance(section, dict):
        raise ConfigValidationError(f"'{key}' must be a mapping, got {type(section).__name__}")
    return section


@dataclass(frozen=True)
class QuantizationConfig:
    """Quantization approach and scope."""

    approach: QuantizationMode = QuantizationMode.DYNAMIC
    bits: int = 8
    symmetric: bool = True
    targets: Tuple[str, ...] = ("Linear",)
    ignore: Tuple[str, ...] = ()
    calibration_set: Optional[str] = None
    num_calibration_samples: int = 128
    max_seq_length: int = 512

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuantizationConfig":
        """Create from dictionary (YAML parsed data)."""
        config = cls(
            approach=_as_enum(QuantizationMode, data.get("approach", "dynamic"), "quantization approach"),
            bits=_as_number(data.get("bits", 8), "bits", int),
            symmetric=_as_bool(data.get("symmetric", True), "symmetric"),
            targets=_as_tuple(data.get("targets", ["Linear"]), "targets"),
            ignore=_as_tuple(data.get("ignore"), "ignore"),
            calibration_set=data.get("calibration_set"),
            num_calibration_samples=_as_number(data.get("num_calibration_samples", 128), "num_calibration_samples", int),
            max_seq_length=_as_number(data.get("max_seq_length", 512), "max_seq_length", int),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if self.bits not in (4, 8):
            raise ConfigValidationError(f"bits must be 4 or 8, got {self.bits}")
        if self.bits == 4 and self.approach == QuantizationMode.STATIC:
            raise ConfigValidationError("4-bit quantization is weight-only and has no static approach")
        if not self.targets:
            raise ConfigValidationError("quantization targets cannot be empty")
        if self.num_calibration_samples <= 0:
            raise ConfigValidationError("num_calibration_samples must be positive")
        if self.max_seq_length <= 0:
            raise ConfigValidationError("max_seq_length must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approach": self.approach.value,
            "bits": self.bits,
            "symmetric": self.symmetric,
            "targets": list(self.targets),
            "ignore": list(self.ignore),
            "calibration_set": self.calibration_set,
            "num_calibration_samples": self.num_calibration_samples,
            "max_seq_length": self.max_seq_length,
        }


@dataclass(frozen=True)
class PruningConfig:
    """Target sparsity and the schedule used to reach it."""

    target_sparsity: float
    initial_sparsity: float = 0.0
    start_epoch: int = 0
    end_epoch: int = 0
    method: PruningMode = PruningMode.MAGNITUDE
    targets: Tuple[str, ...] = ("Linear",)
    ignore: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PruningConfig":
        """Create from dictionary (YAML parsed data)."""
        if "target_sparsity" not in data:
            raise ConfigValidationError("pruning requires 'target_sparsity'")
        config = cls(
            target_sparsity=_as_number(data["target_sparsity"], "target_sparsity"),
            initial_sparsity=_as_number(data.get("initial_sparsity", 0.0), "initial_sparsity"),
            start_epoch=_as_number(data.get("start_epoch", 0), "start_epoch", int),
            end_epoch=_as_number(data.get("end_epoch", 0), "end_epoch", int),
            method=_as_enum(PruningMode, data.get("method", "magnitude"), "pruning method"),
            targets=_as_tuple(data.get("targets", ["Linear"]), "targets"),
            ignore=_as_tuple(data.get("ignore"), "ignore"),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if not 0.0 < self.target_sparsity < 1.0:
            raise ConfigValidationError(f"target_sparsity must be in (0, 1), got {self.target_sparsity}")
        if not 0.0 <= self.initial_sparsity <= self.target_sparsity:
            raise ConfigValidationError("initial_sparsity must be in [0, target_sparsity]")
        if self.start_epoch < 0 or self.end_epoch < self.start_epoch:
            raise ConfigValidationError(
                f"Invalid pruning schedule: start_epoch={self.start_epoch}, end_epoch={self.end_epoch}"
            )
        if not self.targets:
            raise ConfigValidationError("pruning targets cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_sparsity": self.target_sparsity,
            "initial_sparsity": self.initial_sparsity,
            "start_epoch": self.start_epoch,
            "end_epoch": self.end_epoch,
            "method": self.method.value,
            "targets": list(self.targets),
            "ignore": list(self.ignore),
        }


@dataclass(frozen=True)
class TuningConfig:
    """Accuracy criterion and budget for the accuracy-driven search."""

    criterion: AccuracyCriterion = AccuracyCriterion.RELATIVE
    tolerance: float = 0.01
    higher_is_better: bool = True
    max_trials: int = 10
    timeout: float = 0.0
    fallback: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TuningConfig":
        """Create from dictionary (YAML parsed data)."""
        if data is None:
            data = {}
        config = cls(
            criterion=_as_enum(AccuracyCriterion, data.get("criterion", "relative"), "accuracy criterion"),
            tolerance=_as_number(data.get("tolerance", 0.01), "tolerance"),
            higher_is_better=_as_bool(data.get("higher_is_better", True), "higher_is_better"),
            max_trials=_as_number(data.get("max_trials", 10), "max_trials", int),
            timeout=_as_number(data.get("timeout", 0), "timeout"),
            fallback=_as_tuple(data.get("fallback"), "fallback"),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if self.tolerance < 0:
            raise ConfigValidationError("tolerance must be non-negative")
        if self.max_trials <= 0:
            raise ConfigValidationError("max_trials must be positive")
        if self.timeout < 0:
            raise ConfigValidationError("timeout must be non-negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "criterion": self.criterion.value,
            "tolerance": self.tolerance,
            "higher_is_better": self.higher_is_better,
            "max_trials": self.max_trials,
            "timeout": self.timeout,
            "fallback": list(self.fallback),
        }

    def is_acceptable(self, metric: float, baseline: float) -> bool:
        """Check a candidate metric against the baseline."""
        if self.criterion == AccuracyCriterion.RELATIVE:
            margin = abs(baseline) * self.tolerance
        else:
            margin = self.tolerance
        if self.higher_is_better:
            return metric >= baseline - margin
        return metric <= baseline + margin


@dataclass(frozen=True)
class OptimizationResults:
    """What a finished session actually applied."""

    baseline_metric: Optional[float] = None
    metric: Optional[float] = None
    trials: int = 0
    sparsity: Optional[float] = None
    quantized: bool = False
    ignore: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptimizationResults":
        return cls(
            baseline_metric=data.get("baseline_metric"),
            metric=data.get("metric"),
            trials=data.get("trials", 0),
            sparsity=data.get("sparsity"),
            quantized=_as_bool(data.get("quantized", False), "quantized"),
            ignore=_as_tuple(data.get("ignore"), "ignore"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "baseline_metric": self.baseline_metric,
            "metric": self.metric,
            "trials": self.trials,
            "sparsity": self.sparsity,
            "quantized": self.quantized,
            "ignore": list(self.ignore),
        }


@dataclass(frozen=True)
class OptimizationConfig:
    """
    Complete, immutable optimization configuration.

    ``task`` and ``results`` are empty on a freshly loaded config and are
    filled in (through ``dataclasses.replace``) on the effective config a
    finished session produces.
    """

    name: str
    source: str
    quantization: Optional[QuantizationConfig] = None
    pruning: Optional[PruningConfig] = None
    tuning: TuningConfig = field(default_factory=TuningConfig)
    task: Optional[str] = None
    results: Optional[OptimizationResults] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str) -> "OptimizationConfig":
        """
        Create from YAML parsed data.

        Args:
            data: Parsed file content, must have the ``optimization`` root key
            source: Identifier the file was resolved from

        Raises:
            ConfigValidationError: If the data does not match the schema
        """
        if not isinstance(data, dict) or ROOT_KEY not in data:
            raise ConfigValidationError(f"Configuration must have '{ROOT_KEY}' key at the root level: {source}")
        body = data[ROOT_KEY]
        if not isinstance(body, dict):
            raise ConfigValidationError(f"'{ROOT_KEY}' must be a mapping: {source}")

        quantization = _section(body, "quantization")
        pruning = _section(body, "pruning")
        results = _section(body, "results")

        config = cls(
            name=str(body.get("name") or Path(source).stem),
            source=str(body.get("source") or source),
            quantization=QuantizationConfig.from_dict(quantization) if quantization is not None else None,
            pruning=PruningConfig.from_dict(pruning) if pruning is not None else None,
            tuning=TuningConfig.from_dict(_section(body, "tuning")),
            task=body.get("task"),
            results=OptimizationResults.from_dict(results) if results is not None else None,
        )
        config.validate()
        return config

    @classmethod
    def from_pretrained(
        cls,
        identifier: Union[str, Path],
        revision: Optional[str] = None,
        cache_dir: Optional[str] = None,
    ) -> "OptimizationConfig":
        return load_optimization_config(identifier, revision=revision, cache_dir=cache_dir)

    def validate(self) -> None:
        if self.quantization is None and self.pruning is None:
            raise ConfigValidationError(
                f"Config '{self.name}' must define 'quantization', 'pruning' or both"
            )

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"name": self.name, "source": self.source}
        if self.task is not None:
            body["task"] = self.task
        if self.quantization is not None:
            body["quantization"] = self.quantization.to_dict()
        if self.pruning is not None:
            body["pruning"] = self.pruning.to_dict()
        body["tuning"] = self.tuning.to_dict()
        if self.results is not None:
            body["results"] = self.results.to_dict()
        return {ROOT_KEY: body}

    def save_pretrained(self, save_directory: Union[str, Path]) -> Path:
        """Write the config as ``optimization_config.yaml`` inside ``save_directory``."""
        save_directory = Path(save_directory)
        save_directory.mkdir(parents=True, exist_ok=True)
        path = save_directory / CONFIG_NAME
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
        return path

    def replace(self, **changes) -> "OptimizationConfig":
        return dataclasses.replace(self, **changes)


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load and parse a YAML configuration file.

    Raises:
        ConfigNotFoundError: If file doesn't exist
        ConfigValidationError: If parsing fails
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigNotFoundError(f"Config file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        raise ConfigValidationError(f"Failed to parse config file {path}: {e}") from e


def list_presets():
    """Names of the configs bundled with the package."""
    return sorted(p.stem for p in PRESETS_DIR.glob("*.yaml"))


def _looks_like_path(identifier: str) -> bool:
    return (
        Path(identifier).is_absolute()
        or identifier.startswith(".")
        or identifier.endswith((".yaml", ".yml"))
    )


def resolve_config_file(
    identifier: Union[str, Path],
    revision: Optional[str] = None,
    cache_dir: Optional[str] = None,
) -> Path:
    """
    Locate the YAML file behind a config identifier.

    Resolution order: local file, local directory holding
    ``optimization_config.yaml``, bundled preset, Hub repository.

    Raises:
        ConfigNotFoundError: If nothing exists at the identifier
    """
    path = Path(identifier)
    if path.is_file():
        return path
    if path.is_dir():
        candidate = path / CONFIG_NAME
        if candidate.is_file():
            return candidate
        raise ConfigNotFoundError(f"No {CONFIG_NAME} in directory: {path}")

    identifier = str(identifier)
    preset = PRESETS_DIR / f"{identifier}.yaml"
    if preset.is_file():
        return preset
    if _looks_like_path(identifier):
        raise ConfigNotFoundError(f"Config file not found: {identifier}")

    logger.info(f"Fetching {CONFIG_NAME} from the Hub: {identifier}")
    try:
        return Path(hf_hub_download(identifier, CONFIG_NAME, revision=revision, cache_dir=cache_dir))
    except (EntryNotFoundError, LocalEntryNotFoundError, HfHubHTTPError, HFValidationError) as e:
        raise ConfigNotFoundError(f"Config not found: {identifier} ({type(e).__name__}: {e})") from e


def load_optimization_config(
    identifier: Union[str, Path],
    revision: Optional[str] = None,
    cache_dir: Optional[str] = None,
) -> OptimizationConfig:
    """
    Load an optimization configuration from a local path, preset name or Hub repo.

    Args:
        identifier: YAML file, saved directory, preset name or Hub repo id
        revision: Hub revision (branch, tag or commit)
        cache_dir: Hub download cache directory

    Returns:
        Validated, immutable OptimizationConfig

    Raises:
        ConfigNotFoundError: If no configuration exists at the identifier
        ConfigValidationError: If the configuration is malformed
    """
    path = resolve_config_file(identifier, revision=revision, cache_dir=cache_dir)
    logger.debug(f"Loading optimization config from {path}")
    return OptimizationConfig.from_dict(load_yaml(path), source=str(identifier))
