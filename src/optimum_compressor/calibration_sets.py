"""
Calibration data for static quantization.

This module contains:
1. Configuration classes for calibration sets:
   - DatasetEntryConfig: one dataset pulled from the Hub (or a local path)
   - CalibrationSetConfig: the list of entries plus shared shuffle/seed

2. CalibrationSet: loads, formats, caches and tokenizes the calibration data.

The cache stores formatted but untokenized rows as Parquet, so one cached
set serves every model and tokenizer calibrated against it.
"""

import dataclasses
import hashlib
import json
import logging
from dataclasses import field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from datasets import Dataset, concatenate_datasets, load_dataset

from .errors import ConfigNotFoundError, ConfigValidationError
from .formatters import DatasetFmt

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class DatasetEntryConfig:
    """Single dataset entry in a calibration set.

    Mandatory fields: dataset, formatter, columns, num_samples (positive
    integer or "all"). ``split`` defaults to "train"; ``subset`` is optional.
    """

    dataset: str
    formatter: str
    columns: List[str] = field(default_factory=list)
    num_samples: Union[int, str, None] = None
    split: str = "train"
    subset: Optional[str] = None

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatasetEntryConfig":
        columns = data.get("columns", [])
        if not isinstance(columns, list):
            raise ConfigValidationError(f"columns must be a list, got {type(columns).__name__}")
        return cls(
            dataset=data.get("dataset", ""),
            formatter=data.get("formatter", ""),
            columns=columns,
            num_samples=data.get("num_samples"),
            split=data.get("split", "train"),
            subset=data.get("subset"),
        )

    def validate(self) -> None:
        if not self.dataset:
            raise ConfigValidationError("Dataset is required in calibration entry")
        if not self.split:
            raise ConfigValidationError("Split is required in calibration entry")
        if not self.formatter:
            raise ConfigValidationError("formatter is required in calibration entry")
        if not self.columns:
            raise ConfigValidationError("columns list cannot be empty")
        if self.num_samples != "all" and not (
            isinstance(self.num_samples, int) and not isinstance(self.num_samples, bool) and self.num_samples > 0
        ):
            raise ConfigValidationError("num_samples must be a positive integer or 'all'")

    def resolve_num_samples(self, dataset: Dataset) -> int:
        """Requested sample count, capped at what the dataset holds."""
        available = len(dataset)
        if self.num_samples == "all":
            return available
        if self.num_samples > available:
            logger.warning(
                f"Requested {self.num_samples} samples from {self.dataset}, "
                f"but only {available} available. Using all available samples."
            )
            return available
        return self.num_samples

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclasses.dataclass
class CalibrationSetConfig:
    """Calibration set with shared shuffle/seed and a list of datasets."""

    max_seq_length: int = 512
    shuffle: bool = True
    seed: int = 42
    datasets: List[DatasetEntryConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CalibrationSetConfig":
        # Files MUST have a "calibration_set" key at the root level
        if not isinstance(data, dict) or "calibration_set" not in data:
            raise ConfigValidationError("Configuration must have 'calibration_set' key at the root level")
        body = data["calibration_set"] or {}
        return cls(
            max_seq_length=body.get("max_seq_length", 512),
            shuffle=body.get("shuffle", True),
            seed=body.get("seed", 42),
            datasets=[DatasetEntryConfig.from_dict(ds) for ds in body.get("datasets", [])],
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "CalibrationSetConfig":
        """Load a calibration set from a YAML file."""
        path = Path(path)
        if not path.is_file():
            raise ConfigNotFoundError(f"Calibration set not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise ConfigValidationError(f"Failed to parse calibration set {path}: {e}") from e
        return cls.from_dict(data)

    def validate(self) -> None:
        if not self.datasets:
            raise ConfigValidationError("Calibration set must have at least one dataset")
        if self.max_seq_length <= 0:
            raise ConfigValidationError("max_seq_length must be positive")
        for ds in self.datasets:
            ds.validate()


class CalibrationSet:
    """Calibration dataset together with the configuration that produced it.

    Loading and formatting (`from_config`, `from_cache`, `save_to_cache`)
    only ever deal with untokenized rows; `get_tokenized` is applied last,
    with whichever tokenizer the model being quantized uses.
    """

    def __init__(self, config: CalibrationSetConfig, cache_dir: Union[str, Path] = "./cache"):
        config.validate()
        self.config = config
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.untokenized_calibration_set: Optional[Dataset] = None

    @staticmethod
    def compute_cache_key(config: CalibrationSetConfig) -> str:
        """Deterministic cache file name: ``<7 hex chars>-<total samples>.parquet``."""
        entries = sorted(
            (
                (ds.dataset, ds.split, ds.subset, ds.num_samples, tuple(ds.columns), ds.formatter)
                for ds in config.datasets
            ),
            key=lambda x: (x[0], x[1], str(x[2])),
        )
        canonical = {
            "datasets": entries,
            "max_seq_length": config.max_seq_length,
            "shuffle": config.shuffle,
            "seed": config.seed,
        }
        digest = hashlib.sha256(json.dumps(canonical, sort_keys=True).encode()).hexdigest()[:7]
        total = "all" if any(ds.num_samples == "all" for ds in config.datasets) else sum(
            ds.num_samples for ds in config.datasets
        )
        return f"{digest}-{total}.parquet"

    @property
    def cache_path(self) -> Path:
        return self.cache_dir / self.compute_cache_key(self.config)

    @staticmethod
    def is_cached(config: CalibrationSetConfig, cache_dir: Union[str, Path] = "./cache") -> bool:
        config.validate()
        return (Path(cache_dir) / CalibrationSet.compute_cache_key(config)).exists()

    @classmethod
    def from_cache(cls, config: CalibrationSetConfig, cache_dir: Union[str, Path] = "./cache") -> "CalibrationSet":
        """Load the formatted rows from the Parquet cache, if present and non-empty."""
        instance = cls(config, cache_dir)
        if instance.cache_path.exists():
            logger.info(f"Loading calibration set from cache: {instance.cache_path}")
            dataset = Dataset.from_parquet(str(instance.cache_path))
            if len(dataset) == 0:
                logger.warning(f"Cache found but empty: {instance.cache_path}")
            else:
                instance.untokenized_calibration_set = dataset
        return instance

    @classmethod
    def from_config(cls, config: CalibrationSetConfig, cache_dir: Union[str, Path] = "./cache") -> "CalibrationSet":
        """Build the formatted rows from the raw datasets."""
        instance = cls(config, cache_dir)
        instance._consolidate_datasets()
        return instance

    @classmethod
    def load(cls, config: CalibrationSetConfig, cache_dir: Union[str, Path] = "./cache") -> "CalibrationSet":
        """Cache-aware loading: read the cache, or build from raw data and cache the result."""
        if cls.is_cached(config, cache_dir):
            instance = cls.from_cache(config, cache_dir)
            if instance.untokenized_calibration_set is not None:
                return instance
        logger.info("Calibration set cache miss, building from raw data")
        instance = cls.from_config(config, cache_dir)
        instance.save_to_cache()
        return instance

    def _consolidate_datasets(self) -> Dataset:
        """Load, subsample and format every entry, then concatenate (and shuffle)."""
        parts = []
        for ds_config in self.config.datasets:
            if ds_config.subset is not None:
                dataset = load_dataset(ds_config.dataset, ds_config.subset, split=ds_config.split)
            else:
                dataset = load_dataset(ds_config.dataset, split=ds_config.split)

            num_samples = ds_config.resolve_num_samples(dataset)
            if num_samples < len(dataset):
                dataset = dataset.select(range(num_samples))

            formatter = DatasetFmt.get_formatter(ds_config.formatter)
            columns = ds_config.columns
            dataset = dataset.map(
                lambda row: {"formatted": formatter(columns, row)},
                remove_columns=dataset.column_names,
            )
            parts.append(dataset)

        result = concatenate_datasets(parts)
        if self.config.shuffle:
            result = result.shuffle(seed=self.config.seed)

        self.untokenized_calibration_set = result
        return result

    def _tokenize_row(self, row: Dict[str, Any], tokenizer) -> Dict[str, Any]:
        """Render one row of messages and tokenize it.

        Tokenizers with a chat template get the rendered conversation. Others
        (encoder models) get the raw contents: two messages are encoded as a
        text pair, anything else is joined into one text.
        """
        messages = row["formatted"]
        kwargs = dict(padding=False, max_length=self.config.max_seq_length, truncation=True)

        if getattr(tokenizer, "chat_template", None):
            text = tokenizer.apply_chat_template(messages, tokenize=False)
            return dict(tokenizer(text, add_special_tokens=False, **kwargs))

        contents = [m["content"] for m in messages]
        if len(contents) == 2:
            return dict(tokenizer(contents[0], contents[1], **kwargs))
        return dict(tokenizer("\n".join(contents), **kwargs))

    def get_tokenized(self, tokenizer) -> Dataset:
        """Tokenize the consolidated rows.

        Raises:
            RuntimeError: If the rows were never loaded (cache miss without build)
        """
        if self.untokenized_calibration_set is None:
            raise RuntimeError(
                "Calibration dataset is not loaded. Use CalibrationSet.load(), "
                "CalibrationSet.from_cache() or CalibrationSet.from_config()."
            )
        return self.untokenized_calibration_set.map(
            lambda row: self._tokenize_row(row, tokenizer),
            remove_columns=self.untokenized_calibration_set.column_names,
            load_from_cache_file=False,
        )

    @property
    def total_num_samples(self) -> int:
        if self.untokenized_calibration_set is None:
            return 0
        return len(self.untokenized_calibration_set)

    def save_to_cache(self) -> Optional[Path]:
        """Save the untokenized rows to the Parquet cache."""
        if self.untokenized_calibration_set is None:
            raise RuntimeError("No calibration dataset to save. Load or build it first.")
        if len(self.untokenized_calibration_set) == 0:
            logger.warning("Cannot save empty dataset to cache")
            return None
        logger.info(f"Saving calibration set to cache: {self.cache_path}")
        self.untokenized_calibration_set.to_parquet(str(self.cache_path))
        return self.cache_path
