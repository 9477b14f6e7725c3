"""
Post-training quantization through llm-compressor.

The Quantizer turns the ``quantization`` section of an optimization config
into an llm-compressor recipe (a `QuantizationModifier` carrying a
compressed-tensors scheme) and applies it with `oneshot`.

Schemes:
- 8-bit dynamic: INT8 per-channel weights, INT8 per-token activations at runtime
- 8-bit static: INT8 per-channel weights, INT8 per-tensor activations calibrated on data
- 4-bit: weight-only, group size 128
"""

import logging
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Union

import torch
from compressed_tensors.quantization import (
    QuantizationArgs,
    QuantizationScheme,
    QuantizationStrategy,
    QuantizationType,
)
from datasets import Dataset
from llmcompressor import oneshot
from llmcompressor.modifiers.quantization import QuantizationModifier

from .calibration_sets import CalibrationSet, CalibrationSetConfig
from .config import OptimizationConfig, QuantizationConfig, QuantizationMode
from .errors import ConfigValidationError

logger = logging.getLogger(__name__)

EvaluationFunction = Callable[[torch.nn.Module], float]

GROUP_SIZE = 128


class Quantizer:
    """
    Quantization half of an optimization session.

    Holds the quantization config, the evaluation callback and, for the
    static approach, the calibration data source. ``eval_func`` is never
    called here; the Optimizer's accuracy tuner calls it during `fit`.

    Args:
        config: Optimization config with a ``quantization`` section
        eval_func: Maps a candidate model to a scalar metric
        calib_dataset: Tokenized calibration dataset (static approach)
        tokenizer: Tokenizer used to build the calibration set referenced by
            ``quantization.calibration_set`` when no dataset is given
        cache_dir: Calibration set cache directory
    """

    def __init__(
        self,
        config: OptimizationConfig,
        eval_func: Optional[EvaluationFunction] = None,
        calib_dataset: Optional[Dataset] = None,
        tokenizer: Any = None,
        cache_dir: Union[str, Path] = "./cache",
    ):
        if config.quantization is None:
            raise ConfigValidationError(f"Config '{config.name}' has no 'quantization' section")
        self.config = config
        self.eval_func = eval_func
        self.calib_dataset = calib_dataset
        self.tokenizer = tokenizer
        self.cache_dir = cache_dir

        qconfig = config.quantization
        if qconfig.approach == QuantizationMode.STATIC and calib_dataset is None:
            if qconfig.calibration_set is None:
                raise ConfigValidationError(
                    "Static quantization needs calibration data: pass calib_dataset "
                    "or set 'quantization.calibration_set'"
                )
            if tokenizer is None:
                raise ConfigValidationError("A tokenizer is required to build the calibration set")

    @property
    def quantization_config(self) -> QuantizationConfig:
        return self.config.quantization

    @property
    def approach(self) -> QuantizationMode:
        return self.quantization_config.approach

    def build_scheme(self) -> QuantizationScheme:
        cfg = self.quantization_config
        if cfg.bits == 4:
            weights = QuantizationArgs(
                num_bits=4,
                type=QuantizationType.INT,
                symmetric=cfg.symmetric,
                strategy=QuantizationStrategy.GROUP,
                group_size=GROUP_SIZE,
                dynamic=False,
            )
            return QuantizationScheme(targets=list(cfg.targets), weights=weights)

        weights = QuantizationArgs(
            num_bits=8,
            type=QuantizationType.INT,
            symmetric=cfg.symmetric,
            strategy=QuantizationStrategy.CHANNEL,
            dynamic=False,
        )
        if cfg.approach == QuantizationMode.DYNAMIC:
            activations = QuantizationArgs(
                num_bits=8,
                type=QuantizationType.INT,
                symmetric=True,
                strategy=QuantizationStrategy.TOKEN,
                dynamic=True,
            )
        else:
            activations = QuantizationArgs(
                num_bits=8,
                type=QuantizationType.INT,
                symmetric=cfg.symmetric,
                strategy=QuantizationStrategy.TENSOR,
                dynamic=False,
            )
        return QuantizationScheme(targets=list(cfg.targets), weights=weights, input_activations=activations)

    def build_recipe(self, ignore: Iterable[str] = ()) -> QuantizationModifier:
        """llm-compressor recipe keeping ``ignore`` modules in full precision."""
        return QuantizationModifier(config_groups={"group_0": self.build_scheme()}, ignore=list(ignore))

    def _calibration_set_path(self) -> Path:
        path = Path(self.quantization_config.calibration_set)
        if path.suffix != ".yaml":
            path = path.with_name(path.name + ".yaml")
        source = Path(self.config.source)
        # relative references resolve against the config file that made them
        if not path.is_absolute() and source.is_file() and not path.exists():
            path = source.parent / path
        return path

    def calibration_dataset(self) -> Optional[Dataset]:
        """Tokenized calibration data for the static approach, None for dynamic."""
        if self.approach == QuantizationMode.DYNAMIC:
            return None
        if self.calib_dataset is not None:
            return self.calib_dataset
        calib_config = CalibrationSetConfig.from_file(self._calibration_set_path())
        calib_set = CalibrationSet.load(calib_config, cache_dir=self.cache_dir)
        return calib_set.get_tokenized(self.tokenizer)

    def apply(
        self,
        model: torch.nn.Module,
        ignore: Iterable[str] = (),
        dataset: Optional[Dataset] = None,
    ) -> torch.nn.Module:
        """
        Quantize ``model`` in place with llm-compressor.

        Args:
            model: Model to quantize
            ignore: Modules kept in full precision
            dataset: Tokenized calibration data, required for the static approach
        """
        cfg = self.quantization_config
        recipe = self.build_recipe(ignore)
        kwargs = {}
        if self.tokenizer is not None:
            kwargs["tokenizer"] = self.tokenizer
        if cfg.approach == QuantizationMode.STATIC:
            if dataset is None:
                raise ValueError("Static quantization requires a calibration dataset")
            kwargs.update(
                dataset=dataset,
                max_seq_length=cfg.max_seq_length,
                num_calibration_samples=min(cfg.num_calibration_samples, len(dataset)),
            )
        logger.info(f"Applying {cfg.bits}-bit {cfg.approach.value} quantization (ignore={list(ignore)})")
        oneshot(model=model, recipe=recipe, **kwargs)
        return model
