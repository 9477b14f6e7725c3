"""
Optimization sessions: compose a model with a Quantizer and/or a Pruner,
fit once, save once.

Session lifecycle (`OptimizationState`):

    UNCONFIGURED -> CONFIGURED -> FITTING -> FITTED -> SAVED
                                     \\-> FAILED

A session without a Quantizer or a Pruner stays UNCONFIGURED and `fit`
refuses to run. `save_pretrained` is only allowed once `fit` succeeded.
"""

import copy
import enum
import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

import torch

from .config import OptimizationConfig, OptimizationResults
from .errors import IncompatibleConfigError, OptimizationFailedError, OptimizerStateError
from .modeling import TaskHead
from .pruning import Pruner
from .quantization import Quantizer
from .tuning import AccuracyTuner

logger = logging.getLogger(__name__)


class OptimizationState(str, enum.Enum):
    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    FITTING = "fitting"
    FITTED = "fitted"
    SAVED = "saved"
    FAILED = "failed"


@dataclass
class OptimizedModel:
    """A fitted model together with the effective config describing what was applied."""

    model: torch.nn.Module
    config: OptimizationConfig
    tokenizer: Any = None

    def save_pretrained(self, save_directory: Union[str, Path]) -> Path:
        """
        Write weights, tokenizer and ``optimization_config.yaml`` to ``save_directory``.

        Everything is first written to a staging directory next to the target.
        An existing target is moved aside first and only removed once the staging
        directory has been renamed into place; it is restored if that rename
        fails. Staging and backup directories are removed on every exit path.

        Raises:
            OSError: If writing fails
        """
        save_directory = Path(save_directory)
        save_directory.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{save_directory.name}-", dir=save_directory.parent))
        backup = None
        try:
            self.model.save_pretrained(staging)
            if self.tokenizer is not None:
                self.tokenizer.save_pretrained(staging)
            self.config.save_pretrained(staging)

            if save_directory.exists():
                backup = Path(tempfile.mkdtemp(prefix=f".{save_directory.name}-old-", dir=save_directory.parent))
                os.replace(save_directory, backup / save_directory.name)
            try:
                os.replace(staging, save_directory)
            except OSError:
                if backup is not None:
                    os.replace(backup / save_directory.name, save_directory)
                raise
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)
            if backup is not None and backup.exists():
                shutil.rmtree(backup, ignore_errors=True)

        logger.info(f"Saved optimized model to {save_directory}")
        return save_directory


class Optimizer:
    """
    Drives one optimization session.

    Args:
        model: Base transformers model
        quantizer: Quantization component, optional
        pruner: Pruning component, optional
        tokenizer: Saved next to the model when given
        inplace: Optimize ``model`` itself instead of a deep copy
        run_logger: Optional `OptimizationLogger` receiving steps, trials and timings

    Raises:
        IncompatibleConfigError: If quantizer and pruner configs come from different sources
    """

    def __init__(
        self,
        model: torch.nn.Module,
        quantizer: Optional[Quantizer] = None,
        pruner: Optional[Pruner] = None,
        tokenizer: Any = None,
        inplace: bool = False,
        run_logger=None,
    ):
        if quantizer is not None and pruner is not None and quantizer.config.source != pruner.config.source:
            raise IncompatibleConfigError(
                "Quantizer and Pruner configs must come from the same source, got "
                f"'{quantizer.config.source}' and '{pruner.config.source}'"
            )
        self.model = model
        self.quantizer = quantizer
        self.pruner = pruner
        self.tokenizer = tokenizer
        self.inplace = inplace
        self.run_logger = run_logger
        self._optimized_model: Optional[OptimizedModel] = None
        if quantizer is None and pruner is None:
            self._state = OptimizationState.UNCONFIGURED
        else:
            self._state = OptimizationState.CONFIGURED

    @property
    def state(self) -> OptimizationState:
        return self._state

    @property
    def optimized_model(self) -> Optional[OptimizedModel]:
        return self._optimized_model

    @property
    def config(self) -> Optional[OptimizationConfig]:
        """Session config, limited to the sections this session applies.

        A combined run takes pruning from the Pruner's config.
        """
        if self.quantizer is None:
            return self.pruner.config.replace(quantization=None) if self.pruner is not None else None
        if self.pruner is None:
            return self.quantizer.config.replace(pruning=None)
        return self.quantizer.config.replace(pruning=self.pruner.config.pruning)

    def _log(self, message: str) -> None:
        logger.info(message)
        if self.run_logger is not None:
            self.run_logger.log(message)

    def _eval_func(self):
        for component in (self.quantizer, self.pruner):
            if component is not None and component.eval_func is not None:
                return component.eval_func
        return None

    def fit(self) -> OptimizedModel:
        """
        Run the session: prune (if configured), then quantize through the
        accuracy-driven search (if configured).

        Raises:
            OptimizerStateError: If no Quantizer/Pruner is set or fit already ran
            OptimizationFailedError: If the accuracy criterion cannot be met within budget
        """
        if self._state == OptimizationState.UNCONFIGURED:
            raise OptimizerStateError("Optimizer needs a Quantizer, a Pruner or both before fit()")
        if self._state != OptimizationState.CONFIGURED:
            raise OptimizerStateError(f"fit() can only run once per session (state: {self._state.value})")

        self._state = OptimizationState.FITTING
        try:
            optimized = self._fit()
        except BaseException as e:
            self._state = OptimizationState.FAILED
            if self.run_logger is not None:
                self.run_logger.log_exception(e, context="fit")
            raise
        self._optimized_model = optimized
        self._state = OptimizationState.FITTED
        return optimized

    def _fit(self) -> OptimizedModel:
        config = self.config
        started = time.monotonic()
        if self.run_logger is not None:
            self.run_logger.save_config(config.to_dict())

        eval_func = self._eval_func()
        baseline = float(eval_func(self.model)) if eval_func is not None else None
        if baseline is not None:
            self._log(f"Baseline metric: {baseline:.6f}")

        task_head = TaskHead.for_model(self.model)
        model = self.model if self.inplace else copy.deepcopy(self.model)
        metric = None
        sparsity = None
        trials = 0
        ignore = ()

        if self.pruner is not None:
            self._log(f"Pruning to sparsity {config.pruning.target_sparsity}")
            sparsity = self.pruner.apply(model)
            if self.pruner.eval_func is not None:
                metric = float(self.pruner.eval_func(model))
                self._log(f"Metric after pruning: {metric:.6f}")
                if (
                    self.quantizer is None
                    and baseline is not None
                    and not config.tuning.is_acceptable(metric, baseline)
                ):
                    raise OptimizationFailedError(
                        f"Pruned model metric {metric} does not meet the accuracy criterion "
                        f"against baseline {baseline}"
                    )

        if self.quantizer is not None:
            self._log(f"Quantizing ({config.quantization.approach.value}, {config.quantization.bits}-bit)")
            tuned = AccuracyTuner(self.quantizer, config.tuning, run_logger=self.run_logger).run(model, baseline)
            model = tuned.model
            trials = tuned.trials
            ignore = tuned.ignore
            if tuned.metric is not None:
                metric = tuned.metric

        results = OptimizationResults(
            baseline_metric=baseline,
            metric=metric,
            trials=trials,
            sparsity=sparsity,
            quantized=self.quantizer is not None,
            ignore=tuple(ignore),
        )
        effective = config.replace(task=task_head.name if task_head is not None else None, results=results)

        if self.run_logger is not None:
            self.run_logger.log_timing("fit", time.monotonic() - started)
            self.run_logger.save_results(results.to_dict())
        return OptimizedModel(model=model, config=effective, tokenizer=self.tokenizer)

    def save_pretrained(self, save_directory: Union[str, Path]) -> Path:
        """
        Persist the fitted model and its effective config.

        Raises:
            OptimizerStateError: If called before a successful fit()
            OSError: If writing fails
        """
        if self._state not in (OptimizationState.FITTED, OptimizationState.SAVED):
            raise OptimizerStateError(f"save_pretrained() requires a fitted session (state: {self._state.value})")
        path = self._optimized_model.save_pretrained(save_directory)
        self._state = OptimizationState.SAVED
        self._log(f"Saved to {path}")
        return path
