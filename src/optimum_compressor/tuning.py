"""
Accuracy-driven quantization search.

Each trial quantizes a fresh copy of the model and scores it with the
caller's evaluation function. Trial ``k`` keeps the first ``k`` fallback
modules in full precision on top of the configured ignores, so every
retry is less aggressive than the one before. The search stops at the first
candidate meeting the accuracy criterion, or fails once the trial budget,
the timeout or the fallback list runs out.
"""

import copy
import logging
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import torch

from .config import TuningConfig
from .errors import OptimizationFailedError
from .modules import match_modules
from .quantization import Quantizer

logger = logging.getLogger(__name__)


@dataclass
class TuningResult:
    model: torch.nn.Module
    metric: Optional[float]
    trials: int
    ignore: Tuple[str, ...]


class AccuracyTuner:
    def __init__(self, quantizer: Quantizer, tuning: TuningConfig, run_logger=None):
        self.quantizer = quantizer
        self.tuning = tuning
        self.run_logger = run_logger

    def _log(self, message: str) -> None:
        logger.info(message)
        if self.run_logger is not None:
            self.run_logger.log(message)

    def fallback_candidates(self, model: torch.nn.Module) -> Tuple[str, ...]:
        """Modules to keep in full precision, one more per retry."""
        qconfig = self.quantizer.quantization_config
        if self.tuning.fallback:
            return tuple(name for name in self.tuning.fallback if name not in qconfig.ignore)
        return tuple(name for name, _ in match_modules(model, qconfig.targets, qconfig.ignore))

    def run(self, model: torch.nn.Module, baseline: Optional[float] = None) -> TuningResult:
        """
        Search for an acceptable quantized model.

        Without an evaluation function the configured scheme is applied once,
        in place. Otherwise every trial works on a deep copy of ``model``.

        Raises:
            OptimizationFailedError: If no trial meets the accuracy criterion within budget
        """
        base_ignore = tuple(self.quantizer.quantization_config.ignore)
        dataset = self.quantizer.calibration_dataset()
        eval_func = self.quantizer.eval_func

        if eval_func is None:
            self.quantizer.apply(model, ignore=base_ignore, dataset=dataset)
            return TuningResult(model=model, metric=None, trials=1, ignore=base_ignore)

        fallback = self.fallback_candidates(model)
        budget = min(self.tuning.max_trials, len(fallback) + 1)
        started = time.monotonic()
        best = None

        for trial in range(budget):
            if self.tuning.timeout and time.monotonic() - started > self.tuning.timeout:
                self._log(f"Tuning timeout ({self.tuning.timeout}s) reached after {trial} trial(s)")
                break

            ignore = base_ignore + fallback[:trial]
            candidate = copy.deepcopy(model)
            self.quantizer.apply(candidate, ignore=ignore, dataset=dataset)
            metric = float(eval_func(candidate))
            self._log(f"Trial {trial + 1}/{budget}: metric={metric:.6f} baseline={baseline} fallback={list(fallback[:trial])}")

            if best is None or (metric > best if self.tuning.higher_is_better else metric < best):
                best = metric
            if baseline is None or self.tuning.is_acceptable(metric, baseline):
                return TuningResult(model=candidate, metric=metric, trials=trial + 1, ignore=ignore)

        raise OptimizationFailedError(
            f"Accuracy criterion ({self.tuning.criterion.value}, tolerance={self.tuning.tolerance}) "
            f"not met: baseline={baseline}, best={best} after exhausting the tuning budget"
        )
