"""
Magnitude pruning driven by `torch.nn.utils.prune`.

The pruner walks an epoch schedule: at each epoch the targeted weights are
pruned up to that epoch's sparsity, then the caller's training function
runs one fine-tuning pass with the masks in place. Masks are made permanent
once the schedule ends.
"""

import logging
from typing import Any, Callable, List, Optional, Tuple

import torch
from torch.nn.utils import prune

from .config import OptimizationConfig, PruningConfig, PruningMode
from .errors import ConfigValidationError
from .modules import match_modules, measure_sparsity

logger = logging.getLogger(__name__)

EvaluationFunction = Callable[[torch.nn.Module], float]
TrainingFunction = Callable[[torch.nn.Module], Any]


class Pruner:
    """
    Pruning half of an optimization session.

    Holds the pruning config and the caller's callbacks. Nothing is invoked
    at construction; the owning Optimizer calls `apply` during `fit`.

    Args:
        config: Optimization config with a ``pruning`` section
        eval_func: Maps a candidate model to a scalar metric
        train_func: Runs one fine-tuning epoch on the model it is given
    """

    def __init__(
        self,
        config: OptimizationConfig,
        eval_func: Optional[EvaluationFunction] = None,
        train_func: Optional[TrainingFunction] = None,
    ):
        if config.pruning is None:
            raise ConfigValidationError(f"Config '{config.name}' has no 'pruning' section")
        self.config = config
        self.eval_func = eval_func
        self.train_func = train_func

    @property
    def pruning_config(self) -> PruningConfig:
        return self.config.pruning

    def sparsity_at(self, epoch: int) -> float:
        """Cubic sparsity schedule from ``initial_sparsity`` to ``target_sparsity``."""
        cfg = self.pruning_config
        if epoch >= cfg.end_epoch:
            return cfg.target_sparsity
        if epoch <= cfg.start_epoch:
            return cfg.initial_sparsity
        progress = (epoch - cfg.start_epoch) / (cfg.end_epoch - cfg.start_epoch)
        return cfg.initial_sparsity + (cfg.target_sparsity - cfg.initial_sparsity) * (1.0 - (1.0 - progress) ** 3)

    def schedule(self) -> List[int]:
        """Epochs at which pruning steps happen; a single step without a training function."""
        cfg = self.pruning_config
        if self.train_func is None:
            return [cfg.end_epoch]
        return list(range(cfg.start_epoch, cfg.end_epoch + 1))

    def _parameters(self, model: torch.nn.Module) -> List[Tuple[torch.nn.Module, str]]:
        cfg = self.pruning_config
        params = [
            (module, "weight")
            for _, module in match_modules(model, cfg.targets, cfg.ignore)
            if isinstance(getattr(module, "weight", None), torch.Tensor)
        ]
        if not params:
            raise ConfigValidationError(
                f"No modules with weights match pruning targets {list(cfg.targets)} (ignore={list(cfg.ignore)})"
            )
        return params

    def _prune_step(self, params, current: float, sparsity: float) -> None:
        # amounts apply to the still-unpruned entries
        amount = (sparsity - current) / (1.0 - current)
        if self.pruning_config.method == PruningMode.MAGNITUDE:
            prune.global_unstructured(params, pruning_method=prune.L1Unstructured, amount=amount)
        else:
            for module, name in params:
                prune.l1_unstructured(module, name, amount=amount)

    def apply(self, model: torch.nn.Module) -> float:
        """
        Prune ``model`` in place following the schedule.

        Returns:
            Measured sparsity of the targeted weights
        """
        cfg = self.pruning_config
        params = self._parameters(model)
        current = 0.0

        for epoch in self.schedule():
            sparsity = self.sparsity_at(epoch)
            if sparsity > current:
                with torch.no_grad():
                    self._prune_step(params, current, sparsity)
                current = sparsity
            logger.info(f"Pruning epoch {epoch}: sparsity {current:.4f} (target {cfg.target_sparsity})")
            if self.train_func is not None:
                self.train_func(model)

        for module, name in params:
            if prune.is_pruned(module):
                prune.remove(module, name)

        achieved = measure_sparsity(model, cfg.targets, cfg.ignore)
        logger.info(f"Pruning done: measured sparsity {achieved:.4f}")
        return achieved
