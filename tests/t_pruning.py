#!/usr/bin/env python3

"""
Tests for magnitude pruning.

Validates:
- Cubic sparsity schedule
- One-shot and scheduled pruning reach the target sparsity
- Global vs per-layer ranking
- Target/ignore selection

To run these tests:
    uv run pytest tests/t_pruning.py
"""

import pytest
from torch.nn.utils import prune

from optimum_compressor.config import OptimizationConfig, PruningConfig, PruningMode, load_optimization_config
from optimum_compressor.errors import ConfigValidationError
from optimum_compressor.modules import match_modules, measure_sparsity
from optimum_compressor.pruning import Pruner


def pruning_config(**kwargs) -> OptimizationConfig:
    params = dict(target_sparsity=0.5, start_epoch=0, end_epoch=4)
    params.update(kwargs)
    return OptimizationConfig(name="test-pruning", source="test", pruning=PruningConfig(**params))


def test_schedule_is_cubic_and_monotonic():
    print("\n=== Testing Sparsity Schedule ===")
    pruner = Pruner(pruning_config(initial_sparsity=0.1, start_epoch=1, end_epoch=5))

    assert pruner.sparsity_at(0) == 0.1
    assert pruner.sparsity_at(1) == 0.1
    assert pruner.sparsity_at(5) == 0.5
    assert pruner.sparsity_at(9) == 0.5
    # halfway through the span, 1/8 of the remaining gap is left
    assert pruner.sparsity_at(3) == pytest.approx(0.5 - 0.4 / 8)

    values = [pruner.sparsity_at(epoch) for epoch in range(7)]
    assert values == sorted(values)
    print("✅ Sparsity schedule test passed")


@pytest.mark.parametrize("initial", [0.0, 0.1, 0.3])
def test_schedule_starts_at_initial_sparsity(initial):
    pruner = Pruner(pruning_config(target_sparsity=0.6, initial_sparsity=initial, start_epoch=0, end_epoch=3))
    values = [pruner.sparsity_at(epoch) for epoch in range(5)]

    assert values[0] == initial
    assert all(earlier <= later for earlier, later in zip(values, values[1:]))
    assert values[-1] == 0.6


def test_schedule_without_training_is_one_step():
    assert Pruner(pruning_config()).schedule() == [4]
    assert Pruner(pruning_config(), train_func=lambda model: None).schedule() == [0, 1, 2, 3, 4]


def test_one_shot_reaches_target(classifier):
    print("\n=== Testing One-Shot Pruning ===")
    config = load_optimization_config("magnitude-sparse-0.1")
    sparsity = Pruner(config).apply(classifier)

    assert abs(sparsity - 0.1) < 0.01
    assert measure_sparsity(classifier) == pytest.approx(sparsity)
    for _, module in match_modules(classifier, ["Linear"]):
        assert not prune.is_pruned(module)
        assert not hasattr(module, "weight_mask")
    print("✅ One-shot pruning test passed")


def test_training_runs_once_per_epoch(classifier):
    seen = []

    def train_func(model):
        seen.append(measure_sparsity(model))

    sparsity = Pruner(pruning_config(end_epoch=3), train_func=train_func).apply(classifier)

    assert len(seen) == 4
    assert seen == sorted(seen)
    assert seen[0] == 0.0
    assert abs(sparsity - 0.5) < 0.01


def test_layer_magnitude_prunes_every_layer_equally(classifier):
    config = pruning_config(target_sparsity=0.3, end_epoch=0, method=PruningMode.LAYER_MAGNITUDE)
    Pruner(config).apply(classifier)

    for name, module in match_modules(classifier, ["Linear"]):
        layer_sparsity = float((module.weight == 0).float().mean())
        assert abs(layer_sparsity - 0.3) < 0.01, name


def test_ignored_modules_are_untouched(classifier):
    config = pruning_config(target_sparsity=0.4, ignore=("classifier", "re:.*attention.*"))
    Pruner(config).apply(classifier)

    assert measure_sparsity(classifier, ["re:.*attention.*"]) == 0.0
    assert float((classifier.classifier.weight == 0).float().mean()) == 0.0
    assert measure_sparsity(classifier, ["Linear"], ("classifier", "re:.*attention.*")) == pytest.approx(0.4, abs=0.01)


def test_no_matching_modules(classifier):
    config = pruning_config(targets=("Conv2d",))
    with pytest.raises(ConfigValidationError, match="No modules"):
        Pruner(config).apply(classifier)


def test_config_without_pruning_section():
    config = load_optimization_config("int8-dynamic")
    with pytest.raises(ConfigValidationError, match="no 'pruning' section"):
        Pruner(config)


def test_match_modules_ignores_children(classifier):
    names = [name for name, _ in match_modules(classifier, ["Linear"], ["bert.encoder.layer.0"])]

    assert "classifier" in names
    assert "bert.pooler.dense" in names
    assert not any(name.startswith("bert.encoder.layer.0.") for name in names)
    assert any(name.startswith("bert.encoder.layer.1.") for name in names)


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
