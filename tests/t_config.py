#!/usr/bin/env python3

"""
Tests for optimization config loading.

Covers preset, file, directory and Hub resolution, schema validation,
accuracy criteria and the save/load round trip.

To run these tests:
    uv run pytest tests/t_config.py
"""

from pathlib import Path
from unittest import mock

import pytest
import yaml
from huggingface_hub.errors import LocalEntryNotFoundError

from optimum_compressor.config import (
    CONFIG_NAME,
    AccuracyCriterion,
    OptimizationConfig,
    OptimizationResults,
    PruningMode,
    QuantizationMode,
    TuningConfig,
    list_presets,
    load_optimization_config,
)
from optimum_compressor.errors import (
    ConfigNotFoundError,
    ConfigValidationError,
    MalformedConfigError,
    NotFoundError,
)


def write_yaml(path: Path, data) -> Path:
    with open(path, "w") as f:
        yaml.safe_dump(data, f)
    return path


def test_presets_are_bundled():
    """All bundled presets load and validate."""
    print("\n=== Testing Bundled Presets ===")
    presets = list_presets()
    assert "int8-dynamic" in presets
    assert "sparse-0.1-int8-dynamic" in presets

    for name in presets:
        config = load_optimization_config(name)
        assert config.source == name
        assert config.quantization is not None or config.pruning is not None

    print("✅ Preset loading test passed")


def test_int8_dynamic_preset():
    config = load_optimization_config("int8-dynamic")

    assert config.name == "int8-dynamic"
    assert config.quantization.approach == QuantizationMode.DYNAMIC
    assert config.quantization.bits == 8
    assert config.quantization.targets == ("Linear",)
    assert config.pruning is None
    assert config.task is None
    assert config.results is None


def test_combined_preset():
    config = load_optimization_config("sparse-0.1-int8-dynamic")

    assert config.pruning.target_sparsity == 0.1
    assert config.pruning.method == PruningMode.MAGNITUDE
    assert config.quantization.approach == QuantizationMode.DYNAMIC


def test_load_from_file_and_directory(tmp_path):
    """A YAML file and a directory holding optimization_config.yaml both resolve."""
    data = {
        "optimization": {
            "name": "custom",
            "quantization": {"approach": "static", "bits": 8, "ignore": ["classifier"]},
        }
    }
    path = write_yaml(tmp_path / "custom.yaml", data)

    config = load_optimization_config(str(path))
    assert config.name == "custom"
    assert config.source == str(path)
    assert config.quantization.approach == QuantizationMode.STATIC
    assert config.quantization.ignore == ("classifier",)

    save_dir = tmp_path / "saved"
    config.save_pretrained(save_dir)
    assert (save_dir / CONFIG_NAME).is_file()
    assert load_optimization_config(save_dir) == config


def test_missing_config_raises_not_found(tmp_path):
    with pytest.raises(ConfigNotFoundError):
        load_optimization_config(str(tmp_path / "missing.yaml"))

    with pytest.raises(NotFoundError):
        load_optimization_config("./nowhere/config.yaml")

    # directory without a config file
    with pytest.raises(ConfigNotFoundError):
        load_optimization_config(tmp_path)


def test_hub_repository_download(tmp_path):
    """Non-local identifiers are fetched from the Hub."""
    path = write_yaml(
        tmp_path / CONFIG_NAME,
        {"optimization": {"name": "hub-config", "pruning": {"target_sparsity": 0.2}}},
    )
    with mock.patch("optimum_compressor.config.hf_hub_download", return_value=str(path)) as download:
        config = load_optimization_config("someone/bert-pruning", revision="v1")

    download.assert_called_once_with("someone/bert-pruning", CONFIG_NAME, revision="v1", cache_dir=None)
    assert config.source == "someone/bert-pruning"
    assert config.pruning.target_sparsity == 0.2


def test_hub_miss_raises_not_found():
    with mock.patch(
        "optimum_compressor.config.hf_hub_download",
        side_effect=LocalEntryNotFoundError("not in cache"),
    ):
        with pytest.raises(ConfigNotFoundError):
            load_optimization_config("someone/missing-config")


def test_malformed_yaml(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("optimization: [unclosed\n  - nope: {")

    with pytest.raises(MalformedConfigError):
        load_optimization_config(str(path))


def test_non_utf8_file_is_malformed(tmp_path):
    path = tmp_path / "binary.yaml"
    path.write_bytes(b"\xff\xfeoptimization:\n")

    with pytest.raises(MalformedConfigError):
        load_optimization_config(str(path))


@pytest.mark.parametrize(
    "data",
    [
        {"quantization": {"approach": "dynamic"}},  # missing root key
        {"optimization": {"name": "empty"}},  # neither quantization nor pruning
        {"optimization": {"quantization": {"approach": "weekly"}}},
        {"optimization": {"quantization": {"bits": 3}}},
        {"optimization": {"quantization": {"bits": 4, "approach": "static"}}},
        {"optimization": {"quantization": "int8"}},
        {"optimization": {"pruning": {"target_sparsity": 1.5}}},
        {"optimization": {"pruning": {"initial_sparsity": 0.1}}},
        {"optimization": {"pruning": {"target_sparsity": 0.5, "start_epoch": 3, "end_epoch": 1}}},
        {"optimization": {"pruning": {"target_sparsity": 0.5, "method": "random"}}},
        {"optimization": {"pruning": {"target_sparsity": 0.5}, "tuning": {"max_trials": 0}}},
        {"optimization": {"pruning": {"target_sparsity": "half"}}},
        {"optimization": {"quantization": {"symmetric": "false"}}},
        {"optimization": {"pruning": {"target_sparsity": 0.5}, "tuning": {"higher_is_better": "no"}}},
    ],
)
def test_invalid_configs(tmp_path, data):
    path = write_yaml(tmp_path / "invalid.yaml", data)
    with pytest.raises(ConfigValidationError):
        load_optimization_config(str(path))


def test_config_is_immutable():
    config = load_optimization_config("int8-dynamic")
    with pytest.raises(Exception):
        config.name = "changed"

    updated = config.replace(task="question-answering")
    assert updated.task == "question-answering"
    assert config.task is None


def test_round_trip_with_results(tmp_path):
    config = load_optimization_config("sparse-0.1-int8-dynamic").replace(
        task="sequence-classification",
        results=OptimizationResults(
            baseline_metric=0.91,
            metric=0.905,
            trials=2,
            sparsity=0.1000213623046875,
            quantized=True,
            ignore=("lm_head", "bert.pooler.dense"),
        ),
    )
    config.save_pretrained(tmp_path)

    reloaded = load_optimization_config(tmp_path)
    assert reloaded == config
    assert reloaded.source == "sparse-0.1-int8-dynamic"


def test_accuracy_criterion():
    relative = TuningConfig(criterion=AccuracyCriterion.RELATIVE, tolerance=0.01)
    assert relative.is_acceptable(0.99, 1.0)
    assert not relative.is_acceptable(0.98, 1.0)
    assert relative.is_acceptable(1.2, 1.0)

    absolute = TuningConfig(criterion=AccuracyCriterion.ABSOLUTE, tolerance=0.05)
    assert absolute.is_acceptable(0.85, 0.9)
    assert not absolute.is_acceptable(0.84, 0.9)

    # lower is better, e.g. perplexity
    loss = TuningConfig(criterion=AccuracyCriterion.RELATIVE, tolerance=0.1, higher_is_better=False)
    assert loss.is_acceptable(10.9, 10.0)
    assert not loss.is_acceptable(11.5, 10.0)


def test_from_pretrained_alias():
    assert OptimizationConfig.from_pretrained("int8-static") == load_optimization_config("int8-static")


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
