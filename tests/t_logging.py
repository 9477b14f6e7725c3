#!/usr/bin/env python3

"""
Tests for session run logs.

To run these tests:
    uv run pytest tests/t_logging.py
"""

from datetime import datetime

import pytest
import yaml

from optimum_compressor.logging_ import OptimizationLogger, setup_logging


def test_file_naming(tmp_path):
    run_logger = OptimizationLogger(
        tmp_path, "google-bert/bert-base-uncased", "int8-dynamic", timestamp=datetime(2026, 1, 2, 3, 4, 5)
    )

    assert run_logger.base_name == "2026-01-02_03-04-05-google-bert_bert-base-uncased-int8-dynamic"
    assert run_logger.log_file.name.endswith(".log")
    assert run_logger.config_file.name.endswith("-config.yaml")
    assert run_logger.results_file.name.endswith("-results.yaml")


def test_log_and_snapshots(tmp_path, capsys):
    print("\n=== Testing Run Log ===")
    with OptimizationLogger(tmp_path, "tiny-bert", "int8-dynamic") as run_logger:
        run_logger.log_section("SESSION")
        run_logger.log_step("quantization")
        run_logger.log_dict("Scheme", {"bits": 8, "approach": "dynamic"})
        run_logger.log_timing("fit", 90.0)
        run_logger.save_config({"optimization": {"name": "int8-dynamic"}})
        run_logger.save_results({"metric": 0.9})

    text = run_logger.log_file.read_text()
    assert "Step: quantization [STARTED]" in text
    assert "  bits: 8" in text
    assert "fit: 1.50min" in text
    assert "[INFO]" in text
    with open(run_logger.results_file) as f:
        assert yaml.safe_load(f) == {"metric": 0.9}

    # echo is on by default
    assert "Step: quantization [STARTED]" in capsys.readouterr().out
    print("✅ Run log test passed")


def test_setup_logging_records_failures(tmp_path):
    with pytest.raises(RuntimeError):
        with setup_logging(tmp_path, "tiny-bert", "int8-static", launch_command="do_optimize.py", echo=False) as run_logger:
            raise RuntimeError("calibration exploded")

    text = run_logger.log_file.read_text()
    assert "LAUNCH COMMAND" in text
    assert "do_optimize.py" in text
    assert "[ERROR] ERROR in optimization_run: RuntimeError" in text
    assert "calibration exploded" in text
    assert "RUN COMPLETED" in text


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
