"""
Run logs for optimization sessions.

Creates timestamped files in ./logs/ with:
- Main execution log: <datetime>-<model>-<mode>.log
- Configuration YAML: <datetime>-<model>-<mode>-config.yaml
- Results YAML: <datetime>-<model>-<mode>-results.yaml

The naming convention keeps runs ordered and prevents overwrites.
"""

import traceback
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, TextIO

import yaml


class OptimizationLogger:
    """
    Logger for one optimization session.

    Attributes:
        log_dir: Directory for log files
        base_name: Shared stem of every file of the run
        log_file: Path to main log file
        config_file: Path to config YAML snapshot
        results_file: Path to results YAML snapshot
        start_time: When the run started
    """

    def __init__(
        self,
        log_dir: str = "./logs",
        model_name: str = "unknown",
        mode: str = "unknown",
        timestamp: Optional[datetime] = None,
        echo: bool = True,
    ):
        """
        Args:
            log_dir: Directory for log files
            model_name: Model identifier for log naming
            mode: Optimization mode for log naming (e.g. "int8-dynamic")
            timestamp: Optional datetime (defaults to now)
            echo: Also print every line to stdout
        """
        if timestamp is None:
            timestamp = datetime.now()
        ts_str = timestamp.strftime("%Y-%m-%d_%H-%M-%S")
        safe_model = model_name.replace("/", "_").replace(":", "-")

        self.log_dir = Path(log_dir)
        self.base_name = f"{ts_str}-{safe_model}-{mode}"
        self.log_file = self.log_dir / f"{self.base_name}.log"
        self.config_file = self.log_dir / f"{self.base_name}-config.yaml"
        self.results_file = self.log_dir / f"{self.base_name}-results.yaml"
        self.start_time = timestamp
        self.echo = echo
        self._log_file_handle: Optional[TextIO] = None

    def open(self) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._log_file_handle = open(self.log_file, "w", encoding="utf-8")

    def close(self) -> None:
        if self._log_file_handle:
            self._log_file_handle.close()
            self._log_file_handle = None

    def log(self, message: str, level: str = "INFO") -> None:
        """Write a message to the main log file (and stdout when echoing)."""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        formatted = f"[{timestamp}] [{level}] {message}"
        if self._log_file_handle:
            self._log_file_handle.write(formatted + "\n")
            self._log_file_handle.flush()
        if self.echo:
            print(formatted)

    def log_section(self, title: str) -> None:
        separator = "=" * 60
        self.log(separator)
        self.log(f"  {title}")
        self.log(separator)

    def log_dict(self, title: str, data: Dict[str, Any], level: str = "INFO") -> None:
        self.log(f"{title}:", level)
        for line in yaml.safe_dump(data, default_flow_style=False, sort_keys=False).strip().split("\n"):
            self.log(f"  {line}", level)

    def _dump(self, path: Path, data: Dict[str, Any]) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)

    def save_config(self, config: Dict[str, Any]) -> None:
        self._dump(self.config_file, config)
        self.log(f"Saved config to: {self.config_file}")

    def save_results(self, results: Dict[str, Any]) -> None:
        self._dump(self.results_file, results)
        self.log(f"Saved results to: {self.results_file}")

    def log_step(self, step: str, status: str = "STARTED") -> None:
        """Log a processing step (STARTED, COMPLETED, FAILED, SKIPPED)."""
        self.log(f"Step: {step} [{status}]")

    def log_exception(self, exception: BaseException, context: str = "") -> None:
        self.log(f"ERROR in {context}: {type(exception).__name__}", level="ERROR")
        self.log(str(exception), level="ERROR")
        tb = "".join(traceback.format_exception(type(exception), exception, exception.__traceback__))
        self.log(f"Traceback:\n{tb}", level="ERROR")

    def log_timing(self, operation: str, duration_seconds: float) -> None:
        if duration_seconds < 60:
            self.log(f"{operation}: {duration_seconds:.2f}s")
        elif duration_seconds < 3600:
            self.log(f"{operation}: {duration_seconds / 60:.2f}min")
        else:
            self.log(f"{operation}: {duration_seconds / 3600:.2f}h")

    def __enter__(self) -> "OptimizationLogger":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            self.log_exception(exc_val, context="optimization_run")
        self.close()


@contextmanager
def setup_logging(
    log_dir: str = "./logs",
    model_name: str = "unknown",
    mode: str = "unknown",
    launch_command: Optional[str] = None,
    echo: bool = True,
):
    """
    Context manager for a session's run log.

    Usage:
        with setup_logging(model_name="bert-base-uncased", mode="int8-dynamic") as run_logger:
            optimizer = Optimizer(model, quantizer=quantizer, run_logger=run_logger)
            ...
    """
    run_logger = OptimizationLogger(log_dir, model_name, mode, echo=echo)
    run_logger.open()
    try:
        run_logger.log_section("OPTIMIZATION RUN")
        if launch_command:
            run_logger.log_section("LAUNCH COMMAND")
            run_logger.log(launch_command)
        yield run_logger
    except BaseException as e:
        run_logger.log_exception(e, context="optimization_run")
        raise
    finally:
        run_logger.log_section("RUN COMPLETED")
        run_logger.close()
