#!/usr/bin/env python3
"""
Optimization session entry point.

Usage:
    uv run scripts/do_optimize.py --model bert-base-uncased --task sequence-classification \
        --config int8-dynamic --output outputs/bert-int8
    uv run scripts/do_optimize.py --model ./my-model --task causal-lm \
        --config configs/sparse-int8-static.yaml
"""

import argparse
import logging
import os
import sys
import time
from typing import Optional

from transformers import AutoTokenizer

from optimum_compressor import (
    TASK_HEADS,
    Optimizer,
    Pruner,
    Quantizer,
    load_optimization_config,
    setup_logging,
)

os.environ.setdefault("TOKENIZERS_PARALLELISM", "false")


def configure_logging(log_file: Optional[str] = None, level: int = logging.INFO):
    """Configure Python logging."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))  # type: ignore

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def parse_args():
    parser = argparse.ArgumentParser(description="Quantize and/or prune a transformers model")
    parser.add_argument("--model", type=str, required=True, help="Model path or Hub repo id")
    parser.add_argument("--revision", type=str, default="main", help="Model revision (default: main)")
    parser.add_argument(
        "--task",
        type=str,
        required=True,
        choices=sorted(TASK_HEADS),
        help="Task head to load the model with",
    )
    parser.add_argument(
        "--config",
        type=str,
        required=True,
        help="Optimization config: YAML path, saved directory, preset name or Hub repo id",
    )
    parser.add_argument("--output", type=str, default=None, help="Output directory (default: outputs/<model>-<config>)")
    parser.add_argument("--cache-dir", type=str, default="./cache", help="Calibration set cache (default: ./cache)")
    parser.add_argument("--log-dir", type=str, default="./logs", help="Run log directory (default: ./logs)")
    parser.add_argument("--log-file", type=str, default=None, help="Python log file (default: stdout only)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args()


def main():
    args = parse_args()
    configure_logging(args.log_file, logging.DEBUG if args.debug else logging.INFO)

    logging.info(f"Loading configuration: {args.config}")
    config = load_optimization_config(args.config)

    output_dir = args.output
    if output_dir is None:
        output_dir = f"outputs/{args.model.rstrip('/').split('/')[-1]}-{config.name}"

    with setup_logging(
        log_dir=args.log_dir,
        model_name=args.model,
        mode=config.name,
        launch_command=" ".join(sys.argv),
        echo=False,
    ) as run_logger:
        start_time = time.time()
        logging.info(f"Loading model: {args.model}")
        model = TASK_HEADS[args.task].auto_class.from_pretrained(args.model, revision=args.revision)
        tokenizer = AutoTokenizer.from_pretrained(args.model, revision=args.revision)
        run_logger.log_timing("model loading", time.time() - start_time)

        quantizer = None
        pruner = None
        if config.quantization is not None:
            quantizer = Quantizer(config, tokenizer=tokenizer, cache_dir=args.cache_dir)
        if config.pruning is not None:
            pruner = Pruner(config)

        optimizer = Optimizer(model, quantizer=quantizer, pruner=pruner, tokenizer=tokenizer, run_logger=run_logger)
        optimizer.fit()
        optimizer.save_pretrained(output_dir)

    logging.info(f"SUCCESS: optimized model saved in {output_dir}")


if __name__ == "__main__":
    main()
