"""
Model compression sessions for transformers models, built on llm-compressor.

This package wraps quantization (llm-compressor / compressed-tensors) and
magnitude pruning (torch.nn.utils.prune) behind a small session API.

Main Components:
- config: Optimization config loading (local file, saved dir, preset, Hub)
- quantization: Quantizer, recipes applied with llm-compressor oneshot
- pruning: Pruner, scheduled magnitude pruning with a training callback
- optimization: Optimizer session (fit / save_pretrained)
- modeling: Task-head loaders for saved optimized models
- calibration_sets: Calibration data for static quantization
- logging_: Run logs for sessions

Quick Start:
    from optimum_compressor import (
        Optimizer, Quantizer, QuantizedModelForQuestionAnswering, load_optimization_config,
    )

    config = load_optimization_config("int8-dynamic")
    quantizer = Quantizer(config, eval_func=lambda model: evaluate_f1(model))
    optimizer = Optimizer(model, quantizer=quantizer, tokenizer=tokenizer)
    optimizer.fit()
    optimizer.save_pretrained("./bert-squad-int8")

    model = QuantizedModelForQuestionAnswering.from_pretrained("./bert-squad-int8")
"""

from .config import (
    AccuracyCriterion,
    OptimizationConfig,
    OptimizationResults,
    PruningConfig,
    PruningMode,
    QuantizationConfig,
    QuantizationMode,
    TuningConfig,
    list_presets,
    load_optimization_config,
    load_yaml,
)
from .errors import (
    ConfigError,
    ConfigNotFoundError,
    ConfigValidationError,
    IncompatibleConfigError,
    MalformedConfigError,
    ModelNotFoundError,
    NotFoundError,
    OptimizationFailedError,
    OptimizerStateError,
)
from .logging_ import OptimizationLogger, setup_logging
from .modeling import (
    TASK_HEADS,
    QuantizedModelForCausalLM,
    QuantizedModelForMaskedLM,
    QuantizedModelForMultipleChoice,
    QuantizedModelForQuestionAnswering,
    QuantizedModelForSeq2SeqLM,
    QuantizedModelForSequenceClassification,
    QuantizedModelForTokenClassification,
    QuantizedModelLoader,
    TaskHead,
    get_loader,
)
from .optimization import OptimizationState, OptimizedModel, Optimizer
from .pruning import Pruner
from .quantization import Quantizer

__all__ = [
    # Config
    "load_optimization_config",
    "load_yaml",
    "list_presets",
    "OptimizationConfig",
    "OptimizationResults",
    "QuantizationConfig",
    "QuantizationMode",
    "PruningConfig",
    "PruningMode",
    "TuningConfig",
    "AccuracyCriterion",
    # Errors
    "ConfigError",
    "ConfigNotFoundError",
    "ConfigValidationError",
    "MalformedConfigError",
    "IncompatibleConfigError",
    "NotFoundError",
    "ModelNotFoundError",
    "OptimizationFailedError",
    "OptimizerStateError",
    # Session
    "Quantizer",
    "Pruner",
    "Optimizer",
    "OptimizedModel",
    "OptimizationState",
    # Loading
    "TaskHead",
    "TASK_HEADS",
    "QuantizedModelLoader",
    "QuantizedModelForSequenceClassification",
    "QuantizedModelForQuestionAnswering",
    "QuantizedModelForTokenClassification",
    "QuantizedModelForMultipleChoice",
    "QuantizedModelForMaskedLM",
    "QuantizedModelForCausalLM",
    "QuantizedModelForSeq2SeqLM",
    "get_loader",
    # Logging
    "OptimizationLogger",
    "setup_logging",
]

__version__ = "0.1.0"
