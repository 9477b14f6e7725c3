"""
Loading optimized models back, one loader per task head.

A single `QuantizedModelLoader` is parameterized by a `TaskHead`, the
descriptor naming the task, the transformers Auto class that builds it and
the architecture name suffixes that identify it. The recorded task in
``optimization_config.yaml`` (or, for plain checkpoints, the architectures
in ``config.json``) is checked against the loader's head before any weights
are read.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple, Type, Union

import torch
from huggingface_hub import hf_hub_download
from huggingface_hub.errors import EntryNotFoundError, HfHubHTTPError, HFValidationError, LocalEntryNotFoundError
from transformers import (
    AutoConfig,
    AutoModelForCausalLM,
    AutoModelForMaskedLM,
    AutoModelForMultipleChoice,
    AutoModelForQuestionAnswering,
    AutoModelForSeq2SeqLM,
    AutoModelForSequenceClassification,
    AutoModelForTokenClassification,
)

from .config import CONFIG_NAME, OptimizationConfig, load_yaml
from .errors import IncompatibleConfigError, ModelNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskHead:
    """Output head specializing a backbone for one prediction task."""

    name: str
    auto_class: Type
    architecture_suffixes: Tuple[str, ...]

    def matches(self, architecture: str) -> bool:
        return architecture.endswith(self.architecture_suffixes)

    @staticmethod
    def for_architecture(architecture: str) -> Optional["TaskHead"]:
        for head in TASK_HEADS.values():
            if head.matches(architecture):
                return head
        return None

    @staticmethod
    def for_model(model: torch.nn.Module) -> Optional["TaskHead"]:
        """Infer the head from the model's class name (e.g. ``BertForQuestionAnswering``)."""
        return TaskHead.for_architecture(type(model).__name__)


SEQUENCE_CLASSIFICATION = TaskHead("sequence-classification", AutoModelForSequenceClassification, ("ForSequenceClassification",))
QUESTION_ANSWERING = TaskHead("question-answering", AutoModelForQuestionAnswering, ("ForQuestionAnswering",))
TOKEN_CLASSIFICATION = TaskHead("token-classification", AutoModelForTokenClassification, ("ForTokenClassification",))
MULTIPLE_CHOICE = TaskHead("multiple-choice", AutoModelForMultipleChoice, ("ForMultipleChoice",))
MASKED_LM = TaskHead("masked-lm", AutoModelForMaskedLM, ("ForMaskedLM",))
CAUSAL_LM = TaskHead("causal-lm", AutoModelForCausalLM, ("ForCausalLM", "LMHeadModel"))
SEQ2SEQ_LM = TaskHead("seq2seq-lm", AutoModelForSeq2SeqLM, ("ForConditionalGeneration",))

TASK_HEADS: Dict[str, TaskHead] = {
    head.name: head
    for head in (
        SEQUENCE_CLASSIFICATION,
        QUESTION_ANSWERING,
        TOKEN_CLASSIFICATION,
        MULTIPLE_CHOICE,
        MASKED_LM,
        CAUSAL_LM,
        SEQ2SEQ_LM,
    )
}


def _looks_like_path(identifier: str) -> bool:
    return Path(identifier).is_absolute() or identifier.startswith(".") or identifier.count("/") > 1


class QuantizedModelLoader:
    """
    Loads an optimized model saved by `Optimizer.save_pretrained` for one task head.

    Example:
        model = QuantizedModelForQuestionAnswering.from_pretrained("./bert-squad-int8")
        model.optimization_config.results.metric
    """

    def __init__(self, task_head: TaskHead):
        self.task_head = task_head

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.task_head.name})"

    def _load_optimization_config(
        self, identifier: str, revision: Optional[str], cache_dir: Optional[str]
    ) -> Optional[OptimizationConfig]:
        path = Path(identifier)
        if path.is_dir():
            if not (path / "config.json").is_file():
                raise ModelNotFoundError(f"No config.json in model directory: {identifier}")
            config_file = path / CONFIG_NAME
            if not config_file.is_file():
                return None
        elif path.exists() or _looks_like_path(identifier):
            raise ModelNotFoundError(f"No saved model directory at: {identifier}")
        else:
            try:
                config_file = Path(hf_hub_download(identifier, CONFIG_NAME, revision=revision, cache_dir=cache_dir))
            except LocalEntryNotFoundError as e:
                raise ModelNotFoundError(f"Model not found in the local cache: {identifier}") from e
            except EntryNotFoundError:
                return None
            except (HfHubHTTPError, HFValidationError) as e:
                raise ModelNotFoundError(f"Model not found: {identifier} ({type(e).__name__}: {e})") from e
        return OptimizationConfig.from_dict(load_yaml(config_file), source=identifier)

    def _check_architectures(self, identifier: str, revision: Optional[str], cache_dir: Optional[str]) -> None:
        try:
            model_config = AutoConfig.from_pretrained(identifier, revision=revision, cache_dir=cache_dir)
        except (OSError, ValueError) as e:
            raise ModelNotFoundError(f"Model not found: {identifier} ({e})") from e
        architectures = getattr(model_config, "architectures", None) or []
        if architectures and not any(self.task_head.matches(a) for a in architectures):
            raise IncompatibleConfigError(
                f"{identifier} holds {architectures}, which has no {self.task_head.name} head"
            )

    def from_pretrained(
        self,
        identifier: Union[str, Path],
        revision: Optional[str] = None,
        cache_dir: Optional[str] = None,
        **kwargs,
    ) -> torch.nn.Module:
        """
        Load the model at ``identifier`` with this loader's task head.

        Args:
            identifier: Saved directory or Hub repo id
            revision: Hub revision
            cache_dir: Hub download cache directory
            kwargs: Forwarded to the Auto class ``from_pretrained``

        Returns:
            The model, with its effective config attached as ``optimization_config``
            (None for checkpoints saved without one)

        Raises:
            ModelNotFoundError: If no artifact exists at ``identifier``
            IncompatibleConfigError: If the artifact was saved for another task head
        """
        identifier = str(identifier)
        optimization_config = self._load_optimization_config(identifier, revision, cache_dir)

        if optimization_config is not None and optimization_config.task is not None:
            if optimization_config.task != self.task_head.name:
                raise IncompatibleConfigError(
                    f"{identifier} was optimized for '{optimization_config.task}', "
                    f"cannot load it as '{self.task_head.name}'"
                )
        else:
            self._check_architectures(identifier, revision, cache_dir)

        logger.info(f"Loading {self.task_head.name} model from {identifier}")
        try:
            model = self.task_head.auto_class.from_pretrained(
                identifier, revision=revision, cache_dir=cache_dir, **kwargs
            )
        except (OSError, ValueError) as e:
            raise ModelNotFoundError(f"Model weights not found: {identifier} ({e})") from e
        model.optimization_config = optimization_config
        return model


QuantizedModelForSequenceClassification = QuantizedModelLoader(SEQUENCE_CLASSIFICATION)
QuantizedModelForQuestionAnswering = QuantizedModelLoader(QUESTION_ANSWERING)
QuantizedModelForTokenClassification = QuantizedModelLoader(TOKEN_CLASSIFICATION)
QuantizedModelForMultipleChoice = QuantizedModelLoader(MULTIPLE_CHOICE)
QuantizedModelForMaskedLM = QuantizedModelLoader(MASKED_LM)
QuantizedModelForCausalLM = QuantizedModelLoader(CAUSAL_LM)
QuantizedModelForSeq2SeqLM = QuantizedModelLoader(SEQ2SEQ_LM)


def get_loader(task: str) -> QuantizedModelLoader:
    """Loader for a task name such as ``question-answering``."""
    if task not in TASK_HEADS:
        raise ValueError(f"Unknown task: {task}. Valid tasks: {sorted(TASK_HEADS)}")
    return QuantizedModelLoader(TASK_HEADS[task])
