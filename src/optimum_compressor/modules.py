"""
Module selection helpers shared by the pruner and the accuracy tuner.

Targets and ignores follow llm-compressor conventions: an entry matches a
module by its class name (``Linear``), its exact qualified name
(``classifier``), or a ``re:`` prefixed regular expression on the
qualified name (``re:.*attention.*``). Ignoring a module also ignores
everything nested under it.
"""

import re
from typing import Iterable, List, Tuple

import torch


def _matches(name: str, module: torch.nn.Module, pattern: str) -> bool:
    if pattern.startswith("re:"):
        return re.match(pattern[3:], name) is not None
    return pattern == name or pattern == type(module).__name__


def _is_ignored(name: str, module: torch.nn.Module, ignore: Iterable[str]) -> bool:
    for pattern in ignore:
        if _matches(name, module, pattern):
            return True
        if not pattern.startswith("re:") and name.startswith(pattern + "."):
            return True
    return False


def match_modules(
    model: torch.nn.Module,
    targets: Iterable[str],
    ignore: Iterable[str] = (),
) -> List[Tuple[str, torch.nn.Module]]:
    """Named modules selected by ``targets`` and not excluded by ``ignore``, in model order."""
    targets = tuple(targets)
    ignore = tuple(ignore)
    return [
        (name, module)
        for name, module in model.named_modules()
        if name
        and any(_matches(name, module, t) for t in targets)
        and not _is_ignored(name, module, ignore)
    ]


def measure_sparsity(
    model: torch.nn.Module,
    targets: Iterable[str] = ("Linear",),
    ignore: Iterable[str] = (),
) -> float:
    """Fraction of zero entries across the ``weight`` tensors of the matched modules."""
    zeros = 0
    total = 0
    for _, module in match_modules(model, targets, ignore):
        weight = getattr(module, "weight", None)
        if weight is None:
            continue
        zeros += int((weight == 0).sum().item())
        total += weight.numel()
    return zeros / total if total else 0.0
