from __future__ import annotations

import importlib

from .base import EvaluationResponse, EvaluationResult, Evaluator


def load_evaluator(spec: str) -> Evaluator:
    """Instantiate an evaluator from a ``package.module:ClassName`` path."""
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Invalid evaluator reference '{spec}' (expected 'module:ClassName')")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ValueError(f"Unable to import evaluator module '{module_name}'") from exc
    try:
        cls = getattr(module, attr)
    except AttributeError as exc:
        raise ValueError(f"Evaluator '{attr}' not found in '{module_name}'") from exc
    if not isinstance(cls, type) or not issubclass(cls, Evaluator):
        raise ValueError(f"'{spec}' is not an Evaluator")
    try:
        return cls()
    except Exception as exc:
        raise ValueError(f"Unable to instantiate evaluator '{spec}'") from exc


__all__ = ["EvaluationResponse", "EvaluationResult", "Evaluator", "load_evaluator"]
