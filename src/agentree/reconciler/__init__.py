"""Reconciliation of agent trees into runtime instances."""

from agentree.reconciler.conditions import (
    ModelPredicateResolver,
    PredicateResolver,
    StaticPredicateResolver,
)
from agentree.reconciler.reconciler import Reconciler
from agentree.reconciler.renderer import Renderer
from agentree.reconciler.scope import Scope, StateCell

__all__ = [
    "ModelPredicateResolver",
    "PredicateResolver",
    "Reconciler",
    "Renderer",
    "Scope",
    "StateCell",
    "StaticPredicateResolver",
]
