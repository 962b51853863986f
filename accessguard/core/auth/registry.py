"""
Authorization plugin registry.

Allows registering resource-policy condition evaluators without
modifying the resolver. Implementations register themselves using
decorators.

Usage:
    @AuthRegistry.condition("business_hours")
    class BusinessHoursCondition(ConditionEvaluator):
        ...

    # Later, get by name:
    evaluator = AuthRegistry.get_condition_evaluator("business_hours")
"""

from typing import Type, Callable, Any
from .interfaces import ConditionEvaluator


class AuthRegistry:
    """
    Central registry for condition evaluators.

    Components register themselves using decorators.
    This enables extensibility without modifying the resolver.
    """

    _condition_evaluators: dict[str, Type[ConditionEvaluator]] = {}

    # ============================================================
    # REGISTRATION DECORATORS
    # ============================================================

    @classmethod
    def condition(cls, condition_type: str) -> Callable[[Type[ConditionEvaluator]], Type[ConditionEvaluator]]:
        """
        Decorator to register a condition evaluator.

        Usage:
            @AuthRegistry.condition("time_range")
            class TimeRangeCondition(ConditionEvaluator):
                ...
        """
        def decorator(evaluator_class: Type[ConditionEvaluator]) -> Type[ConditionEvaluator]:
            cls._condition_evaluators[condition_type] = evaluator_class
            return evaluator_class
        return decorator

    # ============================================================
    # GETTERS
    # ============================================================

    @classmethod
    def get_condition_evaluator(cls, condition_type: str, **kwargs: Any) -> ConditionEvaluator:
        """
        Get a condition evaluator by type.

        Args:
            condition_type: Registered type of the condition
            **kwargs: Arguments to pass to evaluator constructor

        Raises:
            ValueError: If condition type not found
        """
        evaluator_class = cls._condition_evaluators.get(condition_type)
        if not evaluator_class:
            available = list(cls._condition_evaluators.keys())
            raise ValueError(
                f"Unknown condition type: '{condition_type}'. "
                f"Available: {available}"
            )
        return evaluator_class(**kwargs)

    # ============================================================
    # INTROSPECTION
    # ============================================================

    @classmethod
    def list_conditions(cls) -> list[str]:
        """List all registered condition types."""
        return list(cls._condition_evaluators.keys())

    @classmethod
    def has_condition(cls, condition_type: str) -> bool:
        """Check if a condition type is registered."""
        return condition_type in cls._condition_evaluators
