"""
Condition evaluation for IF_CONDITION instructions.

A condition descriptor is a plain map:

    {"leftOperand": "{counter}", "operator": "GREATER_THAN",
     "rightOperand": "3", "useVariables": true}

Operands are text. With useVariables, an operand that is exactly one
placeholder resolves to the variable's value (or stays literal when the
variable is absent); any other operand is interpolated.

The same operator table backs the BATTERY_LEVEL constraint.
"""

import re
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from automacro.variables import parse_number

if TYPE_CHECKING:
    from automacro.variables import VariableStore

SINGLE_PLACEHOLDER = re.compile(r"^\$?\{([^{}]+)\}$")


class Operator(str, Enum):
    """Fixed comparison operator set."""
    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    GREATER_THAN_OR_EQUAL = "GREATER_THAN_OR_EQUAL"
    LESS_THAN_OR_EQUAL = "LESS_THAN_OR_EQUAL"
    CONTAINS = "CONTAINS"
    STARTS_WITH = "STARTS_WITH"
    ENDS_WITH = "ENDS_WITH"

    @classmethod
    def parse(cls, value: Any) -> "Operator":
        """
        Parse an operator name or symbol.

        Raises:
            ValueError: If the operator is not in the fixed set
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        if text in SYMBOLS:
            return SYMBOLS[text]
        try:
            return cls(text.upper())
        except ValueError:
            valid = [op.value for op in cls]
            raise ValueError(f"Unknown operator: {value}. Valid operators: {valid}")

    @property
    def is_ordering(self) -> bool:
        return self in (
            Operator.GREATER_THAN,
            Operator.LESS_THAN,
            Operator.GREATER_THAN_OR_EQUAL,
            Operator.LESS_THAN_OR_EQUAL,
        )


SYMBOLS = {
    "==": Operator.EQUALS,
    "!=": Operator.NOT_EQUALS,
    ">": Operator.GREATER_THAN,
    "<": Operator.LESS_THAN,
    ">=": Operator.GREATER_THAN_OR_EQUAL,
    "<=": Operator.LESS_THAN_OR_EQUAL,
}


def compare(left: Any, operator: Any, right: Any) -> bool:
    """
    Apply an operator to two operands.

    EQUALS / NOT_EQUALS compare numerically when both sides are numbers and
    as text otherwise. Ordering operators are False unless both sides are
    numeric. Text operators ignore case.
    """
    op = Operator.parse(operator)
    left_num = parse_number(left)
    right_num = parse_number(right)
    numeric = left_num is not None and right_num is not None

    if op is Operator.EQUALS:
        return left_num == right_num if numeric else str(left) == str(right)
    if op is Operator.NOT_EQUALS:
        return left_num != right_num if numeric else str(left) != str(right)

    if op.is_ordering:
        if not numeric:
            return False
        if op is Operator.GREATER_THAN:
            return left_num > right_num
        if op is Operator.LESS_THAN:
            return left_num < right_num
        if op is Operator.GREATER_THAN_OR_EQUAL:
            return left_num >= right_num
        return left_num <= right_num

    left_text = str(left).lower()
    right_text = str(right).lower()
    if op is Operator.CONTAINS:
        return right_text in left_text
    if op is Operator.STARTS_WITH:
        return left_text.startswith(right_text)
    return left_text.endswith(right_text)


async def resolve_operand(
    operand: Any,
    variables: "VariableStore",
    macro_id: Optional[int] = None,
) -> str:
    text = "" if operand is None else str(operand)
    match = SINGLE_PLACEHOLDER.match(text.strip())
    if match:
        variable = await variables.get(match.group(1).strip(), macro_id)
        return variable.value if variable is not None else text
    return await variables.interpolate(text, macro_id)


async def evaluate_condition(
    condition: Optional[dict[str, Any]],
    variables: "VariableStore",
    macro_id: Optional[int] = None,
) -> bool:
    """
    Evaluate a condition descriptor.

    A missing descriptor evaluates False.

    Raises:
        ValueError: If the operator is unknown
    """
    if not condition:
        return False

    operator = Operator.parse(condition.get("operator", ""))
    left = condition.get("leftOperand", "")
    right = condition.get("rightOperand", "")
    if condition.get("useVariables", False):
        left = await resolve_operand(left, variables, macro_id)
        right = await resolve_operand(right, variables, macro_id)
    else:
        left = "" if left is None else str(left)
        right = "" if right is None else str(right)
    return compare(left, operator, right)
