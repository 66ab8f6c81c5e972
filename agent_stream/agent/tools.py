"""
Agent tools: LangChain tools for the graph's run_tools node.

The OpenAI function specs sent to the model are derived from the same tool
objects, so the name, description and argument schema live in one place.
"""

import ast
import logging
import operator
from datetime import datetime, timezone
from typing import Any

from langchain_core.messages import ToolMessage
from langchain_core.tools import BaseTool, ToolException, tool
from langchain_core.utils.function_calling import convert_to_openai_tool

logger = logging.getLogger(__name__)

MAX_EXPONENT = 64

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and type(node.value) in (int, float):
        return node.value
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left, right = _evaluate(node.left), _evaluate(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise ToolException(f"exponent larger than {MAX_EXPONENT}")
        return _BINARY_OPS[type(node.op)](left, right)
    raise ToolException("only numbers and + - * / // % ** ( ) are allowed")


@tool
def calculator(expression: str) -> str:
    """Evaluate an arithmetic expression such as 2+3*4 or (1.5-0.5)**2. Use for any numeric calculation that needs precision."""
    expr = (expression or "").strip()
    if not expr:
        raise ToolException("empty expression")
    try:
        tree = ast.parse(expr, mode="eval")
    except SyntaxError as e:
        raise ToolException(f"invalid expression: {e.msg}") from e
    try:
        return str(_evaluate(tree))
    except ZeroDivisionError as e:
        raise ToolException("division by zero") from e


@tool
def current_date() -> str:
    """Get the current date and time (UTC). Use when the user asks about today, now, or time-sensitive information."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


TOOLS: list[BaseTool] = [calculator, current_date]
TOOLS_BY_NAME: dict[str, BaseTool] = {t.name: t for t in TOOLS}

# OpenAI function-calling format
AGENT_TOOLS: list[dict[str, Any]] = [convert_to_openai_tool(t) for t in TOOLS]


def run_tool_call(tool_call: dict[str, Any]) -> ToolMessage:
    """
    Run one tool call from an AI message and wrap the output for the model.
    Bad arguments and tool errors come back as an "Error: ..." result instead of raising,
    so the model can correct itself on the next round.
    """
    name = tool_call.get("name") or ""
    args = tool_call.get("args") or {}
    call_id = tool_call.get("id") or ""
    logger.info("[tools:run_tool_call] IN  name=%r args=%r", name, args)
    selected = TOOLS_BY_NAME.get(name)
    if selected is None:
        output = f"Unknown tool: {name}"
    else:
        try:
            output = str(selected.invoke(args))
        except (ToolException, ValueError) as e:
            logger.warning("[tools:run_tool_call] name=%r failed: %s", name, e)
            output = f"Error: {e}"
    return ToolMessage(content=output, tool_call_id=call_id, name=name)
