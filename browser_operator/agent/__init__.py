from .actions import ActionDecodeError, ActionError, decode_action
from .cancel import CancellationToken, OperatorCancelled
from .coords import CoordinateFrame
from .executor import ActionExecutor
from .loop import AgentState, OperatorAgent, RunResult, default_connector
from .reasoning import BadResponseError, ConfigurationError, ReasoningError, ResponsesClient
from .schema import ACTION_SHAPES, build_tools, computer_tool, function_tools

__all__ = [
    "ACTION_SHAPES",
    "ActionDecodeError",
    "ActionError",
    "ActionExecutor",
    "AgentState",
    "BadResponseError",
    "CancellationToken",
    "ConfigurationError",
    "CoordinateFrame",
    "OperatorAgent",
    "OperatorCancelled",
    "ReasoningError",
    "ResponsesClient",
    "RunResult",
    "build_tools",
    "computer_tool",
    "decode_action",
    "default_connector",
    "function_tools",
]
