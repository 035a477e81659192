from .calendar import CalendarTool
from .dispatcher import OperationRouter
from .duplicates import DuplicateResolutionEngine, DuplicateAnalysis, IMPORTANT_FIELDS
from .intents import parse_intent, EXECUTE_OPERATION_TOOL, TOOL_NAME
from .smart_router import SmartRouter, RoutingRule, FastAction, DEFAULT_RULES
from .temporal_guard import TemporalGuard
from .timezone import TimezoneManager

__all__ = [
    "CalendarTool",
    "OperationRouter",
    "DuplicateResolutionEngine",
    "DuplicateAnalysis",
    "IMPORTANT_FIELDS",
    "parse_intent",
    "EXECUTE_OPERATION_TOOL",
    "TOOL_NAME",
    "SmartRouter",
    "RoutingRule",
    "FastAction",
    "DEFAULT_RULES",
    "TemporalGuard",
    "TimezoneManager",
]
