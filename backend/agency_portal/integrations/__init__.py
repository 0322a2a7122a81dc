"""Agency Portal - Outbound integrations"""
from .functions import FunctionInvoker, FunctionInvocationError, KNOWN_FUNCTIONS

__all__ = ["FunctionInvoker", "FunctionInvocationError", "KNOWN_FUNCTIONS"]
