"""Agent executor implementations."""

from agent_relay.coordination.backend.base import AgentExecutor, ExecutorRequest, ExecutorResult
from agent_relay.coordination.backend.cli_backend import CliAgentExecutor, ExecutorRunError

__all__ = [
    "AgentExecutor",
    "CliAgentExecutor",
    "ExecutorRequest",
    "ExecutorResult",
    "ExecutorRunError",
]
