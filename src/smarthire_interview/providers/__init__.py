from .agent_http import AgentHTTPConfig, HTTPInterviewAgentAdapter
from .agent_mock import MockInterviewAgentAdapter

__all__ = ["AgentHTTPConfig", "HTTPInterviewAgentAdapter", "MockInterviewAgentAdapter"]
