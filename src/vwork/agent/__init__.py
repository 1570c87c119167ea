from vwork.agent.loop import AgentLoop, TurnResult, TurnStatus
from vwork.agent.oneshot import OneShotAgent
from vwork.agent.session import ChatSession

__all__ = ["AgentLoop", "TurnResult", "TurnStatus", "OneShotAgent", "ChatSession"]
