from typing import TypedDict, List, Optional

# -----------------------------
# 1. Shared Agent State
# -----------------------------
class AgentState(TypedDict, total=False):
    message: str                    # current user message
    history: List[dict]             # [{"role": ..., "content": ...}] ascending
    lead: dict                      # name / company / industry / stage / memory
    agent_config: dict              # tenant agent configuration
    summary: Optional[str]          # rolling conversation summary
    turn_count: int                 # user turns handled so far
    topics: List[str]               # topics detected in the current message
    industry: str                   # detected industry key
    said_later: bool                # user postponed ("luego", "al rato")
    needs_summary: bool             # route decided to refresh the summary
    response: str                   # reply to send
    show_schedule: bool             # offer the interactive schedule list
    escalated: bool                 # model asked for a human


# -----------------------------
# 2. Default state factory
# -----------------------------
def create_default_agent_state(
    message: str = "",
    history: Optional[List[dict]] = None,
    lead: Optional[dict] = None,
    agent_config: Optional[dict] = None,
    summary: Optional[str] = None,
    turn_count: int = 0,
) -> AgentState:
    """Return a new AgentState with default values"""
    return AgentState(
        message=message,
        history=history or [],
        lead=lead or {},
        agent_config=agent_config or {},
        summary=summary,
        turn_count=turn_count,
        topics=[],
        industry="generic",
        said_later=False,
        needs_summary=False,
        response="",
        show_schedule=False,
        escalated=False,
    )
