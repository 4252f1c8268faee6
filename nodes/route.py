from state.agent_state import AgentState

SUMMARY_EVERY_TURNS = 10


def route_node(state: AgentState) -> dict:
    """Count the turn and decide whether the summary is due"""
    turn_count = state.get('turn_count', 0) + 1
    needs_summary = turn_count % SUMMARY_EVERY_TURNS == 0 and bool(state.get('history'))
    return {'turn_count': turn_count, 'needs_summary': needs_summary}


def route_after_route(state: AgentState) -> str:
    return "summarize" if state.get('needs_summary') else "generate"
