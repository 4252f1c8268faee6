"""
LangGraph Workflow Builder
Sales agent: analyze -> route -> (summarize) -> generate
"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

from langgraph.graph import StateGraph, END
from state.agent_state import AgentState, create_default_agent_state
from nodes.analyze import analyze_node
from nodes.route import route_node, route_after_route
from nodes.summarize import summarize_node
from nodes.generate import generate_node


@dataclass
class AgentResult:
    response: str
    said_later: bool = False
    show_schedule: bool = False
    escalated: bool = False
    industry: str = "generic"
    topics: List[str] = field(default_factory=list)
    summary: Optional[str] = None
    turn_count: int = 0


def create_agent_graph():
    """
    Create the agent graph
    """

    workflow = StateGraph(AgentState)

    workflow.add_node("analyze", analyze_node)
    workflow.add_node("route", route_node)
    workflow.add_node("summarize", summarize_node)
    workflow.add_node("generate", generate_node)

    workflow.add_edge("analyze", "route")

    # Summary every few turns, otherwise straight to the reply
    workflow.add_conditional_edges(
        "route",
        route_after_route,
        {
            "summarize": "summarize",
            "generate": "generate"
        }
    )

    workflow.add_edge("summarize", "generate")
    workflow.add_edge("generate", END)

    workflow.set_entry_point("analyze")

    return workflow.compile()


# Create compiled graph
agent_graph = create_agent_graph()


def _history_dicts(messages) -> List[dict]:
    history = []
    for m in messages or []:
        if isinstance(m, dict):
            history.append({'role': m.get('role'), 'content': m.get('content') or ''})
        else:
            history.append({'role': m.role, 'content': m.content or ''})
    return history


async def process_message(message: str, context: dict, agent_config: Optional[dict] = None) -> AgentResult:
    """
    Run the agent for one inbound message.

    `context` carries `lead` (dict), `history` (messages, ascending),
    `summary` and `turn_count` from the stored conversation state.
    """
    initial_state = create_default_agent_state(
        message=message,
        history=_history_dicts(context.get('history')),
        lead=context.get('lead') or {},
        agent_config=agent_config or {},
        summary=context.get('summary'),
        turn_count=context.get('turn_count', 0),
    )

    # Nodes call Ollama synchronously
    final_state = await asyncio.to_thread(agent_graph.invoke, initial_state)

    return AgentResult(
        response=final_state.get('response', ''),
        said_later=final_state.get('said_later', False),
        show_schedule=final_state.get('show_schedule', False),
        escalated=final_state.get('escalated', False),
        industry=final_state.get('industry', 'generic'),
        topics=final_state.get('topics', []),
        summary=final_state.get('summary'),
        turn_count=final_state.get('turn_count', 0),
    )
