"""
Agent API Endpoint

Free-text questions routed through the intent orchestrator.
"""

from fastapi import APIRouter, Depends

from app.services.agents import AgentOrchestrator, AgentQuery, AgentResponse, get_agent_orchestrator

router = APIRouter()


@router.post("/query", response_model=AgentResponse, response_model_by_alias=True)
async def query_agent(
    query: AgentQuery,
    orchestrator: AgentOrchestrator = Depends(get_agent_orchestrator),
):
    """
    Classify the message, route it to the matching agent and return its answer.

    Unsupported intents still return 200 with a fallback response.
    """
    return await orchestrator.process(query)
