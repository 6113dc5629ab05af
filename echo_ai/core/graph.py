from langgraph.graph import StateGraph, START, END

from echo_ai.core.state import RequestState


def build_graph(orchestrator):
    """
    Build the request graph for one Orchestrator.

    Flow:
    - prefix_rules answers "research:", "save this as:" and persona questions directly
    - follow_up continues a research conversation the caller flagged with needs_research
    - classify picks an agent; inconclusive or failed classification walks the fallback chain
    - agent runs the chosen agent
    - research_augment runs one research pass and sends the findings back to the same agent

    The research loop is single-shot: once research_augmented is set, a second
    needs_research from the agent ends the run.
    """
    g = StateGraph(RequestState)

    g.add_node("prefix_rules", orchestrator.prefix_rules_node)
    g.add_node("follow_up", orchestrator.follow_up_node)
    g.add_node("classify", orchestrator.classify_node)
    g.add_node("fallback_chain", orchestrator.fallback_chain_node)
    g.add_node("agent", orchestrator.agent_node)
    g.add_node("research_augment", orchestrator.research_augment_node)

    g.add_edge(START, "prefix_rules")

    g.add_conditional_edges(
        "prefix_rules",
        orchestrator.after_prefix_rules,
        {
            "follow_up": "follow_up",
            "classify": "classify",
            END: END,
        },
    )

    g.add_conditional_edges(
        "follow_up",
        orchestrator.after_follow_up,
        {
            "agent": "agent",  # Refinement, research already attached
            "classify": "classify",  # New question
            END: END,  # Research failed
        },
    )

    g.add_conditional_edges(
        "classify",
        orchestrator.after_classify,
        {
            "agent": "agent",
            "fallback_chain": "fallback_chain",
        },
    )
    g.add_edge("fallback_chain", "agent")

    g.add_conditional_edges(
        "agent",
        orchestrator.after_agent,
        {
            "research_augment": "research_augment",
            END: END,
        },
    )

    g.add_conditional_edges(
        "research_augment",
        orchestrator.after_research,
        {
            "agent": "agent",
            END: END,
        },
    )

    return g.compile()
