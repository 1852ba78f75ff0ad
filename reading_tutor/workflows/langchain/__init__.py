"""
LangGraph-based workflow of the reading tutor.

This package implements the AI side of a tutoring turn: a message of
the reader, with optional document filters and the text on screen,
becomes a typed UI payload grounded in the reader's own documents.
It is defined by three things: graph definition, dependency
injection, and the retrieval policy.


1. Graph and State
===================

The shared state is a ``TypedDict`` called ``GraphState`` (see
``base.py``). Each channel has an explicit reducer: the history is
append-only, most channels keep their previous value when a node
writes None, ``documents`` and ``sources`` are replaced wholesale,
and ``final_response`` is written once. A turn is initialised with
``create_initial_state()``.

The graph (``chat_graph.py``) is a small acyclic state machine:

    supervisor → (query_rewrite →) retriever → generation node

The supervisor may also route directly to a generation node, when
retrieval is disabled, or terminate the turn. The transition
functions live in ``graph_routing.py``.


2. Retrieval Policy
====================

The supervisor resolves, for each turn, a ``RetrievalPolicy``
(``policy.py``): whether to search the documents, in which mode, how
many passages, with which similarity threshold, and whether to
rewrite the query first. In 'qa' and 'copilot' mode the policy is
fixed; in 'tutor' mode it is proposed by the routing model and
clamped into range by ``sanitize_policy()``.


3. Dependency Injection
========================

Graph nodes receive external resources through LangGraph's **runtime
context** mechanism. A ``WorkflowContext`` (defined in ``base.py``)
is a Pydantic model that carries:

- ``llm`` and ``router_llm``: the generation and routing models
- ``retrieval``: the ``RetrievalService``
- ``chat_settings``: the ``ChatSettings`` from ``appchat.toml``
- ``logger``: a ``logging.Logger``


4. Streaming
=============

Nodes do not return streams. They emit events (``step``, ``meta``,
``sources``, ``delta``) into the streaming context of the request
(``reading_tutor.streaming``), which is established by ``run_turn``
in ``reading_tutor.chat``. Nodes called outside a request emit
nothing.


5. Module Map
==============

Foundation
    ``base.py``
        ``GraphState``, ``WorkflowContext``, reducers,
        ``create_initial_state()``, ``prepare_messages_for_llm()``.
    ``policy.py``
        ``RetrievalPolicy``, ``sanitize_policy()``, mode policies.
    ``prompts.py``
        Prompts of the supervisor, rewriter, and generators.
    ``parsing.py``
        Multi-strategy json parsing of model output.

Graph Definition
    ``nodes.py``
        ``supervisor``, ``query_rewrite``, ``retriever``.
    ``generators.py``
        ``explain``, ``quiz``, ``code``, ``plan``,
        ``direct_answer``.
    ``graph_routing.py``
        Conditional-edge callbacks.
    ``chat_graph.py``
        ``create_learning_workflow()``.
"""
