"""
Context Biasing Module for Online Decoding.

Provides context graph biasing for speech or sequence recognition decoders:
a small list of phrases (names, commands, rare terms) is compiled into a
deterministic weighted acceptor that rewards hypotheses matching a prefix
or the whole of any phrase, and revokes the reward when a partial match is
abandoned.

Architecture:
- Symbol tables: pynini symbol tables mapping tokens to decoder ids
- ContextGraph: Compiles phrases into a pynini Fst (build) and matches
  tokens online (step)
- ContextTracker: Per-hypothesis state handling for beam search decoders
- ContextBiasingLogitsProcessor: LogitsProcessor for Transformers' generate()

Usage:
    from context_biasing import (
        ContextConfig,
        ContextGraph,
        load_symbol_table,
    )

    symbols = load_symbol_table("units.txt")
    config = ContextConfig(context_score=3.0)
    graph = ContextGraph.from_contexts(["hello world", "wenet"], symbols, config)

    # In the decoder: one step per emitted token
    active = {graph.start_state: 0.0}
    partial_score, full_score, active = graph.step(active, token_id)

    # Or let the tracker handle re-seeding and completed phrases
    from context_biasing import ContextTracker
    tracker = ContextTracker(graph)
    state = tracker.initial_state()
    state = tracker.advance(state, token_id)
"""

# Symbol lookup
from .symbols import (
    NO_SYMBOL,
    load_symbol_table,
    lookup_token,
    symbol_table_from_tokens,
    symbol_table_from_vocab,
)

# Graph building and online matching
from .context_graph import (
    ESCAPE_SYMBOL,
    ContextConfig,
    ContextMatch,
    ContextGraph,
    count_arcs,
    load_contexts,
    split_context,
)

# Decoder integration
from .fusion import (
    ContextState,
    ContextTracker,
    ContextBiasingLogitsProcessor,
)

__all__ = [
    # Symbols
    "NO_SYMBOL",
    "load_symbol_table",
    "lookup_token",
    "symbol_table_from_tokens",
    "symbol_table_from_vocab",
    # Context graph
    "ESCAPE_SYMBOL",
    "ContextConfig",
    "ContextMatch",
    "ContextGraph",
    "count_arcs",
    "load_contexts",
    "split_context",
    # Decoder integration
    "ContextState",
    "ContextTracker",
    "ContextBiasingLogitsProcessor",
]
