#!/usr/bin/env python3
"""
Compile a context list into a context biasing graph and inspect it.

Loads a symbol table (token id per line, e.g. units.txt) and a context list
(one phrase per line, or JSON), builds the context graph and prints its
statistics. With --text, the characters of the given text are replayed
through the graph, printing the partial and full match scores of each step
as a decoder would see them.

Example:
    python build_context_graph.py units.txt contexts.txt --text "call wenet now"
"""

import argparse
import logging
from typing import Any, List, Optional

from context_biasing import (
    ContextConfig,
    ContextGraph,
    ContextTracker,
    count_arcs,
    load_contexts,
    load_symbol_table,
    lookup_token,
    split_context,
)


def replay_text(graph: ContextGraph, symbols: Any, text: str) -> float:
    """
    Feed the characters of text through the graph, printing each step.

    Args:
        graph: Compiled context graph
        symbols: Symbol table used to map characters to ids
        text: Text to replay

    Returns:
        Total context bonus collected over the text
    """
    tracker = ContextTracker(graph)
    state = tracker.initial_state()

    print(f"\n  {'token':<8}{'id':>6}{'partial':>10}{'full':>10}{'bonus':>10}{'total':>10}")
    print(f"  {'-'*54}")
    for token in split_context(text):
        token_id = lookup_token(symbols, token)
        if token_id is None:
            token_id = -1
        match = graph.step(state.active_states, token_id)
        new_state = tracker.advance(state, token_id)
        bonus = new_state.score - state.score
        print(
            f"  {token!r:<8}{token_id:>6}{match.partial_score:>10.2f}"
            f"{match.full_score:>10.2f}{bonus:>+10.2f}{new_state.score:>10.2f}"
        )
        state = new_state

    return state.score


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="Build a context biasing graph and replay text through it"
    )
    parser.add_argument(
        "symbol_table",
        type=str,
        help="Symbol table file with 'token id' per line",
    )
    parser.add_argument(
        "contexts",
        type=str,
        help="Context file: one phrase per line, or JSON",
    )
    parser.add_argument(
        "--context-score",
        type=float,
        default=3.0,
        help="Reward per matched token (default: 3.0)",
    )
    parser.add_argument(
        "--max-contexts",
        type=int,
        default=5000,
        help="Maximum number of contexts compiled (default: 5000)",
    )
    parser.add_argument(
        "--max-context-length",
        type=int,
        default=100,
        help="Skip contexts longer than this many tokens (default: 100)",
    )
    parser.add_argument(
        "--drop-unknown-contexts",
        action="store_true",
        help="Drop a whole context if any of its tokens is unknown",
    )
    parser.add_argument(
        "--text",
        type=str,
        default=None,
        help="Text whose characters are replayed through the graph",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    symbols = load_symbol_table(args.symbol_table)
    contexts = load_contexts(args.contexts)
    print(f"Loaded {symbols.num_symbols()} symbols and {len(contexts)} contexts")

    config = ContextConfig(
        max_contexts=args.max_contexts,
        max_context_length=args.max_context_length,
        context_score=args.context_score,
        drop_unknown_contexts=args.drop_unknown_contexts,
    )
    graph = ContextGraph.from_contexts(contexts, symbols, config)

    print(f"\n{'='*60}")
    print("CONTEXT GRAPH")
    print(f"{'='*60}")
    if graph.graph is None:
        print("\n  Empty graph: context biasing disabled")
    else:
        print(f"\n  Contexts compiled: {graph.num_contexts}/{len(contexts)}")
        print(f"  States: {graph.graph.num_states()}")
        print(f"  Arcs: {count_arcs(graph.graph)}")
        print(f"  Context score: {config.context_score}")

    total = 0.0
    if args.text is not None:
        total = replay_text(graph, symbols, args.text)
        print(f"\n  Total context bonus: {total:.2f}")

    print(f"\n{'='*60}")

    return total


if __name__ == "__main__":
    main()
