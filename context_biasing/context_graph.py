"""
Context Graph for Contextual Biasing.

Compiles a list of context phrases (names, commands, rare terms) into a
deterministic weighted acceptor (a pynini / OpenFst Fst) and matches it
online against the tokens emitted by a decoder.

Each phrase becomes a path from the start state to the final state with a
reward of `context_score` per matched token. Every interior state has an
escape arc back to the start whose penalty equals the reward collected so
far, so a partial match that fails to complete is revoked instead of
dead-ending:

    start --a(+3)--> s1 --b(+3)--> s2 --c(+3)--> final
             s1 --#escape(-3)--> start
             s2 --#escape(-6)--> start

Arc weights live in the tropical semiring as negated rewards, so OpenFst
determinization, which keeps the cheapest path, keeps the best reward.
Escape arcs carry their own label past every token id; label 0 is epsilon
in OpenFst and cannot label a token.

During decoding the caller keeps a mapping of active states to the best
score reaching them and feeds it back into `ContextGraph.step` together
with each new token.

Usage:
    from context_biasing import ContextGraph, load_symbol_table

    symbols = load_symbol_table("units.txt")
    graph = ContextGraph.from_contexts(["hello", "help"], symbols)

    active = {graph.start_state: 0.0}
    for token_id in decoded_ids:
        partial, full, active = graph.step(active, token_id)
        active[graph.start_state] = max(active.get(graph.start_state, 0.0), 0.0)
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    List,
    NamedTuple,
    Optional,
    Tuple,
    Union,
)

import pynini

from .symbols import NO_SYMBOL, lookup_token

logger = logging.getLogger(__name__)

EPSILON = 0
ESCAPE_SYMBOL = "#escape"


@dataclass
class ContextConfig:
    """Configuration for context graph compilation."""

    # Maximum number of contexts compiled; the rest of the list is ignored
    max_contexts: int = 5000

    # Contexts with more tokens than this are skipped
    max_context_length: int = 100

    # Reward per matched token. Escape penalties are derived from it.
    context_score: float = 3.0

    # If True, a context containing an unknown token is dropped entirely.
    # If False, the arcs built for the tokens before it are kept.
    drop_unknown_contexts: bool = False

    def __post_init__(self):
        if self.max_contexts < 0:
            raise ValueError(f"max_contexts must be >= 0, got {self.max_contexts}")
        if self.max_context_length < 0:
            raise ValueError(
                f"max_context_length must be >= 0, got {self.max_context_length}"
            )


class ContextMatch(NamedTuple):
    """Result of advancing the active states by one token."""

    # Best score over all eligible arcs this step
    partial_score: float

    # Best score over eligible arcs that complete a context
    full_score: float

    # Active states for the next step: state id -> best score
    next_states: Dict[int, float]


def split_context(context: str) -> List[str]:
    """Split a context into its atomic tokens (characters)."""
    return list(context.strip())


def count_arcs(fst: pynini.Fst) -> int:
    return sum(fst.num_arcs(state) for state in fst.states())


class ContextGraph:
    """
    Contextual biasing graph with online matching.

    Build once with `build`, then call `step` for every decoded token. The
    compiled Fst is never modified by `step`, so one graph can be shared by
    any number of hypotheses or threads.

    Args:
        config: Compilation options
    """

    def __init__(self, config: Optional[ContextConfig] = None):
        self.config = config or ContextConfig()
        self.symbol_table: Any = None
        self.graph: Optional[pynini.Fst] = None
        # Incremented on every (re)build so holders of active states can
        # detect that their state ids belong to an older graph
        self.version = 0
        self._num_contexts = 0
        self._escape_label = NO_SYMBOL
        self._final_states: FrozenSet[int] = frozenset()

    @classmethod
    def from_contexts(
        cls,
        contexts: Iterable[str],
        symbol_table: Any,
        config: Optional[ContextConfig] = None,
    ) -> "ContextGraph":
        """
        Create a ContextGraph and compile the given contexts.

        Args:
            contexts: Context phrases
            symbol_table: Token lookup (see `build`)
            config: Optional configuration

        Returns:
            Compiled ContextGraph
        """
        context_graph = cls(config)
        context_graph.build(contexts, symbol_table)
        return context_graph

    @property
    def num_contexts(self) -> int:
        """Number of contexts fully compiled into the graph."""
        return self._num_contexts

    @property
    def start_state(self) -> int:
        """Start state of the graph, -1 if there is no graph."""
        return self.graph.start() if self.graph is not None else NO_SYMBOL

    @property
    def escape_label(self) -> int:
        """Label of the escape arcs, -1 if there is no graph."""
        return self._escape_label

    def is_final_state(self, state: int) -> bool:
        return state in self._final_states

    def build(
        self, contexts: Iterable[str], symbol_table: Any
    ) -> Optional[pynini.Fst]:
        """
        Compile contexts into a deterministic weighted acceptor.

        Oversized contexts, contexts beyond `max_contexts` and contexts with
        unknown tokens are logged and left out; none of them is an error.

        Args:
            contexts: Context phrases, any iterable of strings
            symbol_table: pynini.SymbolTable, any object with
                `find(token) -> id` (negative for unknown tokens), or a
                token -> id mapping. Kept for later rebuilds.

        Returns:
            The compiled Fst, or None when nothing was compiled

        Raises:
            ValueError: If symbol_table is None
        """
        if symbol_table is None:
            raise ValueError("Symbol table is required to build the context graph")
        contexts = list(contexts)
        self.symbol_table = symbol_table
        self.version += 1
        self._num_contexts = 0
        self._reset_graph()

        if not contexts:
            return None

        logger.info("Building context graph from %d contexts", len(contexts))
        paths: List[Tuple[List[int], bool]] = []
        count = 0
        for context in contexts:
            tokens = split_context(context)
            if len(tokens) > self.config.max_context_length:
                logger.info("Skip long context: %s", context)
                continue
            if not tokens:
                logger.debug("Skip empty context: %r", context)
                continue
            count += 1
            if count > self.config.max_contexts:
                logger.warning(
                    "Reached max_contexts=%d, ignoring remaining contexts",
                    self.config.max_contexts,
                )
                break
            labels = self._context_labels(context, tokens)
            if not labels:
                continue
            complete = len(labels) == len(tokens)
            if complete:
                self._num_contexts += 1
            paths.append((labels, complete))

        if not paths:
            logger.info("No context compiled, context biasing disabled")
            return None

        symbols = None
        if hasattr(symbol_table, "available_key"):
            symbols = symbol_table.copy()
            escape_label = symbols.add_symbol(ESCAPE_SYMBOL)
        else:
            escape_label = max(max(labels) for labels, _ in paths) + 1

        fsa = pynini.Fst()
        start_state = fsa.add_state()
        final_state = fsa.add_state()
        fsa.set_start(start_state)
        fsa.set_final(final_state)
        for labels, complete in paths:
            self._add_path(fsa, final_state, escape_label, labels, complete)

        graph = pynini.determinize(fsa)
        if symbols is not None:
            graph.set_input_symbols(symbols)
            graph.set_output_symbols(symbols)

        zero = pynini.Weight.zero(graph.weight_type())
        self.graph = graph
        self._escape_label = escape_label
        self._final_states = frozenset(
            state for state in graph.states() if graph.final(state) != zero
        )
        logger.info(
            "Context graph built: %d/%d contexts, %d states, %d arcs",
            self._num_contexts,
            len(contexts),
            graph.num_states(),
            count_arcs(graph),
        )
        return graph

    def _context_labels(self, context: str, tokens: List[str]) -> Optional[List[int]]:
        """
        Resolve the arc labels of a context.

        Tokens missing from the symbol table, and tokens bound to id 0
        (epsilon), cannot label an arc. Depending on `drop_unknown_contexts`
        such a context is either dropped (None) or cut before that token.
        """
        labels = [lookup_token(self.symbol_table, token) for token in tokens]
        for pos, label in enumerate(labels):
            if label is not None and label != EPSILON:
                continue
            if self.config.drop_unknown_contexts:
                logger.warning(
                    "Drop context with unknown token %r: %s", tokens[pos], context
                )
                return None
            logger.warning(
                "Ignore unknown token found during compilation: %r", tokens[pos]
            )
            return labels[:pos]
        return labels

    def _add_path(
        self,
        fsa: pynini.Fst,
        final_state: int,
        escape_label: int,
        labels: List[int],
        complete: bool,
    ) -> None:
        """
        Add one context as a path from start.

        A complete context ends in the final state; a cut-off one ends in a
        dead-end state with neither continuation nor escape.
        """
        weight_type = fsa.weight_type()
        score = self.config.context_score
        prev_state = fsa.start()
        for i, label in enumerate(labels):
            if complete and i == len(labels) - 1:
                next_state = final_state
            else:
                next_state = fsa.add_state()
            # Each state after the first has an escape arc to the start state
            if i > 0:
                fsa.add_arc(
                    prev_state,
                    pynini.Arc(
                        escape_label,
                        escape_label,
                        pynini.Weight(weight_type, score * i),
                        fsa.start(),
                    ),
                )
            fsa.add_arc(
                prev_state,
                pynini.Arc(label, label, pynini.Weight(weight_type, -score), next_state),
            )
            prev_state = next_state

    def step(self, active_states: Dict[int, float], token_id: int) -> ContextMatch:
        """
        Advance the active states by one decoded token.

        An arc is followed if its label is `token_id` or if it is an escape
        arc. Scores reaching a final state count as a full match and are
        not carried into the next states. The start state is never added
        back here; re-seeding it is up to the caller. States that do not
        exist in the graph are ignored.

        Args:
            active_states: State id -> best accumulated score. Not modified.
            token_id: Token emitted by the decoder

        Returns:
            ContextMatch(partial_score, full_score, next_states)
        """
        next_states: Dict[int, float] = {}
        if self.graph is None or not active_states:
            return ContextMatch(0.0, 0.0, next_states)

        graph = self.graph
        num_states = graph.num_states()
        partial_score = 0.0
        full_score = 0.0
        for state, score in active_states.items():
            if not 0 <= state < num_states:
                continue
            for arc in graph.arcs(state):
                if arc.ilabel != token_id and arc.ilabel != self._escape_label:
                    continue
                context_score = score - float(arc.weight)
                partial_score = max(partial_score, context_score)
                if arc.nextstate in self._final_states:
                    full_score = max(full_score, context_score)
                elif context_score > next_states.get(arc.nextstate, float("-inf")):
                    next_states[arc.nextstate] = context_score

        return ContextMatch(partial_score, full_score, next_states)

    def next_labels(self, state: int) -> List[int]:
        """Token labels on the arcs leaving state, escape arcs excluded."""
        if self.graph is None or not 0 <= state < self.graph.num_states():
            return []
        return [
            arc.ilabel
            for arc in self.graph.arcs(state)
            if arc.ilabel != self._escape_label
        ]

    def clear(self) -> None:
        """Drop the compiled graph. Active states held elsewhere become stale."""
        self._reset_graph()
        self._num_contexts = 0
        self.version += 1

    def _reset_graph(self) -> None:
        self.graph = None
        self._escape_label = NO_SYMBOL
        self._final_states = frozenset()


def load_contexts(path: Union[str, Path]) -> List[str]:
    """
    Load context phrases from a file.

    Supported formats:
    - JSON: a list of strings, or {"contexts": [...]}
    - Text: one context per line, blank lines skipped

    Args:
        path: Path to the context file

    Returns:
        List of context strings
    """
    path = Path(path)
    if path.suffix == ".json":
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("contexts", [])
        return [str(context) for context in data]

    with open(path, encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]
