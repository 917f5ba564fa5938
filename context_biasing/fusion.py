"""
Decoder-side Context Biasing.

Helpers that fold context graph scores into a decoder's path scores:

- ContextTracker keeps the context state of one hypothesis: the active
  graph states, plus the bonus banked from contexts it already completed.
  The additive bonus for a decoding step is the difference between the
  hypothesis' context score after and before the step.
- ContextBiasingLogitsProcessor applies that bonus to next-token logits,
  following the LogitsProcessor call convention of Transformers'
  generate(). Partial matches that are abandoned get their bonus revoked
  through the escape penalties of the graph, so beams cannot keep an
  advantage gained from a prefix they never complete.

Usage:
    from context_biasing import ContextGraph, ContextBiasingLogitsProcessor

    graph = ContextGraph.from_contexts(["hello", "help"], symbols)
    logits_processor = ContextBiasingLogitsProcessor(graph)

    outputs = model.generate(
        input_features,
        num_beams=5,
        logits_processor=[logits_processor],
    )
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from torch import Tensor

from .context_graph import ContextGraph
from .symbols import NO_SYMBOL


@dataclass
class ContextState:
    """Context biasing state of a single hypothesis."""

    # Active graph states: state id -> best accumulated score
    active_states: Dict[int, float] = field(default_factory=dict)

    # Total score of contexts completed so far
    banked_score: float = 0.0

    # ContextGraph.version the active states belong to
    version: int = 0

    @property
    def score(self) -> float:
        """Total context bonus of the hypothesis."""
        return self.banked_score + max(self.active_states.values(), default=0.0)


class ContextTracker:
    """
    Advance per-hypothesis context states through a ContextGraph.

    The tracker itself holds no per-hypothesis data, so a single instance
    serves a whole beam. After every step the start state is seeded back
    into the active states so new matches can begin at any token.

    Example:
        tracker = ContextTracker(graph)
        state = tracker.initial_state()
        for token_id in hypothesis_tokens:
            new_state = tracker.advance(state, token_id)
            path_score += new_state.score - state.score
            state = new_state
    """

    def __init__(self, context_graph: ContextGraph):
        self.context_graph = context_graph

    def initial_state(self) -> ContextState:
        graph = self.context_graph
        active_states = {}
        if graph.start_state >= 0:
            active_states[graph.start_state] = 0.0
        return ContextState(active_states=active_states, version=graph.version)

    def advance(self, state: ContextState, token_id: int) -> ContextState:
        """
        Return the state after emitting token_id. The input is not modified.

        States built against an older graph are reset first, since their
        state ids are meaningless in the current graph.
        """
        graph = self.context_graph
        if state.version != graph.version:
            state = self.initial_state()

        match = graph.step(state.active_states, token_id)
        next_states = match.next_states
        start = graph.start_state
        if start >= 0 and next_states.get(start, float("-inf")) < 0.0:
            next_states[start] = 0.0

        return ContextState(
            active_states=next_states,
            banked_score=state.banked_score + match.full_score,
            version=graph.version,
        )

    def replay(self, tokens: Sequence[int]) -> ContextState:
        """Context state after emitting tokens from the initial state."""
        state = self.initial_state()
        for token_id in tokens:
            state = self.advance(state, token_id)
        return state

    def bonus(self, state: ContextState, token_id: int) -> float:
        """Additive score change for emitting token_id from state."""
        return self.advance(state, token_id).score - state.score

    def lookahead(self, state: ContextState) -> Tuple[float, Dict[int, float]]:
        """
        Score changes for every possible next token.

        Only tokens labelling an arc out of an active state can extend a
        match; every other token follows the escape arcs alone.

        Args:
            state: Current hypothesis state

        Returns:
            Tuple of (bonus for any unlisted token, {token_id: bonus})
        """
        fallback = self.bonus(state, NO_SYMBOL)
        graph = self.context_graph
        if graph.graph is None or state.version != graph.version:
            return fallback, {}

        biases: Dict[int, float] = {}
        for active_state in state.active_states:
            for label in graph.next_labels(active_state):
                if label not in biases:
                    biases[label] = self.bonus(state, label)
        return fallback, biases


class ContextBiasingLogitsProcessor:
    """
    LogitsProcessor applying context graph biasing to next-token logits.

    Compatible with Transformers' generation pipeline: pass it to
    model.generate(logits_processor=[...]). For every row of the batch
    the processor recovers the hypothesis' context state from its tokens
    and adds to each candidate token the context bonus emitting it would
    yield.

    States are cached per token prefix between calls. A hypothesis whose
    parent prefix was seen in the previous call is advanced by one token;
    any other hypothesis is replayed from the start.

    Args:
        context_graph: Compiled ContextGraph. Token ids of the graph must
            be ids of the decoder's vocabulary.
        sample_begin: Index where token sampling begins (after prompt tokens)
    """

    def __init__(self, context_graph: ContextGraph, sample_begin: int = 0):
        self.tracker = ContextTracker(context_graph)
        self.sample_begin = sample_begin
        self._beam_states: Dict[Tuple[int, ...], ContextState] = {}
        self._last_context_scores: Optional[List[float]] = None

    def _get_state(self, tokens: Tuple[int, ...]) -> ContextState:
        version = self.tracker.context_graph.version
        state = self._beam_states.get(tokens)
        if state is not None and state.version == version:
            return state
        if tokens:
            parent = self._beam_states.get(tokens[:-1])
            if parent is not None and parent.version == version:
                return self.tracker.advance(parent, tokens[-1])
        return self.tracker.replay(tokens)

    def __call__(self, input_ids: Tensor, scores: Tensor) -> Tensor:
        """
        Apply context biasing to scores (logits).

        Args:
            input_ids: Input token IDs, shape [batch, seq_len]
            scores: Logits tensor, shape [batch, vocab_size]

        Returns:
            Modified scores tensor with context bonuses applied
        """
        if input_ids.shape[0] != scores.shape[0]:
            raise ValueError(
                f"Number of sequences ({input_ids.shape[0]}) doesn't match "
                f"batch size ({scores.shape[0]})"
            )

        vocab_size = scores.shape[-1]
        new_beam_states: Dict[Tuple[int, ...], ContextState] = {}
        context_scores = []

        for i in range(input_ids.shape[0]):
            tokens = tuple(input_ids[i].tolist()[self.sample_begin:])
            state = self._get_state(tokens)
            new_beam_states[tokens] = state
            context_scores.append(state.score)

            fallback, biases = self.tracker.lookahead(state)
            if fallback != 0.0:
                scores[i] += fallback
            for token_id, bonus in biases.items():
                if 0 <= token_id < vocab_size:
                    scores[i, token_id] += bonus - fallback

        self._beam_states = new_beam_states
        self._last_context_scores = context_scores
        return scores

    @property
    def last_context_scores(self) -> Optional[List[float]]:
        """Context score of each row in the last __call__() invocation."""
        return self._last_context_scores

    def reset(self) -> None:
        """Reset cached beam states. Call between different audio samples."""
        self._beam_states.clear()
        self._last_context_scores = None
