"""
Symbol Tables for Context Biasing.

Maps atomic tokens (characters or units) to the integer ids emitted by the
decoder. Tables are pynini (OpenFst) symbol tables. The context graph only
needs a `find(token) -> id` lookup, so any object following the OpenFst
convention (-1 for unknown tokens) or a plain token-to-id mapping works too.
"""

from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

import pynini

NO_SYMBOL = -1


def load_symbol_table(path: Union[str, Path]) -> pynini.SymbolTable:
    """
    Load a symbol table from a text file with one `token id` pair per line.

    This is the Kaldi words.txt / units.txt layout. Blank lines are skipped.

    Args:
        path: Path to the symbol file

    Returns:
        pynini.SymbolTable holding every token of the file

    Raises:
        ValueError: If a line does not hold exactly a token and a
            non-negative integer id, or if a token or id appears twice
    """
    path = Path(path)
    symbols = pynini.SymbolTable()
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            parts = line.split()
            if not parts:
                continue
            if len(parts) != 2:
                raise ValueError(
                    f"{path}:{line_no}: expected 'token id', got {line.rstrip()!r}"
                )
            token, key = parts
            try:
                key = int(key)
            except ValueError as e:
                raise ValueError(f"{path}:{line_no}: {e}") from e
            if key < 0:
                raise ValueError(
                    f"{path}:{line_no}: symbol id must be non-negative, got {key}"
                )
            if symbols.member(token):
                raise ValueError(
                    f"{path}:{line_no}: token {token!r} already has id "
                    f"{symbols.find(token)}"
                )
            if symbols.member(key):
                raise ValueError(
                    f"{path}:{line_no}: symbol id {key} already assigned to "
                    f"{symbols.find(key)!r}"
                )
            symbols.add_symbol(token, key)
    return symbols


def symbol_table_from_tokens(
    tokens: Iterable[str], offset: int = 0
) -> pynini.SymbolTable:
    """
    Create a symbol table assigning consecutive ids to tokens.

    Args:
        tokens: Tokens in id order
        offset: Id of the first token

    Returns:
        New pynini.SymbolTable
    """
    symbols = pynini.SymbolTable()
    for i, token in enumerate(tokens):
        symbols.add_symbol(token, offset + i)
    return symbols


def symbol_table_from_vocab(vocab: Mapping[str, int]) -> pynini.SymbolTable:
    """
    Create a symbol table from a token -> id mapping.

    Accepts e.g. the result of a Hugging Face tokenizer's get_vocab().
    """
    symbols = pynini.SymbolTable()
    for token, key in sorted(vocab.items(), key=lambda item: item[1]):
        symbols.add_symbol(token, key)
    return symbols


def lookup_token(symbol_table: Any, token: str) -> Optional[int]:
    """
    Look a token up in any supported symbol lookup.

    Args:
        symbol_table: Object with a `find` method, or a token -> id mapping
        token: Token to look up

    Returns:
        The token id, or None if the token is unknown
    """
    if hasattr(symbol_table, "find"):
        key = symbol_table.find(token)
    else:
        key = symbol_table.get(token)
    if key is None or key < 0:
        return None
    return key
