#!/usr/bin/env python3
"""
XLIFF Inline Markup Tokenizer

Mixed-content <source> elements can hold inline nodes (<g>, <x/>, <ph>,
<bpt>, comments, processing instructions...). Those must never reach the
translation model. This module swaps every non-text child for a positional
token, and later rebuilds the node sequence from the translated text by
putting deep copies of the original nodes back where their tokens landed.
"""

import copy
import logging
from typing import List, Sequence, Tuple, Union

from lxml import etree

logger = logging.getLogger(__name__)

TAG_TOKEN_TEMPLATE = "__XLF_TAG_{index}__"

# A rehydrated sequence: plain strings are text runs, everything else is a node.
NodeSequence = List[Union[str, etree._Element]]


def tag_token(index: int) -> str:
    """Return the token that stands in for the inline node at ``index``."""
    return TAG_TOKEN_TEMPLATE.format(index=index)


def clone_node(node: etree._Element) -> etree._Element:
    """
    Return a structurally independent copy of ``node`` without its tail.

    lxml keeps the text following a node in ``node.tail``; that text belongs
    to the parent's text flow, not to the node, so it is dropped here.
    """
    clone = copy.deepcopy(node)
    clone.tail = None
    return clone


def extract_text_with_tokens(
    element: etree._Element,
) -> Tuple[str, List[etree._Element]]:
    """
    Flatten the direct children of ``element`` into tokenized plain text.

    Text runs are kept verbatim. Each child node (element, comment, processing
    instruction, entity reference) is replaced by ``__XLF_TAG_<i>__`` where i
    is its position among the non-text children, and a deep copy of it is
    stored at index i of the returned list.

    Args:
        element: The mixed-content element to flatten (usually <source>)

    Returns:
        A tuple of (text with tag tokens, list of cloned nodes)
    """
    parts: List[str] = [element.text or ""]
    token_nodes: List[etree._Element] = []

    for child in element:
        parts.append(tag_token(len(token_nodes)))
        token_nodes.append(clone_node(child))
        if child.tail:
            parts.append(child.tail)

    return "".join(parts), token_nodes


def rehydrate_nodes_from_tokens(
    translated_text: str, token_nodes: Sequence[etree._Element]
) -> NodeSequence:
    """
    Rebuild a node sequence from translated text containing tag tokens.

    Tokens are searched for in ascending index order, each one after the
    previous match. If any token cannot be found that way the whole unit
    degrades to a single text run holding ``translated_text`` verbatim.

    Args:
        translated_text: Text returned by the model (placeholders restored)
        token_nodes: Nodes produced by ``extract_text_with_tokens``

    Returns:
        List of text runs (str) and fresh node copies in document order
    """
    if not token_nodes:
        return [translated_text]

    sequence: NodeSequence = []
    cursor = 0

    for index, node in enumerate(token_nodes):
        token = tag_token(index)
        position = translated_text.find(token, cursor)
        if position < 0:
            logger.warning(
                f"Inline token {token} missing or out of order; writing unit as plain text"
            )
            return [translated_text]

        before = translated_text[cursor:position]
        if before:
            sequence.append(before)
        sequence.append(clone_node(node))
        cursor = position + len(token)

    remaining = translated_text[cursor:]
    if remaining:
        sequence.append(remaining)

    return sequence


def tag_tokens_in_order(text: str, count: int) -> bool:
    """Return True if tag tokens 0..count-1 occur in ``text`` in ascending order."""
    cursor = 0
    for index in range(count):
        token = tag_token(index)
        position = text.find(token, cursor)
        if position < 0:
            return False
        cursor = position + len(token)
    return True


def set_element_content(element: etree._Element, sequence: NodeSequence) -> None:
    """Replace all children and text of ``element`` with ``sequence``."""
    for child in list(element):
        element.remove(child)
    element.text = None

    last_node = None
    for item in sequence:
        if isinstance(item, str):
            if last_node is None:
                element.text = (element.text or "") + item
            else:
                last_node.tail = (last_node.tail or "") + item
            continue

        element.append(item)
        last_node = item
