"""Prioritized prompt fragments and their composition."""

from collections.abc import Iterable
from dataclasses import dataclass

SYSTEM_PRIORITY = 1000
CONTEXT_PRIORITY = 500
FRAGMENT_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class Fragment:
    """A piece of system or context text merged into the prompt preamble."""

    content: str
    priority: int = SYSTEM_PRIORITY


def compose(fragments: Iterable[Fragment]) -> str:
    """Join fragments by descending priority.

    ``sorted`` is stable, so fragments with equal priority keep their
    authoring order.

    Args:
        fragments: Fragments in authoring order

    Returns:
        The joined text, or an empty string when there are no fragments
    """
    ordered = sorted(fragments, key=lambda fragment: fragment.priority, reverse=True)
    return FRAGMENT_SEPARATOR.join(fragment.content for fragment in ordered)


def compose_system_prompt(
    system_parts: Iterable[Fragment],
    context_parts: Iterable[Fragment],
) -> str | None:
    """Build the full preamble: system fragments first, then context fragments.

    Args:
        system_parts: Fragments from ``system`` nodes
        context_parts: Fragments from ``context`` nodes

    Returns:
        The preamble, or None when neither group has content
    """
    sections = [section for section in (compose(system_parts), compose(context_parts)) if section]
    if not sections:
        return None
    return FRAGMENT_SEPARATOR.join(sections)
