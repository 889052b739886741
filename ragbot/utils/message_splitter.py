"""
Split long outbound text for chat platforms with a per-message length limit.
"""

from typing import List

DISCORD_MAX_LENGTH = 2000


def _find_split_point(chunk_text: str, max_length: int) -> int:
    # Prefer paragraph, then line, then sentence, then clause boundaries, as
    # long as the chunk stays at least half full.
    paragraph_break = chunk_text.rfind("\n\n")
    if paragraph_break > max_length * 0.5:
        return paragraph_break + 2

    newline = chunk_text.rfind("\n")
    if newline > max_length * 0.5:
        return newline + 1

    sentence_end = max(chunk_text.rfind(". "), chunk_text.rfind("! "), chunk_text.rfind("? "))
    if sentence_end > max_length * 0.5:
        return sentence_end + 2

    clause = max(chunk_text.rfind(", "), chunk_text.rfind("; "))
    if clause > max_length * 0.5:
        return clause + 2

    space = chunk_text.rfind(" ")
    if space > max_length * 0.7:
        return space + 1

    return max_length


def split_message(message: str, max_length: int = DISCORD_MAX_LENGTH) -> List[str]:
    """
    Split `message` into chunks of at most `max_length` characters.

    Whitespace at chunk edges is dropped; an empty message yields no chunks.
    """
    if max_length < 1:
        raise ValueError("max_length must be >= 1")
    if not message or not message.strip():
        return []
    if len(message) <= max_length:
        return [message]

    chunks: List[str] = []
    remaining = message
    while len(remaining) > max_length:
        split_point = _find_split_point(remaining[:max_length], max_length)
        chunk = remaining[:split_point].strip()
        if chunk:
            chunks.append(chunk)
        remaining = remaining[split_point:].strip()

    if remaining:
        chunks.append(remaining)
    return chunks


def needs_splitting(message: str, max_length: int = DISCORD_MAX_LENGTH) -> bool:
    return len(message) > max_length
