"""
Sentence Detector for the Streaming TTS Pipeline.

Accumulates LLM tokens and emits complete sentences as soon as terminal
punctuation followed by whitespace is observed. A mark at the very end of the
buffer may still grow ("." then ".."), so it waits for the next token or for
flush() at end of stream. A sentence whose mark ends a token is therefore
emitted one token later than the mark itself arrived.

Architecture:
    LLM tokens → SentenceDetector.add_token() → SequentialTTSProcessor

Usage:
    detector = SentenceDetector()

    # During LLM streaming:
    async for token in llm_tokens:
        for sentence in detector.add_token(token):
            processor.enqueue_sentence(sentence, is_last=False)

    # After streaming completes:
    final = detector.flush()
    if final:
        processor.enqueue_sentence(final, is_last=True)
"""

import re
from typing import List, Optional

# One or more terminal marks followed by whitespace
SENTENCE_END = re.compile(r"[.!?]+\s")


class SentenceDetector:
    """
    Stateful splitter that turns a token stream into whole sentences.

    Repeated punctuation ("...", "?!") is treated as a single boundary, so
    no empty sentences are ever produced. The detector performs no I/O.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def add_token(self, token: str) -> List[str]:
        """
        Append a token and return every sentence it completed.

        Args:
            token: Text fragment from the LLM stream

        Returns:
            Zero or more trimmed sentences, in source order
        """
        if not token:
            return []

        self._buffer += token
        sentences: List[str] = []

        while True:
            match = SENTENCE_END.search(self._buffer)
            if not match:
                break

            sentence = self._buffer[: match.end()].strip()
            self._buffer = self._buffer[match.end():]

            if sentence:
                sentences.append(sentence)

        return sentences

    def flush(self) -> Optional[str]:
        """
        Return the trimmed remainder of the buffer, if any, and clear it.

        Call exactly once after the token stream ends so a trailing sentence
        without terminal punctuation is not lost.
        """
        remainder = self._buffer.strip()
        self._buffer = ""
        return remainder or None

    def reset(self) -> None:
        """Discard any buffered text."""
        self._buffer = ""

    @property
    def buffer(self) -> str:
        """Text received but not yet emitted."""
        return self._buffer
