"""Session history of translation results with aggregate statistics."""

from livetranslate.core.models import SessionStats, TranslationResult


class TranslationHistory:
    """Keeps results in arrival order and summarises them."""

    def __init__(self) -> None:
        self._results: list[TranslationResult] = []

    def __len__(self) -> int:
        return len(self._results)

    @property
    def results(self) -> list[TranslationResult]:
        return list(self._results)

    def append(self, result: TranslationResult) -> None:
        self._results.append(result)

    def clear(self) -> None:
        self._results.clear()

    def stats(self) -> SessionStats | None:
        """Average latency/confidence and word count; None when empty."""
        if not self._results:
            return None
        count = len(self._results)
        return SessionStats(
            total_translations=count,
            avg_latency_ms=sum(r.latency_ms for r in self._results) / count,
            avg_confidence=sum(r.confidence for r in self._results) / count,
            total_words=sum(len(r.original_text.split()) for r in self._results),
        )
