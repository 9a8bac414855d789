from collections.abc import Iterable

from call_console.schemas.envelope import TranscriptSegment


class TranscriptLog:
    """
    Reconciled transcript for one call.

    Each speaker has at most one live interim segment. The next segment from
    that speaker, interim or final, retires it. Final segments are appended and
    never removed, so they form the immutable history. The log is derived
    state: it can always be rebuilt from the raw segment stream.
    """

    def __init__(self) -> None:
        self._segments: tuple[TranscriptSegment, ...] = ()

    @property
    def segments(self) -> tuple[TranscriptSegment, ...]:
        return self._segments

    def __len__(self) -> int:
        return len(self._segments)

    def __iter__(self):
        return iter(self._segments)

    def apply(self, segment: TranscriptSegment) -> tuple[TranscriptSegment, ...]:
        kept = tuple(
            existing
            for existing in self._segments
            if existing.is_final or existing.speaker != segment.speaker
        )
        self._segments = (*kept, segment)
        return self._segments

    def interim_for(self, speaker: str) -> TranscriptSegment | None:
        for segment in reversed(self._segments):
            if segment.speaker == speaker and not segment.is_final:
                return segment
        return None

    def finals(self) -> tuple[TranscriptSegment, ...]:
        return tuple(segment for segment in self._segments if segment.is_final)

    def clear(self) -> None:
        self._segments = ()

    @classmethod
    def rebuild(cls, segments: Iterable[TranscriptSegment]) -> "TranscriptLog":
        log = cls()
        for segment in segments:
            log.apply(segment)
        return log
