import json
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from call_console.schemas.envelope import Speaker, TranscriptSegment, new_id

SECONDS_PER_WORD = 0.35
END_BUFFER_MS = 2000


class ScriptLine(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    delay: int = Field(ge=0, description="milliseconds after the call became active")
    speaker: Speaker
    text: str
    is_final: bool


@dataclass(frozen=True)
class TimedLine:
    delay_ms: int
    speaker: str
    text: str
    is_final: bool
    start_time: float
    end_time: float | None

    def to_segment(self, activated_at_ms: int) -> TranscriptSegment:
        return TranscriptSegment(
            segment_id=new_id(),
            speaker=self.speaker,
            text=self.text,
            timestamp=activated_at_ms + self.delay_ms,
            start_time=self.start_time,
            end_time=self.end_time,
            is_final=self.is_final,
        )


class ConversationScript:
    """Ordered ``(delay, line)`` playback script for one simulated call."""

    def __init__(self, lines: list[ScriptLine]) -> None:
        delays = [line.delay for line in lines]
        if delays != sorted(delays):
            raise ValueError("script lines must be ordered by delay")
        self.lines = list(lines)
        self._timeline = _build_timeline(self.lines)

    def __len__(self) -> int:
        return len(self.lines)

    def timeline(self) -> list[TimedLine]:
        return list(self._timeline)

    def duration_ms(self) -> int:
        if not self.lines:
            return 0
        return self.lines[-1].delay + END_BUFFER_MS

    @classmethod
    def from_file(cls, path: str | Path) -> "ConversationScript":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        entries = data.get("lines", []) if isinstance(data, dict) else data
        return cls([ScriptLine.model_validate(entry) for entry in entries])


def _estimate_seconds(text: str) -> float:
    return max(1, len(text.split())) * SECONDS_PER_WORD


def _build_timeline(lines: list[ScriptLine]) -> list[TimedLine]:
    # An interim opens an utterance for its speaker; the next final for that
    # speaker closes it and inherits its start time.
    open_utterances: dict[str, float] = {}
    timeline: list[TimedLine] = []
    for line in lines:
        at = line.delay / 1000
        if not line.is_final:
            start = open_utterances.setdefault(line.speaker, at)
            end = None
        elif line.speaker in open_utterances:
            start = open_utterances.pop(line.speaker)
            end = at
        else:
            start = at
            end = at + _estimate_seconds(line.text)
        timeline.append(
            TimedLine(
                delay_ms=line.delay,
                speaker=line.speaker,
                text=line.text,
                is_final=line.is_final,
                start_time=round(start, 3),
                end_time=round(end, 3) if end is not None else None,
            )
        )
    return timeline


def _line(delay: int, speaker: str, text: str, is_final: bool) -> ScriptLine:
    return ScriptLine(delay=delay, speaker=speaker, text=text, is_final=is_final)


# Spanish-speaking caller reporting a house fire.
FIRE_EMERGENCY = ConversationScript(
    [
        _line(500, "telecommunicator", "911, what is your emergency?", True),
        _line(2000, "caller", "Ayuda por favor", False),
        _line(2500, "caller", "Ayuda por favor, hay un incendio en mi casa!", True),
        _line(
            4000,
            "telecommunicator",
            "I understand. Fire department is being dispatched. What is your address?",
            True,
        ),
        _line(6000, "caller", "Calle Principal 123, cerca del parque", False),
        _line(6500, "caller", "Calle Principal 123, cerca del parque central", True),
        _line(
            8000,
            "telecommunicator",
            "Confirmed, 123 Main Street near the central park. "
            "Is everyone out of the building?",
            True,
        ),
        _line(10000, "caller", "Si, todos estamos afuera", False),
        _line(10500, "caller", "Si, todos estamos afuera y seguros", True),
        _line(
            12000,
            "telecommunicator",
            "Good. Stay away from the building. "
            "Fire department is on the way, ETA 4 minutes.",
            True,
        ),
        _line(14000, "caller", "Gracias, muchas gracias", True),
    ]
)


def load_script(path: str | None) -> ConversationScript:
    if not path:
        return FIRE_EMERGENCY
    return ConversationScript.from_file(path)
