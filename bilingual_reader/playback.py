"""
Read-aloud playback scheduler.

Turns a chapter's paragraph stream into a queue of utterances and drives a
speech engine through it one paragraph at a time. The engine reports back
through a single entry point, `PlaybackScheduler.handle_event`, with
Started / Ended / Failed events; events from utterances that were cancelled
in the meantime carry an old token and are ignored.

All collaborators are injected:

  - engine: speak / cancel / pause / resume plus speaking / paused / pending
    flags (the browser's speechSynthesis, or a fake in tests)
  - wake_lock: acquire / release; failures are ignored
  - call_later(delay_seconds, fn): deferred callbacks, never blocking
  - hooks: save_progress, highlight, clear_highlight, report_error

The scheduler is single-threaded: call it only from the thread (or event
loop) that delivers engine events.

The reader page in web_app.py runs the same state machine in the browser
and takes RESUME_CHECK_DELAY and MAX_SPEAK_DEPTH from this module; a change
to the transitions here has to be made there too.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Protocol

from .models import SOURCE, TARGET, PlaybackItem

logger = logging.getLogger(__name__)

# Grace period before checking that a resume actually took effect
RESUME_CHECK_DELAY = 0.18

# Consecutive synchronous advances tolerated before playback is halted
MAX_SPEAK_DEPTH = 100

VISIBILITY_BOTH = 'both'
VISIBILITY_SOURCE = SOURCE
VISIBILITY_TARGET = TARGET
VISIBILITY_FILTERS = (VISIBILITY_BOTH, VISIBILITY_SOURCE, VISIBILITY_TARGET)

MIN_RATE, MAX_RATE = 0.5, 2.0
MIN_FONT_SIZE, MAX_FONT_SIZE = 15, 26


class EventKind(Enum):
    STARTED = 'started'
    ENDED = 'ended'
    FAILED = 'failed'


class PlayerStatus(Enum):
    IDLE = 'idle'
    SPEAKING = 'speaking'
    PAUSED = 'paused'


@dataclass(frozen=True)
class EngineEvent:
    kind: EventKind
    original_index: int
    token: int
    error: str = ''


@dataclass(frozen=True)
class Utterance:
    text: str
    language: str
    original_index: int
    token: int
    lang_hint: str = ''
    rate: float = 1.0
    pitch: float = 1.0
    voice: Optional[str] = None

    def event(self, kind: EventKind, error: str = '') -> EngineEvent:
        return EngineEvent(kind=kind, original_index=self.original_index, token=self.token, error=error)


class SpeechEngine(Protocol):
    speaking: bool
    paused: bool
    pending: bool

    def speak(self, utterance: Utterance) -> None: ...
    def cancel(self) -> None: ...
    def pause(self) -> None: ...
    def resume(self) -> None: ...


class WakeLock(Protocol):
    def acquire(self) -> None: ...
    def release(self) -> None: ...


@dataclass
class PlaybackHooks:
    save_progress: Optional[Callable[[int], None]] = None
    highlight: Optional[Callable[[int, int], None]] = None
    clear_highlight: Optional[Callable[[], None]] = None
    report_error: Optional[Callable[[str], None]] = None


def _clamp(value, low, high):
    return max(low, min(high, value))


@dataclass
class PlayerPreferences:
    """Per-reader settings kept on the client between visits."""
    source_rate: float = 1.0
    target_rate: float = 1.0
    pitch: float = 1.0
    font_size: int = 17
    visibility: str = VISIBILITY_BOTH
    settings_open: bool = False
    source_voice: Optional[str] = None
    target_voice: Optional[str] = None

    def __post_init__(self):
        self.source_rate = _clamp(float(self.source_rate), MIN_RATE, MAX_RATE)
        self.target_rate = _clamp(float(self.target_rate), MIN_RATE, MAX_RATE)
        self.font_size = int(_clamp(int(self.font_size), MIN_FONT_SIZE, MAX_FONT_SIZE))
        if self.visibility not in VISIBILITY_FILTERS:
            self.visibility = VISIBILITY_BOTH

    def rate_for(self, language: str) -> float:
        return self.target_rate if language == TARGET else self.source_rate

    def voice_for(self, language: str) -> Optional[str]:
        return self.target_voice if language == TARGET else self.source_voice

    def to_dict(self) -> dict:
        return {
            'sourceRate': self.source_rate,
            'targetRate': self.target_rate,
            'pitch': self.pitch,
            'fontSize': self.font_size,
            'visibility': self.visibility,
            'settingsOpen': self.settings_open,
            'sourceVoice': self.source_voice,
            'targetVoice': self.target_voice,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'PlayerPreferences':
        """Restore preferences; unknown keys are ignored and bad values fall back to defaults."""
        defaults = cls()
        values = {}
        for key, attr, convert in (
            ('sourceRate', 'source_rate', float),
            ('targetRate', 'target_rate', float),
            ('pitch', 'pitch', float),
            ('fontSize', 'font_size', int),
        ):
            try:
                values[attr] = convert(data.get(key, getattr(defaults, attr)))
            except (TypeError, ValueError):
                values[attr] = getattr(defaults, attr)
        return cls(
            visibility=str(data.get('visibility', VISIBILITY_BOTH)),
            settings_open=bool(data.get('settingsOpen', False)),
            source_voice=data.get('sourceVoice'),
            target_voice=data.get('targetVoice'),
            **values,
        )


def is_visible(language: str, visibility: str) -> bool:
    return visibility == VISIBILITY_BOTH or language == visibility


def build_queue(paragraphs, visibility: str = VISIBILITY_BOTH) -> list[PlaybackItem]:
    """Paragraphs eligible for speech under the filter, keeping their stream index."""
    return [
        PlaybackItem(text=p.text, language=p.language, original_index=i)
        for i, p in enumerate(paragraphs)
        if is_visible(p.language, visibility)
    ]


@dataclass
class PlayerState:
    queue: list[PlaybackItem] = field(default_factory=list)
    current_index: int = -1
    user_paused: bool = False
    playing_index: int = -1
    depth: int = 0
    token: int = 0

    @property
    def idle(self) -> bool:
        return self.current_index < 0 or self.current_index >= len(self.queue)

    @property
    def current_item(self) -> Optional[PlaybackItem]:
        return None if self.idle else self.queue[self.current_index]


def _thread_timer(delay: float, callback) -> None:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()


class PlaybackScheduler:
    """State machine that speaks a chapter paragraph by paragraph."""

    def __init__(
        self,
        paragraphs,
        engine: SpeechEngine,
        wake_lock: Optional[WakeLock] = None,
        hooks: Optional[PlaybackHooks] = None,
        preferences: Optional[PlayerPreferences] = None,
        call_later=None,
        source_lang: str = 'en',
        target_lang: str = 'fr',
    ):
        self.paragraphs = list(paragraphs)
        self.engine = engine
        self.wake_lock = wake_lock
        self.hooks = hooks or PlaybackHooks()
        self.preferences = preferences or PlayerPreferences()
        self.source_lang = source_lang
        self.target_lang = target_lang
        self.state = PlayerState()
        self._call_later = call_later or _thread_timer

    @property
    def status(self) -> PlayerStatus:
        if self.state.idle:
            return PlayerStatus.IDLE
        if self.state.user_paused or self.engine.paused:
            return PlayerStatus.PAUSED
        return PlayerStatus.SPEAKING

    # -- user actions -----------------------------------------------------

    def play(self, from_index: int = 0) -> None:
        """Start speaking from the paragraph with stream index `from_index`."""
        self._cancel_engine()
        queue = build_queue(self.paragraphs, self.preferences.visibility)
        position = next(
            (pos for pos, item in enumerate(queue) if item.original_index == from_index), 0,
        )
        self.state.queue = queue
        self.state.current_index = position
        self.state.user_paused = False
        self.state.depth = 0
        logger.debug(
            f'play from={from_index} filter={self.preferences.visibility} '
            f'queue={len(queue)} position={position}'
        )
        self._acquire_wake_lock()
        self._speak_next()

    def pause(self) -> None:
        self.state.user_paused = True
        self.engine.pause()

    def resume(self) -> None:
        item = self.state.current_item
        if item is None:
            return
        self.state.user_paused = False
        self._resume_or_restart(item.original_index)

    def stop(self) -> None:
        self._cancel_engine()
        self._reset_cursor()
        self._clear_highlight()
        self._release_wake_lock()

    def click(self, index: int) -> None:
        """Paragraph clicked: toggle it if it is the one playing, else restart from it."""
        if index == self.state.playing_index and not self.state.idle:
            if self.engine.paused or self.state.user_paused:
                self.state.user_paused = False
                self._resume_or_restart(index)
            elif self.engine.speaking:
                self.state.user_paused = True
                self.engine.pause()
            else:
                self.play(index)
            return
        self.play(index)

    def toggle(self) -> None:
        """Space bar: resume when paused, pause when speaking, nothing when idle."""
        if self.engine.paused or self.state.user_paused:
            self.state.user_paused = False
            item = self.state.current_item
            self._resume_or_restart(item.original_index if item else 0)
        elif self.engine.speaking:
            self.state.user_paused = True
            self.engine.pause()

    def set_visibility(self, visibility: str) -> None:
        """Change the language filter; the queue changes shape, so playback stops."""
        if visibility not in VISIBILITY_FILTERS:
            raise ValueError(f'Unknown visibility filter: {visibility!r}')
        self.preferences.visibility = visibility
        self.stop()

    def on_page_visible(self) -> None:
        # The host may drop the wake lock while the page is hidden
        if self.engine.speaking or self.engine.paused:
            self._acquire_wake_lock()

    def on_unload(self) -> None:
        self._release_wake_lock()

    # -- engine events ------------------------------------------------------

    def handle_event(self, event: EngineEvent) -> None:
        if event.token != self.state.token or self.state.idle:
            logger.debug(f'Ignoring stale {event.kind.value} event for paragraph {event.original_index}')
            return
        if event.kind is EventKind.STARTED:
            self._on_started()
        elif event.kind is EventKind.ENDED:
            self._on_ended()
        else:
            logger.warning(f'Speech error on paragraph {event.original_index}: {event.error}')
            self._advance()

    def _on_started(self) -> None:
        item = self.state.current_item
        self.state.user_paused = False
        self.state.depth = 0
        self.state.playing_index = item.original_index
        if item.language != TARGET:
            return
        scroll_to = item.original_index - 1
        while scroll_to >= 0 and not is_visible(self.paragraphs[scroll_to].language, self.preferences.visibility):
            scroll_to -= 1
        if scroll_to < 0:
            scroll_to = item.original_index
        if self.hooks.highlight:
            self.hooks.highlight(item.original_index, scroll_to)

    def _on_ended(self) -> None:
        # Save the next paragraph, so a resume never repeats a finished one
        self._save_progress(self.state.current_item.original_index + 1)
        self._advance()

    def _advance(self) -> None:
        if self.state.current_index + 1 >= len(self.state.queue):
            self._finish()
            return
        self.state.current_index += 1
        self._speak_next()

    def _speak_next(self) -> None:
        state = self.state
        state.depth += 1
        if state.depth > MAX_SPEAK_DEPTH:
            self._halt_runaway()
            return
        if state.idle:
            self._finish()
            return

        item = state.queue[state.current_index]
        state.token += 1
        utterance = Utterance(
            text=item.text,
            language=item.language,
            original_index=item.original_index,
            token=state.token,
            lang_hint=self.target_lang if item.language == TARGET else self.source_lang,
            rate=self.preferences.rate_for(item.language),
            pitch=self.preferences.pitch,
            voice=self.preferences.voice_for(item.language),
        )
        logger.debug(
            f'speak {state.current_index + 1}/{len(state.queue)} '
            f'lang={item.language} idx={item.original_index}'
        )
        self.engine.speak(utterance)

    def _finish(self) -> None:
        logger.debug('Reached the end of the queue')
        self.state.current_index = len(self.state.queue)
        self.state.playing_index = -1
        self.state.user_paused = False
        self.state.depth = 0
        self._clear_highlight()
        self._release_wake_lock()

    def _halt_runaway(self) -> None:
        message = (
            f'Playback halted after {MAX_SPEAK_DEPTH} consecutive synchronous '
            f'advances; the speech engine is not reporting utterance starts'
        )
        logger.error(message)
        self.stop()
        if self.hooks.report_error:
            self.hooks.report_error(message)

    # -- helpers --------------------------------------------------------------

    def _resume_or_restart(self, index: int) -> None:
        """Resume the engine, restarting the paragraph if the resume silently fails."""
        self._acquire_wake_lock()
        self.engine.resume()
        token = self.state.token

        def verify():
            if self.state.token != token or self.state.idle:
                return
            if self.engine.paused or (not self.engine.speaking and not self.engine.pending):
                logger.debug(f'Resume did not take effect, restarting paragraph {index}')
                self.engine.cancel()
                self.play(index)

        self._call_later(RESUME_CHECK_DELAY, verify)

    def _cancel_engine(self) -> None:
        self.state.token += 1
        self.engine.cancel()

    def _reset_cursor(self) -> None:
        self.state.current_index = -1
        self.state.playing_index = -1
        self.state.user_paused = False
        self.state.depth = 0

    def _save_progress(self, index: int) -> None:
        if not self.hooks.save_progress:
            return
        try:
            self.hooks.save_progress(index)
        except Exception as e:
            logger.warning(f'Failed to save progress: {e}')

    def _clear_highlight(self) -> None:
        if self.hooks.clear_highlight:
            self.hooks.clear_highlight()

    def _acquire_wake_lock(self) -> None:
        if self.wake_lock is None:
            return
        try:
            self.wake_lock.acquire()
        except Exception as e:
            logger.debug(f'Wake lock unavailable: {e}')

    def _release_wake_lock(self) -> None:
        if self.wake_lock is None:
            return
        try:
            self.wake_lock.release()
        except Exception as e:
            logger.debug(f'Wake lock release failed: {e}')
