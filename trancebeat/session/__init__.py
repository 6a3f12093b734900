"""
Session orchestration for TranceBeat.

Core Components:
- SessionConfig / AffirmationItem / Script: immutable session content
- AffirmationSequencer: ordered, shuffled or looped affirmation playback
- SessionStateMachine: phase flow, transition delays and progress bands
- SessionController: public command surface composing the engines
"""

from .models import (
    AffirmationItem,
    Phase,
    PhaseInfo,
    PHASE_INFO,
    Script,
    ScriptRole,
    SessionConfig,
)

from .settings import (
    PlaybackSettings,
    SessionTiming,
    SettingsStore,
)

from .events import (
    SessionEventType,
    SessionEvent,
    SessionEventEmitter,
)

from .segments import ClipSegment, Segment, SegmentResult, TimerSegment
from .sequencer import AffirmationSequencer
from .state_machine import SessionSnapshot, SessionStateMachine
from .controller import SessionController

__all__ = [
    # Content
    'AffirmationItem',
    'Phase',
    'PhaseInfo',
    'PHASE_INFO',
    'Script',
    'ScriptRole',
    'SessionConfig',

    # Settings
    'PlaybackSettings',
    'SessionTiming',
    'SettingsStore',

    # Event system
    'SessionEventType',
    'SessionEvent',
    'SessionEventEmitter',

    # Execution
    'ClipSegment',
    'Segment',
    'SegmentResult',
    'TimerSegment',
    'AffirmationSequencer',
    'SessionSnapshot',
    'SessionStateMachine',
    'SessionController',
]
