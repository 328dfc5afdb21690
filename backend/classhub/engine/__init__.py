from classhub.engine.assistant_bot import ASSISTANT_NAME, ASSISTANT_SENDER_ID, AssistantBot
from classhub.engine.cache import LocalSessionCache
from classhub.engine.chat import Attachment, ChatEngine
from classhub.engine.events import EventStream
from classhub.engine.identity import IdentityCell, SessionController
from classhub.engine.reconciler import ConnectionState, RealtimeReconciler
from classhub.engine.recorder import MicrophoneDriver, PushMicrophone, RecorderState, VoiceRecorder
from classhub.engine.session import HubSession
from classhub.engine.typing_tracker import TypingTracker

__all__ = [
    "ASSISTANT_NAME",
    "ASSISTANT_SENDER_ID",
    "AssistantBot",
    "Attachment",
    "ChatEngine",
    "ConnectionState",
    "EventStream",
    "HubSession",
    "IdentityCell",
    "LocalSessionCache",
    "MicrophoneDriver",
    "PushMicrophone",
    "RealtimeReconciler",
    "RecorderState",
    "SessionController",
    "TypingTracker",
    "VoiceRecorder",
]
