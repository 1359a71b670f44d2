"""
Fallback response library.

Pre-authored replies used instead of a generated draft when the classifier
reports a risk or limitation scenario. Responses are polite, short and written
in the agent's voice. Templates may contain `{displayName}`, `{businessName}`,
`{phone}`, `{purpose}` and `{hours}`.
"""

from __future__ import annotations

from functools import lru_cache
from types import MappingProxyType
from typing import Mapping, Optional, Union

from src.aloha.scenarios import FallbackResponse, ResponseTone, ScenarioCategory

_CALM = ResponseTone.CALM
_EMPATHETIC = ResponseTone.EMPATHETIC
_PROFESSIONAL = ResponseTone.PROFESSIONAL
_POLITE = ResponseTone.POLITE


AUDIO_RESPONSES: Mapping[str, FallbackResponse] = MappingProxyType({
    "bad_connection": FallbackResponse(
        primary=(
            "I'm having trouble hearing you clearly. Could you speak a bit louder, "
            "or would you prefer if I call you back?"
        ),
        alternatives=(
            "The connection seems a bit unclear. Could you repeat that?",
            "I'm experiencing some connection issues. Would you like me to call you back?",
        ),
        tone=_POLITE,
        should_offer_callback=True,
    ),
    "static_robotic": FallbackResponse(
        primary="I'm hearing some static on the line. Could you try speaking a bit more clearly?",
        alternatives=(
            "There seems to be some interference. Could you repeat that?",
            "The audio quality isn't great. Would you prefer to continue or schedule a callback?",
        ),
        tone=_POLITE,
        should_offer_callback=True,
    ),
    "caller_cannot_hear": FallbackResponse(
        primary="Can you hear me okay? If not, let me know and I can adjust or call you back.",
        alternatives=(
            "Are you able to hear me clearly?",
            "If you're having trouble hearing me, I can call you back on a better line.",
        ),
        tone=_POLITE,
        should_offer_callback=True,
    ),
    "aloha_cannot_hear": FallbackResponse(
        primary="I'm having trouble understanding you. Could you repeat that a bit slower?",
        alternatives=(
            "I didn't catch that. Could you say that again?",
            "Could you speak a bit more clearly? I'm having trouble hearing you.",
        ),
        tone=_POLITE,
    ),
    "distorted_audio": FallbackResponse(
        primary="The audio seems a bit distorted. Could you try speaking more clearly?",
        alternatives=(
            "I'm having trouble understanding due to audio quality. Could you repeat that?",
            "The sound quality isn't great. Would you like to continue or schedule a callback?",
        ),
        tone=_POLITE,
        should_offer_callback=True,
    ),
    "background_noise": FallbackResponse(
        primary=(
            "I'm hearing some background noise. Could you find a quieter spot, "
            "or would you prefer to call back?"
        ),
        alternatives=(
            "There's quite a bit of background noise. Could you move to a quieter location?",
            "I'm having trouble hearing you over the background noise. Would you like to call back?",
        ),
        tone=_POLITE,
        should_offer_callback=True,
    ),
    "echo_feedback": FallbackResponse(
        primary="I'm hearing some echo on the line. Could you try moving to a different location?",
        alternatives=(
            "There seems to be some feedback. Could you adjust your phone or move to a different spot?",
        ),
        tone=_POLITE,
    ),
    "call_lag": FallbackResponse(
        primary="I'm experiencing some delay on the line. Let me wait a moment for your response.",
        alternatives=("There seems to be some lag. Please take your time responding.",),
        tone=_POLITE,
    ),
    "conference_call": FallbackResponse(
        primary=(
            "I can hear multiple voices. Could you have one person speak at a time "
            "so I can help you better?"
        ),
        alternatives=("I'm hearing several people. Could one person take the lead on this call?",),
        tone=_PROFESSIONAL,
    ),
    "voicemail": FallbackResponse(
        primary=(
            "Hi, this is {displayName} from {businessName}. I'm calling to {purpose}. "
            "Please call us back at {phone} at your convenience, or I'll try calling again later. Thank you!"
        ),
        alternatives=(
            "Hello, this is {displayName} from {businessName}. I wanted to {purpose}. "
            "Please return my call at {phone} when you have a moment. Thank you!",
        ),
        tone=_PROFESSIONAL,
        should_exit=True,
    ),
})

BEHAVIOR_RESPONSES: Mapping[str, FallbackResponse] = MappingProxyType({
    "interruption": FallbackResponse(
        primary="I'll let you finish. Go ahead.",
        alternatives=("Please continue.", "I'm listening."),
        tone=_POLITE,
    ),
    "talking_over": FallbackResponse(
        primary="I'll wait for you to finish. Take your time.",
        alternatives=("Please go ahead. I'm here to listen.",),
        tone=_POLITE,
    ),
    "silence_pause": FallbackResponse(
        primary="Take your time. I'm here when you're ready to continue.",
        alternatives=("No rush. I'll wait for your response.", "I'm still here. Take your time."),
        tone=_CALM,
    ),
    "fast_talker": FallbackResponse(
        primary="I want to make sure I understand everything. Could you slow down just a bit?",
        alternatives=("Could you speak a bit slower so I can catch all the details?",),
        tone=_POLITE,
    ),
    "slow_talker": FallbackResponse(
        primary="Take your time. I'm here to listen.",
        alternatives=("No rush. I'm listening.",),
        tone=_CALM,
    ),
    "topic_switch": FallbackResponse(
        primary=(
            "I understand. Let me make sure I have all the information. "
            "What else would you like to discuss?"
        ),
        alternatives=("Got it. Is there anything else you'd like to cover?",),
        tone=_POLITE,
    ),
    "thinks_human": FallbackResponse(
        primary=(
            "I'm actually an AI assistant, but I'm here to help you just the same. "
            "How can I assist you today?"
        ),
        alternatives=("I'm an AI assistant helping {businessName}. How can I help you?",),
        tone=_PROFESSIONAL,
    ),
    "testing_ai": FallbackResponse(
        primary=(
            "Yes, I'm an AI assistant. I'm here to help you with {businessName}. "
            "How can I assist you today?"
        ),
        alternatives=("I'm an AI assistant. Is there something specific I can help you with?",),
        tone=_PROFESSIONAL,
    ),
    "strong_accent": FallbackResponse(
        primary="I want to make sure I understand you correctly. Could you repeat that a bit slower?",
        alternatives=("I'm having a bit of trouble understanding. Could you say that again?",),
        tone=_POLITE,
    ),
    "unrelated_question": FallbackResponse(
        primary=(
            "I'm here to help with {businessName} matters. "
            "Could you tell me how I can assist you with that?"
        ),
        alternatives=("I focus on helping with {businessName}. How can I help you with that?",),
        tone=_POLITE,
    ),
})

EMOTIONAL_RESPONSES: Mapping[str, FallbackResponse] = MappingProxyType({
    "angry": FallbackResponse(
        primary=(
            "I understand you're frustrated, and I want to help. Let's work through this together. "
            "What can I do to assist you?"
        ),
        alternatives=(
            "I hear that you're upset, and I'm sorry for any inconvenience. How can I help resolve this?",
            "I understand this is frustrating. Let me see how I can help you.",
        ),
        tone=_EMPATHETIC,
    ),
    "rude": FallbackResponse(
        primary="I'm here to help you. Let's focus on how I can assist you today.",
        alternatives=("I understand. How can I help you with what you need?",),
        tone=_CALM,
    ),
    "upset_frustrated": FallbackResponse(
        primary=(
            "I understand you're frustrated, and I'm sorry to hear that. "
            "Let me see how I can help resolve this for you."
        ),
        alternatives=(
            "I hear your concern, and I want to help. What can I do to assist you?",
            "I'm sorry you're experiencing this. Let's work together to find a solution.",
        ),
        tone=_EMPATHETIC,
    ),
    "crying": FallbackResponse(
        primary=(
            "I can hear that you're upset. I'm here to help. "
            "Take your time, and let me know how I can assist you."
        ),
        alternatives=("I understand this is difficult. I'm here to help when you're ready.",),
        tone=_EMPATHETIC,
    ),
    # The 911 instruction leads: brevity keeps whole sentences from the start.
    "emergency": FallbackResponse(
        primary=(
            "For immediate help, please hang up and dial 911. "
            "I understand this is an emergency. "
            "If this is a medical emergency, call emergency services right away. "
            "I cannot provide emergency services."
        ),
        alternatives=("Please hang up and call 911 immediately. This sounds like an emergency.",),
        tone=_CALM,
        should_exit=True,
    ),
    "grief_loss": FallbackResponse(
        primary="I'm so sorry for your loss. I understand this is a difficult time. How can I help you today?",
        alternatives=("I'm sorry to hear that. I'm here to help in any way I can.",),
        tone=_EMPATHETIC,
    ),
})

IDENTITY_RESPONSES: Mapping[str, FallbackResponse] = MappingProxyType({
    "not_intended_customer": FallbackResponse(
        primary=(
            "I apologize for the confusion. It seems I may have reached the wrong person. "
            "Thank you for your time, and have a great day."
        ),
        alternatives=("I'm sorry, it looks like I may have the wrong number. Thank you for your time.",),
        tone=_POLITE,
        should_exit=True,
    ),
    "refuses_identity": FallbackResponse(
        primary="I understand. I'm here to help with general information about {businessName}. How can I assist you?",
        alternatives=("No problem. How can I help you with {businessName} today?",),
        tone=_POLITE,
    ),
    "pretending_identity": FallbackResponse(
        primary=(
            "I need to verify some information to help you. "
            "Could you provide your name or account information?"
        ),
        alternatives=(
            "For security purposes, I'll need to verify some details. Can you help me with that?",
        ),
        tone=_PROFESSIONAL,
    ),
    "child": FallbackResponse(
        primary="I'd like to speak with a parent or guardian. Could you have an adult come to the phone?",
        alternatives=("Is there a parent or guardian available I could speak with?",),
        tone=_POLITE,
        should_exit=True,
    ),
})

BUSINESS_LOGIC_RESPONSES: Mapping[str, FallbackResponse] = MappingProxyType({
    "unavailable_service": FallbackResponse(
        primary=(
            "I'm sorry, but that service isn't currently available. I can help you with our available "
            "services, or I can have someone follow up with you about this."
        ),
        alternatives=(
            "Unfortunately, that service isn't available right now. "
            "Would you like information about our other services?",
        ),
        tone=_POLITE,
        should_log_knowledge_gap=True,
    ),
    "outside_hours": FallbackResponse(
        primary=(
            "I understand you're calling outside our business hours. Our hours are {hours}. "
            "Would you like me to have someone call you back during business hours?"
        ),
        alternatives=(
            "We're currently outside business hours. "
            "I can arrange for someone to call you back when we're open.",
        ),
        tone=_POLITE,
        should_offer_callback=True,
    ),
    "conflicting_info": FallbackResponse(
        primary=(
            "I want to make sure I have the correct information. "
            "Let me have someone follow up with you to clarify this."
        ),
        alternatives=(
            "I need to verify this information. I'll have someone get back to you with the correct details.",
        ),
        tone=_PROFESSIONAL,
        should_log_knowledge_gap=True,
    ),
    "unsubscribe_dnc": FallbackResponse(
        primary=(
            "I understand. I'll make sure you're removed from our calling list. "
            "You won't receive any more calls from us. Is there anything else I can help you with today?"
        ),
        alternatives=(
            "Absolutely. I'll remove you from our calling list immediately. Thank you for letting me know.",
        ),
        tone=_POLITE,
        should_exit=True,
    ),
    "legal_concern": FallbackResponse(
        primary=(
            "I understand you have legal concerns. I'm not able to provide legal advice. "
            "I'd recommend speaking with a legal professional. "
            "Is there anything else I can help you with regarding {businessName}?"
        ),
        alternatives=(
            "For legal matters, I'd suggest consulting with an attorney. "
            "I'm here to help with general {businessName} questions.",
        ),
        tone=_PROFESSIONAL,
    ),
    "pricing_unavailable": FallbackResponse(
        primary=(
            "I don't have that pricing information available right now. "
            "I'll make sure someone follows up with you about this."
        ),
        alternatives=(
            "I'm sorry, I don't have those pricing details. "
            "I'll have someone get back to you with that information.",
        ),
        tone=_POLITE,
        should_log_knowledge_gap=True,
    ),
})

# Used for any unknown category/type: a neutral, polite clarification request.
DEFAULT_RESPONSE = FallbackResponse(
    primary="I'm here to help. Could you tell me more about what you need?",
    alternatives=("How can I assist you today?",),
    tone=_POLITE,
)

# `normal` scenarios need no fallback; the dialogue engine's draft is used.
EMPTY_RESPONSE = FallbackResponse(primary="", alternatives=(), tone=ResponseTone.NEUTRAL)


class FallbackLibrary:
    """Two-level lookup: category selects a sub-table, type indexes into it."""

    def __init__(self, tables: Optional[Mapping[ScenarioCategory, Mapping[str, FallbackResponse]]] = None):
        if tables is None:
            tables = {
                ScenarioCategory.AUDIO_TECHNICAL: AUDIO_RESPONSES,
                ScenarioCategory.CALLER_BEHAVIOR: BEHAVIOR_RESPONSES,
                ScenarioCategory.EMOTIONAL_SOCIAL: EMOTIONAL_RESPONSES,
                ScenarioCategory.IDENTITY_ISSUES: IDENTITY_RESPONSES,
                ScenarioCategory.BUSINESS_LOGIC: BUSINESS_LOGIC_RESPONSES,
            }
        self._tables: Mapping[ScenarioCategory, Mapping[str, FallbackResponse]] = MappingProxyType(
            {category: MappingProxyType(dict(table)) for category, table in tables.items()}
        )

    def categories(self) -> tuple[ScenarioCategory, ...]:
        return tuple(self._tables)

    def types(self, category: Union[ScenarioCategory, str]) -> tuple[str, ...]:
        parsed = ScenarioCategory.parse(category)
        table = self._tables.get(parsed) if parsed else None
        return tuple(table) if table else ()

    def lookup(self, category: Union[ScenarioCategory, str], type_: Optional[str]) -> Optional[FallbackResponse]:
        parsed = ScenarioCategory.parse(category)
        if parsed is None or not isinstance(type_, str) or not type_.strip():
            return None
        table = self._tables.get(parsed)
        if table is None:
            return None
        return table.get(type_.strip().lower())


@lru_cache(maxsize=1)
def get_fallback_library() -> FallbackLibrary:
    return FallbackLibrary()
