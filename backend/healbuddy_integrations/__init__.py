from .message_templates import EmailEnvelope, SmsEnvelope
from .notifications import DeliveryReport, NotificationChannels, NotificationDispatcher
from .sample_data import seed_sample_data
from .voice_agent import VoiceAgentConfig, format_phone_number

__all__ = [
    "DeliveryReport",
    "EmailEnvelope",
    "NotificationChannels",
    "NotificationDispatcher",
    "SmsEnvelope",
    "VoiceAgentConfig",
    "format_phone_number",
    "seed_sample_data",
]
