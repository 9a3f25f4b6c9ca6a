"""
Communication Service

Outbound client communication for an insurance back office:
- Broadcast lifecycle with an approval gate (draft -> pending approval -> approved -> scheduled -> sent)
- Audience targeting with per-channel communication preferences
- Multi-channel dispatch (email, SMS, WhatsApp) with bounded fan-out and A/B variants
- Promotional offers with validity windows and usage limits
- Escalating payment reminders (1, 7, 14 and 30 days overdue), sent at most once per tier

Port: 8260
"""

__version__ = "1.0.0"
__service__ = "communication_service"
