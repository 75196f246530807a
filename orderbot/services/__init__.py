"""
                        Services Module

External collaborators behind the hybrid mock/real pattern.
Each service has a Mock (development) and a Real (production) implementation.

Services:
    - channel: WhatsApp chat channel (MockChannel / TwilioWhatsAppChannel)
"""
