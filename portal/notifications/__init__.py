"""In-app and external (WhatsApp/email) notifications."""
