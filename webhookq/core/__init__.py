"""Pure helpers shared by the delivery engine: backoff and signing."""
