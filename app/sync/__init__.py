"""WordPress blog synchronization: signed webhooks, REST client and event handling."""
