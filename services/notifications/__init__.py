"""App Store Server Notifications receiver."""
