"""Remote mail service integrations."""
