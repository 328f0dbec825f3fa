"""Infrastructure shared across roomchat modules."""
