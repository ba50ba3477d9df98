"""Commands available to every user."""
