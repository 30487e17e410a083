"""HTTP surface of ragchat."""
