"""Voice session brokering in front of the media server."""
