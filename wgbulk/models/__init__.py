"""Data models for wgbulk."""
