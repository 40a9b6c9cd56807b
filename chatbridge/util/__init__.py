"""Utility helpers for ChatBridge."""
