"""Detectify: chatbot detection for websites."""

__version__ = "0.4.0"
