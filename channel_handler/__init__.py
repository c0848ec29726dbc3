"""Duplex channel to the chat service."""

from .handler import WebSocketChannel

__all__ = ['WebSocketChannel']
