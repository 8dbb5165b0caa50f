"""
Campus Chat

Websocket chat client for the campus assistant chatbot.
"""

__version__ = "1.0.0"
