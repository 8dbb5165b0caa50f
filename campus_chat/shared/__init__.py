"""
Shared Components

Models, configuration, logging and exceptions used across the client.
"""
