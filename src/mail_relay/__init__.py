"""
Mail Relay - forwards new POP3 messages to a destination address over SMTP.
"""

__version__ = "0.1.0"
