"""
babelcast: live speech relay.

Captures speech, streams it to a hosted transcription service, translates each transcript
and pushes original/translated pairs to browser clients over WebSockets.
"""

__version__ = "0.1.0"
