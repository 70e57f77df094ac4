"""
OmniChat — one prompt, many models.

Dispatch core for a multi-model chat front-end: enrich a user turn, fan it
out to several generation backends at once, normalize their streams and
write the results into a durable or temporary conversation.
"""

__version__ = "0.4.0"
