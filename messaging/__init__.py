"""
messaging/ — Message Elements, Codec and Sender

Inbound payloads are parsed into element lists by codec.py; outbound
Sendables are encoded into REST payloads by sender.py.
"""
