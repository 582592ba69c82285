"""
Chatflow - multi-channel conversational flow engine
"""
