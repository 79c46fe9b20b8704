"""
BranchChat - conversation branching and streaming-session engine.
"""
