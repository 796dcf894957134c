"""
Food Fight voting engine: nominate restaurants, then pick one by
single-elimination bracket or scored ballot.
"""
__version__ = "1.0.0"
