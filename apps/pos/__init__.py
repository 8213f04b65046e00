"""
POS cart, discount and checkout engine.
"""
