"""
Maintenance sweeps and the loop that drives them.
"""
