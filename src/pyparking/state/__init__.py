"""State layer.

The single owned aggregate for space and gate records, the statistics
engine that derives counters from its transitions, and the timed gate
cycle.  Nothing outside this package mutates occupancy state.
"""
