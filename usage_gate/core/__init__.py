"""
Core modules for the usage gate.

This package contains the refresher, gate policy, enforcement adapters,
and status rendering.
"""
