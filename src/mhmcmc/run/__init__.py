"""Wrappers for multi-chain Metropolis-Hastings runs.

Modules:
    runner: Epoch-wise orchestration of independent chains with automatic stopping
    postprocessor: Burn-in trimming and thinning of raw chain output
"""
