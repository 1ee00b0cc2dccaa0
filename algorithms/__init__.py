"""
Learning algorithms.

Each algorithm is self-contained in algorithms/<name>/ and exposes an
agent with act() and optimize_model(); the training session in
training/ drives it through the Environment contract.
"""
