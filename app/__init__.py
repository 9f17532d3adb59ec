"""
Application Package

Contains the process runtime that wires the event bus, the kline ingestor and
the rule evaluator together and keeps them running until a shutdown signal.
"""
