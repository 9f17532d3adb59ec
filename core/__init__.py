"""
Core Package

Contains the exchange-agnostic building blocks:
- Config: Environment-driven settings (pydantic-settings)
- Logging: Application-wide logger setup
- Schemas: Pydantic models for candle updates, alerts and connection status
- Utils: Time/interval helpers and single-slot timers
"""
