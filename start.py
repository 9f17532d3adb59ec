#!/usr/bin/env python3
"""
Start script - runs the kline alert runtime until interrupted
"""

if __name__ == "__main__":
    from app.main import main

    main()
