#!/usr/bin/env python3
"""Backup runner for cron or manual use"""
from r2backup.cli import main

if __name__ == '__main__':
    # Same as the `r2backup` console script: `run.py`, `run.py check`, `run.py rotate`
    main()
