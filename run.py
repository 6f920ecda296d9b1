#!/usr/bin/env python3
"""Run a single backup"""
import sys
from backup_manager import main

if __name__ == '__main__':
    sys.exit(main())
